"""
Ciphertext fabric: the homomorphic capability consumed by the ledger.

The ledger only ever holds ``Handle`` values. A fabric owns the
ciphertexts behind them and evaluates the operators the eligibility
algorithm needs: equality, greater-or-equal, less-or-equal and boolean
AND. Concrete fabrics only decide how a value is encrypted at rest.
"""
import logging
import secrets
import threading
from abc import ABC, abstractmethod
from contextlib import contextmanager
from typing import Any, Callable, Dict, Iterable, Iterator, List, Sequence, Tuple, Union

from cloak.fabric.proof import InputVerifier
from cloak.shared.errors import InvalidArgument, InvalidInputProof
from cloak.shared.protocol import ExternalHandle, FheType, Handle, InputBundle
from cloak.shared.utils import check_width, derive_digest

logger = logging.getLogger(__name__)

Operand = Union[Handle, int]


class CiphertextFabric(ABC):
    """Abstract base class for fabric implementations."""

    name = "abstract"

    def __init__(self, verifier: InputVerifier = None):
        self.verifier = verifier or InputVerifier()
        self._ciphertexts: Dict[str, Any] = {}
        self._external: Dict[str, Tuple[FheType, Any]] = {}
        self._counter = 0
        self._salt = secrets.token_hex(8)
        self._lock = threading.RLock()
        self._local = threading.local()

    @abstractmethod
    def _encrypt(self, value: int) -> Any:
        """Encrypt a plaintext integer."""
        pass

    @abstractmethod
    def _decrypt(self, ciphertext: Any) -> int:
        """Decrypt a stored ciphertext."""
        pass

    # ------------------------------------------------------------------
    # Handle bookkeeping

    def _next_digest(self, tag: str, fhe_type: FheType, *parts: object) -> str:
        with self._lock:
            self._counter += 1
            counter = self._counter
        return derive_digest(self.name, self._salt, tag, fhe_type.value, counter, *parts)

    def _store(self, ciphertext: Any, fhe_type: FheType, tag: str, *parts: object) -> Handle:
        handle = Handle(self._next_digest(tag, fhe_type, *parts), fhe_type)
        with self._lock:
            self._ciphertexts[handle.digest] = ciphertext
        for created in getattr(self._local, "scopes", ()):
            created.append(handle.digest)
        return handle

    @contextmanager
    def scope(self) -> Iterator[List[str]]:
        """
        Track the handles created by this thread inside the block.

        If the block raises, every handle it created is discarded.

        Yields:
            Digests created so far, in creation order
        """
        created: List[str] = []
        scopes = getattr(self._local, "scopes", [])
        self._local.scopes = scopes + [created]
        try:
            yield created
        except BaseException:
            self.discard(created)
            raise
        finally:
            self._local.scopes = scopes

    def discard(self, digests: Iterable[str]) -> None:
        """Forget the ciphertexts behind ``digests``; unknown digests are ignored."""
        with self._lock:
            for digest in digests:
                self._ciphertexts.pop(digest, None)

    @property
    def ciphertext_count(self) -> int:
        """Number of live ciphertexts, excluding unverified inputs."""
        return len(self._ciphertexts)

    def _ciphertext(self, handle: Handle) -> Any:
        # Uninitialized handles behave as an encryption of zero
        if not handle.is_initialized:
            return self._encrypt(0)
        try:
            return self._ciphertexts[handle.digest]
        except KeyError:
            raise InvalidArgument(f"Unknown ciphertext handle {handle}")

    def _plaintext(self, handle: Handle) -> int:
        return self._decrypt(self._ciphertext(handle))

    def _encrypt_bool(self, value: bool, tag: str, *parts: object) -> Handle:
        return self._store(self._encrypt(1 if value else 0), FheType.EBOOL, tag, *parts)

    # ------------------------------------------------------------------
    # Inputs

    def encrypt_inputs(
        self,
        ledger_address: str,
        account: str,
        values: Sequence[Tuple[FheType, int]],
    ) -> InputBundle:
        """
        Encrypt client inputs and issue the proof binding them.

        This stands in for client-side encryption under the network key.

        Args:
            ledger_address: Ledger the inputs are destined for
            account: Account encrypting the inputs
            values: Ordered (type, plaintext) pairs

        Returns:
            InputBundle with one external handle per value
        """
        handles: List[ExternalHandle] = []
        for index, (fhe_type, value) in enumerate(values):
            value = check_width(value, fhe_type, f"input[{index}]")
            digest = self._next_digest("external", fhe_type, ledger_address, account, index)
            ciphertext = self._encrypt(value)
            with self._lock:
                self._external[digest] = (fhe_type, ciphertext)
            handles.append(ExternalHandle(digest=digest, fhe_type=fhe_type, index=index))
        proof = self.verifier.issue(ledger_address, account, [h.digest for h in handles])
        return InputBundle(
            ledger_address=ledger_address,
            account=account,
            handles=tuple(handles),
            proof=proof,
        )

    def verify_input(
        self,
        external: ExternalHandle,
        proof: bytes,
        ledger_address: str,
        account: str,
        expected_type: FheType = None,
    ) -> Handle:
        """
        Verify an external input and convert it into a usable handle.

        Raises:
            InvalidInputProof: If the proof does not cover the input for
                (ledger_address, account), or the type does not match
        """
        self.verifier.check(proof, ledger_address, account, external.digest)
        entry = self._external.get(external.digest)
        if entry is None:
            raise InvalidInputProof(f"Unknown external input {external.digest[:16]}")
        fhe_type, ciphertext = entry
        if fhe_type is not external.fhe_type:
            raise InvalidInputProof("External input type does not match its ciphertext")
        if expected_type is not None and fhe_type is not expected_type:
            raise InvalidInputProof(
                f"Expected {expected_type.value} input, got {fhe_type.value}"
            )
        logger.debug("Verified %s input for %s", fhe_type.value, account)
        return self._store(ciphertext, fhe_type, "input", external.digest)

    def consume_inputs(self, externals: Iterable[ExternalHandle]) -> None:
        """Retire verified external inputs so their proof cannot be replayed."""
        with self._lock:
            for external in externals:
                self._external.pop(external.digest, None)

    # ------------------------------------------------------------------
    # Operators

    def as_trivial(self, value: int, fhe_type: FheType) -> Handle:
        """Encrypt a public plaintext constant."""
        value = check_width(value, fhe_type)
        return self._store(self._encrypt(value), fhe_type, "trivial")

    def true(self) -> Handle:
        return self.as_trivial(1, FheType.EBOOL)

    def _operand(self, lhs: Handle, rhs: Operand) -> Tuple[int, str]:
        if isinstance(rhs, Handle):
            if rhs.fhe_type is not lhs.fhe_type:
                raise InvalidArgument(
                    f"Operand types differ: {lhs.fhe_type.value} vs {rhs.fhe_type.value}"
                )
            return self._plaintext(rhs), rhs.digest
        value = check_width(rhs, lhs.fhe_type, "scalar operand")
        return value, f"scalar:{value}"

    def _compare(self, tag: str, lhs: Handle, rhs: Operand, op: Callable[[int, int], bool]) -> Handle:
        if lhs.fhe_type is FheType.EBOOL:
            raise InvalidArgument(f"{tag} expects an integer ciphertext")
        right, right_ref = self._operand(lhs, rhs)
        return self._encrypt_bool(op(self._plaintext(lhs), right), tag, lhs.digest, right_ref)

    def eq(self, lhs: Handle, rhs: Operand) -> Handle:
        return self._compare("eq", lhs, rhs, lambda a, b: a == b)

    def ge(self, lhs: Handle, rhs: Operand) -> Handle:
        return self._compare("ge", lhs, rhs, lambda a, b: a >= b)

    def le(self, lhs: Handle, rhs: Operand) -> Handle:
        return self._compare("le", lhs, rhs, lambda a, b: a <= b)

    def and_(self, lhs: Handle, rhs: Handle) -> Handle:
        """Boolean AND of two encrypted booleans."""
        self._expect_bools(lhs, rhs)
        result = bool(self._plaintext(lhs)) and bool(self._plaintext(rhs))
        return self._encrypt_bool(result, "and", lhs.digest, rhs.digest)

    def _expect_bools(self, *handles: Handle) -> None:
        for handle in handles:
            if handle.fhe_type is not FheType.EBOOL:
                raise InvalidArgument(f"Expected ebool, got {handle.fhe_type.value}")

    # ------------------------------------------------------------------
    # Gateway access

    def reveal(self, handle: Handle) -> Union[bool, int]:
        """
        Decrypt a handle.

        Only the decryption gateway calls this, after checking the ACL.
        """
        value = self._plaintext(handle)
        if handle.fhe_type is FheType.EBOOL:
            return bool(value)
        return value
