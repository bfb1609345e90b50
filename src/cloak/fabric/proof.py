"""
Input proofs binding client ciphertexts to a (ledger, account) pair.

The verifier plays the role of the input-verification signer: it signs the
digests of every ciphertext in a bundle together with the ledger address
and the account that encrypted them. Uses ECDSA over P-256.
"""
import base64
import json
import logging
from typing import List, Optional, Sequence, Tuple

from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec

from cloak.shared.errors import InvalidInputProof
from cloak.shared.utils import canonical_message, normalize_account

logger = logging.getLogger(__name__)

PROOF_DOMAIN = "cloak-input-v1"


def verify_ecdsa(public_key: ec.EllipticCurvePublicKey, signature: bytes, message: bytes) -> bool:
    """Return True if ``signature`` is a valid ECDSA-SHA256 signature of ``message``."""
    try:
        public_key.verify(signature, message, ec.ECDSA(hashes.SHA256()))
    except InvalidSignature:
        return False
    return True


def load_public_key(public_key_pem: str) -> ec.EllipticCurvePublicKey:
    key = serialization.load_pem_public_key(public_key_pem.encode("utf-8"))
    if not isinstance(key, ec.EllipticCurvePublicKey):
        raise ValueError("Expected an EC public key")
    return key


def public_key_der(public_key: ec.EllipticCurvePublicKey) -> bytes:
    return public_key.public_bytes(
        encoding=serialization.Encoding.DER,
        format=serialization.PublicFormat.SubjectPublicKeyInfo,
    )


class InputVerifier:
    """
    Signs and checks input proofs.

    A proof is a JSON document listing the bundle's handle digests and a
    base64 signature over ``domain | ledger | account | digests...``.
    """

    def __init__(self, private_key: Optional[ec.EllipticCurvePrivateKey] = None):
        self.private_key = private_key or ec.generate_private_key(ec.SECP256R1())
        self.public_key = self.private_key.public_key()

    def _message(self, ledger_address: str, account: str, digests: Sequence[str]) -> bytes:
        return canonical_message(
            PROOF_DOMAIN, ledger_address.lower(), normalize_account(account), digests=digests
        )

    def issue(self, ledger_address: str, account: str, digests: Sequence[str]) -> bytes:
        """
        Produce a proof for a freshly encrypted bundle.

        Args:
            ledger_address: Address of the ledger the inputs are meant for
            account: Account that encrypted the inputs
            digests: Ordered digests of the bundle's ciphertexts

        Returns:
            Encoded proof bytes
        """
        signature = self.private_key.sign(
            self._message(ledger_address, account, digests),
            ec.ECDSA(hashes.SHA256()),
        )
        document = {
            "handles": list(digests),
            "signature": base64.b64encode(signature).decode("utf-8"),
        }
        return json.dumps(document, separators=(",", ":")).encode("utf-8")

    def decode(self, proof: bytes) -> Tuple[List[str], bytes]:
        try:
            document = json.loads(proof.decode("utf-8"))
            digests = [str(d) for d in document["handles"]]
            signature = base64.b64decode(document["signature"], validate=True)
        except (ValueError, KeyError, TypeError, AttributeError) as e:
            raise InvalidInputProof(f"Malformed input proof: {e}")
        return digests, signature

    def check(self, proof: bytes, ledger_address: str, account: str, digest: str) -> None:
        """
        Verify that ``digest`` is covered by a valid proof for (ledger, account).

        Raises:
            InvalidInputProof: On any mismatch
        """
        digests, signature = self.decode(proof)
        if digest not in digests:
            raise InvalidInputProof("Input handle is not covered by the proof")
        if not verify_ecdsa(self.public_key, signature, self._message(ledger_address, account, digests)):
            logger.warning("Rejected input proof for account %s", account)
            raise InvalidInputProof("Input proof signature does not verify")
