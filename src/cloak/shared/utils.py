"""
Shared utility functions.
"""
import hashlib
import time
from typing import Iterable, Optional

from cloak.shared.errors import InvalidArgument
from cloak.shared.protocol import FheType, is_integer


def check_width(value: int, fhe_type: FheType, name: str = "value") -> int:
    """
    Validate that a plaintext fits in the given encrypted type.

    Args:
        value: Plaintext integer
        fhe_type: Target type
        name: Field name used in the error message

    Returns:
        The value as a Python int

    Raises:
        InvalidArgument: If the value is not an integer, is negative or
            is too wide
    """
    if isinstance(value, bool) and fhe_type is FheType.EBOOL:
        return int(value)
    if not is_integer(value):
        raise InvalidArgument(f"{name} must be an integer, got {value!r}")
    value = int(value)
    if not fhe_type.accepts(value):
        raise InvalidArgument(
            f"{name}={value} does not fit in {fhe_type.value} "
            f"(0..{fhe_type.max_value})"
        )
    return value


def derive_digest(*parts: object) -> str:
    """SHA-256 over the '|'-joined string form of ``parts``."""
    joined = "|".join(str(p) for p in parts)
    return hashlib.sha256(joined.encode("utf-8")).hexdigest()


def canonical_message(*parts: object, digests: Iterable[str] = ()) -> bytes:
    """Byte string signed by input proofs and decryption requests."""
    return "|".join([str(p) for p in parts] + list(digests)).encode("utf-8")


def normalize_account(account: str) -> str:
    """Accounts compare case-insensitively; stores key on the lowercase form."""
    return account.lower()


def address_from_key(public_key_der: bytes) -> str:
    """Account address: 0x + first 40 hex chars of SHA-256 of the DER key."""
    return "0x" + hashlib.sha256(public_key_der).hexdigest()[:40]


class Timer:
    """Context manager for timing operations."""

    def __init__(self, name: str = "Operation"):
        self.name = name
        self.start_time: Optional[float] = None
        self.elapsed: Optional[float] = None

    def __enter__(self) -> "Timer":
        self.start_time = time.perf_counter()
        return self

    def __exit__(self, *args) -> None:
        self.elapsed = time.perf_counter() - self.start_time

    @property
    def elapsed_ms(self) -> float:
        """Get elapsed time in milliseconds."""
        if self.elapsed is None:
            if self.start_time is not None:
                return (time.perf_counter() - self.start_time) * 1000
            return 0.0
        return self.elapsed * 1000
