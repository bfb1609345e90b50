"""
Protocol definitions shared by the ledger, the fabric and clients.
"""
from dataclasses import dataclass, field
from typing import Optional, Tuple, Union
from enum import Enum

import numpy as np


ZERO_DIGEST = "0" * 64


class FheType(Enum):
    """Supported encrypted value types."""
    EBOOL = "ebool"
    EUINT16 = "euint16"
    EUINT32 = "euint32"
    EUINT64 = "euint64"

    @property
    def max_value(self) -> int:
        """Largest plaintext representable by this type."""
        if self is FheType.EBOOL:
            return 1
        return int(np.iinfo(_TYPE_DTYPES[self]).max)

    def accepts(self, value: int) -> bool:
        return 0 <= int(value) <= self.max_value


def is_integer(value: object) -> bool:
    """True for Python and numpy integers, excluding bool."""
    return isinstance(value, (int, np.integer)) and not isinstance(value, bool)


_TYPE_DTYPES = {
    FheType.EUINT16: np.uint16,
    FheType.EUINT32: np.uint32,
    FheType.EUINT64: np.uint64,
}


@dataclass(frozen=True)
class Handle:
    """
    Opaque reference to a ciphertext held by a fabric.

    The digest carries no information about the plaintext. The all-zero
    digest is the uninitialized handle of its type.
    """
    digest: str
    fhe_type: FheType

    @classmethod
    def zero(cls, fhe_type: FheType) -> "Handle":
        return cls(digest=ZERO_DIGEST, fhe_type=fhe_type)

    @property
    def is_initialized(self) -> bool:
        return self.digest != ZERO_DIGEST

    def __str__(self) -> str:
        return f"0x{self.digest}"


@dataclass(frozen=True)
class ExternalHandle:
    """Handle of a client-encrypted input that has not been verified yet."""
    digest: str
    fhe_type: FheType
    index: int


@dataclass(frozen=True)
class InputBundle:
    """Encrypted inputs plus the proof binding them to (ledger, account)."""
    ledger_address: str
    account: str
    handles: Tuple[ExternalHandle, ...]
    proof: bytes

    def __getitem__(self, index: int) -> ExternalHandle:
        return self.handles[index]


class Bound:
    """
    A criteria constraint: either unconstrained or an exact plaintext value.

    ``Bound.from_sentinel(0)`` is unconstrained, while ``Bound.exact(0)``
    is a real comparison against zero.
    """

    __slots__ = ("_value",)

    def __init__(self, value: Optional[int] = None):
        if value is not None and not is_integer(value):
            raise TypeError(f"Bound value must be an integer, got {value!r}")
        self._value = None if value is None else int(value)

    @classmethod
    def any(cls) -> "Bound":
        return cls(None)

    @classmethod
    def exact(cls, value: int) -> "Bound":
        return cls(value)

    @classmethod
    def from_sentinel(cls, value: int) -> "Bound":
        return cls.any() if is_integer(value) and value == 0 else cls.exact(value)

    @classmethod
    def coerce(cls, value: Union[int, "Bound"]) -> "Bound":
        """Accept either a Bound or a sentinel-encoded integer."""
        if isinstance(value, Bound):
            return value
        return cls.from_sentinel(value)

    @property
    def is_any(self) -> bool:
        return self._value is None

    @property
    def value(self) -> int:
        if self._value is None:
            raise ValueError("Unconstrained bound has no value")
        return self._value

    def to_sentinel(self) -> int:
        return 0 if self._value is None else self._value

    def __eq__(self, other: object) -> bool:
        return isinstance(other, Bound) and other._value == self._value

    def __hash__(self) -> int:
        return hash(("Bound", self._value))

    def __repr__(self) -> str:
        return "Bound.any()" if self._value is None else f"Bound.exact({self._value})"


@dataclass
class UserRecord:
    """Encrypted attribute tuple of one account."""
    username: str = ""
    country: Handle = field(default_factory=lambda: Handle.zero(FheType.EUINT32))
    city: Handle = field(default_factory=lambda: Handle.zero(FheType.EUINT32))
    salary: Handle = field(default_factory=lambda: Handle.zero(FheType.EUINT64))
    birth_year: Handle = field(default_factory=lambda: Handle.zero(FheType.EUINT16))
    registered: bool = False

    def handles(self) -> Tuple[Handle, Handle, Handle, Handle]:
        return (self.country, self.city, self.salary, self.birth_year)

    def as_tuple(self) -> tuple:
        return (
            self.username,
            self.country,
            self.city,
            self.salary,
            self.birth_year,
            self.registered,
        )


@dataclass
class ApplicationCriteria:
    """
    Plaintext matching criteria published by a creator.

    Only ``active`` changes after creation.
    """
    app_id: int
    creator: str
    country: Bound
    city: Bound
    min_salary: Bound
    max_salary: Bound
    min_birth_year: Bound
    max_birth_year: Bound
    active: bool = True

    def as_tuple(self) -> tuple:
        """Public read model, with 0 meaning unconstrained."""
        return (
            self.creator,
            self.active,
            self.country.to_sentinel(),
            self.city.to_sentinel(),
            self.min_salary.to_sentinel(),
            self.max_salary.to_sentinel(),
            self.min_birth_year.to_sentinel(),
            self.max_birth_year.to_sentinel(),
        )


# Events

@dataclass(frozen=True)
class UserRegistered:
    account: str
    username: str
    block: int = 0


@dataclass(frozen=True)
class ApplicationCreated:
    app_id: int
    creator: str
    block: int = 0


@dataclass(frozen=True)
class ApplicationClosed:
    app_id: int
    creator: str
    block: int = 0


@dataclass(frozen=True)
class Applied:
    app_id: int
    applicant: str
    result: Handle
    block: int = 0


@dataclass(frozen=True)
class DecryptRequest:
    """
    User decryption request presented to the gateway.

    The signature covers the account and the requested handle digests and
    must verify under ``public_key_pem``.
    """
    account: str
    public_key_pem: str
    handles: Tuple[Handle, ...]
    signature: bytes
