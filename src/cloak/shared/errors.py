"""
Error kinds raised by the eligibility core and its collaborators.
"""


class CloakError(Exception):
    """Base class for all rejected operations."""
    kind = "CloakError"

    def __init__(self, message: str = ""):
        super().__init__(message or self.kind)
        self.message = message or self.kind


class InvalidInputProof(CloakError):
    """Encrypted inputs failed verification against their proof."""
    kind = "InvalidInputProof"


class NotFound(CloakError, LookupError):
    """Unknown application id, or no result stored for a pair."""
    kind = "NotFound"


class Unauthorized(CloakError, PermissionError):
    """Decryption attempted without an access grant."""
    kind = "Unauthorized"


class NotRegistered(CloakError):
    """Submission by an account with no registered record."""
    kind = "NotRegistered"


class ApplicationInactive(CloakError):
    """Submission to a closed application."""
    kind = "ApplicationInactive"


class NotCreator(CloakError, PermissionError):
    """Only the creator of an application may close it."""
    kind = "NotCreator"


class InvalidArgument(CloakError, ValueError):
    """A plaintext argument is outside its declared range."""
    kind = "InvalidArgument"
