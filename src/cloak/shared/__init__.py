"""Shared protocol types, errors and utilities."""
from cloak.shared.protocol import (
    FheType,
    Handle,
    ExternalHandle,
    InputBundle,
    Bound,
    UserRecord,
    ApplicationCriteria,
    UserRegistered,
    ApplicationCreated,
    ApplicationClosed,
    Applied,
    DecryptRequest,
)
from cloak.shared.errors import (
    CloakError,
    InvalidInputProof,
    NotFound,
    Unauthorized,
    NotRegistered,
    ApplicationInactive,
    NotCreator,
    InvalidArgument,
)
from cloak.shared.acl import AccessControlList
from cloak.shared.utils import Timer, check_width

__all__ = [
    "FheType",
    "Handle",
    "ExternalHandle",
    "InputBundle",
    "Bound",
    "UserRecord",
    "ApplicationCriteria",
    "UserRegistered",
    "ApplicationCreated",
    "ApplicationClosed",
    "Applied",
    "DecryptRequest",
    "CloakError",
    "InvalidInputProof",
    "NotFound",
    "Unauthorized",
    "NotRegistered",
    "ApplicationInactive",
    "NotCreator",
    "InvalidArgument",
    "AccessControlList",
    "Timer",
    "check_width",
]
