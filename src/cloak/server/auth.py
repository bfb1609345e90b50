"""
Signed-request authentication for the HTTP surface.

A mutating request names its account in ``X-Account`` and proves it with
the account's public key and an ECDSA signature over the ledger address,
the account, a nonce, the action and the action's arguments. Nonces are
integers that must increase per account, so a captured request cannot be
replayed.
"""
import base64
import binascii
import logging
import threading
from dataclasses import dataclass
from typing import Dict

from cloak.fabric.gateway import authenticate_account
from cloak.shared.errors import Unauthorized
from cloak.shared.utils import canonical_message, normalize_account

logger = logging.getLogger(__name__)

REQUEST_DOMAIN = "cloak-request-v1"

# Header names
ACCOUNT_HEADER = "X-Account"
PUBLIC_KEY_HEADER = "X-Public-Key"
NONCE_HEADER = "X-Nonce"
SIGNATURE_HEADER = "X-Signature"


def request_message(ledger_address: str, account: str, nonce: int, action: str, *fields: object) -> bytes:
    """Message an account signs to perform ``action`` on a ledger."""
    return canonical_message(
        REQUEST_DOMAIN,
        ledger_address.lower(),
        normalize_account(account),
        int(nonce),
        action,
        *fields,
    )


@dataclass(frozen=True)
class SignedCaller:
    """Identity claimed by a request, as read from its headers."""
    account: str
    public_key_b64: str
    nonce: int
    signature_b64: str


class RequestAuthenticator:
    """
    Verifies signed requests for one ledger.

    Args:
        ledger_address: Address every signed message must be bound to
    """

    def __init__(self, ledger_address: str):
        self.ledger_address = ledger_address
        self._last_nonce: Dict[str, int] = {}
        self._lock = threading.Lock()

    def verify(self, caller: SignedCaller, action: str, *fields: object) -> str:
        """
        Authenticate ``caller`` for ``action``.

        Returns:
            The normalized account to act as

        Raises:
            Unauthorized: Bad encoding, key, signature or a reused nonce
        """
        try:
            public_key_pem = base64.b64decode(caller.public_key_b64, validate=True).decode("utf-8")
            signature = base64.b64decode(caller.signature_b64, validate=True)
        except (binascii.Error, ValueError):
            raise Unauthorized("Request credentials are not valid base64")

        message = request_message(self.ledger_address, caller.account, caller.nonce, action, *fields)
        authenticate_account(public_key_pem, caller.account, signature, message)

        account = normalize_account(caller.account)
        with self._lock:
            if caller.nonce <= self._last_nonce.get(account, -1):
                logger.warning("Replayed %s request from %s", action, account)
                raise Unauthorized("Request nonce has already been used")
            self._last_nonce[account] = caller.nonce
        return account
