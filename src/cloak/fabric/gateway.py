"""
Decryption gateway.

Releases plaintexts only to accounts that prove their identity and hold an
access grant on every requested handle.
"""
import logging
from typing import Callable, List, Union

from cryptography.exceptions import UnsupportedAlgorithm

from cloak.fabric.base import CiphertextFabric
from cloak.fabric.proof import load_public_key, public_key_der, verify_ecdsa
from cloak.shared.acl import AccessControlList
from cloak.shared.errors import Unauthorized
from cloak.shared.protocol import DecryptRequest
from cloak.shared.utils import address_from_key, canonical_message, normalize_account

logger = logging.getLogger(__name__)

DECRYPT_DOMAIN = "cloak-user-decrypt-v1"


def decrypt_request_message(account: str, digests: List[str]) -> bytes:
    """Message an account signs to request decryption of ``digests``."""
    return canonical_message(DECRYPT_DOMAIN, normalize_account(account), digests=digests)


def authenticate_account(public_key_pem: str, account: str, signature: bytes, message: bytes) -> None:
    """
    Check that ``account`` signed ``message``.

    The public key must hash to the account address and the signature must
    verify under it.

    Raises:
        Unauthorized: On an unreadable key, a key of another account or a
            bad signature
    """
    try:
        public_key = load_public_key(public_key_pem)
    except (ValueError, UnsupportedAlgorithm) as e:
        raise Unauthorized(f"Invalid public key: {e}")
    if address_from_key(public_key_der(public_key)) != normalize_account(account):
        raise Unauthorized("Public key does not match the requesting account")
    if not verify_ecdsa(public_key, signature, message):
        raise Unauthorized("Request signature does not verify")


class DecryptionGateway:
    """
    User-decryption front end for a fabric.

    Args:
        fabric: Fabric holding the ciphertexts
        acl_source: Callable returning the current access-control list,
            typically ``lambda: ledger.acl``
    """

    def __init__(self, fabric: CiphertextFabric, acl_source: Callable[[], AccessControlList]):
        self.fabric = fabric
        self._acl_source = acl_source

    def _authenticate(self, request: DecryptRequest) -> None:
        message = decrypt_request_message(request.account, [h.digest for h in request.handles])
        authenticate_account(request.public_key_pem, request.account, request.signature, message)

    def user_decrypt(self, request: DecryptRequest) -> List[Union[bool, int]]:
        """
        Decrypt handles on behalf of an account.

        Args:
            request: Signed decryption request

        Returns:
            Plaintexts in request order (bool for ebool handles)

        Raises:
            Unauthorized: Bad identity proof, or a handle without a grant
        """
        self._authenticate(request)
        acl = self._acl_source()
        account = normalize_account(request.account)
        for handle in request.handles:
            if not handle.is_initialized or not acl.is_allowed(handle, account):
                logger.warning("Denied decryption of %s for %s", handle, request.account)
                raise Unauthorized(f"{request.account} may not decrypt {handle}")
        return [self.fabric.reveal(handle) for handle in request.handles]
