"""
Client-side identity, input encryption and user decryption.
"""
import base64
import time
from typing import Dict, List, Optional, Sequence, Tuple, Union

from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec

from cloak.fabric.base import CiphertextFabric
from cloak.fabric.gateway import DecryptionGateway, decrypt_request_message
from cloak.fabric.proof import public_key_der
from cloak.server.auth import (
    ACCOUNT_HEADER,
    NONCE_HEADER,
    PUBLIC_KEY_HEADER,
    SIGNATURE_HEADER,
    request_message,
)
from cloak.shared.protocol import DecryptRequest, FheType, Handle, InputBundle
from cloak.shared.utils import address_from_key


class Account:
    """
    ECDSA identity of a user.

    The address is derived from the public key, so anyone holding the
    public key can check that a signature belongs to the address.
    """

    def __init__(self, private_key: Optional[ec.EllipticCurvePrivateKey] = None):
        self.private_key = private_key or ec.generate_private_key(ec.SECP256R1())
        self.public_key = self.private_key.public_key()
        self.address = address_from_key(public_key_der(self.public_key))

    @property
    def public_key_pem(self) -> str:
        return self.public_key.public_bytes(
            encoding=serialization.Encoding.PEM,
            format=serialization.PublicFormat.SubjectPublicKeyInfo,
        ).decode("utf-8")

    def sign(self, message: bytes) -> bytes:
        return self.private_key.sign(message, ec.ECDSA(hashes.SHA256()))

    def __repr__(self) -> str:
        return f"Account({self.address})"


class EncryptedInput:
    """Builder for a bundle of encrypted inputs bound to (ledger, account)."""

    def __init__(self, fabric: CiphertextFabric, ledger_address: str, account: str):
        self._fabric = fabric
        self._ledger_address = ledger_address
        self._account = account
        self._values: List[Tuple[FheType, int]] = []

    def add16(self, value: int) -> "EncryptedInput":
        self._values.append((FheType.EUINT16, value))
        return self

    def add32(self, value: int) -> "EncryptedInput":
        self._values.append((FheType.EUINT32, value))
        return self

    def add64(self, value: int) -> "EncryptedInput":
        self._values.append((FheType.EUINT64, value))
        return self

    def encrypt(self) -> InputBundle:
        return self._fabric.encrypt_inputs(self._ledger_address, self._account, self._values)


class CryptoClient:
    """
    Client-side cryptographic operations.

    Responsible for:
    - Encrypting profile attributes for registration
    - Signing user-decryption requests and HTTP requests
    - Decrypting handles the account has been granted
    """

    def __init__(
        self,
        fabric: CiphertextFabric,
        gateway: DecryptionGateway,
        ledger_address: str,
        account: Optional[Account] = None,
    ):
        """
        Initialize crypto client.

        Args:
            fabric: Fabric used for client-side input encryption
            gateway: Gateway serving decryption requests
            ledger_address: Ledger the inputs are bound to
            account: Identity to act as, generated if omitted
        """
        self.fabric = fabric
        self.gateway = gateway
        self.ledger_address = ledger_address
        self.account = account or Account()
        self._nonce = time.time_ns()

    @property
    def address(self) -> str:
        return self.account.address

    def create_encrypted_input(self) -> EncryptedInput:
        return EncryptedInput(self.fabric, self.ledger_address, self.address)

    def encrypt_profile(self, country: int, city: int, salary: int, birth_year: int) -> InputBundle:
        """
        Encrypt the four registration attributes.

        Returns:
            InputBundle ordered as country, city, salary, birth year
        """
        return (
            self.create_encrypted_input()
            .add32(country)
            .add32(city)
            .add64(salary)
            .add16(birth_year)
            .encrypt()
        )

    def signed_headers(self, action: str, *fields: object) -> Dict[str, str]:
        """
        Headers authenticating one HTTP request made as this account.

        Args:
            action: Operation name, e.g. ``"register"``
            fields: Arguments of the operation, in the order the server signs them
        """
        self._nonce = max(self._nonce + 1, time.time_ns())
        message = request_message(self.ledger_address, self.address, self._nonce, action, *fields)
        return {
            ACCOUNT_HEADER: self.address,
            PUBLIC_KEY_HEADER: base64.b64encode(self.account.public_key_pem.encode("utf-8")).decode("utf-8"),
            NONCE_HEADER: str(self._nonce),
            SIGNATURE_HEADER: base64.b64encode(self.account.sign(message)).decode("utf-8"),
        }

    def build_decrypt_request(self, handles: Sequence[Handle]) -> DecryptRequest:
        handles = tuple(handles)
        message = decrypt_request_message(self.address, [h.digest for h in handles])
        return DecryptRequest(
            account=self.address,
            public_key_pem=self.account.public_key_pem,
            handles=handles,
            signature=self.account.sign(message),
        )

    def user_decrypt(self, handles: Sequence[Handle]) -> List[Union[bool, int]]:
        """
        Decrypt handles through the gateway.

        Raises:
            Unauthorized: If any handle was not granted to this account
        """
        return self.gateway.user_decrypt(self.build_decrypt_request(handles))

    def decrypt_bool(self, handle: Handle) -> bool:
        return bool(self.user_decrypt([handle])[0])

    def decrypt_uint(self, handle: Handle) -> int:
        return int(self.user_decrypt([handle])[0])
