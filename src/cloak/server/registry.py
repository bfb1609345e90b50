"""
Encrypted registry: account -> encrypted attribute tuple.
"""
import logging
from typing import Dict, List, Sequence

from cloak.fabric.base import CiphertextFabric
from cloak.shared.acl import AccessControlList
from cloak.shared.errors import InvalidArgument, InvalidInputProof
from cloak.shared.protocol import ExternalHandle, FheType, Handle, UserRecord

logger = logging.getLogger(__name__)

# country, city, salary, birth year
ATTRIBUTE_TYPES = (FheType.EUINT32, FheType.EUINT32, FheType.EUINT64, FheType.EUINT16)


class EncryptedRegistry:
    """
    Stores one UserRecord per account.

    Records are only ever written by their own account and are never
    deleted. Registering again replaces the previous record.
    """

    def __init__(self):
        self._records: Dict[str, UserRecord] = {}

    def register(
        self,
        sender: str,
        username: str,
        inputs: Sequence[ExternalHandle],
        proof: bytes,
        fabric: CiphertextFabric,
        acl: AccessControlList,
        ledger_address: str,
    ) -> UserRecord:
        """
        Verify encrypted attributes and store them for ``sender``.

        All four inputs are verified before anything is written, so a bad
        proof leaves both the record and the ACL untouched. Verified inputs
        are consumed and cannot be registered a second time.

        Args:
            sender: Registering account
            username: Plaintext display name
            inputs: External handles for country, city, salary, birth year
            proof: Input proof covering the handles
            fabric: Fabric that converts external inputs into handles
            acl: Access-control list receiving self-access grants
            ledger_address: Address the proof must be bound to

        Returns:
            The stored record

        Raises:
            InvalidInputProof: If any input fails verification
        """
        if len(inputs) != len(ATTRIBUTE_TYPES):
            raise InvalidInputProof(
                f"Expected {len(ATTRIBUTE_TYPES)} encrypted inputs, got {len(inputs)}"
            )
        if not isinstance(username, str):
            raise InvalidArgument("username must be a string")

        handles: List[Handle] = [
            fabric.verify_input(external, proof, ledger_address, sender, expected_type=fhe_type)
            for external, fhe_type in zip(inputs, ATTRIBUTE_TYPES)
        ]
        fabric.consume_inputs(inputs)

        record = UserRecord(
            username=username,
            country=handles[0],
            city=handles[1],
            salary=handles[2],
            birth_year=handles[3],
            registered=True,
        )
        if sender in self._records and self._records[sender].registered:
            logger.info("Account %s re-registered, replacing its record", sender)
        self._records[sender] = record

        for handle in record.handles():
            acl.allow(handle, sender)
        return record

    def get(self, account: str) -> UserRecord:
        """Record for ``account``; an empty unregistered record if none exists."""
        return self._records.get(account, UserRecord())

    def copy(self) -> "EncryptedRegistry":
        clone = EncryptedRegistry()
        clone._records = dict(self._records)
        return clone

    def __len__(self) -> int:
        return len(self._records)
