"""
Access-control list for ciphertext handles.

A grant authorizes one account to decrypt one handle through the
decryption gateway. Grants are never revoked.
"""
from typing import Dict, FrozenSet, List

from cloak.shared.protocol import Handle


class AccessControlList:
    """Explicit mapping of (handle, account) -> may decrypt."""

    def __init__(self):
        self._grants: Dict[str, FrozenSet[str]] = {}

    def allow(self, handle: Handle, account: str) -> None:
        """
        Grant ``account`` decrypt access to ``handle``.

        Args:
            handle: Initialized ciphertext handle
            account: Account address being authorized
        """
        if not handle.is_initialized:
            raise ValueError("Cannot grant access to an uninitialized handle")
        self._grants[handle.digest] = self._grants.get(handle.digest, frozenset()) | {account}

    def is_allowed(self, handle: Handle, account: str) -> bool:
        return account in self._grants.get(handle.digest, ())

    def accounts_for(self, handle: Handle) -> List[str]:
        return sorted(self._grants.get(handle.digest, ()))

    def grants_for(self, account: str) -> List[str]:
        """Digests of all handles ``account`` may decrypt."""
        return sorted(d for d, accounts in self._grants.items() if account in accounts)

    def copy(self) -> "AccessControlList":
        """Independent list sharing the current grant sets."""
        clone = AccessControlList()
        clone._grants = dict(self._grants)
        return clone

    def __len__(self) -> int:
        return sum(len(accounts) for accounts in self._grants.values())
