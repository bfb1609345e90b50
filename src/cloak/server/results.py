"""
Application results: (application, applicant) -> latest encrypted verdict.
"""
from typing import Dict, List, Tuple

from cloak.shared.errors import NotFound
from cloak.shared.protocol import Handle


class ApplicationResultStore:
    """Keeps only the most recent result handle per pair."""

    def __init__(self):
        self._results: Dict[Tuple[int, str], Handle] = {}

    def put(self, app_id: int, applicant: str, result: Handle) -> None:
        self._results[(app_id, applicant)] = result

    def get(self, app_id: int, account: str) -> Handle:
        """
        Stored handle for the pair.

        No authorization is checked here: handles are public references,
        decryption is gated by the ACL.
        """
        try:
            return self._results[(int(app_id), account)]
        except (KeyError, TypeError, ValueError):
            raise NotFound(f"No result for application {app_id} and account {account}")

    def applicants(self, app_id: int) -> List[str]:
        return sorted(account for (aid, account) in self._results if aid == app_id)

    def copy(self) -> "ApplicationResultStore":
        clone = ApplicationResultStore()
        clone._results = dict(self._results)
        return clone

    def __len__(self) -> int:
        return len(self._results)
