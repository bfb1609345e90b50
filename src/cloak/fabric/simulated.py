"""
Cleartext-oracle fabric for tests and local development.

Plaintexts are kept in a private table behind opaque handles, so the
ledger sees exactly what it would see with a real fabric.
"""
from cloak.fabric.base import CiphertextFabric


class SimulatedFabric(CiphertextFabric):
    """Fabric that stores plaintexts as-is behind handles."""

    name = "simulated"

    def _encrypt(self, value: int) -> int:
        return int(value)

    def _decrypt(self, ciphertext: int) -> int:
        return int(ciphertext)
