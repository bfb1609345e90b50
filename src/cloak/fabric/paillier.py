"""
Paillier-backed fabric using LightPHE.

Every value is encrypted at rest. The fabric acts as the key-holding
coprocessor: AND is computed with homomorphic addition (two true bits sum
to 2), comparisons are evaluated by the coprocessor, and every result is
re-encrypted under a fresh ciphertext.
"""
from typing import Optional

from lightphe import LightPHE

from cloak.fabric.base import CiphertextFabric
from cloak.fabric.proof import InputVerifier
from cloak.shared.protocol import Handle


class PaillierFabric(CiphertextFabric):
    """Fabric whose ciphertexts are LightPHE Paillier ciphertexts."""

    name = "paillier"

    DEFAULT_KEY_SIZE = 2048  # bits

    def __init__(
        self,
        key_size: int = DEFAULT_KEY_SIZE,
        keys: Optional[dict] = None,
        verifier: Optional[InputVerifier] = None,
    ):
        """
        Initialize the fabric.

        Args:
            key_size: Paillier key size in bits (1024 is enough for tests)
            keys: Pre-existing key pair dict
            verifier: Input proof signer, generated if omitted
        """
        super().__init__(verifier)
        self.key_size = key_size
        self._cs = LightPHE(
            algorithm_name="Paillier",
            keys=keys,
            key_size=key_size,
        )

    def _encrypt(self, value: int):
        return self._cs.encrypt(int(value))

    def _decrypt(self, ciphertext) -> int:
        result = self._cs.decrypt(ciphertext)
        # LightPHE returns a list for tensor operations
        if isinstance(result, list):
            result = result[0]
        return int(result)

    def and_(self, lhs: Handle, rhs: Handle) -> Handle:
        self._expect_bools(lhs, rhs)
        total = self._ciphertext(lhs) + self._ciphertext(rhs)
        return self._encrypt_bool(self._decrypt(total) == 2, "and", lhs.digest, rhs.digest)
