"""Ciphertext fabrics, input proofs and the decryption gateway."""
from cloak.fabric.base import CiphertextFabric
from cloak.fabric.simulated import SimulatedFabric
from cloak.fabric.proof import InputVerifier
from cloak.fabric.gateway import DecryptionGateway

__all__ = [
    "CiphertextFabric",
    "SimulatedFabric",
    "InputVerifier",
    "DecryptionGateway",
]
