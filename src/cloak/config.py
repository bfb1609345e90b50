"""
Runtime configuration read from the environment.
"""
import logging
import os
from dataclasses import dataclass

from cloak.fabric.base import CiphertextFabric
from cloak.fabric.simulated import SimulatedFabric
from cloak.server.ledger import DEFAULT_LEDGER_ADDRESS

FABRICS = ("simulated", "paillier")


@dataclass
class Settings:
    """Server settings."""
    fabric: str = "simulated"
    key_size: int = 2048
    ledger_address: str = DEFAULT_LEDGER_ADDRESS
    host: str = "127.0.0.1"
    port: int = 8000
    log_level: str = "INFO"
    # Serve POST /inputs/encrypt, which receives plaintext attributes
    dev_encryption: bool = False

    def __post_init__(self):
        if self.fabric not in FABRICS:
            raise ValueError(f"Unknown fabric {self.fabric!r}, expected one of {FABRICS}")

    @classmethod
    def from_env(cls) -> "Settings":
        return cls(
            fabric=os.getenv("CLOAK_FABRIC", "simulated").lower(),
            key_size=int(os.getenv("CLOAK_KEY_SIZE", "2048")),
            ledger_address=os.getenv("CLOAK_LEDGER_ADDRESS", DEFAULT_LEDGER_ADDRESS),
            host=os.getenv("CLOAK_HOST", "127.0.0.1"),
            port=int(os.getenv("CLOAK_PORT", "8000")),
            log_level=os.getenv("CLOAK_LOG_LEVEL", "INFO").upper(),
            dev_encryption=os.getenv("CLOAK_DEV_ENCRYPTION", "").lower() in ("1", "true", "yes"),
        )


def build_fabric(settings: Settings) -> CiphertextFabric:
    """Construct the fabric named in ``settings``."""
    if settings.fabric == "paillier":
        from cloak.fabric.paillier import PaillierFabric
        return PaillierFabric(key_size=settings.key_size)
    return SimulatedFabric()


def configure_logging(level: str = "INFO") -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
