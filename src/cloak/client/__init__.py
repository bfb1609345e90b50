"""Client-side components for confidential eligibility matching."""
from cloak.client.crypto import Account, CryptoClient, EncryptedInput

__all__ = ["Account", "CryptoClient", "EncryptedInput"]
