"""Shared fixtures."""
import pytest

from cloak.client.crypto import CryptoClient
from cloak.fabric.gateway import DecryptionGateway
from cloak.fabric.simulated import SimulatedFabric
from cloak.server.ledger import EligibilityLedger


@pytest.fixture
def fabric():
    return SimulatedFabric()


@pytest.fixture
def ledger(fabric):
    return EligibilityLedger(fabric)


@pytest.fixture
def gateway(ledger):
    return DecryptionGateway(ledger.fabric, lambda: ledger.acl)


@pytest.fixture
def make_client(ledger, gateway):
    """Factory for clients with fresh accounts."""
    def _make() -> CryptoClient:
        return CryptoClient(ledger.fabric, gateway, ledger.address)
    return _make


@pytest.fixture
def register(ledger):
    """Register a client's profile on the ledger."""
    def _register(client, country, city, salary, birth_year, username="user"):
        bundle = client.encrypt_profile(country, city, salary, birth_year)
        ledger.register_bundle(client.address, username, bundle)
        return bundle
    return _register
