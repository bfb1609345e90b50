"""Tests for the HTTP surface."""
import base64
import json

import pytest
from fastapi.testclient import TestClient

from cloak.client.crypto import CryptoClient
from cloak.config import Settings
from cloak.fabric.gateway import DecryptionGateway, decrypt_request_message
from cloak.fabric.simulated import SimulatedFabric
from cloak.server.api import create_app
from cloak.server.ledger import EligibilityLedger

BOUNDS = ("country_id", "city_id", "min_salary", "max_salary", "min_birth_year", "max_birth_year")


@pytest.fixture
def ledger():
    return EligibilityLedger(SimulatedFabric())


@pytest.fixture
def api(ledger):
    return TestClient(create_app(ledger=ledger))


@pytest.fixture
def new_client(ledger):
    """Factory for clients that encrypt on their own side of the wire."""
    gateway = DecryptionGateway(ledger.fabric, lambda: ledger.acl)

    def _make() -> CryptoClient:
        return CryptoClient(ledger.fabric, gateway, ledger.address)
    return _make


def _bundle_body(bundle, username):
    return {
        "username": username,
        "handles": [
            {"handle": f"0x{h.digest}", "fhe_type": h.fhe_type.value, "index": h.index}
            for h in bundle.handles
        ],
        "proof_b64": base64.b64encode(bundle.proof).decode(),
    }


def _register_headers(client: CryptoClient, body):
    digests = [h["handle"][2:] for h in body["handles"]]
    return client.signed_headers("register", body["username"], *digests, body["proof_b64"])


def _register(api, client: CryptoClient, username="alice", profile=(86, 1001, 100000, 1995)):
    body = _bundle_body(client.encrypt_profile(*profile), username)
    return api.post("/users/register", json=body, headers=_register_headers(client, body))


def _create(api, client: CryptoClient, **criteria):
    body = {name: criteria.get(name, 0) for name in BOUNDS}
    headers = client.signed_headers("create_application", *(body[name] for name in BOUNDS))
    return api.post("/applications", json=body, headers=headers)


def _submit(api, client: CryptoClient, app_id):
    headers = client.signed_headers("submit_application", app_id)
    return api.post(f"/applications/{app_id}/submit", headers=headers)


def _close(api, client: CryptoClient, app_id):
    headers = client.signed_headers("close_application", app_id)
    return api.post(f"/applications/{app_id}/close", headers=headers)


def _decrypt(api, client: CryptoClient, handles):
    digests = [h["handle"][2:] for h in handles]
    signature = client.account.sign(decrypt_request_message(client.address, digests))
    return api.post("/decrypt", json={
        "account": client.address,
        "public_key_pem": client.account.public_key_pem,
        "handles": handles,
        "signature_b64": base64.b64encode(signature).decode(),
    })


def _tamper_proof(proof_b64: str) -> str:
    document = json.loads(base64.b64decode(proof_b64))
    signature = bytearray(base64.b64decode(document["signature"]))
    signature[-1] ^= 0x01
    document["signature"] = base64.b64encode(bytes(signature)).decode()
    return base64.b64encode(json.dumps(document).encode()).decode()


class TestApi:
    """Full flow over HTTP."""

    def test_health(self, api):
        response = api.get("/health")

        assert response.status_code == 200
        assert response.json()["fabric"] == "simulated"
        assert response.json()["next_app_id"] == 0

    def test_register_apply_decrypt(self, api, new_client):
        alice = new_client()
        bob = new_client()

        assert _register(api, alice).status_code == 200
        user = api.get(f"/users/{alice.address}").json()
        assert user["registered"] is True
        assert user["username"] == "alice"

        created = _create(api, bob, country_id=86, min_birth_year=1980, max_birth_year=2000)
        app_id = created.json()["app_id"]
        assert api.get("/applications/next-id").json() == {"next_app_id": 1}
        assert api.get(f"/applications/{app_id}").json()["creator"] == bob.address

        submitted = _submit(api, alice, app_id)
        assert submitted.status_code == 200
        stored = api.get(f"/applications/{app_id}/results/{alice.address}").json()
        assert stored == submitted.json()

        assert _decrypt(api, alice, [stored]).json() == {"values": [True]}
        denied = _decrypt(api, bob, [stored])
        assert denied.status_code == 403
        assert denied.json()["error"] == "Unauthorized"

    def test_tampered_proof_is_rejected(self, api, new_client):
        alice = new_client()
        body = _bundle_body(alice.encrypt_profile(1, 101, 1, 1990), "alice")
        body["proof_b64"] = _tamper_proof(body["proof_b64"])

        response = api.post("/users/register", json=body, headers=_register_headers(alice, body))

        assert response.status_code == 400
        assert response.json()["error"] == "InvalidInputProof"
        assert api.get(f"/users/{alice.address}").json()["registered"] is False

    def test_bundle_of_another_account_is_rejected(self, api, new_client):
        alice = new_client()
        mallory = new_client()
        body = _bundle_body(alice.encrypt_profile(1, 101, 1, 1990), "mallory")

        response = api.post("/users/register", json=body, headers=_register_headers(mallory, body))

        assert response.status_code == 400
        assert response.json()["error"] == "InvalidInputProof"
        assert api.get(f"/users/{mallory.address}").json()["registered"] is False

    def test_error_mapping(self, api, new_client):
        alice = new_client()
        bob = new_client()
        app_id = _create(api, bob).json()["app_id"]

        assert api.get("/applications/99").status_code == 404
        assert api.get(f"/applications/{app_id}/results/{alice.address}").status_code == 404
        unregistered = _submit(api, alice, app_id)
        assert unregistered.status_code == 409
        assert unregistered.json()["error"] == "NotRegistered"
        assert _close(api, alice, app_id).status_code == 403

        assert _close(api, bob, app_id).json()["closed"] is True
        _register(api, alice)
        closed = _submit(api, alice, app_id)
        assert closed.status_code == 409
        assert closed.json()["error"] == "ApplicationInactive"

    @pytest.mark.parametrize("criteria", [
        {"min_salary": 200, "max_salary": 100},
        {"min_birth_year": 2000, "max_birth_year": 1990},
        {"country_id": 1, "city_id": 201},
        {"country_id": -1},
    ])
    def test_criteria_validation_in_calling_layer(self, api, new_client, criteria):
        response = _create(api, new_client(), **criteria)

        assert response.status_code == 422
        assert api.get("/applications/next-id").json() == {"next_app_id": 0}

    def test_missing_credentials(self, api):
        assert api.post("/applications", json={}).status_code == 422


class TestSignedRequests:
    """Mutating requests must be signed by the account they act for."""

    def test_forged_account_header(self, api, new_client):
        """A caller without alice's key cannot overwrite her record."""
        alice = new_client()
        mallory = new_client()
        assert _register(api, alice).status_code == 200

        body = _bundle_body(mallory.encrypt_profile(1, 101, 1, 1990), "pwned")
        headers = _register_headers(mallory, body)
        headers["X-Account"] = alice.address
        response = api.post("/users/register", json=body, headers=headers)

        assert response.status_code == 403
        assert response.json()["error"] == "Unauthorized"
        assert api.get(f"/users/{alice.address}").json()["username"] == "alice"

    def test_forged_account_header_cannot_close(self, api, new_client):
        bob = new_client()
        mallory = new_client()
        app_id = _create(api, bob).json()["app_id"]

        headers = mallory.signed_headers("close_application", app_id)
        headers["X-Account"] = bob.address
        response = api.post(f"/applications/{app_id}/close", headers=headers)

        assert response.status_code == 403
        assert api.get(f"/applications/{app_id}").json()["active"] is True

    def test_signature_covers_arguments(self, api, new_client):
        """A signature for one application cannot be used to submit to another."""
        alice = new_client()
        bob = new_client()
        _register(api, alice)
        first = _create(api, bob).json()["app_id"]
        second = _create(api, bob).json()["app_id"]

        headers = alice.signed_headers("submit_application", first)
        response = api.post(f"/applications/{second}/submit", headers=headers)

        assert response.status_code == 403
        assert api.get(f"/applications/{second}/results/{alice.address}").status_code == 404

    def test_replayed_request(self, api, new_client):
        bob = new_client()
        headers = bob.signed_headers("create_application", 0, 0, 0, 0, 0, 0)
        body = {name: 0 for name in BOUNDS}

        assert api.post("/applications", json=body, headers=headers).status_code == 200
        replay = api.post("/applications", json=body, headers=headers)

        assert replay.status_code == 403
        assert api.get("/applications/next-id").json() == {"next_app_id": 1}

    def test_mixed_case_account_header(self, api, new_client):
        """The account header is case-insensitive and maps to one record."""
        alice = new_client()
        body = _bundle_body(alice.encrypt_profile(1, 101, 1, 1990), "alice")
        headers = _register_headers(alice, body)
        headers["X-Account"] = alice.address.upper()

        assert api.post("/users/register", json=body, headers=headers).status_code == 200
        assert api.get(f"/users/{alice.address}").json()["registered"] is True


class TestServerSideEncryption:
    """POST /inputs/encrypt is a development aid, disabled by default."""

    def _profile(self):
        return {"country": 1, "city": 101, "salary": 1, "birth_year": 1990}

    def _headers(self, client: CryptoClient, profile):
        return client.signed_headers(
            "encrypt", profile["country"], profile["city"], profile["salary"], profile["birth_year"]
        )

    def test_disabled_by_default(self, api, new_client):
        alice = new_client()
        profile = self._profile()

        response = api.post("/inputs/encrypt", json=profile, headers=self._headers(alice, profile))

        assert response.status_code == 404

    def test_enabled_for_development(self, ledger, new_client):
        api = TestClient(create_app(
            ledger=ledger,
            settings=Settings(ledger_address=ledger.address, dev_encryption=True),
        ))
        alice = new_client()
        profile = self._profile()

        bundle = api.post("/inputs/encrypt", json=profile, headers=self._headers(alice, profile)).json()
        body = {"username": "alice", "handles": bundle["handles"], "proof_b64": bundle["proof_b64"]}
        response = api.post("/users/register", json=body, headers=_register_headers(alice, body))

        assert response.status_code == 200
        assert ledger.get_user(alice.address)[5] is True

    def test_enabled_endpoint_still_requires_a_signature(self, ledger, new_client):
        api = TestClient(create_app(
            ledger=ledger,
            settings=Settings(ledger_address=ledger.address, dev_encryption=True),
        ))
        alice = new_client()
        mallory = new_client()
        profile = self._profile()
        headers = self._headers(mallory, profile)
        headers["X-Account"] = alice.address

        assert api.post("/inputs/encrypt", json=profile, headers=headers).status_code == 403
