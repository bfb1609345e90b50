"""Tests for the simulated fabric, input proofs and the decryption gateway."""
from concurrent.futures import ThreadPoolExecutor

import pytest

from cloak.client.crypto import Account
from cloak.fabric.gateway import DecryptionGateway, decrypt_request_message
from cloak.fabric.proof import InputVerifier
from cloak.fabric.simulated import SimulatedFabric
from cloak.shared.acl import AccessControlList
from cloak.shared.errors import InvalidArgument, InvalidInputProof, Unauthorized
from cloak.shared.protocol import DecryptRequest, FheType, Handle


class TestOperators:
    """Homomorphic operators against a cleartext oracle."""

    @pytest.mark.parametrize("a,b", [(0, 0), (5, 7), (7, 5), (2**32 - 1, 2**32 - 1)])
    def test_comparisons(self, a, b):
        fabric = SimulatedFabric()
        lhs = fabric.as_trivial(a, FheType.EUINT32)
        rhs = fabric.as_trivial(b, FheType.EUINT32)

        assert fabric.reveal(fabric.eq(lhs, rhs)) is (a == b)
        assert fabric.reveal(fabric.ge(lhs, rhs)) is (a >= b)
        assert fabric.reveal(fabric.le(lhs, rhs)) is (a <= b)
        assert fabric.reveal(fabric.ge(lhs, b)) is (a >= b)

    def test_and_truth_table(self):
        fabric = SimulatedFabric()
        for a in (False, True):
            for b in (False, True):
                result = fabric.and_(fabric.as_trivial(a, FheType.EBOOL), fabric.as_trivial(b, FheType.EBOOL))
                assert fabric.reveal(result) is (a and b)

    def test_every_result_gets_a_fresh_handle(self):
        fabric = SimulatedFabric()
        x = fabric.as_trivial(3, FheType.EUINT16)

        first = fabric.eq(x, 3)
        second = fabric.eq(x, 3)

        assert first != second
        assert first.is_initialized and second.is_initialized
        assert len(first.digest) == 64

    def test_uninitialized_handle_is_zero(self):
        fabric = SimulatedFabric()
        zero = Handle.zero(FheType.EUINT64)

        assert fabric.reveal(fabric.eq(zero, 0)) is True
        assert fabric.reveal(fabric.le(zero, 0)) is True

    def test_type_mismatch(self):
        fabric = SimulatedFabric()
        a = fabric.as_trivial(1, FheType.EUINT16)
        b = fabric.as_trivial(1, FheType.EUINT32)

        with pytest.raises(InvalidArgument, match="types differ"):
            fabric.eq(a, b)
        with pytest.raises(InvalidArgument, match="ebool"):
            fabric.and_(a, fabric.true())
        with pytest.raises(InvalidArgument):
            fabric.ge(fabric.true(), 1)

    def test_scalar_out_of_range(self):
        fabric = SimulatedFabric()
        a = fabric.as_trivial(1, FheType.EUINT16)

        with pytest.raises(InvalidArgument):
            fabric.le(a, 2**16)

    def test_unknown_handle(self):
        fabric = SimulatedFabric()
        stranger = SimulatedFabric().as_trivial(1, FheType.EUINT16)

        with pytest.raises(InvalidArgument, match="Unknown"):
            fabric.eq(stranger, 1)

    def test_fractional_scalar(self):
        fabric = SimulatedFabric()
        a = fabric.as_trivial(1, FheType.EUINT16)

        with pytest.raises(InvalidArgument, match="integer"):
            fabric.ge(a, 0.5)
        with pytest.raises(InvalidArgument, match="integer"):
            fabric.as_trivial(1.0, FheType.EUINT16)


class TestBookkeeping:
    """Handle table maintenance."""

    def test_scope_discards_handles_on_error(self):
        fabric = SimulatedFabric()
        kept = fabric.as_trivial(1, FheType.EUINT16)

        with pytest.raises(RuntimeError):
            with fabric.scope() as created:
                fabric.eq(kept, 1)
                raise RuntimeError("abort")

        assert len(created) == 1
        assert fabric.ciphertext_count == 1
        assert fabric.reveal(kept) == 1

    def test_scope_keeps_handles_on_success(self):
        fabric = SimulatedFabric()

        with fabric.scope() as created:
            handle = fabric.true()

        assert created == [handle.digest]
        assert fabric.reveal(handle) is True

    def test_concurrent_encryption_yields_unique_handles(self):
        fabric = SimulatedFabric()

        def encrypt(i):
            bundle = fabric.encrypt_inputs("0xledger", "0xalice", [(FheType.EUINT16, i)] * 4)
            return [h.digest for h in bundle.handles]

        with ThreadPoolExecutor(max_workers=8) as pool:
            digests = [d for batch in pool.map(encrypt, range(100)) for d in batch]

        assert len(set(digests)) == 400


class TestInputProofs:
    """Input encryption and verification."""

    def test_verified_input_keeps_value(self):
        fabric = SimulatedFabric()
        bundle = fabric.encrypt_inputs("0xledger", "0xalice", [(FheType.EUINT64, 123456)])

        handle = fabric.verify_input(bundle[0], bundle.proof, "0xledger", "0xalice")

        assert handle.fhe_type is FheType.EUINT64
        assert handle.digest != bundle[0].digest
        assert fabric.reveal(handle) == 123456

    def test_binding_is_case_insensitive(self):
        fabric = SimulatedFabric()
        bundle = fabric.encrypt_inputs("0xABCD", "0xAlice", [(FheType.EUINT16, 1)])

        fabric.verify_input(bundle[0], bundle.proof, "0xabcd", "0xalice")

    def test_proof_from_other_verifier(self):
        fabric = SimulatedFabric()
        forger = SimulatedFabric(verifier=InputVerifier())
        bundle = fabric.encrypt_inputs("0xledger", "0xalice", [(FheType.EUINT16, 1)])
        forged = forger.verifier.issue("0xledger", "0xalice", [bundle[0].digest])

        with pytest.raises(InvalidInputProof, match="signature"):
            fabric.verify_input(bundle[0], forged, "0xledger", "0xalice")

    def test_malformed_proof(self):
        fabric = SimulatedFabric()
        bundle = fabric.encrypt_inputs("0xledger", "0xalice", [(FheType.EUINT16, 1)])

        with pytest.raises(InvalidInputProof, match="Malformed"):
            fabric.verify_input(bundle[0], b"not a proof", "0xledger", "0xalice")

    def test_out_of_range_input(self):
        fabric = SimulatedFabric()

        with pytest.raises(InvalidArgument):
            fabric.encrypt_inputs("0xledger", "0xalice", [(FheType.EUINT16, 70000)])


class TestGateway:
    """User decryption through the gateway."""

    def _setup(self):
        fabric = SimulatedFabric()
        acl = AccessControlList()
        gateway = DecryptionGateway(fabric, lambda: acl)
        return fabric, acl, gateway

    def _request(self, account: Account, handles, signer: Account = None) -> DecryptRequest:
        signer = signer or account
        message = decrypt_request_message(account.address, [h.digest for h in handles])
        return DecryptRequest(
            account=account.address,
            public_key_pem=signer.public_key_pem,
            handles=tuple(handles),
            signature=signer.sign(message),
        )

    def test_granted_handle(self):
        fabric, acl, gateway = self._setup()
        alice = Account()
        handle = fabric.as_trivial(42, FheType.EUINT32)
        acl.allow(handle, alice.address)

        assert gateway.user_decrypt(self._request(alice, [handle])) == [42]

    def test_missing_grant(self):
        fabric, acl, gateway = self._setup()
        alice = Account()
        handle = fabric.as_trivial(42, FheType.EUINT32)

        with pytest.raises(Unauthorized):
            gateway.user_decrypt(self._request(alice, [handle]))

    def test_one_missing_grant_denies_the_whole_request(self):
        fabric, acl, gateway = self._setup()
        alice = Account()
        mine = fabric.as_trivial(1, FheType.EUINT16)
        theirs = fabric.as_trivial(2, FheType.EUINT16)
        acl.allow(mine, alice.address)

        with pytest.raises(Unauthorized):
            gateway.user_decrypt(self._request(alice, [mine, theirs]))

    def test_impersonation(self):
        """Signing with another key than the account's is rejected."""
        fabric, acl, gateway = self._setup()
        alice = Account()
        mallory = Account()
        handle = fabric.as_trivial(42, FheType.EUINT32)
        acl.allow(handle, alice.address)

        with pytest.raises(Unauthorized, match="does not match"):
            gateway.user_decrypt(self._request(alice, [handle], signer=mallory))

    def test_signature_covers_handles(self):
        fabric, acl, gateway = self._setup()
        alice = Account()
        granted = fabric.as_trivial(1, FheType.EUINT16)
        other = fabric.as_trivial(2, FheType.EUINT16)
        acl.allow(granted, alice.address)
        acl.allow(other, alice.address)

        request = self._request(alice, [granted])
        swapped = DecryptRequest(
            account=request.account,
            public_key_pem=request.public_key_pem,
            handles=(other,),
            signature=request.signature,
        )

        with pytest.raises(Unauthorized, match="signature"):
            gateway.user_decrypt(swapped)

    def test_uninitialized_handle_is_never_decryptable(self):
        fabric, acl, gateway = self._setup()
        alice = Account()

        with pytest.raises(Unauthorized):
            gateway.user_decrypt(self._request(alice, [Handle.zero(FheType.EBOOL)]))
        with pytest.raises(ValueError):
            acl.allow(Handle.zero(FheType.EBOOL), alice.address)
