"""Tests for credsync.reconciler — lifecycle and secret drift detection."""

from __future__ import annotations

import pytest

from credsync.errors import InvalidKey, NotFound, RemoteRejected, ReplaceFailed, Unavailable
from credsync.fingerprint import FINGERPRINT_LENGTH, fingerprint
from credsync.harness import (
    attr_absent,
    attr_equals,
    check_destroyed,
    compose,
    exists,
    fingerprint_shape,
)
from credsync.keys import StoreKeyring
from credsync.models import Action, CredentialState, SshPrivateKeyConfig
from credsync.reconciler import Reconciler

NAME = "Dr Jekyll"
DESC = "my best description"
USERNAME = "my-user"
UPDATE = "some magic update string"


def _config(store_id, private_key, passphrase=None, suffix=""):
    return SshPrivateKeyConfig(
        credential_store_id=store_id,
        name=NAME + suffix,
        description=DESC + suffix,
        username=USERNAME + suffix,
        private_key=private_key,
        private_key_passphrase=passphrase,
    )


class TestCreate:
    """Scenario A: create with a private key and no passphrase."""

    def test_create_state(self, reconciler, gateway, rsa_pem, store_id):
        result = reconciler.apply(_config(store_id, rsa_pem, ""), None)

        assert result.action == Action.CREATE
        attrs = result.state.to_attributes()
        compose(
            attr_equals("name", NAME),
            attr_equals("description", DESC),
            attr_equals("username", USERNAME),
            fingerprint_shape(passphrase_set=False),
            attr_absent("private_key_passphrase_hmac"),
            exists(gateway),
        )(attrs)
        assert gateway.calls["create"] == 1

    def test_state_never_holds_plaintext(self, reconciler, rsa_pem, store_id, passphrase):
        result = reconciler.apply(_config(store_id, rsa_pem, passphrase), None)
        attrs = result.state.to_attributes()
        assert "private_key" not in attrs
        assert "private_key_passphrase" not in attrs
        for value in attrs.values():
            assert rsa_pem not in value
            assert passphrase not in value

    def test_fingerprint_uses_store_key(self, reconciler, store_key, rsa_pem, store_id):
        result = reconciler.apply(_config(store_id, rsa_pem), None)
        assert result.state.fingerprint("private_key") == fingerprint(store_key, rsa_pem)

    def test_create_sends_secret(self, reconciler, gateway, rsa_pem, store_id):
        result = reconciler.apply(_config(store_id, rsa_pem), None)
        assert gateway.secrets_of(result.state.id) == {"private_key": rsa_pem}
        sent = gateway.sent("create")[0].attrs
        assert sent["private_key"] == "<redacted>"
        assert "private_key_passphrase" not in sent

    def test_rejected_create_has_no_state(self, reconciler, gateway, rsa_pem, store_id):
        gateway.reject_next("Invalid request: private key is malformed")
        with pytest.raises(RemoteRejected, match="malformed"):
            reconciler.apply(_config(store_id, rsa_pem), None)
        assert gateway.calls["create"] == 1

    def test_unavailable_create_propagates(self, reconciler, gateway, rsa_pem, store_id):
        gateway.fail_next()
        with pytest.raises(Unavailable):
            reconciler.apply(_config(store_id, rsa_pem), None)

    def test_unknown_store_key(self, gateway, rsa_pem, store_id):
        rec = Reconciler(gateway, StoreKeyring({}))
        with pytest.raises(InvalidKey):
            rec.apply(_config(store_id, rsa_pem), None)
        # Fingerprints are computed before any gateway call
        assert gateway.calls["create"] == 0


class TestNoop:
    def test_reapply_makes_no_update(self, reconciler, gateway, rsa_pem, store_id, passphrase):
        first = reconciler.apply(_config(store_id, rsa_pem, passphrase), None)
        second = reconciler.apply(_config(store_id, rsa_pem, passphrase), first.state)

        assert second.action == Action.NOOP
        assert second.state is first.state
        assert gateway.calls["update"] == 0

    def test_reapply_after_state_round_trip(self, reconciler, gateway, rsa_pem, store_id):
        first = reconciler.apply(_config(store_id, rsa_pem), None)
        restored = CredentialState.from_attributes(first.state.to_attributes())
        second = reconciler.apply(_config(store_id, rsa_pem), restored)
        assert second.action == Action.NOOP
        assert gateway.calls["update"] == 0

    def test_many_reapplies(self, reconciler, gateway, rsa_pem, store_id):
        state = reconciler.apply(_config(store_id, rsa_pem), None).state
        for _ in range(5):
            state = reconciler.apply(_config(store_id, rsa_pem), state).state
        assert gateway.calls == {"create": 1}

    def test_empty_and_none_passphrase_equivalent(self, reconciler, gateway, rsa_pem, store_id):
        state = reconciler.apply(_config(store_id, rsa_pem, None), None).state
        result = reconciler.apply(_config(store_id, rsa_pem, ""), state)
        assert result.action == Action.NOOP


class TestUpdate:
    """Scenario B: new encrypted key plus a passphrase."""

    def test_update_with_new_secret(
        self, reconciler, gateway, rsa_pem, encrypted_pem, store_id, passphrase
    ):
        created = reconciler.apply(_config(store_id, rsa_pem, ""), None).state
        config = _config(store_id, encrypted_pem, passphrase, suffix=UPDATE)
        result = reconciler.apply(config, created)

        assert result.action == Action.UPDATE
        state = result.state
        assert state.id == created.id
        assert state.fingerprint("private_key") != created.fingerprint("private_key")
        assert len(state.fingerprint("private_key_passphrase")) == FINGERPRINT_LENGTH
        compose(
            attr_equals("name", NAME + UPDATE),
            attr_equals("description", DESC + UPDATE),
            attr_equals("username", USERNAME + UPDATE),
            fingerprint_shape(passphrase_set=True),
            exists(gateway),
        )(state.to_attributes())

        assert gateway.calls["update"] == 1
        assert gateway.secrets_of(state.id) == {
            "private_key": encrypted_pem,
            "private_key_passphrase": passphrase,
        }

    def test_plain_change_does_not_resend_secret(self, reconciler, gateway, rsa_pem, store_id):
        created = reconciler.apply(_config(store_id, rsa_pem), None).state
        result = reconciler.apply(_config(store_id, rsa_pem, suffix=" v2"), created)

        assert result.action == Action.UPDATE
        assert result.plan.changed_plain == ["name", "description", "username"]
        assert result.plan.changed_sensitive == []
        sent = gateway.sent("update")[0].attrs
        assert "private_key" not in sent
        assert "private_key_passphrase" not in sent
        assert result.state.fingerprint("private_key") == created.fingerprint("private_key")

    def test_only_changed_secret_is_sent(self, reconciler, gateway, rsa_pem, store_id):
        created = reconciler.apply(_config(store_id, rsa_pem, "old-pass"), None).state
        reconciler.apply(_config(store_id, rsa_pem, "new-pass"), created)

        sent = gateway.sent("update")[0].attrs
        assert "private_key" not in sent
        assert sent["private_key_passphrase"] == "<redacted>"

    def test_update_bumps_version(self, reconciler, rsa_pem, store_id):
        created = reconciler.apply(_config(store_id, rsa_pem), None).state
        updated = reconciler.apply(_config(store_id, rsa_pem, suffix="x"), created).state
        assert updated.version == created.version + 1

    def test_failed_update_keeps_prior(
        self, reconciler, gateway, rsa_pem, encrypted_pem, store_id, passphrase
    ):
        created = reconciler.apply(_config(store_id, rsa_pem), None).state
        before = created.to_attributes()
        gateway.reject_next("private key: unable to parse")
        with pytest.raises(RemoteRejected):
            reconciler.apply(_config(store_id, encrypted_pem, passphrase), created)
        assert created.to_attributes() == before

        # The old fingerprint is still authoritative, so the change is retried
        retry = reconciler.apply(_config(store_id, encrypted_pem, passphrase), created)
        assert retry.action == Action.UPDATE
        assert retry.plan.changed_sensitive == ["private_key", "private_key_passphrase"]

    def test_key_rotation_resends(self, gateway, rsa_pem, store_id):
        first = Reconciler(gateway, StoreKeyring({store_id: b"1" * 32}))
        state = first.apply(_config(store_id, rsa_pem), None).state

        rotated = Reconciler(gateway, StoreKeyring({store_id: b"2" * 32}))
        result = rotated.apply(_config(store_id, rsa_pem), state)
        assert result.action == Action.UPDATE
        assert result.plan.changed_sensitive == ["private_key"]

    def test_vanished_during_update(self, reconciler, gateway, rsa_pem, store_id):
        created = reconciler.apply(_config(store_id, rsa_pem), None).state
        gateway.remove(created.id)
        result = reconciler.apply(_config(store_id, rsa_pem, suffix="x"), created)
        assert result.action == Action.UPDATE
        assert result.state is None


class TestPassphraseRemoval:
    def test_removal_clears_remote_and_fingerprint(
        self, reconciler, gateway, encrypted_pem, store_id, passphrase
    ):
        created = reconciler.apply(_config(store_id, encrypted_pem, passphrase), None).state
        assert created.fingerprint("private_key_passphrase")

        result = reconciler.apply(_config(store_id, encrypted_pem, None), created)
        assert result.action == Action.UPDATE
        assert result.plan.changed_sensitive == ["private_key_passphrase"]
        assert gateway.sent("update")[0].attrs["private_key_passphrase"] is None
        assert result.state.fingerprint("private_key_passphrase") is None
        assert "private_key_passphrase_hmac" not in result.state.to_attributes()
        assert gateway.secrets_of(created.id) == {"private_key": encrypted_pem}

    def test_reapply_after_removal_is_noop(self, reconciler, encrypted_pem, store_id, passphrase):
        created = reconciler.apply(_config(store_id, encrypted_pem, passphrase), None).state
        removed = reconciler.apply(_config(store_id, encrypted_pem, ""), created).state
        assert reconciler.apply(_config(store_id, encrypted_pem, ""), removed).action == Action.NOOP


class TestReplace:
    def test_store_change_replaces(self, gateway, rsa_pem, store_id):
        ring = StoreKeyring({store_id: b"1" * 32, "csst_other": b"2" * 32})
        rec = Reconciler(gateway, ring)
        created = rec.apply(_config(store_id, rsa_pem), None).state

        result = rec.apply(_config("csst_other", rsa_pem), created)
        assert result.action == Action.REPLACE
        assert result.state.id != created.id
        assert result.state.credential_store_id == "csst_other"
        check_destroyed(gateway, [created.id])

    def test_failed_create_after_delete_raises_replace_failed(self, gateway, rsa_pem, store_id):
        ring = StoreKeyring({store_id: b"1" * 32, "csst_other": b"2" * 32})
        rec = Reconciler(gateway, ring)
        created = rec.apply(_config(store_id, rsa_pem), None).state

        gateway.reject_next("bad key")
        with pytest.raises(ReplaceFailed) as exc_info:
            rec.apply(_config("csst_other", rsa_pem), created)
        assert exc_info.value.old_id == created.id
        assert isinstance(exc_info.value.__cause__, RemoteRejected)
        check_destroyed(gateway, [created.id])

        # Starting over from no state creates in the new store
        result = rec.apply(_config("csst_other", rsa_pem), None)
        assert result.action == Action.CREATE
        assert result.state.credential_store_id == "csst_other"

    def test_failed_delete_keeps_prior(self, gateway, rsa_pem, store_id):
        ring = StoreKeyring({store_id: b"1" * 32, "csst_other": b"2" * 32})
        rec = Reconciler(gateway, ring)
        created = rec.apply(_config(store_id, rsa_pem), None).state

        gateway.fail_next()
        with pytest.raises(Unavailable):
            rec.apply(_config("csst_other", rsa_pem), created)
        exists(gateway)(created.to_attributes())
        assert gateway.calls["create"] == 1


class TestRefresh:
    def test_refresh_keeps_fingerprints(self, reconciler, rsa_pem, store_id):
        created = reconciler.apply(_config(store_id, rsa_pem), None).state
        refreshed = reconciler.refresh(created)
        assert refreshed.fingerprints == created.fingerprints
        assert refreshed.to_attributes() == created.to_attributes()

    def test_refresh_detects_plain_drift(self, reconciler, gateway, rsa_pem, store_id):
        created = reconciler.apply(_config(store_id, rsa_pem), None).state
        gateway.update(created.id, {"name": "renamed elsewhere"})

        refreshed = reconciler.refresh(created)
        assert refreshed.name == "renamed elsewhere"
        result = reconciler.apply(_config(store_id, rsa_pem), refreshed)
        assert result.action == Action.UPDATE
        assert result.plan.changed_plain == ["name"]
        assert result.state.name == NAME

    def test_refresh_not_found_clears_state(self, reconciler, gateway, rsa_pem, store_id):
        created = reconciler.apply(_config(store_id, rsa_pem), None).state
        gateway.remove(created.id)

        assert reconciler.refresh(created) is None
        # With no state, the next apply recreates
        result = reconciler.apply(_config(store_id, rsa_pem), None)
        assert result.action == Action.CREATE
        assert gateway.calls["create"] == 2


class TestDestroy:
    """Scenario C: destroyed credentials read back as NotFound."""

    def test_destroy(self, reconciler, gateway, rsa_pem, store_id):
        created = reconciler.apply(_config(store_id, rsa_pem), None).state
        reconciler.destroy(created)
        check_destroyed(gateway, [created.id])
        with pytest.raises(NotFound):
            gateway.read(created.id)

    def test_destroy_is_idempotent(self, reconciler, gateway, rsa_pem, store_id):
        created = reconciler.apply(_config(store_id, rsa_pem), None).state
        reconciler.destroy(created)
        reconciler.destroy(created)
        assert gateway.calls["delete"] == 2

    def test_destroy_unavailable_propagates(self, reconciler, gateway, rsa_pem, store_id):
        created = reconciler.apply(_config(store_id, rsa_pem), None).state
        gateway.fail_next()
        with pytest.raises(Unavailable):
            reconciler.destroy(created)
        exists(gateway)(created.to_attributes())


class TestImport:
    """Scenario D: import from a remote id only."""

    def test_import_populates_plain_attributes(self, reconciler, gateway, rsa_pem, store_id):
        created = reconciler.apply(_config(store_id, rsa_pem), None).state

        imported = reconciler.import_resource(created.id)
        attrs = imported.to_attributes()
        compose(
            attr_equals("id", created.id),
            attr_equals("name", NAME),
            attr_equals("description", DESC),
            attr_equals("username", USERNAME),
            attr_equals("credential_store_id", store_id),
            attr_absent("private_key_hmac"),
            attr_absent("private_key_passphrase_hmac"),
            attr_equals("sensitive_pending", "true"),
        )(attrs)

    def test_apply_after_import_establishes_fingerprints(
        self, reconciler, gateway, rsa_pem, store_id
    ):
        created = reconciler.apply(_config(store_id, rsa_pem), None).state
        imported = reconciler.import_resource(created.id)

        result = reconciler.apply(_config(store_id, rsa_pem), imported)
        assert result.action == Action.UPDATE
        assert result.plan.changed_plain == []
        assert result.plan.changed_sensitive == ["private_key", "private_key_passphrase"]
        sent = gateway.sent("update")[0].attrs
        assert sent["private_key"] == "<redacted>"
        assert sent["private_key_passphrase"] is None
        assert result.state.sensitive_pending is False
        assert result.state.fingerprint("private_key") == created.fingerprint("private_key")

        # Steady state afterwards
        assert reconciler.apply(_config(store_id, rsa_pem), result.state).action == Action.NOOP

    def test_import_missing_id(self, reconciler):
        with pytest.raises(NotFound):
            reconciler.import_resource("credspk_missing")


class TestPlan:
    def test_plan_makes_no_calls(self, reconciler, gateway, rsa_pem, store_id, passphrase):
        plan = reconciler.plan(_config(store_id, rsa_pem, passphrase), None)
        assert plan.action == Action.CREATE
        assert plan.changed_sensitive == ["private_key", "private_key_passphrase"]
        assert sum(gateway.calls.values()) == 0

    def test_empty_secret_not_fingerprinted(self, reconciler, rsa_pem, store_id):
        plan = reconciler.plan(_config(store_id, rsa_pem, ""), None)
        assert plan.fingerprints["private_key_passphrase"] is None
        assert plan.changed_sensitive == ["private_key"]
