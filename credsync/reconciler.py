"""
Resource reconciler — drives one credential through its lifecycle.

    absent --apply--> creating --> present
    present --apply--> updating --> present      (plain or fingerprint drift)
    present --apply--> present                   (no-op, no gateway call)
    present --refresh--> present | absent        (NotFound clears state)
    present --destroy--> deleting --> absent
    (id) --import--> importing --> present       (fingerprints pending)

Secrets are compared by fingerprint only. An unchanged secret is never sent
back to the store. Fingerprints are computed before the gateway call but only
returned in a new state once that call succeeded; persisting the returned
state is the caller's job, so a failed or cancelled call leaves the prior
state authoritative.

Usage:
    from credsync.reconciler import Reconciler

    rec = Reconciler(gateway, keyring)
    result = rec.apply(config, prior_state)
    store.put(address, result.state)
"""

from __future__ import annotations

import logging
from typing import Any

from credsync.errors import CredsyncError, NotFound, ReplaceFailed
from credsync.fingerprint import fingerprint, same_fingerprint
from credsync.gateway.base import CredentialGateway
from credsync.keys import StoreKeyring
from credsync.models import (
    Action,
    ApplyResult,
    CredentialState,
    Phase,
    Plan,
    SensitiveAttribute,
    SshPrivateKeyConfig,
)

logger = logging.getLogger(__name__)


def _is_set(value: str | None) -> bool:
    # Empty string means "not set" and is never fingerprinted or sent.
    return value is not None and value != ""


def _transition(ref: str, src: Phase, dst: Phase) -> None:
    logger.debug("%s: %s -> %s", ref, src, dst)


class Reconciler:
    """Reconciles declared SSH private-key credentials with the store.

    Holds no per-resource state, so one instance can serve many resources.
    """

    def __init__(self, gateway: CredentialGateway, keyring: StoreKeyring) -> None:
        self.gateway = gateway
        self.keyring = keyring

    # -- Planning --

    def fingerprint_config(self, config: SshPrivateKeyConfig) -> list[SensitiveAttribute]:
        """Declared secrets with fingerprints under the owning store's key."""
        attrs = config.sensitive_attributes()
        if not any(_is_set(a.plaintext) for a in attrs):
            return attrs
        key = self.keyring.key_for(config.credential_store_id)
        for attr in attrs:
            if _is_set(attr.plaintext):
                attr.fingerprint = fingerprint(key, attr.plaintext)  # type: ignore[arg-type]
        return attrs

    def plan(self, config: SshPrivateKeyConfig, prior: CredentialState | None) -> Plan:
        """Decide what apply would do. Makes no gateway calls."""
        secrets = self.fingerprint_config(config)
        fingerprints = {a.name: a.fingerprint for a in secrets}

        if prior is None:
            return Plan(
                action=Action.CREATE,
                changed_plain=[k for k, v in config.plain_attributes().items() if v],
                changed_sensitive=[a.name for a in secrets if a.fingerprint],
                fingerprints=fingerprints,
            )

        if prior.credential_store_id != config.credential_store_id:
            return Plan(
                action=Action.REPLACE,
                changed_plain=["credential_store_id"],
                changed_sensitive=[a.name for a in secrets if a.fingerprint],
                fingerprints=fingerprints,
            )

        current = prior.plain_attributes()
        changed_plain = [k for k, v in config.plain_attributes().items() if current.get(k) != v]

        changed_sensitive = []
        for attr in secrets:
            if prior.sensitive_pending:
                # After import nothing is known about the remote secrets.
                changed_sensitive.append(attr.name)
            elif not same_fingerprint(attr.fingerprint, prior.fingerprint(attr.name)):
                changed_sensitive.append(attr.name)

        action = Action.UPDATE if changed_plain or changed_sensitive else Action.NOOP
        return Plan(
            action=action,
            changed_plain=changed_plain,
            changed_sensitive=changed_sensitive,
            fingerprints=fingerprints,
        )

    # -- Lifecycle --

    def apply(self, config: SshPrivateKeyConfig, prior: CredentialState | None) -> ApplyResult:
        """Bring the remote credential in line with ``config``.

        Raises InvalidKey, RemoteRejected or Unavailable without producing a
        new state; the caller keeps ``prior``. A replace whose create fails
        after the old credential was deleted raises ReplaceFailed, and the
        caller must drop ``prior``.
        """
        plan = self.plan(config, prior)

        if plan.action == Action.NOOP:
            logger.debug("%s: no changes", prior.id if prior else "-")
            return ApplyResult(Action.NOOP, prior, plan)

        if plan.action == Action.CREATE:
            return ApplyResult(Action.CREATE, self._create(config, plan), plan)

        assert prior is not None
        if plan.action == Action.REPLACE:
            logger.info(
                "%s: credential store changed (%s -> %s), replacing",
                prior.id, prior.credential_store_id, config.credential_store_id,
            )
            self.destroy(prior)
            try:
                state = self._create(config, plan)
            except CredsyncError as e:
                logger.error("%s: deleted, but creating its replacement failed: %s", prior.id, e)
                raise ReplaceFailed(prior.id, e) from e
            return ApplyResult(Action.REPLACE, state, plan)

        return ApplyResult(Action.UPDATE, self._update(config, prior, plan), plan)

    def _create(self, config: SshPrivateKeyConfig, plan: Plan) -> CredentialState:
        _transition(config.credential_store_id, Phase.ABSENT, Phase.CREATING)
        attrs: dict[str, Any] = dict(config.plain_attributes())
        for name in plan.changed_sensitive:
            attrs[name] = getattr(config, name)

        remote = self.gateway.create(config.credential_store_id, attrs)

        fingerprints = {k: v for k, v in plan.fingerprints.items() if v}
        state = CredentialState.from_remote(remote, fingerprints)
        _transition(state.id, Phase.CREATING, Phase.PRESENT)
        logger.info("Created %s (secrets: %s)", state.id, ", ".join(sorted(fingerprints)) or "none")
        return state

    def _update(
        self, config: SshPrivateKeyConfig, prior: CredentialState, plan: Plan
    ) -> CredentialState | None:
        _transition(prior.id, Phase.PRESENT, Phase.UPDATING)
        attrs: dict[str, Any] = dict(config.plain_attributes())
        for name in plan.changed_sensitive:
            value = getattr(config, name)
            # None clears a secret that is no longer declared
            attrs[name] = value if _is_set(value) else None

        try:
            remote = self.gateway.update(prior.id, attrs, version=prior.version or None)
        except NotFound:
            logger.warning("%s: deleted outside credsync; it will be recreated on next apply", prior.id)
            _transition(prior.id, Phase.UPDATING, Phase.ABSENT)
            return None

        fingerprints = {k: v for k, v in plan.fingerprints.items() if v}
        state = CredentialState.from_remote(remote, fingerprints)
        _transition(state.id, Phase.UPDATING, Phase.PRESENT)
        logger.info(
            "Updated %s (fields: %s)",
            state.id, ", ".join(plan.changed_plain + plan.changed_sensitive),
        )
        return state

    def refresh(self, prior: CredentialState) -> CredentialState | None:
        """Re-read the remote credential. Returns None if it no longer exists.

        Fingerprints are local and carried over unchanged.
        """
        try:
            remote = self.gateway.read(prior.id)
        except NotFound:
            logger.info("%s: not found remotely, dropping local state", prior.id)
            _transition(prior.id, Phase.PRESENT, Phase.ABSENT)
            return None
        return CredentialState.from_remote(
            remote, prior.fingerprints, sensitive_pending=prior.sensitive_pending
        )

    def destroy(self, prior: CredentialState) -> None:
        """Delete the remote credential. An already-absent credential is fine."""
        _transition(prior.id, Phase.PRESENT, Phase.DELETING)
        if self.gateway.delete(prior.id):
            logger.info("Deleted %s", prior.id)
        else:
            logger.info("%s: already absent", prior.id)
        _transition(prior.id, Phase.DELETING, Phase.ABSENT)

    def import_resource(self, credential_id: str) -> CredentialState:
        """Build local state from a remote id.

        The store never returns secrets, so the state has no fingerprints and
        is marked pending until the next apply supplies the plaintext.
        Raises NotFound if the id does not exist.
        """
        _transition(credential_id, Phase.ABSENT, Phase.IMPORTING)
        remote = self.gateway.read(credential_id)
        state = CredentialState.from_remote(remote, sensitive_pending=True)
        _transition(credential_id, Phase.IMPORTING, Phase.PRESENT)
        logger.info("Imported %s from store %s", state.id, state.credential_store_id)
        return state
