"""
credsync CLI — entry point for all operations.

Usage:
    credsync keygen STORE_ID          # Generate a store's fingerprint key
    credsync plan -f resources.yaml   # Show what apply would change
    credsync apply -f resources.yaml  # Create/update declared credentials
    credsync refresh                  # Re-read every credential in state
    credsync destroy [ADDRESS ...]    # Delete credentials (all if none given)
    credsync import ADDRESS ID        # Adopt an existing credential
    credsync show [ADDRESS]           # Print state attributes
    credsync verify -f resources.yaml # Check state post-conditions
    credsync version                  # Show version
"""

from __future__ import annotations

import argparse
import json
import logging
from pathlib import Path

from credsync.config import Config, get_config
from credsync.errors import CredsyncError, ReplaceFailed
from credsync.gateway import CredentialGateway, HttpCredentialGateway
from credsync.keys import StoreKeyring, init_store_key
from credsync.manifest import ManifestError, load_manifest
from credsync.models import Action
from credsync.reconciler import Reconciler
from credsync.state import StateFile, StateFileError

logger = logging.getLogger(__name__)


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(
        prog="credsync",
        description="credsync — declarative SSH private-key credentials with secret drift detection.",
    )
    parser.add_argument("--version", action="store_true", help="Show version and exit")
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    parser.add_argument("--state", type=str, help="State file (default: $CREDSYNC_STATE_FILE)")

    subparsers = parser.add_subparsers(dest="command")

    keygen_parser = subparsers.add_parser("keygen", help="Generate a store fingerprint key")
    keygen_parser.add_argument("store_id", help="Credential store id")

    for name, help_text in (
        ("plan", "Show what apply would change"),
        ("apply", "Create or update declared credentials"),
        ("verify", "Check state post-conditions against the store"),
    ):
        p = subparsers.add_parser(name, help=help_text)
        p.add_argument("-f", "--file", required=True, help="Resource manifest (YAML)")
        if name in ("plan", "apply"):
            p.add_argument(
                "--no-refresh", action="store_true", help="Skip reading remote state first"
            )

    subparsers.add_parser("refresh", help="Re-read every credential in state")

    destroy_parser = subparsers.add_parser("destroy", help="Delete credentials")
    destroy_parser.add_argument("addresses", nargs="*", help="Addresses (default: all)")

    import_parser = subparsers.add_parser("import", help="Adopt an existing credential")
    import_parser.add_argument("address", help="Resource address in state")
    import_parser.add_argument("credential_id", help="Remote credential id")

    show_parser = subparsers.add_parser("show", help="Print state attributes")
    show_parser.add_argument("address", nargs="?", help="Single address")

    subparsers.add_parser("version", help="Show version")

    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(asctime)s [%(name)s] %(levelname)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    if args.version or args.command == "version":
        from credsync import __version__

        print(f"credsync {__version__}")
        return 0

    if args.command is None:
        parser.print_help()
        return 0

    cfg = get_config()
    handlers = {
        "keygen": _cmd_keygen,
        "plan": _cmd_plan,
        "apply": _cmd_apply,
        "refresh": _cmd_refresh,
        "destroy": _cmd_destroy,
        "import": _cmd_import,
        "show": _cmd_show,
        "verify": _cmd_verify,
    }
    try:
        return handlers[args.command](args, cfg)
    except (CredsyncError, ManifestError, StateFileError) as e:
        print(f"Error: {e}")
        return 1


def _make_gateway(cfg: Config) -> CredentialGateway:
    return HttpCredentialGateway(cfg.api)


def _state(args: argparse.Namespace, cfg: Config) -> StateFile:
    return StateFile(Path(args.state) if args.state else cfg.state_file).load()


def _reconciler(cfg: Config, gateway: CredentialGateway) -> Reconciler:
    return Reconciler(gateway, StoreKeyring(workspace=cfg.workspace))


def _cmd_keygen(args: argparse.Namespace, cfg: Config) -> int:
    try:
        path = init_store_key(cfg.workspace, args.store_id)
    except ValueError as e:
        print(f"Error: {e}")
        return 1
    print(f"Key for {args.store_id}: {path}")
    return 0


def _cmd_plan(args: argparse.Namespace, cfg: Config) -> int:
    declared = load_manifest(args.file)
    state = _state(args, cfg)
    gateway = _make_gateway(cfg)
    try:
        rec = _reconciler(cfg, gateway)
        for address, config in declared.items():
            prior = state.get(address)
            if prior is not None and not args.no_refresh:
                prior = rec.refresh(prior)
            plan = rec.plan(config, prior)
            fields = plan.changed_plain + plan.changed_sensitive
            suffix = f" ({', '.join(fields)})" if fields and plan.has_changes else ""
            print(f"{address}: {plan.action}{suffix}")
        _report_orphans(declared, state)
    finally:
        gateway.close()
    return 0


def _cmd_apply(args: argparse.Namespace, cfg: Config) -> int:
    declared = load_manifest(args.file)
    state = _state(args, cfg)
    gateway = _make_gateway(cfg)
    changed = 0
    try:
        rec = _reconciler(cfg, gateway)
        for address, config in declared.items():
            prior = state.get(address)
            if prior is not None and not args.no_refresh:
                prior = rec.refresh(prior)
                state.put(address, prior)
            try:
                result = rec.apply(config, prior)
            except ReplaceFailed:
                state.put(address, None)
                raise
            if result.action != Action.NOOP:
                state.put(address, result.state)
                changed += 1
            if result.state is None:
                print(f"{address}: {result.action} failed, credential vanished (re-run apply)")
            else:
                print(f"{address}: {result.action} ({result.state.id})")
        _report_orphans(declared, state)
    finally:
        gateway.close()
    print(f"Apply complete: {changed} changed, {len(declared) - changed} unchanged.")
    return 0


def _cmd_refresh(args: argparse.Namespace, cfg: Config) -> int:
    state = _state(args, cfg)
    gateway = _make_gateway(cfg)
    try:
        rec = _reconciler(cfg, gateway)
        for address in state.addresses():
            prior = state.get(address)
            assert prior is not None
            current = rec.refresh(prior)
            state.put(address, current)
            print(f"{address}: {'present' if current else 'gone'}")
    finally:
        gateway.close()
    return 0


def _cmd_destroy(args: argparse.Namespace, cfg: Config) -> int:
    state = _state(args, cfg)
    addresses = args.addresses or state.addresses()
    unknown = [a for a in addresses if state.get(a) is None]
    if unknown:
        print(f"Error: not in state: {', '.join(unknown)}")
        return 1
    gateway = _make_gateway(cfg)
    try:
        rec = _reconciler(cfg, gateway)
        for address in addresses:
            prior = state.get(address)
            assert prior is not None
            rec.destroy(prior)
            state.put(address, None)
            print(f"{address}: destroyed ({prior.id})")
    finally:
        gateway.close()
    return 0


def _cmd_import(args: argparse.Namespace, cfg: Config) -> int:
    state = _state(args, cfg)
    if state.get(args.address) is not None:
        print(f"Error: {args.address} already in state")
        return 1
    gateway = _make_gateway(cfg)
    try:
        imported = _reconciler(cfg, gateway).import_resource(args.credential_id)
    finally:
        gateway.close()
    state.put(args.address, imported)
    print(f"{args.address}: imported ({imported.id}); run apply to set secrets")
    return 0


def _cmd_show(args: argparse.Namespace, cfg: Config) -> int:
    state = _state(args, cfg)
    if args.address:
        attrs = state.attributes(args.address)
        if attrs is None:
            print(f"Error: not in state: {args.address}")
            return 1
        print(json.dumps(attrs, indent=2, sort_keys=True))
        return 0
    print(json.dumps({a: state.attributes(a) for a in state.addresses()}, indent=2, sort_keys=True))
    return 0


def _cmd_verify(args: argparse.Namespace, cfg: Config) -> int:
    from credsync.harness import VerificationError, attr_equals, compose, exists, fingerprint_shape

    declared = load_manifest(args.file)
    state = _state(args, cfg)
    gateway = _make_gateway(cfg)
    failures = 0
    try:
        for address, config in declared.items():
            attrs = state.attributes(address)
            if attrs is None:
                print(f"{address}: FAIL not in state")
                failures += 1
                continue
            check = compose(
                attr_equals("name", config.name),
                attr_equals("description", config.description),
                attr_equals("username", config.username),
                fingerprint_shape(passphrase_set=config.private_key_passphrase is not None),
                exists(gateway),
            )
            try:
                check(attrs)
            except VerificationError as e:
                print(f"{address}: FAIL {e}")
                failures += 1
            else:
                print(f"{address}: ok")
    finally:
        gateway.close()
    return 1 if failures else 0


def _report_orphans(declared: dict, state: StateFile) -> None:
    for address in state.addresses():
        if address not in declared:
            print(f"{address}: in state but not declared; run 'credsync destroy {address}'")
