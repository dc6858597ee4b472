# SubVault: Main Entry Point
#
# `subvault serve` runs the HTTP backend for the UI.
# The other subcommands work directly on the vault file.

import argparse
import getpass
import sys
from pathlib import Path
from typing import List, Optional

from . import __version__
from .core import EventSeverity, EventType, configure_audit_logger, load_settings, log_security_event
from .vault import FileBlobStore, VaultError, VaultManager
from .vault.schedule import days_remaining, format_currency, format_frequency


def _manager(args) -> VaultManager:
    store = FileBlobStore(Path(args.vault) if args.vault else args.settings.vault_file)
    return VaultManager(store=store, max_unlock_backoff=args.settings.max_unlock_backoff)


def _passphrase(args) -> str:
    return args.passphrase or getpass.getpass("Master passphrase: ")


def _unlock_or_exit(manager: VaultManager, args) -> None:
    result = manager.unlock(_passphrase(args))
    if not result.success:
        print(f"[!] {result.message}")
        sys.exit(1)


def cmd_serve(args) -> None:
    from .api.main import start_api_server

    try:
        start_api_server(args.settings)
    except KeyboardInterrupt:
        print("\nShutting down backend...")
        log_security_event(
            EventType.SYSTEM_STOP,
            EventSeverity.INFO,
            "SubVault backend stopped (user interrupt)"
        )


def cmd_status(args) -> None:
    manager = _manager(args)
    print(f"Vault file: {manager.store.path}")
    print(f"Vault exists: {manager.vault_exists()}")


def cmd_init(args) -> None:
    manager = _manager(args)
    if manager.vault_exists():
        print(f"[!] {manager.store.path} exists. Use `list` to open it.")
        sys.exit(1)
    _unlock_or_exit(manager, args)
    manager.lock()
    print(f"[+] Initialized vault at {manager.store.path}")


def cmd_list(args) -> None:
    manager = _manager(args)
    if not manager.vault_exists():
        print("[!] No vault yet. Run `subvault init` first.")
        sys.exit(1)
    _unlock_or_exit(manager, args)
    try:
        vault = manager.vault
        if not vault.credentials and not vault.subscriptions:
            print("(empty)")
            return
        for cred in vault.credentials:
            print(f"{cred.id}\t{cred.label}\t{cred.username}")
        for sub in vault.subscriptions:
            days = days_remaining(sub.renewal_date)
            due = "never" if days == float("inf") else f"{days}d"
            linked = manager.credential_for(sub)
            print(
                f"{sub.id}\t{sub.name}\t{format_currency(sub.currency, sub.cost)}"
                f"/{format_frequency(sub.frequency_amount, sub.frequency_unit)}"
                f"\t{sub.renewal_date.isoformat()} ({due})"
                f"\t{linked.label if linked else '-'}"
            )
    finally:
        manager.lock()


def cmd_export(args) -> None:
    manager = _manager(args)
    try:
        path = manager.export_to(Path(args.out))
    except VaultError as e:
        print(f"[!] {e.message}")
        sys.exit(1)
    if path is None:
        print("[!] No vault to export")
        sys.exit(1)
    print(f"[+] Exported encrypted vault -> {path}")


def cmd_import(args) -> None:
    manager = _manager(args)
    result = manager.import_blob(Path(args.file).read_text(encoding="utf-8"))
    if not result.success:
        print(f"[!] {result.message}")
        sys.exit(1)
    print(f"[+] Imported {args.file}")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="subvault",
        description="SubVault - encrypted vault for credentials and subscriptions",
    )
    parser.add_argument("--vault", help="Vault file (default: SUBVAULT_VAULT_FILE or ./data/vault.json)")
    parser.add_argument("--passphrase", help="Master passphrase (prompted when omitted)")
    parser.add_argument("--version", action="version", version=f"SubVault v{__version__}")
    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("serve", help="Run the HTTP backend").set_defaults(func=cmd_serve)
    sub.add_parser("status", help="Show where the vault lives").set_defaults(func=cmd_status)
    sub.add_parser("init", help="Create a new vault").set_defaults(func=cmd_init)
    sub.add_parser("list", help="List credentials and subscriptions").set_defaults(func=cmd_list)

    p_export = sub.add_parser("export", help="Write the sealed blob to a file")
    p_export.add_argument("--out", default=".", help="Target directory")
    p_export.set_defaults(func=cmd_export)

    p_import = sub.add_parser("import", help="Replace the vault with an exported blob")
    p_import.add_argument("file")
    p_import.set_defaults(func=cmd_import)

    return parser


def main(argv: Optional[List[str]] = None):
    """Main entry point for SubVault."""
    parser = build_parser()
    args = parser.parse_args(argv)
    args.settings = load_settings()
    configure_audit_logger(args.settings.audit_dir)
    args.func(args)


if __name__ == "__main__":
    main()
