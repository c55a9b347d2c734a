"""Command line entry point for snapshot operations."""
from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path
from typing import Optional

from appcore.logging_utils import configure_json_logging
from appcore.paths import resolve_working_dir
from appcore.settings import load_settings

from .api import BackupService
from .errors import BackupError, FatalInconsistentError, ValidationRejectedError
from .types import RestoreOutcome, format_size

EXIT_OK = 0
EXIT_FAILED = 1
EXIT_RESTORED_SAFETY = 2
EXIT_FATAL = 3

LOGGER = logging.getLogger("datasafe.cli")

_VERBOSE_HANDLER = logging.StreamHandler()
_VERBOSE_HANDLER.setFormatter(logging.Formatter("[%(levelname)s] %(name)s: %(message)s"))


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="datasafe-backup", description="Manage data directory snapshots")
    parser.add_argument(
        "--working-dir",
        type=Path,
        default=None,
        help="Override working directory",
    )
    parser.add_argument("--verbose", action="store_true", help="Log debug output to stderr")
    sub = parser.add_subparsers(dest="command", required=True)

    create = sub.add_parser("create", help="Snapshot the data directory")
    create.add_argument("--description", default=None, help="Text appended to the snapshot name")

    listing = sub.add_parser("list", help="List snapshots, newest first")
    listing.add_argument("--json", action="store_true", help="Output as JSON")

    restore = sub.add_parser("restore", help="Replace the data directory with a snapshot")
    restore.add_argument("path", help="Snapshot path or file name in the backup directory")
    restore.add_argument("--no-validate", action="store_true", help="Skip validation before restoring")

    verify = sub.add_parser("verify", help="Check a snapshot without restoring it")
    verify.add_argument("path")
    verify.add_argument("--json", action="store_true", help="Output as JSON")

    delete = sub.add_parser("delete", help="Delete a snapshot")
    delete.add_argument("path")

    sub.add_parser("prune", help="Apply the configured retention policy")
    sub.add_parser("size", help="Print the total size of the backup directory")
    return parser


def _print_records(service: BackupService, as_json: bool) -> None:
    records = service.get_available_backups()
    if as_json:
        print(json.dumps([record.to_dict() for record in records], indent=2))
        return
    if not records:
        print(f"No backups in {service.backup_dir}")
        return
    for record in records:
        created = record.created_at.astimezone().strftime("%Y-%m-%d %H:%M:%S")
        description = f"  {record.description}" if record.description else ""
        print(f"{created}  {record.size_formatted:>10}  {record.file_name}{description}")


def _restore(service: BackupService, path: Path, validate: bool) -> int:
    try:
        result = service.restore_backup(path, validate)
    except ValidationRejectedError as exc:
        print(f"Restore rejected: {exc}", file=sys.stderr)
        return EXIT_FAILED
    except FatalInconsistentError as exc:
        print(f"FATAL: {exc}", file=sys.stderr)
        print(f"  restore error:  {exc.original_error}", file=sys.stderr)
        print(f"  rollback error: {exc.rollback_error or 'no safety snapshot'}", file=sys.stderr)
        if exc.safety_backup is not None:
            print(f"  safety snapshot: {exc.safety_backup}", file=sys.stderr)
        return EXIT_FATAL
    if result.outcome is RestoreOutcome.RESTORED_SAFETY:
        print(f"Restore failed: {result.error}", file=sys.stderr)
        print(f"Data directory returned to its previous state from {result.safety_backup}", file=sys.stderr)
        return EXIT_RESTORED_SAFETY
    print(f"Restored {path} into {service.data_dir}")
    if result.safety_backup is not None:
        print(f"Safety snapshot: {result.safety_backup}")
    return EXIT_OK


def cli(argv: Optional[list[str]] = None) -> int:
    parser = _build_parser()
    args = parser.parse_args(argv)
    working_dir = args.working_dir or resolve_working_dir()
    settings = load_settings(working_dir)
    logging_settings = settings.get("logging") if isinstance(settings.get("logging"), dict) else {}
    if logging_settings.get("json_file", True):
        configure_json_logging(working_dir=working_dir, level=str(logging_settings.get("level") or "INFO"))
    if args.verbose:
        package_logger = logging.getLogger("datasafe")
        if _VERBOSE_HANDLER not in package_logger.handlers:
            package_logger.addHandler(_VERBOSE_HANDLER)
        package_logger.setLevel(logging.DEBUG)

    try:
        service = BackupService.from_settings(working_dir, settings)
        if args.command == "create":
            path = service.create_backup(args.description)
            print(path)
            return EXIT_OK
        if args.command == "list":
            _print_records(service, args.json)
            return EXIT_OK
        if args.command == "restore":
            return _restore(service, service.snapshot_path(args.path), not args.no_validate)
        if args.command == "verify":
            result = service.validate_backup(service.snapshot_path(args.path))
            if args.json:
                print(json.dumps(result.to_dict(), indent=2))
            else:
                print("valid" if result.is_valid else "invalid")
                for error in result.errors:
                    print(f" - error: {error}")
                for warning in result.warnings:
                    print(f" - warning: {warning}")
            return EXIT_OK if result.is_valid else EXIT_FAILED
        if args.command == "delete":
            deleted = service.delete_backup(service.snapshot_path(args.path))
            print("deleted" if deleted else "not found")
            return EXIT_OK
        if args.command == "prune":
            summary = service.apply_retention()
            for path in summary.removed:
                print(f"removed {path}")
            print(f"{len(summary.removed)} removed, {len(summary.kept)} kept, {format_size(summary.freed_bytes)} freed")
            return EXIT_OK if not summary.failed else EXIT_FAILED
        if args.command == "size":
            size = service.get_backup_directory_size()
            print(f"{format_size(size)} ({size} bytes) in {service.backup_dir}")
            return EXIT_OK
    except BackupError as exc:
        LOGGER.debug("Command %s failed", args.command, exc_info=True)
        print(f"Error: {exc}", file=sys.stderr)
        return EXIT_FAILED
    parser.error(f"unknown command {args.command}")
    return EXIT_FAILED


def main() -> int:
    return cli(sys.argv[1:])


if __name__ == "__main__":  # pragma: no cover
    raise SystemExit(main())
