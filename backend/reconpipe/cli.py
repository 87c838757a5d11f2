"""
reconpipe CLI - thin entrypoint for operator commands.

Commands:
- serve:      run the HTTP/WebSocket backend
- recovery:   show or clear the durable recovery flags
- extracted:  list republished result folders
- ingest:     extract archives waiting in the inbound folder once and exit

Settings come from RECONPIPE_* environment variables; command-line
options override them.

Exit Codes:
- 0: Success
- 1: Invalid configuration
- 4: System error (database, filesystem)
"""

import argparse
import json
import logging
import sys
from datetime import timedelta
from pathlib import Path
from typing import NoReturn

from pydantic import ValidationError

from reconpipe.persistence.errors import PersistenceError
from reconpipe.persistence.manager import RecoveryStore
from reconpipe.persistence.recovery import check_recovery
from reconpipe.settings import PipelineSettings
from reconpipe.watchfolders.engine import ArtifactIngestionWatcher
from reconpipe.watchfolders.errors import WatchFolderError
from reconpipe.watchfolders.stability import FileStabilityChecker

LOG_FORMAT = "%(asctime)s %(levelname)-7s %(name)s: %(message)s"


def _settings(args: argparse.Namespace) -> PipelineSettings:
    try:
        return PipelineSettings.from_env(
            inbound_dir=getattr(args, "inbound", None),
            outbound_dir=getattr(args, "outbound", None),
            db_path=getattr(args, "db", None),
            driver=getattr(args, "driver", None),
            host=getattr(args, "host", None),
            port=getattr(args, "port", None),
        )
    except ValidationError as e:
        print(f"ERROR: Invalid settings:\n{e}", file=sys.stderr)
        sys.exit(1)


def cmd_serve(args: argparse.Namespace) -> NoReturn:
    """Run the backend until interrupted."""
    from reconpipe.main import run_server

    settings = _settings(args)
    try:
        run_server(settings)
    except PersistenceError as e:
        print(f"FATAL: Recovery database error: {e}", file=sys.stderr)
        sys.exit(4)
    sys.exit(0)


def cmd_recovery(args: argparse.Namespace) -> NoReturn:
    """Show (and optionally clear) the recovery flags."""
    settings = _settings(args)
    try:
        store = RecoveryStore(settings.db_path)
        if args.clear:
            store.clear_all()
            print("Recovery flags cleared")
            sys.exit(0)
        record = store.load()
    except PersistenceError as e:
        print(f"ERROR: {e}", file=sys.stderr)
        sys.exit(4)

    print(json.dumps(record.model_dump(mode="json"), indent=2))
    if args.check:
        decision = check_recovery(store, stale_after=timedelta(seconds=settings.stale_after_seconds))
        print(f"Startup action: {decision.action.value}" + (f" ({decision.reason})" if decision.reason else ""))
    sys.exit(0)


def _watcher(settings: PipelineSettings) -> ArtifactIngestionWatcher:
    return ArtifactIngestionWatcher(
        Path(settings.inbound_dir),
        Path(settings.outbound_dir),
        on_completed=lambda notice: print(f"Ready: {notice.folder} -> {notice.path}"),
        stability=FileStabilityChecker(
            min_size_bytes=settings.min_archive_bytes,
            settle_seconds=settings.download_settle_seconds,
        ),
        sidecar_window_seconds=settings.sidecar_window_seconds,
    )


def cmd_extracted(args: argparse.Namespace) -> NoReturn:
    """List result folders, newest first."""
    settings = _settings(args)
    folders = _watcher(settings).list_outbound_folders()
    if args.json:
        print(json.dumps([f.model_dump(mode="json") for f in folders], indent=2))
    else:
        for folder in folders:
            print(f"{folder.created_at.isoformat()}  {folder.name}  ({len(folder.files)} files, {folder.total_size} bytes)")
    sys.exit(0)


def cmd_ingest(args: argparse.Namespace) -> NoReturn:
    """Process waiting archives synchronously and exit."""
    settings = _settings(args)
    watcher = _watcher(settings)
    try:
        watcher.reconcile()
    except WatchFolderError as e:
        print(f"ERROR: {e}", file=sys.stderr)
        sys.exit(4)
    sys.exit(0)


def main() -> NoReturn:
    """
    Main CLI entrypoint.

    Parses arguments and dispatches to subcommands.
    """
    parser = argparse.ArgumentParser(
        prog="reconpipe",
        description="reconpipe - capture, reconstruct and republish 3D scans",
    )
    parser.add_argument(
        "--log-level",
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging level (default: INFO)",
    )

    subparsers = parser.add_subparsers(dest="command", required=True, help="Command to execute")

    # Serve command
    parser_serve = subparsers.add_parser("serve", help="Run the HTTP/WebSocket backend")
    parser_serve.add_argument("--host", default=None, help="Bind address (default: 127.0.0.1)")
    parser_serve.add_argument("--port", type=int, default=None, help="Port (default: 8085)")
    parser_serve.add_argument("--inbound", default=None, help="Folder archives are downloaded into")
    parser_serve.add_argument("--outbound", default=None, help="Folder result folders are published into")
    parser_serve.add_argument("--db", default=None, help="Recovery database path")
    parser_serve.add_argument("--driver", default=None, help="Driver factory as module:callable")
    parser_serve.set_defaults(func=cmd_serve)

    # Recovery command
    parser_recovery = subparsers.add_parser("recovery", help="Show or clear recovery flags")
    parser_recovery.add_argument("--db", default=None, help="Recovery database path")
    parser_recovery.add_argument("--clear", action="store_true", help="Clear all recovery flags")
    parser_recovery.add_argument(
        "--check",
        action="store_true",
        help="Also apply the startup policy (clears a stale monitoring flag)",
    )
    parser_recovery.set_defaults(func=cmd_recovery)

    # Extracted command
    parser_extracted = subparsers.add_parser("extracted", help="List result folders")
    parser_extracted.add_argument("--outbound", default=None, help="Folder result folders are published into")
    parser_extracted.add_argument("--json", action="store_true", help="Print JSON")
    parser_extracted.set_defaults(func=cmd_extracted)

    # Ingest command
    parser_ingest = subparsers.add_parser("ingest", help="Extract waiting archives once and exit")
    parser_ingest.add_argument("--inbound", default=None, help="Folder archives are downloaded into")
    parser_ingest.add_argument("--outbound", default=None, help="Folder result folders are published into")
    parser_ingest.set_defaults(func=cmd_ingest)

    # Parse and dispatch
    args = parser.parse_args()
    logging.basicConfig(level=getattr(logging, args.log_level), format=LOG_FORMAT)
    args.func(args)


if __name__ == "__main__":
    main()
