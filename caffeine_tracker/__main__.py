"""CLI entry point for caffeine_tracker."""

import argparse
import asyncio
import dataclasses
import inspect
import json
import logging
import sys
import traceback
from datetime import datetime
from pathlib import Path

from .codec import decode_bytes, decode_sync_config, encode_bytes, encode_sync_config
from .config import Config, load_config
from .errors import CaffeineTrackerError
from .storage import (
    PersistentStore,
    create_backend,
    from_bytes,
    snapshot_from_json,
    snapshot_to_json,
)
from .storage.store import now_ms
from .sync import SyncEngine, WebDAVClient, union_merge


class JSONFormatter(logging.Formatter):
    """JSON formatter for structured logging."""

    def format(self, record: logging.LogRecord) -> str:
        """Format log record as JSON."""
        log_data = {
            "timestamp": datetime.fromtimestamp(record.created).isoformat(),
            "level": record.levelname,
            "component": record.name,
            "message": record.getMessage(),
        }

        if record.exc_info:
            log_data["exception"] = "".join(traceback.format_exception(*record.exc_info))

        try:
            return json.dumps(log_data)
        except (TypeError, ValueError):
            log_data["message"] = str(log_data["message"])
            if "exception" in log_data:
                log_data["exception"] = str(log_data["exception"])
            return json.dumps(log_data)


def setup_logging(verbose: bool = False, log_level: str | None = None, json_output: bool = False) -> None:
    """Configure logging.

    Args:
        verbose: Enable debug logging (ignored if log_level is set).
        log_level: Explicit log level (warning, info, debug).
        json_output: Output logs as JSON lines for machine parsing.
    """
    if log_level:
        level_map = {
            "warning": logging.WARNING,
            "info": logging.INFO,
            "debug": logging.DEBUG,
        }
        level = level_map.get(log_level, logging.INFO)
    else:
        level = logging.DEBUG if verbose else logging.WARNING

    handler = logging.StreamHandler()
    if json_output:
        handler.setFormatter(JSONFormatter())
    else:
        formatter = logging.Formatter(
            fmt="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )
        handler.setFormatter(formatter)

    logging.basicConfig(
        level=level,
        handlers=[handler],
        force=True,
    )


def open_store(config: Config) -> PersistentStore:
    """Create and open the process-wide store handle."""
    store = PersistentStore(create_backend(config.storage))
    store.open()
    return store


def build_client(config: Config, store: PersistentStore) -> WebDAVClient:
    """Build the WebDAV client, falling back to the stored credential."""
    password = config.sync.password or store.get_sync_password() or ""
    return WebDAVClient.from_config(dataclasses.replace(config.sync, password=password))


def cmd_status(args: argparse.Namespace) -> int:
    """Show store and sync status."""
    config = load_config(args.config)
    store = open_store(config)
    try:
        engine = SyncEngine(build_client(config, store), store)
        status_data = {
            "timestamp": datetime.now().isoformat(),
            "storage": {"backend": config.storage.backend, **store.get_stats()},
            "sync": engine.get_sync_status(),
        }
    finally:
        store.close()

    if args.json:
        print(json.dumps(status_data, indent=2))
        return 0

    storage = status_data["storage"]
    print(f"Storage backend: {storage['backend']}")
    print(f"  Records: {storage['records_count']}")
    print(f"  Drinks: {storage['drinks_count']}")
    print(f"  Tombstones: {storage['deleted_count']}")
    print(f"  Image size: {storage['image_size_bytes']} bytes")
    sync = status_data["sync"]
    print(f"Sync configured: {'yes' if sync['configured'] else 'no'}")
    if sync["remote_url"]:
        print(f"  Remote: {sync['remote_url']}")
    print(f"  Last sync: {sync['last_sync'] or 'never'}")
    return 0


async def cmd_test_connection(args: argparse.Namespace) -> int:
    """Probe the WebDAV endpoint."""
    config = load_config(args.config)
    store = open_store(config)
    try:
        client = build_client(config, store)
    finally:
        store.close()

    result = await client.test_connection()
    print(result.message)
    return 0 if result.success else 1


async def cmd_sync(args: argparse.Namespace) -> int:
    """Run one sync against the remote snapshot."""
    config = load_config(args.config)
    store = open_store(config)
    try:
        engine = SyncEngine(build_client(config, store), store)
        if args.loop:
            await engine.sync_loop(config.sync.sync_interval_minutes * 60)
            return 0
        result = await engine.sync_store()
    except CaffeineTrackerError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
    finally:
        store.close()

    if args.json:
        print(json.dumps(result.to_dict(), indent=2))
    else:
        print(result.message)
    return 0 if result.success else 1


def cmd_export(args: argparse.Namespace) -> int:
    """Export the store as JSON or as a binary image."""
    config = load_config(args.config)
    store = open_store(config)
    try:
        if args.binary:
            image = store.export_image()
            payload: str | bytes = encode_bytes(image) if args.base64 else image
        else:
            payload = snapshot_to_json(store.read_snapshot())
    finally:
        store.close()

    if args.output:
        path = Path(args.output)
        if isinstance(payload, bytes):
            path.write_bytes(payload)
        else:
            path.write_text(payload, encoding="utf-8")
        print(f"Exported to {path}")
    elif isinstance(payload, bytes):
        sys.stdout.buffer.write(payload)
    else:
        print(payload)
    return 0


def cmd_import(args: argparse.Namespace) -> int:
    """Import a JSON or binary backup into the store."""
    config = load_config(args.config)
    path = Path(args.input)

    try:
        if args.binary:
            raw = path.read_bytes()
            image = decode_bytes(raw.decode("ascii")) if args.base64 else raw
            incoming = from_bytes(image)
        else:
            incoming = snapshot_from_json(path.read_text(encoding="utf-8"))
    except (OSError, UnicodeDecodeError, CaffeineTrackerError) as e:
        print(f"Error: cannot read backup: {e}", file=sys.stderr)
        return 1

    store = open_store(config)
    try:
        if args.merge:
            local = store.read_snapshot()
            incoming = union_merge(local, incoming, now_ms())
        elif not incoming.webdav_password:
            incoming.webdav_password = store.get_sync_password()
        store.import_snapshot(incoming)
    except CaffeineTrackerError as e:
        print(f"Error: import failed: {e}", file=sys.stderr)
        return 1
    finally:
        store.close()

    print(
        f"Imported {len(incoming.records)} records and {len(incoming.drinks)} drinks"
        + (" (merged)" if args.merge else "")
    )
    return 0


def cmd_share_config(args: argparse.Namespace) -> int:
    """Print a token that carries the sync settings to another device."""
    config = load_config(args.config)
    store = open_store(config)
    try:
        password = config.sync.password or store.get_sync_password() or ""
    finally:
        store.close()

    try:
        token = encode_sync_config(
            config.sync.server, config.sync.username, password, now_ms()
        )
    except CaffeineTrackerError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    print(token)
    return 0


def cmd_decode_config(args: argparse.Namespace) -> int:
    """Decode a shared sync token and optionally store its credential."""
    try:
        shared = decode_sync_config(args.token)
    except CaffeineTrackerError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    print(f"server: {shared.server}")
    print(f"username: {shared.username}")

    if args.save_password:
        store = open_store(load_config(args.config))
        try:
            store.put_sync_password(shared.password)
        finally:
            store.close()
        print("Password saved to local store")
    return 0


def main() -> int:
    """Main entry point."""
    parser = argparse.ArgumentParser(
        description="caffeine_tracker - local-first caffeine log with WebDAV sync",
    )
    parser.add_argument(
        "-c", "--config",
        type=Path,
        help="Path to config file",
    )
    parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Enable verbose logging",
    )
    parser.add_argument(
        "--log-level",
        choices=["warning", "info", "debug"],
        help="Set log level (overrides -v)",
    )
    parser.add_argument(
        "--log-json",
        action="store_true",
        help="Emit logs as JSON lines",
    )

    subparsers = parser.add_subparsers(dest="command", help="Commands")

    status_parser = subparsers.add_parser("status", help="Show store and sync status")
    status_parser.add_argument("--json", action="store_true", help="Output as JSON")
    status_parser.set_defaults(func=cmd_status)

    test_parser = subparsers.add_parser("test-connection", help="Probe the WebDAV server")
    test_parser.set_defaults(func=cmd_test_connection)

    sync_parser = subparsers.add_parser("sync", help="Sync with the WebDAV server")
    sync_parser.add_argument("--json", action="store_true", help="Output as JSON")
    sync_parser.add_argument(
        "--loop", action="store_true", help="Keep syncing at the configured interval"
    )
    sync_parser.set_defaults(func=cmd_sync)

    export_parser = subparsers.add_parser("export", help="Export a backup")
    export_parser.add_argument("-o", "--output", help="Write to file instead of stdout")
    export_parser.add_argument(
        "--binary", action="store_true", help="Export the raw database image"
    )
    export_parser.add_argument(
        "--base64", action="store_true", help="Base64-encode the binary image"
    )
    export_parser.set_defaults(func=cmd_export)

    import_parser = subparsers.add_parser("import", help="Import a backup")
    import_parser.add_argument("input", help="Backup file")
    import_parser.add_argument(
        "--binary", action="store_true", help="Input is a database image"
    )
    import_parser.add_argument(
        "--base64", action="store_true", help="Binary input is base64 text"
    )
    import_parser.add_argument(
        "--merge", action="store_true", help="Union-merge into existing data"
    )
    import_parser.set_defaults(func=cmd_import)

    share_parser = subparsers.add_parser("share-config", help="Print a sync share token")
    share_parser.set_defaults(func=cmd_share_config)

    decode_parser = subparsers.add_parser("decode-config", help="Decode a sync share token")
    decode_parser.add_argument("token", help="Token from share-config")
    decode_parser.add_argument(
        "--save-password", action="store_true", help="Store the shared password locally"
    )
    decode_parser.set_defaults(func=cmd_decode_config)

    args = parser.parse_args()

    log_config = load_config(args.config).logging
    setup_logging(
        args.verbose,
        args.log_level or (None if args.verbose else log_config.level),
        args.log_json or log_config.json,
    )

    if not args.command:
        parser.print_help()
        return 1

    func = args.func
    if inspect.iscoroutinefunction(func):
        return asyncio.run(func(args))
    return func(args)


if __name__ == "__main__":
    sys.exit(main())
