"""Command line front end: list endpoints and copy/move between them."""

from __future__ import annotations

import argparse
import logging
import sys
from typing import List, Optional, Sequence, Tuple

import yaml

from .clipboard import ClipboardManager
from .config import ConfigLoader
from .connection import ConnectionRegistry
from .errors import EndpointConnectionError, SFTPBridgeError
from .fileops import format_size, format_time, list_local_directory, local_item, normalize_local_path
from .logging_setup import setup_logging
from .session import LOCAL_ENDPOINT_ID, EndpointItem

logger = logging.getLogger(__name__)

Location = Tuple[str, str]


def parse_location(value: str, registry: ConnectionRegistry) -> Location:
    """Split ``name:/path`` into ``(endpoint_id, path)``.

    Anything whose prefix is not a configured connection is a local path.
    """
    name, sep, path = value.partition(":")
    if sep and registry.get_connection(name) is not None:
        return name, path or registry.get_current_path(name)
    return LOCAL_ENDPOINT_ID, normalize_local_path(value)


def _ensure_connected(registry: ConnectionRegistry, endpoint_id: str) -> None:
    if endpoint_id == LOCAL_ENDPOINT_ID or registry.is_connected(endpoint_id):
        return
    if not registry.connect(endpoint_id):
        record = registry.get_connection(endpoint_id)
        reason = record.last_error if record and record.last_error else "unknown error"
        raise EndpointConnectionError(f"Cannot connect to {endpoint_id}: {reason}")


def _resolve_item(registry: ConnectionRegistry, endpoint_id: str, path: str) -> EndpointItem:
    if endpoint_id == LOCAL_ENDPOINT_ID:
        try:
            return local_item(path)
        except OSError as e:
            raise SFTPBridgeError(f"Cannot read {path}: {e}")
    item = registry.require_session(endpoint_id).stat(path)
    if item is None:
        raise SFTPBridgeError(f"No such file or directory: {endpoint_id}:{path}")
    return item


def _print_items(items: List[EndpointItem]) -> None:
    for item in items:
        size = "-" if item.is_dir else format_size(item.size)
        suffix = "/" if item.is_dir else ""
        print(f"{item.permissions:<11} {size:>9}  {format_time(item.modified)}  {item.name}{suffix}")


def cmd_connections(args: argparse.Namespace, registry: ConnectionRegistry) -> int:
    for record in registry.get_all_connections():
        config = record.config
        print(f"{config.name}\t{config.username}@{config.host}:{config.port}\t{config.remote_path}")
    return 0


def cmd_ls(args: argparse.Namespace, registry: ConnectionRegistry) -> int:
    endpoint_id, path = parse_location(args.location, registry)
    if endpoint_id == LOCAL_ENDPOINT_ID:
        _print_items(list_local_directory(path))
        return 0
    _ensure_connected(registry, endpoint_id)
    _print_items(registry.require_session(endpoint_id).list(path))
    return 0


def cmd_transfer(args: argparse.Namespace, registry: ConnectionRegistry) -> int:
    sources = [parse_location(value, registry) for value in args.sources]
    endpoints = {endpoint_id for endpoint_id, _ in sources}
    if len(endpoints) != 1:
        raise SFTPBridgeError("All sources must be on the same endpoint")
    source_endpoint = endpoints.pop()
    dest_endpoint, dest_path = parse_location(args.destination, registry)

    for endpoint_id in (source_endpoint, dest_endpoint):
        _ensure_connected(registry, endpoint_id)

    items = [_resolve_item(registry, endpoint_id, path) for endpoint_id, path in sources]
    manager = ClipboardManager(registry)
    if args.command == "mv":
        manager.cut(items, source_endpoint)
    else:
        manager.copy(items, source_endpoint)

    if manager.paste(dest_endpoint, dest_path):
        return 0
    print(f"error: {manager.last_error}", file=sys.stderr)
    return 1


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="sftpbridge",
        description="Copy and move files between SFTP servers and the local filesystem.",
    )
    parser.add_argument("-c", "--config", help="Connections file (YAML)")
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging")
    parser.add_argument("--log-file", help="Also write the log to this file")

    subparsers = parser.add_subparsers(dest="command", required=True)
    subparsers.add_parser("connections", help="List configured connections")

    ls_parser = subparsers.add_parser("ls", help="List a directory")
    ls_parser.add_argument("location", help="NAME:/path or a local path")

    for command, text in (("cp", "Copy items"), ("mv", "Move items")):
        sub = subparsers.add_parser(command, help=text)
        sub.add_argument("sources", nargs="+", help="NAME:/path or local paths")
        sub.add_argument("destination", help="Destination directory")

    return parser


COMMANDS = {
    "connections": cmd_connections,
    "ls": cmd_ls,
    "cp": cmd_transfer,
    "mv": cmd_transfer,
}


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    setup_logging(logging.DEBUG if args.verbose else logging.WARNING, args.log_file)

    try:
        registry = ConnectionRegistry(ConfigLoader(args.config).load_connections())
    except (OSError, ValueError, yaml.YAMLError) as e:
        print(f"error: {e}", file=sys.stderr)
        return 2

    try:
        return COMMANDS[args.command](args, registry)
    except (SFTPBridgeError, OSError) as e:
        print(f"error: {e}", file=sys.stderr)
        return 1
    except KeyboardInterrupt:
        logger.info("Interrupted by user")
        return 130
    finally:
        registry.close()
