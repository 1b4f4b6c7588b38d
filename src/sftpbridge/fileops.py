"""Local filesystem helpers and the local endpoint session."""

from __future__ import annotations

import logging
import os
import shutil
import stat
import tempfile
from contextlib import contextmanager
from datetime import datetime
from typing import TYPE_CHECKING, Iterator, List, Optional

from .errors import TransferCancelledException
from .session import (
    LOCAL_ENDPOINT_ID,
    EndpointItem,
    EndpointSession,
    ItemKind,
    OperationResult,
    ProgressCallback,
)

if TYPE_CHECKING:
    from .config import ConnectionConfig

logger = logging.getLogger(__name__)

COPY_CHUNK_SIZE = 32768
STAGING_PREFIX = "sftpbridge-"


def format_size(n: float) -> str:
    """Convert bytes to human readable format."""
    for unit in ("B", "KB", "MB", "GB", "TB", "PB"):
        if n < 1024 or unit == "PB":
            return f"{n:.0f} {unit}" if n >= 10 or unit == "B" else f"{n:.1f} {unit}"
        n /= 1024
    return "0 B"


def format_time(ts: float) -> str:
    """Convert timestamp to human readable format."""
    try:
        return datetime.fromtimestamp(ts).strftime("%Y-%m-%d %H:%M")
    except (OverflowError, OSError, ValueError):
        return "—"


def mode_to_str(mode: int) -> str:
    """Convert file mode to string representation like -rw-r--r--."""
    is_dir = "d" if stat.S_ISDIR(mode) else "-"
    perm = ""
    for shift in (6, 3, 0):
        r = "r" if mode & (4 << shift) else "-"
        w = "w" if mode & (2 << shift) else "-"
        x = "x" if mode & (1 << shift) else "-"
        perm += r + w + x
    return is_dir + perm


def normalize_local_path(path: Optional[str]) -> str:
    """Expand user and resolve an absolute local filesystem path."""
    expanded = os.path.expanduser(path or "/")
    return os.path.abspath(expanded)


def _local_item(path: str, st: os.stat_result, is_dir: bool) -> EndpointItem:
    return EndpointItem(
        name=os.path.basename(path.rstrip(os.sep)) or path,
        path=path,
        kind=ItemKind.DIRECTORY if is_dir else ItemKind.FILE,
        size=0 if is_dir else (st.st_size or 0),
        modified=st.st_mtime or 0.0,
        permissions=mode_to_str(st.st_mode),
        endpoint_id=LOCAL_ENDPOINT_ID,
    )


def local_item(path: str) -> EndpointItem:
    """Snapshot a single local path as an :class:`EndpointItem`."""
    normalized = normalize_local_path(path)
    st = os.stat(normalized)
    return _local_item(normalized, st, stat.S_ISDIR(st.st_mode))


def list_local_directory(path: str) -> List[EndpointItem]:
    """Return the immediate children of a local directory."""
    normalized = normalize_local_path(path)
    if not os.path.isdir(normalized):
        raise NotADirectoryError(f"Not a directory: {normalized}")

    entries: List[EndpointItem] = []
    with os.scandir(normalized) as it:
        for dirent in it:
            try:
                stat_result = dirent.stat(follow_symlinks=False)
                is_dir = dirent.is_dir(follow_symlinks=False)
            except OSError as e:
                logger.debug(f"Skipping unreadable entry {dirent.path}: {e}")
                continue
            entries.append(_local_item(dirent.path, stat_result, is_dir))

    entries.sort(key=lambda entry: entry.name)
    logger.debug(f"Listed {len(entries)} local entries in {normalized}")
    return entries


def make_local_dirs(path: str) -> None:
    os.makedirs(path, exist_ok=True)


def remove_local_file(path: str) -> None:
    os.unlink(path)


def remove_local_tree(path: str) -> None:
    """Remove a directory tree bottom-up, one directory level at a time."""
    if os.path.islink(path) or not os.path.isdir(path):
        os.unlink(path)
        return

    stack = [(path, False)]
    while stack:
        current, emptied = stack.pop()
        if emptied:
            os.rmdir(current)
            continue
        stack.append((current, True))
        with os.scandir(current) as it:
            for entry in it:
                if entry.is_dir(follow_symlinks=False):
                    stack.append((entry.path, False))
                else:
                    os.unlink(entry.path)


@contextmanager
def staging_directory(purpose: str = "relay") -> Iterator[str]:
    """Create a uniquely named temporary directory removed on exit."""
    path = tempfile.mkdtemp(prefix=f"{STAGING_PREFIX}{purpose}-")
    logger.debug(f"Created staging directory {path}")
    try:
        yield path
    finally:
        try:
            remove_local_tree(path)
            logger.debug(f"Removed staging directory {path}")
        except FileNotFoundError:
            pass
        except OSError as e:
            logger.warning(f"Failed to remove staging directory {path}: {e}")


def copy_with_progress(source: str, destination: str,
                       on_progress: Optional[ProgressCallback] = None) -> int:
    """Copy one file in chunks, reporting ``(transferred, total)``."""
    total = os.path.getsize(source)
    transferred = 0
    with open(source, "rb") as src, open(destination, "wb") as dst:
        while True:
            chunk = src.read(COPY_CHUNK_SIZE)
            if not chunk:
                break
            dst.write(chunk)
            transferred += len(chunk)
            if on_progress:
                on_progress(transferred, total)
    shutil.copystat(source, destination)
    return transferred


class LocalSession(EndpointSession):
    """Endpoint session backed by the local filesystem."""

    def __init__(self) -> None:
        self._connected = False

    @property
    def connected(self) -> bool:
        return self._connected

    def connect(self, config: Optional["ConnectionConfig"] = None) -> OperationResult:
        self._connected = True
        return OperationResult.ok("Local filesystem ready")

    def disconnect(self) -> None:
        self._connected = False

    def list(self, path: str) -> List[EndpointItem]:
        return list_local_directory(path)

    def stat(self, path: str) -> Optional[EndpointItem]:
        try:
            return local_item(path)
        except OSError:
            return None

    def get(self, remote_path: str, local_path: str,
            on_progress: Optional[ProgressCallback] = None) -> OperationResult:
        return self._copy(remote_path, local_path, on_progress)

    def put(self, local_path: str, remote_path: str,
            on_progress: Optional[ProgressCallback] = None) -> OperationResult:
        return self._copy(local_path, remote_path, on_progress)

    def _copy(self, source: str, destination: str,
              on_progress: Optional[ProgressCallback]) -> OperationResult:
        if not os.path.isfile(source):
            return OperationResult.failed(f"Source file does not exist: {source}")
        try:
            make_local_dirs(os.path.dirname(destination) or ".")
            copy_with_progress(source, destination, on_progress)
        except TransferCancelledException:
            if os.path.exists(destination):
                os.unlink(destination)
            raise
        except OSError as e:
            return OperationResult.failed(f"Copy failed: {e}")
        return OperationResult.ok(f"Copied {os.path.basename(source)}")

    def delete(self, path: str) -> OperationResult:
        try:
            if os.path.isdir(path) and not os.path.islink(path):
                remove_local_tree(path)
            else:
                remove_local_file(path)
        except OSError as e:
            return OperationResult.failed(f"Cannot remove '{path}': {e}")
        return OperationResult.ok(f"Removed {os.path.basename(path)}")

    def mkdir(self, path: str) -> OperationResult:
        try:
            make_local_dirs(path)
        except OSError as e:
            return OperationResult.failed(f"Cannot create directory '{path}': {e}")
        return OperationResult.ok(f"Created {path}")

    def rmdir(self, path: str) -> OperationResult:
        try:
            remove_local_tree(path)
        except OSError as e:
            return OperationResult.failed(f"Cannot remove directory '{path}': {e}")
        return OperationResult.ok(f"Removed {path}")

    def rename(self, old_path: str, new_path: str) -> OperationResult:
        try:
            shutil.move(old_path, new_path)
        except OSError as e:
            return OperationResult.failed(f"Cannot rename '{old_path}' to '{new_path}': {e}")
        return OperationResult.ok(f"Renamed {old_path} -> {new_path}")

    def chmod(self, path: str, mode: str) -> OperationResult:
        try:
            os.chmod(path, int(mode, 8))
        except (OSError, ValueError) as e:
            return OperationResult.failed(f"Cannot change mode of '{path}': {e}")
        return OperationResult.ok(f"Changed mode of {path} to {mode}")
