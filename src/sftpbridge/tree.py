"""Depth-first directory transfers between the local filesystem and a session.

Both walks create a directory before anything is transferred into it and
only delete the source once the whole tree has been moved. They keep an
explicit stack of directory iterators so deep trees do not hit the
interpreter recursion limit.
"""

from __future__ import annotations

import logging
import os
import posixpath
from typing import Callable, Iterator, List, Optional, Tuple

from .errors import TransferCancelledException, TransferError
from .fileops import list_local_directory, make_local_dirs, remove_local_tree
from .progress import ProgressTracker
from .session import EndpointItem, EndpointSession, OperationResult, ProgressCallback

logger = logging.getLogger(__name__)


def run_step(operation: str, path: str, func: Callable[..., OperationResult], *args) -> OperationResult:
    """Call a session primitive, turning any failure into :class:`TransferError`."""
    try:
        result = func(*args)
    except (TransferError, TransferCancelledException):
        raise
    except Exception as e:
        raise TransferError(path, str(e), operation) from e
    if not result.success:
        raise TransferError(path, result.message, operation)
    return result


def list_remote(session: EndpointSession, path: str) -> List[EndpointItem]:
    try:
        return session.list(path)
    except (TransferError, TransferCancelledException):
        raise
    except Exception as e:
        raise TransferError(path, str(e), "List directory") from e


def list_local(path: str) -> List[EndpointItem]:
    try:
        return list_local_directory(path)
    except OSError as e:
        raise TransferError(path, str(e), "List directory") from e


def local_step(operation: str, path: str, func: Callable[[str], None]) -> None:
    try:
        func(path)
    except OSError as e:
        raise TransferError(path, str(e), operation) from e


def file_progress(progress: Optional[ProgressTracker], name: str) -> Optional[ProgressCallback]:
    """Progress callback that records bytes without honouring cancellation."""
    if progress is None:
        return None

    def _progress(transferred: int, total: int) -> None:
        progress.update_file_progress(name, transferred, total)

    return _progress


def pull_tree(remote_dir: str, local_dir: str, session: EndpointSession,
              delete_source_after: bool = False,
              progress: Optional[ProgressTracker] = None) -> int:
    """Download ``remote_dir`` into ``local_dir``; return the number of files."""
    logger.info(f"Downloading directory {remote_dir} -> {local_dir}")
    local_step("Create directory", local_dir, make_local_dirs)

    files = 0
    stack: List[Tuple[Iterator[EndpointItem], str, str]] = [
        (iter(list_remote(session, remote_dir)), remote_dir, local_dir)
    ]
    while stack:
        children, source, target = stack[-1]
        item = next(children, None)
        if item is None:
            stack.pop()
            continue

        remote_path = posixpath.join(source, item.name)
        local_path = os.path.join(target, item.name)
        if item.is_dir:
            local_step("Create directory", local_path, make_local_dirs)
            stack.append((iter(list_remote(session, remote_path)), remote_path, local_path))
            continue

        if progress:
            progress.add_files()
        run_step("Download", remote_path, session.get, remote_path, local_path,
                 file_progress(progress, item.name))
        if progress:
            progress.complete_file()
        files += 1

    if delete_source_after:
        run_step("Delete", remote_dir, session.delete, remote_dir)
    logger.info(f"Downloaded {files} file(s) from {remote_dir}")
    return files


def push_tree(local_dir: str, remote_dir: str, session: EndpointSession,
              delete_source_after: bool = False,
              progress: Optional[ProgressTracker] = None) -> int:
    """Upload ``local_dir`` to ``remote_dir``; return the number of files."""
    logger.info(f"Uploading directory {local_dir} -> {remote_dir}")
    run_step("Create directory", remote_dir, session.mkdir, remote_dir)

    files = 0
    stack: List[Tuple[Iterator[EndpointItem], str, str]] = [
        (iter(list_local(local_dir)), local_dir, remote_dir)
    ]
    while stack:
        children, source, target = stack[-1]
        item = next(children, None)
        if item is None:
            stack.pop()
            continue

        local_path = os.path.join(source, item.name)
        remote_path = posixpath.join(target, item.name)
        if item.is_dir:
            run_step("Create directory", remote_path, session.mkdir, remote_path)
            stack.append((iter(list_local(local_path)), local_path, remote_path))
            continue

        if progress:
            progress.add_files()
        run_step("Upload", local_path, session.put, local_path, remote_path,
                 file_progress(progress, item.name))
        if progress:
            progress.complete_file()
        files += 1

    if delete_source_after:
        local_step("Delete", local_dir, remove_local_tree)
    logger.info(f"Uploaded {files} file(s) from {local_dir}")
    return files
