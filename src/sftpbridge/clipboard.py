"""Copy/cut/paste engine moving items between endpoints."""

from __future__ import annotations

import dataclasses
import logging
import os
import posixpath
from datetime import datetime
from enum import Enum
from typing import Iterable, List, Optional, Tuple

from .connection import ConnectionRegistry
from .errors import (
    FileOperationError,
    SFTPBridgeError,
    TransferError,
    UnsupportedOperationError,
)
from .fileops import LocalSession, make_local_dirs, remove_local_file, staging_directory
from .progress import ProgressTracker
from .session import LOCAL_ENDPOINT_ID, EndpointItem, EndpointSession
from .tree import file_progress, local_step, pull_tree, push_tree, run_step

logger = logging.getLogger(__name__)


class ClipboardOperation(Enum):
    COPY = "copy"
    CUT = "cut"


class Topology(Enum):
    """Source/destination combinations a paste can fall into."""
    UPLOAD = "upload"
    DOWNLOAD = "download"
    SAME_ENDPOINT = "same-endpoint"
    RELAY = "relay"


def classify_topology(source_endpoint_id: str, dest_endpoint_id: str) -> Topology:
    if source_endpoint_id == LOCAL_ENDPOINT_ID and dest_endpoint_id != LOCAL_ENDPOINT_ID:
        return Topology.UPLOAD
    if source_endpoint_id != LOCAL_ENDPOINT_ID and dest_endpoint_id == LOCAL_ENDPOINT_ID:
        return Topology.DOWNLOAD
    if source_endpoint_id == dest_endpoint_id:
        return Topology.SAME_ENDPOINT
    return Topology.RELAY


@dataclasses.dataclass(frozen=True)
class TransferIntent:
    """The pending clipboard payload."""
    operation: ClipboardOperation
    items: Tuple[EndpointItem, ...]
    source_endpoint_id: str
    captured_at: datetime

    @property
    def is_cut(self) -> bool:
        return self.operation is ClipboardOperation.CUT

    @property
    def names(self) -> str:
        return ", ".join(item.name for item in self.items)


@dataclasses.dataclass
class DeleteReport:
    """Per-item outcome of :meth:`ClipboardManager.delete_items`."""
    succeeded: List[EndpointItem] = dataclasses.field(default_factory=list)
    failed: List[Tuple[EndpointItem, str]] = dataclasses.field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.failed

    @property
    def partial(self) -> bool:
        return bool(self.failed) and bool(self.succeeded)

    def summary(self) -> str:
        total = len(self.succeeded) + len(self.failed)
        if self.ok:
            return f"Deleted {total} item(s)"
        errors = "\n".join(f"{item.name}: {message}" for item, message in self.failed)
        if self.partial:
            return f"Deleted {len(self.succeeded)} of {total} item(s), {len(self.failed)} failed:\n{errors}"
        return f"Delete failed:\n{errors}"


class ClipboardManager:
    """Holds at most one transfer intent and pastes it onto an endpoint.

    Sessions are looked up in the registry for every primitive call, so an
    endpoint that disconnects halfway through a paste fails the paste with
    :class:`~sftpbridge.errors.StaleSessionError`.
    """

    def __init__(self, registry: ConnectionRegistry) -> None:
        self._registry = registry
        self._intent: Optional[TransferIntent] = None
        self._local = LocalSession()
        self._local.connect()
        self.last_error: Optional[SFTPBridgeError] = None

    # -- intent -----------------------------------------------------------

    def copy(self, items: Iterable[EndpointItem], source_endpoint_id: str) -> TransferIntent:
        return self._capture(ClipboardOperation.COPY, items, source_endpoint_id)

    def cut(self, items: Iterable[EndpointItem], source_endpoint_id: str) -> TransferIntent:
        return self._capture(ClipboardOperation.CUT, items, source_endpoint_id)

    def _capture(self, operation: ClipboardOperation, items: Iterable[EndpointItem],
                 source_endpoint_id: str) -> TransferIntent:
        items = tuple(items)
        if not items:
            raise ValueError("Nothing selected")
        foreign = [item.name for item in items if item.endpoint_id != source_endpoint_id]
        if foreign:
            raise ValueError(f"Items not on endpoint '{source_endpoint_id}': {', '.join(foreign)}")

        self._intent = TransferIntent(
            operation=operation,
            items=items,
            source_endpoint_id=source_endpoint_id,
            captured_at=datetime.now(),
        )
        verb = "Copied" if operation is ClipboardOperation.COPY else "Cut"
        logger.info(f"{verb}: {self._intent.names}")
        return self._intent

    def has_clipboard_data(self) -> bool:
        return self._intent is not None

    def get_clipboard_data(self) -> Optional[TransferIntent]:
        return self._intent

    def clear_clipboard(self) -> None:
        self._intent = None

    def has_local_files(self) -> bool:
        return self._intent is not None and self._intent.source_endpoint_id == LOCAL_ENDPOINT_ID

    # -- paste ------------------------------------------------------------

    def paste(self, dest_endpoint_id: str, dest_path: str,
              progress: Optional[ProgressTracker] = None) -> bool:
        """Execute the pending intent against ``dest_endpoint_id:dest_path``.

        Returns ``True`` only when every item was transferred. The first
        failing item aborts the batch; items already transferred stay where
        they are. The failure is kept on :attr:`last_error` and the intent is
        preserved so the paste can be retried.
        """
        intent = self._intent
        if intent is None:
            logger.warning("Clipboard is empty")
            return False

        self.last_error = None
        topology = classify_topology(intent.source_endpoint_id, dest_endpoint_id)
        logger.info(f"Pasting {intent.operation.value} of {len(intent.items)} item(s) "
                    f"from {intent.source_endpoint_id} to {dest_endpoint_id}:{dest_path} ({topology.value})")
        try:
            if topology is Topology.UPLOAD:
                self._paste_upload(intent, dest_endpoint_id, dest_path, progress)
            elif topology is Topology.DOWNLOAD:
                self._paste_download(intent, dest_path, progress)
            elif topology is Topology.SAME_ENDPOINT:
                self._paste_same_endpoint(intent, dest_path, progress)
            else:
                self._paste_relay(intent, dest_endpoint_id, dest_path, progress)
        except SFTPBridgeError as e:
            self.last_error = e
            logger.error(f"Paste failed: {e}")
            return False

        logger.info(f"Paste complete: {intent.names} to {dest_path}")
        if intent.is_cut and self._intent is intent:
            self._intent = None
        return True

    def _session_for(self, endpoint_id: str) -> EndpointSession:
        if endpoint_id == LOCAL_ENDPOINT_ID:
            return self._local
        self._registry.require_session(endpoint_id)
        return self._registry.handle(endpoint_id)

    def _transfer_file(self, operation: str, func, source: str, target: str,
                       name: str, progress: Optional[ProgressTracker]) -> None:
        if progress:
            progress.add_files()
        run_step(operation, source, func, source, target, file_progress(progress, name))
        if progress:
            progress.complete_file()

    def _paste_upload(self, intent: TransferIntent, dest_endpoint_id: str, dest_path: str,
                      progress: Optional[ProgressTracker]) -> None:
        dest = self._session_for(dest_endpoint_id)
        for item in intent.items:
            target = posixpath.join(dest_path, item.name)
            if item.is_dir:
                push_tree(item.path, target, dest, intent.is_cut, progress)
                continue
            self._transfer_file("Upload", dest.put, item.path, target, item.name, progress)
            if intent.is_cut:
                local_step("Delete", item.path, remove_local_file)

    def _paste_download(self, intent: TransferIntent, dest_path: str,
                        progress: Optional[ProgressTracker]) -> None:
        source = self._session_for(intent.source_endpoint_id)
        local_step("Create directory", dest_path, make_local_dirs)
        for item in intent.items:
            target = os.path.join(dest_path, item.name)
            if item.is_dir:
                pull_tree(item.path, target, source, intent.is_cut, progress)
                continue
            self._transfer_file("Download", source.get, item.path, target, item.name, progress)
            if intent.is_cut:
                run_step("Delete", item.path, source.delete, item.path)

    def _paste_same_endpoint(self, intent: TransferIntent, dest_path: str,
                             progress: Optional[ProgressTracker]) -> None:
        if not intent.is_cut:
            directories = [item.name for item in intent.items if item.is_dir]
            if directories:
                raise UnsupportedOperationError(
                    f"Copying directories within one endpoint is unsupported, use cut: "
                    f"{', '.join(directories)}"
                )

        session = self._session_for(intent.source_endpoint_id)
        for item in intent.items:
            target = posixpath.join(dest_path, item.name)
            if intent.is_cut:
                if target == item.path:
                    logger.info(f"{item.path} is already in {dest_path}, skipping")
                    continue
                run_step("Move", item.path, session.rename, item.path, target)
                continue

            with staging_directory("copy") as staging:
                temp_path = os.path.join(staging, item.name)
                run_step("Download", item.path, session.get, item.path, temp_path)
                self._transfer_file("Upload", session.put, temp_path, target, item.name, progress)

    def _paste_relay(self, intent: TransferIntent, dest_endpoint_id: str, dest_path: str,
                     progress: Optional[ProgressTracker]) -> None:
        with staging_directory("relay") as staging:
            source = self._session_for(intent.source_endpoint_id)
            dest = self._session_for(dest_endpoint_id)

            for item in intent.items:
                temp_path = os.path.join(staging, item.name)
                if item.is_dir:
                    pull_tree(item.path, temp_path, source)
                else:
                    run_step("Download", item.path, source.get, item.path, temp_path)

            for item in intent.items:
                temp_path = os.path.join(staging, item.name)
                target = posixpath.join(dest_path, item.name)
                if item.is_dir:
                    push_tree(temp_path, target, dest, False, progress)
                else:
                    self._transfer_file("Upload", dest.put, temp_path, target, item.name, progress)

            if intent.is_cut:
                for item in intent.items:
                    run_step("Delete", item.path, source.delete, item.path)

    # -- single operations --------------------------------------------------

    def delete_items(self, endpoint_id: str, items: Iterable[EndpointItem]) -> DeleteReport:
        """Delete every item, collecting failures instead of stopping at the first."""
        report = DeleteReport()
        session = (self._local if endpoint_id == LOCAL_ENDPOINT_ID
                   else self._registry.handle(endpoint_id))
        for item in items:
            try:
                result = session.delete(item.path)
            except (FileOperationError, TransferError, OSError) as e:
                report.failed.append((item, str(e)))
                continue
            if result.success:
                report.succeeded.append(item)
            else:
                report.failed.append((item, result.message))

        if report.ok:
            logger.info(report.summary())
        elif report.partial:
            logger.warning(report.summary())
        else:
            logger.error(report.summary())
        return report

    def download_file(self, endpoint_id: str, remote_path: str, local_path: str,
                      progress: Optional[ProgressTracker] = None) -> None:
        """Download one file; ``progress.cancel()`` aborts it mid-transfer."""
        progress = progress or ProgressTracker(total_files=1)
        progress.check_cancelled()
        session = self._session_for(endpoint_id)
        name = posixpath.basename(remote_path)
        run_step("Download", remote_path, session.get, remote_path, local_path, progress.callback(name))
        progress.complete_file()

    def upload_file(self, endpoint_id: str, local_path: str, remote_path: str,
                    progress: Optional[ProgressTracker] = None) -> None:
        """Upload one file; ``progress.cancel()`` aborts it mid-transfer."""
        progress = progress or ProgressTracker(total_files=1)
        progress.check_cancelled()
        session = self._session_for(endpoint_id)
        name = os.path.basename(local_path)
        run_step("Upload", local_path, session.put, local_path, remote_path, progress.callback(name))
        progress.complete_file()
