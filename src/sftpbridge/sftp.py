"""Paramiko backed SFTP endpoint session."""

from __future__ import annotations

import logging
import os
import posixpath
import stat
import threading
from typing import List, Optional

import paramiko

from .config import ConnectionConfig
from .errors import FileOperationError, TransferCancelledException
from .fileops import format_size, make_local_dirs, mode_to_str
from .session import EndpointItem, EndpointSession, ItemKind, OperationResult, ProgressCallback

logger = logging.getLogger(__name__)

CONNECT_TIMEOUT = 30


class SFTPSession(EndpointSession):
    """Thread-safe wrapper around a paramiko SFTP client.

    Tests can monkeypatch :class:`paramiko.SSHClient` to avoid talking to a
    real server.
    """

    def __init__(self) -> None:
        self._client: Optional[paramiko.SSHClient] = None
        self._sftp: Optional[paramiko.SFTPClient] = None
        self._config: Optional[ConnectionConfig] = None
        self._connection_lock = threading.RLock()

    @property
    def connected(self) -> bool:
        with self._connection_lock:
            return self._sftp is not None and self._client is not None

    @property
    def endpoint_id(self) -> str:
        return self._config.name if self._config else ""

    # -- connection -----------------------------------------------------

    def connect(self, config: ConnectionConfig) -> OperationResult:
        """Establish the SSH/SFTP connection described by ``config``."""
        self._config = config
        logger.info(f"Connecting to {config.username}@{config.host}:{config.port}")

        kwargs = dict(
            hostname=config.host,
            port=config.port,
            username=config.username,
            timeout=CONNECT_TIMEOUT,
            auth_timeout=CONNECT_TIMEOUT,
        )
        if config.private_key_path:
            key_path = os.path.expanduser(config.private_key_path)
            if not os.path.exists(key_path):
                return OperationResult.failed(f"Private key file does not exist: {key_path}")
            kwargs.update(key_filename=key_path, allow_agent=False, look_for_keys=False)
        else:
            kwargs.update(password=config.password, allow_agent=True, look_for_keys=True)

        client = paramiko.SSHClient()
        client.set_missing_host_key_policy(paramiko.AutoAddPolicy())
        try:
            client.connect(**kwargs)
            sftp = client.open_sftp()
        except paramiko.AuthenticationException as e:
            client.close()
            return OperationResult.failed(f"Authentication failed: {e}")
        except (paramiko.SSHException, OSError) as e:
            client.close()
            return OperationResult.failed(f"Connection failed: {e}")

        with self._connection_lock:
            self._client = client
            self._sftp = sftp

        logger.info(f"SFTP connection to {config.name} established")
        return OperationResult.ok(f"Connected to {config.host}:{config.port}")

    def disconnect(self) -> None:
        """Close connections and cleanup resources."""
        with self._connection_lock:
            if self._sftp:
                try:
                    self._sftp.close()
                except Exception as e:
                    logger.warning(f"Error closing SFTP client: {e}")
                finally:
                    self._sftp = None

            if self._client:
                try:
                    self._client.close()
                except Exception as e:
                    logger.warning(f"Error closing SSH client: {e}")
                finally:
                    self._client = None

    def _ensure_connected(self) -> paramiko.SFTPClient:
        with self._connection_lock:
            if not self._sftp or not self._client:
                raise FileOperationError("Not connected to server")
            return self._sftp

    # -- helpers --------------------------------------------------------

    @staticmethod
    def _is_directory(attr: paramiko.SFTPAttributes) -> bool:
        return bool(attr.st_mode and stat.S_ISDIR(attr.st_mode))

    def _to_item(self, path: str, attr: paramiko.SFTPAttributes) -> EndpointItem:
        is_dir = self._is_directory(attr)
        return EndpointItem(
            name=posixpath.basename(path.rstrip("/")) or path,
            path=path,
            kind=ItemKind.DIRECTORY if is_dir else ItemKind.FILE,
            size=0 if is_dir else (attr.st_size or 0),
            modified=float(attr.st_mtime or 0),
            permissions=mode_to_str(attr.st_mode) if attr.st_mode else "",
            endpoint_id=self.endpoint_id,
        )

    def expand_path(self, path: str) -> str:
        """Expand ~ and ~/ on the remote server."""
        if path != "~" and not path.startswith("~/"):
            return path

        sftp = self._ensure_connected()
        username = self._config.username if self._config else ""
        try:
            home_path = sftp.normalize(".")
        except IOError:
            home_path = None
            for fallback in (f"/home/{username}", f"/Users/{username}", f"/export/home/{username}"):
                try:
                    sftp.listdir_attr(fallback)
                except IOError:
                    continue
                home_path = fallback
                break
            else:
                home_path = f"/home/{username}"

        return home_path if path == "~" else posixpath.join(home_path, path[2:])

    # -- queries --------------------------------------------------------

    def list(self, path: str) -> List[EndpointItem]:
        sftp = self._ensure_connected()
        expanded_path = path
        try:
            expanded_path = self.expand_path(path)
            entries = [
                self._to_item(posixpath.join(expanded_path, attr.filename), attr)
                for attr in sftp.listdir_attr(expanded_path)
                if attr.filename
            ]
        except (IOError, EOFError, paramiko.SSHException) as e:
            raise FileOperationError(f"Cannot list directory '{expanded_path}': {e}")

        entries.sort(key=lambda entry: entry.name)
        logger.debug(f"Listed {len(entries)} entries in {expanded_path}")
        return entries

    def stat(self, path: str) -> Optional[EndpointItem]:
        if not self.connected:
            return None
        sftp = self._ensure_connected()
        try:
            path = self.expand_path(path)
            attr = sftp.stat(path)
        except IOError:
            return None
        except (EOFError, paramiko.SSHException) as e:
            raise FileOperationError(f"Cannot stat '{path}': {e}")
        return self._to_item(path, attr)

    # -- transfers ------------------------------------------------------

    def get(self, remote_path: str, local_path: str,
            on_progress: Optional[ProgressCallback] = None) -> OperationResult:
        """Download a file."""
        try:
            sftp = self._ensure_connected()
            remote_path = self.expand_path(remote_path)
        except (FileOperationError, EOFError, paramiko.SSHException) as e:
            return OperationResult.failed(str(e))

        try:
            make_local_dirs(os.path.dirname(local_path) or ".")
            logger.info(f"Starting download: {remote_path} -> {local_path}")
            sftp.get(remote_path, local_path, callback=on_progress)
        except TransferCancelledException:
            logger.info(f"Download cancelled: {remote_path}")
            self._discard_local(local_path)
            raise
        except (IOError, EOFError, paramiko.SSHException) as e:
            logger.error(f"Download failed: {e}")
            self._discard_local(local_path)
            return OperationResult.failed(f"Download failed: {e}")

        size = os.path.getsize(local_path)
        logger.info(f"Download completed: {local_path} ({format_size(size)})")
        return OperationResult.ok(f"Downloaded {posixpath.basename(remote_path)}")

    def put(self, local_path: str, remote_path: str,
            on_progress: Optional[ProgressCallback] = None) -> OperationResult:
        """Upload a file."""
        try:
            sftp = self._ensure_connected()
            remote_path = self.expand_path(remote_path)
        except (FileOperationError, EOFError, paramiko.SSHException) as e:
            return OperationResult.failed(str(e))

        if not os.path.isfile(local_path):
            return OperationResult.failed(f"Source file does not exist: {local_path}")

        try:
            logger.info(f"Starting upload: {local_path} -> {remote_path}")
            sftp.put(local_path, remote_path, callback=on_progress)
        except TransferCancelledException:
            logger.info(f"Upload cancelled: {local_path}")
            try:
                sftp.remove(remote_path)
            except (IOError, EOFError, paramiko.SSHException) as e:
                logger.warning(f"Could not remove partial upload {remote_path}: {e}")
            raise
        except (IOError, EOFError, paramiko.SSHException) as e:
            logger.error(f"Upload failed: {e}")
            return OperationResult.failed(f"Upload failed: {e}")

        logger.info(f"Upload completed: {remote_path}")
        return OperationResult.ok(f"Uploaded {os.path.basename(local_path)}")

    @staticmethod
    def _discard_local(path: str) -> None:
        try:
            if os.path.exists(path):
                os.unlink(path)
        except OSError as e:
            logger.warning(f"Could not remove partial download {path}: {e}")

    # -- mutations ------------------------------------------------------

    def delete(self, path: str) -> OperationResult:
        """Remove file or directory on the remote server."""
        try:
            sftp = self._ensure_connected()
            path = self.expand_path(path)
            attr = sftp.stat(path)
            if self._is_directory(attr):
                self._remove_directory_recursive(sftp, path)
            else:
                sftp.remove(path)
        except (IOError, EOFError, paramiko.SSHException, FileOperationError) as e:
            return OperationResult.failed(f"Cannot remove '{path}': {e}")

        logger.info(f"Removed: {path}")
        return OperationResult.ok(f"Removed {posixpath.basename(path)}")

    def _remove_directory_recursive(self, sftp: paramiko.SFTPClient, path: str) -> None:
        for item in sftp.listdir_attr(path):
            item_path = posixpath.join(path, item.filename)
            if self._is_directory(item):
                self._remove_directory_recursive(sftp, item_path)
            else:
                sftp.remove(item_path)
        sftp.rmdir(path)

    def mkdir(self, path: str) -> OperationResult:
        """Create a directory and its missing parents."""
        try:
            sftp = self._ensure_connected()
            path = self.expand_path(path)
            current = "/" if path.startswith("/") else ""
            for part in [p for p in path.split("/") if p]:
                current = posixpath.join(current, part) if current else part
                try:
                    attr = sftp.stat(current)
                except IOError:
                    sftp.mkdir(current)
                    logger.info(f"Created directory: {current}")
                    continue
                if not self._is_directory(attr):
                    raise FileOperationError(f"'{current}' exists and is not a directory")
        except (IOError, EOFError, paramiko.SSHException, FileOperationError) as e:
            return OperationResult.failed(f"Cannot create directory '{path}': {e}")
        return OperationResult.ok(f"Created {path}")

    def rmdir(self, path: str) -> OperationResult:
        try:
            sftp = self._ensure_connected()
            path = self.expand_path(path)
            self._remove_directory_recursive(sftp, path)
        except (IOError, EOFError, paramiko.SSHException, FileOperationError) as e:
            return OperationResult.failed(f"Cannot remove directory '{path}': {e}")
        logger.info(f"Removed directory: {path}")
        return OperationResult.ok(f"Removed {path}")

    def rename(self, old_path: str, new_path: str) -> OperationResult:
        try:
            sftp = self._ensure_connected()
            old_path = self.expand_path(old_path)
            new_path = self.expand_path(new_path)
            sftp.rename(old_path, new_path)
        except (IOError, EOFError, paramiko.SSHException, FileOperationError) as e:
            return OperationResult.failed(f"Cannot rename '{old_path}' to '{new_path}': {e}")
        logger.info(f"Renamed: {old_path} -> {new_path}")
        return OperationResult.ok(f"Renamed {posixpath.basename(old_path)} -> {posixpath.basename(new_path)}")

    def chmod(self, path: str, mode: str) -> OperationResult:
        try:
            sftp = self._ensure_connected()
            path = self.expand_path(path)
            sftp.chmod(path, int(mode, 8))
        except (IOError, EOFError, ValueError, paramiko.SSHException, FileOperationError) as e:
            return OperationResult.failed(f"Cannot change mode of '{path}': {e}")
        return OperationResult.ok(f"Changed mode of {posixpath.basename(path)} to {mode}")
