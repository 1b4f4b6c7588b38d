"""Connection registry: configured endpoints and their session lifecycle."""

from __future__ import annotations

import dataclasses
import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor, wait
from enum import Enum
from typing import Callable, Dict, List, Optional

from .config import ConfigLoader, ConnectionConfig
from .errors import StaleSessionError
from .session import EndpointItem, EndpointSession, OperationResult, ProgressCallback
from .sftp import SFTPSession

logger = logging.getLogger(__name__)

SessionFactory = Callable[[ConnectionConfig], EndpointSession]


class ConnectionStatus(Enum):
    """Lifecycle states of a configured endpoint."""
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    ERROR = "error"


@dataclasses.dataclass
class ConnectionRecord:
    """One configured endpoint and its live session, if any."""
    config: ConnectionConfig
    status: ConnectionStatus = ConnectionStatus.DISCONNECTED
    session: Optional[EndpointSession] = None
    last_error: Optional[str] = None
    current_path: str = ""
    cancel_event: Optional[threading.Event] = dataclasses.field(default=None, repr=False)

    def __post_init__(self) -> None:
        if not self.current_path:
            self.current_path = self.config.remote_path

    @property
    def name(self) -> str:
        return self.config.name


def _default_session_factory(config: ConnectionConfig) -> EndpointSession:
    return SFTPSession()


class ConnectionRegistry:
    """Owns every configured endpoint and mediates connect/disconnect/cancel.

    ``session`` is set on a record only while its status is
    :attr:`ConnectionStatus.CONNECTED`. Other components look sessions up by
    name for each operation instead of keeping references.
    """

    def __init__(
        self,
        connections: Optional[List[ConnectionConfig]] = None,
        *,
        session_factory: Optional[SessionFactory] = None,
        loader: Optional[ConfigLoader] = None,
        max_workers: int = 4,
    ) -> None:
        self._connections: Dict[str, ConnectionRecord] = {}
        self._session_factory = session_factory or _default_session_factory
        self._loader = loader
        self._lock = threading.RLock()
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="sftp")

        for config in connections or []:
            self._connections[config.name] = ConnectionRecord(config=config)
        logger.info(f"Loaded {len(self._connections)} connection configuration(s)")

    @classmethod
    def from_config_file(cls, config_path: Optional[str] = None, **kwargs) -> "ConnectionRegistry":
        loader = ConfigLoader(config_path)
        return cls(loader.load_connections(), loader=loader, **kwargs)

    # -- configuration ----------------------------------------------------

    def save(self) -> None:
        if self._loader is None:
            logger.debug("No configuration loader attached, not saving")
            return
        with self._lock:
            configs = [record.config for record in self._connections.values()]
        self._loader.save_connections(configs)

    def add_connection(self, config: ConnectionConfig) -> None:
        with self._lock:
            if config.name in self._connections:
                raise ValueError(f"Connection '{config.name}' already exists")
            self._connections[config.name] = ConnectionRecord(config=config)
        self.save()
        logger.info(f"Added connection: {config.name}")

    def update_connection(self, name: str, config: ConnectionConfig) -> None:
        with self._lock:
            if name not in self._connections:
                raise KeyError(f"Connection '{name}' does not exist")
            if config.name != name and config.name in self._connections:
                raise ValueError(f"Connection '{config.name}' already exists")
        self.cancel(name)
        self.disconnect(name)
        with self._lock:
            del self._connections[name]
            self._connections[config.name] = ConnectionRecord(config=config)
        self.save()
        logger.info(f"Updated connection: {config.name}")

    def delete_connection(self, name: str) -> None:
        with self._lock:
            if name not in self._connections:
                raise KeyError(f"Connection '{name}' does not exist")
        self.cancel(name)
        self.disconnect(name)
        with self._lock:
            self._connections.pop(name, None)
        self.save()
        logger.info(f"Deleted connection: {name}")

    # -- lifecycle --------------------------------------------------------

    def connect(self, name: str, cancel_event: Optional[threading.Event] = None) -> bool:
        """Open a session for ``name``.

        Returns ``True`` when the endpoint ends up connected. Failures and
        cancellation are reported through the record and a ``False`` return,
        never by raising.
        """
        with self._lock:
            record = self._connections.get(name)
            if record is None:
                logger.error(f"Connection '{name}' does not exist")
                return False
            if record.status is ConnectionStatus.CONNECTED:
                logger.warning(f"Connection '{name}' is already connected")
                return True
            if cancel_event is None:
                cancel_event = threading.Event()
            record.cancel_event = cancel_event
            record.status = ConnectionStatus.CONNECTING
            record.last_error = None

        logger.info(f"Connecting to {name}...")
        try:
            if cancel_event.is_set():
                return self._abandon(record, cancel_event)

            session = self._session_factory(record.config)
            if cancel_event.is_set():
                return self._abandon(record, cancel_event)

            result = session.connect(record.config)

            with self._lock:
                cancelled = cancel_event.is_set()
                if not cancelled:
                    record.cancel_event = None
                    if result.success:
                        record.session = session
                        record.status = ConnectionStatus.CONNECTED
                        record.last_error = None
                    else:
                        record.session = None
                        record.status = ConnectionStatus.DISCONNECTED
                        record.last_error = result.message

            if cancelled:
                if result.success:
                    logger.info(f"Closing session to {name} opened after cancellation")
                    self._close_session(name, session)
                return self._abandon(record, cancel_event)

            if result.success:
                logger.info(f"Connected to {name}: {result.message}")
                return True
            logger.error(f"Connection to {name} failed: {result.message}")
            return False

        except Exception as e:
            logger.error(f"Unexpected error while connecting to {name}: {e}", exc_info=True)
            with self._lock:
                record.session = None
                record.status = ConnectionStatus.ERROR
                record.last_error = str(e)
                if record.cancel_event is cancel_event:
                    record.cancel_event = None
            return False

    def _abandon(self, record: ConnectionRecord, cancel_event: threading.Event) -> bool:
        with self._lock:
            if record.cancel_event is cancel_event:
                record.cancel_event = None
            record.session = None
            record.status = ConnectionStatus.DISCONNECTED
            record.last_error = None
        logger.info(f"Connection to {record.name} cancelled")
        return False

    def connect_async(self, name: str) -> Future:
        """Run :meth:`connect` on the worker pool.

        The record is marked connecting before this returns, so
        :meth:`cancel` takes effect even if the worker has not started yet.
        """
        cancel_event = threading.Event()
        with self._lock:
            record = self._connections.get(name)
            if record is not None and record.status is not ConnectionStatus.CONNECTED:
                record.status = ConnectionStatus.CONNECTING
                record.cancel_event = cancel_event
        return self._executor.submit(self.connect, name, cancel_event)

    def cancel(self, name: str) -> None:
        """Abort an in-flight connect. Has no effect unless connecting."""
        with self._lock:
            record = self._connections.get(name)
            if record is None or record.status is not ConnectionStatus.CONNECTING:
                return
            if record.cancel_event is not None:
                record.cancel_event.set()
            record.status = ConnectionStatus.DISCONNECTED
            record.session = None
            record.last_error = None
        logger.info(f"Cancelled connection to {name}")

    def disconnect(self, name: str) -> None:
        with self._lock:
            record = self._connections.get(name)
            if record is None:
                logger.error(f"Connection '{name}' does not exist")
                return
            if record.status is not ConnectionStatus.CONNECTED or record.session is None:
                logger.debug(f"Connection '{name}' is not connected")
                return
            session = record.session
            record.session = None
            record.status = ConnectionStatus.DISCONNECTED
            record.last_error = None

        self._close_session(name, session)
        logger.info(f"Disconnected from {name}")

    @staticmethod
    def _close_session(name: str, session: EndpointSession) -> None:
        try:
            session.disconnect()
        except Exception as e:
            logger.error(f"Error while disconnecting from {name}: {e}")

    def disconnect_all(self) -> None:
        """Disconnect every endpoint concurrently and wait for all of them."""
        with self._lock:
            names = list(self._connections)
        if not names:
            return
        with ThreadPoolExecutor(max_workers=len(names), thread_name_prefix="sftp-close") as pool:
            wait([pool.submit(self.disconnect, name) for name in names])
        logger.info("Disconnected all connections")

    def close(self) -> None:
        """Disconnect everything and stop the worker pool."""
        self.disconnect_all()
        self._executor.shutdown(wait=False)

    # -- accessors --------------------------------------------------------

    def get_connection(self, name: str) -> Optional[ConnectionRecord]:
        with self._lock:
            return self._connections.get(name)

    def get_all_connections(self) -> List[ConnectionRecord]:
        with self._lock:
            return list(self._connections.values())

    def get_connected_sessions(self) -> Dict[str, EndpointSession]:
        with self._lock:
            return {
                name: record.session
                for name, record in self._connections.items()
                if record.status is ConnectionStatus.CONNECTED and record.session is not None
            }

    def is_connected(self, name: str) -> bool:
        with self._lock:
            record = self._connections.get(name)
            return (record is not None and record.status is ConnectionStatus.CONNECTED
                    and record.session is not None)

    def get_session(self, name: str) -> Optional[EndpointSession]:
        with self._lock:
            record = self._connections.get(name)
            if record is None or record.status is not ConnectionStatus.CONNECTED:
                return None
            return record.session

    def require_session(self, name: str) -> EndpointSession:
        session = self.get_session(name)
        if session is None:
            raise StaleSessionError(name)
        return session

    def get_current_path(self, name: str) -> str:
        with self._lock:
            record = self._connections.get(name)
            return record.current_path if record and record.current_path else "/"

    def set_current_path(self, name: str, path: str) -> None:
        with self._lock:
            record = self._connections.get(name)
            if record is not None:
                record.current_path = path

    def handle(self, name: str) -> "SessionHandle":
        return SessionHandle(self, name)


class SessionHandle(EndpointSession):
    """Session view that looks the live session up on every call.

    A disconnect between two calls surfaces as :class:`StaleSessionError`
    instead of a call on a closed session.
    """

    def __init__(self, registry: ConnectionRegistry, name: str) -> None:
        self._registry = registry
        self.name = name

    def _session(self) -> EndpointSession:
        return self._registry.require_session(self.name)

    @property
    def connected(self) -> bool:
        return self._registry.is_connected(self.name)

    def connect(self, config: Optional[ConnectionConfig] = None) -> OperationResult:
        if self._registry.connect(self.name):
            return OperationResult.ok(f"Connected to {self.name}")
        record = self._registry.get_connection(self.name)
        return OperationResult.failed(record.last_error if record and record.last_error
                                      else f"Could not connect to {self.name}")

    def disconnect(self) -> None:
        self._registry.disconnect(self.name)

    def list(self, path: str) -> List[EndpointItem]:
        return self._session().list(path)

    def stat(self, path: str) -> Optional[EndpointItem]:
        return self._session().stat(path)

    def exists(self, path: str) -> bool:
        return self._session().exists(path)

    def get(self, remote_path: str, local_path: str,
            on_progress: Optional[ProgressCallback] = None) -> OperationResult:
        return self._session().get(remote_path, local_path, on_progress)

    def put(self, local_path: str, remote_path: str,
            on_progress: Optional[ProgressCallback] = None) -> OperationResult:
        return self._session().put(local_path, remote_path, on_progress)

    def delete(self, path: str) -> OperationResult:
        return self._session().delete(path)

    def mkdir(self, path: str) -> OperationResult:
        return self._session().mkdir(path)

    def rmdir(self, path: str) -> OperationResult:
        return self._session().rmdir(path)

    def rename(self, old_path: str, new_path: str) -> OperationResult:
        return self._session().rename(old_path, new_path)

    def chmod(self, path: str, mode: str) -> OperationResult:
        return self._session().chmod(path, mode)
