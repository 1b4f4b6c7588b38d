"""Endpoint session contract shared by the local filesystem and SFTP servers."""

from __future__ import annotations

import dataclasses
import posixpath
from abc import ABC, abstractmethod
from enum import Enum
from typing import TYPE_CHECKING, Callable, List, Optional

if TYPE_CHECKING:
    from .config import ConnectionConfig

# Reserved endpoint id for the local filesystem.
LOCAL_ENDPOINT_ID = "__LOCAL__"

ProgressCallback = Callable[[int, int], None]


class ItemKind(Enum):
    """Kinds of endpoint items."""
    FILE = "file"
    DIRECTORY = "directory"


@dataclasses.dataclass(frozen=True)
class EndpointItem:
    """Immutable snapshot of one file or directory on an endpoint."""
    name: str
    path: str
    kind: ItemKind
    size: int = 0
    modified: float = 0.0
    permissions: str = ""
    endpoint_id: str = LOCAL_ENDPOINT_ID

    def __post_init__(self) -> None:
        if not self.name:
            raise ValueError("Item name cannot be empty")
        if self.size < 0:
            object.__setattr__(self, "size", 0)
        if self.modified < 0:
            object.__setattr__(self, "modified", 0.0)

    @property
    def is_dir(self) -> bool:
        return self.kind is ItemKind.DIRECTORY

    @property
    def is_local(self) -> bool:
        return self.endpoint_id == LOCAL_ENDPOINT_ID

    @classmethod
    def remote_file(cls, endpoint_id: str, path: str, size: int = 0) -> "EndpointItem":
        return cls(posixpath.basename(path), path, ItemKind.FILE, size=size, endpoint_id=endpoint_id)

    @classmethod
    def remote_directory(cls, endpoint_id: str, path: str) -> "EndpointItem":
        return cls(posixpath.basename(path.rstrip("/")) or path, path, ItemKind.DIRECTORY, endpoint_id=endpoint_id)


@dataclasses.dataclass(frozen=True)
class OperationResult:
    """Outcome of a mutating session call."""
    success: bool
    message: str = ""

    @classmethod
    def ok(cls, message: str = "") -> "OperationResult":
        return cls(True, message)

    @classmethod
    def failed(cls, message: str) -> "OperationResult":
        return cls(False, message)


class EndpointSession(ABC):
    """Capabilities exposed by a connected endpoint.

    Mutating calls return an :class:`OperationResult` rather than raising;
    callers treat ``success=False`` the same as an exception.
    """

    @abstractmethod
    def connect(self, config: "ConnectionConfig") -> OperationResult:
        """Open the session."""

    @abstractmethod
    def disconnect(self) -> None:
        """Close the session. Safe to call more than once."""

    @abstractmethod
    def list(self, path: str) -> List[EndpointItem]:
        """List one directory level."""

    @abstractmethod
    def stat(self, path: str) -> Optional[EndpointItem]:
        """Return the item at ``path`` or ``None`` when it does not exist."""

    def exists(self, path: str) -> bool:
        return self.stat(path) is not None

    @abstractmethod
    def get(self, remote_path: str, local_path: str,
            on_progress: Optional[ProgressCallback] = None) -> OperationResult:
        """Copy ``remote_path`` from this endpoint to a local file."""

    @abstractmethod
    def put(self, local_path: str, remote_path: str,
            on_progress: Optional[ProgressCallback] = None) -> OperationResult:
        """Copy a local file to ``remote_path`` on this endpoint."""

    @abstractmethod
    def delete(self, path: str) -> OperationResult:
        """Remove a file, or a directory and everything below it."""

    @abstractmethod
    def mkdir(self, path: str) -> OperationResult:
        """Create ``path`` and any missing parents. Existing directories are fine."""

    @abstractmethod
    def rmdir(self, path: str) -> OperationResult:
        """Remove a directory tree."""

    @abstractmethod
    def rename(self, old_path: str, new_path: str) -> OperationResult:
        """Move ``old_path`` to ``new_path`` on this endpoint."""

    @abstractmethod
    def chmod(self, path: str, mode: str) -> OperationResult:
        """Change permissions; ``mode`` is an octal string such as ``"644"``."""

    @property
    @abstractmethod
    def connected(self) -> bool:
        """Whether the session is currently usable."""
