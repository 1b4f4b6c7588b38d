"""Public interface for the sftpbridge package."""

from .clipboard import ClipboardManager, ClipboardOperation, DeleteReport, Topology, TransferIntent, classify_topology
from .config import ConfigLoader, ConnectionConfig
from .connection import ConnectionRecord, ConnectionRegistry, ConnectionStatus, SessionHandle
from .errors import (
    EndpointConnectionError,
    FileOperationError,
    SFTPBridgeError,
    StaleSessionError,
    TransferCancelledException,
    TransferError,
    UnsupportedOperationError,
)
from .fileops import LocalSession, list_local_directory, normalize_local_path, staging_directory
from .logging_setup import setup_logging
from .progress import ProgressTracker
from .session import LOCAL_ENDPOINT_ID, EndpointItem, EndpointSession, ItemKind, OperationResult
from .sftp import SFTPSession
from .tree import pull_tree, push_tree

__all__ = [
    "ClipboardManager",
    "ClipboardOperation",
    "ConfigLoader",
    "ConnectionConfig",
    "ConnectionRecord",
    "ConnectionRegistry",
    "ConnectionStatus",
    "DeleteReport",
    "EndpointConnectionError",
    "EndpointItem",
    "EndpointSession",
    "FileOperationError",
    "ItemKind",
    "LOCAL_ENDPOINT_ID",
    "LocalSession",
    "OperationResult",
    "ProgressTracker",
    "SFTPBridgeError",
    "SFTPSession",
    "SessionHandle",
    "StaleSessionError",
    "Topology",
    "TransferCancelledException",
    "TransferError",
    "TransferIntent",
    "UnsupportedOperationError",
    "classify_topology",
    "list_local_directory",
    "normalize_local_path",
    "pull_tree",
    "push_tree",
    "setup_logging",
    "staging_directory",
]
