"""Connection configuration and its YAML storage."""

from __future__ import annotations

import dataclasses
import logging
import os
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml

logger = logging.getLogger(__name__)

CONFIG_ENV_VAR = "SFTPBRIDGE_CONFIG"
DEFAULT_CONFIG_NAME = "sftpbridge.yaml"
USER_CONFIG_PATH = Path("~/.config/sftpbridge/connections.yaml")


@dataclasses.dataclass
class ConnectionConfig:
    """Parameters needed to open one SFTP endpoint."""
    name: str
    host: str
    username: str
    port: int = 22
    password: Optional[str] = None
    private_key_path: Optional[str] = None
    remote_path: str = "/"

    def __post_init__(self) -> None:
        if not self.name:
            raise ValueError("Connection name cannot be empty")
        if not self.host:
            raise ValueError(f"Connection '{self.name}' has no host")
        try:
            self.port = int(self.port)
        except (TypeError, ValueError):
            raise ValueError(f"Connection '{self.name}' has invalid port {self.port!r}")
        if not 0 < self.port < 65536:
            raise ValueError(f"Connection '{self.name}' has invalid port {self.port}")
        if not self.password and not self.private_key_path:
            raise ValueError(f"Connection '{self.name}' needs a password or a private key")

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ConnectionConfig":
        if not isinstance(data, dict):
            raise ValueError(f"Connection entry must be a mapping, got {type(data).__name__}")
        known = {field.name for field in dataclasses.fields(cls)}
        unknown = set(data) - known
        if unknown:
            logger.warning(f"Ignoring unknown connection keys: {', '.join(sorted(unknown))}")
        missing = [key for key in ("name", "host", "username") if key not in data]
        if missing:
            raise ValueError(f"Connection entry {data.get('name', '?')!r} is missing: {', '.join(missing)}")
        return cls(**{key: value for key, value in data.items() if key in known})

    def to_dict(self) -> Dict[str, Any]:
        return {key: value for key, value in dataclasses.asdict(self).items() if value is not None}


class ConfigLoader:
    """Loads and saves connection configurations from a YAML file."""

    def __init__(self, config_path: Optional[str] = None) -> None:
        self.config_path = self._resolve_config_path(config_path)

    @staticmethod
    def _resolve_config_path(config_path: Optional[str]) -> str:
        """
        Resolve the configuration file path.

        Priority order:
        1. Provided config_path parameter
        2. SFTPBRIDGE_CONFIG environment variable
        3. sftpbridge.yaml in the current working directory
        4. ~/.config/sftpbridge/connections.yaml
        """
        if config_path:
            return config_path

        env_path = os.environ.get(CONFIG_ENV_VAR)
        if env_path:
            return env_path

        cwd_path = os.path.join(os.getcwd(), DEFAULT_CONFIG_NAME)
        if os.path.exists(cwd_path):
            return cwd_path

        return str(USER_CONFIG_PATH.expanduser())

    def load_connections(self) -> List[ConnectionConfig]:
        """
        Load connection configurations.

        Returns:
            The configured connections; an empty list when the file does not exist.

        Raises:
            yaml.YAMLError: If the file is not valid YAML
            ValueError: If an entry is malformed
        """
        try:
            with open(self.config_path, "r", encoding="utf-8") as f:
                data = yaml.safe_load(f) or {}
        except FileNotFoundError:
            logger.info(f"No configuration file at {self.config_path}")
            return []
        except yaml.YAMLError as e:
            logger.error(f"Invalid YAML in configuration file {self.config_path}: {e}")
            raise

        if not isinstance(data, dict):
            raise ValueError(f"{self.config_path} must contain a mapping with a 'connections' list")

        entries = data.get("connections") or []
        if not isinstance(entries, list):
            raise ValueError(f"'connections' in {self.config_path} must be a list")

        connections = [ConnectionConfig.from_dict(entry) for entry in entries]
        logger.info(f"Loaded {len(connections)} connection(s) from {self.config_path}")
        return connections

    def save_connections(self, connections: List[ConnectionConfig]) -> None:
        path = Path(self.config_path)
        path.parent.mkdir(parents=True, exist_ok=True)
        document = {"connections": [config.to_dict() for config in connections]}
        with open(path, "w", encoding="utf-8") as f:
            yaml.safe_dump(document, f, sort_keys=False)
        logger.info(f"Saved {len(connections)} connection(s) to {path}")
