from __future__ import annotations
import logging
import threading
from pathlib import Path
from typing import Dict, List, Optional

import yaml
from pydantic import ValidationError

from jirasql.connection.models import ConnectionConfig

logger = logging.getLogger(__name__)

_CONFIG_SUFFIXES = (".yaml", ".yml")


class ConnectionRegistry:
    """
    Serves ConnectionConfig objects by connection_id.

    Two sources: a directory with one YAML file per Jira site, and configs
    added in code through register() (the gateway's mock demo connection).
    Registered configs survive reload(); a file with the same connection_id
    takes precedence over them. Lookups and swaps happen under one lock.
    """

    def __init__(self, config_dir: str = "configs/connections") -> None:
        self._config_dir = Path(config_dir)
        self._from_files: Dict[str, ConnectionConfig] = {}
        self._registered: Dict[str, ConnectionConfig] = {}
        self._lock = threading.RLock()

    def load_all(self) -> None:
        """
        Read every *.yaml / *.yml file under config_dir.

        Raises:
            FileNotFoundError: config_dir is missing.
            ValidationError, yaml.YAMLError: a file does not describe a valid
                connection. Nothing is swapped in that case.
            ValueError: two files declare the same connection_id.
        """
        if not self._config_dir.is_dir():
            raise FileNotFoundError(f"No connection config directory at {self._config_dir}")

        loaded: Dict[str, ConnectionConfig] = {}
        for path in self._config_files():
            cfg = self._parse(path)
            if cfg.connection_id in loaded:
                raise ValueError(
                    f"Duplicate connection_id {cfg.connection_id!r} in {path.name}"
                )
            loaded[cfg.connection_id] = cfg
            logger.debug("connection %s <- %s", cfg.connection_id, path.name)

        with self._lock:
            self._from_files = loaded
        logger.info("%d connection config(s) read from %s", len(loaded), self._config_dir)

    def reload(self) -> None:
        self.load_all()

    def register(self, cfg: ConnectionConfig) -> None:
        """Add or replace a config that does not come from a file."""
        with self._lock:
            self._registered = {**self._registered, cfg.connection_id: cfg}

    def get(self, connection_id: str) -> Optional[ConnectionConfig]:
        with self._lock:
            return self._from_files.get(connection_id) or self._registered.get(connection_id)

    def all_connection_ids(self) -> List[str]:
        with self._lock:
            return sorted(set(self._from_files) | set(self._registered))

    def count(self) -> int:
        return len(self.all_connection_ids())

    def _config_files(self) -> List[Path]:
        return sorted(p for p in self._config_dir.iterdir() if p.suffix in _CONFIG_SUFFIXES)

    @staticmethod
    def _parse(path: Path) -> ConnectionConfig:
        try:
            return ConnectionConfig.model_validate(yaml.safe_load(path.read_text()))
        except (ValidationError, yaml.YAMLError) as exc:
            logger.error("invalid connection config %s: %s", path, exc)
            raise
