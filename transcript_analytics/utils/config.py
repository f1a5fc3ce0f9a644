"""Configuration management for the transcript analytics platform"""

import copy
import os
import yaml
from pathlib import Path
from typing import Any, Callable, Dict, Optional, Tuple


PROJECT_ROOT = Path(__file__).parent.parent.parent

_MISSING = object()

# Environment variable -> (dotted key, converter)
ENV_OVERRIDES: Dict[str, Tuple[str, Callable[[str], Any]]] = {
    'DATA_SOURCE_TYPE': ('data_source.type', str),
    'WORKBOOK_PATH': ('data_source.workbook.path', str),
    'DATABASE_PATH': ('data_source.database.path', str),
    'LOG_LEVEL': ('logging.level', str.upper),
    'PREDICTION_CACHE_TTL': ('cache.ttl_seconds', int),
}


def _walk(tree: Dict[str, Any], key: str) -> Any:
    node = tree
    for part in key.split('.'):
        if not isinstance(node, dict) or part not in node:
            return _MISSING
        node = node[part]
    return node


class ConfigLoader:
    """
    Settings tree read from ``config/config.yaml``.

    Keys are addressed with dots, e.g. ``config.get('sync.snapshot_path')``.
    When ``use_env`` is on, the variables in ``ENV_OVERRIDES`` win over the
    file, converted to the type the rest of the code expects.
    """

    def __init__(self, config_path: str = "config/config.yaml", use_env: bool = True):
        self.config_path = self._locate(config_path)
        self.use_env = use_env
        self.config = self._load_config()

    @classmethod
    def from_dict(cls, data: Dict[str, Any], use_env: bool = False) -> 'ConfigLoader':
        """Build a loader around a settings dictionary; the input is deep-copied."""
        loader = cls.__new__(cls)
        loader.config_path = None
        loader.use_env = use_env
        loader.config = copy.deepcopy(data)
        if use_env:
            loader._apply_env_overrides()
        return loader

    @staticmethod
    def _locate(config_path: str) -> Path:
        candidate = Path(config_path)
        if candidate.exists() or candidate.is_absolute():
            return candidate
        return PROJECT_ROOT / candidate

    def _load_config(self) -> dict:
        if not self.config_path.exists():
            raise FileNotFoundError(
                f"No settings file at {self.config_path}; "
                f"pass --config or copy config/config.yaml into place"
            )

        with open(self.config_path, 'r', encoding='utf-8') as f:
            self.config = yaml.safe_load(f) or {}

        if self.use_env:
            self._apply_env_overrides()
        return self.config

    def _apply_env_overrides(self):
        for env_name, (key, convert) in ENV_OVERRIDES.items():
            raw = os.environ.get(env_name)
            if not raw:
                continue
            try:
                self.set(key, convert(raw))
            except ValueError as e:
                raise ValueError(f"Environment variable {env_name}={raw!r} is not valid for '{key}'") from e

    def get(self, key: str, default: Any = None) -> Any:
        """
        Look up a dotted key.

        Args:
            key: Dotted key such as ``'prediction.default_periods'``
            default: Returned when any part of the key is absent

        Returns:
            The stored value or ``default``
        """
        value = _walk(self.config, key)
        return default if value is _MISSING else value

    def set(self, key: str, value: Any):
        """Store ``value`` under a dotted key, creating intermediate sections."""
        *parents, leaf = key.split('.')
        node = self.config
        for part in parents:
            child = node.get(part)
            if not isinstance(child, dict):
                child = node[part] = {}
            node = child
        node[leaf] = value

    def get_path(self, key: str, default: Optional[Path] = None) -> Path:
        """
        Look up a dotted key as a filesystem path.

        Relative values are anchored at the project root so commands behave the
        same from any working directory.

        Raises:
            ValueError: If the key is absent and no default is given
        """
        value = self.get(key, default)
        if value is None:
            raise ValueError(f"Configuration key '{key}' not found and no default provided")

        path = Path(value)
        return path if path.is_absolute() else PROJECT_ROOT / path

    def reload(self):
        """Re-read the settings file; no-op for dictionary-backed loaders."""
        if self.config_path is not None:
            self.config = self._load_config()

    def __repr__(self) -> str:
        source = self.config_path if self.config_path is not None else '<dict>'
        return f"ConfigLoader(source='{source}', env={self.use_env})"
