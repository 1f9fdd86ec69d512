import os
import re
from collections.abc import Mapping
from pathlib import Path
from typing import Any, Dict, Optional, Union

import yaml
from dotenv import load_dotenv

load_dotenv()

DEFAULT_CONFIG_PATH = Path(__file__).parent / 'config.yaml'
CONFIG_ENV_VAR = 'TRADER_CONFIG'

_ENV_REF = re.compile(r'^\$\{([A-Za-z_][A-Za-z0-9_]*)\}$')


def _wrap(value: Any) -> Any:
    return SectionProxy(value) if isinstance(value, dict) else value


class SectionProxy(Mapping):
    """Read-only view of one settings section; nested sections are views too."""

    def __init__(self, data: Dict[str, Any]):
        self._data = data or {}

    def __getitem__(self, key: str) -> Any:
        return _wrap(self._data[key])

    def __getattr__(self, name: str) -> Any:
        if name.startswith('_') or name not in self._data:
            raise AttributeError(f"Config key '{name}' not found")
        return _wrap(self._data[name])

    def __iter__(self):
        return iter(self._data)

    def __len__(self) -> int:
        return len(self._data)

    def to_dict(self) -> Dict[str, Any]:
        return self._data


class Config(SectionProxy):
    """YAML settings file with ``${VAR}`` values taken from the environment.

    The file is ``config_path`` if given, else ``$TRADER_CONFIG``, else the
    ``config.yaml`` bundled next to this module. Unset variables keep their
    literal ``${VAR}`` text so callers can fall back to their own defaults.
    """

    def __init__(self, config_path: Optional[Union[str, Path]] = None):
        self.config_path = Path(config_path or os.getenv(CONFIG_ENV_VAR) or DEFAULT_CONFIG_PATH)
        super().__init__(self._load_config())

    def _load_config(self) -> Dict[str, Any]:
        if not self.config_path.is_file():
            raise RuntimeError(f"Configuration file not found at {self.config_path}")
        try:
            raw = yaml.safe_load(self.config_path.read_text()) or {}
        except yaml.YAMLError as exc:
            raise RuntimeError(f"Error parsing YAML configuration: {exc}") from exc
        if not isinstance(raw, dict):
            raise RuntimeError(f"Configuration root must be a mapping in {self.config_path}")
        return _resolve_env_vars(raw)

    def lookup(self, dotted: str, default: Any = None) -> Any:
        """``lookup('api.port')``; missing keys return ``default``."""
        node: Any = self._data
        for part in dotted.split('.'):
            if not isinstance(node, dict) or part not in node:
                return default
            node = node[part]
        return _wrap(node)

    def reload(self) -> None:
        self._data = self._load_config()


def _resolve_env_vars(node: Any) -> Any:
    if isinstance(node, dict):
        return {key: _resolve_env_vars(value) for key, value in node.items()}
    if isinstance(node, list):
        return [_resolve_env_vars(item) for item in node]
    if isinstance(node, str):
        match = _ENV_REF.match(node)
        if match:
            return os.getenv(match.group(1), node)
    return node


config = Config()
