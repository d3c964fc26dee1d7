import os
from pathlib import Path
from collections.abc import Mapping
from typing import Any, Dict, Iterable, Optional, Tuple

import yaml
from dotenv import load_dotenv

load_dotenv()

DEFAULT_CONFIG_PATH = Path(__file__).parent / 'config.yaml'

REQUIRED_CREDENTIALS: Tuple[Tuple[str, str], ...] = (
    ('exchange', 'token_id'),
    ('exchange', 'token_secret'),
    ('notifier', 'channel_token'),
    ('notifier', 'user_id'),
)


class ConfigError(RuntimeError):
    """Raised when a required configuration value is missing or unresolved."""


def _is_unresolved(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, str):
        stripped = value.strip()
        return not stripped or (stripped.startswith('${') and stripped.endswith('}'))
    return False


class SectionProxy(Mapping):
    def __init__(self, data: Dict[str, Any]):
        self._data = data or {}

    def __getitem__(self, key: str) -> Any:
        value = self._data[key]
        if isinstance(value, dict):
            return SectionProxy(value)
        return value

    def __iter__(self):
        return iter(self._data)

    def __len__(self) -> int:
        return len(self._data)

    def get(self, key: str, default: Any = None) -> Any:
        value = self._data.get(key, default)
        if isinstance(value, dict):
            return SectionProxy(value)
        return value


class Config:
    def __init__(self, config_path: Optional[str] = None, data: Optional[Dict[str, Any]] = None):
        self.config_path = Path(config_path) if config_path else DEFAULT_CONFIG_PATH
        if data is not None:
            self._data = self._resolve_env_vars(data)
        else:
            self._data = self._load_config()

    def _load_config(self) -> Dict[str, Any]:
        if not self.config_path.exists():
            raise ConfigError(f"Configuration file not found at {self.config_path}")
        with self.config_path.open('r') as fh:
            try:
                raw = yaml.safe_load(fh) or {}
            except yaml.YAMLError as exc:
                raise ConfigError(f"Error parsing YAML configuration: {exc}") from exc
        return self._resolve_env_vars(raw)

    def _resolve_env_vars(self, node: Any) -> Any:
        if isinstance(node, dict):
            return {key: self._resolve_env_vars(value) for key, value in node.items()}
        if isinstance(node, list):
            return [self._resolve_env_vars(item) for item in node]
        if isinstance(node, str) and node.startswith('${') and node.endswith('}'):
            env_key = node[2:-1]
            return os.getenv(env_key, node)
        return node

    def section(self, name: str) -> SectionProxy:
        return SectionProxy(self._data.get(name) or {})

    def require(self, section: str, key: str) -> Any:
        """Return ``section.key`` or raise ``ConfigError`` if it is unset."""
        value = (self._data.get(section) or {}).get(key)
        if _is_unresolved(value):
            raise ConfigError(f"Missing required configuration value {section}.{key}")
        return value


def validate_credentials(
    cfg: Config,
    required: Iterable[Tuple[str, str]] = REQUIRED_CREDENTIALS,
) -> None:
    """Fail fast when any credential needed for signing or alerting is absent."""
    missing = []
    for section, key in required:
        try:
            cfg.require(section, key)
        except ConfigError:
            missing.append(f"{section}.{key}")
    if missing:
        raise ConfigError(
            "Missing required credentials: " + ", ".join(missing)
        )


config = Config()
