from __future__ import annotations
from dataclasses import dataclass, fields, replace
import os
from pathlib import Path
from typing import Any, Dict, Optional

import yaml

from shared.log import get_logger
from shared.utils import normalize_server_url, to_ws_url

logger = get_logger(__name__)

DEFAULT_SERVER_URL = "http://localhost:9000"
DEFAULT_CONFIG_FILE = "ocoup.yaml"

# environment variable -> config field
_ENV_VARS = {
    "OCOUP_SERVER_URL": "server_url",
    "OCOUP_REGISTRATION_DELAY": "registration_delay",
    "OCOUP_REGISTRATION_TIMEOUT": "registration_timeout",
    "OCOUP_START_TIMEOUT": "start_timeout",
    "OCOUP_PING_INTERVAL": "ping_interval",
    "OCOUP_PING_TIMEOUT": "ping_timeout",
}


@dataclass(frozen=True)
class ClientConfig:
    server_url: str = DEFAULT_SERVER_URL
    registration_delay: float = 0.1        # stagger between registration sockets
    registration_timeout: Optional[float] = 30.0
    start_timeout: Optional[float] = None  # a start call lasts the whole tournament
    ping_interval: Optional[float] = 15.0
    ping_timeout: Optional[float] = 45.0

    def __post_init__(self) -> None:
        object.__setattr__(self, "server_url", normalize_server_url(self.server_url))
        if self.registration_delay < 0:
            raise ValueError("registration_delay must be >= 0")

    @property
    def ws_base_url(self) -> str:
        return to_ws_url(self.server_url)

    def with_overrides(self, **overrides: Any) -> "ClientConfig":
        """Return a copy with every non-None override applied."""
        changes = {k: v for k, v in overrides.items() if v is not None}
        return replace(self, **changes) if changes else self


def _coerce(name: str, value: Any) -> Any:
    if name == "server_url":
        return str(value)
    if value is None or (isinstance(value, str) and value.strip().lower() in ("", "none", "null")):
        return None
    return float(value)


def _from_mapping(data: Dict[str, Any], source: str) -> Dict[str, Any]:
    known = {f.name for f in fields(ClientConfig)}
    result: Dict[str, Any] = {}
    for key, value in data.items():
        if key not in known:
            logger.warning(f"Ignoring unknown config key '{key}' in {source}")
            continue
        try:
            result[key] = _coerce(key, value)
        except (TypeError, ValueError):
            raise ValueError(f"Invalid value for '{key}' in {source}: {value!r}")
    return result


def _config_path(path: Optional[Path]) -> Optional[Path]:
    if path is not None:
        return path
    env_path = os.getenv("OCOUP_CONFIG")
    if env_path:
        return Path(env_path)
    default = Path.cwd() / DEFAULT_CONFIG_FILE
    return default if default.exists() else None


def load_config(path: Optional[Path] = None, **overrides: Any) -> ClientConfig:
    """
    Resolve the client configuration.

    Order (later wins): defaults, YAML file, environment, explicit overrides.
    The YAML file is ``path``, else ``$OCOUP_CONFIG``, else ``./ocoup.yaml``
    when it exists.
    """
    values: Dict[str, Any] = {}

    config_file = _config_path(path)
    if config_file is not None:
        if not config_file.exists():
            raise FileNotFoundError(f"Config file not found: {config_file}")
        with config_file.open("r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
        if not isinstance(data, dict):
            raise ValueError(f"Config file {config_file} must contain a mapping")
        values.update(_from_mapping(data, str(config_file)))
        logger.debug(f"Loaded config from {config_file}")

    env_values = {field_name: os.environ[var] for var, field_name in _ENV_VARS.items() if var in os.environ}
    values.update(_from_mapping(env_values, "environment"))

    return ClientConfig(**values).with_overrides(**overrides)
