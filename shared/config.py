"""
Transport configuration.

Values come from (lowest to highest priority) the dataclass defaults, a YAML
file, and NETSOCK_* environment variables:

    # netsock.yaml
    transport:
      bind_host: 0.0.0.0
      receive_timeout: 5
      backlog: 16
      max_datagram: 65507
      interrupt_retries: null
      log_level: INFO
"""

from __future__ import annotations

import os
from dataclasses import dataclass, fields, replace
from pathlib import Path
from typing import Any, Dict, Optional, Union

import yaml

from shared.log import get_logger

logger = get_logger(__name__)

MAX_UDP_PAYLOAD = 65507
DEFAULT_CONFIG_PATH = Path("netsock.yaml")


@dataclass(frozen=True)
class TransportConfig:
    bind_host: str = "0.0.0.0"          # INADDR_ANY
    receive_timeout: Optional[float] = None  # seconds; None/0 blocks indefinitely
    backlog: Optional[int] = None       # None lets the platform pick
    max_datagram: int = MAX_UDP_PAYLOAD
    interrupt_retries: Optional[int] = None  # None retries EINTR without bound
    log_level: str = "INFO"

    def __post_init__(self) -> None:
        if self.receive_timeout is not None and self.receive_timeout < 0:
            raise ValueError("receive_timeout must be >= 0")
        if self.backlog is not None and self.backlog < 0:
            raise ValueError("backlog must be >= 0")
        if not 0 < self.max_datagram <= MAX_UDP_PAYLOAD:
            raise ValueError(f"max_datagram must be in 1..{MAX_UDP_PAYLOAD}")
        if self.interrupt_retries is not None and self.interrupt_retries < 0:
            raise ValueError("interrupt_retries must be >= 0")

    def with_overrides(self, **overrides: Any) -> TransportConfig:
        """Return a copy with the non-None overrides applied."""
        return replace(self, **{k: v for k, v in overrides.items() if v is not None})


_ENV_PREFIX = "NETSOCK_"
_CASTS = {
    "bind_host": str,
    "receive_timeout": float,
    "backlog": int,
    "max_datagram": int,
    "interrupt_retries": int,
    "log_level": str,
}


def _from_env() -> Dict[str, Any]:
    values: Dict[str, Any] = {}
    for name, cast in _CASTS.items():
        raw = os.getenv(_ENV_PREFIX + name.upper())
        if raw is None or raw == "":
            continue
        try:
            values[name] = cast(raw)
        except ValueError:
            raise ValueError(f"Invalid value for {_ENV_PREFIX}{name.upper()}: {raw!r}")
    return values


def _from_yaml(path: Path) -> Dict[str, Any]:
    if not path.exists():
        logger.debug(f"No config file at {path}; using defaults")
        return {}
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
    except (OSError, yaml.YAMLError) as e:
        logger.error(f"Error reading {path}: {e}")
        return {}
    section = data.get("transport", data) if isinstance(data, dict) else {}
    if not isinstance(section, dict):
        logger.error(f"Ignoring malformed transport section in {path}")
        return {}
    known = {f.name for f in fields(TransportConfig)}
    unknown = set(section) - known
    if unknown:
        logger.warning(f"Ignoring unknown config keys in {path}: {sorted(unknown)}")
    return {k: v for k, v in section.items() if k in known}


def load_config(path: Optional[Union[str, Path]] = None) -> TransportConfig:
    """
    Load transport configuration.

    Args:
        path: YAML file to read; defaults to NETSOCK_CONFIG or ./netsock.yaml

    Returns:
        The merged configuration

    Raises:
        ValueError: if a value is out of range or an env var cannot be parsed
    """
    if path is None:
        path = os.getenv(_ENV_PREFIX + "CONFIG") or DEFAULT_CONFIG_PATH
    values = _from_yaml(Path(path).expanduser())
    values.update(_from_env())
    return TransportConfig(**values)
