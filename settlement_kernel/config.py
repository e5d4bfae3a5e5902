"""
Runtime configuration (``settlement_kernel.config``).

Responsibility
--------------
Resolves the kernel's runtime settings into one frozen ``Settings``
instance.  Sources, lowest precedence first:

1. Field defaults on ``Settings``.
2. A YAML file named by ``SETTLEMENT_CONFIG`` (or passed explicitly).
3. Environment variables (``DATABASE_URL``, ``SETTLEMENT_*``).

Failure modes
-------------
* Missing YAML file named explicitly -> ``FileNotFoundError`` propagates.
* Malformed YAML -> ``yaml.YAMLError`` propagates.
* Unknown keys in the YAML file -> ``ValueError``.
* Non-integer page sizes -> ``ValueError``.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, fields, replace
from pathlib import Path
from typing import Any, Mapping

import yaml

DEFAULT_DATABASE_URL = "sqlite:///./settlement.db"

_ENV_MAP: dict[str, str] = {
    "DATABASE_URL": "database_url",
    "SETTLEMENT_DATABASE_URL": "database_url",
    "SETTLEMENT_DEFAULT_CURRENCY": "default_currency",
    "SETTLEMENT_RECEIPT_PREFIX": "receipt_prefix",
    "SETTLEMENT_PLACEHOLDER_PREFIX": "placeholder_prefix",
    "SETTLEMENT_DEFAULT_PAGE_SIZE": "default_page_size",
    "SETTLEMENT_MAX_PAGE_SIZE": "max_page_size",
    "SETTLEMENT_LOG_LEVEL": "log_level",
    "SETTLEMENT_SQL_ECHO": "sql_echo",
    "SETTLEMENT_WEBHOOK_SECRET": "webhook_secret",
}

_INT_FIELDS = frozenset({"default_page_size", "max_page_size", "pool_size"})
_BOOL_FIELDS = frozenset({"sql_echo"})


@dataclass(frozen=True)
class Settings:
    """Immutable runtime settings for the kernel and the API."""

    database_url: str = DEFAULT_DATABASE_URL
    default_currency: str = "KES"
    receipt_prefix: str = "RCT"
    placeholder_prefix: str = "PENDING-"
    default_page_size: int = 10
    max_page_size: int = 100
    pool_size: int = 20
    log_level: str = "INFO"
    sql_echo: bool = False
    webhook_secret: str | None = None

    def __post_init__(self) -> None:
        if self.default_page_size < 1 or self.max_page_size < self.default_page_size:
            raise ValueError(
                "default_page_size must be >= 1 and <= max_page_size "
                f"(got {self.default_page_size}, {self.max_page_size})"
            )
        if len(self.default_currency) != 3:
            raise ValueError(f"default_currency must be an ISO 4217 code: {self.default_currency!r}")


def _coerce(name: str, value: Any) -> Any:
    if name in _INT_FIELDS:
        return int(value)
    if name in _BOOL_FIELDS:
        if isinstance(value, bool):
            return value
        return str(value).strip().lower() in ("1", "true", "yes", "on")
    return str(value)


def _from_mapping(base: Settings, data: Mapping[str, Any]) -> Settings:
    known = {f.name for f in fields(Settings)}
    unknown = set(data) - known
    if unknown:
        raise ValueError(f"Unknown settings keys: {sorted(unknown)}")
    return replace(base, **{k: _coerce(k, v) for k, v in data.items()})


def load_yaml_settings(path: Path) -> dict[str, Any]:
    """Load a YAML settings file. An empty file yields an empty dict."""
    with open(path, encoding="utf-8") as fh:
        data = yaml.safe_load(fh) or {}
    if not isinstance(data, dict):
        raise ValueError(f"Settings file {path} must contain a mapping")
    # Allow a top-level "settlement:" section
    if "settlement" in data and isinstance(data["settlement"], dict):
        data = data["settlement"]
    return data


def load_settings(
    path: str | Path | None = None,
    environ: Mapping[str, str] | None = None,
) -> Settings:
    """Resolve settings from defaults, an optional YAML file and the environment."""
    env = os.environ if environ is None else environ
    settings = Settings()

    config_path = path or env.get("SETTLEMENT_CONFIG")
    if config_path:
        settings = _from_mapping(settings, load_yaml_settings(Path(config_path)))

    overrides: dict[str, Any] = {}
    for env_name, field_name in _ENV_MAP.items():
        if env_name in env and env[env_name] != "":
            overrides[field_name] = env[env_name]
    if overrides:
        settings = _from_mapping(settings, overrides)

    return settings
