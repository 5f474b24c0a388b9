"""teamcal configuration loading and validation.

Reads an optional ``teamcal.toml``, resolves ``${VAR}`` references, fills
anything absent from environment variables and returns a validated
SyncConfig dataclass.  Invalid values fail at startup, not at first use.
"""

from __future__ import annotations

import os
import re
import tomllib
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from teamcal.token_cipher import TokenCipher, TokenCipherConfigError

CONFIG_FILENAME = "teamcal.toml"
CONFIG_PATH_ENV = "TEAMCAL_CONFIG"

DEFAULT_MAX_CONCURRENCY = 8
DEFAULT_REQUEST_TIMEOUT_S = 10.0
DEFAULT_PORT = 40300

# Pattern matching ${VAR_NAME}.
_ENV_VAR_PATTERN = re.compile(r"\$\{([A-Za-z_][A-Za-z0-9_]*)\}")


class ConfigError(Exception):
    """Raised when teamcal configuration is missing, malformed, or invalid."""


@dataclass
class LoggingConfig:
    """Logging configuration from [teamcal.logging] section."""

    level: str = "INFO"
    format: str = "text"  # "text" or "json"
    log_root: str | None = None


@dataclass
class GoogleConfig:
    """OAuth application credentials from [teamcal.google]."""

    client_id: str | None = None
    client_secret: str | None = None
    redirect_uri: str | None = None
    dashboard_url: str | None = None

    @property
    def configured(self) -> bool:
        return bool(self.client_id and self.client_secret and self.redirect_uri)

    def __repr__(self) -> str:
        return (
            f"GoogleConfig(client_id={self.client_id!r}, client_secret=<REDACTED>, "
            f"redirect_uri={self.redirect_uri!r}, dashboard_url={self.dashboard_url!r})"
        )


@dataclass
class SyncSettings:
    """Fan-out and outbound request limits from [teamcal.sync]."""

    max_concurrency: int = DEFAULT_MAX_CONCURRENCY
    request_timeout_s: float = DEFAULT_REQUEST_TIMEOUT_S


@dataclass
class SyncConfig:
    """Parsed teamcal configuration."""

    token_encryption_key: str
    host: str = "0.0.0.0"
    port: int = DEFAULT_PORT
    db_name: str | None = None
    google: GoogleConfig = field(default_factory=GoogleConfig)
    sync: SyncSettings = field(default_factory=SyncSettings)
    logging: LoggingConfig = field(default_factory=LoggingConfig)

    def build_cipher(self) -> TokenCipher:
        return TokenCipher.from_hex(self.token_encryption_key)

    def __repr__(self) -> str:
        return (
            f"SyncConfig(token_encryption_key=<REDACTED>, host={self.host!r}, "
            f"port={self.port!r}, db_name={self.db_name!r}, google={self.google!r}, "
            f"sync={self.sync!r}, logging={self.logging!r})"
        )


def resolve_env_vars(value: Any) -> Any:
    """Recursively resolve ``${VAR_NAME}`` references in config values.

    Walks dicts, lists, and strings.  Non-string leaf values are returned
    unchanged.

    Raises
    ------
    ConfigError
        If a referenced environment variable is not set.
    """
    if isinstance(value, dict):
        return {k: resolve_env_vars(v) for k, v in value.items()}
    if isinstance(value, list):
        return [resolve_env_vars(item) for item in value]
    if isinstance(value, str):
        return _resolve_string(value)
    return value


def _resolve_string(s: str) -> str:
    missing: list[str] = []

    def _replace(match: re.Match) -> str:
        var_name = match.group(1)
        env_value = os.environ.get(var_name)
        if env_value is None:
            missing.append(var_name)
            return match.group(0)
        return env_value

    result = _ENV_VAR_PATTERN.sub(_replace, s)
    if missing:
        raise ConfigError(
            f"Unresolved environment variable(s) in config value: {', '.join(missing)}"
        )
    return result


def _read_toml(path: Path | None) -> dict[str, Any]:
    if path is None:
        env_path = os.environ.get(CONFIG_PATH_ENV)
        if env_path:
            path = Path(env_path)
        else:
            default = Path.cwd() / CONFIG_FILENAME
            if not default.exists():
                return {}
            path = default
    if path.is_dir():
        path = path / CONFIG_FILENAME
    if not path.exists():
        raise ConfigError(f"Config file not found: {path}")
    try:
        data = tomllib.loads(path.read_text())
    except tomllib.TOMLDecodeError as exc:
        raise ConfigError(f"Invalid TOML in {path}: {exc}") from exc
    return resolve_env_vars(data)


def _section(parent: dict[str, Any], name: str, path: str) -> dict[str, Any]:
    value = parent.get(name, {})
    if not isinstance(value, dict):
        raise ConfigError(f"[{path}] must be a TOML table")
    return value


def _pick(section: dict[str, Any], key: str, env_var: str) -> Any:
    """File value first, then the environment variable, then None."""
    value = section.get(key)
    if value is None or (isinstance(value, str) and not value.strip()):
        value = os.environ.get(env_var) or None
    return value


def _positive_int(raw: Any, name: str) -> int:
    try:
        value = int(raw)
    except (TypeError, ValueError) as exc:
        raise ConfigError(f"Invalid {name}: {raw!r}. Must be a positive integer.") from exc
    if value <= 0:
        raise ConfigError(f"Invalid {name}: {value!r}. Must be a positive integer.")
    return value


def _positive_float(raw: Any, name: str) -> float:
    try:
        value = float(raw)
    except (TypeError, ValueError) as exc:
        raise ConfigError(f"Invalid {name}: {raw!r}. Must be a positive number.") from exc
    if value <= 0:
        raise ConfigError(f"Invalid {name}: {value!r}. Must be a positive number.")
    return value


def load_config(path: Path | None = None) -> SyncConfig:
    """Load and validate teamcal configuration.

    Parameters
    ----------
    path:
        A ``teamcal.toml`` file or a directory containing one.  When omitted,
        ``$TEAMCAL_CONFIG`` and then ``./teamcal.toml`` are tried; a missing
        default file is not an error.

    Raises
    ------
    ConfigError
        If the file is unreadable, a referenced variable is unset, or a value
        fails validation.  A missing or malformed encryption key is reported
        here so the process never starts without one.
    """
    data = _read_toml(path)
    root = _section(data, "teamcal", "teamcal")

    # --- token encryption key (required) ---
    key = _pick(root, "token_encryption_key", "TEAMCAL_TOKEN_ENCRYPTION_KEY")
    if key is None:
        raise ConfigError(
            "Missing token encryption key: set TEAMCAL_TOKEN_ENCRYPTION_KEY "
            "or teamcal.token_encryption_key"
        )
    try:
        TokenCipher.from_hex(str(key))
    except TokenCipherConfigError as exc:
        raise ConfigError(str(exc)) from exc

    port = _positive_int(root.get("port", DEFAULT_PORT), "teamcal.port")

    # --- [teamcal.google] ---
    google_section = _section(root, "google", "teamcal.google")
    google = GoogleConfig(
        client_id=_pick(google_section, "client_id", "GOOGLE_OAUTH_CLIENT_ID"),
        client_secret=_pick(google_section, "client_secret", "GOOGLE_OAUTH_CLIENT_SECRET"),
        redirect_uri=_pick(google_section, "redirect_uri", "GOOGLE_OAUTH_REDIRECT_URI"),
        dashboard_url=_pick(google_section, "dashboard_url", "OAUTH_DASHBOARD_URL"),
    )

    # --- [teamcal.sync] ---
    sync_section = _section(root, "sync", "teamcal.sync")
    sync = SyncSettings(
        max_concurrency=_positive_int(
            _pick(sync_section, "max_concurrency", "TEAMCAL_MAX_CONCURRENCY")
            or DEFAULT_MAX_CONCURRENCY,
            "teamcal.sync.max_concurrency",
        ),
        request_timeout_s=_positive_float(
            _pick(sync_section, "request_timeout_s", "TEAMCAL_REQUEST_TIMEOUT_S")
            or DEFAULT_REQUEST_TIMEOUT_S,
            "teamcal.sync.request_timeout_s",
        ),
    )

    # --- [teamcal.logging] ---
    logging_section = _section(root, "logging", "teamcal.logging")
    log_level = str(_pick(logging_section, "level", "TEAMCAL_LOG_LEVEL") or "INFO").upper()
    log_format = str(_pick(logging_section, "format", "TEAMCAL_LOG_FORMAT") or "text").lower()
    if log_format not in ("text", "json"):
        raise ConfigError(
            f"Invalid teamcal.logging.format: {log_format!r}. Expected 'text' or 'json'."
        )
    logging_config = LoggingConfig(
        level=log_level,
        format=log_format,
        log_root=logging_section.get("log_root"),
    )

    # --- [teamcal.db] ---
    db_section = _section(root, "db", "teamcal.db")
    db_name = db_section.get("name")
    if db_name is not None and (not isinstance(db_name, str) or not db_name.strip()):
        raise ConfigError("teamcal.db.name must be a non-empty string when set")

    return SyncConfig(
        token_encryption_key=str(key).strip(),
        host=str(root.get("host", "0.0.0.0")),
        port=port,
        db_name=db_name.strip() if db_name else None,
        google=google,
        sync=sync,
        logging=logging_config,
    )
