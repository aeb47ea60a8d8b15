"""
Installer settings: where binaries go, where state lives, how long to wait.

Values are resolved in precedence order:
    CLI option  >  BINSTALL_* env var  >  config file  >  default

The config file is YAML, found at ``$BINSTALL_CONFIG`` or
``~/.config/binstall/config.yml``. A missing file is fine; a broken one
is a ``ConfigError``.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Any, Mapping

import yaml
from pydantic import BaseModel, Field, field_validator
from pydantic import ValidationError as PydanticValidationError

from binstall.core.errors import InstallerError

logger = logging.getLogger(__name__)

CONFIG_ENV = "BINSTALL_CONFIG"
DEFAULT_CONFIG_PATH = Path("~/.config/binstall/config.yml")

# env var -> settings field
_ENV_FIELDS = {
    "BINSTALL_BIN_DIR": "bin_dir",
    "BINSTALL_STATE_DIR": "state_dir",
    "BINSTALL_DOWNLOAD_TIMEOUT": "download_timeout",
    "BINSTALL_LOCK_TIMEOUT": "lock_timeout",
    "BINSTALL_ALLOW_HTTP": "allow_http",
    "BINSTALL_MAX_DOWNLOAD_BYTES": "max_download_bytes",
}


class ConfigError(InstallerError):
    """Raised when installer configuration is invalid."""

    exit_code = 3
    retryable = False


class InstallerSettings(BaseModel):
    """Resolved installer configuration."""

    bin_dir: Path = Field(default_factory=lambda: Path("~/.local/bin"))
    state_dir: Path = Field(default_factory=lambda: Path("~/.local/share/binstall"))
    download_timeout: float = 60.0
    lock_timeout: float = 30.0
    allow_http: bool = False
    max_download_bytes: int | None = None

    @field_validator("bin_dir", "state_dir")
    @classmethod
    def _absolute(cls, value: Path) -> Path:
        return value.expanduser().absolute()

    @field_validator("download_timeout", "lock_timeout")
    @classmethod
    def _positive(cls, value: float) -> float:
        if value <= 0:
            raise ValueError("timeouts must be positive")
        return value

    # ── Derived paths ───────────────────────────────────────────

    @property
    def records_dir(self) -> Path:
        return self.state_dir / "records"

    @property
    def tmp_dir(self) -> Path:
        return self.state_dir / "tmp"

    @property
    def audit_path(self) -> Path:
        return self.state_dir / "audit.ndjson"


def find_config_file(environ: Mapping[str, str] | None = None) -> Path | None:
    """Locate the settings file, or None when there is none."""
    env = os.environ if environ is None else environ
    explicit = env.get(CONFIG_ENV)
    if explicit:
        return Path(explicit).expanduser()
    candidate = DEFAULT_CONFIG_PATH.expanduser()
    return candidate if candidate.is_file() else None


def load_settings(
    config_path: Path | None = None,
    overrides: Mapping[str, Any] | None = None,
    environ: Mapping[str, str] | None = None,
) -> InstallerSettings:
    """Build settings from defaults, file, environment and overrides.

    Args:
        config_path: Explicit settings file. If None, searched for.
        overrides: Highest-precedence values (CLI options). None values
            are ignored so unset options don't mask lower layers.
        environ: Environment mapping (default: ``os.environ``).

    Raises:
        ConfigError: If the file or any value is invalid.
    """
    env = os.environ if environ is None else environ
    data: dict[str, Any] = {}

    path = config_path or find_config_file(env)
    if path is not None:
        data.update(_read_config_file(path))

    for var, field in _ENV_FIELDS.items():
        if env.get(var):
            data[field] = env[var]

    for key, value in (overrides or {}).items():
        if value is not None:
            data[key] = value

    try:
        settings = InstallerSettings.model_validate(data)
    except PydanticValidationError as e:
        raise ConfigError(f"Invalid installer settings: {e}") from e

    logger.debug("Settings: bin_dir=%s state_dir=%s", settings.bin_dir, settings.state_dir)
    return settings


def _read_config_file(path: Path) -> dict[str, Any]:
    if not path.is_file():
        raise ConfigError(f"Config file not found: {path}")

    try:
        raw = yaml.safe_load(path.read_text(encoding="utf-8"))
    except OSError as e:
        raise ConfigError(f"Cannot read {path}: {e}") from e
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in {path}: {e}") from e

    if raw is None:
        return {}
    if not isinstance(raw, dict):
        raise ConfigError(f"Expected a YAML mapping in {path}, got {type(raw).__name__}")

    unknown = sorted(set(raw) - set(InstallerSettings.model_fields))
    if unknown:
        logger.warning("Ignoring unknown settings in %s: %s", path, ", ".join(unknown))
    return {k: v for k, v in raw.items() if k in InstallerSettings.model_fields}
