"""Settings for the save retention daemon.

Retention values use the key names of the plugin INI file (``fPollTime``,
``iPrimaryBlockCount``, ...). They are read from, highest priority first:

1. Explicit overrides passed to :func:`load_settings`
2. The INI file (``SAVEKEEPER_INI``, default ``savekeeper.ini``)
3. Environment variables and ``.env``
4. Defaults

Bad values are never fatal: unparseable values fall back to the default and
out-of-range values are clamped, each with a logged warning.
"""

import configparser
import os
import sys
from functools import lru_cache
from pathlib import Path
from typing import Any

import structlog
from pydantic import Field, ValidationError, ValidationInfo, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from savekeeper.common.models import (
    MIN_POLL_INTERVAL_SECONDS,
    UNBOUNDED,
    RetentionPolicy,
)

logger = structlog.get_logger()

DEFAULT_INI_FILENAME = "savekeeper.ini"
INI_PATH_ENV = "SAVEKEEPER_INI"
DEFAULT_RECYCLE_DIRNAME = "Recycled"

SECONDS_PER_MINUTE = 60
SECONDS_PER_HOUR = 3600

# Lowest accepted value per retention field; anything below is raised to it
_MINIMUMS: dict[str, float] = {
    "poll_minutes": MIN_POLL_INTERVAL_SECONDS / SECONDS_PER_MINUTE,
    "primary_block_count": 1,
    "secondary_block_count": 0,
    "secondary_spacing_hours": 0.0,
    "tertiary_block_count": 0,
    "tertiary_spacing_hours": 0.0,
    "max_overflow": UNBOUNDED,
    "overflow_spacing_hours": 0.0,
}


def default_save_dir() -> Path:
    """Skyrim Special Edition save folder for the current user."""
    home = Path.home()
    if sys.platform == "win32" and os.environ.get("USERPROFILE"):
        home = Path(os.environ["USERPROFILE"])
    return home / "Documents" / "My Games" / "Skyrim Special Edition" / "Saves"


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        populate_by_name=True,
        # nan and inf fall back to the default like any other unparseable value
        allow_inf_nan=False,
    )

    # Scheduling
    poll_minutes: float = Field(
        default=1.0,
        alias="fPollTime",
        description="Minutes between retention sweeps",
    )
    recycle: bool = Field(
        default=False,
        alias="bRecycle",
        description="Move evicted saves to the recycle directory instead of deleting",
    )

    # Tiers
    primary_block_count: int = Field(
        default=16,
        alias="iPrimaryBlockCount",
        description="Newest saves always kept, unthinned (minimum 1)",
    )
    secondary_block_count: int = Field(
        default=32,
        alias="iSecondaryBlockCount",
        description="Capacity of the secondary tier",
    )
    secondary_spacing_hours: float = Field(
        default=0.5,
        alias="fDesiredSecondarySpacing",
        description="Desired gap between secondary saves, in hours",
    )
    tertiary_block_count: int = Field(
        default=64,
        alias="iTertiaryBlockCount",
        description="Capacity of the tertiary tier",
    )
    tertiary_spacing_hours: float = Field(
        default=1.0,
        alias="fDesiredTertiarySpacing",
        description="Desired gap between tertiary saves, in hours",
    )
    max_overflow: int = Field(
        default=UNBOUNDED,
        alias="iMaxOverflow",
        description="Capacity of the overflow tier (-1 for unbounded)",
    )
    overflow_spacing_hours: float = Field(
        default=4.0,
        alias="fDesiredOverflowSpacing",
        description="Desired gap between overflow saves, in hours",
    )

    # Host integration
    save_dir: Path = Field(
        default_factory=default_save_dir,
        alias="SAVEKEEPER_SAVE_DIR",
        description="Directory holding the .ess save files",
    )
    recycle_dir_name: str = Field(
        default=DEFAULT_RECYCLE_DIRNAME,
        alias="SAVEKEEPER_RECYCLE_DIR",
        description="Soft-delete directory, relative to the save directory",
    )
    metrics_port: int | None = Field(
        default=None,
        alias="SAVEKEEPER_METRICS_PORT",
        description="Expose Prometheus metrics on this port when set",
    )

    @field_validator(*_MINIMUMS, "recycle", mode="wrap")
    @classmethod
    def _coerce_retention_value(cls, value: Any, handler, info: ValidationInfo):
        field = cls.model_fields[info.field_name]
        try:
            parsed = handler(value)
        except ValidationError:
            logger.warning(
                "config_value_invalid",
                key=field.alias,
                value=value,
                default=field.default,
            )
            return field.default

        minimum = _MINIMUMS.get(info.field_name)
        if minimum is not None and parsed < minimum:
            clamped = type(parsed)(minimum)
            logger.warning(
                "config_value_clamped",
                key=field.alias,
                value=parsed,
                clamped=clamped,
            )
            return clamped
        return parsed

    @property
    def recycle_dir(self) -> Path:
        return self.save_dir / self.recycle_dir_name

    def to_policy(self) -> RetentionPolicy:
        """Convert INI units (minutes, hours) to a seconds-based policy."""
        return RetentionPolicy(
            poll_interval_seconds=self.poll_minutes * SECONDS_PER_MINUTE,
            archive_instead_of_delete=self.recycle,
            primary_capacity=self.primary_block_count,
            secondary_capacity=self.secondary_block_count,
            secondary_min_spacing_seconds=self.secondary_spacing_hours
            * SECONDS_PER_HOUR,
            tertiary_capacity=self.tertiary_block_count,
            tertiary_min_spacing_seconds=self.tertiary_spacing_hours
            * SECONDS_PER_HOUR,
            overflow_capacity=self.max_overflow,
            overflow_min_spacing_seconds=self.overflow_spacing_hours
            * SECONDS_PER_HOUR,
        )


def read_ini_values(path: Path) -> dict[str, str]:
    """Read retention keys from an INI file.

    Keys are matched case-insensitively in any section; a key repeated in a
    later section wins. A file without section headers is read as a single
    section. A missing file yields no values.
    """
    if not path.is_file():
        return {}

    aliases = {
        field.alias.lower(): field.alias
        for field in Settings.model_fields.values()
        if field.alias
    }

    try:
        text = path.read_text(encoding="utf-8-sig")
    except OSError:
        logger.warning("config_ini_unreadable", path=str(path), exc_info=True)
        return {}

    parser = configparser.ConfigParser(
        interpolation=None,
        strict=False,
        inline_comment_prefixes=(";", "#"),
    )
    try:
        try:
            parser.read_string(text, source=str(path))
        except configparser.MissingSectionHeaderError:
            parser.read_string(
                f"[{configparser.DEFAULTSECT}]\n{text}", source=str(path)
            )
    except configparser.Error:
        logger.warning("config_ini_malformed", path=str(path), exc_info=True)
        return {}

    values: dict[str, str] = {}
    for section in [configparser.DEFAULTSECT, *parser.sections()]:
        for key, value in parser[section].items():
            alias = aliases.get(key.lower())
            if alias:
                values[alias] = value
    return values


def load_settings(ini_path: str | Path | None = None, **overrides: Any) -> Settings:
    """Build settings from the INI file, environment and explicit overrides.

    Args:
        ini_path: INI file to read (default: ``SAVEKEEPER_INI`` or
            ``savekeeper.ini`` in the working directory)
        **overrides: Field values that take precedence over every source;
            ``None`` values are ignored
    """
    path = Path(ini_path or os.environ.get(INI_PATH_ENV, DEFAULT_INI_FILENAME))
    values: dict[str, Any] = dict(read_ini_values(path))

    # Key overrides by alias so they replace INI values for the same field
    aliases = {
        name: field.alias or name for name, field in Settings.model_fields.items()
    }
    values.update(
        {
            aliases.get(key, key): value
            for key, value in overrides.items()
            if value is not None
        }
    )
    return Settings(**values)


@lru_cache
def get_settings() -> Settings:
    """Get cached process-wide settings.

    Settings are read once, then cached for the lifetime of the process.
    """
    return load_settings()
