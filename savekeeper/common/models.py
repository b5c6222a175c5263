"""Core value types for the save retention engine.

SaveRecord is parsed from a save identifier (the file name without its
extension), e.g.::

    Save12_0A1B2C3D_0_4E616D65_Whiterun_000123_20240101123045_1_1

Fields are underscore-delimited. The first field carries the sequence
number after the literal ``Save`` prefix, the second is the chain id as
8 hex digits and the seventh is a ``YYYYMMDDHHMMSS`` local timestamp.
"""

import re
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum

from pydantic import BaseModel, ConfigDict, field_validator

# =============================================================================
# Save Identifier Format
# =============================================================================

SAVE_PREFIX = "Save"
SAVE_EXTENSION = ".ess"
SIDECAR_EXTENSION = ".skse"

FIELD_SEPARATOR = "_"
SEQUENCE_FIELD = 0
CHAIN_ID_FIELD = 1
TIMESTAMP_FIELD = 6

TIMESTAMP_FORMAT = "%Y%m%d%H%M%S"
UNPARSEABLE_TIMESTAMP = 0

MAX_UINT32 = 2**32 - 1

_DECIMAL_RE = re.compile(r"\d+")
_CHAIN_ID_RE = re.compile(r"[0-9A-Fa-f]{8}")
_TIMESTAMP_RE = re.compile(r"\d{14}")


def _field(fields: list[str], index: int) -> str | None:
    if index < len(fields):
        return fields[index]
    return None


def parse_sequence_number(fields: list[str]) -> tuple[int, str | None]:
    """Parse the sequence number from the first identifier field.

    Returns:
        Tuple of (sequence number, diagnostic). The sequence number is 0
        and the diagnostic is set when the field is missing or malformed.
    """
    raw = _field(fields, SEQUENCE_FIELD)
    if raw is None or not raw.startswith(SAVE_PREFIX):
        return 0, "missing sequence number field"

    digits = raw[len(SAVE_PREFIX) :]
    if not _DECIMAL_RE.fullmatch(digits):
        return 0, f"malformed sequence number {digits!r}"

    value = int(digits)
    if value > MAX_UINT32:
        return 0, f"sequence number {digits} out of range"
    return value, None


def parse_chain_id(fields: list[str]) -> tuple[int, str | None]:
    """Parse the 8-hex-digit chain id from the second identifier field."""
    raw = _field(fields, CHAIN_ID_FIELD)
    if raw is None:
        return 0, "missing chain id field"
    if not _CHAIN_ID_RE.fullmatch(raw):
        return 0, f"malformed chain id {raw!r}"
    return int(raw, 16), None


def parse_timestamp(fields: list[str]) -> tuple[int, str | None]:
    """Parse the seventh identifier field as local time, in epoch seconds."""
    raw = _field(fields, TIMESTAMP_FIELD)
    if raw is None:
        return UNPARSEABLE_TIMESTAMP, "missing timestamp field"
    if not _TIMESTAMP_RE.fullmatch(raw):
        return UNPARSEABLE_TIMESTAMP, f"malformed timestamp {raw!r}"

    try:
        produced_at = datetime.strptime(raw, TIMESTAMP_FORMAT)
        # Naive datetimes are interpreted in the local time zone
        return int(produced_at.timestamp()), None
    except (ValueError, OverflowError, OSError):
        return UNPARSEABLE_TIMESTAMP, f"invalid calendar timestamp {raw!r}"


def is_save_identifier(identifier: str) -> bool:
    """Check whether an identifier belongs to a manual save."""
    return identifier.startswith(SAVE_PREFIX)


@dataclass(frozen=True)
class SaveRecord:
    """One discovered save, identified by its file stem.

    ``sequence_number`` is the key within a chain. Parsing never fails:
    fields that cannot be read fall back to 0 and a note is added to
    ``diagnostics`` for the caller to report.
    """

    id: str
    sequence_number: int
    chain_id: int
    timestamp: int
    diagnostics: tuple[str, ...] = field(default=(), compare=False)

    @classmethod
    def parse(cls, identifier: str) -> "SaveRecord":
        """Build a record from a save identifier."""
        fields = identifier.split(FIELD_SEPARATOR)

        sequence_number, sequence_note = parse_sequence_number(fields)
        chain_id, chain_note = parse_chain_id(fields)
        timestamp, timestamp_note = parse_timestamp(fields)

        diagnostics = tuple(
            note for note in (sequence_note, chain_note, timestamp_note) if note
        )
        return cls(
            id=identifier,
            sequence_number=sequence_number,
            chain_id=chain_id,
            timestamp=timestamp,
            diagnostics=diagnostics,
        )

    @property
    def chain_hex(self) -> str:
        return f"{self.chain_id:08X}"

    @property
    def produced_at(self) -> datetime | None:
        """Local wall-clock time the save was produced, if known."""
        if self.timestamp == UNPARSEABLE_TIMESTAMP:
            return None
        return datetime.fromtimestamp(self.timestamp)

    @property
    def primary_filename(self) -> str:
        return f"{self.id}{SAVE_EXTENSION}"

    @property
    def sidecar_filename(self) -> str:
        return f"{self.id}{SIDECAR_EXTENSION}"


# =============================================================================
# Retention Tiers
# =============================================================================


class Tier(str, Enum):
    """Retention buckets, finest first."""

    PRIMARY = "primary"
    SECONDARY = "secondary"
    TERTIARY = "tertiary"
    OVERFLOW = "overflow"


TIER_ORDER: tuple[Tier, ...] = (
    Tier.PRIMARY,
    Tier.SECONDARY,
    Tier.TERTIARY,
    Tier.OVERFLOW,
)


class EvictionReason(str, Enum):
    """Why a record was dropped from a chain."""

    THINNED = "thinned"  # Neighbours already closer than the tier spacing
    OVER_CAPACITY = "over_capacity"  # Oldest overflow entry past the cap


@dataclass(frozen=True)
class Eviction:
    """A record the retention engine decided to remove from disk."""

    record: SaveRecord
    tier: Tier
    reason: EvictionReason


# =============================================================================
# Retention Policy
# =============================================================================

UNBOUNDED = -1
MIN_POLL_INTERVAL_SECONDS = 1.0


class RetentionPolicy(BaseModel):
    """Tier capacities and spacing, in seconds.

    Out-of-range values are clamped to the nearest valid value rather than
    rejected. An ``overflow_capacity`` of -1 means unbounded. ``nan`` and
    infinite durations have no nearest valid value and fail validation.
    """

    model_config = ConfigDict(frozen=True, allow_inf_nan=False)

    poll_interval_seconds: float = 60.0
    archive_instead_of_delete: bool = False
    primary_capacity: int = 16
    secondary_capacity: int = 32
    secondary_min_spacing_seconds: float = 1800.0
    tertiary_capacity: int = 64
    tertiary_min_spacing_seconds: float = 3600.0
    overflow_capacity: int = UNBOUNDED
    overflow_min_spacing_seconds: float = 14400.0

    @field_validator("poll_interval_seconds")
    @classmethod
    def _clamp_poll_interval(cls, v: float) -> float:
        return max(v, MIN_POLL_INTERVAL_SECONDS)

    @field_validator("primary_capacity")
    @classmethod
    def _clamp_primary(cls, v: int) -> int:
        return max(v, 1)

    @field_validator("secondary_capacity", "tertiary_capacity")
    @classmethod
    def _clamp_capacity(cls, v: int) -> int:
        return max(v, 0)

    @field_validator("overflow_capacity")
    @classmethod
    def _clamp_overflow(cls, v: int) -> int:
        return UNBOUNDED if v < 0 else v

    @field_validator(
        "secondary_min_spacing_seconds",
        "tertiary_min_spacing_seconds",
        "overflow_min_spacing_seconds",
    )
    @classmethod
    def _clamp_spacing(cls, v: float) -> float:
        return max(v, 0.0)

    def capacity(self, tier: Tier) -> int:
        """Maximum size of a tier, or -1 when unbounded."""
        return {
            Tier.PRIMARY: self.primary_capacity,
            Tier.SECONDARY: self.secondary_capacity,
            Tier.TERTIARY: self.tertiary_capacity,
            Tier.OVERFLOW: self.overflow_capacity,
        }[tier]

    def min_spacing_seconds(self, tier: Tier) -> float:
        """Desired gap between surviving records; the primary tier is never thinned."""
        return {
            Tier.PRIMARY: 0.0,
            Tier.SECONDARY: self.secondary_min_spacing_seconds,
            Tier.TERTIARY: self.tertiary_min_spacing_seconds,
            Tier.OVERFLOW: self.overflow_min_spacing_seconds,
        }[tier]
