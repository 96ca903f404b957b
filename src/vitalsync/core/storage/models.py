"""Data models for the session persistence layer.

Sleep and exercise sessions share a common shape: a start instant, an end
instant (stored for sleep, derived from the duration for exercise), a
provenance ``source`` and an advisory ``conflicted`` flag. Conflict records
reference two sessions by id without a foreign key, so one conflict table
serves both session kinds.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def ensure_utc(value: datetime) -> datetime:
    """Return ``value`` as an aware UTC datetime (naive values are taken as UTC)."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def new_id() -> str:
    return str(uuid.uuid4())


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------

class RecordKind(str, Enum):
    SLEEP = "sleep"
    EXERCISE = "exercise"


class SessionSource(str, Enum):
    """Where a session came from."""

    MANUAL = "manual"
    HEALTH_CONNECT = "health_connect"
    APPLE_HEALTH = "apple_health"
    GARMIN = "garmin"


class ExerciseKind(str, Enum):
    WALKING = "walking"
    RUNNING = "running"
    CYCLING = "cycling"
    SWIMMING = "swimming"
    STRENGTH_TRAINING = "strength_training"
    YOGA = "yoga"
    BASKETBALL = "basketball"
    SOCCER = "soccer"
    OTHER = "other"


class ExerciseIntensity(str, Enum):
    LOW = "low"
    MODERATE = "moderate"
    HIGH = "high"
    VERY_HIGH = "very_high"


class ConflictKind(str, Enum):
    SLEEP_OVERLAP = "sleep_overlap"
    EXERCISE_OVERLAP = "exercise_overlap"
    DUPLICATE_ENTRY = "duplicate_entry"
    DATA_MISMATCH = "data_mismatch"


class ConflictResolution(str, Enum):
    KEEP_MANUAL = "keep_manual"
    KEEP_HEALTH_CONNECT = "keep_health_connect"
    KEEP_APPLE_HEALTH = "keep_apple_health"
    KEEP_GARMIN = "keep_garmin"
    MERGE_DATA = "merge_data"
    DELETE_DUPLICATE = "delete_duplicate"


# ---------------------------------------------------------------------------
# Sessions
# ---------------------------------------------------------------------------

@dataclass
class SleepSession:
    """One night (or nap) of sleep.

    ``wake_time`` must be strictly after ``bed_time``; ``quality_rating`` is a
    1-5 user rating.
    """

    bed_time: datetime
    wake_time: datetime
    quality_rating: int = 3
    notes: str | None = None
    source: SessionSource = SessionSource.MANUAL
    id: str = field(default_factory=new_id)
    created_at: datetime = field(default_factory=utc_now)
    conflicted: bool = False

    def __post_init__(self) -> None:
        self.bed_time = ensure_utc(self.bed_time)
        self.wake_time = ensure_utc(self.wake_time)
        self.created_at = ensure_utc(self.created_at)
        self.source = SessionSource(self.source)
        if self.wake_time <= self.bed_time:
            raise ValueError(
                f"wake_time ({self.wake_time.isoformat()}) must be after "
                f"bed_time ({self.bed_time.isoformat()})"
            )
        if not 1 <= self.quality_rating <= 5:
            raise ValueError(f"quality_rating must be between 1 and 5, got {self.quality_rating}")

    @property
    def start(self) -> datetime:
        return self.bed_time

    @property
    def end(self) -> datetime:
        return self.wake_time

    @property
    def duration_minutes(self) -> int:
        return int((self.wake_time - self.bed_time).total_seconds() // 60)


@dataclass
class ExerciseSession:
    """A single workout. The end instant is derived from the duration."""

    exercise_kind: ExerciseKind
    start_time: datetime
    duration_minutes: int
    intensity: ExerciseIntensity = ExerciseIntensity.MODERATE
    calories_burned: int | None = None
    notes: str | None = None
    source: SessionSource = SessionSource.MANUAL
    id: str = field(default_factory=new_id)
    created_at: datetime = field(default_factory=utc_now)
    conflicted: bool = False

    def __post_init__(self) -> None:
        self.start_time = ensure_utc(self.start_time)
        self.created_at = ensure_utc(self.created_at)
        self.exercise_kind = ExerciseKind(self.exercise_kind)
        self.intensity = ExerciseIntensity(self.intensity)
        self.source = SessionSource(self.source)
        if self.duration_minutes <= 0:
            raise ValueError(f"duration_minutes must be positive, got {self.duration_minutes}")
        if self.calories_burned is not None and self.calories_burned < 0:
            raise ValueError(f"calories_burned must be non-negative, got {self.calories_burned}")

    @property
    def end_time(self) -> datetime:
        return self.start_time + timedelta(minutes=self.duration_minutes)

    @property
    def start(self) -> datetime:
        return self.start_time

    @property
    def end(self) -> datetime:
        return self.end_time


Session = SleepSession | ExerciseSession


def record_kind_of(session: Session) -> RecordKind:
    if isinstance(session, SleepSession):
        return RecordKind.SLEEP
    return RecordKind.EXERCISE


# ---------------------------------------------------------------------------
# Conflicts
# ---------------------------------------------------------------------------

@dataclass
class ConflictRecord:
    """A detected overlap or mismatch awaiting user resolution.

    ``details`` is written once at detection time and never rebuilt.
    """

    conflict_kind: ConflictKind
    primary_record_id: str
    conflicting_record_id: str
    details: str
    resolved: bool = False
    resolution: ConflictResolution | None = None
    id: str = field(default_factory=new_id)
    created_at: datetime = field(default_factory=utc_now)
    resolved_at: datetime | None = None

    def __post_init__(self) -> None:
        self.conflict_kind = ConflictKind(self.conflict_kind)
        if self.resolution is not None:
            self.resolution = ConflictResolution(self.resolution)
        self.created_at = ensure_utc(self.created_at)
        if self.resolved_at is not None:
            self.resolved_at = ensure_utc(self.resolved_at)
