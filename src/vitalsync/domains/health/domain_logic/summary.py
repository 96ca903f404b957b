"""Seven-day health summary over the local session store."""

from __future__ import annotations

from dataclasses import asdict, dataclass
from datetime import datetime, timedelta
from typing import Any

from vitalsync.core.storage.models import utc_now
from vitalsync.core.storage.repository import HealthStore

SUMMARY_WINDOW = timedelta(days=7)


@dataclass
class HealthSummary:
    total_sleep_sessions: int = 0
    total_exercise_sessions: int = 0
    weekly_average_sleep_quality: float = 0.0
    weekly_exercise_minutes: int = 0
    weekly_calories_burned: int = 0
    unresolved_conflicts: int = 0

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


def build_health_summary(store: HealthStore, now: datetime | None = None) -> HealthSummary:
    """Totals across all sessions plus averages over the trailing week.

    Sessions without a calorie figure are left out of the calorie total.
    """
    now = now or utc_now()
    since = now - SUMMARY_WINDOW

    sleep = store.sleep.get_all()
    exercise = store.exercise.get_all()
    recent_sleep = [s for s in sleep if s.bed_time > since]
    recent_exercise = [e for e in exercise if e.start_time > since]

    avg_quality = 0.0
    if recent_sleep:
        avg_quality = sum(s.quality_rating for s in recent_sleep) / len(recent_sleep)

    return HealthSummary(
        total_sleep_sessions=len(sleep),
        total_exercise_sessions=len(exercise),
        weekly_average_sleep_quality=round(avg_quality, 2),
        weekly_exercise_minutes=sum(e.duration_minutes for e in recent_exercise),
        weekly_calories_burned=sum(
            e.calories_burned for e in recent_exercise if e.calories_burned is not None
        ),
        unresolved_conflicts=store.conflicts.count_unresolved(),
    )
