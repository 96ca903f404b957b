"""Temporal overlap between sessions.

Intervals are closed: sessions that merely touch (one ends at the exact
instant the other begins) still count as overlapping. Two intervals are
disjoint only when one ends strictly before the other begins.
"""

from __future__ import annotations

from datetime import datetime

from vitalsync.core.storage.models import Session


def overlaps(start_a: datetime, end_a: datetime, start_b: datetime, end_b: datetime) -> bool:
    """Return True if ``[start_a, end_a]`` and ``[start_b, end_b]`` intersect."""
    return not (end_a < start_b or end_b < start_a)


def session_interval(session: Session) -> tuple[datetime, datetime]:
    """(start, end) of a sleep or exercise session."""
    return session.start, session.end


def sessions_overlap(a: Session, b: Session) -> bool:
    return overlaps(*session_interval(a), *session_interval(b))
