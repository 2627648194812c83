"""
Trip Match State Module.

Defines the match status enum and the transition table that governs how a
trip's road-matching fields may change. Transitions are checked against the
status last read from storage, never against in-memory history.
"""

from __future__ import annotations

from datetime import datetime, timedelta
from enum import Enum

from config import MATCH_STALE_PROCESSING_SECONDS, MAX_MATCH_ATTEMPTS
from core.date_utils import ensure_utc, get_current_utc_time


class MatchStatus(str, Enum):
    """Enumeration of trip road-matching states."""

    PENDING = "pending"
    PROCESSING = "processing"
    MATCHED = "matched"
    FAILED = "failed"
    SKIPPED = "skipped"


class TransportMode(str, Enum):
    DRIVING = "driving"
    WALKING = "walking"
    UNKNOWN = "unknown"


VALID_TRANSITIONS: dict[MatchStatus, frozenset[MatchStatus]] = {
    MatchStatus.PENDING: frozenset({MatchStatus.PROCESSING, MatchStatus.SKIPPED}),
    # failed is soft-terminal: it may re-enter processing while budget remains
    MatchStatus.FAILED: frozenset({MatchStatus.PROCESSING, MatchStatus.SKIPPED}),
    MatchStatus.PROCESSING: frozenset(
        {MatchStatus.MATCHED, MatchStatus.FAILED, MatchStatus.SKIPPED},
    ),
    MatchStatus.MATCHED: frozenset({MatchStatus.SKIPPED}),
    MatchStatus.SKIPPED: frozenset({MatchStatus.SKIPPED}),
}


def can_transition(current: MatchStatus, target: MatchStatus) -> bool:
    """
    Check if moving from ``current`` to ``target`` is a legal transition.

    ``processing -> processing`` is not listed here; re-entering a stuck
    attempt goes through :func:`is_stale_processing` instead.
    """
    return target in VALID_TRANSITIONS.get(current, frozenset())


def has_budget(attempts: int, max_attempts: int = MAX_MATCH_ATTEMPTS) -> bool:
    return attempts < max_attempts


def is_stale_processing(
    started_at: datetime | None,
    *,
    now: datetime | None = None,
    stale_after_seconds: int = MATCH_STALE_PROCESSING_SECONDS,
) -> bool:
    """Whether a processing attempt is old enough to be taken over."""
    if started_at is None:
        return True
    current = now or get_current_utc_time()
    return current - ensure_utc(started_at) >= timedelta(seconds=stale_after_seconds)


def can_start_attempt(
    status: MatchStatus,
    attempts: int,
    *,
    started_at: datetime | None = None,
    now: datetime | None = None,
) -> bool:
    """Whether a new matching attempt may move the trip into processing."""
    if not has_budget(attempts):
        return False
    if status == MatchStatus.PROCESSING:
        return is_stale_processing(started_at, now=now)
    return can_transition(status, MatchStatus.PROCESSING)
