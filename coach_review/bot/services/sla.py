# bot/services/sla.py
"""Service-level deadline arithmetic for submissions."""
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional

from coach_review.config import Settings
from coach_review.db.enums import SlaState
from coach_review.utils.clock import as_naive_utc, minutes_between, utc_now


@dataclass(frozen=True)
class SlaEvaluation:
    state: SlaState
    hours_remaining: int

    @property
    def is_breached(self) -> bool:
        return self.state == SlaState.BREACHED

    @property
    def needs_attention(self) -> bool:
        return self.state != SlaState.ON_TRACK


def compute_deadline(submitted_at: datetime, hours: Optional[int] = None) -> datetime:
    if hours is None:
        hours = Settings().sla_hours
    return as_naive_utc(submitted_at) + timedelta(hours=hours)


def hours_between(later: datetime, earlier: datetime) -> int:
    """Whole hours from ``earlier`` to ``later``, truncated toward zero."""
    seconds = (as_naive_utc(later) - as_naive_utc(earlier)).total_seconds()
    return int(seconds / 3600)


def evaluate(deadline: datetime, now: Optional[datetime] = None, urgent_hours: Optional[int] = None) -> SlaEvaluation:
    """
    Classify a deadline relative to ``now``.

    A deadline strictly in the past is breached (hours_remaining 0). Otherwise the
    remaining time is counted in whole hours; under ``urgent_hours`` is urgent.
    A deadline equal to ``now`` is urgent, not breached.
    """
    now = utc_now() if now is None else as_naive_utc(now)
    deadline = as_naive_utc(deadline)
    if urgent_hours is None:
        urgent_hours = Settings().sla_urgent_hours

    if deadline < now:
        return SlaEvaluation(SlaState.BREACHED, 0)

    hours = hours_between(deadline, now)
    if hours < urgent_hours:
        return SlaEvaluation(SlaState.URGENT, hours)
    return SlaEvaluation(SlaState.ON_TRACK, hours)


def evaluate_optional(deadline: Optional[datetime], now: Optional[datetime] = None) -> Optional[SlaEvaluation]:
    return evaluate(deadline, now) if deadline is not None else None


def turnaround_minutes(submitted_at: datetime, reviewed_at: datetime) -> int:
    return minutes_between(submitted_at, reviewed_at)
