# bot/views/format.py
from datetime import datetime
from typing import Optional

from coach_review.db.enums import SubmissionStatus
from coach_review.i18n import Localizer
from coach_review.bot.services.sla import SlaEvaluation
from coach_review.utils.clock import format_seconds


def status_label(lz: Localizer, status: SubmissionStatus | str | None) -> str:
    code = str(status or "").lower()
    if not code:
        return "—"
    return lz.get_or(f"status.{code}", code.upper())


def sla_label(lz: Localizer, evaluation: Optional[SlaEvaluation]) -> str:
    if evaluation is None:
        return ""
    return lz.get(f"sla.{evaluation.state}", hours=evaluation.hours_remaining)


def format_size(num_bytes: Optional[int]) -> str:
    if not num_bytes:
        return "0 B"
    size = float(num_bytes)
    for unit in ("B", "KB", "MB", "GB"):
        if size < 1024 or unit == "GB":
            return f"{size:.0f} {unit}" if unit == "B" else f"{size:.1f} {unit}"
        size /= 1024
    return f"{size:.1f} GB"


def format_datetime(dt: Optional[datetime]) -> str:
    if dt is None:
        return "—"
    return dt.strftime("%Y-%m-%d %H:%M UTC")


def format_position(seconds: Optional[float]) -> str:
    return format_seconds(seconds)


def shorten(text: Optional[str], limit: int = 60) -> str:
    text = (text or "").strip().replace("\n", " ")
    return text if len(text) <= limit else text[: limit - 1] + "…"
