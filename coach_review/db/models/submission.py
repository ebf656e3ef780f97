# db/models/submission.py
import uuid
from datetime import datetime
from typing import Optional
from sqlalchemy import Enum as SAEnum, DateTime, Float, ForeignKey, Index, Integer, String, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column
from coach_review.db.models._base import Base
from coach_review.db.enums import SubmissionStatus
from coach_review.utils.clock import utc_now

class Submission(Base):
    __tablename__ = "submission"
    __table_args__ = (
        Index("ix_submission_coach_status", "coach_id", "status"),
        Index("ix_submission_team_status", "team_id", "status"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)

    athlete_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("user.id", ondelete="CASCADE"), nullable=False, index=True)
    athlete_name: Mapped[str] = mapped_column(String(256), nullable=False)
    athlete_photo_url: Mapped[Optional[str]] = mapped_column(String(1024), nullable=True)
    team_id: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid, nullable=True)
    coach_id: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid, nullable=True)

    skill_name: Mapped[str] = mapped_column(String(256), nullable=False)
    athlete_context: Mapped[str] = mapped_column(Text, nullable=False)
    athlete_goals: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    specific_questions: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    video_file_name: Mapped[str] = mapped_column(String(512), nullable=False)
    video_file_size: Mapped[int] = mapped_column(Integer, nullable=False)
    video_duration: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    video_storage_path: Mapped[Optional[str]] = mapped_column(String(1024), nullable=True)
    video_download_url: Mapped[Optional[str]] = mapped_column(String(2048), nullable=True)
    thumbnail_url: Mapped[Optional[str]] = mapped_column(String(2048), nullable=True)

    status: Mapped[SubmissionStatus] = mapped_column(
        SAEnum(SubmissionStatus, name="submission_status"),
        nullable=False,
        default=SubmissionStatus.UPLOADING,
    )
    claimed_by: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid, nullable=True, index=True)
    claimed_by_name: Mapped[Optional[str]] = mapped_column(String(256), nullable=True)
    claimed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=False), nullable=True)

    sla_deadline: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=False), nullable=True)
    review_id: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid, nullable=True)
    reviewed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=False), nullable=True)
    turnaround_minutes: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    comment_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=utc_now)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=utc_now, onupdate=utc_now)
