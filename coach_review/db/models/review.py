# db/models/review.py
import uuid
from datetime import datetime
from typing import Optional
from sqlalchemy import Enum as SAEnum, DateTime, ForeignKey, JSON, String, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column
from coach_review.db.models._base import Base
from coach_review.db.enums import ReviewStatus
from coach_review.utils.clock import utc_now

class Review(Base):
    __tablename__ = "review"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    submission_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("submission.id", ondelete="CASCADE"), nullable=False, unique=True
    )
    coach_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False, index=True)
    coach_name: Mapped[str] = mapped_column(String(256), nullable=False)
    overall_feedback: Mapped[str] = mapped_column(Text, nullable=False, default="")
    next_steps: Mapped[str] = mapped_column(Text, nullable=False, default="")
    strengths: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
    areas_for_improvement: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
    status: Mapped[ReviewStatus] = mapped_column(
        SAEnum(ReviewStatus, name="review_status"), nullable=False, default=ReviewStatus.DRAFT
    )
    published_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=False), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=utc_now)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=utc_now, onupdate=utc_now)
