# db/models/comment.py
import uuid
from datetime import datetime
from typing import Optional
from sqlalchemy import Enum as SAEnum, Boolean, DateTime, Float, ForeignKey, String, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column
from coach_review.db.models._base import Base
from coach_review.db.enums import CommentAuthorRole
from coach_review.utils.clock import utc_now

class Comment(Base):
    __tablename__ = "comment"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    submission_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("submission.id", ondelete="CASCADE"), nullable=False, index=True
    )
    # replies are removed explicitly by the store, not by the database
    parent_id: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid, nullable=True, index=True)
    author_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False)
    author_name: Mapped[str] = mapped_column(String(256), nullable=False)
    author_role: Mapped[CommentAuthorRole] = mapped_column(
        SAEnum(CommentAuthorRole, name="comment_author_role"), nullable=False
    )
    content: Mapped[str] = mapped_column(Text, nullable=False)
    video_timestamp: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    edited: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    edited_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=False), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=utc_now)
