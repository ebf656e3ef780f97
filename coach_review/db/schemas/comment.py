# db/schemas/comment.py
import uuid
from datetime import datetime
from typing import Optional
from pydantic import Field
from coach_review.db.schemas._base import OrmModel
from coach_review.db.enums import CommentAuthorRole

class CommentCreate(OrmModel):
    submission_id: uuid.UUID
    content: str
    video_timestamp: Optional[float] = Field(default=None, ge=0)
    parent_id: Optional[uuid.UUID] = None

class CommentRead(OrmModel):
    id: uuid.UUID
    submission_id: uuid.UUID
    parent_id: Optional[uuid.UUID] = None
    author_id: uuid.UUID
    author_name: str
    author_role: CommentAuthorRole
    content: str
    video_timestamp: Optional[float] = None
    edited: bool = False
    edited_at: Optional[datetime] = None
    created_at: datetime

    @property
    def has_timestamp(self) -> bool:
        return self.video_timestamp is not None

class CommentThread(OrmModel):
    comment: CommentRead
    replies: list[CommentRead] = []
