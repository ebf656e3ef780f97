# db/schemas/review.py
import uuid
from datetime import datetime
from typing import Optional
from coach_review.db.schemas._base import OrmModel
from coach_review.db.enums import ReviewStatus

class ReviewRead(OrmModel):
    id: uuid.UUID
    submission_id: uuid.UUID
    coach_id: uuid.UUID
    coach_name: str
    overall_feedback: str = ""
    next_steps: str = ""
    strengths: list[str] = []
    areas_for_improvement: list[str] = []
    status: ReviewStatus = ReviewStatus.DRAFT
    published_at: Optional[datetime] = None
    created_at: datetime
    updated_at: datetime

class ReviewDraft(OrmModel):
    overall_feedback: Optional[str] = None
    next_steps: Optional[str] = None
    strengths: Optional[list[str]] = None
    areas_for_improvement: Optional[list[str]] = None
