# db/schemas/submission.py
import uuid
from datetime import datetime
from typing import Optional
from pydantic import Field
from coach_review.db.schemas._base import OrmModel
from coach_review.db.enums import SubmissionStatus, QueueSort
from coach_review.utils.sentinels import Missing

class SubmissionCreate(OrmModel):
    skill_name: str
    athlete_context: str
    athlete_goals: Optional[str] = None
    specific_questions: Optional[str] = None
    video_file_name: str
    video_file_size: int = Field(ge=0)
    video_duration: Optional[float] = None
    # supplied upstream when known; otherwise derived from the SLA window at creation
    sla_deadline: Optional[datetime] = None

class SubmissionRead(OrmModel):
    id: uuid.UUID
    athlete_id: uuid.UUID
    athlete_name: str
    athlete_photo_url: Optional[str] = None
    team_id: Optional[uuid.UUID] = None
    coach_id: Optional[uuid.UUID] = None

    skill_name: str
    athlete_context: str
    athlete_goals: Optional[str] = None
    specific_questions: Optional[str] = None

    video_file_name: str
    video_file_size: int
    video_duration: Optional[float] = None
    video_storage_path: Optional[str] = None
    video_download_url: Optional[str] = None
    thumbnail_url: Optional[str] = None

    status: SubmissionStatus
    claimed_by: Optional[uuid.UUID] = None
    claimed_by_name: Optional[str] = None
    claimed_at: Optional[datetime] = None

    sla_deadline: Optional[datetime] = None
    review_id: Optional[uuid.UUID] = None
    reviewed_at: Optional[datetime] = None
    turnaround_minutes: Optional[int] = None
    comment_count: int = 0

    created_at: datetime
    updated_at: datetime

class SubmissionUpdate(OrmModel):
    """Partial update. Identity, payload and claim fields are not patchable."""
    id: uuid.UUID
    video_duration: float | Missing | None = Missing()
    video_storage_path: str | Missing | None = Missing()
    video_download_url: str | Missing | None = Missing()
    thumbnail_url: str | Missing | None = Missing()
    status: SubmissionStatus | Missing = Missing()

class SubmissionFilter(OrmModel):
    statuses: Optional[list[SubmissionStatus]] = None
    team_id: Optional[uuid.UUID] = None
    coach_id: Optional[uuid.UUID] = None
    athlete_id: Optional[uuid.UUID] = None
    claimed_by: Optional[uuid.UUID] = None
    order: QueueSort = QueueSort.NEWEST
    limit: Optional[int] = Field(default=None, ge=1)

class QueueScope(OrmModel):
    """Which submissions a coach's queue covers: the coach's own routing or a whole team."""
    coach_id: Optional[uuid.UUID] = None
    team_id: Optional[uuid.UUID] = None
    # admins watch every team
    everyone: bool = False
    # submissions with neither a coach nor a team are open to any coach
    open_pool: bool = True
