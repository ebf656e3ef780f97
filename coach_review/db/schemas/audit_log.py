# db/schemas/audit_log.py
import uuid
from datetime import datetime
from typing import Any, Optional
from pydantic import Field
from coach_review.db.schemas._base import OrmModel

class AuditLogCreate(OrmModel):
    actor_id: Optional[uuid.UUID] = None
    action: str
    payload: dict[str, Any] = Field(default_factory=dict)

class AuditLogRead(AuditLogCreate):
    id: uuid.UUID
    created_at: datetime
