# db/schemas/user.py
import uuid
from datetime import datetime
from typing import Optional
from pydantic import EmailStr
from coach_review.db.schemas._base import OrmModel
from coach_review.db.enums import UserRole, UiMode, ADMIN_ROLES, REVIEWER_ROLES
from coach_review.utils.sentinels import Missing

class UserBase(OrmModel):
    tg_id: Optional[int] = None
    tg_username: Optional[str] = None
    display_name: Optional[str] = None
    email: Optional[EmailStr] = None
    photo_url: Optional[str] = None
    role: UserRole = UserRole.UNREGISTERED
    team_id: Optional[uuid.UUID] = None
    coach_id: Optional[uuid.UUID] = None
    preferred_language: Optional[str] = None
    ui_mode: UiMode = UiMode.HOME

class UserCreate(UserBase): ...

class UserUpdate(OrmModel):
    id: uuid.UUID
    tg_id: int | Missing | None = Missing()
    tg_username: str | Missing | None = Missing()
    display_name: str | Missing | None = Missing()
    email: EmailStr | Missing | None = Missing()
    photo_url: str | Missing | None = Missing()
    role: UserRole | Missing = Missing()
    team_id: uuid.UUID | Missing | None = Missing()
    coach_id: uuid.UUID | Missing | None = Missing()
    preferred_language: str | Missing | None = Missing()
    ui_mode: UiMode | Missing = Missing()

class UserRead(UserBase):
    """The acting principal handed explicitly to every workflow operation."""
    id: uuid.UUID
    created_at: Optional[datetime] = None

    @property
    def name(self) -> str:
        if self.display_name:
            return self.display_name
        if self.tg_username:
            return f"@{self.tg_username}"
        return str(self.id)[:8]

    @property
    def is_admin(self) -> bool:
        return self.role in ADMIN_ROLES

    @property
    def can_review(self) -> bool:
        return self.role in REVIEWER_ROLES
