# db/models/user.py
import uuid
from datetime import datetime
from typing import Optional
from sqlalchemy import Enum as SAEnum, String, BigInteger, DateTime, Uuid
from sqlalchemy.orm import Mapped, mapped_column
from coach_review.db.models._base import Base
from coach_review.db.enums import UserRole, UiMode
from coach_review.utils.clock import utc_now

class User(Base):
    __tablename__ = "user"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    tg_id: Mapped[Optional[int]] = mapped_column(BigInteger, nullable=True, unique=True)
    tg_username: Mapped[Optional[str]] = mapped_column(String(64), nullable=True, index=True)
    display_name: Mapped[Optional[str]] = mapped_column(String(256), nullable=True)
    email: Mapped[Optional[str]] = mapped_column(String(254), nullable=True)
    photo_url: Mapped[Optional[str]] = mapped_column(String(1024), nullable=True)
    role: Mapped[UserRole] = mapped_column(SAEnum(UserRole, name="user_role"), nullable=False, default=UserRole.UNREGISTERED)
    team_id: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid, nullable=True, index=True)
    # athlete -> assigned coach; no FK so a coach can be removed without touching athletes
    coach_id: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid, nullable=True, index=True)
    preferred_language: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)
    ui_mode: Mapped[UiMode] = mapped_column(SAEnum(UiMode, name="ui_mode"), nullable=False, default=UiMode.HOME)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=utc_now)
