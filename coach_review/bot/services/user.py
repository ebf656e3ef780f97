# bot/services/user.py
from uuid import UUID
from typing import Self, ClassVar, Optional
from coach_review.db.schemas.user import UserRead, UserCreate, UserUpdate
from coach_review.db.enums import UiMode, UserRole
from coach_review.db.database import DataBase
from coach_review.errors import NotFound, ValidationFailed
from coach_review.bot.services.audit_log import instrument_service_class

class UserService:
    _instance: ClassVar[Optional["UserService"]] = None

    def __new__(cls) -> Self:
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __init__(self) -> None:
        if getattr(self, "_initialized", False):
            return

        self.database = DataBase()
        self.users: dict[int, UserRead] = dict()
        self._initialized = True

    def _remember(self, user: UserRead) -> UserRead:
        if isinstance(user.tg_id, int):
            self.users[user.tg_id] = user
        return user

    async def create_user(self, user: UserCreate) -> UserRead:
        return self._remember(await self.database.create_user(user))

    async def update_user(self, user: UserUpdate) -> UserRead:
        return self._remember(await self.database.update_user(user))

    async def change_ui_mode(self, user: UserRead, ui_mode: UiMode) -> UserRead:
        if user.ui_mode == ui_mode:
            return user
        return await self.update_user(UserUpdate(id=user.id, ui_mode=ui_mode))

    async def change_language(self, user: UserRead, language: str) -> UserRead:
        return await self.update_user(UserUpdate(id=user.id, preferred_language=language))

    async def change_role(self, user: UserRead, role: UserRole) -> UserRead:
        return await self.update_user(UserUpdate(id=user.id, role=role))

    async def assign_coach(self, athlete: UserRead, coach: UserRead) -> UserRead:
        """Route the athlete's future submissions to ``coach`` (and the coach's team)."""
        if not coach.can_review:
            raise ValidationFailed(f"{coach.name} is not a coach", field="coach_id")
        return await self.update_user(UserUpdate(id=athlete.id, coach_id=coach.id, team_id=coach.team_id))

    async def set_team(self, user: UserRead, team_id: Optional[UUID]) -> UserRead:
        return await self.update_user(UserUpdate(id=user.id, team_id=team_id))

    async def get_by_username(self, tg_username: str) -> UserRead:
        user = await self.database.get_user_by_tg_username(tg_username)
        if user is None:
            raise NotFound("User", tg_username)
        return self._remember(user)

    async def get_user(
        self,
        uid: Optional[UUID] = None,
        tg_id: Optional[int] = None,
        tg_username: Optional[str] = None,
        display_name: Optional[str] = None,
        autocreate: bool = False,
    ) -> Optional[UserRead]:
        """
        Resolve a user, preferring the in-process tg_id cache.
        With ``autocreate`` an unknown Telegram identity becomes an ``unregistered`` user;
        a changed username or display name is written back.
        """
        user = self.users.get(tg_id) if tg_id is not None else None
        if user is None:
            user = await self.database.get_user(uid, tg_id, tg_username)
            if user is None and autocreate and isinstance(tg_id, int):
                user = await self.database.create_user(
                    UserCreate(tg_id=tg_id, tg_username=tg_username, display_name=display_name)
                )
            if user is None:
                return None
            self._remember(user)

        changes: dict = {}
        if tg_username is not None and user.tg_username != tg_username.lstrip("@"):
            changes["tg_username"] = tg_username
        if display_name and not user.display_name:
            changes["display_name"] = display_name
        if changes:
            user = await self.update_user(UserUpdate(id=user.id, **changes))

        return user


instrument_service_class(
    UserService,
    prefix="services.user",
    actor_fields=("user", "athlete", "actor"),
)
