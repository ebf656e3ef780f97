import itertools
from typing import Optional

import pytest

from coach_review.config import Settings
from coach_review.db.database import DataBase
from coach_review.db.enums import UserRole
from coach_review.db.schemas.submission import SubmissionCreate, SubmissionRead
from coach_review.db.schemas.user import UserCreate, UserRead
from coach_review.bot.middlewares.rate_limit import RateLimitMiddleware
from coach_review.bot.middlewares.user import UserMiddleware
from coach_review.bot.services.comment import CommentService
from coach_review.bot.services.live_query import LiveQueryHub
from coach_review.bot.services.media import MediaStorage
from coach_review.bot.services.review import ReviewService
from coach_review.bot.services.submission import SubmissionService
from coach_review.bot.services.submission_notifications import submission_notifier
from coach_review.bot.services.upload import UploadService
from coach_review.bot.services.user import UserService

SINGLETONS = (
    Settings,
    DataBase,
    UserService,
    SubmissionService,
    CommentService,
    ReviewService,
    UploadService,
    MediaStorage,
    RateLimitMiddleware,
    UserMiddleware,
)


def reset_singletons() -> None:
    if LiveQueryHub._instance is not None:
        LiveQueryHub._instance.clear()
    LiveQueryHub._instance = None
    for cls in SINGLETONS:
        cls._instance = None
    submission_notifier.bind_bot(None)


@pytest.fixture(autouse=True)
def env(tmp_path, monkeypatch):
    monkeypatch.setenv("DATABASE_URL", f"sqlite+aiosqlite:///{tmp_path / 'coach_review.db'}")
    monkeypatch.setenv("MEDIA_ROOT", str(tmp_path / "media"))
    monkeypatch.setenv("MEDIA_BASE_URL", "/media/")
    monkeypatch.setenv("DEFAULT_LANGUAGE", "english")
    monkeypatch.setenv("SLA_HOURS", "48")
    monkeypatch.setenv("SLA_URGENT_HOURS", "12")
    monkeypatch.setenv("MAX_VIDEO_MB", "500")
    monkeypatch.setenv("WHITELIST", "")
    reset_singletons()
    yield
    reset_singletons()


@pytest.fixture
async def db():
    database = DataBase()
    await database.create_all()
    yield database
    await LiveQueryHub().drain()
    await database.dispose()


@pytest.fixture
def make_user(db):
    tg_ids = itertools.count(1001)

    async def _make(role: UserRole = UserRole.ATHLETE, name: Optional[str] = None, **fields) -> UserRead:
        tg_id = next(tg_ids)
        return await db.create_user(UserCreate(
            tg_id=tg_id,
            tg_username=f"user{tg_id}",
            display_name=name or f"{role.value.title()} {tg_id}",
            role=role,
            **fields,
        ))

    return _make


@pytest.fixture
async def athlete(make_user) -> UserRead:
    return await make_user(UserRole.ATHLETE, "Alex Athlete")


@pytest.fixture
async def coach(make_user) -> UserRead:
    return await make_user(UserRole.COACH, "Casey Coach")


@pytest.fixture
async def other_coach(make_user) -> UserRead:
    return await make_user(UserRole.COACH, "Morgan Coach")


@pytest.fixture
async def admin(make_user) -> UserRead:
    return await make_user(UserRole.ADMIN, "Avery Admin")


@pytest.fixture
def make_submission(db):
    async def _make(
        athlete: UserRead,
        *,
        skill: str = "Back handspring",
        uploaded: bool = True,
        size: int = 1024,
        duration: Optional[float] = 60.0,
        **fields,
    ) -> SubmissionRead:
        service = SubmissionService()
        submission = await service.create_submission(athlete, SubmissionCreate(
            skill_name=skill,
            athlete_context="Evening practice, third attempt",
            video_file_name="attempt.mp4",
            video_file_size=size,
            **fields,
        ))
        if uploaded:
            submission = await service.attach_media(
                submission.id,
                athlete,
                download_url=f"/media/{athlete.id}/{submission.id}/attempt.mp4",
                storage_key=f"{athlete.id}/{submission.id}/attempt.mp4",
                video_duration=duration,
            )
        return submission

    return _make


class FakeBot:
    """Records outgoing messages instead of talking to Telegram."""

    id = 42

    def __init__(self) -> None:
        self.sent: list[dict] = []

    async def send_message(self, chat_id, text, reply_markup=None, **kwargs):
        self.sent.append({"chat_id": chat_id, "text": text, "reply_markup": reply_markup})


@pytest.fixture
def fake_bot() -> FakeBot:
    bot = FakeBot()
    submission_notifier.bind_bot(bot)
    yield bot
    submission_notifier.bind_bot(None)
