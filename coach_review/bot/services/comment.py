# bot/services/comment.py
import logging
from uuid import UUID
from typing import Self, ClassVar, Optional, Callable, Awaitable, Iterable

from coach_review.db.database import DataBase
from coach_review.db.schemas.comment import CommentCreate, CommentRead, CommentThread
from coach_review.db.schemas.user import UserRead
from coach_review.errors import NotFound, PermissionDenied, ValidationFailed
from coach_review.bot.services import access
from coach_review.bot.services.live_query import LiveQueryHub, SUBMISSIONS_TOPIC, Unsubscribe, comments_topic
from coach_review.bot.services.submission import SubmissionService
from coach_review.bot.services.audit_log import instrument_service_class

logger = logging.getLogger(__name__)

MAX_COMMENT_LENGTH = 2000


def organize_into_threads(comments: Iterable[CommentRead]) -> list[CommentThread]:
    """Top-level comments in creation order, each with its replies in creation order.
    Replies whose parent is gone are dropped."""
    ordered = sorted(comments, key=lambda c: (c.created_at, str(c.id)))
    threads: dict[UUID, CommentThread] = {}
    for c in ordered:
        if c.parent_id is None:
            threads[c.id] = CommentThread(comment=c, replies=[])
    for c in ordered:
        if c.parent_id is not None and c.parent_id in threads:
            threads[c.parent_id].replies.append(c)
    return list(threads.values())


def _clean_content(content: str) -> str:
    text = (content or "").strip()
    if not text:
        raise ValidationFailed("Comment cannot be empty", field="content")
    if len(text) > MAX_COMMENT_LENGTH:
        raise ValidationFailed(f"Comment is longer than {MAX_COMMENT_LENGTH} characters", field="content")
    return text


class CommentService:
    _instance: ClassVar[Optional["CommentService"]] = None

    def __new__(cls) -> Self:
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __init__(self) -> None:
        if getattr(self, "_initialized", False):
            return

        self._database = DataBase()
        self._hub = LiveQueryHub()
        self._submissions = SubmissionService()
        self._initialized = True

    async def _changed(self, submission_id: UUID) -> None:
        await self._hub.publish(comments_topic(submission_id))
        # comment_count lives on the submission document
        await self._hub.publish(SUBMISSIONS_TOPIC, submission_id)

    async def _own_comment(self, comment_id: UUID, user: UserRead) -> CommentRead:
        comment = await self._database.get_comment_by_id(comment_id)
        if comment is None:
            raise NotFound("Comment", comment_id)
        if comment.author_id != user.id:
            raise PermissionDenied("Only the author can change a comment", comment_id=comment_id)
        return comment

    async def get_comment(self, comment_id: UUID) -> CommentRead:
        comment = await self._database.get_comment_by_id(comment_id)
        if comment is None:
            raise NotFound("Comment", comment_id)
        return comment

    async def list_threads(self, submission_id: UUID, viewer: UserRead) -> list[CommentThread]:
        await self._submissions.get_for_viewer(submission_id, viewer)
        return organize_into_threads(await self._database.list_comments(submission_id))

    async def subscribe(
        self,
        submission_id: UUID,
        on_change: Callable[[list[CommentRead]], Awaitable[None] | None],
    ) -> Unsubscribe:
        async def _load() -> list[CommentRead]:
            return await self._database.list_comments(submission_id)

        return await self._hub.subscribe(comments_topic(submission_id), _load, on_change)

    async def create_comment(
        self,
        user: UserRead,
        submission_id: UUID,
        content: str,
        *,
        video_timestamp: Optional[float] = None,
        parent_id: Optional[UUID] = None,
    ) -> CommentRead:
        await self._submissions.get_for_viewer(submission_id, user)
        if video_timestamp is not None and video_timestamp < 0:
            raise ValidationFailed("Video timestamp cannot be negative", field="video_timestamp")
        data = CommentCreate(
            submission_id=submission_id,
            content=_clean_content(content),
            video_timestamp=video_timestamp,
            parent_id=parent_id,
        )
        comment = await self._database.create_comment(
            data,
            author_id=user.id,
            author_name=user.name,
            author_role=access.comment_author_role(user),
        )
        logger.info("Comment %s posted on submission %s by %s", comment.id, submission_id, user.id)
        await self._changed(submission_id)
        return comment

    async def edit_comment(self, user: UserRead, comment_id: UUID, content: str) -> CommentRead:
        await self._own_comment(comment_id, user)
        comment = await self._database.update_comment_content(comment_id, _clean_content(content))
        await self._changed(comment.submission_id)
        return comment

    async def delete_comment(self, user: UserRead, comment_id: UUID) -> list[UUID]:
        """Delete one's own comment; a top-level comment takes its replies along."""
        comment = await self._own_comment(comment_id, user)
        deleted = await self._database.delete_comment(comment_id)
        logger.info("Deleted %d comment(s) from submission %s", len(deleted), comment.submission_id)
        await self._changed(comment.submission_id)
        return deleted


instrument_service_class(CommentService, prefix="services.comment")
