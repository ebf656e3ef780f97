# bot/views/submission_detail.py
import logging
from typing import Awaitable, Callable, Optional
from uuid import UUID

from coach_review.db.enums import ReviewStatus, SubmissionStatus
from coach_review.db.schemas.comment import CommentRead, CommentThread
from coach_review.db.schemas.review import ReviewRead
from coach_review.db.schemas.submission import SubmissionRead
from coach_review.db.schemas.user import UserRead
from coach_review.bot.services import access, sla
from coach_review.bot.services.comment import CommentService, organize_into_threads
from coach_review.bot.services.live_query import Unsubscribe
from coach_review.bot.services.review import ReviewService
from coach_review.bot.services.submission import SubmissionService

logger = logging.getLogger(__name__)


class SubmissionDetailView:
    """
    Player page for one submission: the live submission document, its live
    comment list, the published review and a local playhead.

    ``open()`` raises PermissionDenied for viewers who are neither the athlete,
    a coach of the submission nor an admin; nothing is subscribed in that case.
    """

    def __init__(
        self,
        viewer: UserRead,
        submission_id: UUID,
        on_update: Optional[Callable[["SubmissionDetailView"], Awaitable[None] | None]] = None,
    ) -> None:
        self.viewer = viewer
        self.submission_id = submission_id
        self.submission: Optional[SubmissionRead] = None
        self.comments: list[CommentRead] = []
        self.review: Optional[ReviewRead] = None
        self.playhead: float = 0.0
        self.anchor_to_playhead = False
        self.gone = False
        self.on_update = on_update
        self._subscriptions: list[Unsubscribe] = []
        self._submissions = SubmissionService()
        self._comments = CommentService()
        self._reviews = ReviewService()

    # --- lifecycle ---

    async def open(self) -> "SubmissionDetailView":
        self.submission = await self._submissions.get_for_viewer(self.submission_id, self.viewer)
        await self._load_review()
        self._subscriptions.append(await self._submissions.subscribe_one(self.submission_id, self._on_submission))
        self._subscriptions.append(await self._comments.subscribe(self.submission_id, self._on_comments))
        return self

    def close(self) -> None:
        while self._subscriptions:
            self._subscriptions.pop()()

    @property
    def is_open(self) -> bool:
        return bool(self._subscriptions)

    async def _on_submission(self, submission: Optional[SubmissionRead]) -> None:
        if submission is None:
            self.gone = True
        else:
            previous_review_id = self.submission.review_id if self.submission else None
            self.submission = submission
            if submission.review_id != previous_review_id or submission.status == SubmissionStatus.IN_REVIEW:
                await self._load_review()
        await self._notify()

    async def _on_comments(self, comments: list[CommentRead]) -> None:
        self.comments = list(comments)
        await self._notify()

    async def _load_review(self) -> None:
        if self.submission is not None:
            self.review = await self._reviews.get_for_submission(self.submission, self.viewer)

    async def _notify(self) -> None:
        if self.on_update is None:
            return
        outcome = self.on_update(self)
        if outcome is not None:
            await outcome

    # --- derived state ---

    @property
    def threads(self) -> list[CommentThread]:
        return organize_into_threads(self.comments)

    @property
    def published_review(self) -> Optional[ReviewRead]:
        if self.review is not None and self.review.status == ReviewStatus.PUBLISHED:
            return self.review
        return None

    @property
    def deadline_status(self) -> Optional[sla.SlaEvaluation]:
        if self.submission is None or self.submission.status == SubmissionStatus.COMPLETE:
            return None
        return sla.evaluate_optional(self.submission.sla_deadline)

    @property
    def is_athlete(self) -> bool:
        return self.submission is not None and self.submission.athlete_id == self.viewer.id

    @property
    def can_review(self) -> bool:
        return (
            self.submission is not None
            and access.is_claiming_coach(self.viewer, self.submission)
            and self.submission.status in (SubmissionStatus.CLAIMED, SubmissionStatus.IN_REVIEW)
        )

    @property
    def can_claim(self) -> bool:
        return (
            self.submission is not None
            and self.viewer.can_review
            and self.submission.status == SubmissionStatus.AWAITING_COACH
        )

    # --- playhead ---

    def set_playhead(self, seconds: float) -> float:
        position = max(0.0, float(seconds))
        duration = self.submission.video_duration if self.submission else None
        if duration is not None:
            position = min(position, float(duration))
        self.playhead = position
        return position

    def toggle_anchor(self) -> bool:
        self.anchor_to_playhead = not self.anchor_to_playhead
        return self.anchor_to_playhead

    def seek_to_comment(self, comment_id: UUID) -> Optional[float]:
        """Jump to a comment's timestamp chip; comments without one leave the playhead alone."""
        for c in self.comments:
            if c.id == comment_id:
                if c.video_timestamp is None:
                    return None
                return self.set_playhead(c.video_timestamp)
        return None

    # --- comments ---

    async def post_comment(
        self,
        content: str,
        *,
        anchor_to_playhead: Optional[bool] = None,
        parent_id: Optional[UUID] = None,
    ) -> CommentRead:
        anchor = self.anchor_to_playhead if anchor_to_playhead is None else anchor_to_playhead
        return await self._comments.create_comment(
            self.viewer,
            self.submission_id,
            content,
            video_timestamp=self.playhead if anchor else None,
            parent_id=parent_id,
        )

    async def edit_comment(self, comment_id: UUID, content: str) -> CommentRead:
        return await self._comments.edit_comment(self.viewer, comment_id, content)

    async def delete_comment(self, comment_id: UUID) -> list[UUID]:
        return await self._comments.delete_comment(self.viewer, comment_id)
