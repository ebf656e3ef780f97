# bot/services/review.py
import logging
from uuid import UUID
from typing import Self, ClassVar, Optional

from coach_review.db.database import DataBase
from coach_review.db.enums import ReviewStatus
from coach_review.db.schemas.review import ReviewRead, ReviewDraft
from coach_review.db.schemas.submission import SubmissionRead
from coach_review.db.schemas.user import UserRead
from coach_review.errors import NotFound, PermissionDenied
from coach_review.bot.services import access
from coach_review.bot.services.live_query import LiveQueryHub, SUBMISSIONS_TOPIC
from coach_review.bot.services.submission import SubmissionService
from coach_review.bot.services.submission_notifications import submission_notifier
from coach_review.bot.services.audit_log import instrument_service_class

logger = logging.getLogger(__name__)


def _clean_items(items: Optional[list[str]]) -> Optional[list[str]]:
    if items is None:
        return None
    return [s.strip() for s in items if s and s.strip()]


class ReviewService:
    _instance: ClassVar[Optional["ReviewService"]] = None

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

    async def get_for_submission(self, submission: SubmissionRead, viewer: UserRead) -> Optional[ReviewRead]:
        """The review a viewer may see: published ones for everyone with access, drafts only for their coach."""
        access.ensure_can_view(viewer, submission)
        review = await self._database.get_review_by_submission(submission.id)
        if review is None:
            return None
        if review.status == ReviewStatus.PUBLISHED or review.coach_id == viewer.id:
            return review
        return None

    async def get_review(self, review_id: UUID) -> ReviewRead:
        review = await self._database.get_review_by_id(review_id)
        if review is None:
            raise NotFound("Review", review_id)
        return review

    async def start_review(self, submission_id: UUID, coach: UserRead) -> ReviewRead:
        """``claimed -> in_review`` plus a draft review; continuing an open review returns its draft."""
        if not coach.can_review:
            raise PermissionDenied("Only coaches can review", viewer_id=coach.id)
        submission, review = await self._database.start_review(submission_id, coach.id, coach.name)
        await self._hub.publish(SUBMISSIONS_TOPIC, submission.id)
        return review

    async def save_draft(self, review_id: UUID, coach: UserRead, draft: ReviewDraft) -> ReviewRead:
        draft = ReviewDraft(
            overall_feedback=draft.overall_feedback.strip() if draft.overall_feedback is not None else None,
            next_steps=draft.next_steps.strip() if draft.next_steps is not None else None,
            strengths=_clean_items(draft.strengths),
            areas_for_improvement=_clean_items(draft.areas_for_improvement),
        )
        return await self._database.update_review_draft(review_id, coach.id, draft)

    async def publish(self, review_id: UUID, coach: UserRead) -> ReviewRead:
        """Publish the draft and complete the submission atomically, then tell the athlete."""
        review = await self.get_review(review_id)
        previous = await self._submissions.get_one(review.submission_id)
        review, submission = await self._database.publish_review(review_id, coach.id)
        logger.info(
            "Review %s published for submission %s (turnaround %s min)",
            review.id,
            submission.id,
            submission.turnaround_minutes,
        )
        await self._hub.publish(SUBMISSIONS_TOPIC, submission.id)
        await submission_notifier.submission_changed(self._submissions, previous, submission)
        return review


instrument_service_class(ReviewService, prefix="services.review", actor_fields=("coach", "viewer"))
