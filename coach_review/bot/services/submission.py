# bot/services/submission.py
import logging
from uuid import UUID
from typing import Self, ClassVar, Optional, Callable, Awaitable, Any
from coach_review.db.database import DataBase
from coach_review.db.schemas.submission import (
	SubmissionRead, SubmissionUpdate, SubmissionCreate, SubmissionFilter, QueueScope,
)
from coach_review.db.schemas.user import UserRead
from coach_review.db.enums import SubmissionStatus, QueueSort, UserRole
from coach_review.errors import InvalidTransition, NotFound, PermissionDenied
from coach_review.utils.clock import as_naive_utc, utc_now
from coach_review.utils.sentinels import provided
from coach_review.bot.services import access, sla
from coach_review.bot.services.media import validate_video_file
from coach_review.bot.services.live_query import LiveQueryHub, SUBMISSIONS_TOPIC, Unsubscribe
from coach_review.bot.services.submission_notifications import submission_notifier
from coach_review.bot.services.audit_log import instrument_service_class

logger = logging.getLogger(__name__)

# the only statuses a plain patch may write
PATCHABLE_STATUSES = (SubmissionStatus.UPLOADING, SubmissionStatus.AWAITING_COACH)

# what a coach queue lists; tabs narrow it further
QUEUE_STATUSES = (
	SubmissionStatus.AWAITING_COACH,
	SubmissionStatus.CLAIMED,
	SubmissionStatus.IN_REVIEW,
	SubmissionStatus.COMPLETE,
)

class SubmissionService:
	"""
	Store accessor for submissions. Reads are one-shot or live (through the
	``LiveQueryHub``); every successful write is published to the hub so live
	queries re-run. Nothing here caches submission state or retries.
	"""
	_instance: ClassVar[Optional["SubmissionService"]] = None

	def __new__(cls, *args, **kwargs) -> Self:
		if cls._instance is None:
			cls._instance = super().__new__(cls)
		return cls._instance

	def __init__(self) -> None:
		if getattr(self, "_initialized", False):
			return

		self._initialized = True
		self._database = DataBase()
		self._hub = LiveQueryHub()

	@staticmethod
	def queue_scope(coach: UserRead) -> QueueScope:
		if coach.is_admin:
			return QueueScope(everyone=True)
		return QueueScope(coach_id=coach.id, team_id=coach.team_id)

	async def _changed(self, submission: SubmissionRead) -> None:
		await self._hub.publish(SUBMISSIONS_TOPIC, submission.id)

	# --- reads ---

	async def get_one(self, sub_id: UUID) -> SubmissionRead:
		submission = await self._database.get_submission_by_id(sub_id)
		if submission is None:
			raise NotFound("Submission", sub_id)
		return submission

	async def get_for_viewer(self, sub_id: UUID, viewer: UserRead) -> SubmissionRead:
		submission = await self.get_one(sub_id)
		access.ensure_can_view(viewer, submission)
		return submission

	async def get_athlete(self, submission: SubmissionRead) -> Optional[UserRead]:
		return await self._database.get_user_by_id(submission.athlete_id)

	async def list_pending(self, coach: UserRead, flt: Optional[SubmissionFilter] = None) -> list[SubmissionRead]:
		"""One-shot queue read, used to seed the first render before the live query delivers."""
		access.ensure_can_claim(coach)
		flt = flt or SubmissionFilter(order=QueueSort.DEADLINE)
		if not coach.is_admin and flt.coach_id is None and flt.team_id is None and flt.claimed_by is None:
			scoped = await self._database.list_submissions_in_scope(
				self.queue_scope(coach),
				flt.statuses or QUEUE_STATUSES,
				order=flt.order,
			)
			return scoped[:flt.limit] if flt.limit else scoped
		return await self._database.list_submissions(flt)

	async def list_for_athlete(self, athlete: UserRead, limit: Optional[int] = None) -> list[SubmissionRead]:
		return await self._database.list_submissions(
			SubmissionFilter(athlete_id=athlete.id, order=QueueSort.NEWEST, limit=limit)
		)

	async def subscribe(
		self,
		scope: QueueScope,
		on_change: Callable[[list[SubmissionRead]], Awaitable[None] | None],
	) -> Unsubscribe:
		"""Live queue: ``on_change`` gets the full scoped list now and after every submission write."""
		async def _load() -> list[SubmissionRead]:
			return await self._database.list_submissions_in_scope(scope, QUEUE_STATUSES, order=QueueSort.DEADLINE)

		return await self._hub.subscribe(SUBMISSIONS_TOPIC, _load, on_change)

	async def subscribe_one(
		self,
		sub_id: UUID,
		on_change: Callable[[Optional[SubmissionRead]], Awaitable[None] | None],
	) -> Unsubscribe:
		"""Live document: ``on_change`` gets the submission (None once it is gone)."""
		async def _load() -> Optional[SubmissionRead]:
			return await self._database.get_submission_by_id(sub_id)

		return await self._hub.subscribe(SUBMISSIONS_TOPIC, _load, on_change, key=sub_id)

	# --- writes ---

	async def create_submission(self, athlete: UserRead, data: SubmissionCreate) -> SubmissionRead:
		"""Phase one of a submission: the metadata record, in ``uploading``, with its SLA deadline fixed."""
		if athlete.role not in (UserRole.ATHLETE, UserRole.ADMIN, UserRole.SUPERADMIN):
			raise PermissionDenied("Only athletes can submit videos", viewer_id=athlete.id)
		validate_video_file(data.video_file_name, data.video_file_size)

		# stored naive UTC like every other timestamp
		deadline = as_naive_utc(data.sla_deadline) if data.sla_deadline else sla.compute_deadline(utc_now())
		submission = await self._database.create_submission(athlete, data, sla_deadline=deadline)
		logger.info("Submission %s created by athlete %s, due %s", submission.id, athlete.id, deadline)
		await self._changed(submission)
		return submission

	@submission_notifier.notify_update()
	async def patch(self, update: SubmissionUpdate, actor: UserRead) -> SubmissionRead:
		"""
		Media fields and the ``uploading -> awaiting_coach`` hand-over, by the
		athlete or an admin. Later statuses only move through ``claim`` and the
		review workflow.
		"""
		current = await self.get_one(update.id)
		if actor.id != current.athlete_id and not actor.is_admin:
			raise PermissionDenied("Only the athlete can change the submission", submission_id=current.id, viewer_id=actor.id)
		target = update.status if provided(update.status) else None
		if target is not None and target not in PATCHABLE_STATUSES:
			raise InvalidTransition(current.status, target)

		submission = await self._database.update_submission(update)
		await self._changed(submission)
		return submission

	async def attach_media(
		self,
		submission_id: UUID,
		actor: UserRead,
		*,
		download_url: str,
		storage_key: str,
		video_duration: Optional[float] = None,
		thumbnail_url: Optional[str] = None,
	) -> SubmissionRead:
		"""Attach the uploaded video and hand the submission over to coaches."""
		update = SubmissionUpdate(
			id=submission_id,
			video_storage_path=storage_key,
			video_download_url=download_url,
			status=SubmissionStatus.AWAITING_COACH,
		)
		if video_duration is not None:
			update.video_duration = video_duration
		if thumbnail_url is not None:
			update.thumbnail_url = thumbnail_url
		return await self.patch(update, actor)

	@submission_notifier.notify_update()
	async def claim(self, submission_id: UUID, coach: UserRead) -> SubmissionRead:
		"""
		Assign ``coach`` to an awaiting submission. Of any number of concurrent
		claims exactly one succeeds; the others get AlreadyClaimed. Never retried.
		"""
		access.ensure_can_claim(coach)
		submission = await self._database.claim_submission(submission_id, coach.id, coach.name)
		logger.info("Submission %s claimed by coach %s", submission_id, coach.id)
		await self._changed(submission)
		return submission


instrument_service_class(SubmissionService, prefix="services.submission", exclude={"queue_scope"})
