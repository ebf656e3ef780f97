# bot/services/upload.py
"""Second phase of the two-phase submission create: stream the video, then attach it."""
import asyncio
import logging
from typing import AsyncIterable, Awaitable, Callable, ClassVar, Optional, Self

from coach_review.db.enums import SubmissionStatus
from coach_review.db.schemas.submission import SubmissionRead
from coach_review.db.schemas.user import UserRead
from coach_review.errors import PermissionDenied, UploadFailed, ValidationFailed
from coach_review.bot.services.media import MediaStorage, storage_path
from coach_review.bot.services.submission import SubmissionService

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[int], Awaitable[None] | None]


class UploadHandle:
	"""A running upload. ``progress`` is an integer percent; ``cancel()`` stops it for good."""

	def __init__(self, submission: SubmissionRead, uploader: UserRead, key: str, on_progress: Optional[ProgressCallback]) -> None:
		self.submission = submission
		self.uploader = uploader
		self.key = key
		self.progress = 0
		self._on_progress = on_progress
		self._cancelled = False
		self._attaching = False
		self._task: Optional[asyncio.Task] = None

	@property
	def cancelled(self) -> bool:
		return self._cancelled

	@property
	def done(self) -> bool:
		return self._task is not None and self._task.done()

	def cancel(self) -> None:
		# once the bytes are stored the attach step runs to completion
		if self._cancelled or self._attaching or self.done:
			return
		self._cancelled = True
		self.progress = 0
		if self._task is not None:
			self._task.cancel()

	async def wait(self) -> Optional[SubmissionRead]:
		"""The submission with media attached, or None when the upload was cancelled. Raises UploadFailed."""
		assert self._task is not None
		try:
			return await self._task
		except asyncio.CancelledError:
			if self._cancelled:
				return None
			raise

	async def _report(self, percent: int) -> None:
		if self._cancelled or percent == self.progress:
			return
		self.progress = percent
		if self._on_progress is None:
			return
		try:
			outcome = self._on_progress(percent)
			if asyncio.iscoroutine(outcome):
				await outcome
		except Exception:
			logger.exception("Upload progress callback failed for %s", self.key)


class UploadService:
	_instance: ClassVar[Optional["UploadService"]] = None

	def __new__(cls) -> Self:
		if cls._instance is None:
			cls._instance = super().__new__(cls)
		return cls._instance

	def __init__(self) -> None:
		if getattr(self, "_initialized", False):
			return

		self._initialized = True
		self.storage = MediaStorage()
		self._submissions = SubmissionService()

	def start(
		self,
		submission: SubmissionRead,
		uploader: UserRead,
		chunks: AsyncIterable[bytes],
		*,
		on_progress: Optional[ProgressCallback] = None,
		video_duration: Optional[float] = None,
	) -> UploadHandle:
		"""
		Start streaming ``chunks`` into storage for a submission still in ``uploading``.
		Progress is measured against the declared ``video_file_size``.
		"""
		if uploader.id != submission.athlete_id:
			raise PermissionDenied("Only the athlete can upload the video", submission_id=submission.id)
		if submission.status != SubmissionStatus.UPLOADING:
			raise ValidationFailed("Video already uploaded", field="status")

		key = storage_path(uploader.id, submission.id, submission.video_file_name)
		handle = UploadHandle(submission, uploader, key, on_progress)
		handle._task = asyncio.create_task(self._run(handle, chunks, video_duration))
		logger.info("Upload of submission %s started -> %s", submission.id, key)
		return handle

	async def _run(
		self,
		handle: UploadHandle,
		chunks: AsyncIterable[bytes],
		video_duration: Optional[float],
	) -> SubmissionRead:
		total = max(1, handle.submission.video_file_size)
		written = 0
		try:
			await self.storage.begin(handle.key)
			async for chunk in chunks:
				if handle.cancelled:
					raise asyncio.CancelledError()
				await self.storage.append(handle.key, chunk)
				written += len(chunk)
				await handle._report(min(100, written * 100 // total))
		except asyncio.CancelledError:
			await self._discard(handle)
			logger.info("Upload of submission %s cancelled", handle.submission.id)
			raise
		except Exception as exc:
			await self._discard(handle)
			logger.exception("Upload of submission %s failed", handle.submission.id)
			raise UploadFailed(str(exc) or exc.__class__.__name__, submission_id=handle.submission.id) from exc

		await handle._report(100)
		handle._attaching = True
		return await self._submissions.attach_media(
			handle.submission.id,
			handle.uploader,
			download_url=self.storage.url_for(handle.key),
			storage_key=handle.key,
			video_duration=video_duration,
		)

	async def _discard(self, handle: UploadHandle) -> None:
		try:
			await self.storage.remove(handle.key)
		except Exception:
			logger.warning("Could not remove partial upload %s", handle.key, exc_info=True)
