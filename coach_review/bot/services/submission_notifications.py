"""Notification service that tells athletes when a coach picks up or finishes their submission."""
from __future__ import annotations

import functools
import logging
from typing import Awaitable, Callable, ClassVar, Optional
from uuid import UUID

from aiogram import Bot
from aiogram.exceptions import TelegramBadRequest, TelegramForbiddenError
from aiogram.types import InlineKeyboardButton, InlineKeyboardMarkup
from aiogram.utils.text_decorations import html_decoration

from coach_review.db.schemas.submission import SubmissionRead, SubmissionUpdate
from coach_review.db.schemas.user import UserRead
from coach_review.db.enums import SubmissionStatus
from coach_review.bot.routers.utils import get_localizer_by_user

logger = logging.getLogger(__name__)

# statuses the athlete hears about
NOTIFY_ON = {
	SubmissionStatus.CLAIMED: "notify.claimed",
	SubmissionStatus.COMPLETE: "notify.reviewed",
}


class SubmissionNotificationService:
	"""Singleton responsible for notifying athletes about submission progress."""

	_instance: ClassVar[Optional["SubmissionNotificationService"]] = None

	def __new__(cls) -> "SubmissionNotificationService":
		if cls._instance is None:
			cls._instance = super().__new__(cls)
		return cls._instance

	def __init__(self) -> None:
		if getattr(self, "_initialized", False):
			return
		self._initialized = True
		self._bot: Optional[Bot] = None

	def notify_update(self) -> Callable[[Callable[..., Awaitable[SubmissionRead]]], Callable[..., Awaitable[SubmissionRead]]]:
		"""Decorator that notifies the athlete whenever the wrapped write changes the submission status."""

		def _decorator(func: Callable[..., Awaitable[SubmissionRead]]) -> Callable[..., Awaitable[SubmissionRead]]:
			@functools.wraps(func)
			async def _wrapper(service_self, *args, **kwargs):
				submission_id = self._extract_submission_id(args, kwargs)
				prev_state: Optional[SubmissionRead] = None
				if submission_id is not None:
					prev_state = await self._safe_snapshot(service_self, submission_id)

				updated = await func(service_self, *args, **kwargs)

				if isinstance(updated, SubmissionRead):
					await self.submission_changed(service_self, prev_state, updated)
				return updated

			return _wrapper

		return _decorator

	async def submission_changed(
		self,
		service_self,
		previous: Optional[SubmissionRead],
		updated: SubmissionRead,
	) -> None:
		try:
			await self._handle_notification(service_self, updated, previous)
		except Exception:
			# Notification failures should not block submission updates.
			logger.exception("Failed to send submission notification for %s", updated.id)

	@staticmethod
	def _extract_submission_id(args, kwargs) -> Optional[UUID]:
		for value in (*args, *kwargs.values()):
			if isinstance(value, SubmissionUpdate):
				return value.id
		if isinstance(kwargs.get("submission_id"), UUID):
			return kwargs["submission_id"]
		for arg in args:
			if isinstance(arg, UUID):
				return arg
		return None

	@staticmethod
	async def _safe_snapshot(service_self, submission_id: UUID) -> Optional[SubmissionRead]:
		try:
			return await service_self.get_one(submission_id)
		except Exception:
			logger.debug("Could not snapshot submission %s before update", submission_id, exc_info=True)
			return None

	async def _handle_notification(
		self,
		service_self,
		updated: SubmissionRead,
		previous: Optional[SubmissionRead],
	) -> None:
		"""Build and send a localized notification if the status moved to one the athlete cares about."""
		if previous is not None and previous.status == updated.status:
			logger.debug("Submission %s status unchanged; skipping notification", updated.id)
			return
		key = NOTIFY_ON.get(updated.status)
		if key is None:
			return

		user = await service_self.get_athlete(updated)
		if not isinstance(user, UserRead) or not isinstance(user.tg_id, int):
			logger.debug("Submission %s: athlete has no Telegram chat; skipping notification", updated.id)
			return

		lz = await get_localizer_by_user(user)
		text = lz.get(
			key,
			# messages go out in HTML mode
			skill=html_decoration.quote(updated.skill_name),
			coach=html_decoration.quote(updated.claimed_by_name or "—"),
		)
		keyboard = InlineKeyboardMarkup(inline_keyboard=[[
			InlineKeyboardButton(text=lz.get("detail.open"), callback_data=f"sub.open:{updated.id}")
		]])
		await self._send_message(user, text, keyboard)
		logger.info("Submission %s notification (%s) sent to user %s", updated.id, updated.status, user.id)

	async def _send_message(self, user: UserRead, text: str, keyboard: Optional[InlineKeyboardMarkup] = None) -> None:
		"""Send a Telegram message to the athlete, handling delivery errors."""
		bot = self._current_bot()
		if bot is None:
			logger.debug("No active bot instance; cannot notify user %s", user.id)
			return

		try:
			await bot.send_message(chat_id=user.tg_id, text=text, reply_markup=keyboard)
		except (TelegramForbiddenError, TelegramBadRequest):
			# user blocked the bot, chat gone
			logger.warning("Failed to deliver submission notification to user %s", user.id, exc_info=True)

	def _current_bot(self) -> Optional[Bot]:
		if self._bot is None:
			logger.debug("Submission notifier bot is not bound")
		return self._bot

	def bind_bot(self, bot: Optional[Bot]) -> None:
		"""Provide the active bot instance so messages can be delivered."""
		self._bot = bot
		logger.info("Submission notifier bound to bot %s", getattr(bot, "id", None))


submission_notifier = SubmissionNotificationService()
