# bot/middlewares/rate_limit.py
import logging
from collections import deque
from time import monotonic
from uuid import UUID
from typing import Callable, Awaitable, Any, Deque, Dict, Self, ClassVar, Optional
from aiogram import BaseMiddleware
from coach_review.config import Settings

logger = logging.getLogger(__name__)

class RateLimitMiddleware(BaseMiddleware):
	"""
	In-memory sliding-window rate limiter for aiogram v3.

	Per user (``current_user.id``) it keeps the timestamps of recent updates:
	  1) more than `max_requests` updates inside the window are dropped (soft cap);
	  2) more than `ban_threshold` updates inside the window ban the user for
	     `ban_duration_seconds` (hard cap).

	Notes:
	  - Process memory only; a restart clears limits and several bot workers
	    would each count separately.
	  - Updates without a resolved user pass through untouched.
	"""
	_instance: ClassVar[Optional["RateLimitMiddleware"]] = None

	def __new__(cls, *args, **kwargs) -> Self:
		if cls._instance is None:
			cls._instance = super().__new__(cls)
		return cls._instance

	def __init__(self) -> None:
		if getattr(self, "_initialized", False):
			return

		s = Settings()
		self.max_requests: int = s.max_requests
		self.ban_threshold: int = s.ban_threshold
		self.ban_duration_seconds: int = s.ban_duration_seconds
		self.window: int = s.period
		self.banned_until: Dict[UUID, float] = dict()
		self.records: Dict[UUID, Deque[float]] = dict()

		self._initialized = True

	def unban_user(self, user_id: UUID) -> None:
		self.banned_until.pop(user_id, None)

	def auto_unban_users(self, now: float) -> None:
		"""Drop bans that have already elapsed."""
		for user_id in [u for u, until in self.banned_until.items() if until <= now]:
			self.unban_user(user_id)

	def create_record_and_maybe_ban(self, user_id: UUID, now: float) -> int:
		"""Record one event, evict events older than the window, ban past the hard cap. Returns the window count."""
		records = self.records.setdefault(user_id, deque())
		records.append(now)
		while records and now - records[0] > self.window:
			records.popleft()

		cnt = len(records)
		if cnt > self.ban_threshold and user_id not in self.banned_until:
			self.banned_until[user_id] = now + self.ban_duration_seconds
			logger.warning("User %s banned for %ss after %d updates in %ss", user_id, self.ban_duration_seconds, cnt, self.window)
		return cnt

	def is_user_banned(self, user_id: UUID) -> bool:
		return user_id in self.banned_until

	def allow(self, user_id: UUID, now: Optional[float] = None) -> bool:
		now = monotonic() if now is None else now
		self.auto_unban_users(now)
		cnt = self.create_record_and_maybe_ban(user_id, now)
		return not self.is_user_banned(user_id) and cnt <= self.max_requests

	async def __call__(self,
		handler: Callable[[Any, Dict[str, Any]], Awaitable[Any]],
		event: Any,
		data: Dict[str, Any]) -> Any:
		user = data.get("current_user", None)
		if user is None:
			return await handler(event, data)

		if not self.allow(user.id):
			logger.debug("Update from user %s dropped by rate limit", user.id)
			return

		return await handler(event, data)
