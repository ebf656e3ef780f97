# bot/middlewares/whitelist.py
from typing import Callable, Awaitable, Any, Dict
from aiogram import BaseMiddleware
from coach_review.config import Settings
from coach_review.db.schemas.user import UserRead


def is_whitelisted(user: UserRead | None) -> bool:
	"""Whitelisted usernames may switch their own role with /switch_role."""
	if user is None or not user.tg_username:
		return False
	return user.tg_username.lower() in Settings().whitelist


class WhitelistMiddleware(BaseMiddleware):
	async def __call__(self,
		handler: Callable[[Any, Dict[str, Any]], Awaitable[Any]],
		event: Any,
		data: Dict[str, Any]) -> Any:
		data["is_whitelisted"] = is_whitelisted(data.get("current_user"))
		return await handler(event, data)
