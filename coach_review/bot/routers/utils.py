# bot/routers/utils.py
import logging
from typing import Optional
from uuid import UUID

from aiogram.exceptions import TelegramBadRequest
from aiogram.types import CallbackQuery, Message

from coach_review.i18n import Localizer
from coach_review.db.schemas.user import UserRead
from coach_review.errors import ReviewWorkflowError, ValidationFailed, InvalidTransition

logger = logging.getLogger(__name__)

async def get_localizer_by_user(user: Optional[UserRead]) -> Localizer:
    return Localizer(user.preferred_language if user is not None else None)

def error_text(lz: Localizer, exc: ReviewWorkflowError) -> str:
    """Localized one-line message for a workflow failure."""
    text = lz.get_or(exc.key, lz.get("errors.generic"))
    if isinstance(exc, ValidationFailed) and not isinstance(exc, InvalidTransition):
        text = f"{text} {exc}"
    return text

async def answer_error(target: Message | CallbackQuery, lz: Localizer, exc: ReviewWorkflowError) -> None:
    logger.info("Workflow error shown to user: %r", exc)
    text = error_text(lz, exc)
    if isinstance(target, CallbackQuery):
        await target.answer(text, show_alert=True)
    else:
        await target.answer(text)

async def safe_edit(message: Optional[Message], text: str, reply_markup=None) -> None:
    if message is None:
        return
    try:
        await message.edit_text(text, reply_markup=reply_markup)
    except TelegramBadRequest:
        # "message is not modified" and deleted messages
        pass

def parse_callback(data: Optional[str], prefix: str) -> list[str]:
    """``"queue.claim:<id>"`` -> ``["<id>"]`` for prefix ``"queue.claim"``."""
    if not data or not data.startswith(prefix):
        return []
    rest = data[len(prefix):].lstrip(":")
    return rest.split(":") if rest else []

# live panels belong to one user in one chat; group members never share them
SessionKey = tuple[int, UUID]

def session_key(chat_id: int, user: UserRead) -> SessionKey:
    return (chat_id, user.id)

def same_message(a: Optional[Message], b: Optional[Message]) -> bool:
    return a is not None and b is not None and a.chat.id == b.chat.id and a.message_id == b.message_id

async def answer_not_yours(cq: CallbackQuery, user: UserRead) -> None:
    lz = await get_localizer_by_user(user)
    await cq.answer(lz.get("errors.not_your_panel"), show_alert=True)
