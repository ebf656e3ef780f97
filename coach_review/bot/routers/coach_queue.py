# bot/routers/coach_queue.py
import logging
import math
import uuid
from dataclasses import dataclass
from typing import Optional

from aiogram import Router, F
from aiogram.filters import Command
from aiogram.types import Message, CallbackQuery, InlineKeyboardMarkup, InlineKeyboardButton

from coach_review.config import Settings
from coach_review.db.enums import QueueFilter, QueueSort, UiMode
from coach_review.db.schemas.user import UserRead
from coach_review.i18n import Localizer
from coach_review.bot.services.user import UserService
from coach_review.bot.views.queue import QueueViewModel, QueueRow, RowAction
from coach_review.bot.views.format import status_label, sla_label, shorten
from coach_review.bot.routers.utils import (
	get_localizer_by_user, safe_edit, parse_callback, session_key, same_message, answer_not_yours, SessionKey,
)

logger = logging.getLogger(__name__)

router = Router(name="coach_queue")

QUEUE_PREFIX = "queue"
OPEN_PREFIX = "sub.open"


@dataclass
class _QueueSession:
	vm: QueueViewModel
	lz: Localizer
	message: Optional[Message] = None
	page: int = 0


# one live queue per user and chat
_sessions: dict[SessionKey, _QueueSession] = {}


def _row_button(lz: Localizer, row: QueueRow, viewer_id: uuid.UUID) -> InlineKeyboardButton:
	s = row.submission
	if row.claiming:
		action = lz.get("queue.actions.claiming")
	else:
		action = lz.get(f"queue.actions.{row.action}")
	parts = [action, shorten(s.skill_name, 24), shorten(s.athlete_name, 16)]
	if row.action == RowAction.VIEW:
		parts.append(status_label(lz, s.status))
		if s.claimed_by_name and s.claimed_by != viewer_id:
			parts.append(lz.get("queue.claimed_by", coach=s.claimed_by_name))
	elif row.sla is not None:
		parts.append(sla_label(lz, row.sla))
	callback = (
		f"{QUEUE_PREFIX}.claim:{s.id}" if row.action == RowAction.CLAIM
		else f"{OPEN_PREFIX}:{s.id}"
	)
	return InlineKeyboardButton(text=" · ".join(parts), callback_data=callback)


def _render(session: _QueueSession) -> tuple[str, InlineKeyboardMarkup]:
	vm, lz = session.vm, session.lz
	page_size = Settings().queue_page_size

	if not vm.loaded:
		return lz.get("queue.loading"), InlineKeyboardMarkup(inline_keyboard=[])

	rows = vm.rows()
	pages = max(1, math.ceil(len(rows) / page_size))
	session.page = min(max(0, session.page), pages - 1)
	visible = rows[session.page * page_size:(session.page + 1) * page_size]

	c = vm.counts()
	lines = [
		lz.get("queue.title"),
		lz.get("queue.counts", total=c.total, awaiting=c.awaiting, my_claims=c.my_claims, complete=c.complete, urgent=c.urgent),
	]
	if not visible:
		lines.append(lz.get("queue.empty"))
	if pages > 1:
		lines.append(lz.get("queue.page", page=session.page + 1, pages=pages))

	def _mark(active: bool, text: str) -> str:
		return f"• {text}" if active else text

	keyboard: list[list[InlineKeyboardButton]] = [
		[
			InlineKeyboardButton(text=_mark(vm.tab == tab, lz.get(f"queue.tabs.{tab}")), callback_data=f"{QUEUE_PREFIX}.tab:{tab}")
			for tab in QueueFilter
		],
		[
			InlineKeyboardButton(text=_mark(vm.sort == order, lz.get(f"queue.sort.{order}")), callback_data=f"{QUEUE_PREFIX}.sort:{order}")
			for order in QueueSort
		],
	]
	keyboard.extend([_row_button(lz, row, vm.coach.id)] for row in visible)

	nav: list[InlineKeyboardButton] = []
	if session.page > 0:
		nav.append(InlineKeyboardButton(text="⬅️", callback_data=f"{QUEUE_PREFIX}.page:{session.page - 1}"))
	if session.page + 1 < pages:
		nav.append(InlineKeyboardButton(text="➡️", callback_data=f"{QUEUE_PREFIX}.page:{session.page + 1}"))
	if nav:
		keyboard.append(nav)
	keyboard.append([
		InlineKeyboardButton(text=lz.get("queue.refresh"), callback_data=f"{QUEUE_PREFIX}.refresh"),
		InlineKeyboardButton(text=lz.get("queue.close"), callback_data=f"{QUEUE_PREFIX}.close"),
	])
	return "\n".join(lines), InlineKeyboardMarkup(inline_keyboard=keyboard)


async def _redraw(session: _QueueSession) -> None:
	text, keyboard = _render(session)
	await safe_edit(session.message, text, reply_markup=keyboard)


def close_queue(key: SessionKey) -> None:
	session = _sessions.pop(key, None)
	if session is not None:
		session.vm.unmount()


async def open_queue(message: Message, current_user: UserRead) -> None:
	lz = await get_localizer_by_user(current_user)
	if not current_user.can_review:
		await message.answer(lz.get("queue.coaches_only"))
		return

	key = session_key(message.chat.id, current_user)
	close_queue(key)
	current_user = await UserService().change_ui_mode(current_user, UiMode.QUEUE)

	session = _QueueSession(vm=QueueViewModel(current_user), lz=lz)
	session.vm.on_update = lambda _vm: _redraw(session)
	session.message = await message.answer(lz.get("queue.loading"))
	_sessions[key] = session
	await session.vm.mount()


async def _session_for(cq: CallbackQuery, current_user: UserRead) -> Optional[_QueueSession]:
	"""The clicking user's live queue behind ``cq.message``; other users' queues are refused."""
	if cq.message is None:
		await cq.answer()
		return None
	session = _sessions.get(session_key(cq.message.chat.id, current_user))
	if session is not None and same_message(session.message, cq.message):
		return session
	if any(same_message(other.message, cq.message) for other in _sessions.values()):
		await answer_not_yours(cq, current_user)
		return None
	# stale queue from an earlier session
	await cq.answer()
	await safe_edit(cq.message, "—")
	return None


@router.message(Command("queue"))
async def queue_command(message: Message, current_user: UserRead) -> None:
	await open_queue(message, current_user)


@router.callback_query(F.data == "home.queue")
async def queue_from_home(cq: CallbackQuery, current_user: UserRead) -> None:
	await cq.answer()
	await open_queue(cq.message, current_user)


@router.callback_query(F.data.startswith(f"{QUEUE_PREFIX}.tab:"))
async def queue_tab(cq: CallbackQuery, current_user: UserRead) -> None:
	session = await _session_for(cq, current_user)
	if session is None:
		return
	args = parse_callback(cq.data, f"{QUEUE_PREFIX}.tab")
	session.vm.set_tab(QueueFilter(args[0]))
	session.page = 0
	await cq.answer()
	await _redraw(session)


@router.callback_query(F.data.startswith(f"{QUEUE_PREFIX}.sort:"))
async def queue_sort(cq: CallbackQuery, current_user: UserRead) -> None:
	session = await _session_for(cq, current_user)
	if session is None:
		return
	args = parse_callback(cq.data, f"{QUEUE_PREFIX}.sort")
	session.vm.set_sort(QueueSort(args[0]))
	await cq.answer()
	await _redraw(session)


@router.callback_query(F.data.startswith(f"{QUEUE_PREFIX}.page:"))
async def queue_page(cq: CallbackQuery, current_user: UserRead) -> None:
	session = await _session_for(cq, current_user)
	if session is None:
		return
	session.page = int(parse_callback(cq.data, f"{QUEUE_PREFIX}.page")[0])
	await cq.answer()
	await _redraw(session)


@router.callback_query(F.data.startswith(f"{QUEUE_PREFIX}.claim:"))
async def queue_claim(cq: CallbackQuery, current_user: UserRead) -> None:
	session = await _session_for(cq, current_user)
	if session is None:
		return
	submission_id = uuid.UUID(parse_callback(cq.data, f"{QUEUE_PREFIX}.claim")[0])
	notice = await session.vm.claim(submission_id)
	await cq.answer(session.lz.get_or(notice.key, notice.key, **notice.params), show_alert=not notice.ok)
	await _redraw(session)


@router.callback_query(F.data == f"{QUEUE_PREFIX}.refresh")
async def queue_refresh(cq: CallbackQuery, current_user: UserRead) -> None:
	session = await _session_for(cq, current_user)
	if session is None:
		return
	await cq.answer()
	await session.vm.refresh()


@router.callback_query(F.data == f"{QUEUE_PREFIX}.close")
async def queue_close(cq: CallbackQuery, current_user: UserRead) -> None:
	session = await _session_for(cq, current_user)
	if session is None:
		return
	lz = await get_localizer_by_user(current_user)
	close_queue(session_key(cq.message.chat.id, current_user))
	await UserService().change_ui_mode(current_user, UiMode.HOME)
	await cq.answer()
	await safe_edit(cq.message, lz.get("queue.closed"))
