# bot/routers/submission_detail.py
import logging
import uuid
from dataclasses import dataclass
from typing import Optional

from aiogram import Router, F
from aiogram.fsm.context import FSMContext
from aiogram.fsm.state import StatesGroup, State
from aiogram.types import Message, CallbackQuery, InlineKeyboardMarkup, InlineKeyboardButton
from aiogram.utils.text_decorations import html_decoration

from coach_review.db.enums import UiMode
from coach_review.db.schemas.comment import CommentRead
from coach_review.db.schemas.user import UserRead
from coach_review.errors import PermissionDenied, ReviewWorkflowError
from coach_review.i18n import Localizer
from coach_review.utils.clock import parse_seconds
from coach_review.bot.services.user import UserService
from coach_review.bot.services.submission import SubmissionService
from coach_review.bot.views.submission_detail import SubmissionDetailView
from coach_review.bot.views.format import (
	status_label, sla_label, format_size, format_datetime, format_position, shorten,
)
from coach_review.bot.routers.utils import (
	get_localizer_by_user, safe_edit, parse_callback, answer_error,
	session_key, same_message, answer_not_yours, SessionKey,
)

logger = logging.getLogger(__name__)

router = Router(name="submission_detail")

DETAIL_PREFIX = "sub"
# comments that get their own reply / seek / delete buttons
BUTTONED_COMMENTS = 8
SHOWN_THREADS = 15

q = html_decoration.quote


class DetailFSM(StatesGroup):
	comment = State()
	playhead = State()


@dataclass
class _DetailSession:
	view: SubmissionDetailView
	lz: Localizer
	message: Optional[Message] = None


# one open submission per user and chat
_sessions: dict[SessionKey, _DetailSession] = {}


def _comment_line(lz: Localizer, n: int, c: CommentRead, reply: bool) -> str:
	chip = f"[{format_position(c.video_timestamp)}] " if c.has_timestamp else ""
	return f"{n}. " + lz.get(
		"detail.reply_line" if reply else "detail.comment_line",
		chip=chip,
		author=q(c.author_name),
		content=q(shorten(c.content, 200)),
		edited=lz.get("detail.edited") if c.edited else "",
	)


def _render(session: _DetailSession) -> tuple[str, InlineKeyboardMarkup]:
	view, lz = session.view, session.lz
	if view.gone or view.submission is None:
		return lz.get("detail.gone"), InlineKeyboardMarkup(inline_keyboard=[])

	s = view.submission
	lines = [
		f"<b>{lz.get('detail.title', skill=q(s.skill_name))}</b>",
		lz.get("detail.athlete", athlete=q(s.athlete_name)),
		lz.get("detail.status", status=status_label(lz, s.status)),
	]
	if s.claimed_by_name:
		lines.append(lz.get("detail.coach", coach=q(s.claimed_by_name)))
	if s.sla_deadline is not None and view.deadline_status is not None:
		lines.append(lz.get("detail.deadline", deadline=format_datetime(s.sla_deadline), sla=sla_label(lz, view.deadline_status)))
	if s.turnaround_minutes is not None:
		lines.append(lz.get("detail.turnaround", minutes=s.turnaround_minutes))
	lines.append("")
	lines.append(lz.get("detail.context", text=q(s.athlete_context)))
	if s.athlete_goals:
		lines.append(lz.get("detail.goals", text=q(s.athlete_goals)))
	if s.specific_questions:
		lines.append(lz.get("detail.questions", text=q(s.specific_questions)))
	if s.video_download_url:
		lines.append(lz.get(
			"detail.video",
			name=q(s.video_file_name),
			size=format_size(s.video_file_size),
			duration=format_position(s.video_duration),
		))
	else:
		lines.append(lz.get("detail.video_pending"))
	lines.append(lz.get("detail.playhead", position=format_position(view.playhead)))

	review = view.published_review
	if review is not None:
		lines.append("")
		lines.append(f"<b>{lz.get('detail.review_header', coach=q(review.coach_name))}</b>")
		lines.append(lz.get("detail.review_feedback", text=q(review.overall_feedback)))
		if review.strengths:
			lines.append(lz.get("detail.review_strengths", text=q("; ".join(review.strengths))))
		if review.areas_for_improvement:
			lines.append(lz.get("detail.review_areas", text=q("; ".join(review.areas_for_improvement))))
		lines.append(lz.get("detail.review_next", text=q(review.next_steps)))

	threads = view.threads[-SHOWN_THREADS:]
	lines.append("")
	lines.append(lz.get("detail.comments", count=s.comment_count))
	numbered: list[CommentRead] = []
	if not threads:
		lines.append(lz.get("detail.no_comments"))
	for thread in threads:
		numbered.append(thread.comment)
		lines.append(_comment_line(lz, len(numbered), thread.comment, reply=False))
		for reply in thread.replies:
			numbered.append(reply)
			lines.append(_comment_line(lz, len(numbered), reply, reply=True))

	keyboard: list[list[InlineKeyboardButton]] = []
	if s.video_download_url and s.video_download_url.startswith("http"):
		keyboard.append([InlineKeyboardButton(text=lz.get("detail.buttons.play"), url=s.video_download_url)])
	keyboard.append([
		InlineKeyboardButton(text=lz.get("detail.buttons.playhead"), callback_data=f"{DETAIL_PREFIX}.ph"),
		InlineKeyboardButton(
			text=lz.get("detail.buttons.anchor_on" if view.anchor_to_playhead else "detail.buttons.anchor_off"),
			callback_data=f"{DETAIL_PREFIX}.anchor",
		),
		InlineKeyboardButton(text=lz.get("detail.buttons.comment"), callback_data=f"{DETAIL_PREFIX}.c"),
	])
	first_buttoned = max(0, len(numbered) - BUTTONED_COMMENTS)
	for n, c in enumerate(numbered, start=1):
		if n <= first_buttoned:
			continue
		row = [InlineKeyboardButton(text=lz.get("detail.buttons.reply", n=n), callback_data=f"{DETAIL_PREFIX}.r:{c.id}")]
		if c.has_timestamp:
			row.append(InlineKeyboardButton(
				text=lz.get("detail.buttons.seek", position=format_position(c.video_timestamp)),
				callback_data=f"{DETAIL_PREFIX}.s:{c.id}",
			))
		if c.author_id == view.viewer.id:
			row.append(InlineKeyboardButton(text=lz.get("detail.buttons.delete", n=n), callback_data=f"{DETAIL_PREFIX}.d:{c.id}"))
		keyboard.append(row)

	actions: list[InlineKeyboardButton] = []
	if view.can_claim:
		actions.append(InlineKeyboardButton(text=lz.get("detail.buttons.claim"), callback_data=f"{DETAIL_PREFIX}.claim:{s.id}"))
	if view.can_review:
		actions.append(InlineKeyboardButton(text=lz.get("detail.buttons.start_review"), callback_data=f"rev.start:{s.id}"))
	actions.append(InlineKeyboardButton(text=lz.get("detail.buttons.close"), callback_data=f"{DETAIL_PREFIX}.close"))
	keyboard.append(actions)

	return "\n".join(lines), InlineKeyboardMarkup(inline_keyboard=keyboard)


async def redraw_detail(chat_id: int, user: UserRead) -> None:
	session = _sessions.get(session_key(chat_id, user))
	if session is None:
		return
	text, keyboard = _render(session)
	await safe_edit(session.message, text, reply_markup=keyboard)


def close_detail(key: SessionKey) -> None:
	session = _sessions.pop(key, None)
	if session is not None:
		session.view.close()


async def open_detail(message: Message, current_user: UserRead, submission_id: uuid.UUID) -> None:
	lz = await get_localizer_by_user(current_user)
	key = session_key(message.chat.id, current_user)
	close_detail(key)

	view = SubmissionDetailView(current_user, submission_id)
	try:
		await view.open()
	except PermissionDenied:
		await message.answer(lz.get("detail.access_denied"))
		return
	except ReviewWorkflowError as exc:
		await answer_error(message, lz, exc)
		return

	await UserService().change_ui_mode(current_user, UiMode.SUBMISSION)
	session = _DetailSession(view=view, lz=lz)
	text, keyboard = _render(session)
	session.message = await message.answer(text, reply_markup=keyboard)
	_sessions[key] = session
	view.on_update = lambda _view: redraw_detail(key[0], current_user)


async def _session_for(cq: CallbackQuery, current_user: UserRead) -> Optional[_DetailSession]:
	"""The clicking user's open submission behind ``cq.message``; other users' panels are refused."""
	if cq.message is None:
		await cq.answer()
		return None
	session = _sessions.get(session_key(cq.message.chat.id, current_user))
	if session is not None and same_message(session.message, cq.message):
		return session
	if any(same_message(other.message, cq.message) for other in _sessions.values()):
		await answer_not_yours(cq, current_user)
		return None
	await cq.answer()
	return None


@router.callback_query(F.data.startswith(f"{DETAIL_PREFIX}.open:"))
async def detail_open(cq: CallbackQuery, current_user: UserRead) -> None:
	submission_id = uuid.UUID(parse_callback(cq.data, f"{DETAIL_PREFIX}.open")[0])
	await cq.answer()
	await open_detail(cq.message, current_user, submission_id)


@router.callback_query(F.data.startswith(f"{DETAIL_PREFIX}.claim:"))
async def detail_claim(cq: CallbackQuery, current_user: UserRead) -> None:
	lz = await get_localizer_by_user(current_user)
	submission_id = uuid.UUID(parse_callback(cq.data, f"{DETAIL_PREFIX}.claim")[0])
	try:
		submission = await SubmissionService().claim(submission_id, current_user)
	except ReviewWorkflowError as exc:
		await answer_error(cq, lz, exc)
		return
	await cq.answer(lz.get("queue.claimed", skill=submission.skill_name))


@router.callback_query(F.data == f"{DETAIL_PREFIX}.anchor")
async def detail_toggle_anchor(cq: CallbackQuery, current_user: UserRead) -> None:
	session = await _session_for(cq, current_user)
	if session is None:
		return
	session.view.toggle_anchor()
	await cq.answer()
	await redraw_detail(cq.message.chat.id, current_user)


@router.callback_query(F.data.startswith(f"{DETAIL_PREFIX}.s:"))
async def detail_seek(cq: CallbackQuery, current_user: UserRead) -> None:
	session = await _session_for(cq, current_user)
	if session is None:
		return
	comment_id = uuid.UUID(parse_callback(cq.data, f"{DETAIL_PREFIX}.s")[0])
	position = session.view.seek_to_comment(comment_id)
	await cq.answer(format_position(position) if position is not None else None)
	await redraw_detail(cq.message.chat.id, current_user)


@router.callback_query(F.data == f"{DETAIL_PREFIX}.ph")
async def detail_ask_playhead(cq: CallbackQuery, current_user: UserRead, state: FSMContext) -> None:
	session = await _session_for(cq, current_user)
	if session is None:
		return
	await state.set_state(DetailFSM.playhead)
	await cq.answer()
	await cq.message.answer(session.lz.get("detail.ask_playhead"))


@router.message(DetailFSM.playhead, F.text)
async def detail_set_playhead(message: Message, current_user: UserRead, state: FSMContext) -> None:
	session = _sessions.get(session_key(message.chat.id, current_user))
	lz = await get_localizer_by_user(current_user)
	if session is None:
		await state.clear()
		return
	try:
		seconds = parse_seconds(message.text)
	except ValueError:
		await message.answer(lz.get("detail.bad_position"))
		return
	session.view.set_playhead(seconds)
	await state.clear()
	await redraw_detail(message.chat.id, current_user)


@router.callback_query(F.data == f"{DETAIL_PREFIX}.c")
async def detail_ask_comment(cq: CallbackQuery, current_user: UserRead, state: FSMContext) -> None:
	session = await _session_for(cq, current_user)
	if session is None:
		return
	await state.set_state(DetailFSM.comment)
	await state.update_data(parent_id=None)
	await cq.answer()
	if session.view.anchor_to_playhead:
		text = session.lz.get("detail.ask_comment", position=format_position(session.view.playhead))
	else:
		text = session.lz.get("detail.ask_comment_plain")
	await cq.message.answer(text)


@router.callback_query(F.data.startswith(f"{DETAIL_PREFIX}.r:"))
async def detail_ask_reply(cq: CallbackQuery, current_user: UserRead, state: FSMContext) -> None:
	session = await _session_for(cq, current_user)
	if session is None:
		return
	parent_id = parse_callback(cq.data, f"{DETAIL_PREFIX}.r")[0]
	await state.set_state(DetailFSM.comment)
	await state.update_data(parent_id=parent_id)
	await cq.answer()
	await cq.message.answer(session.lz.get("detail.ask_reply"))


@router.message(DetailFSM.comment, F.text)
async def detail_post_comment(message: Message, current_user: UserRead, state: FSMContext) -> None:
	session = _sessions.get(session_key(message.chat.id, current_user))
	lz = await get_localizer_by_user(current_user)
	data = await state.get_data()
	await state.clear()
	if session is None:
		return

	parent_id = data.get("parent_id")
	try:
		await session.view.post_comment(
			message.text,
			parent_id=uuid.UUID(parent_id) if parent_id else None,
		)
	except ReviewWorkflowError as exc:
		await answer_error(message, lz, exc)
		return
	await message.answer(lz.get("detail.comment_posted"))


@router.callback_query(F.data.startswith(f"{DETAIL_PREFIX}.d:"))
async def detail_delete_comment(cq: CallbackQuery, current_user: UserRead) -> None:
	session = await _session_for(cq, current_user)
	if session is None:
		return
	comment_id = uuid.UUID(parse_callback(cq.data, f"{DETAIL_PREFIX}.d")[0])
	try:
		deleted = await session.view.delete_comment(comment_id)
	except ReviewWorkflowError as exc:
		await answer_error(cq, session.lz, exc)
		return
	await cq.answer(session.lz.get("detail.comment_deleted", count=len(deleted)))


@router.callback_query(F.data == f"{DETAIL_PREFIX}.close")
async def detail_close(cq: CallbackQuery, current_user: UserRead, state: FSMContext) -> None:
	session = await _session_for(cq, current_user)
	if session is None:
		return
	lz = await get_localizer_by_user(current_user)
	close_detail(session_key(cq.message.chat.id, current_user))
	await state.clear()
	await UserService().change_ui_mode(current_user, UiMode.HOME)
	await cq.answer()
	await safe_edit(cq.message, lz.get("detail.closed"))
