# bot/routers/athlete_submit.py
import asyncio
import logging
import uuid
from pathlib import Path
from typing import AsyncIterator, Optional

from aiogram import Bot, Router, F
from aiogram.exceptions import TelegramAPIError
from aiogram.filters import Command
from aiogram.fsm.context import FSMContext
from aiogram.fsm.state import StatesGroup, State
from aiogram.types import Message, CallbackQuery, InlineKeyboardMarkup, InlineKeyboardButton

from coach_review.config import Settings
from coach_review.db.enums import UiMode, UserRole
from coach_review.db.schemas.submission import SubmissionCreate, SubmissionRead
from coach_review.db.schemas.user import UserRead
from coach_review.errors import ReviewWorkflowError, UploadFailed
from coach_review.i18n import Localizer
from coach_review.bot.services.media import validate_video_file
from coach_review.bot.services.submission import SubmissionService
from coach_review.bot.services.upload import UploadService, UploadHandle
from coach_review.bot.services.user import UserService
from coach_review.bot.views.format import status_label, format_datetime, shorten
from coach_review.bot.routers.utils import get_localizer_by_user, safe_edit, parse_callback, answer_error

logger = logging.getLogger(__name__)

router = Router(name="athlete_submit")

SUBMIT_PREFIX = "submit"
SKIP = "-"
PROGRESS_STEP = 5


class SubmitFSM(StatesGroup):
	skill = State()
	context = State()
	goals = State()
	questions = State()
	video = State()


# running uploads by submission id
_uploads: dict[uuid.UUID, UploadHandle] = {}
# watcher tasks that report the outcome; held until they finish
_upload_tasks: set[asyncio.Task] = set()


def _can_submit(user: UserRead) -> bool:
	return user.role == UserRole.ATHLETE or user.is_admin


def _abort_keyboard(lz: Localizer) -> InlineKeyboardMarkup:
	return InlineKeyboardMarkup(inline_keyboard=[[
		InlineKeyboardButton(text=lz.get("submit.abort"), callback_data=f"{SUBMIT_PREFIX}.abort")
	]])


def _cancel_upload_keyboard(lz: Localizer, submission_id: uuid.UUID) -> InlineKeyboardMarkup:
	return InlineKeyboardMarkup(inline_keyboard=[[
		InlineKeyboardButton(text=lz.get("submit.cancel_upload"), callback_data=f"{SUBMIT_PREFIX}.cancel:{submission_id}")
	]])


async def telegram_chunks(bot: Bot, file_path: str, chunk_size: int) -> AsyncIterator[bytes]:
	"""Video bytes from Telegram: straight from disk with a local Bot API server, streamed otherwise."""
	local_src = Path(file_path)
	if local_src.is_absolute() and local_src.exists():
		with local_src.open("rb") as src:
			while True:
				chunk = src.read(chunk_size)
				if not chunk:
					break
				yield chunk
				# let other updates run between reads
				await asyncio.sleep(0)
		return

	url = bot.session.api.file_url(bot.token, file_path)
	async for chunk in bot.session.stream_content(url, chunk_size=chunk_size):
		yield chunk


async def start_submission(message: Message, current_user: UserRead, state: FSMContext) -> None:
	lz = await get_localizer_by_user(current_user)
	if not _can_submit(current_user):
		await message.answer(lz.get("submit.athletes_only"))
		return
	await UserService().change_ui_mode(current_user, UiMode.SUBMIT)
	await state.clear()
	await state.set_state(SubmitFSM.skill)
	await message.answer(lz.get("submit.ask_skill"), reply_markup=_abort_keyboard(lz))


@router.message(Command("submit"))
async def submit_command(message: Message, current_user: UserRead, state: FSMContext) -> None:
	await start_submission(message, current_user, state)


@router.callback_query(F.data == "home.submit")
async def submit_from_home(cq: CallbackQuery, current_user: UserRead, state: FSMContext) -> None:
	await cq.answer()
	await start_submission(cq.message, current_user, state)


@router.callback_query(F.data == f"{SUBMIT_PREFIX}.abort")
async def submit_abort(cq: CallbackQuery, current_user: UserRead, state: FSMContext) -> None:
	lz = await get_localizer_by_user(current_user)
	await state.clear()
	await UserService().change_ui_mode(current_user, UiMode.HOME)
	await cq.answer()
	await safe_edit(cq.message, lz.get("core.cancelled"))


@router.message(SubmitFSM.skill, F.text, ~F.text.startswith("/"))
async def submit_skill(message: Message, current_user: UserRead, state: FSMContext) -> None:
	lz = await get_localizer_by_user(current_user)
	await state.update_data(skill_name=message.text.strip())
	await state.set_state(SubmitFSM.context)
	await message.answer(lz.get("submit.ask_context"), reply_markup=_abort_keyboard(lz))


@router.message(SubmitFSM.context, F.text, ~F.text.startswith("/"))
async def submit_context(message: Message, current_user: UserRead, state: FSMContext) -> None:
	lz = await get_localizer_by_user(current_user)
	await state.update_data(athlete_context=message.text.strip())
	await state.set_state(SubmitFSM.goals)
	await message.answer(lz.get("submit.ask_goals"), reply_markup=_abort_keyboard(lz))


@router.message(SubmitFSM.goals, F.text, ~F.text.startswith("/"))
async def submit_goals(message: Message, current_user: UserRead, state: FSMContext) -> None:
	lz = await get_localizer_by_user(current_user)
	text = message.text.strip()
	await state.update_data(athlete_goals=None if text == SKIP else text)
	await state.set_state(SubmitFSM.questions)
	await message.answer(lz.get("submit.ask_questions"), reply_markup=_abort_keyboard(lz))


@router.message(SubmitFSM.questions, F.text, ~F.text.startswith("/"))
async def submit_questions(message: Message, current_user: UserRead, state: FSMContext) -> None:
	lz = await get_localizer_by_user(current_user)
	settings = Settings()
	text = message.text.strip()
	await state.update_data(specific_questions=None if text == SKIP else text)
	await state.set_state(SubmitFSM.video)
	await message.answer(
		lz.get(
			"submit.ask_video",
			formats=", ".join(settings.video_extensions),
			max_mb=settings.max_video_bytes // (1024 * 1024),
		),
		reply_markup=_abort_keyboard(lz),
	)


@router.message(SubmitFSM.video, F.video | F.document)
async def submit_video(message: Message, current_user: UserRead, state: FSMContext, bot: Bot) -> None:
	lz = await get_localizer_by_user(current_user)
	media = message.video or message.document
	file_name = media.file_name or f"video_{media.file_unique_id}.mp4"
	file_size = media.file_size or 0
	duration = float(message.video.duration) if message.video and message.video.duration else None

	try:
		validate_video_file(file_name, file_size)
	except ReviewWorkflowError as exc:
		await answer_error(message, lz, exc)
		return

	# resolved before the record exists so a refused file leaves nothing behind
	try:
		file_info = await bot.get_file(media.file_id)
	except TelegramAPIError as exc:
		logger.warning("Telegram refused file %s of user %s: %s", media.file_id, current_user.id, exc)
		await message.answer(lz.get("submit.file_unavailable"), reply_markup=_abort_keyboard(lz))
		return
	if not file_info.file_path:
		await message.answer(lz.get("submit.file_unavailable"), reply_markup=_abort_keyboard(lz))
		return

	data = await state.get_data()
	try:
		submission = await SubmissionService().create_submission(
			current_user,
			SubmissionCreate(
				skill_name=data["skill_name"],
				athlete_context=data["athlete_context"],
				athlete_goals=data.get("athlete_goals"),
				specific_questions=data.get("specific_questions"),
				video_file_name=file_name,
				video_file_size=file_size,
				video_duration=duration,
			),
		)
	except ReviewWorkflowError as exc:
		await answer_error(message, lz, exc)
		return

	await state.clear()
	await UserService().change_ui_mode(current_user, UiMode.HOME)

	progress_message = await message.answer(
		lz.get("submit.uploading", progress=0),
		reply_markup=_cancel_upload_keyboard(lz, submission.id),
	)
	chunks = telegram_chunks(bot, file_info.file_path, Settings().upload_chunk_bytes)

	last_shown = 0

	async def _on_progress(percent: int) -> None:
		nonlocal last_shown
		if percent >= last_shown + PROGRESS_STEP or percent == 100:
			last_shown = percent
			await safe_edit(
				progress_message,
				lz.get("submit.uploading", progress=percent),
				reply_markup=_cancel_upload_keyboard(lz, submission.id),
			)

	try:
		handle = UploadService().start(submission, current_user, chunks, on_progress=_on_progress, video_duration=duration)
	except ReviewWorkflowError as exc:
		logger.warning("Upload of submission %s could not start: %r", submission.id, exc)
		await safe_edit(progress_message, lz.get("submit.upload_failed"))
		return
	_uploads[submission.id] = handle
	task = asyncio.create_task(_finish_upload(handle, progress_message, lz))
	_upload_tasks.add(task)
	task.add_done_callback(_upload_tasks.discard)


async def _finish_upload(handle: UploadHandle, progress_message: Message, lz: Localizer) -> None:
	try:
		result: Optional[SubmissionRead] = await handle.wait()
	except UploadFailed:
		await safe_edit(progress_message, lz.get("submit.upload_failed"))
		return
	except Exception:
		logger.exception("Upload task for %s crashed", handle.submission.id)
		await safe_edit(progress_message, lz.get("submit.upload_failed"))
		return
	finally:
		_uploads.pop(handle.submission.id, None)

	if result is None:
		await safe_edit(progress_message, lz.get("submit.upload_cancelled"))
		return
	await safe_edit(progress_message, lz.get("submit.upload_done", deadline=format_datetime(result.sla_deadline)))


@router.callback_query(F.data.startswith(f"{SUBMIT_PREFIX}.cancel:"))
async def submit_cancel_upload(cq: CallbackQuery, current_user: UserRead) -> None:
	lz = await get_localizer_by_user(current_user)
	submission_id = uuid.UUID(parse_callback(cq.data, f"{SUBMIT_PREFIX}.cancel")[0])
	handle = _uploads.get(submission_id)
	if handle is not None and handle.submission.athlete_id == current_user.id:
		handle.cancel()
	await cq.answer(lz.get("submit.upload_cancelled"))


@router.message(SubmitFSM.video)
async def submit_need_video(message: Message, current_user: UserRead) -> None:
	lz = await get_localizer_by_user(current_user)
	await message.answer(lz.get("submit.need_video"))


async def show_my_submissions(message: Message, current_user: UserRead) -> None:
	lz = await get_localizer_by_user(current_user)
	submissions = await SubmissionService().list_for_athlete(current_user, limit=20)
	if not submissions:
		await message.answer(lz.get("submit.mine_empty"))
		return
	keyboard = [
		[InlineKeyboardButton(
			text=lz.get("submit.mine_row", skill=shorten(s.skill_name, 32), status=status_label(lz, s.status)),
			callback_data=f"sub.open:{s.id}",
		)]
		for s in submissions
	]
	await message.answer(lz.get("submit.mine_title"), reply_markup=InlineKeyboardMarkup(inline_keyboard=keyboard))


@router.message(Command("my_submissions"))
async def my_submissions_command(message: Message, current_user: UserRead) -> None:
	await show_my_submissions(message, current_user)


@router.callback_query(F.data == "home.mine")
async def my_submissions_from_home(cq: CallbackQuery, current_user: UserRead) -> None:
	await cq.answer()
	await show_my_submissions(cq.message, current_user)
