# bot/routers/review.py
import logging
import uuid

from aiogram import Router, F
from aiogram.fsm.context import FSMContext
from aiogram.fsm.state import StatesGroup, State
from aiogram.types import Message, CallbackQuery, InlineKeyboardMarkup, InlineKeyboardButton
from aiogram.utils.text_decorations import html_decoration

from coach_review.db.enums import UiMode
from coach_review.db.schemas.review import ReviewRead, ReviewDraft
from coach_review.db.schemas.user import UserRead
from coach_review.errors import ReviewWorkflowError
from coach_review.i18n import Localizer
from coach_review.bot.services.review import ReviewService
from coach_review.bot.services.submission import SubmissionService
from coach_review.bot.services.user import UserService
from coach_review.bot.routers.utils import get_localizer_by_user, parse_callback, answer_error, safe_edit
from coach_review.bot.routers.submission_detail import redraw_detail

logger = logging.getLogger(__name__)

router = Router(name="review")

REVIEW_PREFIX = "rev"
# field name -> (prompt key, list field)
FIELDS = {
    "overall_feedback": ("review.ask_feedback", False),
    "next_steps": ("review.ask_next_steps", False),
    "strengths": ("review.ask_strengths", True),
    "areas_for_improvement": ("review.ask_areas", True),
}
FIELD_BUTTONS = {
    "overall_feedback": "review.buttons.feedback",
    "next_steps": "review.buttons.next_steps",
    "strengths": "review.buttons.strengths",
    "areas_for_improvement": "review.buttons.areas",
}

q = html_decoration.quote


class ReviewFSM(StatesGroup):
    editing = State()
    field_input = State()


def _render_panel(lz: Localizer, review: ReviewRead, skill: str) -> tuple[str, InlineKeyboardMarkup]:
    empty = lz.get("review.empty")
    lines = [
        f"<b>{lz.get('review.panel', skill=q(skill))}</b>",
        lz.get("review.feedback", text=q(review.overall_feedback) or empty),
        lz.get("review.strengths", text=q("; ".join(review.strengths)) or empty),
        lz.get("review.areas", text=q("; ".join(review.areas_for_improvement)) or empty),
        lz.get("review.next_steps", text=q(review.next_steps) or empty),
    ]
    keyboard = [
        [InlineKeyboardButton(text=lz.get(FIELD_BUTTONS[name]), callback_data=f"{REVIEW_PREFIX}.f:{name}")]
        for name in FIELDS
    ]
    keyboard.append([
        InlineKeyboardButton(text=lz.get("review.buttons.publish"), callback_data=f"{REVIEW_PREFIX}.publish"),
        InlineKeyboardButton(text=lz.get("review.buttons.back"), callback_data=f"{REVIEW_PREFIX}.back"),
    ])
    return "\n".join(lines), InlineKeyboardMarkup(inline_keyboard=keyboard)


async def _show_panel(message: Message, lz: Localizer, review: ReviewRead, state: FSMContext) -> None:
    submission = await SubmissionService().get_one(review.submission_id)
    text, keyboard = _render_panel(lz, review, submission.skill_name)
    await message.answer(text, reply_markup=keyboard)
    await state.set_state(ReviewFSM.editing)
    await state.update_data(review_id=str(review.id))


@router.callback_query(F.data.startswith(f"{REVIEW_PREFIX}.start:"))
async def review_start(cq: CallbackQuery, current_user: UserRead, state: FSMContext) -> None:
    lz = await get_localizer_by_user(current_user)
    submission_id = uuid.UUID(parse_callback(cq.data, f"{REVIEW_PREFIX}.start")[0])
    try:
        review = await ReviewService().start_review(submission_id, current_user)
    except ReviewWorkflowError as exc:
        await answer_error(cq, lz, exc)
        return
    await UserService().change_ui_mode(current_user, UiMode.REVIEW)
    await cq.answer()
    await _show_panel(cq.message, lz, review, state)


@router.callback_query(ReviewFSM.editing, F.data.startswith(f"{REVIEW_PREFIX}.f:"))
async def review_ask_field(cq: CallbackQuery, current_user: UserRead, state: FSMContext) -> None:
    lz = await get_localizer_by_user(current_user)
    field = parse_callback(cq.data, f"{REVIEW_PREFIX}.f")[0]
    if field not in FIELDS:
        await cq.answer()
        return
    await state.set_state(ReviewFSM.field_input)
    await state.update_data(field=field)
    await cq.answer()
    await cq.message.answer(lz.get(FIELDS[field][0]))


@router.message(ReviewFSM.field_input, F.text)
async def review_save_field(message: Message, current_user: UserRead, state: FSMContext) -> None:
    lz = await get_localizer_by_user(current_user)
    data = await state.get_data()
    field = data.get("field")
    review_id = uuid.UUID(data["review_id"])
    _prompt, is_list = FIELDS[field]
    value = message.text.splitlines() if is_list else message.text

    try:
        review = await ReviewService().save_draft(review_id, current_user, ReviewDraft(**{field: value}))
    except ReviewWorkflowError as exc:
        await answer_error(message, lz, exc)
        return
    await message.answer(lz.get("review.saved"))
    await _show_panel(message, lz, review, state)


@router.callback_query(ReviewFSM.editing, F.data == f"{REVIEW_PREFIX}.publish")
async def review_publish(cq: CallbackQuery, current_user: UserRead, state: FSMContext) -> None:
    lz = await get_localizer_by_user(current_user)
    data = await state.get_data()
    try:
        await ReviewService().publish(uuid.UUID(data["review_id"]), current_user)
    except ReviewWorkflowError as exc:
        await answer_error(cq, lz, exc)
        return
    await state.clear()
    await UserService().change_ui_mode(current_user, UiMode.SUBMISSION)
    await cq.answer()
    await safe_edit(cq.message, lz.get("review.published"))
    await redraw_detail(cq.message.chat.id, current_user)


@router.callback_query(F.data == f"{REVIEW_PREFIX}.back")
async def review_back(cq: CallbackQuery, current_user: UserRead, state: FSMContext) -> None:
    await state.clear()
    await UserService().change_ui_mode(current_user, UiMode.SUBMISSION)
    await cq.answer()
    await cq.message.delete()
    await redraw_detail(cq.message.chat.id, current_user)
