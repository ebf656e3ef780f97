# bot/routers/core.py
import logging
from aiogram import Router, F
from aiogram.filters import CommandStart, Command, CommandObject
from aiogram.fsm.context import FSMContext
from aiogram.types import Message, CallbackQuery, InlineKeyboardMarkup, InlineKeyboardButton
from coach_review.db.schemas.user import UserRead
from coach_review.db.enums import UiMode, UserRole
from coach_review.i18n import lang_code2language
from coach_review.errors import ReviewWorkflowError
from coach_review.bot.services.user import UserService
from coach_review.bot.keyboards.home import build_home_keyboard
from coach_review.bot.routers.utils import get_localizer_by_user, answer_error

logger = logging.getLogger(__name__)

router = Router(name="core")

SWITCHABLE_ROLES = (UserRole.ATHLETE, UserRole.COACH, UserRole.ADMIN, UserRole.SUPERADMIN, UserRole.UNREGISTERED)

async def autoset_language(message: Message, current_user: UserRead) -> UserRead:
    if current_user.preferred_language is not None:
        return current_user
    lang = lang_code2language(message.from_user.language_code if message.from_user else None)
    return await UserService().change_language(current_user, lang)

async def show_home(message: Message, current_user: UserRead) -> None:
    lz = await get_localizer_by_user(current_user)
    role = lz.get(f"roles.{current_user.role}")
    lines = [lz.get("core.start", name=current_user.name), lz.get("core.role", role=role)]
    if current_user.role == UserRole.UNREGISTERED:
        lines.append(lz.get("core.unregistered"))
    await message.answer("\n\n".join(lines), reply_markup=build_home_keyboard(current_user, lz))

@router.message(CommandStart())
async def start(message: Message, current_user: UserRead, state: FSMContext) -> None:
    await state.clear()
    current_user = await autoset_language(message, current_user)
    current_user = await UserService().change_ui_mode(current_user, UiMode.HOME)
    await show_home(message, current_user)

@router.message(Command("help"))
async def help(message: Message, current_user: UserRead) -> None:
    lz = await get_localizer_by_user(current_user)
    await message.answer(lz.get("core.help"))

@router.callback_query(F.data == "home.help")
async def help_button(cq: CallbackQuery, current_user: UserRead) -> None:
    lz = await get_localizer_by_user(current_user)
    await cq.answer()
    await cq.message.answer(lz.get("core.help"))

@router.message(Command("cancel"))
async def cancel(message: Message, current_user: UserRead, state: FSMContext) -> None:
    await state.clear()
    current_user = await UserService().change_ui_mode(current_user, UiMode.HOME)
    lz = await get_localizer_by_user(current_user)
    await message.answer(lz.get("core.cancelled"), reply_markup=build_home_keyboard(current_user, lz))

@router.message(Command("switch_role"))
async def switch_role(message: Message, current_user: UserRead, is_whitelisted: bool) -> None:
    if not is_whitelisted:
        return

    lz = await get_localizer_by_user(current_user)
    buttons = [
        [InlineKeyboardButton(text=lz.get(f"roles.{role}"), callback_data=f"role_set {role}")]
        for role in SWITCHABLE_ROLES
    ]
    await message.answer(text=lz.get("core.choose_role"), reply_markup=InlineKeyboardMarkup(inline_keyboard=buttons))

@router.callback_query(F.data.startswith("role_set "))
async def on_role_set(cq: CallbackQuery, current_user: UserRead, is_whitelisted: bool) -> None:
    if not is_whitelisted:
        await cq.answer()
        return

    try:
        role = UserRole(cq.data.split()[-1])
    except ValueError:
        role = UserRole.UNREGISTERED

    usr_svc = UserService()
    current_user = await usr_svc.change_role(current_user, role)
    current_user = await usr_svc.change_ui_mode(current_user, UiMode.HOME)
    lz = await get_localizer_by_user(current_user)

    text = lz.get("core.role_changed", role=lz.get(f"roles.{role}"))
    await cq.answer(text)
    await cq.message.answer(text=text, reply_markup=build_home_keyboard(current_user, lz))

@router.message(Command("set_role"))
async def set_role(message: Message, command: CommandObject, current_user: UserRead) -> None:
    lz = await get_localizer_by_user(current_user)
    if not current_user.is_admin:
        await message.answer(lz.get("core.admins_only"))
        return

    args = (command.args or "").split()
    if len(args) != 2 or args[1] not in {r.value for r in UserRole}:
        await message.answer(lz.get("core.usage_set_role"))
        return
    role = UserRole(args[1])
    if role == UserRole.SUPERADMIN and current_user.role != UserRole.SUPERADMIN:
        await message.answer(lz.get("core.admins_only"))
        return

    usr_svc = UserService()
    try:
        target = await usr_svc.get_by_username(args[0])
        target = await usr_svc.change_role(target, role)
    except ReviewWorkflowError as exc:
        await answer_error(message, lz, exc)
        return
    await message.answer(lz.get("core.role_changed", role=f"{target.name}: {lz.get(f'roles.{role}')}"))

@router.message(Command("assign_coach"))
async def assign_coach(message: Message, command: CommandObject, current_user: UserRead) -> None:
    lz = await get_localizer_by_user(current_user)
    if not current_user.is_admin:
        await message.answer(lz.get("core.admins_only"))
        return

    args = (command.args or "").split()
    if len(args) != 2:
        await message.answer(lz.get("core.usage_assign_coach"))
        return

    usr_svc = UserService()
    try:
        athlete = await usr_svc.get_by_username(args[0])
        coach = await usr_svc.get_by_username(args[1])
        athlete = await usr_svc.assign_coach(athlete, coach)
    except ReviewWorkflowError as exc:
        await answer_error(message, lz, exc)
        return
    await message.answer(lz.get("core.coach_assigned", athlete=athlete.name, coach=coach.name))
