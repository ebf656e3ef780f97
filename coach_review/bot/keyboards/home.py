# bot/keyboards/home.py
from aiogram.types import InlineKeyboardMarkup, InlineKeyboardButton
from coach_review.db.enums import UserRole
from coach_review.db.schemas.user import UserRead
from coach_review.i18n import Localizer

HOME_PREFIX = "home"


def build_home_keyboard(user: UserRead, lz: Localizer) -> InlineKeyboardMarkup:
    """Role-dependent entry points."""
    rows: list[list[InlineKeyboardButton]] = []
    if user.can_review:
        rows.append([InlineKeyboardButton(text=lz.get("home.queue"), callback_data=f"{HOME_PREFIX}.queue")])
    if user.role == UserRole.ATHLETE or user.is_admin:
        rows.append([InlineKeyboardButton(text=lz.get("home.submit"), callback_data=f"{HOME_PREFIX}.submit")])
        rows.append([InlineKeyboardButton(text=lz.get("home.mine"), callback_data=f"{HOME_PREFIX}.mine")])
    rows.append([InlineKeyboardButton(text=lz.get("home.help"), callback_data=f"{HOME_PREFIX}.help")])
    return InlineKeyboardMarkup(inline_keyboard=rows)
