from aiogram.types import InlineKeyboardMarkup, InlineKeyboardButton


def main_menu_keyboard() -> InlineKeyboardMarkup:
    return InlineKeyboardMarkup(inline_keyboard=[
        [InlineKeyboardButton(text="📄 New material", callback_data="new_material")],
        [InlineKeyboardButton(text="📚 Recent materials", callback_data="recent_materials")],
        [InlineKeyboardButton(text="⭐ My plan", callback_data="my_plan")],
    ])


def upgrade_keyboard(url: str) -> InlineKeyboardMarkup:
    return InlineKeyboardMarkup(inline_keyboard=[
        [InlineKeyboardButton(text="🚀 Upgrade to Pro", url=url)],
        [InlineKeyboardButton(text="🏠 Main menu", callback_data="go_home")],
    ])
