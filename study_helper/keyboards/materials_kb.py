from aiogram.types import InlineKeyboardMarkup, InlineKeyboardButton

from study_helper.models import SavedMaterial


def material_actions_keyboard() -> InlineKeyboardMarkup:
    return InlineKeyboardMarkup(inline_keyboard=[
        [InlineKeyboardButton(text="🧠 Start a quiz", callback_data="start_quiz")],
        [InlineKeyboardButton(text="🗺 Study blueprint", callback_data="blueprint")],
        [InlineKeyboardButton(text="🔁 Change material", callback_data="new_material")],
        [InlineKeyboardButton(text="🏠 Main menu", callback_data="go_home")],
    ])


def recent_materials_keyboard(materials: list[SavedMaterial]) -> InlineKeyboardMarkup:
    buttons = []
    for m in materials:
        icon = "📄" if m.type == "file" else "📝"
        label = m.name if len(m.name) <= 40 else m.name[:37] + "..."
        buttons.append([
            InlineKeyboardButton(text=f"{icon} {label}", callback_data=f"use:{m.id}"),
            InlineKeyboardButton(text="🗑", callback_data=f"del:{m.id}"),
        ])
    buttons.append([InlineKeyboardButton(text="📄 New material", callback_data="new_material")])
    buttons.append([InlineKeyboardButton(text="🏠 Main menu", callback_data="go_home")])
    return InlineKeyboardMarkup(inline_keyboard=buttons)


def back_home_keyboard() -> InlineKeyboardMarkup:
    return InlineKeyboardMarkup(inline_keyboard=[
        [InlineKeyboardButton(text="🏠 Main menu", callback_data="go_home")],
    ])
