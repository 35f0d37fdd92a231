from aiogram import Router, F
from aiogram.filters import Command
from aiogram.types import Message, CallbackQuery

from study_helper.handlers.quiz import upgrade_url
from study_helper.keyboards.main_menu import main_menu_keyboard, upgrade_keyboard
from study_helper.services.entitlement import EntitlementContext


def format_plan(entitlement: EntitlementContext) -> str:
    if entitlement.is_pro:
        text = "⭐ Plan: Pro\n\n♾ Unlimited quizzes and study blueprints."
        period_end = (entitlement.subscription or {}).get("current_period_end")
        if period_end:
            text += f"\n📅 Active until: {period_end[:10]}"
        return text
    return (
        "🆓 Plan: Free\n\n"
        f"📊 Generations today: {entitlement.usage_today} of {entitlement.daily_quota}\n"
        f"⏳ Remaining: {entitlement.remaining}\n\n"
        "The limit resets at midnight UTC. Upgrade to Pro for unlimited access."
    )


router = Router()


@router.message(Command("plan"))
async def cmd_plan(message: Message, entitlement: EntitlementContext):
    keyboard = main_menu_keyboard() if entitlement.is_pro else upgrade_keyboard(upgrade_url(message.from_user.id))
    await message.answer(format_plan(entitlement), reply_markup=keyboard)


@router.callback_query(F.data == "my_plan")
async def show_plan(callback: CallbackQuery, entitlement: EntitlementContext):
    keyboard = main_menu_keyboard() if entitlement.is_pro else upgrade_keyboard(upgrade_url(callback.from_user.id))
    await callback.message.edit_text(format_plan(entitlement), reply_markup=keyboard)
    await callback.answer()
