import logging

from aiogram import Router
from aiogram.filters import Command
from aiogram.types import Message

from study_helper.config import settings
from study_helper.db.queries import cancel_subscription, upsert_subscription

logger = logging.getLogger(__name__)

router = Router()

SIMULATED_PLAN_ID = "pro"


async def _check_admin(message: Message) -> bool:
    """Check that sender is admin and chat is private. Returns True if OK."""
    if message.chat.type != "private":
        await message.answer("⚠️ This command only works in a private chat.")
        return False
    if settings.ADMIN_ID is None or message.from_user.id != settings.ADMIN_ID:
        return False
    return True


def _parse_target(message: Message) -> int | None:
    parts = message.text.split()
    if len(parts) < 2 or not parts[1].isdigit():
        return None
    return int(parts[1])


@router.message(Command("grant"))
async def cmd_grant(message: Message):
    """Give a user Pro access without a payment (no expiry)."""
    if not await _check_admin(message):
        return

    target_id = _parse_target(message)
    if target_id is None:
        await message.answer("Usage: /grant <user_id>\nExample: /grant 123456789")
        return

    await upsert_subscription(target_id, "simulated_pro", SIMULATED_PLAN_ID, None)
    logger.info("Admin %d granted Pro to %d", message.from_user.id, target_id)
    await message.answer(f"⭐ User {target_id} now has Pro access.")


@router.message(Command("revoke"))
async def cmd_revoke(message: Message):
    if not await _check_admin(message):
        return

    target_id = _parse_target(message)
    if target_id is None:
        await message.answer("Usage: /revoke <user_id>\nExample: /revoke 123456789")
        return

    if not await cancel_subscription(target_id):
        await message.answer("This user has no subscription.")
        return

    logger.info("Admin %d revoked Pro of %d", message.from_user.id, target_id)
    await message.answer(f"🚫 Pro access of user {target_id} was revoked.")
