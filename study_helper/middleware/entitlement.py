import logging
from typing import Any, Awaitable, Callable

from aiogram import BaseMiddleware
from aiogram.types import Message, CallbackQuery, TelegramObject

from study_helper.services.entitlement import EntitlementContext

logger = logging.getLogger(__name__)

UNAVAILABLE_MSG = "⚠️ The service is temporarily unavailable. Please try again later."


class EntitlementMiddleware(BaseMiddleware):
    """Loads the user's EntitlementContext and hands it to handlers as ``entitlement``."""

    async def __call__(
        self,
        handler: Callable[[TelegramObject, dict[str, Any]], Awaitable[Any]],
        event: TelegramObject,
        data: dict[str, Any],
    ) -> Any:
        user = getattr(event, "from_user", None)
        if user is None:
            return  # no user info (e.g. channel post)

        # DB lookup with fail-closed
        try:
            data["entitlement"] = await EntitlementContext.load(user.id)
        except Exception:
            logger.exception("DB error in entitlement middleware, fail-closed for user %s", user.id)
            await self._deny(event)
            return

        return await handler(event, data)

    async def _deny(self, event: TelegramObject) -> None:
        """Send the outage message and dismiss the callback spinner if needed."""
        if isinstance(event, CallbackQuery):
            await event.answer(UNAVAILABLE_MSG, show_alert=True)
        elif isinstance(event, Message):
            await event.answer(UNAVAILABLE_MSG)
