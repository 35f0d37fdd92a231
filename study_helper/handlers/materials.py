import html
import io
import logging

from aiogram import Router, F
from aiogram.filters import StateFilter
from aiogram.types import Message, CallbackQuery
from aiogram.fsm.context import FSMContext

from study_helper.config import settings
from study_helper.exceptions import ExtractionError, UnsupportedFormatError
from study_helper.keyboards.materials_kb import (
    back_home_keyboard, material_actions_keyboard, recent_materials_keyboard,
)
from study_helper.services.extraction import extract_text
from study_helper.services.material_cache import MaterialCache, name_for_pasted_text
from study_helper.states.quiz_states import MaterialFlow

logger = logging.getLogger(__name__)

router = Router()

# Documents and pasted text are accepted outside of a running quiz
MATERIAL_INPUT_STATES = StateFilter(None, MaterialFlow.waiting_for_material, MaterialFlow.material_ready)


def _cache(user_id: int) -> MaterialCache:
    return MaterialCache(user_id, capacity=settings.MAX_SAVED_MATERIALS)


async def set_active_material(message: Message, state: FSMContext, content: str, name: str):
    """Make a material the source for quizzes and blueprints."""
    await state.set_state(MaterialFlow.material_ready)
    await state.update_data(source_text=content, material_name=name, quiz=None, session=None)
    await message.answer(
        f"✅ Material ready: <b>{html.escape(name)}</b>\n"
        f"{len(content)} characters.\n\nWhat would you like to do?",
        reply_markup=material_actions_keyboard(),
        parse_mode="HTML",
    )


@router.callback_query(F.data == "new_material")
async def ask_for_material(callback: CallbackQuery, state: FSMContext):
    await state.set_state(MaterialFlow.waiting_for_material)
    await callback.message.edit_text(
        "📄 Send me a document (PDF, DOCX, PPTX, TXT) or paste your notes as a message "
        f"(at least {settings.MIN_PASTED_TEXT_LENGTH} characters).",
        reply_markup=back_home_keyboard(),
    )
    await callback.answer()


@router.message(MATERIAL_INPUT_STATES, F.document)
async def document_received(message: Message, state: FSMContext):
    document = message.document
    name = document.file_name or "Document"

    if document.file_size and document.file_size > settings.MAX_UPLOAD_BYTES:
        limit_mb = settings.MAX_UPLOAD_BYTES // (1024 * 1024)
        await message.answer(f"😞 This file is too large. The limit is {limit_mb} MB.")
        return

    status = await message.answer("⏳ Reading your document...")

    try:
        with io.BytesIO() as buffer:
            await message.bot.download(document, destination=buffer)
            data = buffer.getvalue()
        text = await extract_text(data, filename=name, mime_type=document.mime_type)
    except UnsupportedFormatError:
        await status.edit_text(
            "😞 I can't read this file type. Please send a PDF, DOCX, PPTX or plain text file."
        )
        return
    except ExtractionError:
        await status.edit_text("😞 Failed to parse the document. Please check the file format.")
        return

    await _cache(message.from_user.id).save(text, name, "file")
    logger.info("User %d uploaded %s (%d chars)", message.from_user.id, name, len(text))
    await status.delete()
    await set_active_material(message, state, text, name)


@router.message(MATERIAL_INPUT_STATES, F.text, ~F.text.startswith("/"))
async def text_received(message: Message, state: FSMContext):
    text = message.text
    if len(text.strip()) < settings.MIN_PASTED_TEXT_LENGTH:
        await message.answer(
            "✏️ Please provide more content (at least "
            f"{settings.MIN_PASTED_TEXT_LENGTH} characters) for a better study experience."
        )
        return

    name = name_for_pasted_text(text)
    await _cache(message.from_user.id).save(text, name, "text")
    await set_active_material(message, state, text, name)


@router.callback_query(F.data == "recent_materials")
async def show_recent(callback: CallbackQuery, state: FSMContext):
    materials = await _cache(callback.from_user.id).load()
    if not materials:
        await callback.message.edit_text(
            "📭 No saved materials yet. Send a document or paste some notes to get started.",
            reply_markup=recent_materials_keyboard([]),
        )
    else:
        await callback.message.edit_text(
            f"📚 Recently studied ({len(materials)}/{settings.MAX_SAVED_MATERIALS} slots):",
            reply_markup=recent_materials_keyboard(materials),
        )
    await callback.answer()


@router.callback_query(F.data.startswith("use:"))
async def use_material(callback: CallbackQuery, state: FSMContext):
    material_id = callback.data.split(":", 1)[1]
    material = await _cache(callback.from_user.id).get(material_id)
    if material is None:
        await callback.answer("This material is no longer saved.", show_alert=True)
        return
    await callback.answer()
    await set_active_material(callback.message, state, material.content, material.name)


@router.callback_query(F.data.startswith("del:"))
async def delete_material(callback: CallbackQuery, state: FSMContext):
    material_id = callback.data.split(":", 1)[1]
    cache = _cache(callback.from_user.id)
    await cache.delete(material_id)
    materials = await cache.load()
    await callback.message.edit_reply_markup(reply_markup=recent_materials_keyboard(materials))
    await callback.answer("🗑 Deleted")


@router.callback_query(F.data == "back_to_material")
async def back_to_material(callback: CallbackQuery, state: FSMContext):
    data = await state.get_data()
    if not data.get("source_text"):
        await ask_for_material(callback, state)
        return
    await state.set_state(MaterialFlow.material_ready)
    await callback.message.edit_text(
        f"📘 Current material: {data.get('material_name', 'Untitled')}\n\nWhat would you like to do?",
        reply_markup=material_actions_keyboard(),
    )
    await callback.answer()
