import html
import logging

from aiogram import Router, F
from aiogram.types import CallbackQuery
from aiogram.fsm.context import FSMContext

from study_helper.exceptions import GenerationError, UsageLimitExceeded
from study_helper.handlers.quiz import limit_reached_text, upgrade_url
from study_helper.keyboards.main_menu import upgrade_keyboard
from study_helper.keyboards.materials_kb import material_actions_keyboard
from study_helper.models import StudyBlueprint
from study_helper.services.blueprint import generate_blueprint
from study_helper.services.entitlement import EntitlementContext
from study_helper.states.quiz_states import MaterialFlow

logger = logging.getLogger(__name__)

router = Router()

MESSAGE_LIMIT = 4000


def format_blueprint(blueprint: StudyBlueprint) -> list[str]:
    """Render the blueprint as HTML sections."""
    sections = [f"🗺 <b>Study blueprint</b>\n\n{html.escape(blueprint.summary)}"]

    for i, chapter in enumerate(blueprint.chapters, start=1):
        lines = [f"📘 <b>{i}. {html.escape(chapter.title)}</b>"]
        if chapter.loaded:
            lines.extend(f"• {html.escape(p)}" for p in chapter.key_points)
            if chapter.mnemonic:
                lines.append(f"🧩 <i>{html.escape(chapter.mnemonic)}</i>")
        else:
            lines.append("<i>Details could not be loaded for this chapter.</i>")
        sections.append("\n".join(lines))

    if blueprint.key_terms:
        lines = ["🔑 <b>Key terms</b>"]
        lines.extend(
            f"• <b>{html.escape(t.term)}</b>: {html.escape(t.definition)}" for t in blueprint.key_terms
        )
        sections.append("\n".join(lines))

    if blueprint.potential_questions:
        lines = ["❓ <b>Likely exam questions</b>"]
        for q in blueprint.potential_questions:
            lines.append(f"• {html.escape(q.question)}")
            if q.answer_tip:
                lines.append(f"  💡 {html.escape(q.answer_tip)}")
        sections.append("\n".join(lines))

    if blueprint.grand_mnemonic:
        m = blueprint.grand_mnemonic
        sections.append(
            f"🧠 <b>Grand mnemonic</b>\n<b>{html.escape(m.acronym)}</b>: {html.escape(m.full)}"
        )

    return sections


def _safe_cut(text: str, limit: int) -> int:
    """Position to split a long section without breaking an HTML entity or tag."""
    cut = text.rfind("\n", 0, limit)
    if cut > 0:
        return cut

    cut = limit
    amp = text.rfind("&", 0, cut)
    if amp != -1 and ";" not in text[amp:cut]:
        cut = amp
    # Back off to an unfinished tag or to an opening tag whose span runs past the cut
    lt = text.rfind("<", 0, cut)
    if lt != -1 and (">" not in text[lt:cut] or text[lt + 1:lt + 2] != "/"):
        cut = lt
    return cut if cut > 0 else limit


def split_messages(sections: list[str], limit: int = MESSAGE_LIMIT) -> list[str]:
    """Pack sections into messages no longer than ``limit`` characters."""
    messages = []
    current = ""
    for section in sections:
        while len(section) > limit:
            if current:
                messages.append(current)
                current = ""
            cut = _safe_cut(section, limit)
            messages.append(section[:cut])
            section = section[cut:].lstrip("\n")
        candidate = f"{current}\n\n{section}" if current else section
        if len(candidate) > limit:
            messages.append(current)
            current = section
        else:
            current = candidate
    if current:
        messages.append(current)
    return messages


@router.callback_query(F.data == "blueprint")
async def build_blueprint(callback: CallbackQuery, state: FSMContext, entitlement: EntitlementContext):
    data = await state.get_data()
    source_text = data.get("source_text")
    if not source_text:
        await callback.answer("Add some material first.", show_alert=True)
        return

    try:
        entitlement.check()
    except UsageLimitExceeded as e:
        await callback.message.edit_text(
            limit_reached_text(e),
            reply_markup=upgrade_keyboard(upgrade_url(callback.from_user.id)),
        )
        await callback.answer()
        return

    await state.set_state(MaterialFlow.building_blueprint)
    await callback.message.edit_text("⏳ Building your study blueprint... This may take up to a minute.")
    await callback.answer()

    try:
        blueprint = await generate_blueprint(source_text)
    except GenerationError as e:
        logger.error("Blueprint failed for user %d: %s", callback.from_user.id, e)
        await state.set_state(MaterialFlow.material_ready)
        await callback.message.edit_text(
            "😞 Failed to build the blueprint. Please try again.",
            reply_markup=material_actions_keyboard(),
        )
        return

    await entitlement.record("generate_blueprint")
    logger.info(
        "Blueprint for user %d: %d/%d chapters loaded",
        callback.from_user.id, blueprint.loaded_chapters, len(blueprint.chapters),
    )

    await state.set_state(MaterialFlow.material_ready)
    await callback.message.delete()
    messages = split_messages(format_blueprint(blueprint))
    for i, text in enumerate(messages):
        keyboard = material_actions_keyboard() if i == len(messages) - 1 else None
        await callback.message.answer(text, reply_markup=keyboard, parse_mode="HTML")
