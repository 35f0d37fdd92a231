import asyncio
import logging

from study_helper.config import settings
from study_helper.exceptions import GenerationError
from study_helper.llm.client import chat_completion
from study_helper.llm.parser import parse_blueprint, parse_chapter_details
from study_helper.llm.prompts import BLUEPRINT_SYSTEM, build_blueprint_prompt, build_chapter_prompt
from study_helper.models import Chapter, StudyBlueprint

logger = logging.getLogger(__name__)


async def generate_blueprint(source_text: str) -> StudyBlueprint:
    """Build a study map, then fill in all chapters concurrently.

    Raises:
        GenerationError: The study map itself could not be generated
    """
    text = source_text[: settings.BLUEPRINT_TEXT_LIMIT]
    raw = await chat_completion(build_blueprint_prompt(text), system=BLUEPRINT_SYSTEM)
    blueprint = parse_blueprint(raw) if raw else None
    if blueprint is None:
        raise GenerationError("The AI service did not return a study map")

    await load_chapter_details(blueprint, text)
    return blueprint


async def load_chapter_details(blueprint: StudyBlueprint, source_text: str) -> int:
    """Request details of every chapter at once and wait for all of them.

    A failed chapter stays unloaded; the others are kept.

    Returns:
        Number of chapters loaded
    """
    results = await asyncio.gather(
        *(_fetch_chapter(chapter, source_text) for chapter in blueprint.chapters),
        return_exceptions=True,
    )
    for chapter, result in zip(blueprint.chapters, results):
        if isinstance(result, Exception):
            logger.error("Chapter details failed for %r: %s", chapter.title, result)
    return blueprint.loaded_chapters


async def _fetch_chapter(chapter: Chapter, source_text: str) -> None:
    raw = await chat_completion(build_chapter_prompt(chapter.title, source_text), system=BLUEPRINT_SYSTEM)
    details = parse_chapter_details(raw) if raw else None
    if details is None:
        raise GenerationError(f"No details for chapter {chapter.title!r}")
    chapter.key_points = details["key_points"]
    chapter.mnemonic = details["mnemonic"]
    chapter.loaded = True
