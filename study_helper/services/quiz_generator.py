import logging

from study_helper.config import settings
from study_helper.exceptions import GenerationError
from study_helper.llm.client import chat_completion
from study_helper.llm.parser import parse_questions
from study_helper.llm.prompts import QUIZ_SYSTEM, build_quiz_prompt
from study_helper.models import Quiz, QuizMode

logger = logging.getLogger(__name__)


async def generate_quiz(source_text: str, mode: QuizMode, count: int) -> Quiz:
    """Generate a quiz from study material.

    Raises:
        ValueError: count outside 1..MAX_QUESTIONS
        GenerationError: LLM unavailable or no usable questions after a retry
    """
    if not 1 <= count <= settings.MAX_QUESTIONS:
        raise ValueError(f"Question count must be between 1 and {settings.MAX_QUESTIONS}")

    prompt = build_quiz_prompt(source_text[: settings.SOURCE_TEXT_LIMIT], mode, count)

    # First attempt
    raw = await chat_completion(prompt, system=QUIZ_SYSTEM)
    questions = parse_questions(raw, mode) if raw else None

    if questions and len(questions) >= count:
        return Quiz(mode=mode, questions=tuple(questions[:count]))

    # Retry once with a stricter prompt
    logger.info("First attempt didn't produce enough questions, retrying...")
    retry_prompt = prompt + '\n\nIMPORTANT: Output ONLY a valid JSON object {"questions": [...]}. No markdown, no extra text.'
    raw = await chat_completion(retry_prompt, system=QUIZ_SYSTEM)
    retry_questions = parse_questions(raw, mode) if raw else None

    best = max((questions or [], retry_questions or []), key=len)
    if best:
        return Quiz(mode=mode, questions=tuple(best[:count]))

    logger.error("Failed to generate quiz after 2 attempts")
    raise GenerationError("The AI service did not return any usable questions")
