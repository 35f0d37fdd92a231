import logging

from study_helper.config import settings
from study_helper.exceptions import GradingError
from study_helper.llm.client import chat_completion, vision_completion
from study_helper.llm.parser import parse_grading
from study_helper.llm.prompts import (
    GRADING_SYSTEM, build_handwriting_grading_prompt, build_typed_grading_prompt,
)
from study_helper.models import GradingResult, TheoryAnswer, TheoryQuestion

logger = logging.getLogger(__name__)


async def grade_answer(question: TheoryQuestion, answer: TheoryAnswer, context: str) -> GradingResult:
    """Grade a handwritten (photo) or typed answer against the study material.

    Raises:
        GradingError: LLM unavailable or reply unusable
    """
    context = context[: settings.GRADING_CONTEXT_LIMIT]

    if answer.is_handwritten:
        prompt = build_handwriting_grading_prompt(question.question, context)
        raw = await vision_completion(prompt, answer.image)
    elif answer.text and answer.text.strip():
        prompt = build_typed_grading_prompt(answer.text.strip(), question.question, context)
        raw = await chat_completion(prompt, system=GRADING_SYSTEM, temperature=0.2)
    else:
        raise GradingError("Either an image or a typed answer is required")

    if not raw:
        raise GradingError("The AI service is unavailable")

    result = parse_grading(raw, handwritten=answer.is_handwritten)
    if result is None:
        logger.error("Unusable grading response: %.200s", raw)
        raise GradingError("The AI service returned an unreadable grade")
    return result


def make_grader(context: str):
    """Bind the reference material, giving the callable a QuizSession expects."""

    async def grader(question: TheoryQuestion, answer: TheoryAnswer) -> GradingResult:
        return await grade_answer(question, answer, context)

    return grader
