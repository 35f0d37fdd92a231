import json
import logging
import re

from study_helper.models import (
    Chapter, FillGapQuestion, GradingResult, KeyTerm, Mnemonic, MultipleChoiceQuestion,
    PotentialQuestion, QuizMode, QuizQuestion, StudyBlueprint, TheoryQuestion,
)

logger = logging.getLogger(__name__)

_LETTER_PREFIX = re.compile(r"^[A-Da-d][).:]\s*")


def extract_json(raw_text: str) -> dict | list | None:
    """Pull a JSON value out of LLM output. Returns None on failure."""
    if not raw_text:
        return None

    # Try direct JSON parse
    data = _try_parse_json(raw_text)

    # Try extracting from markdown code block
    if data is None:
        match = re.search(r"```(?:json)?\s*([\[{].+?[\]}])\s*```", raw_text, re.DOTALL)
        if match:
            data = _try_parse_json(match.group(1))

    # Try finding an object in the text
    if data is None:
        match = re.search(r"(\{.+})", raw_text, re.DOTALL)
        if match:
            data = _try_parse_json(match.group(1))

    if data is None:
        logger.error("Failed to parse LLM response as JSON")
    return data


def _try_parse_json(text: str) -> dict | list | None:
    try:
        data = json.loads(text)
        if isinstance(data, (dict, list)):
            return data
    except (json.JSONDecodeError, TypeError):
        pass
    return None


# ============================================================================
# QUIZ
# ============================================================================

def parse_questions(raw_text: str, mode: QuizMode) -> list[QuizQuestion] | None:
    """Parse LLM output into questions of the given mode. Returns None on failure."""
    data = extract_json(raw_text)
    if data is None:
        return None

    items = data.get("questions") if isinstance(data, dict) else data
    if not isinstance(items, list):
        logger.error("LLM response has no questions list")
        return None

    valid = []
    for item in items:
        question = build_question(mode, item) if isinstance(item, dict) else None
        if question is not None:
            valid.append(question)
        else:
            logger.warning(f"Skipping invalid question: {item}")

    return valid if valid else None


def build_question(mode: QuizMode, item: dict) -> QuizQuestion | None:
    """Turn one raw question dict into the variant for ``mode``."""
    text = _clean(item.get("question"))
    explanation = _clean(item.get("explanation"))
    if not text:
        return None

    if mode is QuizMode.MULTIPLE_CHOICE:
        options = item.get("options")
        if not isinstance(options, list) or len(options) != 4:
            return None
        options = [_LETTER_PREFIX.sub("", str(opt)).strip() for opt in options]
        if not all(options):
            return None
        index = _resolve_option_index(item.get("correctAnswer", item.get("correct")), options)
        if index is None:
            return None
        return MultipleChoiceQuestion(text, options, index, explanation)

    if mode is QuizMode.FILL_GAP:
        answer = _clean(item.get("correctAnswer", item.get("correct")))
        if not answer:
            return None
        return FillGapQuestion(text, answer, explanation)

    concepts = item.get("keyConcepts") or []
    if not isinstance(concepts, list):
        concepts = []
    return TheoryQuestion(text, explanation, [str(c).strip() for c in concepts if str(c).strip()])


def _resolve_option_index(correct, options: list[str]) -> int | None:
    """Accept an index, a numeric string, a letter or the option text."""
    if isinstance(correct, bool):
        return None
    if isinstance(correct, float) and correct.is_integer():
        correct = int(correct)
    if isinstance(correct, int):
        return correct if 0 <= correct < len(options) else None
    if not isinstance(correct, str):
        return None

    value = correct.strip()
    if value.isdigit():
        idx = int(value)
        return idx if 0 <= idx < len(options) else None

    # Single letter A/B/C/D
    if re.match(r"^[A-Da-d]$", value):
        return ord(value.upper()) - ord("A")

    value = _LETTER_PREFIX.sub("", value).strip().lower()
    for i, opt in enumerate(options):
        if opt.lower() == value:
            return i
    return None


def _clean(value) -> str:
    return str(value).strip() if value is not None else ""


# ============================================================================
# GRADING
# ============================================================================

def parse_grading(raw_text: str, handwritten: bool) -> GradingResult | None:
    data = extract_json(raw_text)
    if not isinstance(data, dict):
        return None

    try:
        score = float(data.get("score"))
    except (TypeError, ValueError):
        logger.error(f"Grading response has no numeric score: {data}")
        return None

    no_handwriting = bool(data.get("noHandwritingDetected", False)) and handwritten
    return GradingResult(
        ocr_text=_clean(data.get("ocrText")),
        score=0.0 if no_handwriting else min(100.0, max(0.0, score)),
        feedback=_clean(data.get("feedback")),
        strengths=_string_list(data.get("strengths")),
        weaknesses=_string_list(data.get("weaknesses")),
        no_handwriting_detected=no_handwriting,
    )


def _string_list(value) -> list[str]:
    if not isinstance(value, list):
        return []
    return [str(v).strip() for v in value if str(v).strip()]


# ============================================================================
# BLUEPRINT
# ============================================================================

def parse_blueprint(raw_text: str) -> StudyBlueprint | None:
    data = extract_json(raw_text)
    if not isinstance(data, dict) or not _clean(data.get("summary")):
        return None

    chapters = [
        Chapter(title=_clean(c.get("title")))
        for c in data.get("chapters") or []
        if isinstance(c, dict) and _clean(c.get("title"))
    ]
    questions = [
        PotentialQuestion(_clean(q.get("question")), _clean(q.get("answerTip")))
        for q in data.get("potentialQuestions") or []
        if isinstance(q, dict) and _clean(q.get("question"))
    ]
    terms = [
        KeyTerm(_clean(t.get("term")), _clean(t.get("definition")))
        for t in data.get("keyTerms") or []
        if isinstance(t, dict) and _clean(t.get("term"))
    ]

    mnemonic = None
    raw_mnemonic = data.get("grandMnemonic")
    if isinstance(raw_mnemonic, dict) and _clean(raw_mnemonic.get("acronym")):
        mnemonic = Mnemonic(_clean(raw_mnemonic.get("acronym")), _clean(raw_mnemonic.get("full")))

    return StudyBlueprint(
        summary=_clean(data["summary"]),
        chapters=chapters,
        potential_questions=questions,
        key_terms=terms,
        grand_mnemonic=mnemonic,
    )


def parse_chapter_details(raw_text: str) -> dict | None:
    data = extract_json(raw_text)
    if not isinstance(data, dict):
        return None
    key_points = _string_list(data.get("keyPoints"))
    if not key_points:
        return None
    return {"key_points": key_points, "mnemonic": _clean(data.get("mnemonic")) or None}
