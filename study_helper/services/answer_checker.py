from study_helper.exceptions import InvalidAnswerError
from study_helper.models import FillGapQuestion, MultipleChoiceQuestion


def check_choice(question: MultipleChoiceQuestion, chosen_index: int) -> bool:
    """Check a multiple-choice answer given as an option index."""
    if not isinstance(chosen_index, int) or isinstance(chosen_index, bool):
        raise InvalidAnswerError(f"Option index must be an integer, got {chosen_index!r}")
    if not 0 <= chosen_index < len(question.options):
        raise InvalidAnswerError(f"No option number {chosen_index}")
    return chosen_index == question.correct_index


def check_gap(question: FillGapQuestion, user_answer: str) -> bool:
    """Case-insensitive, whitespace-trimmed comparison with the missing word(s)."""
    if not isinstance(user_answer, str) or not user_answer.strip():
        raise InvalidAnswerError("Answer is empty")
    return _normalize(user_answer) == _normalize(question.answer)


def _normalize(text: str) -> str:
    return text.strip().lower()
