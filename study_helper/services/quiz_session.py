"""Quiz session state machine.

A session walks through the questions of one quiz in order, records exactly
one score per question and ends with a summary::

    AWAITING_ANSWER(i) --submit_answer--> ANSWER_RECORDED(i) --advance--> AWAITING_ANSWER(i+1)
                                                                  \\--> COMPLETE (after last)

Theory answers go through the GRADING sub-state while the external grader
runs. A grading failure or a photo without handwriting leaves the session in
AWAITING_ANSWER(i), so the same submission can be retried.
"""
import logging
import time
from dataclasses import asdict
from enum import Enum
from typing import Any, Awaitable, Callable, Optional

from study_helper.exceptions import (
    GradingError, HandwritingRetriesExhausted, InvalidAnswerError, SessionStateError,
)
from study_helper.models import (
    GradingResult, Quiz, QuizMode, QuizQuestion, SessionScore, SessionSummary,
    TheoryAnswer, TheoryQuestion,
)
from study_helper.services.answer_checker import check_choice, check_gap

logger = logging.getLogger(__name__)

Grader = Callable[[TheoryQuestion, TheoryAnswer], Awaitable[GradingResult]]

DEFAULT_HANDWRITING_RETRIES = 2
DEFAULT_PASS_SCORE = 70
WRITTEN_ANSWER_PLACEHOLDER = "Written answer"


class Phase(str, Enum):
    AWAITING_ANSWER = "awaiting_answer"
    GRADING = "grading"
    ANSWER_RECORDED = "answer_recorded"
    COMPLETE = "complete"


class QuizSession:
    """Drives one pass through a quiz.

    Args:
        quiz: The generated quiz; never modified.
        grader: Async callable grading theory answers. Required for theory quizzes.
        handwriting_retries: Photos without handwriting tolerated per question.
        pass_score: Theory score from which an answer counts as correct.
    """

    def __init__(
        self,
        quiz: Quiz,
        grader: Optional[Grader] = None,
        handwriting_retries: int = DEFAULT_HANDWRITING_RETRIES,
        pass_score: int = DEFAULT_PASS_SCORE,
    ):
        self.quiz = quiz
        self.grader = grader
        self.handwriting_retries = handwriting_retries
        self.pass_score = pass_score
        # Bumped by restart() so late grading results of a discarded run are dropped
        self._epoch = 0
        self._reset()

    def _reset(self) -> None:
        self.index = 0
        self.phase = Phase.AWAITING_ANSWER if self.quiz.questions else Phase.COMPLETE
        self._scores: list[SessionScore] = []
        self._clear_question_state()

    def _clear_question_state(self) -> None:
        self.retries_left = self.handwriting_retries
        self.draft: Optional[dict] = None
        self.last_grading: Optional[GradingResult] = None

    # ------------------------------------------------------------------
    # Read-only view
    # ------------------------------------------------------------------

    @property
    def mode(self) -> QuizMode:
        return self.quiz.mode

    @property
    def total(self) -> int:
        return len(self.quiz.questions)

    @property
    def scores(self) -> list[SessionScore]:
        return list(self._scores)

    @property
    def current_question(self) -> Optional[QuizQuestion]:
        if self.phase is Phase.COMPLETE:
            return None
        return self.quiz.questions[self.index]

    @property
    def is_last(self) -> bool:
        return self.index == self.total - 1

    @property
    def is_grading(self) -> bool:
        return self.phase is Phase.GRADING

    @property
    def handwriting_exhausted(self) -> bool:
        return self.retries_left <= 0

    @property
    def current_score(self) -> Optional[SessionScore]:
        """Score recorded for the current question, if any."""
        for entry in self._scores:
            if entry.question_idx == self.index:
                return entry
        return None

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    def _require_awaiting(self, index: int) -> None:
        if self.phase is Phase.GRADING:
            raise SessionStateError("An answer is already being graded")
        if self.phase is not Phase.AWAITING_ANSWER:
            raise SessionStateError(f"Cannot answer in state {self.phase.value}")
        if index != self.index:
            raise SessionStateError(f"Question {index} is not the current question ({self.index})")

    async def submit_answer(self, index: int, answer: Any) -> Optional[SessionScore]:
        """Score the answer to question ``index`` and record it.

        ``answer`` is an option index for multiple choice, a string for fill-gap
        and a :class:`TheoryAnswer` for theory questions.

        Returns:
            The recorded score, or None when a photo held no handwriting and
            the question stays open.

        Raises:
            SessionStateError: Not awaiting an answer for ``index``.
            InvalidAnswerError: Answer does not fit the question.
            HandwritingRetriesExhausted: Photo submitted after the retry budget ran out.
            GradingError: The grader failed; nothing was recorded.
        """
        self._require_awaiting(index)
        question = self.current_question

        if self.mode is QuizMode.MULTIPLE_CHOICE:
            is_correct = check_choice(question, answer)
            return self._record(100.0 if is_correct else 0.0, question.options[answer], is_correct)

        if self.mode is QuizMode.FILL_GAP:
            is_correct = check_gap(question, answer)
            return self._record(100.0 if is_correct else 0.0, answer.strip(), is_correct)

        return await self._grade(question, answer)

    async def _grade(self, question: TheoryQuestion, answer: Any) -> Optional[SessionScore]:
        if not isinstance(answer, TheoryAnswer):
            raise InvalidAnswerError("Theory questions take a photo or typed text")
        if not answer.is_handwritten and not (answer.text or "").strip():
            raise InvalidAnswerError("Answer is empty")
        if answer.is_handwritten and self.handwriting_exhausted:
            raise HandwritingRetriesExhausted(
                "No handwriting found too many times; type the answer or give up"
            )
        if self.grader is None:
            raise SessionStateError("Theory quiz has no grader")

        epoch = self._epoch
        self.phase = Phase.GRADING
        try:
            result = await self.grader(question, answer)
        except GradingError:
            raise
        except Exception as e:
            raise GradingError(f"Grading failed: {e}") from e
        finally:
            if epoch == self._epoch:
                self.phase = Phase.AWAITING_ANSWER

        if epoch != self._epoch:
            logger.info("Dropping grading result of a restarted session")
            return None

        self.last_grading = result
        if answer.is_handwritten and result.no_handwriting_detected:
            self.retries_left = max(0, self.retries_left - 1)
            logger.info(
                "No handwriting on question %d, %d retries left", self.index, self.retries_left
            )
            return None

        score = min(100.0, max(0.0, float(result.score)))
        if answer.is_handwritten:
            user_answer = result.ocr_text or WRITTEN_ANSWER_PLACEHOLDER
        else:
            user_answer = answer.text.strip()
        return self._record(score, user_answer, score >= self.pass_score)

    def forfeit(self, index: int) -> SessionScore:
        """Give up on the current question; records a zero score."""
        self._require_awaiting(index)
        return self._record(0.0, "", False)

    def _record(self, score: float, user_answer: str, is_correct: bool) -> SessionScore:
        if self.current_score is not None:
            raise SessionStateError(f"Question {self.index} already answered")
        entry = SessionScore(
            question_idx=self.index,
            score=score,
            user_answer=user_answer,
            is_correct=is_correct,
        )
        self._scores.append(entry)
        self.phase = Phase.ANSWER_RECORDED
        return entry

    def advance(self) -> Phase:
        """Move past an answered question."""
        if self.phase is Phase.GRADING:
            raise SessionStateError("An answer is being graded")
        if self.phase is not Phase.ANSWER_RECORDED:
            raise SessionStateError(f"Cannot advance in state {self.phase.value}")

        if self.is_last:
            self.phase = Phase.COMPLETE
        else:
            self.index += 1
            self.phase = Phase.AWAITING_ANSWER
        self._clear_question_state()
        return self.phase

    def restart(self) -> None:
        """Discard all answers and go back to the first question."""
        self._epoch += 1
        self._reset()

    def summary(self) -> SessionSummary:
        if self.phase is not Phase.COMPLETE:
            raise SessionStateError("Session is not complete")
        scores = self.scores
        average = sum(s.score for s in scores) / len(scores) if scores else 0.0
        return SessionSummary(
            mode=self.mode,
            total_questions=self.total,
            scores=scores,
            average_score=average,
            correct_count=sum(1 for s in scores if s.is_correct),
            timestamp=int(time.time() * 1000),
        )

    # ------------------------------------------------------------------
    # Persistence between chat updates
    # ------------------------------------------------------------------

    def snapshot(self) -> dict:
        """Plain-data state; an in-flight grading is not carried over."""
        phase = Phase.AWAITING_ANSWER if self.phase is Phase.GRADING else self.phase
        return {
            "index": self.index,
            "phase": phase.value,
            "scores": [asdict(s) for s in self._scores],
            "retries_left": self.retries_left,
            "draft": self.draft,
            "last_grading": asdict(self.last_grading) if self.last_grading else None,
        }

    @classmethod
    def restore(cls, quiz: Quiz, data: dict, **kwargs) -> "QuizSession":
        session = cls(quiz, **kwargs)
        if not data:
            return session
        session.index = data["index"]
        session.phase = Phase(data["phase"])
        session._scores = [SessionScore(**s) for s in data["scores"]]
        session.retries_left = data.get("retries_left", session.handwriting_retries)
        session.draft = data.get("draft")
        grading = data.get("last_grading")
        session.last_grading = GradingResult(**grading) if grading else None
        return session
