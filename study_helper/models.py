"""Data models for quizzes, grading, materials and study blueprints."""
from dataclasses import dataclass, field, asdict
from enum import Enum
from typing import List, Optional, Union


class QuizMode(str, Enum):
    """Quiz mode: decides question shape and scoring rule."""
    MULTIPLE_CHOICE = "Multiple Choice"
    FILL_GAP = "Fill in the Gap"
    THEORY = "Theory"


@dataclass(frozen=True)
class MultipleChoiceQuestion:
    """Question with four options, one of them correct."""
    question: str
    options: List[str]
    correct_index: int
    explanation: str


@dataclass(frozen=True)
class FillGapQuestion:
    """Sentence with a ___ gap and the missing word(s)."""
    question: str
    answer: str
    explanation: str


@dataclass(frozen=True)
class TheoryQuestion:
    """Open question graded against the material; explanation is a model answer."""
    question: str
    explanation: str
    key_concepts: List[str] = field(default_factory=list)


QuizQuestion = Union[MultipleChoiceQuestion, FillGapQuestion, TheoryQuestion]

QUESTION_TYPES = {
    QuizMode.MULTIPLE_CHOICE: MultipleChoiceQuestion,
    QuizMode.FILL_GAP: FillGapQuestion,
    QuizMode.THEORY: TheoryQuestion,
}


@dataclass(frozen=True)
class Quiz:
    """Generated quiz. Every question is of the variant matching ``mode``."""
    mode: QuizMode
    questions: tuple

    def __post_init__(self):
        expected = QUESTION_TYPES[self.mode]
        for q in self.questions:
            if not isinstance(q, expected):
                raise TypeError(
                    f"{self.mode.value} quiz cannot hold {type(q).__name__}"
                )

    def to_dict(self) -> dict:
        return {
            "mode": self.mode.value,
            "questions": [asdict(q) for q in self.questions],
        }

    @classmethod
    def from_dict(cls, data: dict) -> "Quiz":
        mode = QuizMode(data["mode"])
        question_cls = QUESTION_TYPES[mode]
        return cls(mode=mode, questions=tuple(question_cls(**q) for q in data["questions"]))


@dataclass
class GradingResult:
    """Evaluation of one free-form answer."""
    ocr_text: str
    score: float
    feedback: str
    strengths: List[str] = field(default_factory=list)
    weaknesses: List[str] = field(default_factory=list)
    no_handwriting_detected: bool = False


@dataclass(frozen=True)
class TheoryAnswer:
    """Free-form answer: a photo of handwriting or typed text."""
    text: Optional[str] = None
    image: Optional[bytes] = None

    @property
    def is_handwritten(self) -> bool:
        return self.image is not None


@dataclass(frozen=True)
class SessionScore:
    """Result of one answered question."""
    question_idx: int
    score: float
    user_answer: str
    is_correct: bool


@dataclass
class SessionSummary:
    """Aggregate of a finished session."""
    mode: QuizMode
    total_questions: int
    scores: List[SessionScore]
    average_score: float
    correct_count: int
    timestamp: int

    @property
    def answered(self) -> int:
        return len(self.scores)

    @property
    def is_empty(self) -> bool:
        return self.total_questions == 0


@dataclass
class SavedMaterial:
    """A unit of study text kept in the recent materials list."""
    id: str
    name: str
    content: str
    timestamp: int
    type: str  # 'file' | 'text'


# ============================================================================
# STUDY BLUEPRINT
# ============================================================================

@dataclass
class Mnemonic:
    acronym: str
    full: str


@dataclass
class Chapter:
    """Chapter of a blueprint; key points arrive in a second request."""
    title: str
    key_points: List[str] = field(default_factory=list)
    mnemonic: Optional[str] = None
    loaded: bool = False


@dataclass
class PotentialQuestion:
    question: str
    answer_tip: str


@dataclass
class KeyTerm:
    term: str
    definition: str


@dataclass
class StudyBlueprint:
    """Study map of a material."""
    summary: str
    chapters: List[Chapter] = field(default_factory=list)
    potential_questions: List[PotentialQuestion] = field(default_factory=list)
    key_terms: List[KeyTerm] = field(default_factory=list)
    grand_mnemonic: Optional[Mnemonic] = None

    @property
    def loaded_chapters(self) -> int:
        return sum(1 for c in self.chapters if c.loaded)
