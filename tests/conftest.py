"""Shared fixtures for the Study Helper tests."""
import pytest

from study_helper.config import settings
from study_helper.db import database
from study_helper.models import (
    FillGapQuestion, GradingResult, MultipleChoiceQuestion, Quiz, QuizMode, TheoryQuestion,
)


@pytest.fixture
async def db(tmp_path, monkeypatch):
    """Fresh SQLite database in a temporary directory."""
    monkeypatch.setattr(settings, "DATABASE_PATH", str(tmp_path / "test.db"))
    database._db = None
    conn = await database.get_db()
    yield conn
    await database.close_db()


@pytest.fixture
def mcq_quiz():
    """Two multiple-choice questions, correct answers B and A."""
    return Quiz(
        mode=QuizMode.MULTIPLE_CHOICE,
        questions=(
            MultipleChoiceQuestion(
                question="What do plants absorb for photosynthesis?",
                options=["Oxygen", "Carbon dioxide", "Nitrogen", "Helium"],
                correct_index=1,
                explanation="Plants take in CO2 and release oxygen.",
            ),
            MultipleChoiceQuestion(
                question="Where does photosynthesis happen?",
                options=["Chloroplast", "Nucleus", "Ribosome", "Vacuole"],
                correct_index=0,
                explanation="Chloroplasts hold chlorophyll.",
            ),
        ),
    )


@pytest.fixture
def gap_quiz():
    return Quiz(
        mode=QuizMode.FILL_GAP,
        questions=(
            FillGapQuestion(
                question="The powerhouse of the cell is the ___.",
                answer="Mitochondria",
                explanation="Mitochondria produce ATP.",
            ),
        ),
    )


@pytest.fixture
def theory_quiz():
    return Quiz(
        mode=QuizMode.THEORY,
        questions=(
            TheoryQuestion(
                question="Explain osmosis.",
                explanation="Osmosis is the movement of water across a semi-permeable membrane.",
                key_concepts=["water", "membrane", "concentration"],
            ),
            TheoryQuestion(
                question="Explain diffusion.",
                explanation="Diffusion is net movement from high to low concentration.",
            ),
        ),
    )


@pytest.fixture
def good_grade():
    return GradingResult(
        ocr_text="Water moves through a membrane",
        score=80,
        feedback="Good answer.",
        strengths=["Mentions the membrane"],
        weaknesses=["No mention of concentration"],
    )


@pytest.fixture
def no_handwriting_grade():
    return GradingResult(
        ocr_text="",
        score=0,
        feedback="The image shows a blank page.",
        no_handwriting_detected=True,
    )
