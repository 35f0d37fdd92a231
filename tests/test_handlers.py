"""Tests for chat handlers (Telegram objects mocked, FSM in memory)."""
import asyncio

import pytest
from unittest.mock import AsyncMock, MagicMock, patch

from aiogram.fsm.context import FSMContext
from aiogram.fsm.storage.base import StorageKey
from aiogram.fsm.storage.memory import MemoryStorage

from study_helper.config import settings
from study_helper.exceptions import ExtractionError, GenerationError, UnsupportedFormatError
from study_helper.handlers.admin import cmd_grant, cmd_revoke
from study_helper.handlers.blueprint import split_messages
from study_helper.handlers.materials import document_received, text_received
from study_helper.handlers.plan import format_plan
from study_helper.handlers.quiz import (
    _answer_locks, answer_via_button, answer_via_photo, answer_via_text, cancel_quiz, count_selected,
    give_up, next_question, start_session,
)
from study_helper.handlers.results import format_summary
from study_helper.models import QuizMode, SessionSummary
from study_helper.services.entitlement import EntitlementContext
from study_helper.services.quiz_session import QuizSession
from study_helper.states.quiz_states import MaterialFlow, QuizFlow

USER_ID = 12345
NOTES = "Photosynthesis turns light, water and carbon dioxide into glucose and oxygen."


def _make_state() -> FSMContext:
    return FSMContext(
        storage=MemoryStorage(),
        key=StorageKey(bot_id=1, chat_id=USER_ID, user_id=USER_ID),
    )


def _make_mock_message(user_id: int = USER_ID, text: str = "") -> AsyncMock:
    """Creates a Message mock whose replies return an editable status message."""
    message = AsyncMock()
    message.from_user = MagicMock()
    message.from_user.id = user_id
    message.chat = MagicMock()
    message.chat.type = "private"
    message.text = text
    message.status = AsyncMock()
    message.answer = AsyncMock(return_value=message.status)
    message.bot = AsyncMock()
    return message


def _make_mock_callback(user_id: int = USER_ID, data: str = "") -> AsyncMock:
    callback = AsyncMock()
    callback.from_user = MagicMock()
    callback.from_user.id = user_id
    callback.data = data
    callback.message = _make_mock_message(user_id)
    callback.answer = AsyncMock()
    return callback


def _sent_texts(message) -> list[str]:
    texts = [c.args[0] for c in message.answer.call_args_list]
    texts += [c.args[0] for c in message.status.edit_text.call_args_list]
    return texts


async def _state_with_session(quiz, session: QuizSession | None = None) -> FSMContext:
    state = _make_state()
    session = session or QuizSession(quiz)
    await state.set_state(QuizFlow.answering_question)
    await state.update_data(source_text=NOTES, quiz=quiz.to_dict(), session=session.snapshot())
    return state


# ============================================================================
# MATERIALS
# ============================================================================


class TestTextReceived:

    @patch("study_helper.handlers.materials.MaterialCache")
    async def test_short_text_rejected(self, mock_cache_cls):
        message = _make_mock_message(text="too short")
        state = _make_state()

        await text_received(message, state)

        assert "at least 50 characters" in message.answer.call_args[0][0]
        mock_cache_cls.assert_not_called()
        assert await state.get_state() is None

    @patch("study_helper.handlers.materials.MaterialCache")
    async def test_pasted_text_becomes_material(self, mock_cache_cls):
        mock_cache_cls.return_value.save = AsyncMock()
        message = _make_mock_message(text=NOTES)
        state = _make_state()

        await text_received(message, state)

        mock_cache_cls.return_value.save.assert_awaited_once_with(NOTES, NOTES[:30] + "...", "text")
        assert await state.get_state() == MaterialFlow.material_ready.state
        assert (await state.get_data())["source_text"] == NOTES


class TestDocumentReceived:
    """Uploaded documents: a failed extraction saves nothing and keeps the current material."""

    async def _prepare(self):
        state = _make_state()
        await state.set_state(MaterialFlow.material_ready)
        await state.update_data(source_text=NOTES, material_name="old notes")
        return state

    def _make_document_message(self, file_size: int = 1000) -> AsyncMock:
        message = _make_mock_message()
        message.document = MagicMock()
        message.document.file_name = "lecture.pdf"
        message.document.file_size = file_size
        message.document.mime_type = "application/pdf"
        return message

    @pytest.mark.parametrize("error, reply", [
        (ExtractionError("broken"), "Failed to parse"),
        (UnsupportedFormatError("binary"), "can't read this file type"),
    ])
    @patch("study_helper.handlers.materials.extract_text", new_callable=AsyncMock)
    @patch("study_helper.handlers.materials.MaterialCache")
    async def test_extraction_failure_aborts(self, mock_cache_cls, mock_extract, error, reply):
        mock_cache_cls.return_value.save = AsyncMock()
        mock_extract.side_effect = error
        state = await self._prepare()
        message = self._make_document_message()

        await document_received(message, state)

        message.bot.download.assert_awaited_once()
        mock_cache_cls.return_value.save.assert_not_awaited()
        assert reply in message.status.edit_text.call_args[0][0]
        data = await state.get_data()
        assert data["source_text"] == NOTES
        assert data["material_name"] == "old notes"

    @patch("study_helper.handlers.materials.extract_text", new_callable=AsyncMock)
    @patch("study_helper.handlers.materials.MaterialCache")
    async def test_oversized_file_not_downloaded(self, mock_cache_cls, mock_extract):
        state = await self._prepare()
        message = self._make_document_message(file_size=settings.MAX_UPLOAD_BYTES + 1)

        await document_received(message, state)

        message.bot.download.assert_not_awaited()
        mock_extract.assert_not_awaited()
        mock_cache_cls.assert_not_called()
        assert "too large" in message.answer.call_args[0][0]
        assert (await state.get_data())["source_text"] == NOTES

    @patch("study_helper.handlers.materials.extract_text", new_callable=AsyncMock)
    @patch("study_helper.handlers.materials.MaterialCache")
    async def test_document_becomes_material(self, mock_cache_cls, mock_extract):
        mock_cache_cls.return_value.save = AsyncMock()
        mock_extract.return_value = "Cell biology lecture text"
        state = await self._prepare()
        message = self._make_document_message()

        await document_received(message, state)

        mock_cache_cls.return_value.save.assert_awaited_once_with(
            "Cell biology lecture text", "lecture.pdf", "file"
        )
        assert (await state.get_data())["source_text"] == "Cell biology lecture text"


# ============================================================================
# QUIZ GENERATION GATE
# ============================================================================


class TestCountSelected:

    async def _prepare(self):
        state = _make_state()
        await state.set_state(QuizFlow.choosing_question_count)
        await state.update_data(source_text=NOTES, mode=QuizMode.MULTIPLE_CHOICE.value)
        return state

    @patch("study_helper.handlers.quiz.generate_quiz", new_callable=AsyncMock)
    async def test_quota_exhausted_shows_upgrade(self, mock_generate):
        state = await self._prepare()
        entitlement = EntitlementContext(USER_ID, daily_quota=3)
        entitlement.usage_today = 3
        callback = _make_mock_callback(data="count:5")

        await count_selected(callback, state, entitlement)

        mock_generate.assert_not_awaited()
        text = callback.message.edit_text.call_args[0][0]
        keyboard = callback.message.edit_text.call_args[1]["reply_markup"]
        assert "daily limit of 3" in text
        assert keyboard.inline_keyboard[0][0].url.endswith(f"?user_id={USER_ID}")
        assert await state.get_state() == MaterialFlow.material_ready.state

    @patch("study_helper.services.entitlement.log_usage", new_callable=AsyncMock)
    @patch("study_helper.handlers.quiz.generate_quiz", new_callable=AsyncMock)
    async def test_generates_and_records_usage(self, mock_generate, mock_log_usage, mcq_quiz):
        mock_generate.return_value = mcq_quiz
        state = await self._prepare()
        entitlement = EntitlementContext(USER_ID, daily_quota=3)
        callback = _make_mock_callback(data="count:2")

        await count_selected(callback, state, entitlement)

        mock_generate.assert_awaited_once_with(NOTES, QuizMode.MULTIPLE_CHOICE, 2)
        mock_log_usage.assert_awaited_once_with(USER_ID, "generate_quiz")
        assert entitlement.usage_today == 1
        assert await state.get_state() == QuizFlow.answering_question.state
        assert "Question 1 of 2" in callback.message.answer.call_args[0][0]

    @patch("study_helper.services.entitlement.log_usage", new_callable=AsyncMock)
    @patch("study_helper.handlers.quiz.generate_quiz", new_callable=AsyncMock)
    async def test_failed_generation_not_counted(self, mock_generate, mock_log_usage):
        mock_generate.side_effect = GenerationError("no questions")
        state = await self._prepare()
        callback = _make_mock_callback(data="count:5")

        await count_selected(callback, state, EntitlementContext(USER_ID, daily_quota=3))

        mock_log_usage.assert_not_awaited()
        assert await state.get_state() == MaterialFlow.material_ready.state
        assert (await state.get_data())["source_text"] == NOTES


# ============================================================================
# ANSWERING
# ============================================================================


class TestAnswering:

    async def test_correct_choice(self, mcq_quiz):
        state = await _state_with_session(mcq_quiz)
        callback = _make_mock_callback(data="ans:1")

        await answer_via_button(callback, state)

        assert "Correct" in callback.message.answer.call_args[0][0]
        session = (await state.get_data())["session"]
        assert session["scores"][0]["is_correct"]
        assert session["phase"] == "answer_recorded"

    async def test_wrong_choice_shows_answer(self, mcq_quiz):
        state = await _state_with_session(mcq_quiz)
        callback = _make_mock_callback(data="ans:0")

        await answer_via_button(callback, state)

        text = callback.message.answer.call_args[0][0]
        assert "Incorrect" in text
        assert "Carbon dioxide" in text

    async def test_gap_answer(self, gap_quiz):
        state = await _state_with_session(gap_quiz)
        message = _make_mock_message(text="Mitochondria ")

        await answer_via_text(message, state)

        assert "Correct" in message.answer.call_args[0][0]

    async def test_second_answer_ignored(self, mcq_quiz):
        state = await _state_with_session(mcq_quiz)
        await answer_via_button(_make_mock_callback(data="ans:1"), state)

        await answer_via_button(_make_mock_callback(data="ans:2"), state)

        session = (await state.get_data())["session"]
        assert len(session["scores"]) == 1

    async def test_last_question_shows_results(self, gap_quiz):
        state = await _state_with_session(gap_quiz)
        await answer_via_text(_make_mock_message(text="mitochondria"), state)
        callback = _make_mock_callback(data="next_q")

        await next_question(callback, state)

        assert await state.get_state() == QuizFlow.viewing_results.state
        text = callback.message.answer.call_args[0][0]
        assert "Correct: 1 of 1" in text
        assert "100%" in text


class TestHandwrittenAnswers:

    @pytest.fixture
    def grader(self, no_handwriting_grade):
        grader = AsyncMock(return_value=no_handwriting_grade)
        with patch("study_helper.handlers.quiz.make_grader", return_value=grader):
            yield grader

    async def test_blank_photos_then_give_up(self, grader, theory_quiz):
        """Two blank photos use the retries; giving up records zero."""
        state = await _state_with_session(theory_quiz)

        for _ in range(2):
            message = _make_mock_message()
            message.photo = [MagicMock(file_id="small"), MagicMock(file_id="large")]
            await answer_via_photo(message, state)

        assert "No photo retries left" in _sent_texts(message)[-1]
        session = (await state.get_data())["session"]
        assert session["scores"] == []
        assert session["retries_left"] == 0

        third = _make_mock_message()
        third.photo = [MagicMock(file_id="again")]
        await answer_via_photo(third, state)
        assert grader.await_count == 2
        assert (await state.get_data())["session"]["scores"] == []

        callback = _make_mock_callback(data="give_up")
        await give_up(callback, state)

        session = (await state.get_data())["session"]
        assert session["scores"][0]["score"] == 0
        assert "skipped" in callback.message.answer.call_args[0][0]

    async def test_give_up_refused_before_retries_run_out(self, grader, theory_quiz):
        state = await _state_with_session(theory_quiz)
        callback = _make_mock_callback(data="give_up")

        await give_up(callback, state)

        assert (await state.get_data())["session"]["scores"] == []

    async def test_grading_failure_offers_retry(self, theory_quiz):
        grader = AsyncMock(side_effect=RuntimeError("timeout"))
        state = await _state_with_session(theory_quiz)
        message = _make_mock_message(text="Water moves across a membrane")

        with patch("study_helper.handlers.quiz.make_grader", return_value=grader):
            await answer_via_text(message, state)

        status_call = message.status.edit_text.call_args
        assert "Grading failed" in status_call[0][0]
        assert status_call[1]["reply_markup"].inline_keyboard[0][0].callback_data == "retry_grading"
        session = (await state.get_data())["session"]
        assert session["scores"] == []
        assert session["draft"] == {"text": "Water moves across a membrane"}

    async def test_photo_during_choice_question(self, mcq_quiz):
        state = await _state_with_session(mcq_quiz)
        message = _make_mock_message()
        message.photo = [MagicMock(file_id="photo")]

        await answer_via_photo(message, state)

        assert "choose one of the options" in message.answer.call_args[0][0]
        message.bot.download.assert_not_awaited()
        assert (await state.get_data())["session"]["scores"] == []


class TestCancelQuiz:
    """Cancelling discards the run, including a grading still in flight."""

    async def test_late_grade_not_written_into_new_quiz(self, theory_quiz, mcq_quiz, good_grade):
        started = asyncio.Event()
        release = asyncio.Event()

        async def slow_grader(question, answer):
            started.set()
            await release.wait()
            return good_grade

        state = await _state_with_session(theory_quiz)
        message = _make_mock_message(text="Water moves")

        with patch("study_helper.handlers.quiz.make_grader", return_value=slow_grader):
            task = asyncio.create_task(answer_via_text(message, state))
            await started.wait()

            await cancel_quiz(_make_mock_callback(data="cancel_quiz"), state)
            await state.update_data(quiz=mcq_quiz.to_dict())
            await start_session(_make_mock_message(), state, QuizSession(mcq_quiz))

            release.set()
            await task

        data = await state.get_data()
        assert data["quiz"]["mode"] == QuizMode.MULTIPLE_CHOICE.value
        assert data["session"]["scores"] == []
        assert data["session"]["phase"] == "awaiting_answer"
        message.status.delete.assert_awaited_once()
        message.status.edit_text.assert_not_awaited()

        callback = _make_mock_callback(data="ans:1")
        await answer_via_button(callback, state)
        assert "Correct" in callback.message.answer.call_args[0][0]
        assert len((await state.get_data())["session"]["scores"]) == 1

    async def test_cancel_clears_session(self, gap_quiz):
        state = await _state_with_session(gap_quiz)
        await answer_via_text(_make_mock_message(text="mitochondria"), state)
        assert USER_ID in _answer_locks

        await cancel_quiz(_make_mock_callback(data="cancel_quiz"), state)

        data = await state.get_data()
        assert data["quiz"] is None
        assert data["session"] is None
        assert await state.get_state() == MaterialFlow.material_ready.state
        assert USER_ID not in _answer_locks


# ============================================================================
# FORMATTING
# ============================================================================


class TestFormatting:

    def test_empty_summary(self):
        summary = SessionSummary(QuizMode.THEORY, 0, [], 0.0, 0, 0)

        assert "no questions" in format_summary(summary)

    def test_split_messages_respects_limit(self):
        sections = ["a" * 30, "b" * 30, "c\n" * 40]

        messages = split_messages(sections, limit=50)

        assert all(len(m) <= 50 for m in messages)
        joined = "".join(messages)
        assert joined.count("a") == 30
        assert joined.count("b") == 30
        assert joined.count("c") == 40

    def test_long_line_not_split_inside_entity(self):
        section = "x" * 45 + "&amp;" + "y" * 20

        messages = split_messages([section], limit=48)

        assert messages[0] == "x" * 45
        assert messages[1].startswith("&amp;")

    def test_long_line_not_split_inside_tag(self):
        section = "a" * 10 + "<b>" + "b" * 30 + "</b>"

        messages = split_messages([section], limit=40)

        assert messages[0] == "a" * 10
        assert messages[1] == "<b>" + "b" * 30 + "</b>"

    def test_plan_free(self):
        entitlement = EntitlementContext(USER_ID, daily_quota=3)
        entitlement.usage_today = 1

        text = format_plan(entitlement)

        assert "Free" in text
        assert "Remaining: 2" in text

    def test_plan_pro(self):
        entitlement = EntitlementContext(USER_ID)
        entitlement.subscription = {"status": "simulated_pro", "current_period_end": None}

        assert "Pro" in format_plan(entitlement)


# ============================================================================
# ADMIN
# ============================================================================


class TestAdminCommands:

    @pytest.fixture(autouse=True)
    def _admin(self, monkeypatch):
        monkeypatch.setattr(settings, "ADMIN_ID", 1)

    @patch("study_helper.handlers.admin.upsert_subscription", new_callable=AsyncMock)
    async def test_grant_by_admin(self, mock_upsert):
        message = _make_mock_message(user_id=1, text="/grant 555")

        await cmd_grant(message)

        mock_upsert.assert_awaited_once_with(555, "simulated_pro", "pro", None)

    @patch("study_helper.handlers.admin.upsert_subscription", new_callable=AsyncMock)
    async def test_grant_by_stranger_ignored(self, mock_upsert):
        message = _make_mock_message(user_id=2, text="/grant 555")

        await cmd_grant(message)

        mock_upsert.assert_not_awaited()
        message.answer.assert_not_awaited()

    @patch("study_helper.handlers.admin.cancel_subscription", new_callable=AsyncMock)
    async def test_revoke_unknown_user(self, mock_cancel):
        mock_cancel.return_value = False
        message = _make_mock_message(user_id=1, text="/revoke 555")

        await cmd_revoke(message)

        assert "no subscription" in message.answer.call_args[0][0]
