import asyncio
import html
import io
import logging

from aiogram import Router, F
from aiogram.types import Message, CallbackQuery
from aiogram.fsm.context import FSMContext

from study_helper.config import settings
from study_helper.exceptions import (
    GenerationError, GradingError, HandwritingRetriesExhausted, InvalidAnswerError,
    SessionStateError, UsageLimitExceeded,
)
from study_helper.handlers.results import show_results
from study_helper.keyboards.main_menu import upgrade_keyboard
from study_helper.keyboards.materials_kb import material_actions_keyboard
from study_helper.keyboards.quiz_kb import (
    MODE_CODES, OPTION_LABELS, cancel_keyboard, mode_keyboard, multiple_choice_keyboard,
    next_keyboard, question_count_keyboard, retry_grading_keyboard, theory_keyboard,
)
from study_helper.models import (
    GradingResult, MultipleChoiceQuestion, FillGapQuestion, Quiz, QuizMode, SessionScore,
    TheoryAnswer,
)
from study_helper.services.entitlement import EntitlementContext
from study_helper.services.grader import make_grader
from study_helper.services.quiz_generator import generate_quiz
from study_helper.services.quiz_session import Phase, QuizSession
from study_helper.states.quiz_states import MaterialFlow, QuizFlow

logger = logging.getLogger(__name__)

router = Router()

# One answer being processed per user at a time
_answer_locks: dict[int, asyncio.Lock] = {}

BUSY_MSG = "⏳ Still grading your previous answer, please wait..."


def _get_lock(user_id: int) -> asyncio.Lock:
    if user_id not in _answer_locks:
        _answer_locks[user_id] = asyncio.Lock()
    return _answer_locks[user_id]


def _release_lock(user_id: int):
    """Forget the lock of a user unless an answer is being processed."""
    lock = _answer_locks.get(user_id)
    if lock is not None and not lock.locked():
        del _answer_locks[user_id]


def limit_reached_text(error: UsageLimitExceeded) -> str:
    return (
        f"🚫 You have reached your daily limit of {error.quota} generations.\n\n"
        "Upgrade to Pro for unlimited quizzes and study blueprints!"
    )


def upgrade_url(user_id: int) -> str:
    return f"{settings.UPGRADE_URL}?user_id={user_id}"


# ============================================================================
# SESSION PERSISTENCE
# ============================================================================

def load_session(data: dict) -> QuizSession:
    """Rebuild the session stored in FSM data."""
    quiz = Quiz.from_dict(data["quiz"])
    return QuizSession.restore(
        quiz,
        data.get("session"),
        grader=make_grader(data.get("source_text", "")),
        handwriting_retries=settings.HANDWRITING_RETRIES,
        pass_score=settings.PASS_SCORE,
    )


async def save_session(state: FSMContext, session: QuizSession):
    await state.update_data(session=session.snapshot())


async def new_run(state: FSMContext) -> int:
    """Start a new quiz run; results of older runs are discarded."""
    data = await state.get_data()
    run_id = data.get("run_id", 0) + 1
    await state.update_data(run_id=run_id)
    return run_id


async def is_stale(state: FSMContext, run_id: int | None) -> bool:
    """True when the run was cancelled or replaced while we were waiting."""
    data = await state.get_data()
    return data.get("run_id") != run_id


# ============================================================================
# FORMATTING
# ============================================================================

def format_question(session: QuizSession) -> str:
    q = session.current_question
    header = f"❓ Question {session.index + 1} of {session.total}\n\n"
    text = header + f"<b>{html.escape(q.question)}</b>"

    if isinstance(q, MultipleChoiceQuestion):
        options = "\n".join(
            f"{OPTION_LABELS[i]}) {html.escape(opt)}" for i, opt in enumerate(q.options)
        )
        return text + "\n\n" + options
    if isinstance(q, FillGapQuestion):
        return text + "\n\n✏️ Type the missing word(s):"
    return text + "\n\n📝 Send a photo of your handwritten answer, or type it as a message."


def format_feedback(session: QuizSession, score: SessionScore) -> str:
    q = session.current_question

    if session.mode is QuizMode.THEORY:
        return _format_grading(score, session.last_grading, q.explanation)

    if score.is_correct:
        text = "✅ Correct!"
    else:
        if isinstance(q, MultipleChoiceQuestion):
            correct = f"{OPTION_LABELS[q.correct_index]}) {q.options[q.correct_index]}"
        else:
            correct = q.answer
        text = f"❌ Incorrect.\n\n📝 Correct answer: {html.escape(correct)}"

    if q.explanation:
        text += f"\n\n💡 {html.escape(q.explanation)}"
    return text


def _format_grading(score: SessionScore, grading: GradingResult | None, model_answer: str) -> str:
    mark = "✅" if score.is_correct else "❌"
    lines = [f"{mark} Score: {round(score.score)}/100"]
    if grading is None:
        lines.append("🏳 Question skipped.")
    else:
        if grading.ocr_text:
            lines.append(f"\n🔎 Your answer as read:\n<i>{html.escape(grading.ocr_text)}</i>")
        if grading.feedback:
            lines.append(f"\n💬 {html.escape(grading.feedback)}")
        if grading.strengths:
            lines.append("\n👍 Strengths:")
            lines.extend(f"• {html.escape(s)}" for s in grading.strengths)
        if grading.weaknesses:
            lines.append("\n⚠️ To improve:")
            lines.extend(f"• {html.escape(w)}" for w in grading.weaknesses)
    if model_answer:
        lines.append(f"\n📘 Model answer:\n{html.escape(model_answer)}")
    return "\n".join(lines)


def _no_handwriting_text(session: QuizSession) -> str:
    feedback = session.last_grading.feedback if session.last_grading else ""
    text = "🤔 I couldn't find any handwriting in that photo."
    if feedback:
        text += f"\n{html.escape(feedback)}"
    if session.handwriting_exhausted:
        text += (
            "\n\nNo photo retries left for this question. "
            "Type your answer as a message, or give up on this question."
        )
    else:
        text += f"\n\nPlease retake the photo. Retries left: {session.retries_left}"
    return text


# ============================================================================
# QUIZ SETUP
# ============================================================================

@router.callback_query(F.data == "start_quiz")
async def choose_mode(callback: CallbackQuery, state: FSMContext):
    data = await state.get_data()
    if not data.get("source_text"):
        await callback.answer("Add some material first.", show_alert=True)
        return
    await state.set_state(QuizFlow.choosing_mode)
    await callback.message.edit_text("🧠 Choose a quiz mode:", reply_markup=mode_keyboard())
    await callback.answer()


@router.callback_query(QuizFlow.choosing_mode, F.data.startswith("mode:"))
async def mode_selected(callback: CallbackQuery, state: FSMContext):
    code = callback.data.split(":", 1)[1]
    mode = MODE_CODES.get(code)
    if mode is None:
        await callback.answer()
        return

    await state.update_data(mode=mode.value)
    await state.set_state(QuizFlow.choosing_question_count)
    await callback.message.edit_text(
        f"🧠 Mode: {mode.value}\n\nHow many questions?",
        reply_markup=question_count_keyboard(),
    )
    await callback.answer()


@router.callback_query(QuizFlow.choosing_question_count, F.data.startswith("count:"))
async def count_selected(callback: CallbackQuery, state: FSMContext, entitlement: EntitlementContext):
    count = int(callback.data.split(":")[1])
    data = await state.get_data()
    mode = QuizMode(data["mode"])
    source_text = data.get("source_text", "")

    try:
        entitlement.check()
    except UsageLimitExceeded as e:
        await state.set_state(MaterialFlow.material_ready)
        await callback.message.edit_text(
            limit_reached_text(e),
            reply_markup=upgrade_keyboard(upgrade_url(callback.from_user.id)),
        )
        await callback.answer()
        return

    await state.set_state(QuizFlow.generating_quiz)
    await callback.message.edit_text(
        f"⏳ Generating your quiz...\n\n"
        f"🧠 Mode: {mode.value}\n"
        f"❓ Questions: {count}\n\n"
        f"This usually takes 10-30 seconds."
    )
    await callback.answer()

    try:
        quiz = await generate_quiz(source_text, mode, count)
    except GenerationError as e:
        logger.error("Quiz generation failed for user %d: %s", callback.from_user.id, e)
        await state.set_state(MaterialFlow.material_ready)
        await callback.message.edit_text(
            "😞 Failed to generate the quiz. Your material is kept, please try again.",
            reply_markup=material_actions_keyboard(),
        )
        return

    await entitlement.record("generate_quiz")

    session = load_session({"quiz": quiz.to_dict(), "source_text": source_text})
    await state.update_data(quiz=quiz.to_dict())
    await start_session(callback.message, state, session)


async def start_session(message: Message, state: FSMContext, session: QuizSession):
    await new_run(state)
    await state.set_state(QuizFlow.answering_question)
    await save_session(state, session)
    await send_current_question(message, session)


async def send_current_question(message: Message, session: QuizSession):
    q = session.current_question
    if isinstance(q, MultipleChoiceQuestion):
        keyboard = multiple_choice_keyboard(q.options)
    elif isinstance(q, FillGapQuestion):
        keyboard = cancel_keyboard()
    else:
        keyboard = theory_keyboard(can_give_up=session.handwriting_exhausted)
    await message.answer(format_question(session), reply_markup=keyboard, parse_mode="HTML")


# ============================================================================
# ANSWERS
# ============================================================================

async def _submit(message: Message, state: FSMContext, user_id: int, answer, draft: dict | None = None):
    """Submit an answer for the current question and reply with the outcome."""
    lock = _get_lock(user_id)
    if lock.locked():
        await message.answer(BUSY_MSG)
        return

    async with lock:
        data = await state.get_data()
        if not data.get("quiz"):
            return
        session = load_session(data)
        run_id = data.get("run_id")

        status = None
        if session.mode is QuizMode.THEORY:
            session.draft = draft
            status = await message.answer("⏳ Grading your answer...")

        try:
            score = await session.submit_answer(session.index, answer)
        except HandwritingRetriesExhausted:
            await _replace(status, message,
                           "📵 No photo retries left for this question. Type your answer or give up.",
                           theory_keyboard(can_give_up=True))
            return
        except InvalidAnswerError:
            await _replace(status, message, "✏️ Please send a valid answer.", None)
            return
        except SessionStateError as e:
            logger.info("Ignored answer from user %d: %s", user_id, e)
            if status is not None:
                await status.delete()
            return
        except GradingError as e:
            logger.error("Grading failed for user %d: %s", user_id, e)
            if await _drop_if_stale(state, run_id, status, user_id):
                return
            await save_session(state, session)
            await _replace(status, message,
                           "😞 Grading failed. Your answer was not recorded, you can try again.",
                           retry_grading_keyboard())
            return

        if await _drop_if_stale(state, run_id, status, user_id):
            return
        await save_session(state, session)

        if score is None:
            await _replace(status, message, _no_handwriting_text(session),
                           theory_keyboard(can_give_up=session.handwriting_exhausted))
            return

        await _replace(status, message, format_feedback(session, score), next_keyboard(session.is_last))


async def _drop_if_stale(state: FSMContext, run_id: int | None, status: Message | None, user_id: int) -> bool:
    """Discard a result that arrived after the quiz was cancelled or restarted."""
    if not await is_stale(state, run_id):
        return False
    logger.info("Dropping answer of a finished quiz run for user %d", user_id)
    if status is not None:
        await status.delete()
    return True


async def _replace(status: Message | None, message: Message, text: str, keyboard):
    """Edit the status message if there is one, otherwise send a new message."""
    if status is not None:
        await status.edit_text(text, reply_markup=keyboard, parse_mode="HTML")
    else:
        await message.answer(text, reply_markup=keyboard, parse_mode="HTML")


@router.callback_query(QuizFlow.answering_question, F.data.startswith("ans:"))
async def answer_via_button(callback: CallbackQuery, state: FSMContext):
    """Multiple-choice answer from the inline keyboard."""
    await callback.answer()
    await callback.message.edit_reply_markup(reply_markup=None)
    await _submit(callback.message, state, callback.from_user.id, int(callback.data.split(":", 1)[1]))


@router.message(QuizFlow.answering_question, F.photo)
async def answer_via_photo(message: Message, state: FSMContext):
    """Photo of a handwritten theory answer."""
    data = await state.get_data()
    if not data.get("quiz"):
        return
    mode = QuizMode(data["quiz"]["mode"])
    if mode is QuizMode.MULTIPLE_CHOICE:
        await message.answer("Please choose one of the options above.")
        return
    if mode is QuizMode.FILL_GAP:
        await message.answer("Please type the missing word(s) as a message.")
        return

    photo = message.photo[-1]
    with io.BytesIO() as buffer:
        await message.bot.download(photo, destination=buffer)
        image = buffer.getvalue()
    await _submit(message, state, message.from_user.id, TheoryAnswer(image=image),
                  draft={"photo_file_id": photo.file_id})


@router.message(QuizFlow.answering_question, F.text)
async def answer_via_text(message: Message, state: FSMContext):
    """Typed answer: the missing word(s) or a theory answer."""
    data = await state.get_data()
    if not data.get("quiz"):
        return
    mode = QuizMode(data["quiz"]["mode"])
    text = message.text.strip()
    if not text:
        await message.answer("Please type your answer:")
        return

    if mode is QuizMode.MULTIPLE_CHOICE:
        await message.answer("Please choose one of the options above.")
    elif mode is QuizMode.FILL_GAP:
        await _submit(message, state, message.from_user.id, text)
    else:
        await _submit(message, state, message.from_user.id, TheoryAnswer(text=text), draft={"text": text})


@router.callback_query(QuizFlow.answering_question, F.data == "retry_grading")
async def retry_grading(callback: CallbackQuery, state: FSMContext):
    """Resubmit the last theory answer after a grading failure."""
    await callback.answer()
    data = await state.get_data()
    draft = (data.get("session") or {}).get("draft") or {}

    if "text" in draft:
        answer = TheoryAnswer(text=draft["text"])
    elif "photo_file_id" in draft:
        with io.BytesIO() as buffer:
            await callback.bot.download(draft["photo_file_id"], destination=buffer)
            answer = TheoryAnswer(image=buffer.getvalue())
    else:
        await callback.message.answer("Nothing to retry. Send your answer again.")
        return

    await _submit(callback.message, state, callback.from_user.id, answer, draft=draft)


@router.callback_query(QuizFlow.answering_question, F.data == "give_up")
async def give_up(callback: CallbackQuery, state: FSMContext):
    await callback.answer()
    lock = _get_lock(callback.from_user.id)
    if lock.locked():
        await callback.message.answer(BUSY_MSG)
        return

    async with lock:
        data = await state.get_data()
        if not data.get("quiz"):
            return
        session = load_session(data)
        if session.mode is not QuizMode.THEORY or not session.handwriting_exhausted:
            await callback.message.answer("You can only give up after the photo retries run out.")
            return
        try:
            score = session.forfeit(session.index)
        except SessionStateError as e:
            logger.info("Ignored give up from user %d: %s", callback.from_user.id, e)
            return
        session.last_grading = None
        if await _drop_if_stale(state, data.get("run_id"), None, callback.from_user.id):
            return
        await save_session(state, session)
        await callback.message.answer(
            format_feedback(session, score),
            reply_markup=next_keyboard(session.is_last),
            parse_mode="HTML",
        )


@router.callback_query(QuizFlow.answering_question, F.data == "next_q")
async def next_question(callback: CallbackQuery, state: FSMContext):
    await callback.answer()
    lock = _get_lock(callback.from_user.id)
    if lock.locked():
        await callback.message.answer(BUSY_MSG)
        return

    async with lock:
        session = load_session(await state.get_data())
        try:
            phase = session.advance()
        except SessionStateError as e:
            logger.info("Ignored next from user %d: %s", callback.from_user.id, e)
            return
        await save_session(state, session)

    await callback.message.edit_reply_markup(reply_markup=None)
    if phase is Phase.COMPLETE:
        await show_results(callback.message, state, session)
        return
    await send_current_question(callback.message, session)


@router.callback_query(F.data == "cancel_quiz")
async def cancel_quiz(callback: CallbackQuery, state: FSMContext):
    """Discard the whole session and go back to the material."""
    await new_run(state)
    await state.update_data(quiz=None, session=None)
    _release_lock(callback.from_user.id)
    await state.set_state(MaterialFlow.material_ready)
    await callback.message.answer(
        "Quiz cancelled. Your material is still loaded.",
        reply_markup=material_actions_keyboard(),
    )
    await callback.answer()


@router.callback_query(QuizFlow.viewing_results, F.data == "restart_quiz")
async def restart_quiz(callback: CallbackQuery, state: FSMContext):
    """Retake the same quiz from the first question."""
    await callback.answer()
    data = await state.get_data()
    if not data.get("quiz"):
        return
    session = load_session(data)
    session.restart()
    await start_session(callback.message, state, session)
