from aiogram.types import Message
from aiogram.fsm.context import FSMContext

from study_helper.keyboards.quiz_kb import results_keyboard
from study_helper.models import SessionSummary
from study_helper.services.quiz_session import QuizSession
from study_helper.states.quiz_states import QuizFlow


def format_summary(summary: SessionSummary) -> str:
    if summary.is_empty:
        return "📊 This quiz had no questions to answer."

    percent = round(summary.average_score)

    # Pick an emoji based on score
    if percent >= 90:
        emoji = "🏆"
        comment = "Excellent work!"
    elif percent >= 70:
        emoji = "👍"
        comment = "Good result!"
    elif percent >= 50:
        emoji = "📖"
        comment = "Not bad, but there is room to improve."
    else:
        emoji = "💪"
        comment = "Keep practising. You'll get there!"

    return (
        f"📊 Quiz results\n\n"
        f"🧠 Mode: {summary.mode.value}\n\n"
        f"{emoji} Correct: {summary.correct_count} of {summary.total_questions}\n"
        f"📈 Average score: {percent}%\n\n"
        f"{comment}"
    )


async def show_results(message: Message, state: FSMContext, session: QuizSession):
    """Show the final quiz results; the quiz stays loaded for a retake."""
    summary = session.summary()
    await state.set_state(QuizFlow.viewing_results)
    await message.answer(format_summary(summary), reply_markup=results_keyboard())
