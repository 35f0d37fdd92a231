from aiogram.types import InlineKeyboardMarkup, InlineKeyboardButton

from study_helper.models import QuizMode

MODE_CODES = {
    "mcq": QuizMode.MULTIPLE_CHOICE,
    "gap": QuizMode.FILL_GAP,
    "theory": QuizMode.THEORY,
}

QUESTION_COUNTS = [3, 5, 10, 15, 20]

OPTION_LABELS = ["A", "B", "C", "D"]


def mode_keyboard() -> InlineKeyboardMarkup:
    return InlineKeyboardMarkup(inline_keyboard=[
        [InlineKeyboardButton(text="🔘 Multiple choice", callback_data="mode:mcq")],
        [InlineKeyboardButton(text="✏️ Fill in the gap", callback_data="mode:gap")],
        [InlineKeyboardButton(text="📝 Theory (handwritten or typed)", callback_data="mode:theory")],
        [InlineKeyboardButton(text="🔙 Back", callback_data="back_to_material")],
    ])


def question_count_keyboard() -> InlineKeyboardMarkup:
    buttons = []
    for count in QUESTION_COUNTS:
        buttons.append([InlineKeyboardButton(
            text=f"{count} questions",
            callback_data=f"count:{count}",
        )])
    buttons.append([InlineKeyboardButton(text="🔙 Back to modes", callback_data="start_quiz")])
    return InlineKeyboardMarkup(inline_keyboard=buttons)


def multiple_choice_keyboard(options: list[str]) -> InlineKeyboardMarkup:
    buttons = []
    for i, option in enumerate(options[:4]):
        text = f"{OPTION_LABELS[i]}) {option}"
        if len(text) > 60:
            text = text[:57] + "..."
        buttons.append([InlineKeyboardButton(text=text, callback_data=f"ans:{i}")])
    buttons.append([InlineKeyboardButton(text="❌ Cancel quiz", callback_data="cancel_quiz")])
    return InlineKeyboardMarkup(inline_keyboard=buttons)


def cancel_keyboard() -> InlineKeyboardMarkup:
    """Keyboard shown during text-input questions."""
    return InlineKeyboardMarkup(inline_keyboard=[
        [InlineKeyboardButton(text="❌ Cancel quiz", callback_data="cancel_quiz")],
    ])


def theory_keyboard(can_give_up: bool = False) -> InlineKeyboardMarkup:
    buttons = []
    if can_give_up:
        buttons.append([InlineKeyboardButton(text="🏳 Give up this question", callback_data="give_up")])
    buttons.append([InlineKeyboardButton(text="❌ Cancel quiz", callback_data="cancel_quiz")])
    return InlineKeyboardMarkup(inline_keyboard=buttons)


def retry_grading_keyboard() -> InlineKeyboardMarkup:
    return InlineKeyboardMarkup(inline_keyboard=[
        [InlineKeyboardButton(text="🔁 Try grading again", callback_data="retry_grading")],
        [InlineKeyboardButton(text="❌ Cancel quiz", callback_data="cancel_quiz")],
    ])


def next_keyboard(is_last: bool) -> InlineKeyboardMarkup:
    text = "🏁 Finish" if is_last else "➡️ Next question"
    return InlineKeyboardMarkup(inline_keyboard=[
        [InlineKeyboardButton(text=text, callback_data="next_q")],
    ])


def results_keyboard() -> InlineKeyboardMarkup:
    return InlineKeyboardMarkup(inline_keyboard=[
        [InlineKeyboardButton(text="🔄 Retake this quiz", callback_data="restart_quiz")],
        [InlineKeyboardButton(text="🧠 New quiz on this material", callback_data="start_quiz")],
        [InlineKeyboardButton(text="🏠 Main menu", callback_data="go_home")],
    ])
