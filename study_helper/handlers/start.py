from aiogram import Router, F
from aiogram.filters import CommandStart, Command
from aiogram.types import Message, CallbackQuery
from aiogram.fsm.context import FSMContext

from study_helper.keyboards.main_menu import main_menu_keyboard
from study_helper.db.queries import ensure_user

router = Router()

WELCOME_TEXT = (
    "👋 Hi! I'm Study Helper.\n\n"
    "Send me your notes or a document (PDF, DOCX, PPTX, TXT) and I will quiz you on it, "
    "build a study map, and grade your handwritten or typed answers.\n\n"
    "What would you like to do?"
)

HELP_TEXT = (
    "ℹ️ How it works\n\n"
    "1. 📄 Add material: paste at least 50 characters of text or upload a file.\n"
    "2. 🧠 Pick a quiz mode: multiple choice, fill in the gap, or theory.\n"
    "3. 📝 For theory questions send a photo of your handwritten answer or type it.\n"
    "4. 🗺 Or ask for a study blueprint with chapters, key terms and mnemonics.\n\n"
    "Free plan: 3 generations a day. /plan shows your limits."
)


@router.message(CommandStart())
async def cmd_start(message: Message, state: FSMContext):
    await state.clear()
    await ensure_user(message.from_user.id, message.from_user.username, message.from_user.first_name)
    await message.answer(WELCOME_TEXT, reply_markup=main_menu_keyboard())


@router.message(Command("help"))
async def cmd_help(message: Message):
    await message.answer(HELP_TEXT, reply_markup=main_menu_keyboard())


@router.callback_query(F.data == "go_home")
async def go_home(callback: CallbackQuery, state: FSMContext):
    await state.clear()
    await callback.message.edit_text(WELCOME_TEXT, reply_markup=main_menu_keyboard())
    await callback.answer()
