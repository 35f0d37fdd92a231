from aiogram.fsm.state import StatesGroup, State


class MaterialFlow(StatesGroup):
    waiting_for_material = State()
    material_ready = State()
    building_blueprint = State()


class QuizFlow(StatesGroup):
    choosing_mode = State()
    choosing_question_count = State()
    generating_quiz = State()
    answering_question = State()
    viewing_results = State()
