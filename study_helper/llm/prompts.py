from study_helper.models import QuizMode

QUIZ_SYSTEM = (
    "You are an expert tutor. You write exam questions strictly based on the material "
    "the student provides. Always return valid JSON. "
    "Do not mention your model name or provider in the content."
)

_MODE_FORMATS = {
    QuizMode.MULTIPLE_CHOICE: """Each question object:
{"question": "...", "options": ["...", "...", "...", "..."], "correctAnswer": 2, "explanation": "..."}
- "options" must contain exactly 4 answer texts, without "A)", "B)" prefixes.
- "correctAnswer" is the INDEX (0-3) of the correct option.
- You MUST randomize the position of the correct answer. Spread correct indices evenly over 0, 1, 2 and 3.
- Make distractors plausible but clearly wrong.""",
    QuizMode.FILL_GAP: """Each question object:
{"question": "Sentence from the material with ___ for the gap", "correctAnswer": "missing word(s)", "explanation": "..."}
- Exactly one gap, written as ___.
- "correctAnswer" is the exact missing word or short phrase.""",
    QuizMode.THEORY: """Each question object:
{"question": "...", "keyConcepts": ["...", "..."], "explanation": "model sample answer"}
- Questions require a written answer of a few sentences.
- "keyConcepts" lists the ideas a complete answer must mention.
- "explanation" is a model answer a strong student would write.""",
}


def build_quiz_prompt(source_text: str, mode: QuizMode, count: int) -> str:
    return f"""Create exactly {count} high-quality questions based on the material below.
Mode: {mode.value}.

{_MODE_FORMATS[mode]}

Rules:
1. Every question must be answerable from the material alone.
2. Give each question a short explanation (1-2 sentences) of the correct answer.
3. No two questions may test the same fact.
4. Output ONLY a JSON object of the form {{"questions": [ ... ]}}.

Material to analyze:
{source_text}"""


GRADING_SYSTEM = (
    "You are a fair but strict examiner. You grade a student's answer against reference "
    "material and reply with JSON only."
)

_GRADING_FORMAT = """Reply with a JSON object:
{"ocrText": "the student's answer as text", "score": 0-100, "feedback": "...",
 "strengths": ["..."], "weaknesses": ["..."], "noHandwritingDetected": false}"""


def build_handwriting_grading_prompt(question: str, context: str) -> str:
    return f"""Analyze this image of a handwritten answer.
Reference Material: {context}
Question: {question}

Tasks:
1. Determine if there is actually any handwriting in the image. Set "noHandwritingDetected" to true
   if the image is blank, blurry, or contains no readable handwritten text.
2. If handwriting is found:
   - Transcribe it into "ocrText".
   - Assign a score (0-100).
   - Provide feedback, strengths and weaknesses.
3. If no handwriting is found:
   - Set score to 0.
   - Briefly explain why in the feedback.

{_GRADING_FORMAT}"""


def build_typed_grading_prompt(answer: str, question: str, context: str) -> str:
    return f"""Grade this typed answer.
Reference Material: {context}
Question: {question}
Student answer: {answer}

Put the student answer unchanged into "ocrText", assign a score (0-100) and give feedback,
strengths and weaknesses. "noHandwritingDetected" is always false for typed answers.

{_GRADING_FORMAT}"""


BLUEPRINT_SYSTEM = "You are a fast educational mapper and mnemonic expert. Reply with JSON only."


def build_blueprint_prompt(source_text: str) -> str:
    return f"""Create a study map for the material below.

Reply with a JSON object:
{{"summary": "...",
  "grandMnemonic": {{"acronym": "...", "full": "..."}},
  "chapters": [{{"title": "..."}}],
  "potentialQuestions": [{{"question": "...", "answerTip": "..."}}],
  "keyTerms": [{{"term": "...", "definition": "..."}}]}}

Material:
{source_text}"""


def build_chapter_prompt(chapter_title: str, source_text: str) -> str:
    return f"""From the material below, explain the chapter "{chapter_title}".

Reply with a JSON object:
{{"keyPoints": ["3-6 short key points"], "mnemonic": "a memory hook for this chapter"}}

Material:
{source_text}"""
