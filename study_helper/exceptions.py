"""Custom exceptions for the study helper."""


class StudyHelperError(Exception):
    """Base exception for study helper errors."""
    pass


class ExtractionError(StudyHelperError):
    """Document could not be turned into text."""
    pass


class UnsupportedFormatError(ExtractionError):
    """Document format is not recognised and is not plain text."""
    pass


class GenerationError(StudyHelperError):
    """LLM failed to produce a usable quiz or blueprint."""
    pass


class GradingError(StudyHelperError):
    """LLM failed to grade an answer."""
    pass


class SessionStateError(StudyHelperError):
    """Operation is not allowed in the current quiz session state."""
    pass


class HandwritingRetriesExhausted(SessionStateError):
    """No photo retries left for the current theory question."""
    pass


class InvalidAnswerError(StudyHelperError):
    """Answer does not fit the question (bad option index, empty text)."""
    pass


class UsageLimitExceeded(StudyHelperError):
    """Free daily generation quota used up."""

    def __init__(self, used: int, quota: int):
        super().__init__(f"Daily limit reached: {used}/{quota}")
        self.used = used
        self.quota = quota


class WebhookSignatureError(StudyHelperError):
    """Payment webhook signature is missing or wrong."""
    pass
