"""Client-side checks applied before authoring data is sent to the quiz API."""

from __future__ import annotations

from quiz_portal.constants.quiz_constants import MIN_PASSWORD_LENGTH
from quiz_portal.core.models import Option, Question, QuestionType, QuizDraft


class QuizValidationError(ValueError):
    """Raised when a quiz, question or registration form fails validation."""


def true_false_options(true_is_correct: bool) -> list[Option]:
    """Return the fixed True/False option pair with the requested answer marked correct."""
    return [
        Option(text="True", is_correct=true_is_correct),
        Option(text="False", is_correct=not true_is_correct),
    ]


def validate_question(question: Question) -> Question:
    """Validate a question and return a copy with its text fields trimmed."""
    text = question.question_text.strip()
    if not text:
        raise QuizValidationError("Question text is required")
    if len(question.options) < 2:
        raise QuizValidationError("A question needs at least two options")
    if question.points <= 0:
        raise QuizValidationError("Points must be a positive number")

    options = [option.model_copy(update={"text": option.text.strip()}) for option in question.options]
    correct_count = sum(1 for option in options if option.is_correct)

    if question.question_type is QuestionType.MULTIPLE_CHOICE:
        if correct_count == 0:
            raise QuizValidationError("At least one option must be marked as correct")
        if any(not option.text for option in options):
            raise QuizValidationError("All options must have text")
    elif question.question_type is QuestionType.TRUE_FALSE:
        if correct_count != 1:
            raise QuizValidationError(
                "Exactly one option must be marked as correct for True/False questions"
            )

    return question.model_copy(update={"question_text": text, "options": options})


def validate_quiz_draft(draft: QuizDraft) -> QuizDraft:
    title = draft.title.strip()
    description = draft.description.strip()
    if not title or not description:
        raise QuizValidationError("Title and description are required")
    if draft.duration <= 0:
        raise QuizValidationError("Duration must be a positive number of minutes")
    return draft.model_copy(update={"title": title, "description": description})


def validate_registration(password: str, confirm_password: str) -> None:
    if password != confirm_password:
        raise QuizValidationError("Passwords do not match")
    if len(password) < MIN_PASSWORD_LENGTH:
        raise QuizValidationError(f"Password must be at least {MIN_PASSWORD_LENGTH} characters")
