"""Utilities for importing questions from the bulk-upload spreadsheet template.

File format (CSV with a header row; one question per row):

    questionText,questionType,option1,option1Correct,option2,option2Correct,
    option3,option3Correct,option4,option4Correct,points

``questionType`` is ``multiple-choice`` or ``true-false`` (defaults to
multiple-choice). ``optionNCorrect`` accepts TRUE/FALSE, yes/no or 1/0. Empty
option cells are skipped, so true/false rows only fill the first two options.
``points`` defaults to 1.

Example:

    "What is the capital of France?",multiple-choice,"Paris",TRUE,"London",FALSE,"Berlin",FALSE,"Madrid",FALSE,1
    "The Earth is flat.",true-false,"True",FALSE,"False",TRUE,,,,,1

Rows that fail validation are reported with their line number instead of
aborting the whole import, so a lecturer can fix a few rows and re-upload.
"""

from __future__ import annotations

import csv
import io
from dataclasses import dataclass, field
from pathlib import Path

from quiz_portal.constants.quiz_constants import DEFAULT_QUESTION_POINTS
from quiz_portal.core.models import Option, Question, QuestionType
from quiz_portal.core.validation import QuizValidationError, validate_question


class QuestionImportError(ValueError):
    """Raised when a question file cannot be imported at all."""


@dataclass(slots=True)
class ImportedQuestions:
    """Container for the questions parsed from one upload file."""

    source_path: Path | None
    questions: list[Question]
    errors: list[str] = field(default_factory=list)

    @property
    def error_count(self) -> int:
        return len(self.errors)


SUPPORTED_EXTENSIONS = (".csv",)
_MAX_OPTIONS = 4
_REQUIRED_COLUMNS = ("questionText", "option1", "option2")
_TRUE_VALUES = {"true", "yes", "y", "1"}
_FALSE_VALUES = {"false", "no", "n", "0", ""}

QUESTION_TEMPLATE_CSV = (
    "questionText,questionType,option1,option1Correct,option2,option2Correct,"
    "option3,option3Correct,option4,option4Correct,points\n"
    '"What is the capital of France?",multiple-choice,"Paris",TRUE,"London",FALSE,'
    '"Berlin",FALSE,"Madrid",FALSE,1\n'
    '"The Earth is flat.",true-false,"True",FALSE,"False",TRUE,,,,,1\n'
)


def load_questions_from_file(file_path: Path) -> ImportedQuestions:
    if file_path.suffix.lower() not in SUPPORTED_EXTENSIONS:
        raise QuestionImportError("Please upload a CSV file")
    text = file_path.read_text(encoding="utf-8-sig")
    imported = parse_questions_csv(text)
    imported.source_path = file_path
    return imported


def parse_questions_csv(text: str) -> ImportedQuestions:
    reader = csv.DictReader(io.StringIO(text))
    header = [name.strip() for name in (reader.fieldnames or [])]
    missing = [column for column in _REQUIRED_COLUMNS if column not in header]
    if missing:
        raise QuestionImportError(f"CSV is missing required columns: {', '.join(missing)}")

    questions: list[Question] = []
    errors: list[str] = []
    for row in reader:
        cleaned = {(key or "").strip(): (value or "").strip() for key, value in row.items() if key}
        if not any(cleaned.values()):
            continue
        try:
            questions.append(_parse_row(cleaned))
        except QuizValidationError as exc:
            errors.append(f"Row {reader.line_num}: {exc}")

    if not questions:
        detail = f" ({errors[0]})" if errors else ""
        raise QuestionImportError(f"No valid questions found in file{detail}")
    return ImportedQuestions(source_path=None, questions=questions, errors=errors)


def write_template(file_path: Path) -> Path:
    """Write the sample upload template and return its resolved path."""
    file_path = file_path.resolve()
    file_path.parent.mkdir(parents=True, exist_ok=True)
    file_path.write_text(QUESTION_TEMPLATE_CSV, encoding="utf-8")
    return file_path


def _parse_row(row: dict[str, str]) -> Question:
    raw_type = row.get("questionType", "").lower() or QuestionType.MULTIPLE_CHOICE.value
    try:
        question_type = QuestionType(raw_type)
    except ValueError as exc:
        raise QuizValidationError(f"Unknown question type '{raw_type}'") from exc

    options: list[Option] = []
    for number in range(1, _MAX_OPTIONS + 1):
        text = row.get(f"option{number}", "")
        if not text:
            continue
        options.append(Option(text=text, is_correct=_parse_flag(row.get(f"option{number}Correct", ""))))

    raw_points = row.get("points", "")
    try:
        points = int(float(raw_points)) if raw_points else DEFAULT_QUESTION_POINTS
    except ValueError as exc:
        raise QuizValidationError(f"Points must be a number, got '{raw_points}'") from exc

    question = Question(
        question_text=row.get("questionText", ""),
        question_type=question_type,
        options=options,
        points=points,
    )
    return validate_question(question)


def _parse_flag(value: str) -> bool:
    lowered = value.strip().lower()
    if lowered in _TRUE_VALUES:
        return True
    if lowered in _FALSE_VALUES:
        return False
    raise QuizValidationError(f"Correct flags must be TRUE or FALSE, got '{value}'")
