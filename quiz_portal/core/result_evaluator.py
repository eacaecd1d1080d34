"""Correctness and score helpers for displaying graded attempts.

Everything here is a pure function of its inputs. The practice server also
grades submissions with :func:`score_answers`, so client and server agree on
what counts as a correct answer.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
import math
from dataclasses import dataclass, field
from enum import Enum

from quiz_portal.constants.quiz_constants import FAIR_SCORE_PERCENT, GOOD_SCORE_PERCENT
from quiz_portal.core.models import AttemptResults, Option, Question, QuestionType


class OptionMark(str, Enum):
    """How an option is highlighted in the question breakdown."""

    SELECTED_CORRECT = "selected_correct"
    SELECTED_INCORRECT = "selected_incorrect"
    MISSED_CORRECT = "missed_correct"
    NEUTRAL = "neutral"


class PerformanceBand(str, Enum):
    GOOD = "good"
    FAIR = "fair"
    POOR = "poor"


@dataclass(slots=True)
class QuestionReview:
    question: Question
    selected_options: list[str]
    is_correct: bool
    option_marks: dict[str, OptionMark] = field(default_factory=dict)


@dataclass(slots=True)
class ResultSummary:
    score: float
    max_score: float
    percentage: int
    band: PerformanceBand
    minutes_taken: int | None
    reviews: list[QuestionReview]

    @property
    def correct_count(self) -> int:
        return sum(1 for review in self.reviews if review.is_correct)


def is_answer_correct(
    question_type: QuestionType | str,
    selected_option_ids: Iterable[str],
    options: Iterable[Option],
) -> bool:
    """Return True when the selection answers the question correctly.

    Multiple-choice answers must select exactly the set of correct options.
    True/false answers must select a single option, and it must be correct.
    """
    selected = [str(option_id) for option_id in selected_option_ids]
    correct = {str(option.id) for option in options if option.is_correct}

    if question_type == QuestionType.MULTIPLE_CHOICE:
        return len(set(selected)) == len(correct) and set(selected) == correct
    if question_type == QuestionType.TRUE_FALSE:
        return len(selected) == 1 and selected[0] in correct
    return False


def evaluate_question(question: Question, selected_option_ids: Iterable[str]) -> bool:
    return is_answer_correct(question.question_type, selected_option_ids, question.options)


def classify_option(option: Option, selected_option_ids: Iterable[str]) -> OptionMark:
    is_selected = option.id in set(selected_option_ids)
    if is_selected and option.is_correct:
        return OptionMark.SELECTED_CORRECT
    if is_selected:
        return OptionMark.SELECTED_INCORRECT
    if option.is_correct:
        return OptionMark.MISSED_CORRECT
    return OptionMark.NEUTRAL


def review_question(question: Question, selected_option_ids: Iterable[str]) -> QuestionReview:
    selected = list(selected_option_ids)
    marks = {
        option.id: classify_option(option, selected)
        for option in question.options
        if option.id is not None
    }
    return QuestionReview(
        question=question,
        selected_options=selected,
        is_correct=evaluate_question(question, selected),
        option_marks=marks,
    )


def _round_half_up(value: float) -> int:
    return math.floor(value + 0.5)


def percentage_score(score: float, max_score: float) -> int:
    if max_score <= 0:
        return 0
    return _round_half_up(score / max_score * 100)


def performance_band(percentage: int) -> PerformanceBand:
    if percentage >= GOOD_SCORE_PERCENT:
        return PerformanceBand.GOOD
    if percentage >= FAIR_SCORE_PERCENT:
        return PerformanceBand.FAIR
    return PerformanceBand.POOR


def score_answers(
    questions: Iterable[Question],
    answers: Mapping[str, Iterable[str]],
) -> tuple[float, float]:
    """Return ``(score, max_score)`` awarding each correctly answered question its points."""
    score = 0.0
    max_score = 0.0
    for question in questions:
        max_score += question.points
        if evaluate_question(question, answers.get(question.id or "", [])):
            score += question.points
    return score, max_score


def summarize_results(results: AttemptResults) -> ResultSummary | None:
    """Build the published-results view, or return None while scores are unpublished."""
    if not results.is_score_published:
        return None

    reviews = [review_question(answer.question, answer.selected_options) for answer in results.answers]
    if results.score is not None and results.max_score is not None:
        score, max_score = results.score, results.max_score
    else:
        score = float(sum(r.question.points for r in reviews if r.is_correct))
        max_score = float(sum(r.question.points for r in reviews))

    minutes_taken = None
    if results.start_time is not None and results.end_time is not None:
        elapsed = results.end_time - results.start_time
        minutes_taken = _round_half_up(elapsed.total_seconds() / 60)

    percentage = percentage_score(score, max_score)
    return ResultSummary(
        score=score,
        max_score=max_score,
        percentage=percentage,
        band=performance_band(percentage),
        minutes_taken=minutes_taken,
        reviews=reviews,
    )
