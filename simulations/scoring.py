"""
Scoring engine.

Pure functions only: no ORM access, no clock, inputs are never mutated.
The services layer adapts model rows into ``ScoredQuestion`` / ``Answer``
before calling ``score`` and persists the returned ``ScoreResult``.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Iterable, Optional, Sequence


@dataclass(frozen=True)
class Rubric:
    correct_points: float = 1.0
    wrong_points: float = 0.0
    blank_points: float = 0.0
    passing_score: Optional[float] = None
    max_score: Optional[float] = None


@dataclass(frozen=True)
class ScoredQuestion:
    question_id: Any
    subject: str
    correct_option_id: Any = None
    # per-question overrides; None falls back to the rubric
    points: Optional[float] = None
    negative_points: Optional[float] = None


@dataclass(frozen=True)
class Answer:
    question_id: Any
    selected_option_id: Any = None
    answer_text: str = ""
    time_spent_seconds: int = 0


@dataclass(frozen=True)
class EvaluatedAnswer:
    question_id: Any
    selected_option_id: Any
    is_correct: Optional[bool]  # None = blank
    earned_points: float


@dataclass(frozen=True)
class SubjectScore:
    subject: str
    correct: int
    wrong: int
    blank: int
    total: int
    percentage: int

    def as_dict(self) -> dict:
        return {
            "subject": self.subject,
            "correct": self.correct,
            "wrong": self.wrong,
            "blank": self.blank,
            "total": self.total,
            "percentage": self.percentage,
        }


@dataclass(frozen=True)
class ScoreResult:
    total_score: float
    correct_count: int
    wrong_count: int
    blank_count: int
    passed: bool
    percentage_score: float
    evaluated: tuple = field(default_factory=tuple)
    subjects: tuple = field(default_factory=tuple)

    @property
    def total_questions(self) -> int:
        return self.correct_count + self.wrong_count + self.blank_count

    @property
    def subject_breakdown(self) -> list:
        return [s.as_dict() for s in self.subjects]

    @property
    def best_subject(self) -> Optional[SubjectScore]:
        return best_subject(self.subjects)

    @property
    def worst_subject(self) -> Optional[SubjectScore]:
        return worst_subject(self.subjects)


def round_half_up(value: float) -> int:
    return int(Decimal(str(value)).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def _is_blank(answer: Optional[Answer]) -> bool:
    # typed text on an open question is graded by hand, not here
    return answer is None or answer.selected_option_id is None


def evaluate(answer: Optional[Answer], question: ScoredQuestion, rubric: Rubric) -> EvaluatedAnswer:
    selected = answer.selected_option_id if answer is not None else None

    if _is_blank(answer):
        return EvaluatedAnswer(question.question_id, selected, None, float(rubric.blank_points))

    correct = (
        question.correct_option_id is not None
        and str(selected) == str(question.correct_option_id)
    )
    if correct:
        pts = question.points if question.points is not None else rubric.correct_points
    else:
        pts = question.negative_points if question.negative_points is not None else rubric.wrong_points
    return EvaluatedAnswer(question.question_id, selected, correct, float(pts))


def subject_breakdown(questions: Sequence[ScoredQuestion], evaluated: Sequence[EvaluatedAnswer]) -> list:
    """
    Group by subject in first-appearance order, then sort by percentage desc.
    ``sorted`` is stable, so equal percentages keep first-appearance order.
    """
    buckets: dict = {}
    for q, ev in zip(questions, evaluated):
        b = buckets.setdefault(q.subject, {"correct": 0, "wrong": 0, "blank": 0})
        if ev.is_correct is None:
            b["blank"] += 1
        elif ev.is_correct:
            b["correct"] += 1
        else:
            b["wrong"] += 1

    rows = []
    for subject, b in buckets.items():
        total = b["correct"] + b["wrong"] + b["blank"]
        pct = round_half_up(b["correct"] / total * 100) if total else 0
        rows.append(SubjectScore(subject, b["correct"], b["wrong"], b["blank"], total, pct))

    return sorted(rows, key=lambda s: -s.percentage)


def best_subject(subjects: Sequence[SubjectScore]) -> Optional[SubjectScore]:
    return subjects[0] if subjects else None


def worst_subject(subjects: Sequence[SubjectScore]) -> Optional[SubjectScore]:
    return subjects[-1] if subjects else None


def score(answers: Iterable[Answer], questions: Sequence[ScoredQuestion], rubric: Rubric) -> ScoreResult:
    """
    Score one answer set against the ordered question list.

    Questions with no answer in ``answers`` are blank. Answers for questions
    that are not in ``questions`` are ignored.
    """
    by_question = {str(a.question_id): a for a in answers}

    evaluated = tuple(
        evaluate(by_question.get(str(q.question_id)), q, rubric) for q in questions
    )

    correct = sum(1 for e in evaluated if e.is_correct is True)
    wrong = sum(1 for e in evaluated if e.is_correct is False)
    blank = sum(1 for e in evaluated if e.is_correct is None)
    total = sum(e.earned_points for e in evaluated)

    passed = rubric.passing_score is None or total >= rubric.passing_score
    pct = (total / rubric.max_score * 100) if rubric.max_score else 0.0

    return ScoreResult(
        total_score=total,
        correct_count=correct,
        wrong_count=wrong,
        blank_count=blank,
        passed=passed,
        percentage_score=pct,
        evaluated=evaluated,
        subjects=tuple(subject_breakdown(questions, evaluated)),
    )
