"""Pure helpers for the derived quiz and attempt values.

Stored columns such as `Quiz.total_points` or `QuizAttempt.percentage`
are always written from these functions so the numbers cannot drift
from their source fields.
"""

from __future__ import annotations

import math
from typing import Iterable, Sequence

# (label, inclusive lower bound); upper bound is the previous entry's lower bound
GRADE_BUCKETS: tuple[tuple[str, int], ...] = (
    ("A", 90),
    ("B", 80),
    ("C", 70),
    ("D", 60),
    ("F", 0),
)


def round_half_up(value: float) -> int:
    """Round to the nearest integer with .5 going up (unlike `round`)."""
    return int(math.floor(value + 0.5))


def total_points(question_points: Iterable[int]) -> int:
    return sum(question_points)


def score_answers(answers: Iterable) -> int:
    """Sum the points of every answer marked correct.

    `answers` are objects exposing `is_correct` and `points`.
    """
    return sum(a.points for a in answers if a.is_correct)


def percentage(score: int, possible: int) -> int:
    """Return `score` as a rounded percentage of `possible`.

    A quiz worth zero points yields 0 rather than a division error.
    """
    if possible <= 0:
        return 0
    return round_half_up(score / possible * 100)


def grade_bucket(pct: float) -> str:
    for label, lower in GRADE_BUCKETS:
        if pct >= lower:
            return label
    return GRADE_BUCKETS[-1][0]


def score_distribution(percentages: Iterable[float]) -> dict[str, int]:
    """Count percentages per grade bucket; every value lands in exactly one."""
    dist = {label: 0 for label, _ in GRADE_BUCKETS}
    for pct in percentages:
        dist[grade_bucket(pct)] += 1
    return dist


def average_percentage(percentages: Sequence[float]) -> int:
    if not percentages:
        return 0
    return round_half_up(sum(percentages) / len(percentages))
