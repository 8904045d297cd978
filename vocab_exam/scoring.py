"""Score aggregation: percentages, grade bands, and leaderboard ranking."""
from __future__ import annotations

import math
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from vocab_exam.models import AssessmentResult

# Lower bounds, checked top-down; anything below the last band falls through.
EXAM_GRADES = [
    (90, "excellent"),
    (80, "good"),
    (70, "average"),
    (60, "passing"),
]

QUIZ_RATINGS = [
    (90, "excellent"),
    (75, "very_good"),
    (60, "good"),
]


def percentage(correct: int, total: int) -> int:
    """Whole-number percentage, rounding .5 up."""
    if total <= 0:
        return 0
    return math.floor(correct / total * 100 + 0.5)


def exam_grade(pct: int) -> str:
    for threshold, grade in EXAM_GRADES:
        if pct >= threshold:
            return grade
    return "weak"


def quiz_rating(pct: int) -> str:
    for threshold, rating in QUIZ_RATINGS:
        if pct >= threshold:
            return rating
    return "needs_practice"


def format_time(seconds: int) -> str:
    """Format seconds as ``m:ss``."""
    seconds = max(0, int(seconds))
    return f"{seconds // 60}:{seconds % 60:02d}"


def is_perfect(result: AssessmentResult) -> bool:
    return result.total_questions > 0 and result.correct_count == result.total_questions


def updated_average(average: float, attempts: int, new_pct: float) -> float:
    """Running mean after one more attempt scoring *new_pct*."""
    return (average * attempts + new_pct) / (attempts + 1)


# ── Leaderboard ──────────────────────────────────────────────────────────


def weighted_exam_score(average_score: float, total_exams: int) -> float:
    """Average score scaled by sqrt(participation).

    Rewards taking more exams without letting volume swamp accuracy.
    """
    return average_score * math.sqrt(max(1, total_exams))


def merge_leaderboard_users(*groups: list[dict]) -> list[dict]:
    """Merge user rows by id; a row with exams replaces one without."""
    merged: dict[str, dict] = {}
    for group in groups:
        for user in group:
            if user["id"] not in merged or user.get("total_exams", 0) > 0:
                merged[user["id"]] = user
    return list(merged.values())


def _assign_ranks(users: list[dict]) -> list[dict]:
    return [{**u, "rank": i} for i, u in enumerate(users, 1)]


def rank_exam_takers(users: list[dict]) -> list[dict]:
    takers = [u for u in users if u.get("total_exams", 0) > 0]
    takers.sort(
        key=lambda u: (
            weighted_exam_score(u["average_exam_score"], u["total_exams"]),
            u["total_exams"],
            u["average_exam_score"],
        ),
        reverse=True,
    )
    ranked = _assign_ranks(takers)
    for u in ranked:
        u["weighted_score"] = round(
            weighted_exam_score(u["average_exam_score"], u["total_exams"])
        )
    return ranked


def rank_learners(users: list[dict]) -> list[dict]:
    learners = [u for u in users if u.get("learned_words", 0) > 0]
    learners.sort(
        key=lambda u: (u["learned_words"], u.get("learned_collections", 0)),
        reverse=True,
    )
    return _assign_ranks(learners)
