"""Tests for scoring helpers and leaderboard ranking."""
from __future__ import annotations

import math

import pytest

from vocab_exam.models import AssessmentResult
from vocab_exam.scoring import (
    exam_grade,
    format_time,
    is_perfect,
    merge_leaderboard_users,
    percentage,
    quiz_rating,
    rank_exam_takers,
    rank_learners,
    updated_average,
    weighted_exam_score,
)


class TestPercentage:
    def test_basic(self):
        assert percentage(4, 5) == 80
        assert percentage(5, 5) == 100
        assert percentage(0, 5) == 0

    def test_rounds_half_up(self):
        assert percentage(1, 8) == 13
        assert percentage(2, 3) == 67
        assert percentage(1, 3) == 33

    def test_zero_total(self):
        assert percentage(0, 0) == 0

    def test_result_property(self):
        assert AssessmentResult(3, 4, 10).percentage == 75


class TestBands:
    @pytest.mark.parametrize("pct,grade", [
        (100, "excellent"),
        (90, "excellent"),
        (89, "good"),
        (80, "good"),
        (70, "average"),
        (60, "passing"),
        (59, "weak"),
        (0, "weak"),
    ])
    def test_exam_grade(self, pct, grade):
        assert exam_grade(pct) == grade

    @pytest.mark.parametrize("pct,rating", [
        (90, "excellent"),
        (75, "very_good"),
        (74, "good"),
        (60, "good"),
        (59, "needs_practice"),
    ])
    def test_quiz_rating(self, pct, rating):
        assert quiz_rating(pct) == rating


class TestHelpers:
    def test_format_time(self):
        assert format_time(0) == "0:00"
        assert format_time(65) == "1:05"
        assert format_time(600) == "10:00"
        assert format_time(-3) == "0:00"

    def test_is_perfect(self):
        assert is_perfect(AssessmentResult(5, 5, 30))
        assert not is_perfect(AssessmentResult(4, 5, 30))
        assert not is_perfect(AssessmentResult(0, 0, 0))

    def test_updated_average(self):
        assert updated_average(0, 0, 80) == 80
        assert updated_average(80, 1, 60) == 70
        assert updated_average(70, 2, 100) == 80


class TestLeaderboard:
    def test_weighted_score(self):
        assert weighted_exam_score(80, 4) == 160
        assert weighted_exam_score(80, 0) == 80
        assert weighted_exam_score(90, 2) == pytest.approx(90 * math.sqrt(2))

    def test_volume_beats_slightly_higher_average(self):
        users = [
            {"id": "a", "username": "a", "total_exams": 1, "average_exam_score": 100},
            {"id": "b", "username": "b", "total_exams": 4, "average_exam_score": 70},
        ]
        ranked = rank_exam_takers(users)
        assert [u["id"] for u in ranked] == ["b", "a"]
        assert ranked[0]["rank"] == 1
        assert ranked[0]["weighted_score"] == 140

    def test_tie_broken_by_exam_count(self):
        # 50 * sqrt(4) == 100 * sqrt(1)
        users = [
            {"id": "a", "username": "a", "total_exams": 1, "average_exam_score": 100},
            {"id": "b", "username": "b", "total_exams": 4, "average_exam_score": 50},
        ]
        assert [u["id"] for u in rank_exam_takers(users)] == ["b", "a"]

    def test_users_without_exams_excluded(self):
        users = [
            {"id": "a", "username": "a", "total_exams": 0, "average_exam_score": 0},
            {"id": "b", "username": "b", "total_exams": 2, "average_exam_score": 50},
        ]
        assert [u["id"] for u in rank_exam_takers(users)] == ["b"]

    def test_merge_prefers_rows_with_exams(self):
        merged = merge_leaderboard_users(
            [{"id": "a", "total_exams": 3}],
            [{"id": "a", "total_exams": 0}, {"id": "b", "total_exams": 0}],
        )
        by_id = {u["id"]: u for u in merged}
        assert by_id["a"]["total_exams"] == 3
        assert set(by_id) == {"a", "b"}

    def test_rank_learners(self):
        users = [
            {"id": "a", "learned_words": 10, "learned_collections": 1},
            {"id": "b", "learned_words": 10, "learned_collections": 2},
            {"id": "c", "learned_words": 0, "learned_collections": 0},
            {"id": "d", "learned_words": 25, "learned_collections": 1},
        ]
        ranked = rank_learners(users)
        assert [u["id"] for u in ranked] == ["d", "b", "a"]
        assert [u["rank"] for u in ranked] == [1, 2, 3]
