"""Build multiple-choice questions from a pool of vocabulary items."""
from __future__ import annotations

import logging
import random
from collections.abc import Callable, Iterable
from typing import TypeVar

from vocab_exam.models import (
    AssessmentConfig,
    Collection,
    Direction,
    PoolPolicy,
    QuestionRecord,
    VocabularyItem,
)

_log = logging.getLogger("vocab_exam.qgen")

T = TypeVar("T")

# Mixed-mode direction weights; the remainder is a uniform tie-break.
DIRECTION_WEIGHTS = {
    Direction.ITEM_TO_MEANING: 0.40,
    Direction.MEANING_TO_ITEM: 0.40,
}

NO_COLLECTION_SELECTED = "no_collection_selected"
INSUFFICIENT_VOCABULARY = "insufficient_vocabulary"


class InsufficientDataError(Exception):
    """The pool cannot produce the requested assessment."""

    def __init__(self, reason: str, message: str):
        super().__init__(message)
        self.reason = reason
        self.message = message


def shuffle(items: Iterable[T], rng: Callable[[], float] | None = None) -> list[T]:
    """Fisher–Yates shuffle into a new list."""
    rng = rng or random.random
    result = list(items)
    for i in range(len(result) - 1, 0, -1):
        j = int(rng() * (i + 1))
        result[i], result[j] = result[j], result[i]
    return result


def dedupe_pool(pool: Iterable[VocabularyItem]) -> list[VocabularyItem]:
    """Drop duplicates by identity key (id, else term); keyless items are skipped.

    A later duplicate replaces the earlier record but keeps its position.
    """
    by_key: dict[str, VocabularyItem] = {}
    for item in pool:
        key = item.identity_key
        if key is None:
            continue
        by_key[key] = item
    return list(by_key.values())


def build_pool(
    collections: Iterable[Collection], selected_ids: Iterable[str]
) -> list[VocabularyItem]:
    """Merge the words of the selected collections into one deduplicated pool."""
    wanted = set(selected_ids)
    if not wanted:
        raise InsufficientDataError(NO_COLLECTION_SELECTED, "No collection selected.")
    selected = [c for c in collections if c.id in wanted]
    if not selected:
        raise InsufficientDataError(
            NO_COLLECTION_SELECTED, "None of the selected collections exist."
        )
    words: list[VocabularyItem] = []
    for c in selected:
        words.extend(c.words)
    return dedupe_pool(words)


def _pick_direction(rng: Callable[[], float]) -> Direction:
    r = rng()
    cumulative = 0.0
    for direction, weight in DIRECTION_WEIGHTS.items():
        cumulative += weight
        if r < cumulative:
            return direction
    return Direction.ITEM_TO_MEANING if rng() < 0.5 else Direction.MEANING_TO_ITEM


def _distractors(
    item: VocabularyItem,
    pool: list[VocabularyItem],
    direction: Direction,
    count: int,
    rng: Callable[[], float],
) -> list[str]:
    correct = item.display(direction)
    seen: set[str] = set()
    candidates: list[str] = []
    for other in pool:
        if other is item:
            continue
        text = other.display(direction)
        if text == correct or text in seen:
            continue
        seen.add(text)
        candidates.append(text)
    return shuffle(candidates, rng)[:count]


def build_question(
    item: VocabularyItem,
    pool: list[VocabularyItem],
    direction: Direction,
    variant_count: int,
    rng: Callable[[], float] | None = None,
) -> QuestionRecord:
    rng = rng or random.random
    correct = item.display(direction)
    wrong = _distractors(item, pool, direction, variant_count - 1, rng)
    options = shuffle([correct, *wrong], rng)
    return QuestionRecord(
        item=item,
        options=options,
        correct_index=options.index(correct),
        direction=direction,
    )


def generate_questions(
    pool: Iterable[VocabularyItem],
    config: AssessmentConfig,
    rng: Callable[[], float] | None = None,
) -> list[QuestionRecord]:
    """Generate an ordered, randomized question set.

    Returns ``[]`` for an empty pool. A pool smaller than
    ``config.word_count`` is clamped, or raises ``InsufficientDataError``
    under ``PoolPolicy.ERROR``.
    """
    rng = rng or random.random
    items = dedupe_pool(pool)
    if not items:
        return []

    if len(items) < config.word_count:
        if config.pool_policy == PoolPolicy.ERROR:
            raise InsufficientDataError(
                INSUFFICIENT_VOCABULARY,
                f"Not enough words: {len(items)} available, {config.word_count} required.",
            )
        _log.info(
            "Pool has %d words, %d requested; clamping", len(items), config.word_count
        )

    selected = shuffle(items, rng)[: config.word_count]

    questions: list[QuestionRecord] = []
    for item in selected:
        direction = config.direction
        if direction == Direction.MIXED:
            direction = _pick_direction(rng)
        q = build_question(item, items, direction, config.variant_count, rng)
        if len(q.options) < config.variant_count:
            _log.debug(
                "Only %d options for '%s' (%d wanted)",
                len(q.options), item.term, config.variant_count,
            )
        questions.append(q)
    return questions
