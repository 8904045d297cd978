"""Shared test fixtures."""
from __future__ import annotations

import pytest

from vocab_exam.db import Database
from vocab_exam.models import Collection, VocabularyItem


@pytest.fixture
def tmp_db(tmp_path):
    """Create a fresh temporary database."""
    db = Database(tmp_path / "test.db")
    yield db
    db.close()


@pytest.fixture
def sample_items():
    """Six items with distinct terms and meanings."""
    return [
        VocabularyItem("apple", "alma", id="w1"),
        VocabularyItem("book", "kitab", id="w2"),
        VocabularyItem("water", "su", id="w3", example_sentence="I drink water."),
        VocabularyItem("house", "ev", id="w4"),
        VocabularyItem("tree", "ağac", id="w5"),
        VocabularyItem("sun", "günəş", id="w6"),
    ]


@pytest.fixture
def sample_collection(sample_items):
    return Collection(
        id="c1",
        name="Basics",
        words=sample_items,
        user_id="u1",
        username="aysel",
        visibility="public",
    )


@pytest.fixture
def second_collection():
    return Collection(
        id="c2",
        name="Colours",
        words=[
            VocabularyItem("red", "qırmızı", id="w7"),
            VocabularyItem("blue", "mavi", id="w8"),
            VocabularyItem("green", "yaşıl", id="w9"),
        ],
        user_id="u2",
        username="murad",
    )


@pytest.fixture
def populated_db(tmp_db, sample_collection, second_collection):
    """A database pre-loaded with two collections."""
    tmp_db.save_collection(sample_collection)
    tmp_db.save_collection(second_collection)
    return tmp_db


@pytest.fixture
def vocab_md_content():
    """Minimal vocabulary markdown for parser testing."""
    return """\
# Vocabulary

---

## Starter Words

| Word | Meaning | Example |
|------|---------|---------|
| **apple** | alma | *An apple a day.* |
| **book** | kitab | *Read the book.* |

---

## Home

| Word | Meaning |
|------|---------|
| **house** | ev |
| **door** | qapı |
| **window** | pəncərə |
"""
