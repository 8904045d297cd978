from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum


class Direction(str, Enum):
    ITEM_TO_MEANING = "item_to_meaning"
    MEANING_TO_ITEM = "meaning_to_item"
    MIXED = "mixed"  # config only; questions always carry a concrete direction


class AnswerEditPolicy(str, Enum):
    LOCK_FIRST = "lock_first"  # practice quiz
    EDITABLE = "editable"  # timed exam


class PoolPolicy(str, Enum):
    CLAMP = "clamp"
    ERROR = "error"


@dataclass(frozen=True)
class VocabularyItem:
    term: str
    meaning: str
    id: str | None = None
    example_sentence: str | None = None
    word_type: str | None = None

    @property
    def identity_key(self) -> str | None:
        return self.id or self.term or None

    def display(self, direction: Direction) -> str:
        """The string shown as an answer option for *direction*."""
        if direction == Direction.MEANING_TO_ITEM:
            return self.term
        return self.meaning

    def prompt(self, direction: Direction) -> str:
        """The string shown as the question for *direction*."""
        if direction == Direction.MEANING_TO_ITEM:
            return self.meaning
        return self.term

    @classmethod
    def from_dict(cls, data: dict) -> VocabularyItem:
        # Older records stored the term under "word" or "english"
        term = data.get("term") or data.get("word") or data.get("english") or ""
        return cls(
            term=term.strip(),
            meaning=(data.get("meaning") or "").strip(),
            id=data.get("id") or None,
            example_sentence=data.get("example_sentence") or data.get("exampleSentence"),
            word_type=data.get("word_type") or data.get("type"),
        )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "term": self.term,
            "meaning": self.meaning,
            "example_sentence": self.example_sentence,
            "word_type": self.word_type,
        }


@dataclass
class Collection:
    id: str
    name: str
    words: list[VocabularyItem] = field(default_factory=list)
    description: str = ""
    user_id: str = ""
    username: str = ""
    visibility: str = "private"  # public | private
    rating: float = 0.0
    usage_count: int = 0
    tags: list[str] = field(default_factory=list)
    source_file: str = ""


@dataclass(frozen=True)
class QuestionRecord:
    item: VocabularyItem
    options: list[str]
    correct_index: int
    direction: Direction

    @property
    def correct_answer(self) -> str:
        return self.options[self.correct_index]

    @property
    def prompt(self) -> str:
        return self.item.prompt(self.direction)


@dataclass
class AssessmentConfig:
    word_count: int = 20
    variant_count: int = 4
    time_limit_minutes: int | None = 10  # None = untimed
    direction: Direction = Direction.ITEM_TO_MEANING
    pool_policy: PoolPolicy = PoolPolicy.CLAMP

    def __post_init__(self) -> None:
        self.direction = Direction(self.direction)
        self.pool_policy = PoolPolicy(self.pool_policy)
        if self.word_count < 1:
            raise ValueError(f"word_count must be at least 1 (got {self.word_count})")
        if self.variant_count < 2:
            raise ValueError(f"variant_count must be at least 2 (got {self.variant_count})")
        if self.time_limit_minutes is not None and self.time_limit_minutes < 1:
            raise ValueError(
                f"time_limit_minutes must be at least 1 or None (got {self.time_limit_minutes})"
            )

    @property
    def time_budget_seconds(self) -> int | None:
        if self.time_limit_minutes is None:
            return None
        return self.time_limit_minutes * 60


@dataclass(frozen=True)
class AssessmentResult:
    correct_count: int
    total_questions: int
    elapsed_seconds: int
    auto_submitted: bool = False

    @property
    def percentage(self) -> int:
        from vocab_exam.scoring import percentage
        return percentage(self.correct_count, self.total_questions)

    def to_dict(self) -> dict:
        return {
            "correct_count": self.correct_count,
            "total_questions": self.total_questions,
            "elapsed_seconds": self.elapsed_seconds,
            "auto_submitted": self.auto_submitted,
            "percentage": self.percentage,
        }
