from __future__ import annotations

import json
from dataclasses import dataclass, field
from pathlib import Path

from vocab_exam.models import AssessmentConfig, Direction, PoolPolicy

CONFIG_PATH = Path(__file__).resolve().parent.parent / "config.json"

DEFAULTS = {
    "default_word_count": 20,
    "default_variant_count": 4,
    "default_time_limit_minutes": 10,
    "max_word_count": 100,
    "quiz_direction": "mixed",
    "auto_advance": True,
    "on_insufficient_pool": "clamp",
    "tick_interval_seconds": 1.0,
    "session_retention_seconds": 300,
    "vocab_files": [],
    "db_path": "vocab_exam.db",
}


@dataclass
class Settings:
    default_word_count: int = DEFAULTS["default_word_count"]
    default_variant_count: int = DEFAULTS["default_variant_count"]
    default_time_limit_minutes: int = DEFAULTS["default_time_limit_minutes"]
    max_word_count: int = DEFAULTS["max_word_count"]
    quiz_direction: str = DEFAULTS["quiz_direction"]
    auto_advance: bool = DEFAULTS["auto_advance"]
    on_insufficient_pool: str = DEFAULTS["on_insufficient_pool"]
    tick_interval_seconds: float = DEFAULTS["tick_interval_seconds"]
    session_retention_seconds: int = DEFAULTS["session_retention_seconds"]
    vocab_files: list[str] = field(default_factory=lambda: list(DEFAULTS["vocab_files"]))
    db_path: str = DEFAULTS["db_path"]

    @property
    def project_root(self) -> Path:
        return Path(__file__).resolve().parent.parent

    @property
    def data_dir(self) -> Path:
        return self.project_root / "data"

    @property
    def db_full_path(self) -> Path:
        return self.project_root / self.db_path

    def resolved_vocab_files(self) -> list[Path]:
        if self.vocab_files:
            root = self.project_root
            return [root / f for f in self.vocab_files]
        return sorted(self.data_dir.glob("*.md"))

    def exam_config(
        self,
        word_count: int | None = None,
        variant_count: int | None = None,
        time_limit_minutes: int | None = None,
        direction: str | None = None,
    ) -> AssessmentConfig:
        """Build an exam config, filling gaps from the defaults.

        Raises ``ValueError`` for out-of-range values.
        """
        count = word_count if word_count is not None else self.default_word_count
        return AssessmentConfig(
            word_count=min(count, self.max_word_count),
            variant_count=variant_count if variant_count is not None else self.default_variant_count,
            time_limit_minutes=(
                time_limit_minutes if time_limit_minutes is not None
                else self.default_time_limit_minutes
            ),
            direction=Direction(direction or Direction.ITEM_TO_MEANING),
            pool_policy=PoolPolicy(self.on_insufficient_pool),
        )

    def quiz_config(self, word_count: int, direction: str | None = None) -> AssessmentConfig:
        """Untimed practice quiz over *word_count* words."""
        return AssessmentConfig(
            word_count=max(1, word_count),
            variant_count=self.default_variant_count,
            time_limit_minutes=None,
            direction=Direction(direction or self.quiz_direction),
            pool_policy=PoolPolicy.CLAMP,
        )

    def validate(self) -> None:
        """Raise ``ValueError`` if any assessment built from these settings would be invalid."""
        try:
            self.exam_config()
            self.quiz_config(1)
        except TypeError as e:
            raise ValueError(str(e)) from e
        for name in ("max_word_count", "session_retention_seconds"):
            value = getattr(self, name)
            if not isinstance(value, int) or value < 0:
                raise ValueError(f"{name} must be a non-negative integer (got {value!r})")
        if not isinstance(self.tick_interval_seconds, (int, float)) or self.tick_interval_seconds <= 0:
            raise ValueError(
                f"tick_interval_seconds must be positive (got {self.tick_interval_seconds!r})"
            )
        if not isinstance(self.vocab_files, list) or not all(
            isinstance(f, str) for f in self.vocab_files
        ):
            raise ValueError("vocab_files must be a list of paths")

    def to_dict(self) -> dict:
        return {
            "default_word_count": self.default_word_count,
            "default_variant_count": self.default_variant_count,
            "default_time_limit_minutes": self.default_time_limit_minutes,
            "max_word_count": self.max_word_count,
            "quiz_direction": self.quiz_direction,
            "auto_advance": self.auto_advance,
            "on_insufficient_pool": self.on_insufficient_pool,
            "tick_interval_seconds": self.tick_interval_seconds,
            "session_retention_seconds": self.session_retention_seconds,
            "vocab_files": self.vocab_files,
            "db_path": self.db_path,
        }


def load_settings() -> Settings:
    if CONFIG_PATH.exists():
        raw = json.loads(CONFIG_PATH.read_text())
        # Migrate: quiz_mode (old hyphenated names) -> quiz_direction
        if "quiz_mode" in raw:
            legacy = {
                "english-to-meaning": "item_to_meaning",
                "meaning-to-english": "meaning_to_item",
                "mixed": "mixed",
            }
            raw.setdefault("quiz_direction", legacy.get(raw["quiz_mode"], "mixed"))
            del raw["quiz_mode"]
        known = {f.name for f in Settings.__dataclass_fields__.values()}
        filtered = {k: v for k, v in raw.items() if k in known}
        return Settings(**filtered)
    return Settings()


def save_settings(settings: Settings) -> None:
    CONFIG_PATH.write_text(json.dumps(settings.to_dict(), indent=4) + "\n")
