from __future__ import annotations

import json
import sqlite3
import uuid
from datetime import datetime, timezone
from pathlib import Path

from vocab_exam.models import AssessmentResult, Collection, VocabularyItem
from vocab_exam.scoring import merge_leaderboard_users, percentage, updated_average

SCHEMA = """
CREATE TABLE IF NOT EXISTS users (
    id TEXT PRIMARY KEY,
    username TEXT NOT NULL,
    created_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS collections (
    id TEXT PRIMARY KEY,
    name TEXT NOT NULL,
    description TEXT DEFAULT '',
    user_id TEXT DEFAULT '',
    username TEXT DEFAULT '',
    visibility TEXT DEFAULT 'private',
    rating REAL DEFAULT 0,
    usage_count INTEGER DEFAULT 0,
    tags_json TEXT DEFAULT '[]',
    source_file TEXT DEFAULT '',
    created_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS words (
    id TEXT NOT NULL,
    collection_id TEXT NOT NULL REFERENCES collections(id),
    position INTEGER NOT NULL,
    term TEXT NOT NULL,
    meaning TEXT NOT NULL,
    example_sentence TEXT,
    word_type TEXT,
    PRIMARY KEY (collection_id, id)
);

CREATE TABLE IF NOT EXISTS exam_results (
    id TEXT PRIMARY KEY,
    user_id TEXT NOT NULL,
    settings_json TEXT NOT NULL,
    score INTEGER NOT NULL,
    total_questions INTEGER NOT NULL,
    time_spent INTEGER NOT NULL,
    auto_submitted INTEGER DEFAULT 0,
    public_exam_id TEXT,
    completed_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS public_exams (
    id TEXT PRIMARY KEY,
    name TEXT NOT NULL,
    description TEXT DEFAULT '',
    user_id TEXT NOT NULL,
    username TEXT DEFAULT '',
    settings_json TEXT NOT NULL,
    embedded_words_json TEXT,
    collections_json TEXT DEFAULT '[]',
    created_at TEXT NOT NULL,
    total_attempts INTEGER DEFAULT 0,
    average_score REAL DEFAULT 0,
    rating REAL DEFAULT 0
);

CREATE TABLE IF NOT EXISTS learned_collections (
    user_id TEXT NOT NULL,
    collection_id TEXT NOT NULL,
    learned_at TEXT NOT NULL,
    perfect_score_count INTEGER DEFAULT 1,
    embedded_json TEXT,
    PRIMARY KEY (user_id, collection_id)
);

CREATE TABLE IF NOT EXISTS file_mtimes (
    file_path TEXT PRIMARY KEY,
    mtime_ns INTEGER NOT NULL
);
"""


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def _row_to_item(row: sqlite3.Row) -> VocabularyItem:
    return VocabularyItem(
        term=row["term"],
        meaning=row["meaning"],
        id=row["id"],
        example_sentence=row["example_sentence"],
        word_type=row["word_type"],
    )


class Database:
    def __init__(self, db_path: Path):
        self.db_path = db_path
        self.conn = sqlite3.connect(str(db_path), check_same_thread=False)
        self.conn.row_factory = sqlite3.Row
        self.conn.execute("PRAGMA journal_mode=WAL")
        self._init_schema()

    def _init_schema(self) -> None:
        self.conn.executescript(SCHEMA)
        self.conn.commit()

    def close(self) -> None:
        self.conn.close()

    # ── Users ─────────────────────────────────────────────────────────────

    def ensure_user(self, user_id: str, username: str = "") -> None:
        self.conn.execute(
            "INSERT OR IGNORE INTO users (id, username, created_at) VALUES (?, ?, ?)",
            (user_id, username or user_id, _now()),
        )
        self.conn.commit()

    # ── Collections ───────────────────────────────────────────────────────

    def save_collection(self, c: Collection) -> str:
        """Insert or replace a collection and its words. Words without an id get one."""
        self.conn.execute(
            "INSERT OR REPLACE INTO collections "
            "(id, name, description, user_id, username, visibility, rating, "
            "usage_count, tags_json, source_file, created_at) "
            "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
            (
                c.id, c.name, c.description, c.user_id, c.username, c.visibility,
                c.rating, c.usage_count, json.dumps(c.tags), c.source_file, _now(),
            ),
        )
        self.conn.execute("DELETE FROM words WHERE collection_id = ?", (c.id,))
        for pos, w in enumerate(c.words):
            self.conn.execute(
                "INSERT OR REPLACE INTO words "
                "(id, collection_id, position, term, meaning, example_sentence, word_type) "
                "VALUES (?, ?, ?, ?, ?, ?, ?)",
                (w.id or uuid.uuid4().hex, c.id, pos, w.term, w.meaning,
                 w.example_sentence, w.word_type),
            )
        if c.user_id:
            self.ensure_user(c.user_id, c.username)
        self.conn.commit()
        return c.id

    def delete_collections_by_source(self, source_file: str) -> int:
        """Remove collections (and their words) imported from *source_file*."""
        ids = [
            row[0]
            for row in self.conn.execute(
                "SELECT id FROM collections WHERE source_file = ?", (source_file,)
            ).fetchall()
        ]
        for cid in ids:
            self.conn.execute("DELETE FROM words WHERE collection_id = ?", (cid,))
        self.conn.execute("DELETE FROM collections WHERE source_file = ?", (source_file,))
        self.conn.commit()
        return len(ids)

    def _collection_from_row(self, row: sqlite3.Row) -> Collection:
        return Collection(
            id=row["id"],
            name=row["name"],
            words=self.get_words(row["id"]),
            description=row["description"] or "",
            user_id=row["user_id"] or "",
            username=row["username"] or "",
            visibility=row["visibility"],
            rating=row["rating"],
            usage_count=row["usage_count"],
            tags=json.loads(row["tags_json"] or "[]"),
            source_file=row["source_file"] or "",
        )

    def get_collection(self, collection_id: str) -> Collection | None:
        row = self.conn.execute(
            "SELECT * FROM collections WHERE id = ?", (collection_id,)
        ).fetchone()
        return self._collection_from_row(row) if row else None

    def get_collections(self, user_id: str | None = None) -> list[Collection]:
        """All collections, or those visible to *user_id* (own + public)."""
        if user_id is None:
            rows = self.conn.execute("SELECT * FROM collections ORDER BY name").fetchall()
        else:
            rows = self.conn.execute(
                "SELECT * FROM collections WHERE user_id = ? OR visibility = 'public' "
                "ORDER BY name",
                (user_id,),
            ).fetchall()
        return [self._collection_from_row(r) for r in rows]

    def get_collections_by_ids(self, ids: list[str]) -> list[Collection]:
        if not ids:
            return []
        marks = ",".join("?" * len(ids))
        rows = self.conn.execute(
            f"SELECT * FROM collections WHERE id IN ({marks})", tuple(ids)
        ).fetchall()
        return [self._collection_from_row(r) for r in rows]

    def get_collection_count(self) -> int:
        return self.conn.execute("SELECT COUNT(*) FROM collections").fetchone()[0]

    def increment_usage(self, collection_id: str) -> None:
        self.conn.execute(
            "UPDATE collections SET usage_count = usage_count + 1 WHERE id = ?",
            (collection_id,),
        )
        self.conn.commit()

    # ── Words ─────────────────────────────────────────────────────────────

    def get_words(self, collection_id: str) -> list[VocabularyItem]:
        rows = self.conn.execute(
            "SELECT * FROM words WHERE collection_id = ? ORDER BY position",
            (collection_id,),
        ).fetchall()
        return [_row_to_item(r) for r in rows]

    def get_pool(self, collection_ids: list[str]) -> list[VocabularyItem]:
        """Words of the given collections, in collection then position order."""
        pool: list[VocabularyItem] = []
        for cid in collection_ids:
            pool.extend(self.get_words(cid))
        return pool

    def get_word_count(self) -> int:
        return self.conn.execute("SELECT COUNT(*) FROM words").fetchone()[0]

    # ── File mtimes ───────────────────────────────────────────────────────

    def get_file_mtime(self, file_path: str) -> int | None:
        row = self.conn.execute(
            "SELECT mtime_ns FROM file_mtimes WHERE file_path = ?", (file_path,)
        ).fetchone()
        return row[0] if row else None

    def set_file_mtime(self, file_path: str, mtime_ns: int) -> None:
        self.conn.execute(
            "INSERT OR REPLACE INTO file_mtimes (file_path, mtime_ns) VALUES (?, ?)",
            (file_path, mtime_ns),
        )
        self.conn.commit()

    # ── Exam results ──────────────────────────────────────────────────────

    def save_exam_result(
        self,
        user_id: str,
        result: AssessmentResult,
        settings: dict,
        public_exam_id: str | None = None,
    ) -> str:
        result_id = uuid.uuid4().hex
        self.ensure_user(user_id)
        self.conn.execute(
            "INSERT INTO exam_results "
            "(id, user_id, settings_json, score, total_questions, time_spent, "
            "auto_submitted, public_exam_id, completed_at) "
            "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)",
            (
                result_id, user_id, json.dumps(settings), result.correct_count,
                result.total_questions, result.elapsed_seconds,
                1 if result.auto_submitted else 0, public_exam_id, _now(),
            ),
        )
        self.conn.commit()
        return result_id

    def get_exam_results(self, user_id: str, limit: int = 20) -> list[dict]:
        rows = self.conn.execute(
            "SELECT * FROM exam_results WHERE user_id = ? "
            "ORDER BY completed_at DESC LIMIT ?",
            (user_id, limit),
        ).fetchall()
        results = []
        for r in rows:
            d = dict(r)
            d["settings"] = json.loads(d.pop("settings_json"))
            d["auto_submitted"] = bool(d["auto_submitted"])
            d["percentage"] = percentage(d["score"], d["total_questions"])
            results.append(d)
        return results

    # ── Public exams ──────────────────────────────────────────────────────

    def save_public_exam(
        self,
        user_id: str,
        username: str,
        name: str,
        settings: dict,
        collections: list[Collection],
        description: str = "",
    ) -> str:
        """Store an exam with a snapshot of its words, independent of the collections."""
        exam_id = uuid.uuid4().hex
        words = [w.to_dict() for c in collections for w in c.words]
        meta = [{"id": c.id, "name": c.name, "word_count": len(c.words)} for c in collections]
        self.ensure_user(user_id, username)
        self.conn.execute(
            "INSERT INTO public_exams "
            "(id, name, description, user_id, username, settings_json, "
            "embedded_words_json, collections_json, created_at) "
            "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)",
            (
                exam_id, name, description, user_id, username, json.dumps(settings),
                json.dumps(words), json.dumps(meta), _now(),
            ),
        )
        self.conn.commit()
        return exam_id

    def _public_exam_from_row(self, row: sqlite3.Row) -> dict:
        d = dict(row)
        d["settings"] = json.loads(d.pop("settings_json"))
        raw_words = d.pop("embedded_words_json")
        # Exams saved before snapshots existed have no embedded words
        d["embedded_words"] = (
            [VocabularyItem.from_dict(w) for w in json.loads(raw_words)]
            if raw_words else None
        )
        d["collections"] = json.loads(d.pop("collections_json") or "[]")
        return d

    def get_public_exam(self, exam_id: str) -> dict | None:
        row = self.conn.execute(
            "SELECT * FROM public_exams WHERE id = ?", (exam_id,)
        ).fetchone()
        return self._public_exam_from_row(row) if row else None

    def get_public_exams(self, limit: int = 50) -> list[dict]:
        rows = self.conn.execute(
            "SELECT * FROM public_exams ORDER BY created_at DESC LIMIT ?", (limit,)
        ).fetchall()
        return [self._public_exam_from_row(r) for r in rows]

    def update_exam_stats(self, exam_id: str, score: int, total_questions: int) -> None:
        row = self.conn.execute(
            "SELECT total_attempts, average_score FROM public_exams WHERE id = ?",
            (exam_id,),
        ).fetchone()
        if row is None:
            raise KeyError(f"public exam {exam_id} not found")
        attempts = row["total_attempts"]
        new_avg = updated_average(
            row["average_score"], attempts, percentage(score, total_questions)
        )
        self.conn.execute(
            "UPDATE public_exams SET total_attempts = ?, average_score = ? WHERE id = ?",
            (attempts + 1, new_avg, exam_id),
        )
        self.conn.commit()

    # ── Learned collections ───────────────────────────────────────────────

    def mark_collection_learned(self, user_id: str, collection_id: str) -> int:
        """Record a perfect run; returns the collection's perfect-score count."""
        collection = self.get_collection(collection_id)
        if collection is None:
            raise KeyError(f"collection {collection_id} not found")
        embedded = json.dumps({
            "name": collection.name,
            "words": [w.to_dict() for w in collection.words],
        })
        self.ensure_user(user_id)
        self.conn.execute(
            "INSERT INTO learned_collections "
            "(user_id, collection_id, learned_at, perfect_score_count, embedded_json) "
            "VALUES (?, ?, ?, 1, ?) "
            "ON CONFLICT(user_id, collection_id) DO UPDATE SET "
            "perfect_score_count = perfect_score_count + 1, learned_at = excluded.learned_at",
            (user_id, collection_id, _now(), embedded),
        )
        self.conn.commit()
        row = self.conn.execute(
            "SELECT perfect_score_count FROM learned_collections "
            "WHERE user_id = ? AND collection_id = ?",
            (user_id, collection_id),
        ).fetchone()
        return row[0]

    def is_collection_learned(self, user_id: str, collection_id: str) -> bool:
        row = self.conn.execute(
            "SELECT 1 FROM learned_collections WHERE user_id = ? AND collection_id = ?",
            (user_id, collection_id),
        ).fetchone()
        return row is not None

    # ── Leaderboard ───────────────────────────────────────────────────────

    def get_leaderboard_users(self) -> list[dict]:
        """Per-user totals feeding the leaderboard rankings."""
        def blank(user_id: str, username: str, joined_at: str | None) -> dict:
            return {
                "id": user_id,
                "username": username,
                "joined_at": joined_at,
                "total_collections": 0,
                "public_collections": 0,
                "total_words": 0,
                "total_usage": 0,
                "learned_collections": 0,
                "learned_words": 0,
                "total_exams": 0,
                "average_exam_score": 0.0,
                "perfect_exams": 0,
            }

        users = {
            r["id"]: blank(r["id"], r["username"], r["created_at"])
            for r in self.conn.execute("SELECT * FROM users").fetchall()
        }

        for r in self.conn.execute("""
            SELECT c.user_id,
                   COUNT(*) AS total_collections,
                   SUM(c.visibility = 'public') AS public_collections,
                   SUM(c.usage_count) AS total_usage,
                   SUM((SELECT COUNT(*) FROM words w WHERE w.collection_id = c.id))
                       AS total_words
            FROM collections c
            WHERE c.user_id != ''
            GROUP BY c.user_id
        """).fetchall():
            if r["user_id"] in users:
                users[r["user_id"]].update(
                    total_collections=r["total_collections"],
                    public_collections=r["public_collections"] or 0,
                    total_usage=r["total_usage"] or 0,
                    total_words=r["total_words"] or 0,
                )

        for r in self.conn.execute("""
            SELECT user_id, embedded_json FROM learned_collections
        """).fetchall():
            if r["user_id"] in users:
                u = users[r["user_id"]]
                u["learned_collections"] += 1
                words = json.loads(r["embedded_json"] or "{}").get("words", [])
                u["learned_words"] += len(words)

        # Results can outlive their user row; those takers still rank
        takers: dict[str, dict] = {}
        for r in self.conn.execute("""
            SELECT user_id, score, total_questions FROM exam_results
            ORDER BY completed_at
        """).fetchall():
            uid = r["user_id"]
            if uid not in takers:
                base = users.get(uid) or blank(uid, uid, None)
                takers[uid] = dict(base)
            u = takers[uid]
            pct = percentage(r["score"], r["total_questions"])
            u["average_exam_score"] = updated_average(
                u["average_exam_score"], u["total_exams"], pct
            )
            u["total_exams"] += 1
            if pct == 100:
                u["perfect_exams"] += 1

        return merge_leaderboard_users(list(users.values()), list(takers.values()))

    # ── Stats ─────────────────────────────────────────────────────────────

    def get_stats(self) -> dict:
        exams = self.conn.execute(
            "SELECT COUNT(*) AS cnt, COALESCE(SUM(score), 0) AS correct, "
            "COALESCE(SUM(total_questions), 0) AS total FROM exam_results"
        ).fetchone()
        public = self.conn.execute("SELECT COUNT(*) FROM public_exams").fetchone()[0]
        learned = self.conn.execute("SELECT COUNT(*) FROM learned_collections").fetchone()[0]
        return {
            "total_collections": self.get_collection_count(),
            "total_words": self.get_word_count(),
            "public_exams": public,
            "learned_collections": learned,
            "total_exams": exams["cnt"],
            "total_questions_answered": exams["total"],
            "accuracy": (
                round(exams["correct"] / exams["total"] * 100, 1)
                if exams["total"] > 0
                else 0
            ),
        }
