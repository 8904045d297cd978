"""Parse markdown vocabulary tables into Collection objects.

Each ``## Section`` becomes one collection. Table rows carry a bold term,
a meaning, and an optional example column:

  | **word** | meaning | *Example sentence.* |
  | **word** | meaning |
"""
from __future__ import annotations

import hashlib
import re
from pathlib import Path
from typing import TYPE_CHECKING

from vocab_exam.models import Collection, VocabularyItem

if TYPE_CHECKING:
    from vocab_exam.db import Database


def _stable_id(*parts: str) -> str:
    return hashlib.sha256("\x1f".join(parts).encode()).hexdigest()[:16]


def parse_vocabulary_file(path: Path) -> list[Collection]:
    text = path.read_text()
    source = path.name
    collections: list[Collection] = []
    current: Collection | None = None

    for line in text.splitlines():
        m = re.match(r"^## (.+)", line)
        if m:
            title = m.group(1).strip()
            current = Collection(
                id=_stable_id(source, title),
                name=title,
                visibility="public",
                source_file=source,
            )
            collections.append(current)
            continue

        if not line.startswith("|"):
            continue

        m = re.match(r"\|\s*\*\*(.+?)\*\*\s*\|\s*(.+?)\s*\|(.*)", line)
        if not m:
            continue
        if current is None:
            # Rows before any section header go into a collection named after the file
            current = Collection(
                id=_stable_id(source, path.stem),
                name=path.stem,
                visibility="public",
                source_file=source,
            )
            collections.append(current)

        term = m.group(1).strip()
        meaning = m.group(2).strip()
        example = m.group(3).strip().strip("|").strip().strip("*").strip() or None
        current.words.append(VocabularyItem(
            term=term,
            meaning=meaning,
            id=_stable_id(current.id, term),
            example_sentence=example,
        ))

    return [c for c in collections if c.words]


def import_vocabulary_file(db: Database, path: Path) -> list[Collection]:
    """Replace the collections previously imported from *path* and record its mtime."""
    db.delete_collections_by_source(path.name)
    collections = parse_vocabulary_file(path)
    for c in collections:
        db.save_collection(c)
    db.set_file_mtime(str(path), path.stat().st_mtime_ns)
    return collections
