"""Tests for the markdown vocabulary parser."""
from __future__ import annotations

from vocab_exam.models import Collection, VocabularyItem
from vocab_exam.parsers.vocabulary_parser import import_vocabulary_file, parse_vocabulary_file


class TestVocabularyParser:
    def test_sections_become_collections(self, tmp_path, vocab_md_content):
        f = tmp_path / "vocabulary.md"
        f.write_text(vocab_md_content)
        collections = parse_vocabulary_file(f)

        assert [c.name for c in collections] == ["Starter Words", "Home"]
        assert [len(c.words) for c in collections] == [2, 3]
        assert all(c.source_file == "vocabulary.md" for c in collections)
        assert all(c.visibility == "public" for c in collections)

    def test_terms_and_meanings(self, tmp_path, vocab_md_content):
        f = tmp_path / "vocabulary.md"
        f.write_text(vocab_md_content)
        home = parse_vocabulary_file(f)[1]

        assert [w.term for w in home.words] == ["house", "door", "window"]
        assert home.words[1].meaning == "qapı"

    def test_example_column(self, tmp_path, vocab_md_content):
        """Example column is kept apart from the meaning."""
        f = tmp_path / "vocabulary.md"
        f.write_text(vocab_md_content)
        starter = parse_vocabulary_file(f)[0]

        apple = starter.words[0]
        assert apple.meaning == "alma"
        assert apple.example_sentence == "An apple a day."

    def test_two_column_rows_have_no_example(self, tmp_path, vocab_md_content):
        f = tmp_path / "vocabulary.md"
        f.write_text(vocab_md_content)
        home = parse_vocabulary_file(f)[1]
        assert all(w.example_sentence is None for w in home.words)

    def test_ids_are_stable(self, tmp_path, vocab_md_content):
        f = tmp_path / "vocabulary.md"
        f.write_text(vocab_md_content)
        first = parse_vocabulary_file(f)
        second = parse_vocabulary_file(f)

        assert [c.id for c in first] == [c.id for c in second]
        assert [w.id for w in first[0].words] == [w.id for w in second[0].words]
        ids = [w.id for c in first for w in c.words]
        assert len(set(ids)) == len(ids)

    def test_rows_before_any_section(self, tmp_path):
        f = tmp_path / "loose.md"
        f.write_text("| **cat** | pişik |\n| **dog** | it |\n")
        collections = parse_vocabulary_file(f)
        assert len(collections) == 1
        assert collections[0].name == "loose"
        assert len(collections[0].words) == 2

    def test_empty_sections_dropped(self, tmp_path):
        f = tmp_path / "sparse.md"
        f.write_text("## Empty\n\nNothing here.\n\n## Full\n\n| **cat** | pişik |\n")
        assert [c.name for c in parse_vocabulary_file(f)] == ["Full"]

    def test_empty_file(self, tmp_path):
        f = tmp_path / "empty.md"
        f.write_text("# Empty\n\nNo tables here.\n")
        assert parse_vocabulary_file(f) == []


class TestImportVocabularyFile:
    def test_import_records_mtime(self, tmp_db, tmp_path, vocab_md_content):
        f = tmp_path / "vocabulary.md"
        f.write_text(vocab_md_content)
        collections = import_vocabulary_file(tmp_db, f)
        assert len(collections) == 2
        assert tmp_db.get_collection_count() == 2
        assert tmp_db.get_file_mtime(str(f)) == f.stat().st_mtime_ns

    def test_reimport_replaces_only_that_file(self, tmp_db, tmp_path, vocab_md_content):
        tmp_db.save_collection(Collection(
            id="mine", name="Mine", words=[VocabularyItem("cat", "pişik", id="w1")],
        ))
        f = tmp_path / "vocabulary.md"
        f.write_text(vocab_md_content)
        import_vocabulary_file(tmp_db, f)

        f.write_text("## Home\n\n| **door** | qapı |\n")
        import_vocabulary_file(tmp_db, f)
        assert sorted(c.name for c in tmp_db.get_collections()) == ["Home", "Mine"]
