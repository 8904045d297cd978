"""CLI entry point for vocab-exam.

Usage:
  python -m vocab_exam serve [--port PORT] [--host HOST] [--no-auto-import]
  python -m vocab_exam stop
  python -m vocab_exam restart [--port PORT]
  python -m vocab_exam status
  python -m vocab_exam import
  python -m vocab_exam stats
  python -m vocab_exam leaderboard [--limit N]
"""
from __future__ import annotations

import os
import signal
import sys
from pathlib import Path

PID_FILE = Path(__file__).resolve().parent.parent / ".server.pid"


def main():
    args = sys.argv[1:]
    command = args[0] if args else "serve"

    if command == "serve":
        _serve(args[1:])
    elif command == "stop":
        _stop()
    elif command == "restart":
        _restart(args[1:])
    elif command == "status":
        _status()
    elif command == "import":
        _import_vocab()
    elif command == "stats":
        _stats()
    elif command == "leaderboard":
        _leaderboard(args[1:])
    else:
        print(f"Unknown command: {command}")
        print("Commands: serve, stop, restart, status, import, stats, leaderboard")
        sys.exit(1)


def _parse_flag(args: list[str], name: str, default: str) -> str:
    for i, a in enumerate(args):
        if a == name and i + 1 < len(args):
            return args[i + 1]
    return default


def _read_pid() -> int | None:
    """Read PID from file, return None if stale or missing."""
    if not PID_FILE.exists():
        return None
    try:
        pid = int(PID_FILE.read_text().strip())
        os.kill(pid, 0)
        return pid
    except (ValueError, ProcessLookupError, PermissionError):
        PID_FILE.unlink(missing_ok=True)
        return None


def _stop() -> bool:
    """Stop a running server. Returns True if a server was stopped."""
    pid = _read_pid()
    if pid is None:
        print("Server is not running.")
        return False
    try:
        os.kill(pid, signal.SIGTERM)
        print(f"Stopped server (PID {pid}).")
        PID_FILE.unlink(missing_ok=True)
        return True
    except ProcessLookupError:
        print("Server was not running (stale PID file removed).")
        PID_FILE.unlink(missing_ok=True)
        return False


def _status():
    pid = _read_pid()
    if pid is None:
        print("Server is not running.")
    else:
        print(f"Server is running (PID {pid}).")


def _restart(args: list[str]):
    import time
    _stop()
    time.sleep(1)
    _serve(args)


def _serve(args: list[str]):
    import uvicorn

    existing = _read_pid()
    if existing is not None:
        print(f"Server already running (PID {existing}). Use 'restart' or 'stop' first.")
        sys.exit(1)

    if "--no-auto-import" in args:
        os.environ["VOCAB_EXAM_NO_AUTO_IMPORT"] = "1"

    port = int(_parse_flag(args, "--port", "8766"))
    host = _parse_flag(args, "--host", "127.0.0.1")
    PID_FILE.write_text(str(os.getpid()))

    print(f"Starting Vocab Exam on http://{host}:{port}")
    print("Press Ctrl+C to stop\n")
    try:
        uvicorn.run(
            "vocab_exam.app:app",
            host=host,
            port=port,
            reload=False,
            timeout_graceful_shutdown=5,
        )
    finally:
        PID_FILE.unlink(missing_ok=True)
        os.environ.pop("VOCAB_EXAM_NO_AUTO_IMPORT", None)


def _import_vocab():
    from vocab_exam.config import load_settings
    from vocab_exam.db import Database
    from vocab_exam.parsers.vocabulary_parser import import_vocabulary_file

    settings = load_settings()
    db = Database(settings.db_full_path)

    for vf in settings.resolved_vocab_files():
        if not vf.exists():
            print(f"  Skipping (not found): {vf}")
            continue
        print(f"  Parsing: {vf.name}")
        collections = import_vocabulary_file(db, vf)
        words = sum(len(c.words) for c in collections)
        print(f"    {len(collections)} collections, {words} words")

    print(f"\nTotal in DB: {db.get_collection_count()} collections, {db.get_word_count()} words")
    db.close()


def _stats():
    from vocab_exam.config import load_settings
    from vocab_exam.db import Database

    settings = load_settings()
    db = Database(settings.db_full_path)
    stats = db.get_stats()

    print("Vocab Exam Stats")
    print("=" * 40)
    print(f"Collections:         {stats['total_collections']}")
    print(f"Words:               {stats['total_words']}")
    print(f"Public exams:        {stats['public_exams']}")
    print(f"Learned collections: {stats['learned_collections']}")
    print(f"Exams taken:         {stats['total_exams']}")
    print(f"Questions answered:  {stats['total_questions_answered']}")
    print(f"Overall accuracy:    {stats['accuracy']}%")
    db.close()


def _leaderboard(args: list[str]):
    from vocab_exam.config import load_settings
    from vocab_exam.db import Database
    from vocab_exam.scoring import rank_exam_takers

    limit = int(_parse_flag(args, "--limit", "10"))
    settings = load_settings()
    db = Database(settings.db_full_path)
    ranked = rank_exam_takers(db.get_leaderboard_users())[:limit]
    db.close()

    if not ranked:
        print("No exams taken yet.")
        return
    print(f"{'#':>3}  {'User':20s} {'Exams':>5} {'Avg':>5} {'Score':>6}")
    for u in ranked:
        print(
            f"{u['rank']:>3}  {u['username'][:20]:20s} {u['total_exams']:>5} "
            f"{round(u['average_exam_score']):>4}% {u['weighted_score']:>6}"
        )


if __name__ == "__main__":
    main()
