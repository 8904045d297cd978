"""Assessment session state machine and its countdown timer.

A session moves through::

    loading -> ready -> in_progress <-> confirming -> finished
       \\-> errored

``finalize()`` is the single exit into ``finished``. It is one-shot, so a
manual submit racing the countdown's auto-submit produces exactly one
result.
"""
from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable, Iterable
from enum import Enum

from vocab_exam.models import (
    AnswerEditPolicy,
    AssessmentConfig,
    AssessmentResult,
    Collection,
    QuestionRecord,
    VocabularyItem,
)
from vocab_exam.question_generator import (
    INSUFFICIENT_VOCABULARY,
    NO_COLLECTION_SELECTED,
    InsufficientDataError,
    build_pool,
    generate_questions,
)

_log = logging.getLogger("vocab_exam.session")


class SessionStatus(str, Enum):
    LOADING = "loading"
    READY = "ready"
    IN_PROGRESS = "in_progress"
    CONFIRMING = "confirming"
    FINISHED = "finished"
    ERRORED = "errored"


# Statuses in which the clock runs and answers may change.
RUNNING = (SessionStatus.IN_PROGRESS, SessionStatus.CONFIRMING)


class InvalidTransition(Exception):
    """Operation not allowed in the session's current status."""


def timer_level(remaining_seconds: int | None) -> str:
    if remaining_seconds is None:
        return "normal"
    if remaining_seconds <= 60:
        return "critical"
    if remaining_seconds <= 300:
        return "warning"
    return "normal"


class AssessmentSession:
    def __init__(
        self,
        config: AssessmentConfig,
        answer_policy: AnswerEditPolicy = AnswerEditPolicy.EDITABLE,
        rng: Callable[[], float] | None = None,
        on_finish: Callable[[AssessmentResult], None] | None = None,
    ):
        self.config = config
        self.answer_policy = AnswerEditPolicy(answer_policy)
        self.rng = rng
        self.status = SessionStatus.LOADING
        self.questions: list[QuestionRecord] = []
        self.answers: dict[int, int] = {}
        self.current_index = 0
        self.remaining_seconds: int | None = config.time_budget_seconds
        self.elapsed_seconds = 0
        self.error: dict | None = None
        self.result: AssessmentResult | None = None
        self._finish_callbacks: list[Callable[[AssessmentResult], None]] = []
        if on_finish is not None:
            self._finish_callbacks.append(on_finish)
        self._timer: CountdownTimer | None = None

    # ── Loading ───────────────────────────────────────────────────────────

    def load(self, pool: Iterable[VocabularyItem] | None) -> None:
        """Generate questions; ``None`` means no collection was selected."""
        self._require(SessionStatus.LOADING)
        if pool is None:
            self._fail(NO_COLLECTION_SELECTED, "No collection selected.")
            return
        try:
            questions = generate_questions(pool, self.config, self.rng)
        except InsufficientDataError as e:
            self._fail(e.reason, e.message)
            return
        if not questions:
            self._fail(INSUFFICIENT_VOCABULARY, "Not enough words to build an assessment.")
            return
        self.questions = questions
        self.status = SessionStatus.READY

    def load_collections(
        self, collections: Iterable[Collection], selected_ids: Iterable[str]
    ) -> None:
        self._require(SessionStatus.LOADING)
        try:
            pool = build_pool(collections, selected_ids)
        except InsufficientDataError as e:
            self._fail(e.reason, e.message)
            return
        self.load(pool)

    def _fail(self, reason: str, message: str) -> None:
        _log.info("Session errored: %s", message)
        self.status = SessionStatus.ERRORED
        self.error = {"reason": reason, "message": message}

    # ── Running ───────────────────────────────────────────────────────────

    def start(self) -> None:
        self._require(SessionStatus.READY)
        self.remaining_seconds = self.config.time_budget_seconds
        self.elapsed_seconds = 0
        self.status = SessionStatus.IN_PROGRESS

    def select_answer(self, question_index: int, option_index: int) -> bool:
        """Record an answer. Returns False if a locked answer was kept."""
        self._require(*RUNNING)
        self._check_question_index(question_index)
        options = self.questions[question_index].options
        if not 0 <= option_index < len(options):
            raise IndexError(f"option index {option_index} out of range")
        if self.answer_policy == AnswerEditPolicy.LOCK_FIRST and question_index in self.answers:
            return False
        self.answers[question_index] = option_index
        if (
            self.answer_policy == AnswerEditPolicy.LOCK_FIRST
            and len(self.answers) == len(self.questions)
        ):
            self.finalize()
        return True

    def go_to(self, index: int) -> None:
        self._check_question_index(index)
        self.current_index = index

    def next(self) -> None:
        if not self.questions:
            return
        self.current_index = min(self.current_index + 1, len(self.questions) - 1)

    def previous(self) -> None:
        self.current_index = max(self.current_index - 1, 0)

    def tick(self) -> None:
        """Advance the clock by one second; auto-submits when time runs out."""
        if self.status not in RUNNING:
            return
        self.elapsed_seconds += 1
        if self.remaining_seconds is None:
            return
        self.remaining_seconds = max(0, self.remaining_seconds - 1)
        if self.remaining_seconds == 0:
            _log.info("Time is up, auto-submitting")
            self.finalize(auto=True)

    # ── Submission ────────────────────────────────────────────────────────

    @property
    def unanswered_count(self) -> int:
        return len(self.questions) - len(self.answers)

    def request_submit(self) -> AssessmentResult | None:
        """Submit, or ask for confirmation first if questions are unanswered."""
        if self.status == SessionStatus.FINISHED:
            return None
        self._require(SessionStatus.IN_PROGRESS)
        if self.unanswered_count > 0:
            self.status = SessionStatus.CONFIRMING
            return None
        return self.finalize()

    def confirm_submit(self) -> AssessmentResult | None:
        if self.status == SessionStatus.FINISHED:
            return None
        self._require(SessionStatus.CONFIRMING)
        return self.finalize()

    def cancel_submit(self) -> None:
        self._require(SessionStatus.CONFIRMING)
        self.status = SessionStatus.IN_PROGRESS

    def finalize(self, auto: bool = False) -> AssessmentResult | None:
        """Score the session and emit the result. No-op once finished."""
        if self.status not in RUNNING:
            return None
        self.status = SessionStatus.FINISHED
        self._stop_timer()

        correct = sum(
            1 for i, q in enumerate(self.questions) if self.answers.get(i) == q.correct_index
        )
        self.result = AssessmentResult(
            correct_count=correct,
            total_questions=len(self.questions),
            elapsed_seconds=self.elapsed_seconds,
            auto_submitted=auto,
        )
        _log.info(
            "Session finished: %d/%d correct in %ds%s",
            correct, len(self.questions), self.elapsed_seconds,
            " (auto)" if auto else "",
        )
        for callback in self._finish_callbacks:
            try:
                callback(self.result)
            except Exception as e:
                _log.warning("Result handler failed: %s", e)
        return self.result

    def on_finish(self, callback: Callable[[AssessmentResult], None]) -> None:
        self._finish_callbacks.append(callback)

    def close(self) -> None:
        """Tear down without producing a result."""
        self._stop_timer()
        if self.status in RUNNING:
            _log.info("Session closed before finishing")

    # ── Timer plumbing ────────────────────────────────────────────────────

    def bind_timer(self, timer: CountdownTimer) -> None:
        self._timer = timer

    def _stop_timer(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    # ── Helpers ───────────────────────────────────────────────────────────

    def _require(self, *statuses: SessionStatus) -> None:
        if self.status not in statuses:
            wanted = ", ".join(s.value for s in statuses)
            raise InvalidTransition(f"session is {self.status.value}, expected {wanted}")

    def _check_question_index(self, index: int) -> None:
        if not 0 <= index < len(self.questions):
            raise IndexError(f"question index {index} out of range")

    def snapshot(self) -> dict:
        return {
            "status": self.status.value,
            "answer_policy": self.answer_policy.value,
            "current_index": self.current_index,
            "answers": dict(self.answers),
            "remaining_seconds": self.remaining_seconds,
            "elapsed_seconds": self.elapsed_seconds,
            "total_questions": len(self.questions),
            "answered_count": len(self.answers),
            "unanswered_count": self.unanswered_count,
            "timer_level": timer_level(self.remaining_seconds),
            "error": self.error,
            "result": self.result.to_dict() if self.result else None,
        }


class CountdownTimer:
    """Calls ``session.tick()`` every *interval* seconds on the running loop."""

    def __init__(self, session: AssessmentSession, interval: float = 1.0):
        self.session = session
        self.interval = interval
        self._task: asyncio.Task | None = None

    def start(self) -> asyncio.Task:
        self.session.bind_timer(self)
        self._task = asyncio.get_running_loop().create_task(self._run())
        return self._task

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def _run(self) -> None:
        while self.session.status in RUNNING:
            await asyncio.sleep(self.interval)
            self.session.tick()

    def cancel(self) -> None:
        task = self._task
        if task is None or task.done():
            return
        try:
            current = asyncio.current_task()
        except RuntimeError:
            current = None
        # The tick that auto-submits runs inside the task; it exits on its own.
        if task is not current:
            task.cancel()
