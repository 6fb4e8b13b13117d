"""
services/submission_coordinator.py

State machine for one student's timed attempt.

Three trigger sources feed it: the session clock (expiry), the violation
monitor (escalation) and the caller (manual submit). All of them run on the
owning asyncio event loop and every state change happens synchronously
between awaits, so the first trigger to arrive moves the session out of
Active and every later one is a no-op. The only await is persistence.

    Active --(manual | timer_expired | violation_escalation)--> Finalizing --> Submitted
"""

import asyncio
import logging
import time
from contextlib import ExitStack
from datetime import datetime, timezone
from typing import Callable, List, Optional

from tenacity import AsyncRetrying, before_sleep_log, stop_after_attempt, wait_fixed

from ..config import (
    CLOCK_TICK_SECONDS,
    HIGH_SEVERITY_THRESHOLD,
    LOW_TIME_WARNING_SECONDS,
    PERSIST_BACKOFF_SECONDS,
    PERSIST_MAX_ATTEMPTS,
    PERSIST_TIMEOUT_SECONDS,
    RECENT_VIOLATIONS_LIMIT,
)
from ..schemas.exam_schema import ExamDefinition
from ..schemas.exam_session_schema import SessionState, Submission, TerminalReason
from ..schemas.violation_schema import ViolationEvent, ViolationSummary
from .answer_tracker import AnswerTracker
from .errors import SessionNotActive, StoragePersistFailure
from .grading_service import grade_submission
from .session_clock import SessionClock
from .subscriptions import Subscription, subscribe
from .violation_monitor import EscalationPolicy, ViolationMonitor

logger = logging.getLogger(__name__)


def _to_datetime(ts: float) -> datetime:
    return datetime.fromtimestamp(ts, tz=timezone.utc)


class SubmissionCoordinator:
    """
    Owns a session's clock, answers and violation monitor and guarantees
    exactly one Submission per session.

    Must be driven from a single event loop; none of its methods are
    thread-safe.
    """

    def __init__(
        self,
        session_id: str,
        exam: ExamDefinition,
        student_name: str,
        store,
        *,
        clock: Optional[SessionClock] = None,
        tracker: Optional[AnswerTracker] = None,
        monitor: Optional[ViolationMonitor] = None,
        time_source: Callable[[], float] = time.time,
        persist_attempts: int = PERSIST_MAX_ATTEMPTS,
        persist_backoff: float = PERSIST_BACKOFF_SECONDS,
        persist_timeout: float = PERSIST_TIMEOUT_SECONDS,
    ):
        self.session_id = session_id
        self.exam = exam
        self.student_name = student_name
        self._store = store
        self._time = time_source

        self.clock = clock or SessionClock(
            exam.duration_seconds,
            low_time_threshold=LOW_TIME_WARNING_SECONDS,
            time_source=time_source,
            tick_interval=CLOCK_TICK_SECONDS,
        )
        self.tracker = tracker or AnswerTracker(exam.questions)
        self.monitor = monitor or ViolationMonitor(
            policies=[EscalationPolicy(HIGH_SEVERITY_THRESHOLD)],
            recent_limit=RECENT_VIOLATIONS_LIMIT,
        )

        self._persist_attempts = max(1, persist_attempts)
        self._persist_backoff = persist_backoff
        self._persist_timeout = persist_timeout

        self._state = SessionState.ACTIVE
        self._terminal_reason: Optional[TerminalReason] = None
        self._submission: Optional[Submission] = None
        self._persist_task: Optional[asyncio.Task] = None
        self._persist_lock = asyncio.Lock()
        self._persisted = False
        self._persist_error: Optional[StoragePersistFailure] = None
        self._observers: List[Callable[[Submission], None]] = []
        self._notified = False
        self._started = False
        self._closed = False
        # timers and event subscriptions held while Active; closed on every exit path
        self._resources = ExitStack()

    # -- lifecycle --------------------------------------------------------

    def start(self) -> None:
        if self._started:
            return
        self._started = True
        self._resources.enter_context(self.monitor.subscribe(self._on_escalation))
        self._resources.enter_context(self.clock.on_expiry(self._on_expiry))
        self._resources.callback(self.monitor.close)
        self._resources.callback(self.clock.stop)
        self.clock.start()
        logger.info(
            "Session %s started: exam=%s student=%s duration=%ss",
            self.session_id, self.exam.id, self.student_name, self.exam.duration_seconds,
        )

    def close(self) -> None:
        """Teardown (e.g. the student navigated away). Releases timers and subscriptions."""
        if self._closed:
            return
        self._closed = True
        self._resources.close()
        if self._state is SessionState.ACTIVE:
            logger.info("Session %s closed without a submission", self.session_id)

    async def __aenter__(self):
        self.start()
        return self

    async def __aexit__(self, exc_type, exc, tb):
        self.close()
        return False

    # -- queries ----------------------------------------------------------

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def terminal_reason(self) -> Optional[TerminalReason]:
        return self._terminal_reason

    @property
    def submission(self) -> Optional[Submission]:
        return self._handoff()

    @property
    def persisted(self) -> bool:
        return self._persisted

    @property
    def persist_error(self) -> Optional[StoragePersistFailure]:
        return self._persist_error

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def is_active(self) -> bool:
        return self._state is SessionState.ACTIVE and not self._closed

    @property
    def started_at(self) -> datetime:
        ts = self.clock.started_at
        return _to_datetime(ts if ts is not None else self._time())

    def remaining(self) -> float:
        return self.clock.remaining()

    def answered_count(self) -> int:
        return self.tracker.answered_count()

    def violation_counts(self) -> ViolationSummary:
        return self.monitor.summary()

    # -- commands ---------------------------------------------------------

    def set_answer(self, question_id: str, option_index: int) -> None:
        self._check_deadline()
        if not self.is_active:
            raise SessionNotActive(self.session_id, self._state)
        self.tracker.set_answer(question_id, option_index)

    def record_violation(self, event: ViolationEvent) -> bool:
        """Forward a violation to the monitor; late events after Active are dropped."""
        self._check_deadline()
        if not self.is_active:
            logger.info(
                "Ignoring %s violation for session %s in state %s",
                event.kind.value, self.session_id, self._state.value,
            )
            return False
        return self.monitor.record(event)

    async def request_submit(self) -> Submission:
        """Manual submit. Calling it again returns the same Submission."""
        # a deadline that already passed wins over the manual request
        self._check_deadline()
        self._trigger(TerminalReason.MANUAL)
        return await self.wait_finalized()

    async def wait_finalized(self) -> Submission:
        """Wait for persistence to finish; raises StoragePersistFailure if it gave up."""
        if self._persist_task is None:
            raise SessionNotActive(self.session_id, self._state)
        await asyncio.shield(self._persist_task)
        if self._persist_error is not None:
            raise self._persist_error
        return self._handoff()

    async def retry_persist(self) -> Submission:
        """Manually resend the retained Submission. Never recomputes it."""
        if self._submission is None:
            raise SessionNotActive(self.session_id, self._state)
        if self._persist_task is not None and not self._persist_task.done():
            await asyncio.shield(self._persist_task)
        async with self._persist_lock:
            if not self._persisted:
                try:
                    await self._persist()
                except StoragePersistFailure as exc:
                    self._persist_error = exc
                    raise
        return self._handoff()

    def on_finalized(self, callback: Callable[[Submission], None]) -> Subscription:
        return subscribe(self._observers, callback)

    # -- triggers ---------------------------------------------------------

    def _check_deadline(self) -> None:
        if self._started and not self._closed:
            self.clock.tick()

    def _on_expiry(self) -> None:
        self._trigger(TerminalReason.TIMER_EXPIRED)

    def _on_escalation(self, policy: EscalationPolicy, event: ViolationEvent) -> None:
        logger.warning(
            "Session %s escalated by %s on %s event", self.session_id, policy.name, event.kind.value
        )
        self._trigger(TerminalReason.VIOLATION_ESCALATION)

    def _trigger(self, reason: TerminalReason) -> bool:
        if self._closed:
            logger.debug("Trigger %s ignored: session %s is closed", reason.value, self.session_id)
            return False
        if self._state is not SessionState.ACTIVE:
            logger.debug(
                "Duplicate trigger %s ignored for session %s (already %s by %s)",
                reason.value, self.session_id, self._state.value,
                self._terminal_reason.value if self._terminal_reason else None,
            )
            return False
        if not self._started:
            raise RuntimeError(f"Session {self.session_id} has not been started")
        loop = asyncio.get_running_loop()

        self._state = SessionState.FINALIZING
        self._terminal_reason = reason
        # stop the clock, detach from the monitor and refuse further events
        self._resources.close()
        self._submission = self._build_submission(reason)
        logger.info(
            "Session %s finalizing (%s): score %s/%s",
            self.session_id, reason.value, self._submission.score, self._submission.max_score,
        )
        self._persist_task = loop.create_task(self._complete())
        return True

    def _build_submission(self, reason: TerminalReason) -> Submission:
        started = self.clock.started_at
        submitted = max(self._time(), started)
        taken = min(float(self.exam.duration_seconds), max(0.0, submitted - started))

        snapshot = self.tracker.snapshot()
        question_scores, score, max_score = grade_submission(snapshot, self.exam.questions)

        return Submission(
            session_id=self.session_id,
            exam_id=self.exam.id,
            student_name=self.student_name,
            answers=dict(snapshot),
            question_scores=question_scores,
            score=score,
            max_score=max_score,
            started_at=_to_datetime(started),
            submitted_at=_to_datetime(submitted),
            time_taken_seconds=int(round(taken)),
            terminal_reason=reason,
            violations=self.monitor.summary(),
        )

    # -- persistence ------------------------------------------------------

    async def _complete(self) -> None:
        try:
            await self._persist()
        except StoragePersistFailure as exc:
            self._persist_error = exc
        self._state = SessionState.SUBMITTED
        logger.info(
            "Session %s submitted (%s, persisted=%s)",
            self.session_id, self._terminal_reason.value, self._persisted,
        )
        self._notify()

    async def _persist(self) -> None:
        attempts = 0
        try:
            async for attempt in AsyncRetrying(
                stop=stop_after_attempt(self._persist_attempts),
                wait=wait_fixed(self._persist_backoff),
                before_sleep=before_sleep_log(logger, logging.WARNING),
                reraise=True,
            ):
                with attempt:
                    attempts = attempt.retry_state.attempt_number
                    await asyncio.wait_for(
                        self._store.save_submission(self._handoff()), timeout=self._persist_timeout
                    )
        except Exception as exc:
            logger.error(
                "Saving submission for session %s failed after %s attempt(s): %s",
                self.session_id, attempts, exc,
            )
            raise StoragePersistFailure(self._handoff(), attempts, exc) from exc
        self._persisted = True
        self._persist_error = None

    def _handoff(self) -> Optional[Submission]:
        # callers and storage only ever see copies of the retained record
        if self._submission is None:
            return None
        return self._submission.model_copy(deep=True)

    def _notify(self) -> None:
        if self._notified:
            return
        self._notified = True
        for callback in list(self._observers):
            try:
                callback(self._handoff())
            except Exception:
                logger.exception("on_finalized observer failed for session %s", self.session_id)
