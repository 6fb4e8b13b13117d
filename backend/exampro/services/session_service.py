"""
services/session_service.py

Registry of live exam sessions for one application instance.

The registry is created by the app lifespan and torn down with it; each
session's mutable state lives only inside its coordinator. Once a session's
Submission is persisted the session is evicted and the stored record
supersedes it.
"""

import logging
import math
import time
import uuid
from typing import Callable, Dict, List, Optional

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
from ..schemas.exam_session_schema import SessionState, SessionStatus, Submission
from .answer_tracker import AnswerTracker
from .errors import SessionNotFound
from .grading_service import submission_read
from .session_clock import SessionClock
from .submission_coordinator import SubmissionCoordinator
from .violation_monitor import EscalationPolicy, ViolationMonitor

logger = logging.getLogger(__name__)


class SessionRegistry:

    def __init__(
        self,
        store,
        *,
        time_source: Callable[[], float] = time.time,
        tick_interval: Optional[float] = CLOCK_TICK_SECONDS,
        high_severity_threshold: int = HIGH_SEVERITY_THRESHOLD,
        low_time_threshold: Optional[int] = LOW_TIME_WARNING_SECONDS,
        recent_limit: int = RECENT_VIOLATIONS_LIMIT,
        persist_attempts: int = PERSIST_MAX_ATTEMPTS,
        persist_backoff: float = PERSIST_BACKOFF_SECONDS,
        persist_timeout: float = PERSIST_TIMEOUT_SECONDS,
    ):
        self.store = store
        self._time = time_source
        self._tick_interval = tick_interval
        self._high_severity_threshold = high_severity_threshold
        self._low_time_threshold = low_time_threshold
        self._recent_limit = recent_limit
        self._persist_attempts = persist_attempts
        self._persist_backoff = persist_backoff
        self._persist_timeout = persist_timeout
        self._sessions: Dict[str, SubmissionCoordinator] = {}

    def __len__(self) -> int:
        return len(self._sessions)

    def __contains__(self, session_id: str) -> bool:
        return session_id in self._sessions

    def start_session(self, exam: ExamDefinition, student_name: str) -> SubmissionCoordinator:
        session_id = str(uuid.uuid4())
        coordinator = SubmissionCoordinator(
            session_id,
            exam,
            student_name,
            self.store,
            clock=SessionClock(
                exam.duration_seconds,
                low_time_threshold=self._low_time_threshold,
                time_source=self._time,
                tick_interval=self._tick_interval,
            ),
            tracker=AnswerTracker(exam.questions),
            monitor=ViolationMonitor(
                policies=[EscalationPolicy(self._high_severity_threshold)],
                recent_limit=self._recent_limit,
            ),
            time_source=self._time,
            persist_attempts=self._persist_attempts,
            persist_backoff=self._persist_backoff,
            persist_timeout=self._persist_timeout,
        )
        coordinator.on_finalized(lambda submission: self._on_finalized(coordinator, submission))
        self._sessions[session_id] = coordinator
        coordinator.start()
        return coordinator

    def get(self, session_id: str) -> Optional[SubmissionCoordinator]:
        return self._sessions.get(session_id)

    def require(self, session_id: str) -> SubmissionCoordinator:
        coordinator = self._sessions.get(session_id)
        if coordinator is None:
            raise SessionNotFound(session_id)
        return coordinator

    def sessions(self) -> List[SubmissionCoordinator]:
        return list(self._sessions.values())

    def evict_if_persisted(self, session_id: str) -> bool:
        coordinator = self._sessions.get(session_id)
        if coordinator is None or not coordinator.persisted:
            return False
        del self._sessions[session_id]
        logger.debug("Evicted persisted session %s", session_id)
        return True

    def end_session(self, session_id: str) -> bool:
        """Teardown: release the session's timers and subscriptions and forget it."""
        coordinator = self._sessions.get(session_id)
        if coordinator is None:
            return False
        coordinator.close()
        if coordinator.submission is not None and not coordinator.persisted:
            # never drop a graded submission that still has to be saved
            logger.warning("Session %s keeps its unsaved submission for a retry", session_id)
            return True
        del self._sessions[session_id]
        return True

    async def close_all(self) -> None:
        for coordinator in list(self._sessions.values()):
            coordinator.close()
        # let in-flight persistence finish before the store goes away
        for coordinator in list(self._sessions.values()):
            if coordinator.submission is not None and not coordinator.persisted:
                try:
                    await coordinator.wait_finalized()
                except Exception as exc:
                    logger.error("Session %s left unsaved at shutdown: %s", coordinator.session_id, exc)
        self._sessions.clear()

    def _on_finalized(self, coordinator: SubmissionCoordinator, submission: Submission) -> None:
        if coordinator.persisted:
            self.evict_if_persisted(coordinator.session_id)
        else:
            logger.warning(
                "Session %s kept in memory: submission not saved yet", coordinator.session_id
            )


def _coordinator_status(coordinator: SubmissionCoordinator) -> SessionStatus:
    submission = coordinator.submission
    return SessionStatus(
        id=coordinator.session_id,
        exam_id=coordinator.exam.id,
        student_name=coordinator.student_name,
        state=coordinator.state,
        terminal_reason=coordinator.terminal_reason,
        remaining_seconds=math.ceil(coordinator.remaining()),
        low_time_warning=coordinator.clock.low_time_warned,
        answered_count=coordinator.answered_count(),
        total_questions=coordinator.tracker.total_questions,
        answers=dict(coordinator.tracker.snapshot()),
        violations=coordinator.violation_counts(),
        recent_violations=coordinator.monitor.recent(),
        persisted=coordinator.persisted if submission else None,
        submission=submission_read(submission) if submission else None,
    )


def _submission_status(submission: Submission) -> SessionStatus:
    # an evicted session is represented by its stored record
    return SessionStatus(
        id=submission.session_id,
        exam_id=submission.exam_id,
        student_name=submission.student_name,
        state=SessionState.SUBMITTED,
        terminal_reason=submission.terminal_reason,
        remaining_seconds=0,
        answered_count=len(submission.answers),
        total_questions=len(submission.question_scores),
        answers=dict(submission.answers),
        violations=submission.violations,
        persisted=True,
        submission=submission_read(submission),
    )
