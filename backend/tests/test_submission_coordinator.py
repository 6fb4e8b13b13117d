import asyncio

import pytest

from exampro.schemas.exam_schema import ExamDefinition
from exampro.schemas.exam_session_schema import SessionState, TerminalReason
from exampro.schemas.violation_schema import Severity, ViolationEvent, ViolationKind
from exampro.services.answer_tracker import AnswerTracker
from exampro.services.errors import InvalidOption, SessionNotActive, StoragePersistFailure
from exampro.services.session_clock import SessionClock
from exampro.services.submission_coordinator import SubmissionCoordinator
from exampro.services.violation_monitor import EscalationPolicy, ViolationMonitor


def make_coordinator(exam, store, fake_time, threshold=5, attempts=3, timeout=1.0):
    return SubmissionCoordinator(
        "session-1",
        exam,
        "Ada",
        store,
        clock=SessionClock(
            exam.duration_seconds, low_time_threshold=30, time_source=fake_time, tick_interval=None
        ),
        tracker=AnswerTracker(exam.questions),
        monitor=ViolationMonitor([EscalationPolicy(threshold)]),
        time_source=fake_time,
        persist_attempts=attempts,
        persist_backoff=0,
        persist_timeout=timeout,
    )


def high(kind=ViolationKind.multiple_faces):
    return ViolationEvent(kind=kind, severity=Severity.high)


@pytest.mark.asyncio
async def test_timer_expiry_with_no_answers(exam, store, fake_time):
    coordinator = make_coordinator(exam, store, fake_time)
    coordinator.start()

    fake_time.advance(60)
    coordinator.clock.tick()
    assert coordinator.state is SessionState.FINALIZING

    submission = await coordinator.wait_finalized()

    assert coordinator.state is SessionState.SUBMITTED
    assert submission.terminal_reason is TerminalReason.TIMER_EXPIRED
    assert submission.score == 0
    assert submission.max_score == 3
    assert submission.answers == {}
    assert submission.time_taken_seconds == 60
    assert store.saved["session-1"] == submission


@pytest.mark.asyncio
async def test_coalesced_ticks_clamp_time_taken(exam, store, fake_time):
    coordinator = make_coordinator(exam, store, fake_time)
    coordinator.start()

    fake_time.advance(75)
    coordinator.clock.tick()
    submission = await coordinator.wait_finalized()

    assert submission.time_taken_seconds == 60
    assert coordinator.remaining() == 0


@pytest.mark.asyncio
async def test_fifth_high_violation_escalates(exam, store, fake_time):
    coordinator = make_coordinator(exam, store, fake_time)
    coordinator.start()
    fake_time.advance(10)

    for _ in range(4):
        coordinator.record_violation(high())
    coordinator.record_violation(ViolationEvent(kind=ViolationKind.tab_switch, severity=Severity.medium))
    assert coordinator.state is SessionState.ACTIVE

    coordinator.record_violation(high(ViolationKind.no_face))

    # the transition is immediate, persistence follows
    assert coordinator.state is SessionState.FINALIZING
    assert coordinator.terminal_reason is TerminalReason.VIOLATION_ESCALATION
    assert coordinator.remaining() == 50

    submission = await coordinator.wait_finalized()
    assert submission.terminal_reason is TerminalReason.VIOLATION_ESCALATION
    assert submission.violations.by_severity["high"] == 5
    assert submission.violations.escalated is True

    # the clock was stopped, expiry can no longer fire
    fake_time.advance(100)
    coordinator.clock.tick()
    assert submission.time_taken_seconds == 10
    assert len(store.save_calls) == 1


@pytest.mark.asyncio
async def test_manual_submit_scores_answers(exam, store, fake_time):
    coordinator = make_coordinator(exam, store, fake_time)
    coordinator.start()

    coordinator.set_answer("q1", 0)
    coordinator.set_answer("q2", 2)
    coordinator.set_answer("q3", 1)
    fake_time.advance(20)

    submission = await coordinator.request_submit()

    assert submission.score == 2
    assert submission.max_score == 3
    assert submission.question_scores == {"q1": 1, "q2": 1, "q3": 0}
    assert submission.time_taken_seconds == 20
    assert submission.terminal_reason is TerminalReason.MANUAL
    assert coordinator.persisted


@pytest.mark.asyncio
async def test_competing_triggers_produce_one_submission(exam, store, fake_time):
    coordinator = make_coordinator(exam, store, fake_time, threshold=1)
    coordinator.start()
    fake_time.advance(30)

    first, second = await asyncio.gather(coordinator.request_submit(), coordinator.request_submit())
    fake_time.advance(60)
    coordinator.clock.tick()
    coordinator.record_violation(high())
    third = await coordinator.request_submit()

    assert first == second == third
    assert first.terminal_reason is TerminalReason.MANUAL
    assert len(store.save_calls) == 1


@pytest.mark.asyncio
async def test_expiry_wins_over_later_manual_submit(exam, store, fake_time):
    coordinator = make_coordinator(exam, store, fake_time)
    coordinator.start()
    fake_time.advance(61)
    coordinator.clock.tick()

    submission = await coordinator.request_submit()

    assert submission.terminal_reason is TerminalReason.TIMER_EXPIRED
    assert coordinator.terminal_reason is TerminalReason.TIMER_EXPIRED


@pytest.mark.asyncio
async def test_passed_deadline_wins_before_next_tick(exam, store, fake_time):
    coordinator = make_coordinator(exam, store, fake_time)
    coordinator.start()
    coordinator.set_answer("q1", 0)

    # the ticker has not run since the deadline
    fake_time.advance(61)
    assert coordinator.remaining() == 0
    assert coordinator.state is SessionState.ACTIVE

    submission = await coordinator.request_submit()

    assert submission.terminal_reason is TerminalReason.TIMER_EXPIRED
    assert submission.answers == {"q1": 0}
    assert submission.time_taken_seconds == 60
    with pytest.raises(SessionNotActive):
        coordinator.set_answer("q2", 2)


@pytest.mark.asyncio
async def test_answer_after_deadline_is_rejected_without_tick(exam, store, fake_time):
    coordinator = make_coordinator(exam, store, fake_time)
    coordinator.start()
    fake_time.advance(60)

    with pytest.raises(SessionNotActive):
        coordinator.set_answer("q1", 0)

    assert coordinator.terminal_reason is TerminalReason.TIMER_EXPIRED
    assert coordinator.record_violation(high()) is False
    submission = await coordinator.wait_finalized()
    assert submission.answers == {}


@pytest.mark.asyncio
async def test_violation_after_deadline_does_not_escalate(exam, store, fake_time):
    coordinator = make_coordinator(exam, store, fake_time, threshold=1)
    coordinator.start()
    fake_time.advance(90)

    assert coordinator.record_violation(high()) is False

    submission = await coordinator.wait_finalized()
    assert submission.terminal_reason is TerminalReason.TIMER_EXPIRED
    assert submission.violations.total == 0


@pytest.mark.asyncio
async def test_answers_after_finalizing_are_rejected(exam, store, fake_time):
    coordinator = make_coordinator(exam, store, fake_time)
    coordinator.start()
    coordinator.set_answer("q1", 0)

    submission = await coordinator.request_submit()

    with pytest.raises(SessionNotActive):
        coordinator.set_answer("q2", 2)
    # edits to the tracker never reach a submission that was already built
    coordinator.tracker.set_answer("q3", 0)
    assert submission.answers == {"q1": 0}
    assert submission.score == 1


@pytest.mark.asyncio
async def test_invalid_option_is_reported_while_active(exam, store, fake_time):
    coordinator = make_coordinator(exam, store, fake_time)
    coordinator.start()
    coordinator.set_answer("q1", 1)

    with pytest.raises(InvalidOption):
        coordinator.set_answer("q1", 99)

    assert coordinator.tracker.get_answer("q1") == 1
    assert coordinator.is_active


@pytest.mark.asyncio
async def test_late_violations_are_ignored(exam, store, fake_time):
    coordinator = make_coordinator(exam, store, fake_time)
    coordinator.start()
    coordinator.record_violation(high())

    submission = await coordinator.request_submit()

    assert coordinator.record_violation(high()) is False
    assert coordinator.violation_counts().total == 1
    assert submission.violations.total == 1


@pytest.mark.asyncio
async def test_persist_retries_then_succeeds(exam, make_store, fake_time):
    store = make_store(fail_times=2)
    coordinator = make_coordinator(exam, store, fake_time)
    coordinator.start()

    submission = await coordinator.request_submit()

    assert len(store.save_calls) == 3
    assert all(call == submission for call in store.save_calls)
    assert coordinator.persisted


@pytest.mark.asyncio
async def test_exhausted_retries_keep_submission_for_manual_retry(exam, make_store, fake_time):
    store = make_store(fail_times=10)
    coordinator = make_coordinator(exam, store, fake_time)
    finalized = []
    coordinator.on_finalized(finalized.append)
    coordinator.start()
    coordinator.set_answer("q1", 0)

    with pytest.raises(StoragePersistFailure) as excinfo:
        await coordinator.request_submit()

    failure = excinfo.value
    assert failure.attempts == 3
    assert isinstance(failure.cause, ConnectionError)
    assert coordinator.state is SessionState.SUBMITTED
    assert not coordinator.persisted
    assert failure.submission == coordinator.submission
    assert finalized == [coordinator.submission]

    # still failing: the error is raised again
    with pytest.raises(StoragePersistFailure):
        await coordinator.retry_persist()

    store.fail_times = 0
    fake_time.advance(30)
    retried = await coordinator.retry_persist()

    assert retried == failure.submission
    assert store.saved["session-1"] == retried
    assert all(call == retried for call in store.save_calls)
    assert coordinator.persisted
    assert coordinator.persist_error is None
    assert finalized == [retried]


class TamperingStore:
    """Edits whatever it is given, and drops the first save."""

    def __init__(self):
        self.received = []

    async def save_submission(self, submission):
        self.received.append((dict(submission.answers), dict(submission.question_scores)))
        submission.answers["q1"] = 3
        submission.question_scores.clear()
        if len(self.received) == 1:
            raise ConnectionError("connection reset")


@pytest.mark.asyncio
async def test_retries_send_the_record_as_built(exam, fake_time):
    store = TamperingStore()
    coordinator = make_coordinator(exam, store, fake_time)
    coordinator.start()
    coordinator.set_answer("q1", 0)

    submission = await coordinator.request_submit()

    expected = ({"q1": 0}, {"q1": 1, "q2": 0, "q3": 0})
    assert store.received == [expected, expected]
    assert submission.answers == {"q1": 0}
    assert coordinator.submission.question_scores == expected[1]


@pytest.mark.asyncio
async def test_observers_and_callers_cannot_alter_retained_record(exam, make_store, fake_time):
    store = make_store(fail_times=3)
    coordinator = make_coordinator(exam, store, fake_time)
    coordinator.on_finalized(lambda s: s.answers.clear())
    coordinator.start()
    coordinator.set_answer("q2", 2)

    with pytest.raises(StoragePersistFailure) as excinfo:
        await coordinator.request_submit()
    excinfo.value.submission.answers["q2"] = 0
    coordinator.submission.question_scores["q2"] = 0

    retried = await coordinator.retry_persist()

    assert retried.answers == {"q2": 2}
    assert retried.question_scores["q2"] == 1
    assert store.saved["session-1"].answers == {"q2": 2}


class SlowStore:
    def __init__(self):
        self.calls = 0

    async def save_submission(self, submission):
        self.calls += 1
        await asyncio.sleep(10)


@pytest.mark.asyncio
async def test_each_attempt_is_bounded_by_timeout(exam, fake_time):
    store = SlowStore()
    coordinator = make_coordinator(exam, store, fake_time, attempts=2, timeout=0.01)
    coordinator.start()

    with pytest.raises(StoragePersistFailure) as excinfo:
        await coordinator.request_submit()

    assert excinfo.value.attempts == 2
    assert store.calls == 2
    assert isinstance(excinfo.value.cause, asyncio.TimeoutError)


@pytest.mark.asyncio
async def test_on_finalized_fires_once_and_survives_bad_observer(exam, store, fake_time):
    coordinator = make_coordinator(exam, store, fake_time)
    seen = []

    def broken(submission):
        raise RuntimeError("observer bug")

    coordinator.on_finalized(broken)
    coordinator.on_finalized(seen.append)
    coordinator.start()

    await coordinator.request_submit()
    await coordinator.request_submit()

    assert len(seen) == 1


@pytest.mark.asyncio
async def test_close_releases_resources_without_submission(exam, store, fake_time):
    coordinator = make_coordinator(exam, store, fake_time)
    coordinator.start()

    coordinator.close()
    coordinator.close()

    assert coordinator.clock.stopped
    assert coordinator.monitor.closed
    fake_time.advance(120)
    coordinator.clock.tick()
    assert coordinator.record_violation(high()) is False
    with pytest.raises(SessionNotActive):
        await coordinator.request_submit()
    assert coordinator.submission is None
    assert store.save_calls == []


@pytest.mark.asyncio
async def test_context_manager_tears_down_on_exit(exam, store, fake_time):
    async with make_coordinator(exam, store, fake_time) as coordinator:
        assert coordinator.is_active
        assert not coordinator.clock.stopped

    assert coordinator.closed
    assert coordinator.clock.stopped


@pytest.mark.asyncio
async def test_weighted_exam_max_score(questions, store, fake_time):
    weighted = ExamDefinition(
        id="exam-2",
        title="Weighted",
        code="WT0001",
        duration_seconds=120,
        questions=tuple(q.model_copy(update={"points": i + 2}) for i, q in enumerate(questions)),
    )
    coordinator = make_coordinator(weighted, store, fake_time)
    coordinator.start()
    coordinator.set_answer("q2", 2)

    submission = await coordinator.request_submit()

    assert submission.max_score == 2 + 3 + 4
    assert submission.score == 3
