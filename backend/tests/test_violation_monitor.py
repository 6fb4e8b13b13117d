from datetime import datetime, timedelta, timezone

import pytest

from exampro.schemas.violation_schema import Severity, ViolationEvent, ViolationKind
from exampro.services.violation_monitor import EscalationPolicy, ViolationMonitor


def event(severity=Severity.high, kind=ViolationKind.multiple_faces, **kwargs):
    return ViolationEvent(kind=kind, severity=severity, **kwargs)


def test_counts_by_severity_and_kind():
    monitor = ViolationMonitor()
    monitor.record(event(Severity.low, ViolationKind.tab_switch))
    monitor.record(event(Severity.medium, ViolationKind.tab_switch))
    monitor.record(event(Severity.high, ViolationKind.no_face))

    summary = monitor.summary()
    assert summary.total == 3
    assert summary.by_severity == {"low": 1, "medium": 1, "high": 1}
    assert summary.by_kind["tab_switch"] == 2
    assert summary.by_kind["no_face"] == 1
    # every kind is reported, even with zero events
    assert summary.by_kind["voice_detected"] == 0
    assert summary.escalated is False


def test_escalation_fires_once_at_threshold():
    monitor = ViolationMonitor([EscalationPolicy(threshold=5)])
    fired = []
    monitor.subscribe(lambda policy, ev: fired.append((policy.name, ev)))

    for _ in range(4):
        monitor.record(event())
    monitor.record(event(Severity.low))
    assert fired == []

    fifth = event(description="fifth")
    monitor.record(fifth)
    monitor.record(event())
    monitor.record(event())

    assert len(fired) == 1
    assert fired[0] == ("high_severity", fifth)
    assert monitor.escalated


def test_custom_policy_predicate():
    tab_switches = EscalationPolicy(
        threshold=3, predicate=lambda ev: ev.kind == ViolationKind.tab_switch, name="tab_switches"
    )
    monitor = ViolationMonitor([tab_switches, EscalationPolicy(threshold=5)])
    fired = []
    monitor.subscribe(lambda policy, ev: fired.append(policy.name))

    for _ in range(3):
        monitor.record(event(Severity.low, ViolationKind.tab_switch))

    assert fired == ["tab_switches"]
    assert monitor.matches(tab_switches) == 3


def test_recent_is_truncated_but_counts_use_full_log():
    monitor = ViolationMonitor([EscalationPolicy(threshold=12)], recent_limit=10)
    fired = []
    monitor.subscribe(lambda policy, ev: fired.append(ev))

    events = [event(description=str(i)) for i in range(12)]
    for ev in events:
        monitor.record(ev)

    recent = monitor.recent()
    assert len(recent) == 10
    assert recent[0].description == "11"
    assert recent[-1].description == "2"
    assert monitor.severity_count(Severity.high) == 12
    assert len(monitor.log) == 12
    assert fired == [events[-1]]


def test_arrival_order_is_kept_regardless_of_timestamps():
    monitor = ViolationMonitor()
    now = datetime.now(timezone.utc)
    late = event(timestamp=now)
    early = event(timestamp=now - timedelta(minutes=5))
    monitor.record(late)
    monitor.record(early)
    assert monitor.log == (late, early)


def test_closed_monitor_drops_events():
    monitor = ViolationMonitor([EscalationPolicy(threshold=1)])
    fired = []
    monitor.subscribe(lambda policy, ev: fired.append(ev))
    monitor.close()

    assert monitor.record(event()) is False
    assert monitor.summary().total == 0
    assert fired == []


def test_released_listener_is_not_notified():
    monitor = ViolationMonitor([EscalationPolicy(threshold=1)])
    fired = []
    with monitor.subscribe(lambda policy, ev: fired.append(ev)):
        pass
    monitor.record(event())
    assert fired == []
    assert monitor.escalated


@pytest.mark.parametrize("threshold", [0, -1])
def test_threshold_must_be_positive(threshold):
    with pytest.raises(ValueError):
        EscalationPolicy(threshold=threshold)
