"""
services/violation_monitor.py

Collects violation events pushed by the proctoring collaborator and decides
when a session has to be force-submitted.

Events are telemetry: they are never rejected while the monitor is open.
Escalation counting always uses the full log; the `recent()` list is a
display window only.
"""

import logging
from collections import Counter, deque
from typing import Callable, Deque, Iterable, List, Optional, Sequence, Tuple

from ..schemas.violation_schema import Severity, ViolationEvent, ViolationKind, ViolationSummary
from .subscriptions import Subscription, subscribe

logger = logging.getLogger(__name__)

DEFAULT_HIGH_SEVERITY_THRESHOLD = 5
DEFAULT_RECENT_LIMIT = 10


def is_high_severity(event: ViolationEvent) -> bool:
    return event.severity == Severity.high


class EscalationPolicy:
    """Escalate once the number of events matching `predicate` reaches `threshold`."""

    def __init__(
        self,
        threshold: int = DEFAULT_HIGH_SEVERITY_THRESHOLD,
        predicate: Callable[[ViolationEvent], bool] = is_high_severity,
        name: str = "high_severity",
    ):
        if threshold <= 0:
            raise ValueError("threshold must be a positive integer")
        self.threshold = threshold
        self.predicate = predicate
        self.name = name

    def __repr__(self):
        return f"EscalationPolicy(name={self.name!r}, threshold={self.threshold})"


EscalationListener = Callable[[EscalationPolicy, ViolationEvent], None]


class ViolationMonitor:

    def __init__(
        self,
        policies: Optional[Iterable[EscalationPolicy]] = None,
        recent_limit: int = DEFAULT_RECENT_LIMIT,
    ):
        self._policies: List[EscalationPolicy] = (
            list(policies) if policies is not None else [EscalationPolicy()]
        )
        self._log: List[ViolationEvent] = []
        self._recent: Deque[ViolationEvent] = deque(maxlen=recent_limit)
        self._by_severity: Counter = Counter()
        self._by_kind: Counter = Counter()
        self._matches: List[int] = [0] * len(self._policies)
        self._fired: List[bool] = [False] * len(self._policies)
        self._listeners: List[EscalationListener] = []
        self._closed = False

    @property
    def policies(self) -> Sequence[EscalationPolicy]:
        return tuple(self._policies)

    @property
    def escalated(self) -> bool:
        return any(self._fired)

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def log(self) -> Tuple[ViolationEvent, ...]:
        """Every accepted event, in arrival order."""
        return tuple(self._log)

    def subscribe(self, listener: EscalationListener) -> Subscription:
        return subscribe(self._listeners, listener)

    def record(self, event: ViolationEvent) -> bool:
        """
        Append an event and evaluate escalation.

        Arrival order, not event timestamp, is what counts. Returns False only
        when the monitor was closed, in which case the event is dropped.
        """
        if self._closed:
            logger.debug("Ignoring late violation %s (monitor closed)", event.kind.value)
            return False

        self._log.append(event)
        self._recent.append(event)
        self._by_severity[event.severity] += 1
        self._by_kind[event.kind] += 1
        logger.debug("Violation recorded: %s/%s %s", event.kind.value, event.severity.value, event.description)

        for idx, policy in enumerate(self._policies):
            if not policy.predicate(event):
                continue
            self._matches[idx] += 1
            if not self._fired[idx] and self._matches[idx] >= policy.threshold:
                self._fired[idx] = True
                logger.warning(
                    "Escalation %s reached (%s matching events)", policy.name, self._matches[idx]
                )
                for listener in list(self._listeners):
                    listener(policy, event)
        return True

    def close(self) -> None:
        """Stop accepting events; counters stay readable."""
        self._closed = True

    def matches(self, policy: EscalationPolicy) -> int:
        return self._matches[self._policies.index(policy)]

    def severity_count(self, severity: Severity) -> int:
        return self._by_severity[severity]

    def recent(self) -> List[ViolationEvent]:
        """Most recent events for display, newest first."""
        return list(reversed(self._recent))

    def summary(self) -> ViolationSummary:
        return ViolationSummary(
            total=len(self._log),
            by_severity={s.value: self._by_severity[s] for s in Severity},
            by_kind={k.value: self._by_kind[k] for k in ViolationKind},
            escalated=self.escalated,
        )
