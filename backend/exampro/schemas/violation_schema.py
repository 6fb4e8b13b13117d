from pydantic import BaseModel, ConfigDict, Field
from typing import Dict, Optional
from datetime import datetime, timezone
import enum


class ViolationKind(str, enum.Enum):
    """Integrity violations the proctoring collaborator can report."""
    tab_switch = "tab_switch"
    multiple_faces = "multiple_faces"
    no_face = "no_face"
    voice_detected = "voice_detected"
    suspicious_movement = "suspicious_movement"


class Severity(str, enum.Enum):
    low = "low"
    medium = "medium"
    high = "high"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ViolationEvent(BaseModel):
    """One recorded violation. Immutable once recorded."""
    model_config = ConfigDict(frozen=True)

    kind: ViolationKind
    severity: Severity
    timestamp: datetime = Field(default_factory=_utcnow)
    description: str = ""


class ViolationPayload(BaseModel):
    """Incoming violation message (HTTP body or WebSocket frame)."""
    model_config = ConfigDict(extra="ignore")

    kind: ViolationKind
    severity: Severity
    timestamp: Optional[datetime] = None
    description: str = ""

    def to_event(self) -> ViolationEvent:
        if self.timestamp is None:
            return ViolationEvent(kind=self.kind, severity=self.severity, description=self.description)
        return ViolationEvent(
            kind=self.kind,
            severity=self.severity,
            timestamp=self.timestamp,
            description=self.description,
        )


class ViolationSummary(BaseModel):
    """Counts per severity and per kind, always computed from the full log."""
    model_config = ConfigDict(frozen=True)

    total: int = 0
    by_severity: Dict[str, int] = Field(default_factory=dict)
    by_kind: Dict[str, int] = Field(default_factory=dict)
    escalated: bool = False
