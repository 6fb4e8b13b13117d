from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from typing import Optional, Dict, List
from datetime import datetime
import enum

from .exam_schema import QuestionPublic
from .violation_schema import ViolationEvent, ViolationSummary


class SessionState(str, enum.Enum):
    ACTIVE = "active"
    FINALIZING = "finalizing"
    SUBMITTED = "submitted"


class TerminalReason(str, enum.Enum):
    MANUAL = "manual"
    TIMER_EXPIRED = "timer_expired"
    VIOLATION_ESCALATION = "violation_escalation"


class Submission(BaseModel):
    """
    The single terminal record of a session.

    Built once at finalize time from an answers snapshot; it is handed to
    storage as a copy and never recomputed, including across persistence
    retries.
    """
    model_config = ConfigDict(frozen=True)

    session_id: str
    exam_id: str
    student_name: str
    answers: Dict[str, int] = Field(default_factory=dict)
    question_scores: Dict[str, int] = Field(default_factory=dict)
    score: int = Field(..., ge=0)
    max_score: int = Field(..., ge=0)
    started_at: datetime
    submitted_at: datetime
    time_taken_seconds: int = Field(..., ge=0)
    terminal_reason: TerminalReason
    violations: ViolationSummary = Field(default_factory=ViolationSummary)

    @model_validator(mode="after")
    def check_bounds(self) -> "Submission":
        if self.score > self.max_score:
            raise ValueError("score must not exceed max_score")
        if self.submitted_at < self.started_at:
            raise ValueError("submitted_at must not precede started_at")
        return self


class SubmissionRead(Submission):
    percentage: int
    grade: str


class JoinRequest(BaseModel):
    student_name: str = Field(..., min_length=1, max_length=120)

    @field_validator("student_name")
    @classmethod
    def not_blank(cls, v):
        v = v.strip()
        if not v:
            raise ValueError("student_name must not be blank")
        return v


class AnswerPayload(BaseModel):
    question_id: str
    option_index: int


class SessionCreateResponse(BaseModel):
    id: str
    exam_id: str
    title: str
    student_name: str
    started_at: datetime
    state: SessionState
    duration_seconds: int
    remaining_seconds: int
    questions: List[QuestionPublic] = []


class SessionStatus(BaseModel):
    id: str
    exam_id: str
    student_name: str
    state: SessionState
    terminal_reason: Optional[TerminalReason] = None
    remaining_seconds: int
    low_time_warning: bool = False
    answered_count: int
    total_questions: int
    answers: Dict[str, int] = {}
    violations: ViolationSummary
    recent_violations: List[ViolationEvent] = []
    persisted: Optional[bool] = None
    submission: Optional[SubmissionRead] = None
