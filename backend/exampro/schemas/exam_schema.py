from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from typing import List, Tuple


class Question(BaseModel):
    """
    A single multiple-choice question as the session engine sees it.

    Immutable for the lifetime of a session; scoring reads `correct_option`
    and `points` only.
    """
    model_config = ConfigDict(frozen=True)

    id: str = Field(..., description="Unique identifier for the question.")
    text: str = Field(..., min_length=1)
    options: Tuple[str, ...] = Field(..., description="Ordered answer options.")
    correct_option: int = Field(..., ge=0, description="Index into options.")
    points: int = Field(1, gt=0, description="Points awarded for a correct answer.")

    @field_validator("options")
    @classmethod
    def at_least_two_options(cls, v):
        if len(v) < 2:
            raise ValueError("A question needs at least two options.")
        return v

    @model_validator(mode="after")
    def correct_option_in_range(self) -> "Question":
        if self.correct_option >= len(self.options):
            raise ValueError(
                f"correct_option {self.correct_option} is outside the {len(self.options)} options"
            )
        return self


class ExamDefinition(BaseModel):
    """Immutable exam data used to initialize a session."""
    model_config = ConfigDict(frozen=True)

    id: str
    title: str
    code: str
    duration_seconds: int = Field(..., gt=0)
    questions: Tuple[Question, ...] = ()

    @field_validator("questions")
    @classmethod
    def unique_question_ids(cls, v):
        ids = [q.id for q in v]
        if len(set(ids)) != len(ids):
            raise ValueError("Duplicate question IDs are not allowed")
        return v

    @property
    def max_score(self) -> int:
        return sum(q.points for q in self.questions)


class QuestionPublic(BaseModel):
    """Question as sent to a student: correct_option is never included."""
    id: str
    text: str
    options: List[str]
    points: int


def sanitize_question(q: Question) -> QuestionPublic:
    return QuestionPublic(id=q.id, text=q.text, options=list(q.options), points=q.points)
