from exampro.db import Base
from sqlalchemy import String


"""
Exams Model and ExamQuestions Junction Table
| Column | Type | Notes |
| :--- | :--- | :--- |
| `id` | UUID | Primary Key |
| `title` | VARCHAR | |
| `description` | VARCHAR | |
| `code` | VARCHAR | Unique join code students type in |
| `duration` | INTEGER | In minutes |
| `is_active` | BOOLEAN | Default `true` |
| `created_at` | TIMESTAMP | naive UTC |

### ExamQuestions (Junction)
| Column | Type | Notes |
| :--- | :--- | :--- |
| `exam_id` | UUID | FK -> Exams |
| `question_id` | UUID | FK -> Questions |
| `order` | INTEGER | To maintain sequence in exam |
"""

from sqlalchemy import Column, Boolean, Integer, DateTime, ForeignKey, Table, Uuid
from sqlalchemy.orm import relationship, backref
from datetime import datetime, timezone
import uuid


# Association (junction) table between exams and questions
exam_questions = Table(
    "exam_questions",
    Base.metadata,
    Column("exam_id", Uuid, ForeignKey("exams.id", ondelete="CASCADE"), primary_key=True),
    Column("question_id", Uuid, ForeignKey("questions.id"), primary_key=True),
    Column("order", Integer, nullable=False),
)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


class Exam(Base):
    __tablename__ = "exams"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    title = Column(String, nullable=False)
    description = Column(String, nullable=True)
    code = Column(String(12), nullable=False, unique=True, index=True)
    duration = Column(Integer, nullable=False)  # in minutes
    is_active = Column(Boolean, default=True)
    created_at = Column(DateTime, default=_utcnow)
    questions = relationship(
        "QuestionDB",
        secondary=exam_questions,
        backref=backref("exams"),
        order_by=exam_questions.c.order,
    )
"""
The Example,

sample_exam = Exam(
    title="Sample JavaScript Quiz",
    code="JS101A",
    duration=30,
    is_active=True
)
sample_exam.questions = [question1, question2, question3]

sample_exam.code  # "JS101A"
sample_exam.duration  # 30 (a session runs for 30 * 60 seconds)
"""
