from exampro.db import Base
from sqlalchemy import Column, Integer, String, DateTime, JSON, Uuid, Enum as SAEnum
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy import ForeignKey
from sqlalchemy.orm import relationship, backref

from exampro.schemas.exam_session_schema import TerminalReason


class SubmissionDB(Base):
    __tablename__ = "submissions"

    # one row per session; the session id doubles as the primary key so a
    # retried save overwrites instead of duplicating
    id = Column(Uuid, primary_key=True)

    # ensure exam_id is a proper foreign key so DB-level ON DELETE CASCADE can remove submissions
    exam_id = Column(Uuid, ForeignKey("exams.id", ondelete="CASCADE"), nullable=False, index=True)
    student_name = Column(String, nullable=False)

    answers = Column(JSON().with_variant(JSONB(), "postgresql"), nullable=False, default=dict)
    question_scores = Column(JSON().with_variant(JSONB(), "postgresql"), nullable=False, default=dict)
    score = Column(Integer, nullable=False)
    max_score = Column(Integer, nullable=False)

    started_at = Column(DateTime, nullable=False)
    submitted_at = Column(DateTime, nullable=False)
    time_taken_seconds = Column(Integer, nullable=False)
    terminal_reason = Column(SAEnum(TerminalReason), nullable=False)
    violation_summary = Column(JSON().with_variant(JSONB(), "postgresql"), nullable=False, default=dict)

    # Use a backref with passive_deletes so SQLAlchemy will not try to nullify the FK when deleting the parent
    exam = relationship("Exam", backref=backref("submissions", passive_deletes=True))
