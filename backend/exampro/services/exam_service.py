from typing import List, Optional, Protocol
from uuid import UUID
from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.orm import selectinload
from datetime import datetime, timezone
import logging

from ..db import async_session_maker
from ..models.exam_model import Exam, exam_questions
from ..models.question_model import QuestionDB
from ..models.submission_model import SubmissionDB
from ..schemas.exam_schema import ExamDefinition, Question
from ..schemas.exam_session_schema import Submission
from ..schemas.violation_schema import ViolationSummary

logger = logging.getLogger(__name__)


class ExamStore(Protocol):
    """Storage collaborator used by the session engine and the routers."""

    async def get_exam_by_id(self, exam_id: str) -> Optional[ExamDefinition]: ...

    async def get_exam_by_code(self, code: str) -> Optional[ExamDefinition]: ...

    async def save_submission(self, submission: Submission) -> None: ...

    async def get_submission(self, session_id: str) -> Optional[Submission]: ...

    async def get_submissions_by_exam(self, exam_id: str) -> List[Submission]: ...


def _to_naive_utc(dt: datetime | None) -> datetime | None:
    """Convert an aware datetime to naive UTC (remove tzinfo). If already naive, assume UTC and return as-is.
    Returns None if input is None.
    """
    if dt is None:
        return None
    if dt.tzinfo is None:
        # assume naive datetimes are already UTC
        return dt
    # convert to UTC and drop tzinfo
    return dt.astimezone(timezone.utc).replace(tzinfo=None)


def _as_utc(dt: datetime) -> datetime:
    return dt if dt.tzinfo is not None else dt.replace(tzinfo=timezone.utc)


def _parse_uuid(value: str) -> UUID | None:
    try:
        return UUID(str(value))
    except ValueError:
        return None


def _exam_to_definition(exam: Exam) -> ExamDefinition:
    return ExamDefinition(
        id=str(exam.id),
        title=exam.title,
        code=exam.code,
        duration_seconds=exam.duration * 60,
        questions=tuple(
            Question(
                id=str(q.id),
                text=q.text,
                options=tuple(q.options or ()),
                correct_option=q.correct_option,
                points=q.points,
            )
            for q in exam.questions
        ),
    )


def _row_to_submission(row: SubmissionDB) -> Submission:
    return Submission(
        session_id=str(row.id),
        exam_id=str(row.exam_id),
        student_name=row.student_name,
        answers=row.answers or {},
        question_scores=row.question_scores or {},
        score=row.score,
        max_score=row.max_score,
        started_at=_as_utc(row.started_at),
        submitted_at=_as_utc(row.submitted_at),
        time_taken_seconds=row.time_taken_seconds,
        terminal_reason=row.terminal_reason,
        violations=ViolationSummary(**(row.violation_summary or {})),
    )


class SqlExamStore:
    """ExamStore backed by the async SQLAlchemy session maker."""

    def __init__(self, session_maker: async_sessionmaker[AsyncSession] = async_session_maker):
        self._session_maker = session_maker

    async def _load_exam(self, session: AsyncSession, *criteria) -> Optional[ExamDefinition]:
        stmt = select(Exam).options(selectinload(Exam.questions)).where(*criteria)
        res = await session.execute(stmt)
        exam = res.scalar_one_or_none()
        if not exam or not exam.is_active:
            return None
        return _exam_to_definition(exam)

    async def get_exam_by_id(self, exam_id: str) -> Optional[ExamDefinition]:
        exam_uuid = _parse_uuid(exam_id)
        if exam_uuid is None:
            return None
        async with self._session_maker() as session:
            return await self._load_exam(session, Exam.id == exam_uuid)

    async def get_exam_by_code(self, code: str) -> Optional[ExamDefinition]:
        async with self._session_maker() as session:
            return await self._load_exam(session, Exam.code == code.strip().upper())

    async def save_submission(self, submission: Submission) -> None:
        row = SubmissionDB(
            id=UUID(submission.session_id),
            exam_id=UUID(submission.exam_id),
            student_name=submission.student_name,
            answers=dict(submission.answers),
            question_scores=dict(submission.question_scores),
            score=submission.score,
            max_score=submission.max_score,
            started_at=_to_naive_utc(submission.started_at),
            submitted_at=_to_naive_utc(submission.submitted_at),
            time_taken_seconds=submission.time_taken_seconds,
            terminal_reason=submission.terminal_reason,
            violation_summary=submission.violations.model_dump(mode="json"),
        )
        async with self._session_maker() as session:
            # merge keys on the session id, so a retry after a lost commit acknowledgement is harmless
            await session.merge(row)
            await session.commit()
        logger.info("Saved submission %s (%s/%s)", submission.session_id, submission.score, submission.max_score)

    async def get_submission(self, session_id: str) -> Optional[Submission]:
        sid = _parse_uuid(session_id)
        if sid is None:
            return None
        async with self._session_maker() as session:
            row = await session.get(SubmissionDB, sid)
            return _row_to_submission(row) if row else None

    async def get_submissions_by_exam(self, exam_id: str) -> List[Submission]:
        exam_uuid = _parse_uuid(exam_id)
        if exam_uuid is None:
            return []
        async with self._session_maker() as session:
            stmt = (
                select(SubmissionDB)
                .where(SubmissionDB.exam_id == exam_uuid)
                .order_by(SubmissionDB.submitted_at)
            )
            res = await session.execute(stmt)
            return [_row_to_submission(r) for r in res.scalars().all()]

    async def seed_sample_exam(self) -> bool:
        """Insert the sample exam when the exams table is empty. Returns True if seeded."""
        async with self._session_maker() as session:
            count = await session.scalar(select(func.count()).select_from(Exam))
            if count:
                return False

            exam = Exam(
                title="Sample JavaScript Quiz",
                description="A basic quiz to test JavaScript fundamentals",
                code="JS101A",
                duration=30,
                is_active=True,
            )
            questions = [
                QuestionDB(
                    text="What is the correct way to declare a variable in JavaScript?",
                    options=[
                        "var myVariable = 5;",
                        "variable myVariable = 5;",
                        "v myVariable = 5;",
                        "declare myVariable = 5;",
                    ],
                    correct_option=0,
                    points=1,
                ),
                QuestionDB(
                    text="Which of the following is NOT a JavaScript data type?",
                    options=["string", "boolean", "float", "undefined"],
                    correct_option=2,
                    points=1,
                ),
                QuestionDB(
                    text="What does DOM stand for?",
                    options=[
                        "Document Object Model",
                        "Data Object Management",
                        "Dynamic Object Method",
                        "Document Oriented Model",
                    ],
                    correct_option=0,
                    points=1,
                ),
            ]
            session.add(exam)
            session.add_all(questions)
            await session.flush()

            rows = [
                {"exam_id": exam.id, "question_id": q.id, "order": idx}
                for idx, q in enumerate(questions)
            ]
            await session.execute(exam_questions.insert(), rows)
            await session.commit()
            logger.info("Seeded sample exam %s (code %s)", exam.id, exam.code)
            return True
