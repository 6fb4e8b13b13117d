"""
Pytest configuration: exam fixtures, a controllable time source and an
in-memory storage collaborator.
"""
import pytest

from exampro.schemas.exam_schema import ExamDefinition, Question


class FakeTime:
    """Manually advanced replacement for time.time."""

    def __init__(self, start: float = 1_700_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class InMemoryStore:
    """Storage collaborator that can be told to fail the next N saves."""

    def __init__(self, exams=(), fail_times: int = 0):
        self.exams = {e.id: e for e in exams}
        self.saved = {}
        self.save_calls = []
        self.fail_times = fail_times

    async def get_exam_by_id(self, exam_id):
        return self.exams.get(exam_id)

    async def get_exam_by_code(self, code):
        code = code.strip().upper()
        return next((e for e in self.exams.values() if e.code == code), None)

    async def save_submission(self, submission):
        self.save_calls.append(submission)
        if self.fail_times > 0:
            self.fail_times -= 1
            raise ConnectionError("database unavailable")
        self.saved[submission.session_id] = submission

    async def get_submission(self, session_id):
        return self.saved.get(session_id)

    async def get_submissions_by_exam(self, exam_id):
        return [s for s in self.saved.values() if s.exam_id == exam_id]


@pytest.fixture
def fake_time():
    return FakeTime()


@pytest.fixture
def questions():
    return (
        Question(id="q1", text="Declare a variable?", options=("var x", "variable x", "v x", "declare x"), correct_option=0, points=1),
        Question(id="q2", text="Not a JS type?", options=("string", "boolean", "float", "undefined"), correct_option=2, points=1),
        Question(id="q3", text="DOM stands for?", options=("Document Object Model", "Data Object", "Dynamic Object", "Doc Model"), correct_option=0, points=1),
    )


@pytest.fixture
def exam(questions):
    return ExamDefinition(id="exam-1", title="Sample Quiz", code="QZ0001", duration_seconds=60, questions=questions)


@pytest.fixture
def store(exam):
    return InMemoryStore([exam])


@pytest.fixture
def make_store(exam):
    def factory(fail_times=0):
        return InMemoryStore([exam], fail_times=fail_times)
    return factory
