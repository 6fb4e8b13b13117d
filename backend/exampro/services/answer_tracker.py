from types import MappingProxyType
from typing import Dict, Mapping, Optional, Sequence

from ..schemas.exam_schema import Question
from .errors import InvalidOption, UnknownQuestion


class AnswerTracker:
    """Current answer per question, last write wins."""

    def __init__(self, questions: Sequence[Question]):
        self._option_counts: Dict[str, int] = {q.id: len(q.options) for q in questions}
        self._answers: Dict[str, int] = {}

    @property
    def total_questions(self) -> int:
        return len(self._option_counts)

    def set_answer(self, question_id: str, option_index: int) -> None:
        """Record an answer. Raises InvalidOption without touching state if out of range."""
        count = self._option_counts.get(question_id)
        if count is None:
            raise UnknownQuestion(question_id)
        # bool is an int subclass but never a valid choice
        if isinstance(option_index, bool) or not isinstance(option_index, int):
            raise InvalidOption(question_id, option_index, count)
        if not 0 <= option_index < count:
            raise InvalidOption(question_id, option_index, count)
        self._answers[question_id] = option_index

    def get_answer(self, question_id: str) -> Optional[int]:
        """Chosen option index, or None when unanswered."""
        return self._answers.get(question_id)

    def answered_count(self) -> int:
        return len(self._answers)

    def snapshot(self) -> Mapping[str, int]:
        """Read-only copy, unaffected by later set_answer calls."""
        return MappingProxyType(dict(self._answers))
