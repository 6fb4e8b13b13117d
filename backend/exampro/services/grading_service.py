from typing import Dict, Mapping, Sequence, Tuple

from ..schemas.exam_schema import Question
from ..schemas.exam_session_schema import Submission, SubmissionRead


def grade_submission(answers: Mapping[str, int], questions: Sequence[Question]) -> Tuple[Dict[str, int], int, int]:
    """
    Grade the given answers against the provided questions.
    - answers: mapping question_id -> chosen option index (an answers snapshot)
    - questions: the exam's immutable Question list

    Returns (question_scores, score, max_score).
    A question earns its points only when the answer equals correct_option;
    unanswered questions score 0 but still count towards max_score.
    """
    question_scores: Dict[str, int] = {}
    score = 0
    max_score = 0

    for q in questions:
        max_score += q.points
        ans = answers.get(q.id)
        earned = q.points if ans is not None and ans == q.correct_option else 0
        question_scores[q.id] = earned
        score += earned

    return question_scores, score, max_score


def percentage(score: int, max_score: int) -> int:
    if max_score <= 0:
        return 0
    return round(score / max_score * 100)


def letter_grade(pct: int) -> str:
    if pct >= 90:
        return "A+"
    if pct >= 80:
        return "A"
    if pct >= 70:
        return "B"
    if pct >= 60:
        return "C"
    if pct >= 50:
        return "D"
    return "F"


def submission_read(submission: Submission) -> SubmissionRead:
    pct = percentage(submission.score, submission.max_score)
    return SubmissionRead(**submission.model_dump(), percentage=pct, grade=letter_grade(pct))
