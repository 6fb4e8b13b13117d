from fastapi import APIRouter, Depends, HTTPException, status
from typing import List

from ..dependencies import get_exam_store
from ..schemas.exam_session_schema import SubmissionRead
from ..services.exam_service import ExamStore
from ..services.grading_service import submission_read

router = APIRouter(tags=["Results"])


@router.get("/results/{session_id}", response_model=SubmissionRead)
async def get_result(session_id: str, store: ExamStore = Depends(get_exam_store)):
    submission = await store.get_submission(session_id)
    if submission is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Submission not found")
    return submission_read(submission)


@router.get("/exams/{exam_id}/submissions", response_model=List[SubmissionRead])
async def list_exam_submissions(exam_id: str, store: ExamStore = Depends(get_exam_store)):
    """All stored submissions for one exam, oldest first."""
    submissions = await store.get_submissions_by_exam(exam_id)
    return [submission_read(s) for s in submissions]
