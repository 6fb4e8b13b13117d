from fastapi import APIRouter, Depends, HTTPException, status
import logging

from ..dependencies import get_exam_store, get_live_session, get_session_registry
from ..schemas.exam_schema import ExamDefinition, sanitize_question
from ..schemas.exam_session_schema import (
    AnswerPayload,
    JoinRequest,
    SessionCreateResponse,
    SessionStatus,
    SubmissionRead,
)
from ..services.errors import InvalidOption, SessionNotActive, StoragePersistFailure
from ..services.exam_service import ExamStore
from ..services.grading_service import submission_read
from ..services.session_service import SessionRegistry, _coordinator_status, _submission_status
from ..services.submission_coordinator import SubmissionCoordinator

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Student"])


def _start(exam: ExamDefinition | None, payload: JoinRequest, registry: SessionRegistry) -> SessionCreateResponse:
    if exam is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Exam not available")
    if not exam.questions:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Exam has no questions")

    coordinator = registry.start_session(exam, payload.student_name.strip())
    # questions go out without correct_option
    return SessionCreateResponse(
        id=coordinator.session_id,
        exam_id=exam.id,
        title=exam.title,
        student_name=coordinator.student_name,
        started_at=coordinator.started_at,
        state=coordinator.state,
        duration_seconds=exam.duration_seconds,
        remaining_seconds=int(coordinator.remaining()),
        questions=[sanitize_question(q) for q in exam.questions],
    )


@router.post("/exams/code/{code}/join", response_model=SessionCreateResponse, status_code=status.HTTP_201_CREATED)
async def join_exam_by_code(code: str, payload: JoinRequest, store: ExamStore = Depends(get_exam_store), registry: SessionRegistry = Depends(get_session_registry)):
    exam = await store.get_exam_by_code(code)
    return _start(exam, payload, registry)


@router.post("/exams/{exam_id}/start", response_model=SessionCreateResponse, status_code=status.HTTP_201_CREATED)
async def start_exam(exam_id: str, payload: JoinRequest, store: ExamStore = Depends(get_exam_store), registry: SessionRegistry = Depends(get_session_registry)):
    exam = await store.get_exam_by_id(exam_id)
    return _start(exam, payload, registry)


@router.get("/sessions/{session_id}", response_model=SessionStatus)
async def get_session_status(session_id: str, store: ExamStore = Depends(get_exam_store), registry: SessionRegistry = Depends(get_session_registry)):
    coordinator = registry.get(session_id)
    if coordinator is not None:
        return _coordinator_status(coordinator)
    submission = await store.get_submission(session_id)
    if submission is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Session not found")
    return _submission_status(submission)


@router.put("/sessions/{session_id}/answers")
async def save_answer(payload: AnswerPayload, coordinator: SubmissionCoordinator = Depends(get_live_session)):
    try:
        coordinator.set_answer(payload.question_id, payload.option_index)
    except InvalidOption as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    except SessionNotActive as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))
    return {"ok": True, "answered_count": coordinator.answered_count()}


@router.post("/sessions/{session_id}/submit", response_model=SubmissionRead)
async def submit_session(session_id: str, store: ExamStore = Depends(get_exam_store), registry: SessionRegistry = Depends(get_session_registry)):
    coordinator = registry.get(session_id)
    try:
        if coordinator is None:
            # already finalized and evicted: answer with the stored record
            stored = await store.get_submission(session_id)
            if stored is None:
                raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Session not found")
            return submission_read(stored)

        submission = await coordinator.request_submit()
        return submission_read(submission)
    except HTTPException:
        raise
    except StoragePersistFailure as e:
        logger.warning("Submission for session %s not saved: %s", session_id, e)
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Your answers were graded but could not be saved. Please retry.",
        )
    except SessionNotActive as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))
    except Exception as e:
        logger.exception("Error while submitting session %s: %s", session_id, e)
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(e))


@router.post("/sessions/{session_id}/retry-persist", response_model=SubmissionRead)
async def retry_persist(session_id: str, coordinator: SubmissionCoordinator = Depends(get_live_session), registry: SessionRegistry = Depends(get_session_registry)):
    try:
        submission = await coordinator.retry_persist()
    except StoragePersistFailure as e:
        logger.warning("Manual retry for session %s failed: %s", session_id, e)
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Submission could not be saved. Please retry.",
        )
    except SessionNotActive as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))
    registry.evict_if_persisted(session_id)
    return submission_read(submission)


@router.delete("/sessions/{session_id}")
async def leave_session(session_id: str, registry: SessionRegistry = Depends(get_session_registry)):
    if not registry.end_session(session_id):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Session not found")
    return {"ok": True}
