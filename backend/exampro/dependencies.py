from fastapi import Depends, HTTPException, status, Request

from .services.errors import SessionNotFound
from .services.exam_service import ExamStore
from .services.session_service import SessionRegistry
from .services.submission_coordinator import SubmissionCoordinator


def get_exam_store(request: Request) -> ExamStore:
    return request.app.state.exam_store


def get_session_registry(request: Request) -> SessionRegistry:
    return request.app.state.sessions


async def get_live_session(session_id: str, registry: SessionRegistry = Depends(get_session_registry)) -> SubmissionCoordinator:
    try:
        return registry.require(session_id)
    except SessionNotFound:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Session not found")
