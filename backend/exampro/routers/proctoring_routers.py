"""Push interface for the proctoring collaborator (HTTP and WebSocket)."""

import logging
from fastapi import APIRouter, Depends, WebSocket, WebSocketDisconnect, status
from pydantic import ValidationError

from ..dependencies import get_live_session
from ..schemas.violation_schema import ViolationPayload
from ..services.submission_coordinator import SubmissionCoordinator

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Proctoring"])


@router.post("/sessions/{session_id}/violations")
async def record_violation(payload: ViolationPayload, coordinator: SubmissionCoordinator = Depends(get_live_session)):
    accepted = coordinator.record_violation(payload.to_event())
    return {
        "accepted": accepted,
        "state": coordinator.state.value,
        "terminal_reason": coordinator.terminal_reason.value if coordinator.terminal_reason else None,
        "violations": coordinator.violation_counts(),
    }


@router.websocket("/ws/sessions/{session_id}/proctoring")
async def proctoring_feed(websocket: WebSocket, session_id: str) -> None:
    """Stream of violation events for one session; closes once the session leaves Active."""
    coordinator = websocket.app.state.sessions.get(session_id)
    await websocket.accept()
    if coordinator is None or not coordinator.is_active:
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
        return
    logger.info("[CONNECTED] proctoring feed for %s", session_id)

    try:
        while coordinator.is_active:
            raw = await websocket.receive_text()
            try:
                payload = ViolationPayload.model_validate_json(raw)
            except ValidationError as e:
                logger.warning("[WS] %s invalid message format: %s", session_id, e)
                continue

            accepted = coordinator.record_violation(payload.to_event())
            await websocket.send_json({
                "accepted": accepted,
                "state": coordinator.state.value,
                "terminal_reason": coordinator.terminal_reason.value if coordinator.terminal_reason else None,
            })
        await websocket.close(code=status.WS_1000_NORMAL_CLOSURE)
        logger.info("[CLOSED] proctoring feed for %s (session %s)", session_id, coordinator.state.value)
    except WebSocketDisconnect:
        logger.info("[DISCONNECTED] proctoring feed for %s", session_id)
