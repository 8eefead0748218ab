"""Lesson rooms over WebSocket

Frames are JSON objects ``{"event": ..., "data": ...}`` in both directions.
Browsers cannot set headers on a WebSocket handshake, so the user id may
also be passed as the ``user_id`` query parameter.
"""
from uuid import UUID, uuid4

from fastapi import APIRouter, WebSocket, WebSocketDisconnect, status

from core.database import get_db_session
from core.errors import AppError, Result
from core.logging import realtime_logger
from core.security import USER_ID_HEADER
from engines.progression import ProgressionTracker
from engines.realtime import LessonChannel, LocalNotifier
from models.user import User

log = realtime_logger()

router = APIRouter()

notifier = LocalNotifier()


async def autosave(user_id: UUID, lesson_id: UUID, code: str) -> Result[object, AppError]:
    async with get_db_session() as session:
        result = await ProgressionTracker(session).save_code(user_id, lesson_id, code)
        if result.is_ok():
            await session.commit()
        return result


@router.websocket("/lessons")
async def lesson_socket(websocket: WebSocket):
    raw = websocket.headers.get(USER_ID_HEADER) or websocket.query_params.get("user_id")
    try:
        user_id = UUID(raw or "")
    except ValueError:
        log.warning("socket_rejected", reason="missing_or_invalid_user_id")
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
        return

    async with get_db_session() as session:
        user = await session.get(User, user_id)
        username = user.username if user else None

    await websocket.accept()
    channel = LessonChannel(uuid4().hex, user_id, username, notifier, websocket, autosave)
    log.info("socket_connected", connection_id=channel.connection_id, user_id=str(user_id))

    try:
        while True:
            try:
                frame = await websocket.receive_json()
            except ValueError:
                log.warning("socket_frame_invalid", connection_id=channel.connection_id)
                continue
            if not isinstance(frame, dict) or "event" not in frame:
                log.warning("socket_frame_invalid", connection_id=channel.connection_id)
                continue
            await channel.handle(frame["event"], frame.get("data"))
    except WebSocketDisconnect:
        pass
    finally:
        await channel.close()
        log.info("socket_disconnected", connection_id=channel.connection_id)
