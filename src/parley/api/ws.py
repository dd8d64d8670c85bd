"""WebSocket gateway binding live connections to the delivery engine.

Frames in both directions are JSON objects ``{"type": ..., "data": {...}}``.
A client first sends ``join`` with its user id, optionally proving it with
the same bearer token the REST API accepts (required when
``WS_REQUIRE_TOKEN`` is set); from then on the socket is
that user's presence handle until it disconnects or the user joins again
elsewhere.
"""

from __future__ import annotations

import logging
from typing import Annotated, Any

from fastapi import APIRouter, Depends, WebSocket, WebSocketDisconnect
from pydantic import ValidationError as SchemaError
from sqlalchemy.orm import Session

from parley.core.errors import DeliveryError, PermissionDeniedError, ValidationError
from parley.core.security import decode_user_id
from parley.core.settings import settings
from parley.db.session import get_db
from parley.models import User
from parley.schemas.events import (
    JOINED,
    MESSAGE_DELETE_ERROR,
    MESSAGE_DELETE_SUCCESS,
    MESSAGE_ERROR,
    MESSAGE_SENT,
    ErrorEvent,
)
from parley.schemas.message import DeleteMessageCommand, SendMessageCommand
from parley.services.delivery import DeliveryRouter
from parley.services.presence import PresenceRegistry

logger = logging.getLogger(__name__)

router = APIRouter()


class WebSocketConnection:
    """Presence handle wrapping one accepted WebSocket."""

    def __init__(self, websocket: WebSocket) -> None:
        self.websocket = websocket
        self.user_id: int | None = None

    async def send_event(self, event: str, payload: dict[str, Any]) -> None:
        try:
            await self.websocket.send_json({"type": event, "data": payload})
        except WebSocketDisconnect as exc:
            raise ConnectionError("client disconnected") from exc


def _error_payload(exc: DeliveryError, **extra: Any) -> dict[str, Any]:
    return ErrorEvent(
        code=exc.code, message=exc.message, client_token=exc.client_token, **extra
    ).to_wire()


async def _handle_join(
    connection: WebSocketConnection,
    data: dict[str, Any],
    db: Session,
    presence: PresenceRegistry,
) -> None:
    token = data.get("token")
    token_user_id = decode_user_id(token) if isinstance(token, str) and token else None
    if token is not None and token_user_id is None:
        await connection.send_event(
            MESSAGE_ERROR, _error_payload(PermissionDeniedError("Invalid token"))
        )
        return
    if token_user_id is None and settings.ws_require_token:
        await connection.send_event(
            MESSAGE_ERROR, _error_payload(PermissionDeniedError("Token required"))
        )
        return

    raw_user_id = data.get("userId", token_user_id)
    try:
        user_id = int(raw_user_id)  # type: ignore[arg-type]
    except (TypeError, ValueError):
        await connection.send_event(
            MESSAGE_ERROR, _error_payload(ValidationError("userId is required"))
        )
        return
    if token_user_id is not None and token_user_id != user_id:
        logger.warning("Join as user %s rejected: token belongs to user %s", user_id, token_user_id)
        await connection.send_event(
            MESSAGE_ERROR, _error_payload(PermissionDeniedError("Token does not match userId"))
        )
        return
    if db.get(User, user_id) is None:
        await connection.send_event(
            MESSAGE_ERROR, _error_payload(ValidationError("Unknown user"))
        )
        return

    if connection.user_id is not None and connection.user_id != user_id:
        presence.unregister(connection)
    connection.user_id = user_id
    presence.register(user_id, connection)
    logger.info("User %s joined", user_id)
    await connection.send_event(JOINED, {"userId": user_id})


async def _handle_send(
    connection: WebSocketConnection,
    data: dict[str, Any],
    db: Session,
    delivery: DeliveryRouter,
) -> None:
    token = data.get("clientToken")
    if connection.user_id is None:
        await connection.send_event(
            MESSAGE_ERROR,
            _error_payload(ValidationError("Join before sending", client_token=token)),
        )
        return
    try:
        command = SendMessageCommand.model_validate({**data, "senderId": connection.user_id})
    except SchemaError:
        await connection.send_event(
            MESSAGE_ERROR,
            _error_payload(ValidationError("Invalid message data", client_token=token)),
        )
        return
    try:
        ack = await delivery.send(db, command)
    except DeliveryError as exc:
        logger.warning("Send from user %s rejected: %s", connection.user_id, exc.message)
        await connection.send_event(MESSAGE_ERROR, _error_payload(exc))
        return
    await connection.send_event(MESSAGE_SENT, ack.to_wire())


async def _handle_delete(
    connection: WebSocketConnection,
    data: dict[str, Any],
    db: Session,
    delivery: DeliveryRouter,
) -> None:
    message_id = data.get("messageId")
    if connection.user_id is None:
        await connection.send_event(
            MESSAGE_DELETE_ERROR,
            _error_payload(ValidationError("Join before deleting"), message_id=message_id),
        )
        return
    try:
        command = DeleteMessageCommand.model_validate(
            {**data, "requesterId": connection.user_id}
        )
    except SchemaError:
        await connection.send_event(
            MESSAGE_DELETE_ERROR,
            _error_payload(ValidationError("Invalid request data"), message_id=None),
        )
        return
    try:
        ack = await delivery.delete(db, command)
    except DeliveryError as exc:
        await connection.send_event(
            MESSAGE_DELETE_ERROR, _error_payload(exc, message_id=command.message_id)
        )
        return
    await connection.send_event(MESSAGE_DELETE_SUCCESS, ack.to_wire())


@router.websocket("/ws")
async def gateway(websocket: WebSocket, db: Annotated[Session, Depends(get_db)]) -> None:
    """Serve one client connection until it disconnects."""
    presence: PresenceRegistry = websocket.app.state.presence
    delivery: DeliveryRouter = websocket.app.state.router

    await websocket.accept()
    connection = WebSocketConnection(websocket)
    try:
        while True:
            frame = await websocket.receive_json()
            if not isinstance(frame, dict):
                await connection.send_event(
                    MESSAGE_ERROR, _error_payload(ValidationError("Malformed frame"))
                )
                continue
            kind = frame.get("type")
            data = frame.get("data")
            if not isinstance(data, dict):
                data = {}
            # Each frame starts from fresh store state.
            db.expire_all()
            if kind == "join":
                await _handle_join(connection, data, db, presence)
            elif kind == "send-message":
                await _handle_send(connection, data, db, delivery)
            elif kind == "delete-message":
                await _handle_delete(connection, data, db, delivery)
            else:
                await connection.send_event(
                    MESSAGE_ERROR, _error_payload(ValidationError(f"Unknown frame type {kind!r}"))
                )
    except WebSocketDisconnect:
        pass
    finally:
        user_id = presence.unregister(connection)
        if user_id is not None:
            logger.info("User %s disconnected", user_id)
