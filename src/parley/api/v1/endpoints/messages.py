"""Message endpoints for the Parley API."""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Query, status

from parley.core.errors import DeliveryError
from parley.schemas.message import DeleteMessageCommand, SendMessageCommand, SendMessageRequest
from parley.services import history

from ..dependencies import CurrentUserDep, RouterDep, SessionDep, http_error

router = APIRouter(prefix="/messages", tags=["messages"])


@router.post("/", status_code=status.HTTP_201_CREATED)
async def send_message(
    message_data: SendMessageRequest,
    current_user: CurrentUserDep,
    db: SessionDep,
    delivery: RouterDep,
) -> dict[str, Any]:
    """Send a direct or group message, now or at a scheduled instant."""
    command = SendMessageCommand(
        sender_id=current_user.id,
        **message_data.model_dump(),
    )
    try:
        ack = await delivery.send(db, command)
    except DeliveryError as exc:
        raise http_error(exc) from exc
    return ack.to_wire()


@router.delete("/{message_id}")
async def delete_message(
    message_id: int,
    current_user: CurrentUserDep,
    db: SessionDep,
    delivery: RouterDep,
    group_id: int | None = Query(None, alias="groupId"),
) -> dict[str, Any]:
    """Redact a message as its sender or as an admin of its group."""
    command = DeleteMessageCommand(
        message_id=message_id,
        requester_id=current_user.id,
        group_id=group_id,
    )
    try:
        ack = await delivery.delete(db, command)
    except DeliveryError as exc:
        raise http_error(exc) from exc
    return ack.to_wire()


@router.get("/direct/{other_user_id}")
async def get_direct_history(
    other_user_id: int,
    current_user: CurrentUserDep,
    db: SessionDep,
    include_own_scheduled: bool = Query(False, alias="includeOwnScheduled"),
) -> list[dict[str, Any]]:
    """Get the visible history between the current user and another user."""
    try:
        messages = history.direct_history(
            db, current_user.id, other_user_id, include_own_scheduled=include_own_scheduled
        )
    except DeliveryError as exc:
        raise http_error(exc) from exc
    return [message.to_wire() for message in messages]


@router.get("/groups/{group_id}")
async def get_group_history(
    group_id: int,
    current_user: CurrentUserDep,
    db: SessionDep,
    include_own_scheduled: bool = Query(False, alias="includeOwnScheduled"),
) -> list[dict[str, Any]]:
    """Get the visible history of a group the current user belongs to."""
    try:
        messages = history.group_history(
            db, group_id, current_user.id, include_own_scheduled=include_own_scheduled
        )
    except DeliveryError as exc:
        raise http_error(exc) from exc
    return [message.to_wire() for message in messages]


@router.get("/inbox")
async def get_inbox(
    current_user: CurrentUserDep,
    db: SessionDep,
    delivery: RouterDep,
) -> list[dict[str, Any]]:
    """Get conversation previews for the current user, newest first."""
    entries = history.inbox(db, current_user.id, projector=delivery.projector)
    return [entry.to_wire() for entry in entries]
