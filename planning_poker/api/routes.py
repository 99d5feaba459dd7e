from __future__ import annotations

import asyncio
import contextlib
import logging
from typing import Any

import redis
from fastapi import APIRouter, Depends, HTTPException, Query, WebSocket, WebSocketDisconnect, status
from pydantic import ValidationError

from planning_poker.api.deps import get_clock, get_redis
from planning_poker.api.models import (
    CapacityInput,
    CapacityResult,
    CommandAck,
    ErrorEvent,
    KeepAliveEvent,
    RoomCreateRequest,
    RoomCreateResponse,
    RoomSnapshot,
    RoomSnapshotEvent,
    RoomSnapshotResponse,
    command_adapter,
    event_payload,
)
from planning_poker.capacity import calculate_capacity
from planning_poker.clock import Clock
from planning_poker.commands import dispatch_command
from planning_poker.config import get_settings
from planning_poker.room_store import VersionConflictError, create_room, get_room_snapshot, room_exists
from planning_poker.store_keys import normalize_room_code
from planning_poker.websocket_hub import hub

logger = logging.getLogger(__name__)

router = APIRouter()


async def _keepalive(room_code: str, websocket: WebSocket, interval: float) -> None:
    payload = event_payload(KeepAliveEvent())
    while True:
        await asyncio.sleep(interval)
        try:
            await websocket.send_json(payload)
        except Exception:
            logger.debug("Keep-alive failed for a socket in room %s", room_code, exc_info=True)
            await hub.disconnect(room_code, websocket)
            return


@router.websocket("/ws/room/{room_code}")
async def room_updates_ws(
    websocket: WebSocket,
    room_code: str,
    client_id: str | None = Query(default=None, alias="clientId"),
    r: redis.Redis = Depends(get_redis),
) -> None:
    code = normalize_room_code(room_code)

    if not room_exists(r=r, room_code=code):
        await websocket.accept()
        await websocket.send_json(event_payload(ErrorEvent(message="Room not found", code="ROOM_NOT_FOUND")))
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
        logger.info("Rejected WebSocket for missing room %s (client %s)", code, client_id)
        return

    # Real state arrives with the next broadcast or a snapshot poll.
    greeting = event_payload(RoomSnapshotEvent(room_code=code, snapshot=RoomSnapshot.placeholder()))
    await hub.connect(code, websocket, initial=greeting)
    keepalive = asyncio.create_task(_keepalive(code, websocket, get_settings().keepalive_interval_seconds))

    try:
        # Inbound frames are ignored; commands go through POST /commands.
        while True:
            await websocket.receive_text()
    except WebSocketDisconnect:
        logger.debug("Client %s closed WebSocket for room %s", client_id, code)
    finally:
        keepalive.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await keepalive
        await hub.disconnect(code, websocket)


@router.get("/healthcheck")
async def healthcheck() -> dict[str, str]:
    return {"status": "ok"}


@router.post("/rooms", response_model=RoomCreateResponse, status_code=status.HTTP_201_CREATED)
async def create_room_route(
    payload: RoomCreateRequest,
    r: redis.Redis = Depends(get_redis),
    clock: Clock = Depends(get_clock),
) -> RoomCreateResponse:
    room_code = create_room(r=r, room_name=payload.room_name, clock=clock)
    return RoomCreateResponse(room_code=room_code)


@router.get("/rooms/{room_code}", response_model=RoomSnapshotResponse)
async def get_room_route(
    room_code: str,
    r: redis.Redis = Depends(get_redis),
    clock: Clock = Depends(get_clock),
) -> RoomSnapshotResponse:
    """One-shot snapshot for clients that cannot hold a WebSocket open."""

    snapshot = get_room_snapshot(r=r, room_code=room_code, clock=clock)
    if snapshot is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Room not found")
    return RoomSnapshotResponse(snapshot=snapshot)


@router.post("/commands", response_model=CommandAck)
async def command_route(
    body: dict[str, Any],
    r: redis.Redis = Depends(get_redis),
    clock: Clock = Depends(get_clock),
) -> CommandAck:
    try:
        command = command_adapter.validate_python(body)
    except ValidationError as e:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail=e.errors(include_url=False, include_context=False),
        ) from e

    try:
        result = dispatch_command(r=r, command=command, clock=clock)
    except VersionConflictError as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e)) from e

    if command.type == "HEARTBEAT":
        return CommandAck()

    if not result.room_found:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Room not found")

    if result.should_broadcast and result.snapshot is not None:
        event = RoomSnapshotEvent(room_code=result.room_code, snapshot=result.snapshot)
        delivered = await hub.broadcast(result.room_code, event_payload(event))
        logger.debug("Broadcast %s snapshot v%d to %d socket(s)", command.type, result.snapshot.version, delivered)

    return CommandAck()


@router.post("/capacity", response_model=CapacityResult)
async def capacity_route(payload: CapacityInput) -> CapacityResult:
    return calculate_capacity(payload)
