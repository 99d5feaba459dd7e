from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import assert_never

import redis

from planning_poker.api.models import (
    CastVoteCommand,
    Command,
    HeartbeatCommand,
    JoinRoomCommand,
    LeaveRoomCommand,
    ResetCommand,
    RevealCommand,
    RoomSnapshot,
    UpdateStoryCommand,
)
from planning_poker.clock import Clock, system_clock
from planning_poker.room_store import (
    cast_vote,
    get_room_snapshot,
    join_member,
    leave_member,
    reset_votes,
    reveal_votes,
    touch_member,
    update_story_title,
)
from planning_poker.store_keys import normalize_room_code

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class CommandResult:
    """Outcome of a client command.

    - `snapshot`: the room after the command, or None if the room is gone.
    - `should_broadcast`: whether connected clients need the new snapshot.
    """

    room_code: str
    snapshot: RoomSnapshot | None
    should_broadcast: bool

    @property
    def room_found(self) -> bool:
        return self.snapshot is not None


def dispatch_command(*, r: redis.Redis, command: Command, clock: Clock = system_clock) -> CommandResult:
    """Entry point for every client command.

    Maps each command kind onto its room_store operation. Heartbeats only
    refresh liveness and never trigger a broadcast.

    Raises VersionConflictError when a REVEAL/RESET/UPDATE_STORY carries an
    `expectedVersion` that no longer matches.
    """

    room_code = normalize_room_code(command.room_code)
    client_id = command.client_id
    logger.debug("Dispatching %s for client %s in room %s", command.type, client_id, room_code)

    match command:
        case HeartbeatCommand():
            touch_member(r=r, room_code=room_code, client_id=client_id, clock=clock)
            return CommandResult(room_code=room_code, snapshot=None, should_broadcast=False)

        case JoinRoomCommand(name=name):
            snapshot = join_member(r=r, room_code=room_code, client_id=client_id, name=name, clock=clock)

        case CastVoteCommand(vote=vote):
            snapshot = cast_vote(r=r, room_code=room_code, client_id=client_id, vote=vote, clock=clock)

        case RevealCommand(expected_version=expected_version):
            snapshot = reveal_votes(
                r=r,
                room_code=room_code,
                client_id=client_id,
                expected_version=expected_version,
                clock=clock,
            )

        case ResetCommand(expected_version=expected_version):
            snapshot = reset_votes(
                r=r,
                room_code=room_code,
                client_id=client_id,
                expected_version=expected_version,
                clock=clock,
            )

        case UpdateStoryCommand(story_title=story_title, expected_version=expected_version):
            snapshot = update_story_title(
                r=r,
                room_code=room_code,
                client_id=client_id,
                story_title=story_title,
                expected_version=expected_version,
                clock=clock,
            )

        case LeaveRoomCommand():
            leave_member(r=r, room_code=room_code, client_id=client_id)
            snapshot = get_room_snapshot(r=r, room_code=room_code, clock=clock)

        case _:
            assert_never(command)

    if snapshot is None:
        logger.info("%s for missing room %s", command.type, room_code)
    return CommandResult(room_code=room_code, snapshot=snapshot, should_broadcast=snapshot is not None)
