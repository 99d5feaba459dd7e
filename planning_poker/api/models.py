from __future__ import annotations

from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, field_validator
from pydantic.alias_generators import to_camel

# Order matters: clients render the cards in this order.
DECK: tuple[str, ...] = ("0", "0.5", "1", "2", "3", "5", "8", "13", "20", "40", "100", "?", "☕")


class CamelModel(BaseModel):
    """snake_case in Python, camelCase on the wire and in Redis."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class RoomMeta(CamelModel):
    room_name: str
    deck: list[str] = Field(default_factory=lambda: list(DECK))
    created_at: int
    updated_at: int
    revealed: bool = False
    story_title: str = ""
    version: int = 0


class Member(CamelModel):
    name: str
    joined_at: int
    last_seen_at: int


class RoomSnapshot(CamelModel):
    meta: RoomMeta
    members: dict[str, Member] = Field(default_factory=dict)
    votes: dict[str, str] = Field(default_factory=dict)
    version: int

    @classmethod
    def placeholder(cls) -> "RoomSnapshot":
        """Empty snapshot at the minimum version, sent before the first real event."""

        meta = RoomMeta(room_name="", created_at=0, updated_at=0)
        return cls(meta=meta, version=meta.version)


class RoomCreateRequest(CamelModel):
    room_name: str = Field(..., min_length=1, max_length=100)


class RoomCreateResponse(CamelModel):
    room_code: str


class RoomSnapshotResponse(CamelModel):
    snapshot: RoomSnapshot


class CommandAck(BaseModel):
    ok: bool = True


# --- client commands --------------------------------------------------------


class _RoomCommand(CamelModel):
    room_code: str = Field(..., min_length=1, max_length=32)
    client_id: str = Field(..., min_length=1, max_length=128)


class JoinRoomCommand(_RoomCommand):
    type: Literal["JOIN_ROOM"]
    name: str = Field(..., min_length=1, max_length=100)


class LeaveRoomCommand(_RoomCommand):
    type: Literal["LEAVE_ROOM"]


class CastVoteCommand(_RoomCommand):
    type: Literal["CAST_VOTE"]
    vote: str

    @field_validator("vote")
    @classmethod
    def _vote_from_deck(cls, v: str) -> str:
        # Empty string means "no estimate yet".
        if v and v not in DECK:
            raise ValueError(f"vote must be one of: {', '.join(DECK)}")
        return v


class RevealCommand(_RoomCommand):
    type: Literal["REVEAL"]
    expected_version: int | None = None


class ResetCommand(_RoomCommand):
    type: Literal["RESET"]
    expected_version: int | None = None


class UpdateStoryCommand(_RoomCommand):
    type: Literal["UPDATE_STORY"]
    story_title: str = Field(..., max_length=500)
    expected_version: int | None = None


class HeartbeatCommand(_RoomCommand):
    type: Literal["HEARTBEAT"]


Command = Annotated[
    Union[
        JoinRoomCommand,
        LeaveRoomCommand,
        CastVoteCommand,
        RevealCommand,
        ResetCommand,
        UpdateStoryCommand,
        HeartbeatCommand,
    ],
    Field(discriminator="type"),
]

command_adapter: TypeAdapter[Command] = TypeAdapter(Command)


# --- server events ----------------------------------------------------------


class RoomSnapshotEvent(CamelModel):
    type: Literal["ROOM_SNAPSHOT"] = "ROOM_SNAPSHOT"
    room_code: str
    snapshot: RoomSnapshot


class RoomPatchEvent(CamelModel):
    type: Literal["ROOM_PATCH"] = "ROOM_PATCH"
    room_code: str
    patch: dict[str, Any]


class ErrorEvent(CamelModel):
    type: Literal["ERROR"] = "ERROR"
    message: str
    code: str | None = None


class KeepAliveEvent(CamelModel):
    type: Literal["KEEPALIVE"] = "KEEPALIVE"


ServerEvent = Union[RoomSnapshotEvent, RoomPatchEvent, ErrorEvent, KeepAliveEvent]


def event_payload(event: ServerEvent) -> dict[str, Any]:
    return event.model_dump(mode="json", by_alias=True, exclude_none=True)


# --- capacity calculator ----------------------------------------------------


class CapacityLocation(CamelModel):
    id: str
    name: str = ""
    public_holidays: float = Field(0, ge=0)
    leave_days: float = Field(0, ge=0)
    num_engineers: int = Field(0, ge=0)


class CapacityInput(CamelModel):
    sprint_days: float = Field(..., ge=0)
    average_velocity: float = Field(..., ge=0)
    locations: list[CapacityLocation] = Field(default_factory=list)


class CapacityResult(CamelModel):
    total_engineers: int
    max_person_days: float
    unavailable_days: float
    available_person_days: float
    availability_percentage: float
    projected_capacity: float
