from __future__ import annotations

from dataclasses import dataclass


def normalize_room_code(room_code: str) -> str:
    return room_code.strip().upper()


@dataclass(frozen=True, slots=True)
class RoomKeys:
    """Redis keys holding one room's state.

    meta    -> JSON string (RoomMeta)
    members -> hash clientId -> JSON string (Member)
    votes   -> hash clientId -> vote string
    """

    room_code: str

    @classmethod
    def for_room(cls, room_code: str) -> "RoomKeys":
        return cls(room_code=normalize_room_code(room_code))

    @property
    def meta(self) -> str:
        return f"room:{self.room_code}:meta"

    @property
    def members(self) -> str:
        return f"room:{self.room_code}:members"

    @property
    def votes(self) -> str:
        return f"room:{self.room_code}:votes"

    def all(self) -> tuple[str, str, str]:
        return (self.meta, self.members, self.votes)
