from __future__ import annotations

from statemachine import State, StateMachine

from planning_poker.api.models import RoomMeta


class RoundFSM(StateMachine):
    """Voting round of a room: cards face down (voting) or face up (revealed).

    Both events are allowed from either state; repeating one only bumps the version.
    """

    voting = State("voting", value="voting", initial=True)
    revealed = State("revealed", value="revealed")

    reveal = voting.to(revealed) | revealed.to.itself()
    new_round = revealed.to(voting) | voting.to.itself()

    def __init__(self, room_meta: RoomMeta):
        self.room_meta = room_meta
        super().__init__(start_value="revealed" if room_meta.revealed else "voting")

    def sync_to_meta(self) -> None:
        self.room_meta.revealed = self.current_state.value == "revealed"
