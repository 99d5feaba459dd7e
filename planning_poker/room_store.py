from __future__ import annotations

import logging
import secrets
import string
from collections.abc import Callable, Iterable

import redis
from redis.client import Pipeline

from planning_poker.api.models import Member, RoomMeta, RoomSnapshot
from planning_poker.clock import Clock, system_clock
from planning_poker.config import get_settings
from planning_poker.fsm import RoundFSM
from planning_poker.store_keys import RoomKeys

logger = logging.getLogger(__name__)

ROOM_CODE_ALPHABET = string.ascii_uppercase + string.digits
ROOM_CODE_LENGTH = 8
_MAX_CODE_ATTEMPTS = 10


class VersionConflictError(ValueError):
    """Raised when a meta update was made against a stale room version."""

    def __init__(self, *, expected: int, actual: int) -> None:
        super().__init__(f"Room version is {actual}, expected {expected}")
        self.expected = expected
        self.actual = actual


def _ttl() -> int:
    return get_settings().room_ttl_seconds


def _generate_room_code() -> str:
    return "".join(secrets.choice(ROOM_CODE_ALPHABET) for _ in range(ROOM_CODE_LENGTH))


def _refresh_ttl(pipe: Pipeline, keys: RoomKeys) -> None:
    ttl = _ttl()
    for key in keys.all():
        pipe.expire(key, ttl)


def _room_exists(r: redis.Redis, keys: RoomKeys) -> bool:
    return bool(r.exists(keys.meta))


def room_exists(*, r: redis.Redis, room_code: str) -> bool:
    return _room_exists(r, RoomKeys.for_room(room_code))


def _remove_clients(r: redis.Redis, keys: RoomKeys, client_ids: Iterable[str]) -> None:
    ids = list(client_ids)
    if not ids:
        return
    # Member and vote go away together.
    pipe = r.pipeline(transaction=True)
    pipe.hdel(keys.members, *ids)
    pipe.hdel(keys.votes, *ids)
    pipe.execute()


def create_room(*, r: redis.Redis, room_name: str, clock: Clock = system_clock) -> str:
    now = clock.now_ms()
    meta = RoomMeta(room_name=room_name, created_at=now, updated_at=now)
    payload = meta.model_dump_json(by_alias=True)

    for _ in range(_MAX_CODE_ATTEMPTS):
        room_code = _generate_room_code()
        # NX so that a colliding code never clobbers a live room.
        if r.set(RoomKeys.for_room(room_code).meta, payload, nx=True, ex=_ttl()):
            logger.info("Created room %s (%r)", room_code, room_name)
            return room_code

    raise RuntimeError("Could not allocate a unique room code")


def get_room_snapshot(*, r: redis.Redis, room_code: str, clock: Clock = system_clock) -> RoomSnapshot | None:
    """Read a room and prune members that have gone quiet.

    Returns None when the meta key is missing or expired. Members whose last
    heartbeat is older than the inactivity threshold are deleted from the store
    (with their votes) before the snapshot is built, so pruning happens lazily
    as a side effect of reads.
    """

    keys = RoomKeys.for_room(room_code)
    pipe = r.pipeline(transaction=False)
    pipe.get(keys.meta)
    pipe.hgetall(keys.members)
    pipe.hgetall(keys.votes)
    raw_meta, raw_members, raw_votes = pipe.execute()

    if not raw_meta:
        return None

    meta = RoomMeta.model_validate_json(raw_meta)

    now = clock.now_ms()
    threshold_ms = get_settings().inactive_threshold_ms
    active: dict[str, Member] = {}
    inactive: list[str] = []
    for client_id, raw_member in (raw_members or {}).items():
        member = Member.model_validate_json(raw_member)
        if now - member.last_seen_at < threshold_ms:
            active[client_id] = member
        else:
            inactive.append(client_id)

    if inactive:
        _remove_clients(r, keys, inactive)
        logger.info("Pruned %d inactive member(s) from room %s", len(inactive), keys.room_code)

    # Votes only count for members that are still around.
    votes = {client_id: vote for client_id, vote in (raw_votes or {}).items() if client_id in active}

    return RoomSnapshot(meta=meta, members=active, votes=votes, version=meta.version)


def touch_member(*, r: redis.Redis, room_code: str, client_id: str, clock: Clock = system_clock) -> None:
    """Refresh a member's last-seen timestamp. No-op for unknown members.

    Runs under WATCH on the members hash so a concurrent leave or prune is
    never undone by writing the old record back.
    """

    keys = RoomKeys.for_room(room_code)

    def _apply(pipe: Pipeline) -> None:
        raw = pipe.hget(keys.members, client_id)
        if not raw:
            pipe.unwatch()
            return
        member = Member.model_validate_json(raw)
        member.last_seen_at = clock.now_ms()
        pipe.multi()
        pipe.hset(keys.members, client_id, member.model_dump_json(by_alias=True))

    r.transaction(_apply, keys.members)


def join_member(
    *,
    r: redis.Redis,
    room_code: str,
    client_id: str,
    name: str,
    clock: Clock = system_clock,
) -> RoomSnapshot | None:
    keys = RoomKeys.for_room(room_code)
    if not _room_exists(r, keys):
        return None

    now = clock.now_ms()
    member = Member(name=name, joined_at=now, last_seen_at=now)

    pipe = r.pipeline(transaction=True)
    pipe.hset(keys.members, client_id, member.model_dump_json(by_alias=True))
    _refresh_ttl(pipe, keys)
    pipe.execute()
    logger.info("Client %s joined room %s as %r", client_id, keys.room_code, name)

    return get_room_snapshot(r=r, room_code=keys.room_code, clock=clock)


def cast_vote(
    *,
    r: redis.Redis,
    room_code: str,
    client_id: str,
    vote: str,
    clock: Clock = system_clock,
) -> RoomSnapshot | None:
    keys = RoomKeys.for_room(room_code)
    if not _room_exists(r, keys):
        return None

    pipe = r.pipeline(transaction=True)
    pipe.hset(keys.votes, client_id, vote)
    _refresh_ttl(pipe, keys)
    pipe.execute()
    touch_member(r=r, room_code=keys.room_code, client_id=client_id, clock=clock)
    logger.debug("Client %s voted in room %s", client_id, keys.room_code)

    return get_room_snapshot(r=r, room_code=keys.room_code, clock=clock)


def _update_meta(
    *,
    r: redis.Redis,
    keys: RoomKeys,
    mutate: Callable[[RoomMeta], None],
    clock: Clock,
    expected_version: int | None = None,
    also: Callable[[Pipeline], None] | None = None,
) -> RoomMeta | None:
    """Read-modify-write of the meta blob under WATCH.

    Every successful update bumps `version` and `updatedAt` and re-arms the TTL
    of all room keys. A concurrent writer makes redis-py retry the whole
    callable, so version increments are never lost. `also` queues extra
    commands into the same MULTI block.
    """

    def _apply(pipe: Pipeline) -> RoomMeta | None:
        raw = pipe.get(keys.meta)
        if not raw:
            pipe.unwatch()
            return None

        meta = RoomMeta.model_validate_json(raw)
        if expected_version is not None and meta.version != expected_version:
            raise VersionConflictError(expected=expected_version, actual=meta.version)

        mutate(meta)
        meta.version += 1
        meta.updated_at = clock.now_ms()

        pipe.multi()
        pipe.set(keys.meta, meta.model_dump_json(by_alias=True), ex=_ttl())
        if also is not None:
            also(pipe)
        _refresh_ttl(pipe, keys)
        return meta

    return r.transaction(_apply, keys.meta, value_from_callable=True)


def reveal_votes(
    *,
    r: redis.Redis,
    room_code: str,
    client_id: str,
    expected_version: int | None = None,
    clock: Clock = system_clock,
) -> RoomSnapshot | None:
    keys = RoomKeys.for_room(room_code)

    def _reveal(meta: RoomMeta) -> None:
        fsm = RoundFSM(meta)
        fsm.reveal()
        fsm.sync_to_meta()

    meta = _update_meta(r=r, keys=keys, mutate=_reveal, clock=clock, expected_version=expected_version)
    if meta is None:
        return None

    touch_member(r=r, room_code=keys.room_code, client_id=client_id, clock=clock)
    logger.info("Room %s revealed by %s (version %d)", keys.room_code, client_id, meta.version)
    return get_room_snapshot(r=r, room_code=keys.room_code, clock=clock)


def reset_votes(
    *,
    r: redis.Redis,
    room_code: str,
    client_id: str,
    expected_version: int | None = None,
    clock: Clock = system_clock,
) -> RoomSnapshot | None:
    keys = RoomKeys.for_room(room_code)

    def _reset(meta: RoomMeta) -> None:
        fsm = RoundFSM(meta)
        fsm.new_round()
        fsm.sync_to_meta()

    meta = _update_meta(
        r=r,
        keys=keys,
        mutate=_reset,
        clock=clock,
        expected_version=expected_version,
        also=lambda pipe: pipe.delete(keys.votes),
    )
    if meta is None:
        return None

    touch_member(r=r, room_code=keys.room_code, client_id=client_id, clock=clock)
    logger.info("Room %s reset by %s (version %d)", keys.room_code, client_id, meta.version)
    return get_room_snapshot(r=r, room_code=keys.room_code, clock=clock)


def update_story_title(
    *,
    r: redis.Redis,
    room_code: str,
    client_id: str,
    story_title: str,
    expected_version: int | None = None,
    clock: Clock = system_clock,
) -> RoomSnapshot | None:
    keys = RoomKeys.for_room(room_code)

    def _set_title(meta: RoomMeta) -> None:
        meta.story_title = story_title

    meta = _update_meta(r=r, keys=keys, mutate=_set_title, clock=clock, expected_version=expected_version)
    if meta is None:
        return None

    touch_member(r=r, room_code=keys.room_code, client_id=client_id, clock=clock)
    return get_room_snapshot(r=r, room_code=keys.room_code, clock=clock)


def leave_member(*, r: redis.Redis, room_code: str, client_id: str) -> None:
    keys = RoomKeys.for_room(room_code)
    _remove_clients(r, keys, [client_id])
    logger.info("Client %s left room %s", client_id, keys.room_code)
