import json
from unittest.mock import AsyncMock

import pytest

from wallbounce.errors import VersionConflictError
from wallbounce.store.redis import RedisStateStore


def _store(clock, **responses) -> tuple[RedisStateStore, AsyncMock]:
    redis = AsyncMock()
    for name, value in responses.items():
        getattr(redis, name).return_value = value
    return RedisStateStore(redis, region="us-east-1", prefix="wb:", clock=clock), redis


@pytest.mark.asyncio
async def test_put_runs_cas_script(clock) -> None:
    store, redis = _store(clock, eval=[1, 3])

    entry = await store.put("session#s-1", {"a": 1}, expected_version=2, ttl_seconds=60)

    assert entry.version == 3
    assert entry.expires_at == clock.now + 60
    script, numkeys, key, mode, expected, value, *rest = redis.eval.await_args.args
    assert "PEXPIRE" in script
    assert (numkeys, key, mode, expected) == (1, "wb:session#s-1", "expect", 2)
    assert json.loads(value) == {"a": 1}
    updated_at, region, ttl_ms, explicit_version, provenance, _expires = rest
    assert region == "us-east-1"
    assert ttl_ms == 60_000
    assert explicit_version == ""
    assert provenance == ""


@pytest.mark.asyncio
@pytest.mark.parametrize(
    ("kwargs", "mode"),
    [({}, "any"), ({"if_not_exists": True}, "absent"), ({"expected_version": 0}, "expect")],
)
async def test_write_modes(clock, kwargs, mode) -> None:
    store, redis = _store(clock, eval=[1, 1])
    await store.put("k", {}, **kwargs)
    assert redis.eval.await_args.args[3] == mode


@pytest.mark.asyncio
async def test_conflict_reports_current_version(clock) -> None:
    store, _ = _store(clock, eval=[0, 4])

    with pytest.raises(VersionConflictError) as exc_info:
        await store.put("k", {}, expected_version=2)

    assert exc_info.value.current_version == 4
    assert exc_info.value.expected_version == 2


@pytest.mark.asyncio
async def test_replicate_passes_explicit_version(clock) -> None:
    store, redis = _store(clock, eval=[1, 9])
    entry = await store.replicate(
        "k",
        {"v": 1},
        version=9,
        updated_at=100.5,
        provenance={"syncedFrom": "eu-west-1"},
        expected_version=3,
    )

    args = redis.eval.await_args.args
    assert args[3:5] == ("expect", 3)
    assert args[9] == 9
    assert json.loads(args[10]) == {"syncedFrom": "eu-west-1"}
    assert entry.updated_at == 100.5
    assert entry.provenance == {"syncedFrom": "eu-west-1"}


@pytest.mark.asyncio
async def test_get_decodes_hash(clock) -> None:
    store, redis = _store(
        clock,
        hgetall={
            "value": json.dumps({"a": 1}),
            "version": "5",
            "updated_at": "1700000000.5",
            "region": "eu-west-1",
            "provenance": "",
            "expires_at": "",
        },
    )

    entry = await store.get("k")

    redis.hgetall.assert_awaited_once_with("wb:k")
    assert entry is not None
    assert entry.value == {"a": 1}
    assert entry.version == 5
    assert entry.updated_at == 1700000000.5
    assert entry.region == "eu-west-1"
    assert entry.provenance is None
    assert entry.expires_at is None


@pytest.mark.asyncio
async def test_get_missing_and_delete(clock) -> None:
    store, redis = _store(clock, hgetall={}, delete=1)
    assert await store.get("k") is None
    assert await store.delete("k") is True
    redis.delete.assert_awaited_once_with("wb:k")
