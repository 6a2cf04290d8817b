"""Test idempotency ledgers: memory TTL semantics, Redis SET NX / MGET mapping."""

import json
from unittest.mock import AsyncMock

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from billing_events.core.errors import ConditionalCheckFailed, TransientStorageError
from billing_events.core.models import IdempotencyRecord
from billing_events.idempotency.ledger import MemoryIdempotencyLedger, RedisIdempotencyLedger

NOW = 1_700_000_000


def _record(key: str = "k-1", ttl: int = 3600, data: dict | None = None) -> IdempotencyRecord:
    return IdempotencyRecord(key=key, processed_at=NOW, ttl=NOW + ttl, data=data)


class TestMemoryLedger:
    async def test_put_then_put_again_fails(self, ledger):
        await ledger.put_if_absent(_record())

        with pytest.raises(ConditionalCheckFailed) as exc_info:
            await ledger.put_if_absent(_record())
        assert exc_info.value.key == "k-1"

    async def test_expired_record_is_absent(self, ledger, clock):
        await ledger.put_if_absent(_record(ttl=10))
        clock.advance(10)

        assert await ledger.get_many(["k-1"]) == {}
        await ledger.put_if_absent(_record(ttl=10))

    async def test_get_many_returns_only_existing(self, ledger):
        await ledger.put_if_absent(_record("a"))

        found = await ledger.get_many(["a", "b"])
        assert list(found) == ["a"]

    async def test_get_many_rejects_oversized_request(self, clock):
        ledger = MemoryIdempotencyLedger(clock=clock, batch_get_limit=2)

        with pytest.raises(ValueError):
            await ledger.get_many(["a", "b", "c"])


class TestRedisLedger:
    async def test_put_uses_set_nx_with_expiry(self):
        client = AsyncMock()
        client.set.return_value = True
        ledger = RedisIdempotencyLedger(prefix="test:", client=client)

        await ledger.put_if_absent(_record(data={"x": 1}))

        args, kwargs = client.set.call_args
        assert args[0] == "test:k-1"
        assert json.loads(args[1])["data"] == {"x": 1}
        assert kwargs == {"nx": True, "ex": 3600}

    async def test_existing_key_raises_conditional_check(self):
        client = AsyncMock()
        client.set.return_value = None
        ledger = RedisIdempotencyLedger(client=client)

        with pytest.raises(ConditionalCheckFailed):
            await ledger.put_if_absent(_record())

    async def test_redis_error_is_transient(self):
        client = AsyncMock()
        client.set.side_effect = RedisConnectionError("refused")
        ledger = RedisIdempotencyLedger(client=client)

        with pytest.raises(TransientStorageError):
            await ledger.put_if_absent(_record())

    async def test_get_many_maps_mget_replies(self):
        client = AsyncMock()
        client.mget.return_value = [_record("a", data={"v": 2}).model_dump_json().encode(), None]
        ledger = RedisIdempotencyLedger(prefix="p:", client=client)

        found = await ledger.get_many(["a", "b"])

        client.mget.assert_awaited_once_with(["p:a", "p:b"])
        assert list(found) == ["a"]
        assert found["a"].data == {"v": 2}

    async def test_get_many_empty_skips_redis(self):
        client = AsyncMock()
        ledger = RedisIdempotencyLedger(client=client)

        assert await ledger.get_many([]) == {}
        client.mget.assert_not_called()

    async def test_get_many_read_error_is_transient(self):
        client = AsyncMock()
        client.mget.side_effect = RedisConnectionError("refused")
        ledger = RedisIdempotencyLedger(client=client)

        with pytest.raises(TransientStorageError):
            await ledger.get_many(["a"])

    def test_not_connected_raises(self):
        ledger = RedisIdempotencyLedger()
        with pytest.raises(RuntimeError):
            _ = ledger.redis

    async def test_close_releases_client(self):
        client = AsyncMock()
        ledger = RedisIdempotencyLedger(client=client)

        await ledger.close()

        client.aclose.assert_awaited_once()
        with pytest.raises(RuntimeError):
            _ = ledger.redis
