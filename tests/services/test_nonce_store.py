from concurrent.futures import ThreadPoolExecutor
from threading import Barrier
from unittest.mock import Mock, patch

import pytest
from redis import RedisError
from sqlalchemy import create_engine
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from app.core.errors import NonceStoreError
from app.db.session import init_db
from app.services.nonce_store import MemoryNonceStore, RedisNonceStore, SqlNonceStore, build_nonce_store
from tests.conftest import NOW_MS, FixedClock

TTL_MS = 300_000


@pytest.fixture
def sql_store(clock):
    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    init_db(bind=engine)
    TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    return SqlNonceStore(session_factory=TestingSessionLocal, clock=clock)


@pytest.fixture(params=["memory", "sql"])
def store(request, nonce_store, sql_store):
    """Run the lifecycle tests against every backend that works without a server"""
    return nonce_store if request.param == "memory" else sql_store


class TestNonceLifecycle:
    """Test cases shared by the memory and SQL backends"""

    def test_generate_then_validate(self, store):
        nonce = store.generate()
        assert len(nonce) == 64
        assert store.validate(nonce)

    def test_unknown_nonce(self, store):
        assert not store.validate("deadbeef")

    def test_empty_nonce(self, store):
        assert not store.validate("")
        assert not store.validate(None)

    def test_mark_used_once(self, store):
        nonce = store.generate()
        assert store.mark_used(nonce) is True
        assert store.mark_used(nonce) is False
        assert not store.validate(nonce)

    def test_mark_used_unknown(self, store):
        assert store.mark_used("deadbeef") is False

    def test_expiry_boundary(self, store):
        nonce = store.generate()
        assert store.validate(nonce, now=NOW_MS + TTL_MS)
        assert not store.validate(nonce, now=NOW_MS + TTL_MS + 1)

    def test_mark_used_after_expiry(self, store):
        nonce = store.generate()
        assert store.mark_used(nonce, used_at=NOW_MS + TTL_MS + 1) is False

    def test_expired_and_unknown_are_indistinguishable(self, store):
        nonce = store.generate()
        expired = store.validate(nonce, now=NOW_MS + TTL_MS + 1)
        unknown = store.validate("f" * 64, now=NOW_MS + TTL_MS + 1)
        assert expired == unknown is False

    def test_cleanup_expired(self, store, clock):
        store.generate()
        store.generate()
        clock.advance(TTL_MS + 1)
        fresh = store.generate()  # generation sweeps the two expired records first
        assert store.stats().total == 1
        assert store.validate(fresh)
        assert store.cleanup_expired(now=clock.now + TTL_MS + 1) == 1

    def test_stats(self, store, clock):
        used = store.generate()
        store.generate()
        store.mark_used(used)
        stats = store.stats()
        assert (stats.total, stats.active, stats.used, stats.expired) == (2, 1, 1, 0)

        stats = store.stats(now=clock.now + TTL_MS + 1)
        assert (stats.active, stats.used, stats.expired) == (0, 1, 1)


class TestMemoryNonceStore:
    def test_collision_retries(self, nonce_store):
        with patch("app.services.nonce_store.generate_nonce", side_effect=["a" * 64, "a" * 64, "b" * 64]):
            first = nonce_store.generate()
            second = nonce_store.generate()
        assert first == "a" * 64
        assert second == "b" * 64

    def test_collision_gives_up(self, nonce_store):
        with patch("app.services.nonce_store.generate_nonce", return_value="a" * 64):
            nonce_store.generate()
            with pytest.raises(NonceStoreError):
                nonce_store.generate()

    def test_concurrent_mark_used_single_winner(self):
        store = MemoryNonceStore(clock=FixedClock())
        nonce = store.generate()
        workers = 16
        barrier = Barrier(workers)

        def consume(_):
            barrier.wait()
            return store.mark_used(nonce)

        with ThreadPoolExecutor(max_workers=workers) as pool:
            results = list(pool.map(consume, range(workers)))
        assert results.count(True) == 1


class TestSqlNonceStore:
    def test_storage_error_is_wrapped(self):
        db = Mock()
        db.get.side_effect = OperationalError("select", {}, Exception("db down"))
        store = SqlNonceStore(session_factory=lambda: db, clock=FixedClock())
        with pytest.raises(NonceStoreError):
            store.validate("abc")
        db.rollback.assert_called_once()
        db.close.assert_called_once()


class TestRedisNonceStore:
    """Redis backend against a mocked client"""

    @pytest.fixture
    def redis_client(self):
        return Mock()

    @pytest.fixture
    def redis_store(self, redis_client):
        return RedisNonceStore(client_factory=lambda: redis_client, key_prefix="t:", clock=FixedClock())

    def test_generate_sets_hash_and_expiry(self, redis_store, redis_client):
        redis_client.hsetnx.return_value = True
        nonce = redis_store.generate()
        redis_client.hsetnx.assert_called_once_with(f"t:{nonce}", "created_at", NOW_MS)
        pipe = redis_client.pipeline.return_value
        redis_client.pipeline.assert_called_once_with(transaction=True)
        pipe.hset.assert_called_once_with(f"t:{nonce}", "expires_at", NOW_MS + TTL_MS)
        pipe.pexpireat.assert_called_once_with(f"t:{nonce}", NOW_MS + TTL_MS)
        pipe.execute.assert_called_once_with()
        redis_client.delete.assert_not_called()

    def test_generate_removes_hash_when_expiry_fails(self, redis_store, redis_client):
        redis_client.hsetnx.return_value = True
        redis_client.pipeline.return_value.execute.side_effect = RedisError("connection reset")
        with pytest.raises(NonceStoreError):
            redis_store.generate()
        key = redis_client.hsetnx.call_args.args[0]
        redis_client.delete.assert_called_once_with(key)

    def test_validate_reads_hash(self, redis_store, redis_client):
        redis_client.hgetall.return_value = {"created_at": str(NOW_MS), "expires_at": str(NOW_MS + TTL_MS)}
        assert redis_store.validate("abc")
        redis_client.hgetall.return_value = {
            "created_at": str(NOW_MS),
            "expires_at": str(NOW_MS + TTL_MS),
            "used_at": str(NOW_MS),
        }
        assert not redis_store.validate("abc")

    def test_validate_missing(self, redis_store, redis_client):
        redis_client.hgetall.return_value = {}
        assert not redis_store.validate("abc")

    def test_mark_used_winner(self, redis_store, redis_client):
        redis_client.exists.return_value = 1
        redis_client.hsetnx.return_value = True
        redis_client.hgetall.return_value = {
            "created_at": str(NOW_MS),
            "expires_at": str(NOW_MS + TTL_MS),
            "used_at": str(NOW_MS),
        }
        assert redis_store.mark_used("abc") is True
        redis_client.hsetnx.assert_called_once_with("t:abc", "used_at", NOW_MS)

    def test_mark_used_loser(self, redis_store, redis_client):
        redis_client.exists.return_value = 1
        redis_client.hsetnx.return_value = False
        assert redis_store.mark_used("abc") is False

    def test_mark_used_missing_key(self, redis_store, redis_client):
        redis_client.exists.return_value = 0
        assert redis_store.mark_used("abc") is False
        redis_client.hsetnx.assert_not_called()

    def test_mark_used_key_expired_in_between(self, redis_store, redis_client):
        redis_client.exists.return_value = 1
        redis_client.hsetnx.return_value = True
        redis_client.hgetall.return_value = {"used_at": str(NOW_MS)}
        assert redis_store.mark_used("abc") is False
        redis_client.delete.assert_called_once_with("t:abc")

    def test_redis_error_is_wrapped(self, redis_store, redis_client):
        redis_client.hgetall.side_effect = RedisError("connection refused")
        with pytest.raises(NonceStoreError):
            redis_store.validate("abc")

    def test_stats_scans_prefix(self, redis_store, redis_client):
        redis_client.scan_iter.return_value = ["t:a", "t:b"]
        redis_client.hgetall.side_effect = [
            {"created_at": str(NOW_MS), "expires_at": str(NOW_MS + TTL_MS)},
            {"created_at": str(NOW_MS), "expires_at": str(NOW_MS + TTL_MS), "used_at": str(NOW_MS)},
        ]
        stats = redis_store.stats()
        assert (stats.total, stats.active, stats.used) == (2, 1, 1)


class TestBuildNonceStore:
    def test_memory(self):
        assert isinstance(build_nonce_store("memory"), MemoryNonceStore)

    def test_redis(self):
        assert isinstance(build_nonce_store("redis"), RedisNonceStore)

    def test_unknown(self):
        with pytest.raises(ValueError):
            build_nonce_store("dynamo")
