"""
Nonce Store

Single-use challenge tokens for wallet login. A nonce is issued by generate(),
checked by validate() early in the login pipeline and consumed by mark_used()
only after the wallet signature has been verified.

mark_used() is the atomic check-and-set of the pair: it flips unused -> used
only if the record is still unused and unexpired, and reports whether *this*
caller performed the flip. Two concurrent logins presenting the same nonce can
both pass validate(), but only one of them wins mark_used().

Backends:
- MemoryNonceStore: dict + lock, single-node deployments only
- SqlNonceStore:    conditional UPDATE on the auth_nonce table
- RedisNonceStore:  one hash per nonce, HSETNX on the used_at field

All timestamps are epoch milliseconds.
"""

import logging
import time
from abc import ABC, abstractmethod
from contextlib import contextmanager
from dataclasses import replace
from threading import Lock
from typing import Callable, Dict, Iterable, Iterator, Optional

from redis import Redis, RedisError
from sqlalchemy import delete, func, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from app.core.auth_types import NonceRecord, NonceStats
from app.core.config import settings
from app.core.errors import NonceStoreError
from app.core.signature_utils import generate_nonce
from app.models.auth import AuthNonce

logger = logging.getLogger(__name__)

MAX_GENERATE_ATTEMPTS = 3


def now_ms() -> int:
    return int(time.time() * 1000)


class NonceStore(ABC):
    """Nonce lifecycle on top of a small set of storage primitives."""

    def __init__(self, expiry_seconds: int = settings.NONCE_EXPIRY_SECONDS, clock: Callable[[], int] = now_ms) -> None:
        self.ttl_ms = int(expiry_seconds) * 1000
        self._clock = clock

    # -- storage primitives -------------------------------------------------

    @abstractmethod
    def _insert(self, record: NonceRecord) -> bool:
        """Persist a new record. False if the value already exists."""

    @abstractmethod
    def _get(self, value: str) -> Optional[NonceRecord]:
        ...

    @abstractmethod
    def _mark_used_if_active(self, value: str, used_at: int) -> bool:
        """Conditional write: set used/used_at only if unused and not past expires_at."""

    @abstractmethod
    def _delete_expired(self, now: int) -> int:
        ...

    @abstractmethod
    def _records(self) -> Iterable[NonceRecord]:
        ...

    # -- lifecycle ----------------------------------------------------------

    def generate(self) -> str:
        """Create and persist a fresh nonce; expired records are swept first."""
        self.cleanup_expired()
        for _ in range(MAX_GENERATE_ATTEMPTS):
            created_at = self._clock()
            record = NonceRecord(
                value=generate_nonce(),
                created_at=created_at,
                expires_at=created_at + self.ttl_ms,
            )
            if self._insert(record):
                logger.debug("nonce generated, expires_at=%s", record.expires_at)
                return record.value
            logger.warning("nonce collision detected, retrying")
        raise NonceStoreError("Failed to generate nonce")

    def validate(self, nonce: Optional[str], now: Optional[int] = None) -> bool:
        """
        True only if the nonce exists, is unused and has not expired.

        The three failure cases are not distinguished in the return value; the
        reason is only logged at debug level.
        """
        if not nonce:
            return False
        now = self._clock() if now is None else now
        record = self._get(nonce)
        if record is None:
            logger.debug("nonce rejected: not found")
            return False
        if record.used:
            logger.debug("nonce rejected: already used")
            return False
        if record.is_expired(now):
            logger.debug("nonce rejected: expired at %s (now %s)", record.expires_at, now)
            return False
        return True

    def mark_used(self, nonce: str, used_at: Optional[int] = None) -> bool:
        """
        Consume the nonce. Returns True for the caller that performed the
        transition, False if it was already used, expired or unknown.
        Safe to call twice.
        """
        used_at = self._clock() if used_at is None else used_at
        consumed = self._mark_used_if_active(nonce, used_at)
        if not consumed:
            logger.info("nonce was not consumed (already used, expired or unknown)")
        return consumed

    def cleanup_expired(self, now: Optional[int] = None) -> int:
        now = self._clock() if now is None else now
        removed = self._delete_expired(now)
        if removed:
            logger.debug("removed %d expired nonces", removed)
        return removed

    def stats(self, now: Optional[int] = None) -> NonceStats:
        now = self._clock() if now is None else now
        total = used = expired = active = 0
        for record in self._records():
            total += 1
            if record.used:
                used += 1
            elif record.is_expired(now):
                expired += 1
            else:
                active += 1
        return NonceStats(total=total, active=active, used=used, expired=expired)


class MemoryNonceStore(NonceStore):
    """In-process store. Not shared between server instances."""

    def __init__(self, **kwargs) -> None:
        super().__init__(**kwargs)
        self._data: Dict[str, NonceRecord] = {}
        self._lock = Lock()

    def _insert(self, record: NonceRecord) -> bool:
        with self._lock:
            if record.value in self._data:
                return False
            self._data[record.value] = record
            return True

    def _get(self, value: str) -> Optional[NonceRecord]:
        with self._lock:
            return self._data.get(value)

    def _mark_used_if_active(self, value: str, used_at: int) -> bool:
        with self._lock:
            record = self._data.get(value)
            if record is None or record.used or record.is_expired(used_at):
                return False
            self._data[value] = replace(record, used=True, used_at=used_at)
            return True

    def _delete_expired(self, now: int) -> int:
        with self._lock:
            expired = [value for value, record in self._data.items() if record.is_expired(now)]
            for value in expired:
                del self._data[value]
            return len(expired)

    def _records(self) -> Iterable[NonceRecord]:
        with self._lock:
            return list(self._data.values())


class SqlNonceStore(NonceStore):
    """auth_nonce table; mark_used is a single conditional UPDATE."""

    def __init__(self, session_factory: Optional[sessionmaker] = None, **kwargs) -> None:
        super().__init__(**kwargs)
        if session_factory is None:
            from app.db.session import SessionLocal

            session_factory = SessionLocal
        self._session_factory = session_factory

    @contextmanager
    def _session(self) -> Iterator[Session]:
        db = self._session_factory()
        try:
            yield db
            db.commit()
        except SQLAlchemyError as exc:
            db.rollback()
            logger.exception("nonce storage error")
            raise NonceStoreError("Nonce storage unavailable") from exc
        finally:
            db.close()

    @staticmethod
    def _to_record(row: AuthNonce) -> NonceRecord:
        return NonceRecord(
            value=row.nonce,
            created_at=row.created_at,
            expires_at=row.expires_at,
            used=bool(row.used),
            used_at=row.used_at,
        )

    def _insert(self, record: NonceRecord) -> bool:
        with self._session() as db:
            if db.get(AuthNonce, record.value) is not None:
                return False
            db.add(
                AuthNonce(
                    nonce=record.value,
                    created_at=record.created_at,
                    expires_at=record.expires_at,
                    used=False,
                )
            )
        return True

    def _get(self, value: str) -> Optional[NonceRecord]:
        with self._session() as db:
            row = db.get(AuthNonce, value)
            return self._to_record(row) if row is not None else None

    def _mark_used_if_active(self, value: str, used_at: int) -> bool:
        with self._session() as db:
            result = db.execute(
                update(AuthNonce)
                .where(
                    AuthNonce.nonce == value,
                    AuthNonce.used == False,  # noqa: E712
                    AuthNonce.expires_at >= used_at,
                )
                .values(used=True, used_at=used_at)
            )
            return result.rowcount == 1

    def _delete_expired(self, now: int) -> int:
        with self._session() as db:
            result = db.execute(delete(AuthNonce).where(AuthNonce.expires_at < now))
            return result.rowcount or 0

    def _records(self) -> Iterable[NonceRecord]:
        with self._session() as db:
            return [self._to_record(row) for row in db.scalars(select(AuthNonce)).all()]

    def stats(self, now: Optional[int] = None) -> NonceStats:
        now = self._clock() if now is None else now
        with self._session() as db:
            total = db.scalar(select(func.count()).select_from(AuthNonce)) or 0
            used = db.scalar(select(func.count()).where(AuthNonce.used == True)) or 0  # noqa: E712
            expired = db.scalar(
                select(func.count()).where(AuthNonce.used == False, AuthNonce.expires_at < now)  # noqa: E712
            ) or 0
        return NonceStats(total=total, active=total - used - expired, used=used, expired=expired)


class RedisNonceStore(NonceStore):
    """
    One hash per nonce: {created_at, expires_at[, used_at]}.

    The key expires at expires_at, so Redis does the garbage collection. A nonce
    is used once the used_at field exists; HSETNX on that field lets exactly one
    writer win.
    """

    def __init__(
        self,
        client_factory: Optional[Callable[[], Redis]] = None,
        key_prefix: str = settings.REDIS_KEY_PREFIX,
        **kwargs,
    ) -> None:
        super().__init__(**kwargs)
        if client_factory is None:
            from app.db.redis import get_redis

            client_factory = get_redis
        self._client_factory = client_factory
        self._prefix = key_prefix

    def _key(self, value: str) -> str:
        return f"{self._prefix}{value}"

    @contextmanager
    def _client(self) -> Iterator[Redis]:
        rc = self._client_factory()
        try:
            yield rc
        except RedisError as exc:
            logger.exception("nonce storage error")
            raise NonceStoreError("Nonce storage unavailable") from exc
        finally:
            rc.close()

    @staticmethod
    def _to_record(value: str, data: Dict[str, str]) -> Optional[NonceRecord]:
        if not data or "created_at" not in data or "expires_at" not in data:
            return None
        used_at = data.get("used_at")
        return NonceRecord(
            value=value,
            created_at=int(data["created_at"]),
            expires_at=int(data["expires_at"]),
            used=used_at is not None,
            used_at=int(used_at) if used_at is not None else None,
        )

    def _insert(self, record: NonceRecord) -> bool:
        key = self._key(record.value)
        with self._client() as rc:
            if not rc.hsetnx(key, "created_at", record.created_at):
                return False
            pipe = rc.pipeline(transaction=True)
            pipe.hset(key, "expires_at", record.expires_at)
            pipe.pexpireat(key, record.expires_at)
            try:
                pipe.execute()
            except RedisError:
                # a hash without expires_at would never expire
                rc.delete(key)
                raise
        return True

    def _get(self, value: str) -> Optional[NonceRecord]:
        with self._client() as rc:
            return self._to_record(value, rc.hgetall(self._key(value)))

    def _mark_used_if_active(self, value: str, used_at: int) -> bool:
        key = self._key(value)
        with self._client() as rc:
            if not rc.exists(key):
                return False
            if not rc.hsetnx(key, "used_at", used_at):
                return False
            record = self._to_record(value, rc.hgetall(key))
            if record is None:
                # key expired between EXISTS and HSETNX; drop the stray hash
                rc.delete(key)
                return False
            return not record.is_expired(used_at)

    def _delete_expired(self, now: int) -> int:
        # keys carry their own TTL
        return 0

    def _records(self) -> Iterable[NonceRecord]:
        records = []
        with self._client() as rc:
            for key in rc.scan_iter(match=f"{self._prefix}*"):
                record = self._to_record(key[len(self._prefix):], rc.hgetall(key))
                if record is not None:
                    records.append(record)
        return records


def build_nonce_store(backend: Optional[str] = None) -> NonceStore:
    """Create the nonce store selected by NONCE_BACKEND."""
    backend = (backend or settings.NONCE_BACKEND).strip().lower()
    if backend == "memory":
        return MemoryNonceStore()
    if backend == "sql":
        from app.db.session import init_db

        init_db()
        return SqlNonceStore()
    if backend == "redis":
        return RedisNonceStore()
    raise ValueError(f"unsupported nonce backend: {backend}")
