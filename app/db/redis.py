from threading import Lock
from typing import Optional

from redis import Connection, ConnectionPool, Redis, SSLConnection

from app.core.config import settings

_pool: Optional[ConnectionPool] = None
_pool_lock = Lock()


def get_redis() -> Redis:
    """Return a client bound to the shared connection pool (created on first use)."""
    global _pool
    if settings.REDIS_HOST is None or settings.REDIS_HOST.strip() == "":
        raise RuntimeError("REDIS_HOST is not configured")
    if _pool is None:
        with _pool_lock:
            if _pool is None:
                _pool = ConnectionPool(
                    host=settings.REDIS_HOST,
                    port=settings.REDIS_PORT,
                    socket_connect_timeout=1,
                    socket_timeout=5,
                    retry_on_timeout=False,
                    decode_responses=True,
                    max_connections=settings.REDIS_MAX_CONNECTIONS,
                    connection_class=SSLConnection if settings.REDIS_SSL else Connection,
                )
    return Redis(connection_pool=_pool)
