"""Redis connection backing the cron locks."""

from __future__ import annotations

from functools import lru_cache
from typing import Optional, Tuple

from redis import Redis
from redis.exceptions import RedisError

from crosspost.core.config import get_settings
from crosspost.core.logger import get_logger


logger = get_logger("crosspost.redis")


@lru_cache(maxsize=1)
def get_client() -> Redis:
    settings = get_settings()
    timeout = settings.redis_socket_timeout_seconds
    return Redis.from_url(
        settings.redis_url,
        decode_responses=True,
        socket_timeout=timeout,
        socket_connect_timeout=timeout,
        health_check_interval=30,
    )


def check_connection(client: Optional[Redis] = None) -> Tuple[bool, Optional[str]]:
    try:
        (client or get_client()).ping()
    except RedisError as exc:
        logger.warning("redis_ping_failed", error=str(exc))
        return False, str(exc)
    return True, None
