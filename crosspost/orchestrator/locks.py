"""Redis SET NX EX locks keeping cron runs from overlapping."""

from __future__ import annotations

from dataclasses import dataclass
import uuid

from redis import Redis


LOCK_KEY_TEMPLATE = "crosspost:{scope}:lock"
RELEASE_LOCK_SCRIPT = """
if redis.call("get", KEYS[1]) == ARGV[1] then
  return redis.call("del", KEYS[1])
end
return 0
"""


def lock_key(scope: str) -> str:
    return LOCK_KEY_TEMPLATE.format(scope=scope)


@dataclass(frozen=True)
class LockHandle:
    manager: "CronLockManager"
    scope: str
    token: str

    def release(self) -> bool:
        return self.manager.release(self.scope, self.token)


class CronLockManager:
    """One lock per job scope; the token guards against releasing someone else's lock."""

    def __init__(self, redis_client: Redis, *, ttl_seconds: int = 300) -> None:
        if ttl_seconds <= 0:
            raise ValueError("ttl_seconds must be positive")
        self._redis = redis_client
        self._ttl_seconds = ttl_seconds

    @property
    def ttl_seconds(self) -> int:
        return self._ttl_seconds

    def acquire(self, scope: str) -> LockHandle | None:
        token = str(uuid.uuid4())
        if not self._redis.set(lock_key(scope), token, nx=True, ex=self._ttl_seconds):
            return None
        return LockHandle(manager=self, scope=scope, token=token)

    def release(self, scope: str, token: str) -> bool:
        released = self._redis.eval(RELEASE_LOCK_SCRIPT, 1, lock_key(scope), token)
        return int(released) == 1
