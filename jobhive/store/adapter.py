"""
Key-value store adapter over Redis.

Exposes only the primitives the queue, worker and host layers need:
atomic list push/pop/move, sorted sets, sets, hashes, expiry, key
enumeration and MULTI/EXEC transactions. Every key is prefixed with the
configured namespace.
"""

import logging
from collections.abc import AsyncIterator, Awaitable, Callable, Mapping
from contextlib import asynccontextmanager
from typing import Any, TypeVar

import backoff
from redis.exceptions import ConnectionError as RedisConnectionError
from redis.exceptions import TimeoutError as RedisTimeoutError
from redis.exceptions import WatchError

from jobhive.exceptions import StoreConflict, StoreUnavailable

logger = logging.getLogger(__name__)

T = TypeVar("T")

_UNAVAILABLE = (RedisConnectionError, RedisTimeoutError, OSError)


class RedisStore:
    """
    Namespaced adapter around an async Redis client.

    Connection and timeout errors are raised as StoreUnavailable so
    callers never depend on the client library's exception types.
    """

    def __init__(self, client: Any, namespace: str = "jobhive"):
        """
        Initialize the adapter.

        Args:
            client: An async Redis client created with decode_responses=True.
            namespace: Prefix applied to every key.
        """
        self._client = client
        self._prefix = f"{namespace}:" if namespace else ""

    @property
    def namespace(self) -> str:
        return self._prefix.rstrip(":")

    def key(self, name: str) -> str:
        """Return the fully namespaced key for a logical key name."""
        return f"{self._prefix}{name}"

    async def _call(self, command: str, *args: Any, **kwargs: Any) -> Any:
        try:
            return await getattr(self._client, command)(*args, **kwargs)
        except _UNAVAILABLE as e:
            logger.warning(
                "Store command failed",
                extra={"command": command, "error": str(e)},
            )
            raise StoreUnavailable(f"Store unavailable during {command}: {e}") from e

    async def ping(self) -> bool:
        return bool(await self._call("ping"))

    # Lists

    async def push(self, name: str, *values: str) -> int:
        """Append values to the tail of a list."""
        return await self._call("rpush", self.key(name), *values)

    async def pop(self, name: str) -> str | None:
        """Atomically remove and return the head of a list."""
        return await self._call("lpop", self.key(name))

    async def move(self, source: str, destination: str, src: str = "LEFT", dest: str = "RIGHT") -> str | None:
        """
        Atomically pop one end of a list and push it onto another list.

        Returns:
            The moved value, or None if the source list was empty.
        """
        return await self._call("lmove", self.key(source), self.key(destination), src, dest)

    async def list_remove(self, name: str, value: str, count: int = 0) -> int:
        return await self._call("lrem", self.key(name), count, value)

    async def length(self, name: str) -> int:
        return await self._call("llen", self.key(name))

    async def list_range(self, name: str, start: int = 0, end: int = -1) -> list[str]:
        return await self._call("lrange", self.key(name), start, end)

    # Hashes

    async def hash_set(self, name: str, mapping: Mapping[str, Any]) -> int:
        return await self._call("hset", self.key(name), mapping=dict(mapping))

    async def hash_get_all(self, name: str) -> dict[str, str]:
        return await self._call("hgetall", self.key(name))

    async def hash_incr(self, name: str, field: str, amount: int = 1) -> int:
        return await self._call("hincrby", self.key(name), field, amount)

    # Sorted sets

    async def sorted_add(self, name: str, mapping: Mapping[str, float]) -> int:
        return await self._call("zadd", self.key(name), dict(mapping))

    async def sorted_range_by_score(
        self,
        name: str,
        min_score: float | str,
        max_score: float | str,
        limit: int | None = None,
    ) -> list[str]:
        """Members with min_score <= score <= max_score in score order."""
        if limit is None:
            return await self._call("zrangebyscore", self.key(name), min_score, max_score)
        return await self._call(
            "zrangebyscore", self.key(name), min_score, max_score, start=0, num=limit
        )

    async def sorted_remove(self, name: str, member: str) -> int:
        """Remove a member; returns 1 only for the caller that removed it."""
        return await self._call("zrem", self.key(name), member)

    async def sorted_score(self, name: str, member: str) -> float | None:
        return await self._call("zscore", self.key(name), member)

    async def sorted_count(self, name: str) -> int:
        return await self._call("zcard", self.key(name))

    # Sets

    async def set_add(self, name: str, *members: str) -> int:
        return await self._call("sadd", self.key(name), *members)

    async def set_remove(self, name: str, member: str) -> int:
        """Remove a member; returns 1 only for the caller that removed it."""
        return await self._call("srem", self.key(name), member)

    async def set_members(self, name: str) -> set[str]:
        return set(await self._call("smembers", self.key(name)))

    async def set_count(self, name: str) -> int:
        return await self._call("scard", self.key(name))

    # Keys

    async def expire(self, name: str, seconds: int) -> bool:
        return bool(await self._call("expire", self.key(name), int(seconds)))

    async def delete(self, *names: str) -> int:
        if not names:
            return 0
        return await self._call("delete", *(self.key(n) for n in names))

    async def keys(self, pattern: str = "*") -> list[str]:
        """Enumerate logical key names matching a pattern within the namespace."""
        try:
            found = [
                key[len(self._prefix):]
                async for key in self._client.scan_iter(match=self.key(pattern))
            ]
        except _UNAVAILABLE as e:
            raise StoreUnavailable(f"Store unavailable during scan: {e}") from e
        return sorted(found)

    # Transactions

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator["Transaction"]:
        """
        Open a MULTI/EXEC block.

        Writes queued on the transaction are applied together by
        ``execute()`` or not at all.

        Raises:
            StoreConflict: If a watched key changed before execute().
            StoreUnavailable: If the store cannot be reached.
        """
        try:
            async with self._client.pipeline(transaction=True) as pipe:
                yield Transaction(self, pipe)
        except WatchError as e:
            raise StoreConflict(str(e)) from e
        except _UNAVAILABLE as e:
            logger.warning("Store transaction failed", extra={"error": str(e)})
            raise StoreUnavailable(f"Store unavailable during transaction: {e}") from e


class Transaction:
    """
    Namespaced view over a Redis pipeline in transaction mode.

    Reads after ``watch()`` run immediately. ``multi()`` starts buffering,
    and the buffered writes are sent as one MULTI/EXEC by ``execute()``.
    Without a watch, writes are buffered from the start.
    """

    def __init__(self, store: RedisStore, pipe: Any):
        self._store = store
        self._pipe = pipe

    async def watch(self, *names: str) -> None:
        await self._pipe.watch(*(self._store.key(n) for n in names))

    async def hash_get_all(self, name: str) -> dict[str, str]:
        return await self._pipe.hgetall(self._store.key(name))

    async def is_member(self, name: str, member: str) -> bool:
        return bool(await self._pipe.sismember(self._store.key(name), member))

    def multi(self) -> None:
        self._pipe.multi()

    def push(self, name: str, *values: str) -> None:
        self._pipe.rpush(self._store.key(name), *values)

    def list_remove(self, name: str, value: str, count: int = 0) -> None:
        self._pipe.lrem(self._store.key(name), count, value)

    def hash_set(self, name: str, mapping: Mapping[str, Any]) -> None:
        self._pipe.hset(self._store.key(name), mapping=dict(mapping))

    def hash_incr(self, name: str, field: str, amount: int = 1) -> None:
        self._pipe.hincrby(self._store.key(name), field, amount)

    def sorted_add(self, name: str, mapping: Mapping[str, float]) -> None:
        self._pipe.zadd(self._store.key(name), dict(mapping))

    def sorted_remove(self, name: str, member: str) -> None:
        self._pipe.zrem(self._store.key(name), member)

    def set_add(self, name: str, *members: str) -> None:
        self._pipe.sadd(self._store.key(name), *members)

    def set_remove(self, name: str, member: str) -> None:
        self._pipe.srem(self._store.key(name), member)

    def expire(self, name: str, seconds: int) -> None:
        self._pipe.expire(self._store.key(name), int(seconds))

    async def execute(self) -> list[Any]:
        """Send the buffered writes; returns one reply per write."""
        return await self._pipe.execute()


def _log_retry(details: dict[str, Any]) -> None:
    logger.warning(
        "Store unavailable, retrying",
        extra={"attempt": details["tries"], "delay": round(details["wait"], 3)},
    )


async def retry_with_backoff(
    operation: Callable[[], Awaitable[T]],
    attempts: int = 5,
    base_delay: float = 0.5,
    max_delay: float = 30.0,
) -> T:
    """
    Run a store operation, retrying StoreUnavailable with exponential backoff.

    Args:
        operation: Zero-argument coroutine factory.
        attempts: Total number of tries before giving up.
        base_delay: Delay before the first retry in seconds.
        max_delay: Upper bound for a single delay.

    Returns:
        The operation's result.

    Raises:
        StoreUnavailable: If every attempt failed.
    """

    @backoff.on_exception(
        backoff.expo,
        StoreUnavailable,
        max_tries=attempts,
        on_backoff=_log_retry,
        jitter=None,
        factor=base_delay,
        max_value=max_delay,
    )
    async def attempt() -> T:
        return await operation()

    return await attempt()
