"""
In-memory stand-in for the async Redis client.

Implements just the commands the store adapter issues, with the same
return values redis-py gives under ``decode_responses=True``. Setting
``offline`` makes every command raise a redis ConnectionError, which
the adapter turns into StoreUnavailable.

``pipeline()`` gives MULTI/EXEC semantics: buffered commands run back to
back without yielding to the event loop, and ``execute()`` raises
WatchError when a watched key was written since ``watch()``.
"""

import fnmatch
from typing import Any

from redis.exceptions import ConnectionError as RedisConnectionError
from redis.exceptions import WatchError

TEST_NAMESPACE = "jobhive-test"
TEST_HOSTNAME = "test-host"

# A pid that cannot belong to a live process
DEAD_PID = 999_999_999


def _bound(value: Any, default: float) -> float:
    if value in ("-inf", "+inf", "inf"):
        return float(value)
    if value is None:
        return default
    return float(value)


class InMemoryRedis:
    def __init__(self):
        self._lists: dict[str, list[str]] = {}
        self._hashes: dict[str, dict[str, str]] = {}
        self._zsets: dict[str, dict[str, float]] = {}
        self._sets: dict[str, set[str]] = {}
        self.ttls: dict[str, int] = {}
        self._versions: dict[str, int] = {}
        self.offline = False
        self.closed = False

    def _check(self) -> None:
        if self.offline:
            raise RedisConnectionError("Connection refused")

    def _touch(self, *names: str) -> None:
        for name in names:
            self._versions[name] = self._versions.get(name, 0) + 1

    def fail_once(self, command: str) -> None:
        """Make the next call of one command raise a connection error."""

        async def broken(*args: Any, **kwargs: Any) -> Any:
            delattr(self, command)
            raise RedisConnectionError("Connection reset by peer")

        setattr(self, command, broken)

    def pipeline(self, transaction: bool = True) -> "InMemoryPipeline":
        return InMemoryPipeline(self)

    def _drop_if_empty(self, name: str) -> None:
        for store in (self._lists, self._hashes, self._zsets, self._sets):
            if name in store and not store[name]:
                del store[name]

    async def ping(self) -> bool:
        self._check()
        return True

    async def aclose(self) -> None:
        self.closed = True

    # lists

    async def rpush(self, name: str, *values: str) -> int:
        self._check()
        lst = self._lists.setdefault(name, [])
        lst.extend(str(v) for v in values)
        self._touch(name)
        return len(lst)

    async def lpop(self, name: str) -> str | None:
        self._check()
        lst = self._lists.get(name)
        if not lst:
            return None
        value = lst.pop(0)
        self._touch(name)
        self._drop_if_empty(name)
        return value

    async def llen(self, name: str) -> int:
        self._check()
        return len(self._lists.get(name, []))

    async def lmove(self, first_list: str, second_list: str, src: str = "LEFT", dest: str = "RIGHT") -> str | None:
        self._check()
        source = self._lists.get(first_list)
        if not source:
            return None
        value = source.pop(0 if src == "LEFT" else -1)
        self._drop_if_empty(first_list)
        target = self._lists.setdefault(second_list, [])
        if dest == "LEFT":
            target.insert(0, value)
        else:
            target.append(value)
        self._touch(first_list, second_list)
        return value

    async def lrem(self, name: str, count: int, value: str) -> int:
        self._check()
        lst = self._lists.get(name, [])
        kept = [v for v in lst if v != value]
        removed = len(lst) - len(kept)
        if removed:
            self._lists[name] = kept
            self._drop_if_empty(name)
            self._touch(name)
        return removed

    async def lrange(self, name: str, start: int, end: int) -> list[str]:
        self._check()
        lst = self._lists.get(name, [])
        stop = None if end == -1 else end + 1
        return list(lst[start:stop])

    # hashes

    async def hset(self, name: str, key: str | None = None, value: Any = None, mapping: dict | None = None) -> int:
        self._check()
        h = self._hashes.setdefault(name, {})
        items = dict(mapping or {})
        if key is not None:
            items[key] = value
        added = 0
        for k, v in items.items():
            if k not in h:
                added += 1
            h[k] = str(v)
        self._touch(name)
        return added

    async def hgetall(self, name: str) -> dict[str, str]:
        self._check()
        return dict(self._hashes.get(name, {}))

    async def hincrby(self, name: str, key: str, amount: int = 1) -> int:
        self._check()
        h = self._hashes.setdefault(name, {})
        h[key] = str(int(h.get(key, 0)) + amount)
        self._touch(name)
        return int(h[key])

    # sorted sets

    async def zadd(self, name: str, mapping: dict[str, float]) -> int:
        self._check()
        z = self._zsets.setdefault(name, {})
        added = 0
        for member, score in mapping.items():
            if member not in z:
                added += 1
            z[member] = float(score)
        self._touch(name)
        return added

    async def zrangebyscore(
        self,
        name: str,
        min_score: Any,
        max_score: Any,
        start: int | None = None,
        num: int | None = None,
    ) -> list[str]:
        self._check()
        low = _bound(min_score, float("-inf"))
        high = _bound(max_score, float("inf"))
        z = self._zsets.get(name, {})
        members = [m for m, s in sorted(z.items(), key=lambda kv: (kv[1], kv[0])) if low <= s <= high]
        if start is not None and num is not None:
            members = members[start:start + num]
        return members

    async def zrem(self, name: str, *members: str) -> int:
        self._check()
        z = self._zsets.get(name, {})
        removed = 0
        for m in members:
            if m in z:
                del z[m]
                removed += 1
        if removed:
            self._touch(name)
        self._drop_if_empty(name)
        return removed

    async def zscore(self, name: str, member: str) -> float | None:
        self._check()
        return self._zsets.get(name, {}).get(member)

    async def zcard(self, name: str) -> int:
        self._check()
        return len(self._zsets.get(name, {}))

    # sets

    async def sadd(self, name: str, *members: str) -> int:
        self._check()
        s = self._sets.setdefault(name, set())
        before = len(s)
        s.update(members)
        self._touch(name)
        return len(s) - before

    async def srem(self, name: str, *members: str) -> int:
        self._check()
        s = self._sets.get(name, set())
        removed = 0
        for m in members:
            if m in s:
                s.discard(m)
                removed += 1
        if removed:
            self._touch(name)
        self._drop_if_empty(name)
        return removed

    async def sismember(self, name: str, value: str) -> int:
        self._check()
        return int(value in self._sets.get(name, set()))

    async def smembers(self, name: str) -> set[str]:
        self._check()
        return set(self._sets.get(name, set()))

    async def scard(self, name: str) -> int:
        self._check()
        return len(self._sets.get(name, set()))

    # keys

    def _all_keys(self) -> set[str]:
        return set(self._lists) | set(self._hashes) | set(self._zsets) | set(self._sets)

    async def expire(self, name: str, seconds: int) -> bool:
        self._check()
        if name not in self._all_keys():
            return False
        self.ttls[name] = seconds
        self._touch(name)
        return True

    async def delete(self, *names: str) -> int:
        self._check()
        removed = 0
        for name in names:
            found = False
            for store in (self._lists, self._hashes, self._zsets, self._sets):
                if name in store:
                    del store[name]
                    found = True
            self.ttls.pop(name, None)
            if found:
                self._touch(name)
            removed += int(found)
        return removed

    async def scan_iter(self, match: str | None = None):
        self._check()
        for key in sorted(self._all_keys()):
            if match is None or fnmatch.fnmatchcase(key, match):
                yield key


class InMemoryPipeline:
    """Transactional pipeline over InMemoryRedis, as ``pipeline(transaction=True)``."""

    def __init__(self, redis: InMemoryRedis):
        self._redis = redis
        self._watched: dict[str, int] = {}
        self._buffer: list[tuple[str, tuple, dict]] = []
        self._immediate = False

    async def __aenter__(self) -> "InMemoryPipeline":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.reset()

    async def reset(self) -> None:
        self._watched.clear()
        self._buffer.clear()
        self._immediate = False

    async def watch(self, *names: str) -> None:
        self._redis._check()
        self._immediate = True
        for name in names:
            self._watched[name] = self._redis._versions.get(name, 0)

    def multi(self) -> None:
        self._immediate = False

    def __getattr__(self, command: str) -> Any:
        method = getattr(self._redis, command)
        if self._immediate:
            return method

        def buffered(*args: Any, **kwargs: Any) -> "InMemoryPipeline":
            self._buffer.append((command, args, kwargs))
            return self

        return buffered

    async def execute(self) -> list[Any]:
        self._redis._check()
        try:
            for name, version in self._watched.items():
                if self._redis._versions.get(name, 0) != version:
                    raise WatchError("Watched variable changed.")
            # an injected failure aborts the whole transaction, like a dropped EXEC
            for command, _, _ in self._buffer:
                if command in vars(self._redis):
                    await getattr(self._redis, command)()
            return [await getattr(self._redis, command)(*args, **kwargs) for command, args, kwargs in self._buffer]
        finally:
            await self.reset()
