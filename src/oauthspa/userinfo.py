"""Single-flight, memoized user-info lookup."""

from __future__ import annotations

import asyncio
from typing import Any, Awaitable, Callable, Optional

UserInfo = dict[str, Any]


class UserInfoCache:
    """One cache slot plus one in-flight task.

    A lookup runs in two phases: *resolve* obtains the credential (and may
    refresh it, which invalidates this cache), then *fetch* uses it.
    Concurrent :meth:`get` callers share the task started by the first of
    them. Invalidations during the resolve phase are the lookup's own doing
    and keep the task shared; an invalidation after it detaches the task
    and keeps its result out of the cache. A ``None`` result is not cached,
    so an unauthenticated caller asks again next time.
    """

    def __init__(self) -> None:
        self._value: Optional[UserInfo] = None
        self._pending: Optional[asyncio.Task[Optional[UserInfo]]] = None
        self._generation = 0
        self._resolving = False

    @property
    def value(self) -> Optional[UserInfo]:
        return self._value

    @property
    def in_flight(self) -> bool:
        return self._pending is not None

    async def get(
        self,
        resolve: Callable[[], Awaitable[Optional[str]]],
        fetch: Callable[[str], Awaitable[Optional[UserInfo]]],
    ) -> Optional[UserInfo]:
        """Return the cached value, joining or starting a lookup when needed.

        Args:
            resolve: Coroutine function returning the credential, or
                ``None`` when the user is not authenticated.
            fetch: Coroutine function performing the network lookup with
                the resolved credential.

        Raises:
            Whatever *resolve* or *fetch* raises; every caller sharing the
            task sees it.
        """
        if self._pending is not None:
            return await self._pending
        if self._value is not None:
            return self._value

        task = asyncio.ensure_future(self._load(resolve, fetch))
        self._pending = task
        try:
            return await task
        finally:
            if self._pending is task:
                self._pending = None

    async def _load(
        self,
        resolve: Callable[[], Awaitable[Optional[str]]],
        fetch: Callable[[str], Awaitable[Optional[UserInfo]]],
    ) -> Optional[UserInfo]:
        self._resolving = True
        try:
            credential = await resolve()
        finally:
            self._resolving = False
        if credential is None:
            return None

        generation = self._generation
        value = await fetch(credential)
        if value is not None and generation == self._generation:
            self._value = value
        return value

    def invalidate(self) -> None:
        """Drop the cached value and detach any in-flight fetch.

        A detached fetch still completes for the callers awaiting it but its
        result is not cached; later callers start a new one.
        """
        self._generation += 1
        self._value = None
        if not self._resolving:
            self._pending = None
