import asyncio
from contextlib import asynccontextmanager
from typing import AsyncIterator


class ConcurrencyLimiter:
    """Admission gate for simultaneous downloads.

    Permits are handed out by an ``asyncio.Semaphore``; the in-flight and peak
    counters change in the same step as the permit itself (there is no await
    between them), so they always agree with the number of held slots.
    """

    def __init__(self, capacity: int = 2) -> None:
        if capacity < 1:
            raise ValueError('Limiter capacity must be at least 1')
        self._capacity = capacity
        self._semaphore = asyncio.Semaphore(capacity)
        self._in_flight = 0
        self._peak = 0

    @property
    def capacity(self) -> int:
        return self._capacity

    @property
    def in_flight(self) -> int:
        return self._in_flight

    @property
    def peak(self) -> int:
        return self._peak

    @asynccontextmanager
    async def slot(self) -> AsyncIterator[None]:
        await self._semaphore.acquire()
        self._in_flight += 1
        self._peak = max(self._peak, self._in_flight)
        try:
            yield
        finally:
            self._in_flight -= 1
            self._semaphore.release()
