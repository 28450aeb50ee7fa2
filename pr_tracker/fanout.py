"""Bounded concurrent fan-out that waits for every task to settle."""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable, Iterable
from dataclasses import dataclass
from typing import Generic, TypeVar

K = TypeVar("K")
T = TypeVar("T")


@dataclass(frozen=True, slots=True)
class Settled(Generic[K, T]):
    """Outcome of one fanned-out call: a value or the exception it raised."""

    key: K
    value: T | None = None
    error: Exception | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


async def gather_settled(
    keys: Iterable[K],
    call: Callable[[K], Awaitable[T]],
    *,
    max_concurrency: int,
) -> list[Settled[K, T]]:
    """Run `call` for every key concurrently and collect successes and failures."""
    semaphore = asyncio.Semaphore(max_concurrency)

    async def run_one(key: K) -> Settled[K, T]:
        async with semaphore:
            try:
                return Settled(key=key, value=await call(key))
            except Exception as error:
                return Settled(key=key, error=error)

    return list(await asyncio.gather(*(run_one(key) for key in keys)))
