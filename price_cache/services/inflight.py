from __future__ import annotations

import asyncio
from collections.abc import Iterable
from typing import Any, NamedTuple


class _Flight(NamedTuple):
    future: asyncio.Future
    primary_allowed: bool


class InflightRegistry:
    """Singleflight per key: at most one outstanding upstream fetch per symbol.

    The first caller for a key owns a future and must settle and release it;
    concurrent callers for the same key get that future to await instead of
    starting their own fetch. Futures are only ever given results, never
    exceptions, so a failed or cancelled owner resolves its joiners with None.

    A caller that may use the primary source only joins flights that may use
    it too. Otherwise it starts its own flight, which replaces the registered one.
    """

    def __init__(self):
        self._flights: dict[str, _Flight] = {}

    def claim(
        self, keys: Iterable[str], primary_allowed: bool = False
    ) -> tuple[dict[str, asyncio.Future], dict[str, asyncio.Future]]:
        loop = asyncio.get_running_loop()
        owned: dict[str, asyncio.Future] = {}
        joined: dict[str, asyncio.Future] = {}
        for key in keys:
            flight = self._flights.get(key)
            if flight is not None and not flight.future.done():
                if flight.primary_allowed or not primary_allowed:
                    joined[key] = flight.future
                    continue
            future = loop.create_future()
            self._flights[key] = _Flight(future, primary_allowed)
            owned[key] = future
        return owned, joined

    @staticmethod
    def settle(flight: asyncio.Future, value: Any):
        if not flight.done():
            flight.set_result(value)

    def release(self, owned: dict[str, asyncio.Future]):
        for key, future in owned.items():
            self.settle(future, None)
            flight = self._flights.get(key)
            if flight is not None and flight.future is future:
                self._flights.pop(key, None)

    @staticmethod
    async def wait(flight: asyncio.Future) -> Any:
        # shield so a cancelled joiner does not cancel the owner's future
        return await asyncio.shield(flight)
