# rpi_adapter/core/debounce.py
from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, Dict, List

from rpi_adapter.core.clock import Clock
from rpi_adapter.core.state import PortConfig

logger = logging.getLogger(__name__)


MAX_DEBOUNCE_MS = 10_000
# Czujniki DHT nie dają się wiarygodnie czytać częściej.
MIN_SENSOR_POLL_MS = 350


def effective_debounce_ms(port: PortConfig) -> int:
    ms = int(port.debounce_or_poll_ms or 0)
    if ms > MAX_DEBOUNCE_MS:
        logger.warning("GPIO %d: debounce %d ms too long, using %d ms", port.pin, ms, MAX_DEBOUNCE_MS)
        return MAX_DEBOUNCE_MS
    return max(0, ms)


def effective_poll_ms(port: PortConfig) -> int:
    ms = int(port.debounce_or_poll_ms or 0)
    if ms < MIN_SENSOR_POLL_MS:
        logger.warning(
            "GPIO %d: %s poll interval %d ms is too short, using %d ms",
            port.pin, port.role.value, ms, MIN_SENSOR_POLL_MS,
        )
        return MIN_SENSOR_POLL_MS
    return ms


class EdgeDebouncer:
    """
    Odrzucanie drgań styków dla wejść cyfrowych.

    Polityka "trailing-edge discard": zdarzenie, które przyszło szybciej niż
    interval_ms od ostatnio PRZYJĘTEGO, jest po cichu wyrzucane. Nie czekamy
    na ciszę – chronimy tylko przed zalewem powiadomień.

    accept() robi odczyt i zapis znacznika bez żadnego await pomiędzy,
    więc w jednej pętli asyncio nie ma tu wyścigu.
    """

    def __init__(self, clock: Clock) -> None:
        self._clock = clock
        self._last_ms: Dict[int, float] = {}

    def accept(self, pin: int, interval_ms: int) -> bool:
        now = self._clock.monotonic_ms()
        last = self._last_ms.get(pin)
        if last is not None and now - last < interval_ms:
            logger.debug(
                "GPIO %d: ignoring change due to debounce: %.0fms < %dms",
                pin, now - last, interval_ms,
            )
            return False
        self._last_ms[pin] = now
        return True

    def clear(self) -> None:
        self._last_ms.clear()


class PollScheduler:
    """Powtarzalne timery per pin (odpytywanie czujników)."""

    def __init__(self) -> None:
        self._tasks: Dict[int, asyncio.Task] = {}

    @property
    def pins(self) -> List[int]:
        return sorted(self._tasks)

    def start(self, pin: int, interval_ms: int, tick: Callable[[], Awaitable[None]]) -> None:
        old = self._tasks.pop(pin, None)
        if old is not None:
            old.cancel()
        loop = asyncio.get_running_loop()
        self._tasks[pin] = loop.create_task(self._run(pin, interval_ms / 1000.0, tick), name=f"poll-gpio{pin}")
        logger.debug("GPIO %d: polling every %d ms", pin, interval_ms)

    async def _run(self, pin: int, period_s: float, tick: Callable[[], Awaitable[None]]) -> None:
        while True:
            await asyncio.sleep(period_s)
            try:
                await tick()
            except Exception:  # pylint: disable=broad-except
                logger.exception("GPIO %d: poll tick failed", pin)

    async def stop_all(self) -> None:
        tasks = list(self._tasks.values())
        self._tasks.clear()
        for t in tasks:
            t.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
