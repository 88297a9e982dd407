from __future__ import annotations

import time
from typing_extensions import Protocol


class Clock(Protocol):
    def time(self) -> float: ...
    def monotonic_ms(self) -> float: ...


class RealClock:
    def time(self) -> float:
        return time.time()

    def monotonic_ms(self) -> float:
        return time.monotonic() * 1000.0


class ManualClock:
    """
    Zegar do testów i symulacji.

    Czas stoi, dopóki nie zrobisz advance(ms). Czas ścienny (time()) rusza się
    razem z monotonicznym, żeby znaczniki ts w magazynie były spójne.
    """

    def __init__(self, *, start_ms: float = 0.0, start_ts: float | None = None) -> None:
        if start_ms < 0:
            raise ValueError("start_ms must be >= 0")
        self._mono_ms = float(start_ms)
        self._ts = time.time() if start_ts is None else float(start_ts)

    def advance(self, ms: float) -> None:
        if ms < 0:
            raise ValueError("ms must be >= 0")
        self._mono_ms += ms
        self._ts += ms / 1000.0

    def time(self) -> float:
        return self._ts

    def monotonic_ms(self) -> float:
        return self._mono_ms
