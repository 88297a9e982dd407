from __future__ import annotations

import logging
from collections import deque
from typing import Deque, Dict, Iterable, List, Optional, Set, Tuple, Union

from rpi_adapter.core.errors import HardwareAcquisitionError
from rpi_adapter.hw.interface import Bias, ChangeCallback


__all__ = ["MockLine", "MockLineDriver", "MockSensor", "MockSensorDriver"]

# Podzielone loggery – możesz je osobno włączać/wyłączać
logger_lines = logging.getLogger(__name__ + ".lines")
logger_sensors = logging.getLogger(__name__ + ".sensors")


class MockLine:
    """
    Linia w pamięci. Poziom zmieniasz przez MockLineDriver.emit() (ze zdarzeniem)
    albo set_level() (bez zdarzenia, np. stan spoczynkowy przed setupem).
    """

    def __init__(self, pin: int, chip: int, output: bool, level: bool = False, bias: Bias = Bias.AS_IS) -> None:
        self.pin = pin
        self.chip = chip
        self.output = output
        self.level = level
        self.bias = bias

        self.writes: List[bool] = []
        self.released = False
        self.fail_on_release = False
        self.fail_on_write = False
        self.fail_on_watch = False
        self._callbacks: List[ChangeCallback] = []

    def read(self) -> bool:
        self._check_alive()
        return self.level

    def write(self, value: bool) -> None:
        self._check_alive()
        if not self.output:
            raise RuntimeError(f"line {self.pin} is an input")
        if self.fail_on_write:
            raise OSError(f"simulated write failure on line {self.pin}")
        self.level = bool(value)
        self.writes.append(bool(value))
        logger_lines.debug("GPIO%d <- %s", self.pin, value)

    def on_change(self, callback: ChangeCallback) -> None:
        if self.fail_on_watch:
            raise RuntimeError("Failed to add edge detection")
        self._callbacks.append(callback)

    def release(self) -> None:
        if self.fail_on_release:
            raise OSError(f"simulated release failure on line {self.pin}")
        self.released = True
        self._callbacks.clear()

    def fire(self, level: bool) -> None:
        self.level = bool(level)
        for cb in list(self._callbacks):
            cb(self.level)

    def _check_alive(self) -> None:
        if self.released:
            raise RuntimeError(f"line {self.pin} already released")


class MockLineDriver:
    """
    Symulator LineDriver dla hostów bez GPIO i dla testów.

    - board_model=None symuluje nieudane rozpoznanie płytki,
    - fail_pins: piny, których pobranie kończy się HardwareAcquisitionError,
    - fail_watch_pins: wejścia, na których podpięcie zdarzeń zboczy rzuca RuntimeError,
    - levels: poziomy spoczynkowe wejść (pin -> bool).
    """

    name = "mock"

    def __init__(
        self,
        board_model: Optional[int] = 4,
        fail_pins: Iterable[int] = (),
        levels: Optional[Dict[int, bool]] = None,
        fail_watch_pins: Iterable[int] = (),
    ) -> None:
        self.board_model = board_model
        self.fail_pins: Set[int] = set(fail_pins)
        self.fail_watch_pins: Set[int] = set(fail_watch_pins)
        self.levels: Dict[int, bool] = dict(levels or {})

        self.lines: Dict[int, MockLine] = {}
        self.history: List[MockLine] = []
        self.probe_calls = 0
        self.closed = False

    def identify_host_board_model(self) -> int:
        self.probe_calls += 1
        if self.board_model is None:
            raise OSError("/proc/device-tree/model: No such file or directory")
        return self.board_model

    def request_input(self, pin: int, bias: Bias, *, chip: int) -> MockLine:
        self._check_free(pin)
        line = MockLine(pin, chip, output=False, level=self.levels.get(pin, False), bias=bias)
        line.fail_on_watch = pin in self.fail_watch_pins
        return self._register(line)

    def request_output(self, pin: int, initial: bool, *, chip: int) -> MockLine:
        self._check_free(pin)
        line = MockLine(pin, chip, output=True, level=bool(initial))
        return self._register(line)

    def close(self) -> None:
        self.closed = True

    # ---------- Sterowanie symulacją ----------

    def emit(self, pin: int, level: bool) -> None:
        self.lines[pin].fire(level)

    def set_level(self, pin: int, level: bool) -> None:
        self.levels[pin] = bool(level)
        line = self.lines.get(pin)
        if line is not None and not line.released:
            line.level = bool(level)

    # ---------- Wewnętrzne ----------

    def _check_free(self, pin: int) -> None:
        if pin in self.fail_pins:
            raise HardwareAcquisitionError(f"simulated acquisition failure on line {pin}", pin=pin)
        current = self.lines.get(pin)
        if current is not None and not current.released:
            raise HardwareAcquisitionError(f"line {pin} busy", pin=pin)

    def _register(self, line: MockLine) -> MockLine:
        self.lines[line.pin] = line
        self.history.append(line)
        logger_lines.debug("Requested GPIO%d (chip %d, output=%s)", line.pin, line.chip, line.output)
        return line


Reading = Union[Tuple[Optional[float], Optional[float]], Exception]


class MockSensor:
    """Odczyty odgrywane z kolejki; ostatni poprawny odczyt powtarza się w nieskończoność."""

    def __init__(self, pin: int, model: int, readings: Iterable[Reading]) -> None:
        self.pin = pin
        self.model = model
        self._queue: Deque[Reading] = deque(readings)
        self._last: Tuple[Optional[float], Optional[float]] = (None, None)
        self.reads = 0
        self.closed = False

    def read(self) -> Tuple[Optional[float], Optional[float]]:
        self.reads += 1
        if self._queue:
            item = self._queue.popleft()
            if isinstance(item, Exception):
                raise item
            self._last = item
        logger_sensors.debug("DHT%d GPIO%d -> %s", self.model, self.pin, self._last)
        return self._last

    def close(self) -> None:
        self.closed = True


class MockSensorDriver:
    def __init__(
        self,
        readings: Optional[Dict[int, Iterable[Reading]]] = None,
        fail_pins: Iterable[int] = (),
    ) -> None:
        self._readings = {pin: list(r) for pin, r in (readings or {}).items()}
        self.fail_pins: Set[int] = set(fail_pins)
        self.sensors: Dict[int, MockSensor] = {}

    def open(self, pin: int, model: int) -> MockSensor:
        if pin in self.fail_pins:
            raise HardwareAcquisitionError(f"simulated DHT{model} init failure on {pin}", pin=pin)
        sensor = MockSensor(pin, model, self._readings.get(pin, [(21.5, 45.0)]))
        self.sensors[pin] = sensor
        return sensor
