from __future__ import annotations

import asyncio
import logging
from typing import Any, List, Optional

from rpi_adapter.core.errors import HardwareAcquisitionError
from rpi_adapter.hw.interface import Bias, ChangeCallback
from rpi_adapter.hw.platform import read_board_model

log = logging.getLogger(__name__)


class RpiGpioLine:
    """
    Linia na RPi.GPIO. Zdarzenia zboczy przychodzą z wątku biblioteki,
    więc przerzucamy je do pętli asyncio przez call_soon_threadsafe.
    """

    def __init__(self, GPIO: Any, pin: int) -> None:
        self._GPIO = GPIO
        self._pin = pin
        self._callbacks: List[ChangeCallback] = []
        self._loop: Optional[asyncio.AbstractEventLoop] = None

    def read(self) -> bool:
        return self._GPIO.input(self._pin) == self._GPIO.HIGH

    def write(self, value: bool) -> None:
        GPIO = self._GPIO
        GPIO.output(self._pin, GPIO.HIGH if value else GPIO.LOW)

    def on_change(self, callback: ChangeCallback) -> None:
        self._callbacks.append(callback)
        if self._loop is None:
            self._loop = asyncio.get_running_loop()
            self._GPIO.add_event_detect(self._pin, self._GPIO.BOTH, callback=self._on_edge)

    def _on_edge(self, channel: int) -> None:
        # wątek RPi.GPIO
        level = self._GPIO.input(channel) == self._GPIO.HIGH
        loop = self._loop
        if loop is not None and not loop.is_closed():
            loop.call_soon_threadsafe(self._dispatch, level)

    def _dispatch(self, level: bool) -> None:
        for cb in list(self._callbacks):
            cb(level)

    def release(self) -> None:
        if self._loop is not None:
            self._GPIO.remove_event_detect(self._pin)
            self._loop = None
        self._callbacks.clear()
        self._GPIO.cleanup(self._pin)


class RpiGpioLineDriver:
    """
    LineDriver na RPi.GPIO (numeracja BCM).
    Nie działa na RPi 5 (RP1) – tam tylko libgpiod. Numer chipu ignorujemy.
    """

    name = "rpigpio"

    def __init__(self) -> None:
        try:
            import RPi.GPIO as GPIO  # type: ignore
        except Exception as e:
            raise HardwareAcquisitionError("RPi.GPIO not available (are you on Raspberry Pi OS?)") from e

        self._GPIO = GPIO
        GPIO.setmode(GPIO.BCM)
        GPIO.setwarnings(False)
        log.info("GPIO driver: RPi.GPIO %s", getattr(GPIO, "VERSION", "?"))

    def identify_host_board_model(self) -> int:
        return read_board_model()

    def request_input(self, pin: int, bias: Bias, *, chip: int) -> RpiGpioLine:
        GPIO = self._GPIO
        pud = {
            Bias.AS_IS: GPIO.PUD_OFF,
            Bias.PULL_UP: GPIO.PUD_UP,
            Bias.PULL_DOWN: GPIO.PUD_DOWN,
        }[bias]
        try:
            GPIO.setup(pin, GPIO.IN, pull_up_down=pud)
        except (RuntimeError, ValueError) as e:
            raise HardwareAcquisitionError(f"cannot setup input {pin}: {e}", pin=pin) from e
        return RpiGpioLine(GPIO, pin)

    def request_output(self, pin: int, initial: bool, *, chip: int) -> RpiGpioLine:
        GPIO = self._GPIO
        try:
            GPIO.setup(pin, GPIO.OUT, initial=GPIO.HIGH if initial else GPIO.LOW)
        except (RuntimeError, ValueError) as e:
            raise HardwareAcquisitionError(f"cannot setup output {pin}: {e}", pin=pin) from e
        return RpiGpioLine(GPIO, pin)

    def close(self) -> None:
        self._GPIO.cleanup()
