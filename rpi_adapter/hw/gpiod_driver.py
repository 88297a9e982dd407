from __future__ import annotations

import asyncio
import logging
from typing import Any, List, Optional

from rpi_adapter.core.errors import HardwareAcquisitionError, HardwareVersionMismatch
from rpi_adapter.hw.interface import Bias, ChangeCallback
from rpi_adapter.hw.platform import read_board_model

log = logging.getLogger(__name__)

CONSUMER = "rpi-adapter"


def import_gpiod() -> Any:
    """
    Ładuje wiązania libgpiod v2.
    - brak modułu            -> HardwareAcquisitionError (GPIO wyłączone w tym uruchomieniu),
    - moduł jest, ale C-rozszerzenie nie wstaje (undefined symbol, inne ABI)
      albo to stare API v1   -> HardwareVersionMismatch (trzeba przeinstalować).
    """
    try:
        import gpiod  # type: ignore
    except ModuleNotFoundError as e:
        raise HardwareAcquisitionError(f"gpiod python bindings not installed: {e}") from e
    except ImportError as e:
        raise HardwareVersionMismatch(f"gpiod native binding cannot be loaded: {e}") from e

    if not hasattr(gpiod, "request_lines"):
        version = getattr(gpiod, "__version__", "1.x")
        raise HardwareVersionMismatch(f"gpiod {version} exposes the v1 API, libgpiod v2 bindings required")

    return gpiod


class GpiodLine:
    def __init__(self, gpiod: Any, request: Any, pin: int) -> None:
        self._gpiod = gpiod
        self._req = request
        self._pin = pin
        self._callbacks: List[ChangeCallback] = []
        self._loop: Optional[asyncio.AbstractEventLoop] = None

    def read(self) -> bool:
        return self._req.get_value(self._pin) == self._gpiod.line.Value.ACTIVE

    def write(self, value: bool) -> None:
        Value = self._gpiod.line.Value
        self._req.set_value(self._pin, Value.ACTIVE if value else Value.INACTIVE)

    def on_change(self, callback: ChangeCallback) -> None:
        self._callbacks.append(callback)
        if self._loop is None:
            # zdarzenia zboczy czytamy z fd requestu w pętli asyncio
            self._loop = asyncio.get_running_loop()
            self._loop.add_reader(self._req.fd, self._on_readable)

    def _on_readable(self) -> None:
        rising = self._gpiod.EdgeEvent.Type.RISING_EDGE
        for ev in self._req.read_edge_events():
            level = ev.event_type == rising
            for cb in list(self._callbacks):
                cb(level)

    def release(self) -> None:
        if self._loop is not None:
            self._loop.remove_reader(self._req.fd)
            self._loop = None
        self._callbacks.clear()
        self._req.release()


class GpiodLineDriver:
    """LineDriver na libgpiod v2 (character device /dev/gpiochipN)."""

    name = "gpiod"

    def __init__(self) -> None:
        self._gpiod = import_gpiod()
        log.info("GPIO driver: libgpiod bindings %s", getattr(self._gpiod, "__version__", "?"))

    def identify_host_board_model(self) -> int:
        return read_board_model()

    def request_input(self, pin: int, bias: Bias, *, chip: int) -> GpiodLine:
        line = self._gpiod.line
        gpiod_bias = {
            Bias.AS_IS: line.Bias.AS_IS,
            Bias.PULL_UP: line.Bias.PULL_UP,
            Bias.PULL_DOWN: line.Bias.PULL_DOWN,
        }[bias]
        settings = self._gpiod.LineSettings(
            direction=line.Direction.INPUT,
            bias=gpiod_bias,
            edge_detection=line.Edge.BOTH,
        )
        return GpiodLine(self._gpiod, self._request(chip, pin, settings), pin)

    def request_output(self, pin: int, initial: bool, *, chip: int) -> GpiodLine:
        line = self._gpiod.line
        settings = self._gpiod.LineSettings(
            direction=line.Direction.OUTPUT,
            output_value=line.Value.ACTIVE if initial else line.Value.INACTIVE,
        )
        return GpiodLine(self._gpiod, self._request(chip, pin, settings), pin)

    def close(self) -> None:
        # gpiod nie trzyma nic globalnie – każdy request zwalnia się sam
        pass

    def _request(self, chip: int, pin: int, settings: Any) -> Any:
        path = f"/dev/gpiochip{chip}"
        try:
            return self._gpiod.request_lines(path, consumer=CONSUMER, config={pin: settings})
        except (OSError, ValueError) as e:
            raise HardwareAcquisitionError(f"cannot request line {pin} on {path}: {e}", pin=pin) from e
