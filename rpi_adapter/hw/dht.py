from __future__ import annotations

import logging
from typing import Any, Optional, Tuple

from rpi_adapter.core.errors import HardwareAcquisitionError

log = logging.getLogger(__name__)


class DhtSensor:
    def __init__(self, device: Any, pin: int, model: int) -> None:
        self._device = device
        self.pin = pin
        self.model = model

    def read(self) -> Tuple[Optional[float], Optional[float]]:
        # adafruit_dht rzuca RuntimeError przy nieudanej transmisji (checksum, timeout)
        return self._device.temperature, self._device.humidity

    def close(self) -> None:
        self._device.exit()


class DhtSensorDriver:
    """
    Czujniki DHT11 / DHT22 (AM2302) przez adafruit-circuitpython-dht.
    Pin w numeracji BCM mapujemy na board.D<pin>.
    """

    def __init__(self) -> None:
        try:
            import adafruit_dht  # type: ignore
            import board  # type: ignore
        except Exception as e:
            raise HardwareAcquisitionError(
                "adafruit-circuitpython-dht not available (pip install adafruit-circuitpython-dht)"
            ) from e
        self._adafruit_dht = adafruit_dht
        self._board = board

    def open(self, pin: int, model: int) -> DhtSensor:
        board_pin = getattr(self._board, f"D{pin}", None)
        if board_pin is None:
            raise HardwareAcquisitionError(f"BCM pin {pin} is not available as board.D{pin}", pin=pin)

        sensor_cls = self._adafruit_dht.DHT11 if model == 11 else self._adafruit_dht.DHT22
        try:
            device = sensor_cls(board_pin, use_pulseio=False)
        except (RuntimeError, ValueError, OSError) as e:
            raise HardwareAcquisitionError(f"cannot initialise DHT{model} on {pin}: {e}", pin=pin) from e

        log.info("DHT%d sensor initialised on GPIO%d", model, pin)
        return DhtSensor(device, pin, model)
