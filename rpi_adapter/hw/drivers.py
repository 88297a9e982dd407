from __future__ import annotations

import logging

from rpi_adapter.core.errors import ConfigurationError, HardwareAcquisitionError
from rpi_adapter.hw.interface import LineDriver, SensorDriver
from rpi_adapter.hw.platform import NEW_CONTROLLER_MIN_MODEL, read_board_model

log = logging.getLogger(__name__)

DRIVER_NAMES = ("auto", "gpiod", "rpigpio", "mock")


def load_line_driver(name: str = "auto") -> LineDriver:
    """
    Wybór implementacji GPIO:
    - gpiod / rpigpio / mock – wprost,
    - auto – najpierw libgpiod; jeśli go nie ma, a płytka jest starsza niż RPi 5,
      to RPi.GPIO (RPi 5 obsługuje tylko libgpiod).

    HardwareVersionMismatch z libgpiod NIE jest tu łapany – to błąd krytyczny.
    """
    name = (name or "auto").strip().lower()

    if name == "mock":
        from rpi_adapter.hw.mock import MockLineDriver
        return MockLineDriver()
    if name == "gpiod":
        from rpi_adapter.hw.gpiod_driver import GpiodLineDriver
        return GpiodLineDriver()
    if name == "rpigpio":
        from rpi_adapter.hw.rpi_gpio_driver import RpiGpioLineDriver
        return RpiGpioLineDriver()
    if name != "auto":
        raise ConfigurationError(f"unknown GPIO driver {name!r}, expected one of {', '.join(DRIVER_NAMES)}")

    from rpi_adapter.hw.gpiod_driver import GpiodLineDriver
    try:
        return GpiodLineDriver()
    except HardwareAcquisitionError as e:
        log.info("libgpiod bindings not usable (%s), probing for RPi.GPIO", e)

    try:
        model = read_board_model()
    except OSError as e:
        log.warning("Cannot read board model: %s", e)
        model = 1

    if model >= NEW_CONTROLLER_MIN_MODEL:
        raise HardwareAcquisitionError(f"Raspberry Pi {model} requires libgpiod v2 python bindings (pip install gpiod)")

    from rpi_adapter.hw.rpi_gpio_driver import RpiGpioLineDriver
    return RpiGpioLineDriver()


def load_sensor_driver(name: str = "auto") -> SensorDriver:
    if (name or "").strip().lower() == "mock":
        from rpi_adapter.hw.mock import MockSensorDriver
        return MockSensorDriver()

    from rpi_adapter.hw.dht import DhtSensorDriver
    return DhtSensorDriver()
