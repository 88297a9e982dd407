import asyncio
import os
import sys
import types
from enum import Enum
from types import SimpleNamespace

import pytest

from rpi_adapter.core.errors import ConfigurationError, HardwareAcquisitionError, HardwareVersionMismatch
from rpi_adapter.hw import drivers
from rpi_adapter.hw.gpiod_driver import GpiodLineDriver, import_gpiod
from rpi_adapter.hw.interface import Bias
from rpi_adapter.hw.mock import MockLineDriver, MockSensorDriver
from rpi_adapter.hw.platform import board_model_from_text, chip_for_model, read_board_model


# ---------- platforma ----------

@pytest.mark.parametrize("text, model", [
    ("Raspberry Pi 4 Model B Rev 1.4", 4),
    ("Raspberry Pi 5 Model B Rev 1.0", 5),
    ("Raspberry Pi 3 Model B Plus Rev 1.3", 3),
    ("Raspberry Pi Zero 2 W Rev 1.0", 1),
    ("Raspberry Pi Compute Module 4 Rev 1.0", 1),
    ("", 1),
])
def test_board_model_from_text(text, model):
    assert board_model_from_text(text) == model


def test_read_board_model_strips_nul(tmp_path):
    path = tmp_path / "model"
    path.write_bytes(b"Raspberry Pi 5 Model B Rev 1.0\x00")
    assert read_board_model(path) == 5


def test_chip_for_model():
    assert [chip_for_model(m) for m in (1, 3, 4, 5, 6)] == [0, 0, 0, 4, 4]


# ---------- wybór sterownika ----------

def test_mock_driver_selection():
    assert isinstance(drivers.load_line_driver("mock"), MockLineDriver)
    assert isinstance(drivers.load_sensor_driver("mock"), MockSensorDriver)


def test_unknown_driver_name():
    with pytest.raises(ConfigurationError):
        drivers.load_line_driver("wiringpi")


def test_missing_gpiod_is_acquisition_error(monkeypatch):
    monkeypatch.setitem(sys.modules, "gpiod", None)
    with pytest.raises(HardwareAcquisitionError):
        import_gpiod()


def test_v1_gpiod_is_version_mismatch(monkeypatch):
    old = types.ModuleType("gpiod")
    old.__version__ = "1.6.3"
    old.Chip = object
    monkeypatch.setitem(sys.modules, "gpiod", old)
    with pytest.raises(HardwareVersionMismatch) as exc:
        drivers.load_line_driver("auto")
    assert exc.value.exit_code == 13


def test_auto_refuses_rpi_gpio_on_new_boards(monkeypatch):
    monkeypatch.setitem(sys.modules, "gpiod", None)
    monkeypatch.setattr(drivers, "read_board_model", lambda: 5)
    with pytest.raises(HardwareAcquisitionError, match="libgpiod"):
        drivers.load_line_driver("auto")


def test_auto_falls_back_to_rpi_gpio_on_old_boards(monkeypatch):
    calls = []
    fake_gpio = SimpleNamespace(
        BCM="BCM",
        setmode=lambda mode: calls.append(("setmode", mode)),
        setwarnings=lambda flag: calls.append(("setwarnings", flag)),
    )
    rpi = types.ModuleType("RPi")
    rpi.GPIO = fake_gpio
    monkeypatch.setitem(sys.modules, "gpiod", None)
    monkeypatch.setitem(sys.modules, "RPi", rpi)
    monkeypatch.setitem(sys.modules, "RPi.GPIO", fake_gpio)
    monkeypatch.setattr(drivers, "read_board_model", lambda: 3)

    driver = drivers.load_line_driver("auto")
    assert driver.name == "rpigpio"
    assert ("setmode", "BCM") in calls


# ---------- libgpiod v2 ----------

class _Value(Enum):
    INACTIVE = 0
    ACTIVE = 1


class FakeRequest:
    def __init__(self, pin, settings):
        self.pin = pin
        self.settings = settings
        self.value = _Value.INACTIVE
        self.events = []
        self.released = False
        self._r, self._w = os.pipe()

    @property
    def fd(self):
        return self._r

    def get_value(self, pin):
        return self.value

    def set_value(self, pin, value):
        self.value = value

    def push(self, event_type):
        self.events.append(SimpleNamespace(event_type=event_type))
        os.write(self._w, b"x")

    def read_edge_events(self):
        os.read(self._r, 64)
        events, self.events = self.events, []
        return events

    def release(self):
        self.released = True
        os.close(self._r)
        os.close(self._w)


@pytest.fixture
def fake_gpiod(monkeypatch):
    requests = []

    def request_lines(path, consumer, config):
        if path != "/dev/gpiochip4":
            raise OSError(f"{path}: No such file or directory")
        ((pin, settings),) = config.items()
        req = FakeRequest(pin, settings)
        requests.append((path, consumer, req))
        return req

    module = types.ModuleType("gpiod")
    module.__version__ = "2.2.0"
    module.request_lines = request_lines
    module.LineSettings = lambda **kw: kw
    module.line = SimpleNamespace(
        Value=_Value,
        Direction=SimpleNamespace(INPUT="input", OUTPUT="output"),
        Bias=SimpleNamespace(AS_IS="as-is", PULL_UP="pull-up", PULL_DOWN="pull-down"),
        Edge=SimpleNamespace(BOTH="both"),
    )
    module.EdgeEvent = SimpleNamespace(Type=SimpleNamespace(RISING_EDGE="rising", FALLING_EDGE="falling"))
    monkeypatch.setitem(sys.modules, "gpiod", module)
    return requests


def test_gpiod_output_request(fake_gpiod):
    driver = GpiodLineDriver()
    line = driver.request_output(17, True, chip=4)

    path, consumer, req = fake_gpiod[0]
    assert (path, consumer) == ("/dev/gpiochip4", "rpi-adapter")
    assert req.settings == {"direction": "output", "output_value": _Value.ACTIVE}

    line.write(False)
    assert req.value == _Value.INACTIVE
    assert line.read() is False
    line.release()
    assert req.released


def test_gpiod_request_failure_names_pin(fake_gpiod):
    driver = GpiodLineDriver()
    with pytest.raises(HardwareAcquisitionError) as exc:
        driver.request_input(4, Bias.AS_IS, chip=0)
    assert exc.value.pin == 4


def test_gpiod_edges_are_delivered_on_the_loop(fake_gpiod):
    driver = GpiodLineDriver()
    line = driver.request_input(4, Bias.PULL_UP, chip=4)
    req = fake_gpiod[0][2]
    assert req.settings["bias"] == "pull-up"
    assert req.settings["edge_detection"] == "both"

    async def scenario():
        levels = []
        got_two = asyncio.Event()

        def on_change(level):
            levels.append(level)
            if len(levels) == 2:
                got_two.set()

        line.on_change(on_change)
        req.push("rising")
        req.push("falling")
        await asyncio.wait_for(got_two.wait(), timeout=5.0)
        line.release()
        return levels

    assert asyncio.run(scenario()) == [True, False]
    assert req.released
