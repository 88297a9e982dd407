# rpi_adapter/core/ports.py
from __future__ import annotations

import asyncio
import functools
import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterable, List, Optional, Set, Union

from rpi_adapter.core.clock import Clock, RealClock
from rpi_adapter.core.debounce import EdgeDebouncer, PollScheduler, effective_debounce_ms, effective_poll_ms
from rpi_adapter.core.errors import (
    HardwareAcquisitionError,
    HardwareVersionMismatch,
    StoreError,
    WriteValidationError,
)
from rpi_adapter.core.state import PortConfig, PortRole, coerce_bool, state_path
from rpi_adapter.core.state_store import StateStore
from rpi_adapter.hw.interface import Bias, Line, LineDriver, SensorDriver, SensorHandle
from rpi_adapter.hw.platform import DEFAULT_CHIP, chip_for_model

logger = logging.getLogger(__name__)


REMEDIATION_HINTS = (
    "Please make sure that libgpiod is installed in the system "
    "(on Raspberry Pi OS / Debian run: sudo apt install libgpiod2) together with its python bindings "
    "(pip install 'rpi-adapter[rpi]'), then restart the adapter.",
    "Check that the adapter user may open /dev/gpiochip* (member of the 'gpio' group).",
    "If the libraries are installed, please report this issue with the model of your device "
    "and the debug output of an adapter start.",
)


@dataclass
class LineBinding:
    """
    Żywe powiązanie pin -> linia sprzętowa. Istnieje tylko w runtime,
    nigdy nie jest zapisywane.
    """
    pin: int
    line: Line
    direction: str                        # "in" / "out"
    debounce_ms: int = 0
    # zdarzenia jednego pinu publikujemy w kolejności przyjścia (Lock w asyncio jest FIFO)
    publish_lock: asyncio.Lock = field(default_factory=asyncio.Lock)


class PortManager:
    """
    Cykl życia portów GPIO.

    - setup(): pobiera linie dla wejść/przycisków i wyjść, podpina zdarzenia zboczy,
      ustawia wartości początkowe wyjść outhigh/outlow,
    - setup_sensors(): otwiera czujniki DHT i uruchamia ich odpytywanie,
    - read_value() / write_gpio(): odczyt i zapis z publikacją do magazynu,
    - unload(): zwalnia WSZYSTKO, nawet jeśli część zwolnień się nie uda.

    Manager jest jedynym właścicielem linii – każdy pin pobierany jest co najwyżej raz.
    """

    def __init__(
        self,
        store: StateStore,
        ports: Iterable[PortConfig],
        driver_factory: Callable[[], LineDriver],
        sensor_factory: Optional[Callable[[], SensorDriver]] = None,
        clock: Optional[Clock] = None,
    ) -> None:
        self._store = store
        self._ports: Dict[int, PortConfig] = {p.pin: p for p in ports}
        self._driver_factory = driver_factory
        self._sensor_factory = sensor_factory
        self._clock = clock or RealClock()

        self._driver: Optional[LineDriver] = None
        self._chip = DEFAULT_CHIP
        self._bindings: Dict[int, LineBinding] = {}
        self._sensors: Dict[int, SensorHandle] = {}

        self._debouncer = EdgeDebouncer(self._clock)
        self._poller = PollScheduler()
        self._pending: Set[asyncio.Task] = set()

    # ---------- Podgląd stanu ----------

    @property
    def gpio_available(self) -> bool:
        return self._driver is not None

    @property
    def chip(self) -> int:
        return self._chip

    @property
    def polled_pins(self) -> List[int]:
        return self._poller.pins

    def binding(self, pin: int) -> Optional[LineBinding]:
        return self._bindings.get(pin)

    def port(self, pin: int) -> Optional[PortConfig]:
        return self._ports.get(pin)

    # ---------- Setup ----------

    async def setup(self, input_ports: List[PortConfig], output_ports: List[PortConfig]) -> None:
        """
        input_ports: role in / button, output_ports: out / outlow / outhigh.
        Błąd pojedynczego pinu -> log + pomijamy pin.
        Brak sterownika -> GPIO wyłączone na to uruchomienie.
        HardwareVersionMismatch -> leci dalej (adapter musi się zakończyć).
        """
        if not input_ports and not output_ports:
            return

        driver = self._load_driver()
        if driver is None:
            return

        self._chip = self._resolve_chip(driver)

        for port in input_ports:
            await self._setup_input(driver, port)

        for port in output_ports:
            await self._setup_output(driver, port)

        buttons = [p.pin for p in input_ports if p.role == PortRole.BUTTON]
        if buttons:
            logger.error(
                "Button gestures are not supported - GPIO %s only publish their level to gpio.<pin>.state",
                ", ".join(str(b) for b in buttons),
            )

    def _load_driver(self) -> Optional[LineDriver]:
        if self._driver is not None:
            return self._driver
        try:
            driver = self._driver_factory()
        except HardwareVersionMismatch:
            raise
        except Exception as exc:  # pylint: disable=broad-except
            logger.error("Cannot initialize GPIO: %s. GPIO functionality disabled!", exc)
            for hint in REMEDIATION_HINTS:
                logger.error(hint)
            return None

        logger.debug("Got GPIO driver: %s", getattr(driver, "name", type(driver).__name__))
        self._driver = driver
        return driver

    def _resolve_chip(self, driver: LineDriver) -> int:
        try:
            model = driver.identify_host_board_model()
        except Exception as exc:  # pylint: disable=broad-except
            logger.error("Cannot read board model: %s - using GPIO chip %d", exc, DEFAULT_CHIP)
            return DEFAULT_CHIP

        chip = chip_for_model(model)
        logger.debug("Board model %d -> GPIO chip %d", model, chip)
        return chip

    def _check_free(self, pin: int) -> bool:
        if pin in self._bindings or pin in self._sensors:
            logger.warning("GPIO %d already acquired - skipping duplicate setup", pin)
            return False
        return True

    async def _setup_input(self, driver: LineDriver, port: PortConfig) -> None:
        if not self._check_free(port.pin):
            return

        logger.debug("Port %d direction: %s", port.pin, port.role.value)
        bias = Bias.PULL_UP if port.pull_up else Bias.AS_IS
        try:
            line = driver.request_input(port.pin, bias, chip=self._chip)
        except (HardwareAcquisitionError, OSError) as exc:
            logger.error("Cannot setup input port %d: %s - skipping", port.pin, exc)
            return

        logger.debug("Adding event listener for port %d", port.pin)
        try:
            line.on_change(functools.partial(self._on_edge, port.pin))
        except (HardwareAcquisitionError, OSError, RuntimeError) as exc:
            logger.error("Cannot watch input port %d: %s - skipping", port.pin, exc)
            self._release_line(port.pin, line)
            return

        self._bindings[port.pin] = LineBinding(
            pin=port.pin,
            line=line,
            direction="in",
            debounce_ms=effective_debounce_ms(port),
        )
        await self.read_value(port.pin)

    async def _setup_output(self, driver: LineDriver, port: PortConfig) -> None:
        if not self._check_free(port.pin):
            return

        logger.debug("Port %d direction: %s", port.pin, port.role.value)
        if port.role == PortRole.OUTHIGH:
            initial = True
        elif port.role == PortRole.OUTLOW:
            initial = False
        else:
            # zwykłe "out": nic nie wypychamy, trzymamy poziom sprzed restartu
            initial = await self._last_output_value(port.pin)

        try:
            line = driver.request_output(port.pin, initial, chip=self._chip)
        except (HardwareAcquisitionError, OSError) as exc:
            logger.error("Cannot setup output port %d: %s - skipping", port.pin, exc)
            return

        self._bindings[port.pin] = LineBinding(pin=port.pin, line=line, direction="out")
        await self._push_initial(port)

    async def _push_initial(self, port: PortConfig) -> None:
        if port.role == PortRole.OUTHIGH:
            value = True
        elif port.role == PortRole.OUTLOW:
            value = False
        else:
            logger.debug("Setting no initial value for port %d", port.pin)
            return
        logger.debug("Setting initial value for port %d to %s", port.pin, value)
        await self.write_gpio(port.pin, value)

    def _release_line(self, pin: int, line: Line) -> None:
        try:
            line.release()
        except Exception as exc:  # pylint: disable=broad-except
            logger.error("Failed to release GPIO line %d: %s", pin, exc)

    async def _last_output_value(self, pin: int) -> bool:
        try:
            prior = await self._store.get_state(state_path(pin, "state"))
        except StoreError as exc:
            logger.error("Cannot recover previous value of port %d: %s", pin, exc)
            return False
        return coerce_bool(prior.val) if prior is not None else False

    async def setup_sensors(self, sensor_ports: List[PortConfig]) -> None:
        if not sensor_ports:
            return

        try:
            driver = self._sensor_factory() if self._sensor_factory is not None else None
        except HardwareVersionMismatch:
            raise
        except Exception as exc:  # pylint: disable=broad-except
            logger.error("Cannot initialize DHTxx/AM23xx sensors: %s", exc)
            return
        if driver is None:
            logger.error("DHTxx/AM23xx configured but no sensor driver available")
            return

        for port in sensor_ports:
            if not self._check_free(port.pin):
                continue
            model = 11 if port.role == PortRole.DHT11 else 22
            try:
                self._sensors[port.pin] = driver.open(port.pin, model)
            except (HardwareAcquisitionError, OSError, RuntimeError) as exc:
                logger.error("Failed to initialise DHTxx/AM23xx: %d/%d: %s", model, port.pin, exc)
                continue

            self._poller.start(port.pin, effective_poll_ms(port), functools.partial(self.poll_sensor, port.pin))

    # ---------- Zdarzenia / odczyt / zapis ----------

    def _on_edge(self, pin: int, level: bool) -> None:
        binding = self._bindings.get(pin)
        if binding is None:
            return
        logger.debug("GPIO change on port %d: %s", pin, level)
        if not self._debouncer.accept(pin, binding.debounce_ms):
            return
        self._spawn(self.read_value(pin, level))

    def _spawn(self, coro) -> None:
        task = asyncio.get_running_loop().create_task(coro)
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def wait_idle(self) -> None:
        """Czeka, aż wszystkie rozpoczęte publikacje zdarzeń się zakończą."""
        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    async def read_value(self, pin: int, value: Optional[bool] = None) -> None:
        """
        Odczytuje (albo bierze z zdarzenia) poziom linii, stosuje odwrócenie
        dla pull-up i publikuje do gpio.<pin>.state tylko przy zmianie.
        """
        binding = self._bindings.get(pin)
        port = self._ports.get(pin)
        if binding is None or port is None:
            return

        async with binding.publish_lock:
            try:
                if value is None:
                    value = binding.line.read()
                effective = (not value) if port.pull_up else bool(value)
                logger.debug("Setting state for port %d to %s", pin, effective)
                await self._store.set_state_if_changed(state_path(pin, "state"), effective, ack=True)
            except (StoreError, OSError, RuntimeError) as exc:
                logger.error("Cannot read port %d: %s", pin, exc)

    def check_writable(self, pin: int) -> PortConfig:
        port = self._ports.get(pin)
        if port is None or not port.is_enabled:
            raise WriteValidationError(f"Port {pin} is not writable, because disabled.", pin=pin)
        if not port.is_output:
            raise WriteValidationError(f"Port {pin} is configured as input and not writable", pin=pin)
        return port

    async def write_gpio(self, pin: Union[int, str], value: Any) -> None:
        """
        Zapis na wyjście (np. żądanie z zewnątrz). Wartość zawsze przez coerce_bool,
        więc null -> False.
        Zapis na wejście / wyłączony pin: ostrzeżenie i nic więcej.
        """
        try:
            pin = int(pin)
        except (TypeError, ValueError):
            logger.warning("Invalid port %r - write ignored", pin)
            return

        try:
            self.check_writable(pin)
        except WriteValidationError as exc:
            logger.warning("%s", exc)
            return

        value = coerce_bool(value)

        binding = self._bindings.get(pin)
        if binding is None:
            logger.error("GPIO %d is not initialized!", pin)
            return

        try:
            binding.line.write(value)
        except (OSError, RuntimeError) as exc:
            logger.error("Cannot write port %d: %s", pin, exc)
            return
        logger.debug("Written %s into port %d", value, pin)

        try:
            await self._store.set_state(state_path(pin, "state"), value, ack=True)
        except StoreError as exc:
            logger.error("Cannot acknowledge write on port %d: %s", pin, exc)

    async def poll_sensor(self, pin: int) -> None:
        """Jeden tick odpytywania czujnika: blokujący odczyt w executorze + publikacja przy zmianie."""
        handle = self._sensors.get(pin)
        if handle is None:
            return

        loop = asyncio.get_running_loop()
        try:
            temperature, humidity = await loop.run_in_executor(None, handle.read)
        except (RuntimeError, OSError) as exc:
            logger.warning("Failed to read DHTxx/AM23xx on GPIO %d: %s", pin, exc)
            return

        logger.debug("Read DHTxx/AM23xx on GPIO %d: %s°C, humidity: %s%%", pin, temperature, humidity)
        try:
            if temperature is not None:
                await self._store.set_state_if_changed(state_path(pin, "temperature"), temperature, ack=True)
            if humidity is not None:
                await self._store.set_state_if_changed(state_path(pin, "humidity"), humidity, ack=True)
        except StoreError as exc:
            logger.error("Cannot publish DHTxx/AM23xx reading of GPIO %d: %s", pin, exc)

    # ---------- Sprzątanie ----------

    async def unload(self) -> None:
        """
        Zatrzymuje timery, zwalnia linie i czujniki. Każde zwolnienie jest
        osobno chronione – błąd jednej linii nie blokuje reszty. Nic nie rzuca.
        """
        await self._poller.stop_all()

        pending = list(self._pending)
        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
        self._pending.clear()

        for pin, binding in list(self._bindings.items()):
            self._release_line(pin, binding.line)
        self._bindings.clear()

        for pin, handle in list(self._sensors.items()):
            try:
                handle.close()
            except Exception as exc:  # pylint: disable=broad-except
                logger.error("Failed to close DHTxx/AM23xx on GPIO %d: %s", pin, exc)
        self._sensors.clear()

        if self._driver is not None:
            try:
                self._driver.close()
            except Exception as exc:  # pylint: disable=broad-except
                logger.error("Failed to close GPIO driver: %s", exc)
            self._driver = None

        self._debouncer.clear()
