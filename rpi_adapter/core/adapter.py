# rpi_adapter/core/adapter.py
from __future__ import annotations

import logging
import os
from typing import Callable, Optional

from rpi_adapter.core.clock import Clock, RealClock
from rpi_adapter.core.config_model import NormalizedConfig, partition_ports
from rpi_adapter.core.errors import HardwareVersionMismatch, StoreError
from rpi_adapter.core.ports import PortManager
from rpi_adapter.core.state import StateValue, parse_gpio_path
from rpi_adapter.core.state_store import StateStore
from rpi_adapter.core.sync import StateTreeSync
from rpi_adapter.hw.interface import LineDriver, SensorDriver

logger = logging.getLogger(__name__)

# terminate(reason, exit_code) – nie wraca
TerminateFn = Callable[[str, int], None]


def terminate_process(reason: str, exit_code: int) -> None:
    logger.critical("Terminating adapter: %s (exit code %d)", reason, exit_code)
    logging.shutdown()
    os._exit(exit_code)  # pylint: disable=protected-access


class Adapter:
    """
    Kontekst jednego uruchomienia adaptera.

    Trzyma wszystko, co żyje od start() do stop(): synchronizator drzewa,
    manager portów (a przez niego linie, czujniki i timery) oraz subskrypcję
    zapisów z magazynu. Nie ma żadnego globalnego stanu – main.py tworzy
    jedną instancję i woła start/stop z hooków FastAPI.
    """

    def __init__(
        self,
        store: StateStore,
        config: NormalizedConfig,
        driver_factory: Callable[[], LineDriver],
        sensor_factory: Optional[Callable[[], SensorDriver]] = None,
        clock: Optional[Clock] = None,
        terminate: TerminateFn = terminate_process,
    ) -> None:
        self.store = store
        self.config = config
        self._driver_factory = driver_factory
        self._sensor_factory = sensor_factory
        self._clock = clock or RealClock()
        self._terminate = terminate

        self._sync = StateTreeSync(store)
        self._manager: Optional[PortManager] = None

    @property
    def manager(self) -> Optional[PortManager]:
        return self._manager

    @property
    def running(self) -> bool:
        return self._manager is not None

    async def start(self) -> None:
        if self.config.force_init:
            logger.info("force_init set - removing all objects before sync")
            await self.store.clear()

        self.store.subscribe(self.on_state_write)

        ports = self.config.ports
        if not ports:
            logger.info("GPIO ports are not configured")

        try:
            await self._sync.sync_all(ports)
        except StoreError as exc:
            logger.error("Cannot sync objects of GPIO ports: %s", exc)

        inputs, outputs, sensors = partition_ports([p for p in ports if p.is_enabled])
        manager = PortManager(
            self.store,
            ports,
            driver_factory=self._driver_factory,
            sensor_factory=self._sensor_factory,
            clock=self._clock,
        )

        try:
            await manager.setup(inputs, outputs)
            await manager.setup_sensors(sensors)
        except HardwareVersionMismatch as exc:
            logger.critical("Native GPIO binding does not match: %s", exc)
            await manager.unload()
            self.store.unsubscribe(self.on_state_write)
            self._terminate("A dependency requires a rebuild.", exc.exit_code)
            return
        except Exception:  # pylint: disable=broad-except
            logger.exception("GPIO setup failed - releasing acquired ports, GPIO functionality disabled!")
            await manager.unload()
            return

        self._manager = manager
        logger.info(
            "Adapter started: %d input(s), %d output(s), %d sensor(s)",
            len(inputs), len(outputs), len(sensors),
        )
        await self._flush()

    async def on_state_write(self, path: str, state: StateValue) -> None:
        """Żądanie zapisu z magazynu – trasujemy tylko gpio.<pin>.state bez ack."""
        if state.ack:
            return
        parsed = parse_gpio_path(path)
        if parsed is None or parsed[1] != "state":
            logger.debug("Ignoring write request for %s", path)
            return

        logger.debug("stateChange for %s found state = %r", path, state.val)
        if self._manager is None:
            logger.warning("Write request for %s ignored - adapter not started", path)
            return
        await self._manager.write_gpio(parsed[0], state.val)

    async def stop(self) -> None:
        self.store.unsubscribe(self.on_state_write)
        if self._manager is not None:
            await self._manager.unload()
            self._manager = None
        await self._flush()
        logger.info("Adapter stopped")

    async def _flush(self) -> None:
        try:
            await self.store.flush()
        except StoreError as exc:
            logger.error("Cannot persist states: %s", exc)
