# rpi_adapter/core/sync.py
from __future__ import annotations

import logging
from typing import Iterable, List

from rpi_adapter.core.state import (
    GPIO_NAMESPACE,
    ObjectDescriptor,
    PortConfig,
    channel_path,
    parse_gpio_path,
    state_path,
)
from rpi_adapter.core.state_store import StateStore

logger = logging.getLogger(__name__)


# Zdarzenia przycisku, dla których trzymamy stany. Wykrywanie gestów nie jest
# zaimplementowane, więc został tylko "state".
BUTTON_EVENTS = ("state",)

# Dawne gesty – wycofane na stałe, usuwamy je zawsze, bez względu na rolę.
LEGACY_BUTTON_EVENTS = ("pressed", "clicked", "clicked_pressed", "double_clicked", "released")


class StateTreeSync:
    """
    Uzgadnia drzewo obiektów w magazynie z konfiguracją portów.

    Dla każdego pinu:
    - gpio.<pin>              – kanał (dla ról != disabled),
    - gpio.<pin>.state        – bool; wejście: read-only, wyjście: write-only,
    - gpio.<pin>.isInput      – kierunek, wartość odświeżana przy KAŻDYM sync,
    - gpio.<pin>.<zdarzenie>  – przyciski (write, bez read),
    - gpio.<pin>.temperature / humidity – czujniki DHT (read-only, number).

    Błędy magazynu (StoreError) lecą do wołającego.
    """

    def __init__(self, store: StateStore) -> None:
        self._store = store

    async def sync_all(self, ports: Iterable[PortConfig]) -> List[int]:
        ports = list(ports)
        for port in ports:
            await self.sync(port)
        return await self.cleanup(p.pin for p in ports)

    async def sync(self, port: PortConfig) -> None:
        channel = channel_path(port.pin)
        if port.is_enabled:
            await self._store.ensure_object(
                channel,
                ObjectDescriptor(type="channel", name=port.display_name, role="info"),
            )

        await self._sync_state(port)
        await self._sync_direction(port)
        await self._sync_button(port)
        await self._sync_temp_hum(port)

        if not port.is_enabled:
            await self._store.delete_object(channel, recursive=True)

    async def cleanup(self, configured_pins: Iterable[int]) -> List[int]:
        """
        Usuwa wszystko pod gpio.<pin> dla pinów, których nie ma już w konfiguracji.
        Zwraca listę usuniętych pinów.
        """
        keep = set(configured_pins)
        paths = set(await self._store.list_objects(GPIO_NAMESPACE + "."))
        paths.update(await self._store.all_states())

        stale = set()
        for path in paths:
            parsed = parse_gpio_path(path)
            if parsed is not None and parsed[0] not in keep:
                stale.add(parsed[0])

        for pin in sorted(stale):
            logger.info("GPIO %d no longer configured - removing its objects", pin)
            await self._store.delete_object(channel_path(pin), recursive=True)

        return sorted(stale)

    # ---------- Poszczególne gałęzie ----------

    async def _sync_state(self, port: PortConfig) -> None:
        path = state_path(port.pin, "state")
        if port.is_enabled and port.is_gpio:
            await self._store.ensure_object(
                path,
                ObjectDescriptor(
                    type="state",
                    name=f"GPIO {port.pin}",
                    role="indicator" if port.is_input else "switch",
                    value_type="boolean",
                    read=port.is_input,
                    write=not port.is_input,
                ),
            )
        elif port.is_enabled and port.is_button:
            # "state" to też zdarzenie przycisku – obsługuje go _sync_button
            pass
        else:
            await self._store.delete_object(path)

    async def _sync_direction(self, port: PortConfig) -> None:
        path = state_path(port.pin, "isInput")
        if port.is_enabled:
            logger.debug("Creating %s", path)
            await self._store.ensure_object(
                path,
                ObjectDescriptor(
                    type="state",
                    name=f"GPIO {port.pin} direction",
                    role="state",
                    value_type="boolean",
                    read=True,
                    write=False,
                ),
            )
            await self._store.set_state(path, port.is_input, ack=True)
        else:
            await self._store.delete_object(path)

    async def _sync_button(self, port: PortConfig) -> None:
        for event_name in LEGACY_BUTTON_EVENTS:
            await self._store.delete_object(state_path(port.pin, event_name))

        for event_name in BUTTON_EVENTS:
            path = state_path(port.pin, event_name)
            if port.is_enabled and port.is_button:
                await self._store.ensure_object(
                    path,
                    ObjectDescriptor(
                        type="state",
                        name=f"GPIO {port.pin} {event_name}",
                        role="button",
                        value_type="boolean",
                        read=False,
                        write=True,
                    ),
                )
            elif event_name != "state":
                await self._store.delete_object(path)

    async def _sync_temp_hum(self, port: PortConfig) -> None:
        for suffix, role in (("temperature", "value.temperature"), ("humidity", "value.humidity")):
            path = state_path(port.pin, suffix)
            if port.is_enabled and port.is_temp_hum:
                await self._store.ensure_object(
                    path,
                    ObjectDescriptor(
                        type="state",
                        name=f"GPIO {port.pin} {suffix}",
                        role=role,
                        value_type="number",
                        read=True,
                        write=False,
                    ),
                )
            else:
                await self._store.delete_object(path)
