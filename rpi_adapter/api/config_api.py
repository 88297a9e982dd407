# rpi_adapter/api/config_api.py
from __future__ import annotations

from typing import List, Optional

from fastapi import APIRouter, HTTPException
from pydantic import BaseModel, conint

from rpi_adapter.config.adapter_config import AdapterConfigStore
from rpi_adapter.core.errors import ConfigurationError
from rpi_adapter.core.state import PortRole


class PortModel(BaseModel):
    pin: conint(ge=0)
    label: str = ""
    role: PortRole = PortRole.DISABLED
    pull_up: bool = False
    # brak -> domyślna wartość dla roli (30 ms wejścia, 30 s czujniki)
    debounce_or_poll_ms: Optional[conint(ge=0)] = None


def create_config_router(config_store: AdapterConfigStore) -> APIRouter:
    """
    Router z endpointami:
      GET /config/ports
      PUT /config/ports

    Konfiguracja jest czytana tylko przy starcie adaptera – PUT zapisuje plik
    i zwraca restart_required=True.
    """
    router = APIRouter(prefix="/config", tags=["config"])

    @router.get("/ports")
    def get_ports():
        try:
            normalized = config_store.current()
        except ConfigurationError as exc:
            raise HTTPException(status_code=500, detail=str(exc))
        return {
            "force_init": normalized.force_init,
            "ports": normalized.raw["ports"],
        }

    @router.put("/ports")
    def set_ports(ports: List[PortModel]):
        pins = [p.pin for p in ports]
        duplicates = sorted({p for p in pins if pins.count(p) > 1})
        if duplicates:
            raise HTTPException(
                status_code=422,
                detail={"msg": "GPIO configured twice", "pins": duplicates},
            )

        entries = []
        for p in ports:
            entry = {"pin": p.pin, "label": p.label, "role": p.role.value, "pull_up": p.pull_up}
            if p.debounce_or_poll_ms is not None:
                entry["debounce_or_poll_ms"] = p.debounce_or_poll_ms
            entries.append(entry)
        try:
            normalized = config_store.update_ports(entries)
        except ConfigurationError as exc:
            raise HTTPException(status_code=500, detail=str(exc))

        return {
            "ports": normalized.raw["ports"],
            "restart_required": True,
        }

    return router
