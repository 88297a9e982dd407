# rpi_adapter/config/adapter_config.py
from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Dict, List

import yaml

from rpi_adapter.core.config_model import NormalizedConfig, normalize
from rpi_adapter.core.errors import ConfigurationError

logger = logging.getLogger(__name__)


class AdapterConfigStore:
    """
    Plik konfiguracji adaptera (adapter.yaml).

    load() czyta plik, migruje stare kształty (normalize) i – jeśli coś się
    zmieniło – zapisuje wynik z powrotem, żeby migracja wykonała się raz.
    """

    def __init__(self, path: Path) -> None:
        self.path = path

    # ---------- Odczyt ----------

    def read_raw(self) -> Dict[str, Any]:
        if not self.path.exists():
            return {}
        try:
            with self.path.open("r", encoding="utf-8") as f:
                data = yaml.safe_load(f) or {}
        except (OSError, yaml.YAMLError) as exc:
            raise ConfigurationError(f"Cannot read config file {self.path}: {exc}") from exc
        if not isinstance(data, dict):
            raise ConfigurationError(f"Config file {self.path} must contain a mapping, got {type(data).__name__}")
        return data

    def current(self) -> NormalizedConfig:
        """Znormalizowana konfiguracja bez zapisywania migracji."""
        normalized, _ = normalize(self.read_raw())
        return normalized

    def load(self) -> NormalizedConfig:
        try:
            raw = self.read_raw()
        except ConfigurationError as exc:
            # zepsutego pliku nie nadpisujemy – startujemy bez portów
            logger.error("%s - starting without GPIO ports", exc)
            normalized, _ = normalize({})
            return normalized

        if not raw:
            logger.info("No configuration in %s - GPIO ports are not configured", self.path)

        normalized, changed = normalize(raw)
        if changed and raw:
            try:
                self.save_raw(normalized.raw)
            except ConfigurationError as exc:
                logger.error("Cannot write migrated configuration: %s", exc)
            else:
                logger.info("Configuration migrated, written back to %s", self.path)
        return normalized

    # ---------- Zapis ----------

    def save_raw(self, raw: Dict[str, Any]) -> None:
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with self.path.open("w", encoding="utf-8") as f:
                yaml.safe_dump(raw, f, allow_unicode=True, sort_keys=False)
        except (OSError, yaml.YAMLError) as exc:
            raise ConfigurationError(f"Cannot write config file {self.path}: {exc}") from exc

    def update_ports(self, ports: List[Dict[str, Any]]) -> NormalizedConfig:
        """
        Podmienia listę portów, normalizuje całość i zapisuje.
        Pozostałe pola pliku (force_init, buttonPressMs, ...) zostają.
        """
        raw = self.read_raw()
        raw.pop("gpios", None)
        raw.pop("gpioSettings", None)
        raw["ports"] = list(ports)

        normalized, _ = normalize(raw)
        self.save_raw(normalized.raw)
        logger.info("Saved %d port(s) to %s", len(normalized.ports), self.path)
        return normalized
