# rpi_adapter/core/state.py
from __future__ import annotations

import re
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional, Tuple


GPIO_NAMESPACE = "gpio"

# Pełna ścieżka stanu: gpio.<pin>.<suffix>
_GPIO_PATH_RE = re.compile(r"^gpio\.(\d+)(?:\.([A-Za-z_][A-Za-z0-9_]*))?$")


class PortRole(str, Enum):
    """
    Rola pinu – wzajemnie wykluczające się przeznaczenie portu.
    Wartości są takie same jak w pliku konfiguracyjnym.
    """
    IN = "in"
    OUT = "out"
    OUTLOW = "outlow"
    OUTHIGH = "outhigh"
    BUTTON = "button"
    DHT11 = "dht11"
    DHT22 = "dht22"
    DISABLED = "disabled"


GPIO_ROLES = frozenset({PortRole.IN, PortRole.OUT, PortRole.OUTLOW, PortRole.OUTHIGH})
OUTPUT_ROLES = frozenset({PortRole.OUT, PortRole.OUTLOW, PortRole.OUTHIGH})
SENSOR_ROLES = frozenset({PortRole.DHT11, PortRole.DHT22})


@dataclass(frozen=True)
class PortConfig:
    """
    Kanoniczna konfiguracja jednego pinu (numeracja BCM).

    debounce_or_poll_ms:
      - dla in/button: minimalny odstęp między zboczami [ms],
      - dla dht11/dht22: okres odpytywania czujnika [ms],
      - dla wyjść: nieużywane.
    Przycinanie do dozwolonych zakresów robi scheduler (core/debounce.py),
    tutaj trzymamy wartość tak, jak jest w pliku.
    """
    pin: int
    role: PortRole = PortRole.DISABLED
    label: str = ""
    pull_up: bool = False
    debounce_or_poll_ms: int = 0

    @property
    def is_enabled(self) -> bool:
        return self.role != PortRole.DISABLED

    @property
    def is_gpio(self) -> bool:
        return self.role in GPIO_ROLES

    @property
    def is_button(self) -> bool:
        return self.role == PortRole.BUTTON

    @property
    def is_temp_hum(self) -> bool:
        return self.role in SENSOR_ROLES

    @property
    def is_input(self) -> bool:
        return self.role == PortRole.IN or self.is_button or self.is_temp_hum

    @property
    def is_output(self) -> bool:
        return self.role in OUTPUT_ROLES

    @property
    def display_name(self) -> str:
        return self.label or f"GPIO {self.pin}"


@dataclass
class ObjectDescriptor:
    """
    Metadane obiektu w drzewie stanów (kanał albo stan).
    value_type tylko dla type == "state": "boolean" / "number".
    """
    type: str
    name: str
    role: str
    value_type: Optional[str] = None
    read: bool = True
    write: bool = False

    def to_dict(self) -> dict:
        return {
            "type": self.type,
            "name": self.name,
            "role": self.role,
            "value_type": self.value_type,
            "read": self.read,
            "write": self.write,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "ObjectDescriptor":
        return cls(
            type=str(data["type"]),
            name=str(data.get("name", "")),
            role=str(data.get("role", "")),
            value_type=data.get("value_type"),
            read=bool(data.get("read", True)),
            write=bool(data.get("write", False)),
        )


@dataclass
class StateValue:
    """
    Wartość stanu:
      ack=True  – wartość potwierdzona przez adapter (odczyt / wykonany zapis),
      ack=False – żądanie z zewnątrz, jeszcze nie wykonane.
    ts – ostatni zapis, lc – ostatnia ZMIANA wartości.
    """
    val: Any
    ack: bool = True
    ts: float = field(default_factory=time.time)
    lc: float = field(default_factory=time.time)


@dataclass
class StateChange:
    """Wpis w ring-buforze zmian (feed dla API)."""
    seq: int
    path: str
    val: Any
    ack: bool
    ts: float


def channel_path(pin: int) -> str:
    return f"{GPIO_NAMESPACE}.{pin}"


def state_path(pin: int, suffix: str) -> str:
    return f"{GPIO_NAMESPACE}.{pin}.{suffix}"


def parse_gpio_path(path: str) -> Optional[Tuple[int, Optional[str]]]:
    """
    "gpio.5.state" -> (5, "state"), "gpio.5" -> (5, None), inne -> None.
    """
    m = _GPIO_PATH_RE.match(path)
    if m is None:
        return None
    return int(m.group(1)), m.group(2)


def coerce_bool(value: Any) -> bool:
    """
    Tolerancyjna konwersja wartości zapisu do bool:
    - bool zostaje,
    - "true" / "false" / "0" (bez względu na wielkość liter i spacje),
    - reszta jak bool(value) (np. 1 -> True, "" -> False).
    """
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        v = value.strip().lower()
        if v == "true":
            return True
        if v in ("false", "0"):
            return False
    return bool(value)
