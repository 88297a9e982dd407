# rpi_adapter/core/config_model.py
from __future__ import annotations

import copy
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Tuple

from rpi_adapter.core.errors import ConfigurationError
from rpi_adapter.core.state import PortConfig, PortRole, coerce_bool

logger = logging.getLogger(__name__)


DEFAULT_INPUT_DEBOUNCE_MS = 30
DEFAULT_SENSOR_POLL_MS = 30_000

# Pola najwyższego poziomu, które po migracji nie mają już znaczenia.
# buttonPressMs / buttonDoubleMs zostają, dopóki nie zapadnie decyzja co do przycisków.
OBSOLETE_FIELDS = (
    "buttonPullUp",
    "buttonDebounceMs",
    "inputPullUp",          # teraz per pin
    "inputDebounceMs",      # teraz per pin
    "dhtPollInterval",      # teraz per pin
    "inputPollIntervalMs",
    # stary parser metryk systemowych:
    "cpu", "raspberry", "memory", "network", "sdcard", "swap", "temperature", "uptime", "wlan",
)

# gpioSettings (camelCase) -> kanoniczne nazwy
_LEGACY_ENTRY_KEYS = {
    "gpio": "pin",
    "configuration": "role",
    "debounceOrPoll": "debounce_or_poll_ms",
    "pullUp": "pull_up",
}

_CANONICAL_ENTRY_KEYS = ("pin", "label", "role", "pull_up", "debounce_or_poll_ms")

_SENSOR_LIKE = ("dht11", "dht22")


@dataclass
class LegacyDefaults:
    """Globalne ustawienia ze starych wersji – domyślne wartości per rola."""
    input_debounce_ms: Optional[int] = None
    input_pull_up: Optional[bool] = None
    button_debounce_ms: Optional[int] = None
    button_pull_up: Optional[bool] = None
    dht_poll_ms: Optional[int] = None

    def debounce_or_poll_for(self, role: str) -> int:
        if role == "in":
            return _first_not_none(self.input_debounce_ms, DEFAULT_INPUT_DEBOUNCE_MS)
        if role == "button":
            return _first_not_none(self.button_debounce_ms, DEFAULT_INPUT_DEBOUNCE_MS)
        if role in _SENSOR_LIKE:
            return _first_not_none(self.dht_poll_ms, DEFAULT_SENSOR_POLL_MS)
        return 0

    def pull_up_for(self, role: str) -> bool:
        if role == "in":
            return bool(self.input_pull_up)
        if role == "button":
            return bool(self.button_pull_up)
        return False


@dataclass
class NormalizedConfig:
    """
    raw   – kanoniczny słownik konfiguracji (to, co zapisujemy do pliku),
    ports – sparsowane PortConfig, po jednym na pin.
    """
    raw: Dict[str, Any]
    ports: List[PortConfig] = field(default_factory=list)

    @property
    def force_init(self) -> bool:
        return bool(self.raw.get("force_init", False))

    def port(self, pin: int) -> Optional[PortConfig]:
        return next((p for p in self.ports if p.pin == pin), None)


def normalize(raw_config: Optional[Mapping[str, Any]]) -> Tuple[NormalizedConfig, bool]:
    """
    Sprowadza konfigurację z dowolnego historycznego kształtu do kanonicznej:

    - gpios: [ {enabled, input, label}, ... ] indeksowane numerem pinu,
      gdzie input to bool, "true"/"false" albo nazwa roli,
    - gpioSettings: [ {gpio, label, configuration, debounceOrPoll, pullUp}, ... ],
    - ports: [ {pin, label, role, pull_up, debounce_or_poll_ms}, ... ] (kanoniczne).

    Zwraca (NormalizedConfig, changed). changed=True wtedy i tylko wtedy, gdy
    cokolwiek zostało usunięte, przemianowane, uzupełnione domyślną wartością
    albo scalone. Drugie wywołanie na wyniku zwraca changed=False.

    Konflikt na tym samym pinie: wygrywa wpis, który już jest w "ports",
    stary wpis jest pomijany z ostrzeżeniem (świadoma utrata danych).
    """
    cfg: Dict[str, Any] = copy.deepcopy(dict(raw_config or {}))
    changed = False

    legacy = _read_legacy_defaults(cfg)

    for name in OBSOLETE_FIELDS:
        if name in cfg:
            del cfg[name]
            changed = True

    if "forceinit" in cfg:
        cfg.setdefault("force_init", coerce_bool(cfg["forceinit"]))
        del cfg["forceinit"]
        changed = True
    if "force_init" not in cfg:
        cfg["force_init"] = False
        changed = True
    elif not isinstance(cfg["force_init"], bool):
        cfg["force_init"] = coerce_bool(cfg["force_init"])
        changed = True

    ports = cfg.get("ports")
    if not isinstance(ports, list):
        if ports is not None:
            logger.error("Config field 'ports' must be a list, got %s - ignoring it", type(ports).__name__)
        ports = []
        changed = True

    if "gpioSettings" in cfg:
        for entry in cfg.pop("gpioSettings") or []:
            if isinstance(entry, dict):
                entry = {_LEGACY_ENTRY_KEYS.get(k, k): v for k, v in entry.items()}
            _merge_entry(ports, entry, source="gpioSettings")
        changed = True

    if "gpios" in cfg:
        for pin, gpio in enumerate(cfg.pop("gpios") or []):
            if not isinstance(gpio, dict) or not coerce_bool(gpio.get("enabled", False)):
                continue
            role = _legacy_role(pin, gpio.get("input"))
            entry = {
                "pin": pin,
                "label": gpio.get("label") or "",
                "role": role,
                "pull_up": legacy.pull_up_for(role),
                "debounce_or_poll_ms": legacy.debounce_or_poll_for(role),
            }
            _merge_entry(ports, entry, source="gpios")
        changed = True

    canonical: List[Dict[str, Any]] = []
    port_configs: List[PortConfig] = []
    seen_pins = set()

    for entry in ports:
        fixed = _canonical_entry(entry, legacy)
        if fixed is None:
            changed = True
            continue
        if fixed["pin"] in seen_pins:
            logger.warning("GPIO %d configured twice. Dropping %r.", fixed["pin"], entry)
            changed = True
            continue
        if fixed != entry:
            changed = True

        seen_pins.add(fixed["pin"])
        canonical.append(fixed)
        port_configs.append(_to_port_config(fixed))

    cfg["ports"] = canonical

    if changed:
        logger.debug("Configuration normalized to %r", cfg)

    return NormalizedConfig(raw=cfg, ports=port_configs), changed


# ---------- Pomocnicze ----------

def _first_not_none(*values):
    return next(v for v in values if v is not None)


def _read_legacy_defaults(cfg: Mapping[str, Any]) -> LegacyDefaults:
    def _int_or_none(key: str) -> Optional[int]:
        if cfg.get(key) is None:
            return None
        return _to_int(cfg[key], default=None)

    def _bool_or_none(key: str) -> Optional[bool]:
        return coerce_bool(cfg[key]) if cfg.get(key) is not None else None

    return LegacyDefaults(
        input_debounce_ms=_int_or_none("inputDebounceMs"),
        input_pull_up=_bool_or_none("inputPullUp"),
        button_debounce_ms=_int_or_none("buttonDebounceMs"),
        button_pull_up=_bool_or_none("buttonPullUp"),
        dht_poll_ms=_int_or_none("dhtPollInterval"),
    )


def _legacy_role(pin: int, value: Any) -> str:
    # dawniej input było bool: true -> "in", false -> "out"
    if isinstance(value, bool):
        return "in" if value else "out"
    if value == "true":
        return "in"
    if value == "false":
        return "out"
    if value is None:
        logger.warning("GPIO %d enabled without direction - treating as disabled", pin)
        return PortRole.DISABLED.value
    return str(value)


def _merge_entry(ports: List[Any], entry: Any, source: str) -> None:
    pin = entry.get("pin") if isinstance(entry, dict) else None
    for existing in ports:
        if isinstance(existing, dict) and pin is not None and existing.get("pin") == pin:
            logger.warning("GPIO %s already configured. Skipping old settings from %s: %r", pin, source, entry)
            return
    ports.append(entry)


def _to_int(value: Any, default: Optional[int]) -> Optional[int]:
    if isinstance(value, bool):
        return default
    try:
        return int(float(value))
    except (TypeError, ValueError):
        return default


def _canonical_entry(entry: Any, legacy: LegacyDefaults) -> Optional[Dict[str, Any]]:
    """
    Jeden wpis -> kanoniczny słownik. None, jeśli wpisu nie da się uratować
    (brak/zły numer pinu).
    """
    try:
        if not isinstance(entry, dict):
            raise ConfigurationError(f"port entry must be a mapping, got {entry!r}")

        entry = {_LEGACY_ENTRY_KEYS.get(k, k): v for k, v in entry.items()}

        pin = entry.get("pin")
        if isinstance(pin, bool) or _to_int(pin, default=None) is None:
            raise ConfigurationError(f"invalid pin number {pin!r}")
        pin = int(float(pin))
        if pin < 0:
            raise ConfigurationError(f"pin number must be >= 0, got {pin}", pin=pin)
    except ConfigurationError as exc:
        logger.error("Dropping port entry %r: %s", entry, exc)
        return None

    role = entry.get("role")
    if isinstance(role, bool) or role in ("true", "false"):
        role = _legacy_role(pin, role)
    elif role is None:
        role = PortRole.DISABLED.value
    else:
        role = str(role).strip().lower()

    if entry.get("enabled") is not None and not coerce_bool(entry["enabled"]):
        role = PortRole.DISABLED.value

    unknown = set(entry) - set(_CANONICAL_ENTRY_KEYS) - {"enabled"}
    if unknown:
        logger.warning("GPIO %d: ignoring unknown setting(s) %s", pin, ", ".join(sorted(unknown)))

    label = entry.get("label")
    label = "" if label is None else str(label)

    if entry.get("pull_up") is None:
        pull_up = legacy.pull_up_for(role)
    else:
        pull_up = coerce_bool(entry["pull_up"])

    default_ms = legacy.debounce_or_poll_for(role)
    if entry.get("debounce_or_poll_ms") is None:
        debounce_ms = default_ms
    else:
        debounce_ms = _to_int(entry["debounce_or_poll_ms"], default=None)
        if debounce_ms is None:
            logger.warning(
                "GPIO %d: invalid debounce/poll interval %r - using %d ms",
                pin, entry["debounce_or_poll_ms"], default_ms,
            )
            debounce_ms = default_ms

    return {
        "pin": pin,
        "label": label,
        "role": role,
        "pull_up": pull_up,
        "debounce_or_poll_ms": debounce_ms,
    }


def _to_port_config(entry: Mapping[str, Any]) -> PortConfig:
    pin = entry["pin"]
    try:
        role = _parse_role(pin, entry["role"])
    except ConfigurationError as exc:
        logger.warning("%s - port disabled", exc)
        role = PortRole.DISABLED

    return PortConfig(
        pin=pin,
        role=role,
        label=entry["label"],
        pull_up=entry["pull_up"],
        debounce_or_poll_ms=entry["debounce_or_poll_ms"],
    )


def _parse_role(pin: int, value: str) -> PortRole:
    try:
        return PortRole(value)
    except ValueError:
        raise ConfigurationError(f"GPIO {pin}: invalid role {value!r}", pin=pin) from None


def partition_ports(ports: List[PortConfig]) -> Tuple[List[PortConfig], List[PortConfig], List[PortConfig]]:
    """Dzieli włączone porty na (wejścia + przyciski, wyjścia, czujniki)."""
    inputs = [p for p in ports if p.role in (PortRole.IN, PortRole.BUTTON)]
    outputs = [p for p in ports if p.is_output]
    sensors = [p for p in ports if p.is_temp_hum]
    return inputs, outputs, sensors
