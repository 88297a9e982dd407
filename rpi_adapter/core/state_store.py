from __future__ import annotations

import logging
import os
import time
from collections import deque
from pathlib import Path
from typing import Any, Awaitable, Callable, Deque, Dict, List, Optional, Tuple

import yaml

from rpi_adapter.core.errors import StoreError
from rpi_adapter.core.state import ObjectDescriptor, StateChange, StateValue

logger = logging.getLogger(__name__)

# listener(path, state) – wołany przy zapisie z zewnątrz (ack=False)
WriteListener = Callable[[str, StateValue], Awaitable[None]]


class StateStore:
    """
    Drzewo obiektów i wartości stanów, w którym adapter publikuje GPIO.

    - obiekty (kanały / stany) z metadanymi ObjectDescriptor,
    - wartości StateValue (val, ack, ts, lc),
    - ring-bufor zmian z numerem sekwencyjnym (feed dla API),
    - opcjonalny zapis do YAML (obiekty i wartości przeżywają restart).

    Wszystkie metody publiczne są async – adapter traktuje magazyn jak zdalną,
    potencjalnie wolną zależność. Implementacja działa w jednej pętli asyncio,
    więc nie potrzebuje locków.
    """

    def __init__(self, path: Optional[Path] = None, change_buffer_size: int = 1000) -> None:
        self._path = path
        self._objects: Dict[str, ObjectDescriptor] = {}
        self._states: Dict[str, StateValue] = {}
        self._listeners: List[WriteListener] = []

        self._change_seq = 0
        self._change_buf: Deque[StateChange] = deque(maxlen=change_buffer_size)

        self._dirty = False

        if path is not None:
            self._load()

    # ---------- Obiekty ----------

    async def ensure_object(self, path: str, descriptor: ObjectDescriptor) -> bool:
        """
        Tworzy obiekt albo nadpisuje jego metadane.
        Zwraca True, jeśli coś się zmieniło.
        """
        existing = self._objects.get(path)
        if existing == descriptor:
            return False
        self._objects[path] = ObjectDescriptor(**vars(descriptor))
        self._dirty = True
        logger.debug("%s object %s", "Updated" if existing else "Created", path)
        return True

    async def get_object(self, path: str) -> Optional[ObjectDescriptor]:
        obj = self._objects.get(path)
        return ObjectDescriptor(**vars(obj)) if obj is not None else None

    async def list_objects(self, prefix: str = "") -> List[str]:
        return sorted(p for p in self._objects if p.startswith(prefix))

    async def delete_object(self, path: str, recursive: bool = False) -> int:
        """
        Usuwa obiekt razem z jego wartością. recursive=True usuwa też
        wszystko pod "path.". Brak obiektu to nie błąd. Zwraca liczbę usuniętych.
        """
        targets = [path] if path in self._objects or path in self._states else []
        if recursive:
            child_prefix = path + "."
            targets.extend(
                p for p in set(self._objects) | set(self._states) if p.startswith(child_prefix)
            )

        for p in targets:
            self._objects.pop(p, None)
            self._states.pop(p, None)

        if targets:
            self._dirty = True
            logger.debug("Deleted %d object(s) under %s", len(targets), path)
        return len(targets)

    async def clear(self) -> None:
        self._objects.clear()
        self._states.clear()
        self._dirty = True

    # ---------- Wartości ----------

    async def get_state(self, path: str) -> Optional[StateValue]:
        st = self._states.get(path)
        return StateValue(**vars(st)) if st is not None else None

    async def all_states(self) -> Dict[str, StateValue]:
        return {p: StateValue(**vars(st)) for p, st in sorted(self._states.items())}

    async def set_state(self, path: str, value: Any, ack: bool = True) -> None:
        self._write(path, value, ack)

    async def set_state_if_changed(self, path: str, value: Any, ack: bool = True) -> bool:
        """Zapisuje tylko, gdy wartość albo ack różni się od obecnej."""
        current = self._states.get(path)
        if current is not None and current.val == value and current.ack == ack:
            return False
        self._write(path, value, ack)
        return True

    async def request_write(self, path: str, value: Any) -> None:
        """
        Żądanie zmiany stanu z zewnątrz (API, inny adapter):
        zapis z ack=False i powiadomienie subskrybentów.
        """
        self._write(path, value, ack=False)
        state = StateValue(**vars(self._states[path]))
        for listener in list(self._listeners):
            try:
                await listener(path, state)
            except Exception:  # pylint: disable=broad-except
                logger.exception("Write listener failed for %s", path)

    def _write(self, path: str, value: Any, ack: bool) -> None:
        now = time.time()
        current = self._states.get(path)
        lc = now if current is None or current.val != value else current.lc
        self._states[path] = StateValue(val=value, ack=ack, ts=now, lc=lc)
        self._dirty = True

        self._change_seq += 1
        self._change_buf.append(StateChange(seq=self._change_seq, path=path, val=value, ack=ack, ts=now))

    # ---------- Subskrypcje ----------

    def subscribe(self, listener: WriteListener) -> None:
        if listener not in self._listeners:
            self._listeners.append(listener)

    def unsubscribe(self, listener: WriteListener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    # ---------- Feed zmian ----------

    def changes_since(self, last_seq: int) -> Tuple[List[StateChange], int, bool]:
        if not self._change_buf:
            return [], last_seq, False
        oldest = self._change_buf[0].seq
        newest = self._change_buf[-1].seq
        overflow = last_seq < (oldest - 1)
        out = [ch for ch in self._change_buf if ch.seq > last_seq]
        return out, newest, overflow

    # ---------- Persystencja ----------

    async def flush(self) -> None:
        if self._path is None or not self._dirty:
            return

        data = {
            "objects": {p: obj.to_dict() for p, obj in sorted(self._objects.items())},
            "states": {
                p: {"val": st.val, "ack": st.ack, "ts": st.ts, "lc": st.lc}
                for p, st in sorted(self._states.items())
            },
        }

        tmp = self._path.with_suffix(self._path.suffix + ".tmp")
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            with tmp.open("w", encoding="utf-8") as f:
                yaml.safe_dump(data, f, allow_unicode=True, sort_keys=False)
            os.replace(tmp, self._path)
        except (OSError, yaml.YAMLError) as exc:
            raise StoreError(f"Cannot write state file {self._path}: {exc}") from exc

        self._dirty = False

    def _load(self) -> None:
        assert self._path is not None
        if not self._path.exists():
            return

        try:
            with self._path.open("r", encoding="utf-8") as f:
                data = yaml.safe_load(f) or {}
        except (OSError, yaml.YAMLError) as exc:
            raise StoreError(f"Cannot read state file {self._path}: {exc}") from exc

        for p, raw in (data.get("objects") or {}).items():
            try:
                self._objects[p] = ObjectDescriptor.from_dict(raw)
            except (KeyError, TypeError) as exc:
                logger.warning("Skipping malformed object %s in %s: %s", p, self._path, exc)

        for p, raw in (data.get("states") or {}).items():
            if not isinstance(raw, dict) or "val" not in raw:
                logger.warning("Skipping malformed state %s in %s", p, self._path)
                continue
            self._states[p] = StateValue(
                val=raw["val"],
                ack=bool(raw.get("ack", True)),
                ts=float(raw.get("ts", 0.0)),
                lc=float(raw.get("lc", 0.0)),
            )

        logger.info(
            "Loaded %d object(s) and %d state(s) from %s",
            len(self._objects), len(self._states), self._path,
        )
