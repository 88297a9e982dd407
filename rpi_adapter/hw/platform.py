from __future__ import annotations

import logging
import re
from pathlib import Path

logger = logging.getLogger(__name__)

DEVICE_TREE_MODEL = Path("/proc/device-tree/model")

_MODEL_RE = re.compile(r"^Raspberry Pi (\d+) Model", re.IGNORECASE | re.MULTILINE)

# Od RPi 5 linie GPIO z nagłówka siedzą na kontrolerze RP1 -> gpiochip4.
NEW_CONTROLLER_MIN_MODEL = 5
NEW_CONTROLLER_CHIP = 4
DEFAULT_CHIP = 0


def board_model_from_text(model_text: str) -> int:
    """
    "Raspberry Pi 4 Model B Rev 1.4" -> 4.
    Cała rodzina Zero ma ten sam układ co RPi 1, więc traktujemy ją jako 1
    (np. "Raspberry Pi Zero 2 W Rev 1.0").
    Nierozpoznany opis -> 1.
    """
    if "Zero" in model_text:
        return 1
    m = _MODEL_RE.search(model_text)
    return int(m.group(1)) if m else 1


def read_board_model(path: Path = DEVICE_TREE_MODEL) -> int:
    # plik w device-tree kończy się bajtem NUL
    text = path.read_bytes().decode("ascii", errors="replace").rstrip("\x00").strip()
    model = board_model_from_text(text)
    logger.debug("Board model %d from %r", model, text)
    return model


def chip_for_model(model: int) -> int:
    return NEW_CONTROLLER_CHIP if model >= NEW_CONTROLLER_MIN_MODEL else DEFAULT_CHIP
