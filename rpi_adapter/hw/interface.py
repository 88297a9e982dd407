# rpi_adapter/hw/interface.py
from __future__ import annotations

from enum import Enum, auto
from typing import Callable, Optional, Tuple

from typing_extensions import Protocol


class Bias(Enum):
    AS_IS = auto()
    PULL_UP = auto()
    PULL_DOWN = auto()


# callback(level) – nowy poziom linii po zboczu
ChangeCallback = Callable[[bool], None]


class Line(Protocol):
    """
    Żywy uchwyt do jednej linii GPIO, trzymany przez adapter tak długo,
    jak pin jest w użyciu.
    """

    def read(self) -> bool:
        ...

    def write(self, value: bool) -> None:
        ...

    def on_change(self, callback: ChangeCallback) -> None:
        """
        Rejestruje callback na zmiany poziomu (oba zbocza).
        IMPORTANT: callback musi być wołany w wątku pętli asyncio adaptera –
        implementacje, które dostają zdarzenia z innego wątku, same je tam
        przerzucają (call_soon_threadsafe).
        """
        ...

    def release(self) -> None:
        ...


class LineDriver(Protocol):
    """
    Interfejs warstwy sprzętowej GPIO.
    Implementuje go libgpiod, RPi.GPIO i mock (symulator).
    Błędy pobrania linii zgłaszane są jako HardwareAcquisitionError.
    """

    name: str

    def identify_host_board_model(self) -> int:
        """Generacja płytki (1, 2, 3, 4, 5, ...). Wołane raz przy setupie."""
        ...

    def request_input(self, pin: int, bias: Bias, *, chip: int) -> Line:
        ...

    def request_output(self, pin: int, initial: bool, *, chip: int) -> Line:
        ...

    def close(self) -> None:
        ...


class SensorHandle(Protocol):
    def read(self) -> Tuple[Optional[float], Optional[float]]:
        """
        Blokujący odczyt (temperatura °C, wilgotność %).
        Przy błędzie transmisji rzuca RuntimeError – czujniki DHT zdarza się,
        że nie odpowiedzą, kolejny tick spróbuje ponownie.
        """
        ...

    def close(self) -> None:
        ...


class SensorDriver(Protocol):
    def open(self, pin: int, model: int) -> SensorHandle:
        """model: 11 (DHT11) albo 22 (DHT22/AM2302)."""
        ...
