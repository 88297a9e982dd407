# rpi_adapter/core/errors.py
from __future__ import annotations

from typing import Optional


# Kod wyjścia procesu, po którym platforma wie, że trzeba przebudować/przeinstalować adapter.
EXIT_CODE_REBUILD = 13


class AdapterError(Exception):
    """Baza wszystkich błędów adaptera."""


class ConfigurationError(AdapterError):
    """
    Zła albo sprzeczna konfiguracja pinu.
    Nigdy nie jest krytyczna – pin dostaje rolę "disabled".
    """

    def __init__(self, message: str, pin: Optional[int] = None) -> None:
        super().__init__(message)
        self.pin = pin


class HardwareAcquisitionError(AdapterError):
    """
    Nie da się pobrać linii (brak sterownika, brak uprawnień, pin zajęty).
    Pin jest pomijany, reszta GPIO działa dalej.
    """

    def __init__(self, message: str, pin: Optional[int] = None) -> None:
        super().__init__(message)
        self.pin = pin


class HardwareVersionMismatch(AdapterError):
    """
    Natywne wiązanie (libgpiod / moduł C) jest w innej wersji niż oczekiwana.
    Nie do naprawienia w runtime – adapter musi się zakończyć z EXIT_CODE_REBUILD.
    """

    exit_code = EXIT_CODE_REBUILD


class StoreError(AdapterError):
    """Wywołanie magazynu stanów się nie powiodło."""


class WriteValidationError(AdapterError):
    """Zapis na pin, który nie jest wyjściem albo jest wyłączony."""

    def __init__(self, message: str, pin: Optional[int] = None) -> None:
        super().__init__(message)
        self.pin = pin
