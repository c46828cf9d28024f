# src/rasterref/ports/range_read.py
from __future__ import annotations

from typing import Any, Protocol, runtime_checkable


@runtime_checkable
class RangeReaderPort(Protocol):
    """
    Lector de rangos de bytes sobre un recurso direccionable.
    Sin cursor: cada lectura es función pura de (start, length).
    Lecturas más allá del final se recortan a los bytes disponibles.
    """
    @property
    def total_length(self) -> int: ...
    def read_range(self, start: int, length: int) -> bytes: ...


@runtime_checkable
class ReadCallback(Protocol):
    """
    Observador de lecturas (métricas, tests). Se invoca una vez por rango leído,
    antes de la lectura real. No debe alterar el flujo.
    Viaja junto con la fuente a otros procesos: debe ser picklable.
    """
    def read_range(self, source: Any, start: int, length: int) -> None: ...


__all__ = ["RangeReaderPort", "ReadCallback"]
