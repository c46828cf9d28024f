# src/rasterref/ports/raster_source.py
from __future__ import annotations

from datetime import datetime
from typing import Any, Optional, Protocol, Sequence, Tuple, runtime_checkable

from ..contracts.core import Tags, TileLayout
from ..contracts.geo import Bounds, CRSRef, DTypeStr, GeoRaster, RasterExtent

URI = str


@runtime_checkable
class RasterSourcePort(Protocol):
    """
    Contrato que consume el motor de consultas.
    Reglas:
      - construir no hace I/O; la metadata se resuelve en el primer acceso.
      - `read` devuelve GeoRaster 2D (una banda) o 3D (multibanda), nunca ambos.
      - `read_all_lazy` devuelve referencias diferidas (solo una banda).
    """
    @property
    def crs(self) -> CRSRef: ...
    @property
    def extent(self) -> Bounds: ...
    @property
    def dimensions(self) -> Tuple[int, int]: ...  # (cols, rows)
    @property
    def cell_type(self) -> DTypeStr: ...
    @property
    def band_count(self) -> int: ...
    @property
    def tags(self) -> Optional[Tags]: ...
    @property
    def timestamp(self) -> Optional[datetime]: ...
    @property
    def native_layout(self) -> Optional[TileLayout]: ...
    @property
    def raster_extent(self) -> RasterExtent: ...

    def read(self, extent: Bounds) -> GeoRaster: ...
    def read_all(self) -> Sequence[GeoRaster]: ...
    def read_all_lazy(self) -> Sequence[Any]: ...


__all__ = ["RasterSourcePort", "URI"]
