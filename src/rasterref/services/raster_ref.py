# src/rasterref/services/raster_ref.py
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Optional

import numpy as np

from ..contracts.core import TileContext
from ..contracts.geo import Bounds, CRSRef, DTypeStr, GeoRaster, GridBounds
from ..ports.raster_source import RasterSourcePort


@dataclass(frozen=True)
class RasterRef:
    """
    Referencia diferida a (fuente, sub-extent). Sin sub-extent = fuente completa.
    Sólo guarda coordenadas: cada `materialize()` vuelve a leer (no hay caché de píxeles).
    Barata de construir y de serializar; el I/O ocurre donde se materializa.
    """
    source: RasterSourcePort
    sub_extent: Optional[Bounds] = None

    @property
    def extent(self) -> Bounds:
        return self.sub_extent if self.sub_extent is not None else self.source.extent

    @property
    def crs(self) -> CRSRef:
        return self.source.crs

    @property
    def cell_type(self) -> DTypeStr:
        return self.source.cell_type

    @property
    def band_count(self) -> int:
        return self.source.band_count

    @property
    def grid_bounds(self) -> GridBounds:
        return self.source.raster_extent.grid_bounds_for(self.extent)

    @property
    def cols(self) -> int:
        return self.grid_bounds.width

    @property
    def rows(self) -> int:
        return self.grid_bounds.height

    @property
    def tile_context(self) -> TileContext:
        return TileContext(extent=self.extent, crs=self.crs)

    def materialize(self) -> GeoRaster:
        return self.source.read(self.extent)

    @property
    def tile(self) -> "RasterRefTile":
        return RasterRefTile(self)

    def __str__(self) -> str:
        return f"RasterRef({self.source}, {self.extent})"


@dataclass(frozen=True)
class RasterRefTile:
    """Tile perezoso: dimensiones sin I/O de píxeles; los datos se leen al pedirlos."""
    ref: RasterRef

    @property
    def cols(self) -> int:
        return self.ref.cols

    @property
    def rows(self) -> int:
        return self.ref.rows

    @property
    def cell_type(self) -> DTypeStr:
        return self.ref.cell_type

    def data(self) -> np.ndarray:
        return self.ref.materialize().data

    def __array__(self, dtype: Any = None, copy: Any = None) -> np.ndarray:
        arr = self.data()
        return arr if dtype is None else arr.astype(dtype)


__all__ = ["RasterRef", "RasterRefTile"]
