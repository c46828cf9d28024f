# src/rasterref/services/tiling.py
from __future__ import annotations

from typing import Iterator, Optional

from ..contracts.core import TileLayout
from ..contracts.geo import Bounds, GridBounds, RasterExtent

NOMINAL_TILE_SIZE = 256


def nominal_layout(cols: int, rows: int, tile_size: int) -> TileLayout:
    """Layout de tiles cuadrados de `tile_size` (recortado al raster) que cubre cols x rows."""
    return TileLayout.covering(cols, rows, min(cols, tile_size), min(rows, tile_size))


def native_windows(raster_extent: RasterExtent, layout: Optional[TileLayout]) -> Iterator[GridBounds]:
    """
    Ventanas en píxeles alineadas al layout, recortadas al raster.
    Orden fila por fila (la columna varía más rápido). Sin layout: una sola ventana.
    """
    cols, rows = raster_extent.cols, raster_extent.rows
    if layout is None:
        yield GridBounds(0, 0, cols, rows)
        return
    for lr in range(layout.layout_rows):
        r0 = lr * layout.tile_rows
        if r0 >= rows:
            break
        h = min(layout.tile_rows, rows - r0)
        for lc in range(layout.layout_cols):
            c0 = lc * layout.tile_cols
            if c0 >= cols:
                break
            yield GridBounds(c0, r0, min(layout.tile_cols, cols - c0), h)


def native_tiling(raster_extent: RasterExtent, layout: Optional[TileLayout]) -> Iterator[Bounds]:
    """Extents de `native_windows`: disjuntos y cuya unión es el extent completo."""
    if layout is None:
        yield raster_extent.extent
        return
    for w in native_windows(raster_extent, layout):
        yield raster_extent.extent_for(w)


__all__ = ["NOMINAL_TILE_SIZE", "nominal_layout", "native_windows", "native_tiling"]
