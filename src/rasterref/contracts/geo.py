# src/rasterref/contracts/geo.py

from __future__ import annotations
import math
from dataclasses import dataclass
from typing import Any, Literal, NamedTuple, Optional, Tuple

import numpy as np
import numpy.typing as npt

# (x_origen, ancho_px, rot_x, y_origen, rot_y, alto_px) en el orden de GDAL
GeoTransform = Tuple[float, float, float, float, float, float]
DTypeStr = Literal[
    "int8", "uint8", "uint16", "int16", "uint32", "int32",
    "uint64", "int64", "float32", "float64",
]

# ---------- Extent ----------
class Bounds(NamedTuple):
    """Rectángulo alineado a ejes en unidades del CRS (un "extent")."""
    minx: float; miny: float; maxx: float; maxy: float

    @property
    def width(self) -> float:
        return self.maxx - self.minx

    @property
    def height(self) -> float:
        return self.maxy - self.miny

    @property
    def center(self) -> Tuple[float, float]:
        return ((self.minx + self.maxx) / 2.0, (self.miny + self.maxy) / 2.0)

    def is_empty(self) -> bool:
        return self.width <= 0 or self.height <= 0

    def combine(self, other: "Bounds") -> "Bounds":
        """Bounding box que contiene a ambos."""
        return Bounds(min(self.minx, other.minx), min(self.miny, other.miny),
                      max(self.maxx, other.maxx), max(self.maxy, other.maxy))

    def intersection(self, other: "Bounds") -> Optional["Bounds"]:
        b = Bounds(max(self.minx, other.minx), max(self.miny, other.miny),
                   min(self.maxx, other.maxx), min(self.maxy, other.maxy))
        return None if b.is_empty() else b

    def intersects(self, other: "Bounds") -> bool:
        return self.intersection(other) is not None

# ---------- CRS (sin GDAL) ----------
@dataclass(frozen=True)
class CRSRef:
    """Referencia a un CRS por código EPSG o WKT. Vacío = desconocido (p.ej. TIFF sin GeoKeys)."""
    wkt: Optional[str] = None
    epsg: Optional[int] = None

    @classmethod
    def from_epsg(cls, code: int) -> "CRSRef":
        return cls(epsg=int(code))

    @classmethod
    def from_wkt(cls, wkt: str) -> "CRSRef":
        return cls(wkt=wkt)

    def is_empty(self) -> bool:
        return self.epsg is None and not self.wkt

    def to_wkt(self) -> str:
        """WKT si lo hay; si no 'EPSG:<code>'. ValueError si está vacío."""
        if self.wkt:
            return self.wkt
        if self.epsg is not None:
            return f"EPSG:{self.epsg}"
        raise ValueError("CRSRef vacío")

    def __str__(self) -> str:
        return "CRS(unknown)" if self.is_empty() else self.to_wkt()

# ---------- Ventanas en grilla de píxeles ----------
class GridBounds(NamedTuple):
    """Ventana en píxeles, semiabierta: [col_off, col_off+width) x [row_off, row_off+height)."""
    col_off: int; row_off: int; width: int; height: int

    @property
    def size(self) -> int:
        return self.width * self.height

    @property
    def col_end(self) -> int:
        return self.col_off + self.width

    @property
    def row_end(self) -> int:
        return self.row_off + self.height

    def slices(self) -> Tuple[slice, slice]:
        return (slice(self.row_off, self.row_end), slice(self.col_off, self.col_end))

# ---------- Perfil y Raster ----------
@dataclass(frozen=True)
class GeoProfile:
    count: int
    dtype: DTypeStr
    width: int
    height: int
    transform: GeoTransform
    crs: CRSRef
    nodata: Optional[float] = None

    @property
    def bounds(self) -> Bounds:
        return geotransform_bounds(self.transform, self.width, self.height)

@dataclass(frozen=True)
class GeoRaster:
    """Píxeles + perfil. `data` es 2D (filas, columnas) o 3D (bandas, filas, columnas)."""
    data: "npt.NDArray[Any]"  # type: ignore[valid-type]
    profile: GeoProfile

    def __post_init__(self):
        # Los tiles se comparten entre referencias: solo lectura
        if isinstance(self.data, np.ndarray) and self.data.flags.writeable:
            try:
                self.data.setflags(write=False)
            except ValueError:
                pass

    @property
    def shape(self) -> Tuple[int, ...]:
        return self.data.shape  # type: ignore[no-any-return]

    @property
    def extent(self) -> Bounds:
        return self.profile.bounds

    @property
    def size(self) -> int:
        """Celdas por banda (cols * rows)."""
        return self.profile.width * self.profile.height

    def is_single_band(self) -> bool:
        return self.data.ndim == 2

    def as_multiband(self) -> "GeoRaster":
        if not self.is_single_band():
            return self
        return GeoRaster(self.data[np.newaxis, ...], self.profile)

# ---------- Raster extent: extent + dimensiones ----------
@dataclass(frozen=True)
class RasterExtent:
    """Relación píxel <-> mundo definida por un extent y (cols, rows)."""
    extent: Bounds
    cols: int
    rows: int

    def __post_init__(self):
        if self.cols <= 0 or self.rows <= 0:
            raise ValueError(f"Dimensiones inválidas: {self.cols}x{self.rows}")

    @property
    def cell_width(self) -> float:
        return self.extent.width / float(self.cols)

    @property
    def cell_height(self) -> float:
        return self.extent.height / float(self.rows)

    @property
    def size(self) -> int:
        return self.cols * self.rows

    @property
    def transform(self) -> GeoTransform:
        return bounds_to_geotransform(self.extent, self.cols, self.rows)

    def grid_bounds_for(self, extent: Bounds, clamp: bool = True, eps: float = 1e-6) -> GridBounds:
        """
        Ventana de píxeles que cubre `extent` (expandida a píxeles enteros).
        `eps` en fracciones de píxel evita ventanas de más por redondeo.
        """
        cw, ch = self.cell_width, self.cell_height
        c0 = math.floor((extent.minx - self.extent.minx) / cw + eps)
        c1 = math.ceil((extent.maxx - self.extent.minx) / cw - eps)
        r0 = math.floor((self.extent.maxy - extent.maxy) / ch + eps)
        r1 = math.ceil((self.extent.maxy - extent.miny) / ch - eps)
        if clamp:
            c0, r0 = max(c0, 0), max(r0, 0)
            c1, r1 = min(c1, self.cols), min(r1, self.rows)
        return GridBounds(c0, r0, max(c1 - c0, 0), max(r1 - r0, 0))

    def extent_for(self, grid: GridBounds) -> Bounds:
        cw, ch = self.cell_width, self.cell_height
        return Bounds(
            self.extent.minx + grid.col_off * cw,
            self.extent.maxy - grid.row_end * ch,
            self.extent.minx + grid.col_end * cw,
            self.extent.maxy - grid.row_off * ch,
        )

# ---------- GeoTransform ----------
def geotransform_bounds(gt: GeoTransform, width: int, height: int) -> Bounds:
    """Extent de una grilla width x height (admite píxel con signo cualquiera)."""
    x0, px, rx, y0, ry, py = gt
    xs = (x0, x0 + width * px + height * rx)
    ys = (y0, y0 + width * ry + height * py)
    return Bounds(min(xs), min(ys), max(xs), max(ys))

def bounds_to_geotransform(bounds: Bounds, width: int, height: int) -> GeoTransform:
    """Norte arriba: origen en la esquina superior izquierda, alto de píxel negativo."""
    return (bounds.minx, bounds.width / float(width), 0.0,
            bounds.maxy, 0.0, -bounds.height / float(height))

def pretty_bounds(b: Bounds, ndigits: int = 3) -> str:
    return "Bounds(" + ", ".join(f"{k}={v:.{ndigits}f}" for k, v in zip(b._fields, b)) + ")"

__all__ = [
    "GeoTransform", "Bounds", "CRSRef", "GridBounds", "GeoProfile", "GeoRaster", "RasterExtent",
    "geotransform_bounds", "bounds_to_geotransform", "pretty_bounds", "DTypeStr",
]
