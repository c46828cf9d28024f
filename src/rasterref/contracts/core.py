# src/rasterref/contracts/core.py
from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from types import MappingProxyType
from typing import Any, Callable, Mapping, Optional, Tuple

import numpy as np
from pydantic import BaseModel, ConfigDict, PositiveInt, field_validator, model_validator

from .geo import Bounds, CRSRef, DTypeStr, RasterExtent

logger = logging.getLogger(__name__)

# -------------------------
# Tipos de celda
# -------------------------
_DTYPE_MAP: Mapping[np.dtype, DTypeStr] = MappingProxyType({
    np.dtype("int8"): "int8",
    np.dtype("uint8"): "uint8",
    np.dtype("uint16"): "uint16",
    np.dtype("int16"): "int16",
    np.dtype("uint32"): "uint32",
    np.dtype("int32"): "int32",
    np.dtype("uint64"): "uint64",
    np.dtype("int64"): "int64",
    np.dtype("float32"): "float32",
    np.dtype("float64"): "float64",
})


def cell_type_of(dt: Any) -> DTypeStr:
    try:
        return _DTYPE_MAP[np.dtype(dt).newbyteorder("=")]
    except (KeyError, TypeError) as e:
        raise ValueError(f"dtype {dt} no soportado") from e


def cell_bytes(cell_type: DTypeStr) -> int:
    return np.dtype(cell_type).itemsize

# -------------------------
# Layout nativo de tiles
# -------------------------
class TileLayout(BaseModel):
    """Grilla interna de tiles: layout_cols x layout_rows tiles de tile_cols x tile_rows píxeles."""
    model_config = ConfigDict(frozen=True)
    layout_cols: PositiveInt
    layout_rows: PositiveInt
    tile_cols: PositiveInt
    tile_rows: PositiveInt

    @classmethod
    def covering(cls, cols: int, rows: int, tile_cols: int, tile_rows: int) -> "TileLayout":
        """Layout mínimo (división con techo) que cubre cols x rows."""
        return cls(
            layout_cols=math.ceil(cols / tile_cols),
            layout_rows=math.ceil(rows / tile_rows),
            tile_cols=tile_cols,
            tile_rows=tile_rows,
        )

    @property
    def tile_count(self) -> int:
        return self.layout_cols * self.layout_rows

# -------------------------
# Tags
# -------------------------
class Tags(BaseModel):
    """Metadatos clave/valor del dataset (head) y por banda."""
    model_config = ConfigDict(frozen=True)
    head_tags: Mapping[str, str] = {}
    band_tags: Tuple[Mapping[str, str], ...] = ()

    @field_validator("head_tags")
    @classmethod
    def _freeze_head(cls, v: Mapping[str, str]) -> Mapping[str, str]:
        return MappingProxyType({str(k): str(x) for k, x in dict(v).items()})

    @field_validator("band_tags")
    @classmethod
    def _freeze_bands(cls, v) -> Tuple[Mapping[str, str], ...]:
        return tuple(MappingProxyType({str(k): str(x) for k, x in dict(b).items()}) for b in v)

# -------------------------
# Fechas
# -------------------------
TIFFTAG_DATETIME = "TIFFTAG_DATETIME"
# Formato del tag DateTime de TIFF: 'YYYY:MM:DD HH:MM:SS'
TIFF_DATE_FORMAT = "%Y:%m:%d %H:%M:%S"


def _ensure_utc(dt: datetime) -> datetime:
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def date_from_metadata(meta: Mapping[str, str]) -> Optional[datetime]:
    ds = meta.get(TIFFTAG_DATETIME)
    if not ds:
        return None
    logger.debug("Parsing header date: %s", ds)
    try:
        return _ensure_utc(datetime.strptime(ds.strip(), TIFF_DATE_FORMAT))
    except ValueError:
        logger.debug("Fecha de header no parseable: %r", ds)
        return None


def parse_http_date(value: Optional[str]) -> Optional[datetime]:
    """Parsea un header HTTP (RFC 1123, p.ej. Last-Modified)."""
    if not value:
        return None
    try:
        return _ensure_utc(parsedate_to_datetime(value))
    except (TypeError, ValueError):
        logger.debug("Last-Modified no parseable: %r", value)
        return None

# -------------------------
# Registro de metadatos de una fuente
# -------------------------
SegmentDecoder = Callable[[bytes, int], np.ndarray]


@dataclass(frozen=True)
class SegmentLayout:
    """
    Ubicación de los segmentos (tiles o strips) en el archivo.
    Con planar_config == 2 hay un juego de segmentos por banda, en orden.
    """
    offsets: Tuple[int, ...]
    byte_counts: Tuple[int, ...]
    segment_cols: int
    segment_rows: int
    segments_across: int
    segments_down: int
    planar_config: int = 1
    is_tiled: bool = False
    compression: int = 1
    decoder: Optional[SegmentDecoder] = field(default=None, repr=False, compare=False)

    @property
    def segments_per_plane(self) -> int:
        return self.segments_across * self.segments_down


@dataclass(frozen=True)
class SourceInfo:
    """Metadatos estructurados de una fuente raster (equivalente a un header parseado)."""
    cell_type: DTypeStr
    extent: Bounds
    raster_extent: RasterExtent
    crs: CRSRef
    tags: Tags
    band_count: int
    tile_layout: Optional[TileLayout] = None
    nodata: Optional[float] = None
    segments: Optional[SegmentLayout] = field(default=None, repr=False, compare=False)

    def __post_init__(self):
        if self.band_count < 1:
            raise ValueError(f"band_count debe ser >= 1 (es {self.band_count})")
        if self.raster_extent.extent != self.extent:
            raise ValueError("extent y raster_extent no coinciden")

    @property
    def cols(self) -> int:
        return self.raster_extent.cols

    @property
    def rows(self) -> int:
        return self.raster_extent.rows


class TileContext(BaseModel):
    """Extent + CRS de un tile (contexto espacial mínimo)."""
    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)
    extent: Bounds
    crs: CRSRef

    @model_validator(mode="after")
    def _non_empty(self) -> "TileContext":
        if self.extent.is_empty():
            raise ValueError("extent vacío")
        return self
