# src/rasterref/adapters/raster_sources.py
from __future__ import annotations

import logging
from abc import abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Dict, Iterator, List, Optional, Tuple, Union
from urllib.parse import urlparse
from urllib.request import url2pathname

import numpy as np
import requests

from ..config import FSSPEC_PROTOCOLS
from ..contracts.core import SourceInfo, Tags, TileContext, TileLayout, date_from_metadata, parse_http_date
from ..contracts.geo import (
    Bounds, CRSRef, DTypeStr, GeoProfile, GeoRaster, GridBounds, RasterExtent, bounds_to_geotransform,
)
from ..ports.range_read import RangeReaderPort, ReadCallback
from ..ports.raster_source import RasterSourcePort
from ..services.raster_ref import RasterRef
from ..services.tiling import NOMINAL_TILE_SIZE, native_tiling, nominal_layout
from .geotiff_info import read_geotiff_info, read_window
from .range_readers import FileRangeReader, FsspecRangeReader, HttpRangeReader, unwrap, with_callback

logger = logging.getLogger(__name__)

LazyTiles = Union[List[RasterRef], List[GeoRaster]]


class RasterSource(RasterSourcePort):
    """
    Abstracción sobre un dataset raster direccionable.
    Construir no hace I/O; la metadata se calcula en el primer acceso.
    Las variantes concretas están en este módulo y en gdal_raster_source.
    """
    # Estado de ejecución que no viaja al serializar (se reconstruye perezosamente)
    _TRANSIENT: Tuple[str, ...] = ()

    @property
    @abstractmethod
    def crs(self) -> CRSRef: ...

    @property
    @abstractmethod
    def extent(self) -> Bounds: ...

    @property
    @abstractmethod
    def cols(self) -> int: ...

    @property
    @abstractmethod
    def rows(self) -> int: ...

    @property
    @abstractmethod
    def cell_type(self) -> DTypeStr: ...

    @property
    @abstractmethod
    def band_count(self) -> int: ...

    @property
    @abstractmethod
    def tags(self) -> Optional[Tags]: ...

    @property
    @abstractmethod
    def timestamp(self) -> Optional[datetime]: ...

    @property
    @abstractmethod
    def native_layout(self) -> Optional[TileLayout]: ...

    @property
    def nodata(self) -> Optional[float]:
        return None

    @abstractmethod
    def _read_window(self, window: GridBounds) -> np.ndarray:
        """Píxeles de `window` como array (bandas, filas, columnas)."""

    # ---------- derivados ----------
    @property
    def dimensions(self) -> Tuple[int, int]:
        return (self.cols, self.rows)

    @property
    def size(self) -> int:
        return self.cols * self.rows

    @property
    def raster_extent(self) -> RasterExtent:
        return RasterExtent(self.extent, self.cols, self.rows)

    @property
    def cell_size(self) -> Tuple[float, float]:
        re = self.raster_extent
        return (re.cell_width, re.cell_height)

    @property
    def tile_context(self) -> TileContext:
        return TileContext(extent=self.extent, crs=self.crs)

    def native_tiling(self) -> Iterator[Bounds]:
        return native_tiling(self.raster_extent, self.native_layout)

    # ---------- lectura ----------
    def _window_for(self, extent: Bounds) -> GridBounds:
        inter = self.extent.intersection(Bounds(*extent))
        window = self.raster_extent.grid_bounds_for(inter) if inter is not None else None
        if window is None or window.size == 0:
            raise ValueError(f"{self}: el extent {tuple(extent)} no intersecta {tuple(self.extent)}")
        return window

    def _to_raster(self, data: np.ndarray, window: GridBounds) -> GeoRaster:
        ext = self.raster_extent.extent_for(window)
        profile = GeoProfile(
            count=int(data.shape[0]),
            dtype=self.cell_type,
            width=window.width,
            height=window.height,
            transform=bounds_to_geotransform(ext, window.width, window.height),
            crs=self.crs,
            nodata=self.nodata,
        )
        if self.band_count == 1:
            data = data[0]
        return GeoRaster(data=data, profile=profile)

    def read(self, extent: Bounds) -> GeoRaster:
        """Raster recortado a `extent` (ajustado a píxeles): 2D si es una banda, 3D si es multibanda."""
        window = self._window_for(extent)
        return self._to_raster(self._read_window(window), window)

    def read_multiband(self, extent: Bounds) -> GeoRaster:
        return self.read(extent).as_multiband()

    def read_all(self) -> List[GeoRaster]:
        return [self.read(e) for e in self.native_tiling()]

    def read_all_multiband(self) -> List[GeoRaster]:
        return [r.as_multiband() for r in self.read_all()]

    def read_all_lazy(self) -> LazyTiles:
        if self.band_count == 1:
            return [RasterRef(self, e) for e in self.native_tiling()]
        # TODO: referencias diferidas por ventana para multibanda (hoy: lectura ansiosa)
        logger.warning("Lazy reading is not available for multiband images. Performing eager read.")
        return [self.read(e) for e in self.native_tiling()]

    # ---------- serialización ----------
    def __getstate__(self) -> Dict[str, Any]:
        state = dict(self.__dict__)
        for k in self._TRANSIENT:
            state.pop(k, None)
        return state

    def __setstate__(self, state: Dict[str, Any]) -> None:
        self.__dict__.update(state)


class URIRasterSource(RasterSource):
    uri: str

    def __str__(self) -> str:
        return f"{type(self).__name__}({self.uri})"

    def to_debug_string(self) -> str:
        return (f"{type(self).__name__}(source={self.uri}, size={self.size}, "
                f"dimensions={self.dimensions}, crs={self.crs}, extent={tuple(self.extent)}, "
                f"timestamp={self.timestamp})")


class InfoRasterSource(URIRasterSource):
    """Fuentes cuya metadata sale de un SourceInfo calculado una vez por instancia."""

    @property
    @abstractmethod
    def info(self) -> SourceInfo: ...

    @property
    def crs(self) -> CRSRef:
        return self.info.crs

    @property
    def extent(self) -> Bounds:
        return self.info.extent

    @property
    def raster_extent(self) -> RasterExtent:
        return self.info.raster_extent

    @property
    def cols(self) -> int:
        return self.info.cols

    @property
    def rows(self) -> int:
        return self.info.rows

    @property
    def cell_type(self) -> DTypeStr:
        return self.info.cell_type

    @property
    def band_count(self) -> int:
        return self.info.band_count

    @property
    def tags(self) -> Optional[Tags]:
        return self.info.tags

    @property
    def nodata(self) -> Optional[float]:
        return self.info.nodata

    @property
    def native_layout(self) -> Optional[TileLayout]:
        return self.info.tile_layout

    @property
    def timestamp(self) -> Optional[datetime]:
        return date_from_metadata(self.info.tags.head_tags)


class RangeReaderRasterSource(InfoRasterSource):
    """Variantes GeoTIFF/COG que leen por rangos de bytes (lector construido perezosamente)."""
    callback: Optional[ReadCallback]
    _TRANSIENT = ("_reader", "_info")

    @abstractmethod
    def _build_reader(self) -> RangeReaderPort: ...

    @property
    def range_reader(self) -> RangeReaderPort:
        reader = self.__dict__.get("_reader")
        if reader is None:
            reader = with_callback(self._build_reader(), self.callback, self)
            self._reader = reader
        return reader

    @property
    def info(self) -> SourceInfo:
        # Sin lock: dos hilos pueden parsear a la vez; el resultado es el mismo
        info = self.__dict__.get("_info")
        if info is None:
            info = read_geotiff_info(self.range_reader, name=self.uri)
            self._info = info
        return info

    def _read_window(self, window: GridBounds) -> np.ndarray:
        return read_window(self.range_reader, self.info, window)


def local_path(uri: str) -> str:
    parsed = urlparse(uri)
    if parsed.scheme == "file":
        return url2pathname(parsed.path)
    return uri


def fsspec_uri(uri: str) -> str:
    """Reescribe el esquema al protocolo fsspec equivalente (s3a://b/k -> s3://b/k)."""
    scheme, sep, rest = uri.partition("://")
    protocol = FSSPEC_PROTOCOLS.get(scheme.lower())
    return f"{protocol}{sep}{rest}" if sep and protocol else uri


@dataclass
class FileGeoTiffRasterSource(RangeReaderRasterSource):
    uri: str
    callback: Optional[ReadCallback] = None

    def _build_reader(self) -> RangeReaderPort:
        return FileRangeReader(local_path(self.uri))


@dataclass
class HttpGeoTiffRasterSource(RangeReaderRasterSource):
    uri: str
    callback: Optional[ReadCallback] = None
    timeout: Optional[float] = None
    session_factory: Callable[[], Any] = field(default=requests.Session, repr=False)

    def _build_reader(self) -> RangeReaderPort:
        return HttpRangeReader(self.uri, session_factory=self.session_factory, timeout=self.timeout)

    @property
    def timestamp(self) -> Optional[datetime]:
        ts = date_from_metadata(self.info.tags.head_tags)
        if ts is not None:
            return ts
        reader = unwrap(self.range_reader)
        if isinstance(reader, HttpRangeReader):
            return parse_http_date(reader.response_headers.get("Last-Modified"))
        return None


@dataclass
class HadoopGeoTiffRasterSource(RangeReaderRasterSource):
    """Filesystems distribuidos (hdfs, s3a/s3n, wasb/wasbs) vía fsspec."""
    uri: str
    filesystem: Callable[[], Any]
    callback: Optional[ReadCallback] = None

    def _build_reader(self) -> RangeReaderPort:
        return FsspecRangeReader(fsspec_uri(self.uri), self.filesystem)


@dataclass
class S3GeoTiffRasterSource(RangeReaderRasterSource):
    """Object store S3; `client` es la fábrica (local al proceso) del filesystem fsspec."""
    uri: str
    client: Callable[[], Any]
    callback: Optional[ReadCallback] = None

    def _build_reader(self) -> RangeReaderPort:
        return FsspecRangeReader(fsspec_uri(self.uri), self.client)


@dataclass
class InMemoryRasterSource(RasterSource):
    """Puente para rasters ya materializados (una banda, extent y CRS constantes)."""
    raster: GeoRaster
    crs_override: Optional[CRSRef] = None
    tile_size: int = NOMINAL_TILE_SIZE

    def __post_init__(self):
        if not self.raster.is_single_band():
            raise ValueError("InMemoryRasterSource sólo admite rasters de una banda")
        if self.tile_size <= 0:
            raise ValueError(f"tile_size debe ser > 0 (es {self.tile_size})")

    @property
    def crs(self) -> CRSRef:
        return self.crs_override if self.crs_override is not None else self.raster.profile.crs

    @property
    def extent(self) -> Bounds:
        return self.raster.extent

    @property
    def cols(self) -> int:
        return int(self.raster.data.shape[1])

    @property
    def rows(self) -> int:
        return int(self.raster.data.shape[0])

    @property
    def cell_type(self) -> DTypeStr:
        return self.raster.profile.dtype

    @property
    def band_count(self) -> int:
        return 1

    @property
    def tags(self) -> Optional[Tags]:
        return None

    @property
    def timestamp(self) -> Optional[datetime]:
        return None

    @property
    def nodata(self) -> Optional[float]:
        return self.raster.profile.nodata

    @property
    def native_layout(self) -> Optional[TileLayout]:
        return nominal_layout(self.cols, self.rows, self.tile_size)

    def _read_window(self, window: GridBounds) -> np.ndarray:
        return self.raster.data[window.slices()][np.newaxis, ...]

    def __str__(self) -> str:
        return f"InMemoryRasterSource({self.cols}x{self.rows}, {self.crs})"


__all__ = [
    "RasterSource", "URIRasterSource", "InfoRasterSource", "RangeReaderRasterSource",
    "FileGeoTiffRasterSource", "HttpGeoTiffRasterSource", "HadoopGeoTiffRasterSource",
    "S3GeoTiffRasterSource", "InMemoryRasterSource", "local_path", "fsspec_uri",
]
