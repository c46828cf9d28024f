# src/rasterref/adapters/gdal_raster_source.py
from __future__ import annotations

import importlib
import logging
import threading
from dataclasses import dataclass
from functools import lru_cache
from typing import Any, Optional

import numpy as np

from ..contracts.core import SourceInfo, Tags, cell_bytes, cell_type_of
from ..contracts.errors import NativeDriverUnavailable, TransportError
from ..contracts.geo import Bounds, CRSRef, GridBounds, RasterExtent
from ..ports.range_read import ReadCallback
from ..services.tiling import NOMINAL_TILE_SIZE, nominal_layout
from .raster_sources import InfoRasterSource, local_path

logger = logging.getLogger(__name__)

GDAL_PREFIX = "gdal+"


def _probe_native_driver() -> None:
    """Carga rasterio (y con él libgdal). Lanza NativeDriverUnavailable si no se puede."""
    try:
        importlib.import_module("rasterio")
    except (ImportError, OSError) as e:
        raise NativeDriverUnavailable(str(e)) from e


@lru_cache(maxsize=1)
def has_native_driver() -> bool:
    """Una vez por proceso; el fallo no es fatal: se avisa y se usa el lector propio."""
    try:
        _probe_native_driver()
        return True
    except NativeDriverUnavailable as e:
        logger.warning("GDAL native bindings are not available. Falling back to built-in reader. (%s)", e)
        return False


def strip_gdal_prefix(uri: str) -> str:
    return uri[len(GDAL_PREFIX):] if uri.lower().startswith(GDAL_PREFIX) else uri


def _rasterio_crs_to_crsref(crs_obj) -> CRSRef:
    """Convierte rasterio CRS → CRSRef (intenta EPSG, si no WKT, si no vacío)."""
    if not crs_obj:
        return CRSRef()
    epsg = crs_obj.to_epsg()
    if epsg is not None:
        return CRSRef.from_epsg(int(epsg))
    wkt = crs_obj.to_wkt()
    return CRSRef.from_wkt(wkt) if wkt else CRSRef()


@dataclass
class GDALRasterSource(InfoRasterSource):
    """
    Variante con driver nativo (GDAL vía rasterio).
    El dataset se abre perezosamente, uno por hilo (los handles GDAL no son thread-safe),
    y no viaja al serializar.
    El callback recibe una notificación por lectura: (fuente, 0, celdas * bytes * bandas).
    """
    uri: str
    callback: Optional[ReadCallback] = None
    tile_size: int = NOMINAL_TILE_SIZE

    _TRANSIENT = ("_local", "_opened", "_info")

    @property
    def gdal_path(self) -> str:
        return local_path(strip_gdal_prefix(self.uri))

    @property
    def dataset(self) -> Any:
        local = self.__dict__.get("_local")
        if local is None:
            local = self.__dict__.setdefault("_local", threading.local())
        ds = getattr(local, "dataset", None)
        if ds is None:
            import rasterio
            from rasterio.errors import RasterioIOError

            try:
                ds = rasterio.open(self.gdal_path)
            except RasterioIOError as e:
                raise TransportError(f"GDAL no pudo abrir {self.gdal_path}: {e}") from e
            local.dataset = ds
            self.__dict__.setdefault("_opened", []).append(ds)
        return ds

    def close(self) -> None:
        """Cierra los datasets abiertos por todos los hilos."""
        self.__dict__.pop("_local", None)
        for ds in self.__dict__.pop("_opened", []):
            ds.close()

    @property
    def info(self) -> SourceInfo:
        info = self.__dict__.get("_info")
        if info is None:
            ds = self.dataset
            b = ds.bounds
            extent = Bounds(b.left, b.bottom, b.right, b.top)
            nodata = ds.nodata
            info = SourceInfo(
                cell_type=cell_type_of(ds.dtypes[0]),
                extent=extent,
                raster_extent=RasterExtent(extent, ds.width, ds.height),
                crs=_rasterio_crs_to_crsref(ds.crs),
                tags=Tags(
                    head_tags=ds.tags(),
                    band_tags=tuple(ds.tags(i) for i in range(1, ds.count + 1)),
                ),
                band_count=ds.count,
                tile_layout=nominal_layout(ds.width, ds.height, self.tile_size),
                nodata=float(nodata) if nodata is not None else None,
            )
            self._info = info
        return info

    def _read_window(self, window: GridBounds) -> np.ndarray:
        from rasterio.errors import RasterioIOError
        from rasterio.windows import Window

        if self.callback is not None:
            self.callback.read_range(self, 0, window.size * cell_bytes(self.cell_type) * self.band_count)
        try:
            return self.dataset.read(window=Window(window.col_off, window.row_off, window.width, window.height))
        except RasterioIOError as e:
            raise TransportError(f"GDAL falló leyendo {self.gdal_path}: {e}") from e


__all__ = ["GDALRasterSource", "GDAL_PREFIX", "has_native_driver", "strip_gdal_prefix"]
