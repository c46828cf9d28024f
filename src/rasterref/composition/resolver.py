# src/rasterref/composition/resolver.py
from __future__ import annotations

"""
Resolución URI -> RasterSource.

La tabla de esquemas decide la variante; construir nunca hace I/O.
Con el prefijo `gdal+` (o `Settings.prefer_native_driver`) se usa el driver
nativo si está disponible; si no, se quita el prefijo y se resuelve de nuevo.
"""

import logging
from functools import partial
from typing import Callable, Dict, Optional
from urllib.parse import urlparse

import fsspec

from ..adapters.gdal_raster_source import GDAL_PREFIX, GDALRasterSource, has_native_driver, strip_gdal_prefix
from ..adapters.raster_sources import (
    FileGeoTiffRasterSource,
    HadoopGeoTiffRasterSource,
    HttpGeoTiffRasterSource,
    InMemoryRasterSource,
    RasterSource,
    S3GeoTiffRasterSource,
)
from ..config import FSSPEC_PROTOCOLS, Settings, get_settings
from ..contracts.errors import UnsupportedSchemeError
from ..contracts.geo import CRSRef, GeoRaster
from ..ports.range_read import ReadCallback

logger = logging.getLogger(__name__)

SourceFactory = Callable[[str, Optional[ReadCallback], Settings], RasterSource]

_REGISTRY: Dict[str, SourceFactory] = {}


def register_scheme(scheme: str, factory: SourceFactory) -> None:
    """Registra (o reemplaza) la variante para un esquema. "" = ruta local sin esquema."""
    _REGISTRY[scheme.lower()] = factory


def registered_schemes() -> tuple:
    return tuple(sorted(_REGISTRY))


def uri_scheme(uri: str) -> str:
    scheme = urlparse(uri).scheme.lower()
    # 'C:\\data\\x.tif' -> esquema 'c': es una letra de unidad, no un esquema
    return "" if len(scheme) == 1 else scheme


def filesystem_factory(scheme: str, settings: Settings) -> Callable[[], fsspec.AbstractFileSystem]:
    """Fábrica picklable del filesystem fsspec (se instancia en el proceso que lee)."""
    protocol = FSSPEC_PROTOCOLS[scheme]
    return partial(fsspec.filesystem, protocol, **settings.options_for(protocol))


# ---------- variantes incorporadas ----------
def _file_source(uri: str, callback: Optional[ReadCallback], settings: Settings) -> RasterSource:
    return FileGeoTiffRasterSource(uri, callback)


def _http_source(uri: str, callback: Optional[ReadCallback], settings: Settings) -> RasterSource:
    return HttpGeoTiffRasterSource(uri, callback, timeout=settings.http_timeout)


def _hadoop_source(uri: str, callback: Optional[ReadCallback], settings: Settings) -> RasterSource:
    return HadoopGeoTiffRasterSource(uri, filesystem_factory(uri_scheme(uri), settings), callback)


def _s3_source(uri: str, callback: Optional[ReadCallback], settings: Settings) -> RasterSource:
    return S3GeoTiffRasterSource(uri, filesystem_factory("s3", settings), callback)


for _scheme in ("", "file"):
    register_scheme(_scheme, _file_source)
for _scheme in ("http", "https"):
    register_scheme(_scheme, _http_source)
for _scheme in ("hdfs", "s3n", "s3a", "wasb", "wasbs"):
    register_scheme(_scheme, _hadoop_source)
register_scheme("s3", _s3_source)


def raster_source(uri: str, callback: Optional[ReadCallback] = None, *,
                  settings: Optional[Settings] = None) -> RasterSource:
    """
    Devuelve la variante de RasterSource para `uri`. No abre nada.
    Lanza UnsupportedSchemeError si el esquema no está registrado.
    """
    s = settings if settings is not None else get_settings()
    scheme = uri_scheme(uri)
    wants_native = scheme.startswith(GDAL_PREFIX)
    if (wants_native or s.prefer_native_driver) and has_native_driver():
        logger.debug("Driver nativo para %s", uri)
        return GDALRasterSource(uri, callback, tile_size=s.nominal_tile_size)
    if wants_native:
        uri = strip_gdal_prefix(uri)
        scheme = uri_scheme(uri)
    factory = _REGISTRY.get(scheme)
    if factory is None:
        raise UnsupportedSchemeError(scheme)
    src = factory(uri, callback, s)
    logger.debug("Resuelto %s -> %s", uri, type(src).__name__)
    return src


def in_memory_source(raster: GeoRaster, crs: Optional[CRSRef] = None, *,
                     settings: Optional[Settings] = None) -> InMemoryRasterSource:
    s = settings if settings is not None else get_settings()
    return InMemoryRasterSource(raster, crs_override=crs, tile_size=s.nominal_tile_size)


__all__ = [
    "raster_source", "in_memory_source", "register_scheme", "registered_schemes",
    "uri_scheme", "filesystem_factory", "SourceFactory",
]
