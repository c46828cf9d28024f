# src/rasterref/adapters/geotiff_info.py
from __future__ import annotations

"""
Lectura de GeoTIFF/COG por rangos de bytes.

`read_geotiff_info` parsea sólo el primer IFD (tifffile sobre un RangeReaderFile),
sin tocar el payload de píxeles. `read_window` decodifica únicamente los
segmentos (tiles o strips) que intersectan una ventana.
"""

import importlib.util
import logging
import math
import struct
import xml.etree.ElementTree as ET
from functools import lru_cache
from typing import Any, Dict, List, Optional, Tuple

import numpy as np
import tifffile

from ..contracts.core import SegmentLayout, SourceInfo, Tags, TileLayout, cell_type_of
from ..contracts.errors import CodecUnavailableError, FormatParseError
from ..contracts.geo import Bounds, CRSRef, GridBounds, RasterExtent
from ..ports.range_read import RangeReaderPort
from .range_readers import RangeReaderFile

logger = logging.getLogger(__name__)

# Tags TIFF ASCII que se exponen como metadata (convención GDAL: TIFFTAG_<NOMBRE>)
_ASCII_TAGS: Dict[int, str] = {
    269: "TIFFTAG_DOCUMENTNAME",
    270: "TIFFTAG_IMAGEDESCRIPTION",
    271: "TIFFTAG_MAKE",
    272: "TIFFTAG_MODEL",
    305: "TIFFTAG_SOFTWARE",
    306: "TIFFTAG_DATETIME",
    315: "TIFFTAG_ARTIST",
    316: "TIFFTAG_HOSTCOMPUTER",
    33432: "TIFFTAG_COPYRIGHT",
}

# GeoTIFF
_MODEL_PIXEL_SCALE = 33550
_MODEL_TIEPOINT = 33922
_MODEL_TRANSFORMATION = 34264
_GEO_KEY_DIRECTORY = 34735
_GDAL_METADATA = 42112
_GDAL_NODATA = 42113

_GT_RASTER_TYPE = 1025
_GEOGRAPHIC_TYPE = 2048
_PROJECTED_CS_TYPE = 3072
_RASTER_PIXEL_IS_POINT = 2
_USER_DEFINED = 32767

# Compresiones que tifffile decodifica sin imagecodecs (none, deflate, packbits, lzma)
_BUILTIN_CODECS = frozenset({1, 8, 32946, 32773, 34925})


def _tag_value(page: Any, code: int) -> Any:
    tag = page.tags.get(code)
    return None if tag is None else tag.value


def _as_text(v: Any) -> str:
    if isinstance(v, bytes):
        v = v.decode("latin-1")
    return str(v).strip("\x00").strip()


def _geo_keys(page: Any) -> Dict[int, int]:
    """GeoKeyDirectory -> {key_id: valor} (sólo claves con valor inline)."""
    raw = _tag_value(page, _GEO_KEY_DIRECTORY)
    if raw is None:
        return {}
    values = [int(v) for v in np.asarray(raw).ravel()]
    if len(values) < 4:
        raise FormatParseError("GeoKeyDirectory truncado")
    n = values[3]
    if len(values) < 4 + 4 * n:
        raise FormatParseError(f"GeoKeyDirectory declara {n} claves pero trae {(len(values) - 4) // 4}")
    keys: Dict[int, int] = {}
    for i in range(n):
        key_id, location, _count, value = values[4 + 4 * i: 8 + 4 * i]
        if location == 0:
            keys[key_id] = value
    return keys


def _crs_from_keys(keys: Dict[int, int]) -> CRSRef:
    for key in (_PROJECTED_CS_TYPE, _GEOGRAPHIC_TYPE):
        code = keys.get(key)
        if code and code != _USER_DEFINED:
            return CRSRef.from_epsg(code)
    return CRSRef()


def _extent_from_tags(page: Any, cols: int, rows: int, keys: Dict[int, int]) -> Bounds:
    scale = _tag_value(page, _MODEL_PIXEL_SCALE)
    tie = _tag_value(page, _MODEL_TIEPOINT)
    matrix = _tag_value(page, _MODEL_TRANSFORMATION)
    if scale is not None and tie is not None:
        sx, sy = float(scale[0]), float(scale[1])
        i, j, x, y = float(tie[0]), float(tie[1]), float(tie[3]), float(tie[4])
        x0, y0 = x - i * sx, y + j * sy
    elif matrix is not None:
        m = [float(v) for v in np.asarray(matrix).ravel()]
        if len(m) < 8:
            raise FormatParseError("ModelTransformation incompleto")
        if m[1] != 0.0 or m[4] != 0.0:
            raise FormatParseError("GeoTIFF rotado no soportado")
        sx, sy, x0, y0 = m[0], -m[5], m[3], m[7]
    else:
        # Sin georreferencia: extent en espacio de píxeles, origen arriba-izquierda
        return Bounds(0.0, -float(rows), float(cols), 0.0)
    if sx <= 0 or sy <= 0:
        raise FormatParseError(f"Tamaño de píxel inválido: ({sx}, {sy})")
    if keys.get(_GT_RASTER_TYPE) == _RASTER_PIXEL_IS_POINT:
        x0, y0 = x0 - sx / 2.0, y0 + sy / 2.0
    return Bounds(x0, y0 - rows * sy, x0 + cols * sx, y0)


def _gdal_metadata(page: Any, band_count: int) -> Tuple[Dict[str, str], List[Dict[str, str]]]:
    head: Dict[str, str] = {}
    bands: List[Dict[str, str]] = [dict() for _ in range(band_count)]
    raw = _tag_value(page, _GDAL_METADATA)
    if raw is None:
        return head, bands
    try:
        root = ET.fromstring(_as_text(raw))
    except ET.ParseError as e:
        logger.warning("GDAL_METADATA ilegible, se ignora: %s", e)
        return head, bands
    for item in root.iter("Item"):
        name = item.get("name")
        if not name:
            continue
        sample = item.get("sample")
        value = (item.text or "").strip()
        if sample is None:
            head[name] = value
        elif sample.isdigit() and int(sample) < band_count:
            bands[int(sample)][name] = value
    return head, bands


def _nodata(page: Any) -> Optional[float]:
    raw = _tag_value(page, _GDAL_NODATA)
    if raw is None:
        return None
    try:
        v = float(_as_text(raw))
    except ValueError:
        logger.debug("GDAL_NODATA no numérico: %r", raw)
        return None
    return v  # NaN es un nodata válido (rasters float)


def _segment_layout(page: Any, cols: int, rows: int, band_count: int) -> SegmentLayout:
    if page.is_tiled:
        seg_cols, seg_rows = int(page.tilewidth), int(page.tilelength)
    else:
        seg_cols, seg_rows = cols, max(1, min(int(page.rowsperstrip or rows), rows))
    planar = int(page.planarconfig)
    across, down = math.ceil(cols / seg_cols), math.ceil(rows / seg_rows)
    offsets = tuple(int(v) for v in page.dataoffsets)
    counts = tuple(int(v) for v in page.databytecounts)
    expected = across * down * (band_count if planar == 2 else 1)
    if len(offsets) != expected or len(counts) != expected:
        raise FormatParseError(
            f"Se esperaban {expected} segmentos y hay {len(offsets)} offsets / {len(counts)} byte counts")

    decode = page.decode  # se resuelve aquí, mientras el TiffFile sigue abierto
    jpegtables = page.jpegtables

    def decoder(data: bytes, index: int) -> np.ndarray:
        arr, _, _ = decode(data, index, jpegtables=jpegtables)
        return arr

    return SegmentLayout(
        offsets=offsets,
        byte_counts=counts,
        segment_cols=seg_cols,
        segment_rows=seg_rows,
        segments_across=across,
        segments_down=down,
        planar_config=planar,
        is_tiled=bool(page.is_tiled),
        compression=int(page.compression),
        decoder=decoder,
    )


def _info_from_page(page: Any) -> SourceInfo:
    cols, rows = int(page.imagewidth), int(page.imagelength)
    if cols <= 0 or rows <= 0:
        raise FormatParseError(f"Dimensiones inválidas: {cols}x{rows}")
    if int(getattr(page, "imagedepth", 1)) > 1:
        raise FormatParseError("TIFF volumétrico no soportado")
    if page.dtype is None:
        raise FormatParseError("Tipo de celda no soportado")
    cell_type = cell_type_of(page.dtype)
    band_count = int(page.samplesperpixel)

    keys = _geo_keys(page)
    extent = _extent_from_tags(page, cols, rows, keys)
    head, band_tags = _gdal_metadata(page, band_count)
    for code, name in _ASCII_TAGS.items():
        v = _tag_value(page, code)
        if v is not None:
            head.setdefault(name, _as_text(v))

    layout = None
    if page.is_tiled:
        layout = TileLayout.covering(cols, rows, int(page.tilewidth), int(page.tilelength))

    return SourceInfo(
        cell_type=cell_type,
        extent=extent,
        raster_extent=RasterExtent(extent, cols, rows),
        crs=_crs_from_keys(keys),
        tags=Tags(head_tags=head, band_tags=tuple(band_tags)),
        band_count=band_count,
        tile_layout=layout,
        nodata=_nodata(page),
        segments=_segment_layout(page, cols, rows, band_count),
    )


def read_geotiff_info(reader: RangeReaderPort, name: str = "") -> SourceInfo:
    """Parseo en streaming del header (primer IFD). Nunca lee los píxeles."""
    fh = RangeReaderFile(reader, name=name)
    try:
        with tifffile.TiffFile(fh) as tif:
            info = _info_from_page(tif.pages[0])
    except FormatParseError:
        raise
    except (tifffile.TiffFileError, ValueError, struct.error, IndexError, KeyError) as e:
        raise FormatParseError(f"{name}: header GeoTIFF inválido: {e}") from e
    logger.debug("Header parseado %s: %sx%s %s, %s bandas, layout=%s",
                 name, info.cols, info.rows, info.cell_type, info.band_count, info.tile_layout)
    return info


# ---------------- lectura de ventanas ----------------
@lru_cache(maxsize=1)
def _imagecodecs_available() -> bool:
    return importlib.util.find_spec("imagecodecs") is not None


def _missing_codec(seg: SegmentLayout) -> CodecUnavailableError:
    return CodecUnavailableError(
        f"Compresión TIFF {seg.compression} requiere el paquete 'imagecodecs' (pip install imagecodecs)")


def _fill_value(info: SourceInfo) -> Any:
    dt = np.dtype(info.cell_type)
    v = info.nodata
    if v is None:
        return 0
    if dt.kind == "f":
        return v
    lim = np.iinfo(dt)
    return int(v) if lim.min <= v <= lim.max and float(v).is_integer() else 0


def _read_segment(reader: RangeReaderPort, seg: SegmentLayout, index: int) -> Optional[np.ndarray]:
    offset, count = seg.offsets[index], seg.byte_counts[index]
    if count == 0:
        return None  # segmento disperso (sparse)
    data = reader.read_range(offset, count)
    try:
        arr = np.asarray(seg.decoder(data, index))
    except (tifffile.TiffFileError, ValueError) as e:
        if seg.compression != 1 and not _imagecodecs_available():
            raise _missing_codec(seg) from e
        raise FormatParseError(f"No se pudo decodificar el segmento {index}: {e}") from e
    while arr.ndim > 3:
        arr = arr[0]
    if arr.ndim == 2:
        arr = arr[..., np.newaxis]
    return arr  # (filas, columnas, muestras)


def read_window(reader: RangeReaderPort, info: SourceInfo, window: GridBounds) -> np.ndarray:
    """Decodifica `window` -> array (bandas, filas, columnas). Una lectura por segmento tocado."""
    seg = info.segments
    if seg is None or seg.decoder is None:
        raise FormatParseError("SourceInfo sin layout de segmentos")
    if seg.compression not in _BUILTIN_CODECS and not _imagecodecs_available():
        raise _missing_codec(seg)
    out = np.full((info.band_count, window.height, window.width), _fill_value(info),
                  dtype=np.dtype(info.cell_type))
    if window.size == 0:
        return out

    sc0, sc1 = window.col_off // seg.segment_cols, (window.col_end - 1) // seg.segment_cols
    sr0, sr1 = window.row_off // seg.segment_rows, (window.row_end - 1) // seg.segment_rows
    planes: List[Optional[int]] = list(range(info.band_count)) if seg.planar_config == 2 else [None]

    for plane in planes:
        for sr in range(sr0, sr1 + 1):
            for sc in range(sc0, sc1 + 1):
                index = sr * seg.segments_across + sc
                if plane is not None:
                    index += plane * seg.segments_per_plane
                block = _read_segment(reader, seg, index)
                if block is None:
                    continue
                y0, x0 = sr * seg.segment_rows, sc * seg.segment_cols
                ys, ye = max(window.row_off, y0), min(window.row_end, y0 + block.shape[0])
                xs, xe = max(window.col_off, x0), min(window.col_end, x0 + block.shape[1])
                if ys >= ye or xs >= xe:
                    continue
                piece = block[ys - y0:ye - y0, xs - x0:xe - x0, :]
                rows = slice(ys - window.row_off, ye - window.row_off)
                cols = slice(xs - window.col_off, xe - window.col_off)
                if plane is None:
                    out[:, rows, cols] = np.moveaxis(piece, -1, 0)
                else:
                    out[plane, rows, cols] = piece[..., 0]
    return out


__all__ = ["read_geotiff_info", "read_window"]
