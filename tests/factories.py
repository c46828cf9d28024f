import numpy as np
import tifffile
from rasterref.contracts.geo import GeoProfile, CRSRef, GeoRaster

# GeoKeyDirectory mínimo: versión 1.1.0, 2 claves (RasterType=PixelIsArea, ProjectedCS=epsg)
def geokeys(epsg=32719, raster_type=1):
    return (1, 1, 0, 2,
            1025, 0, 1, raster_type,
            3072, 0, 1, epsg)

def make_profile(w=10, h=10, px=10.0, epsg=32719, dtype="uint16", x0=0.0, y0=0.0):
    return GeoProfile(
        count=1, dtype=dtype, width=w, height=h,
        transform=(x0, px, 0.0, y0, 0.0, -px),
        crs=CRSRef.from_epsg(epsg), nodata=None
    )

def make_raster(w=10, h=10, px=10.0, value=0, dtype=np.uint16):
    prof = make_profile(w, h, px, dtype="uint16" if dtype==np.uint16 else "float32")
    arr = np.full((h, w), value, dtype=dtype)
    return GeoRaster(data=arr, profile=prof)

def ramp(w, h, dtype=np.uint16):
    """Valores únicos por píxel (fila * w + col) para verificar ventanas."""
    return (np.arange(w * h, dtype=np.int64).reshape(h, w) % np.iinfo(np.uint16).max).astype(dtype)

def write_geotiff(path, data, px=10.0, x0=500000.0, y0=7000000.0, epsg=32719,
                  tile=(32, 32), raster_type=1, datetime="2019:03:01 10:00:00",
                  nodata=None, gdal_metadata=None, georef=True, **kw):
    """
    GeoTIFF pequeño escrito con tifffile (tags GeoTIFF como extratags).
    `tile=None` -> imagen por strips.
    """
    extratags = []
    if georef:
        extratags += [
            (33550, "d", 3, (px, px, 0.0), False),
            (33922, "d", 6, (0.0, 0.0, 0.0, x0, y0, 0.0), False),
            (34735, "H", 12, geokeys(epsg, raster_type), False),
        ]
    if nodata is not None:
        extratags.append((42113, "s", 0, str(nodata), False))
    if gdal_metadata is not None:
        extratags.append((42112, "s", 0, gdal_metadata, False))
    opts = dict(metadata=None, datetime=datetime, extratags=extratags)
    if tile is not None:
        opts["tile"] = tile
    opts.update(kw)
    tifffile.imwrite(str(path), data, **opts)
    return path
