import numpy as np
import pytest
from rasterref.contracts.geo import (
    Bounds, CRSRef, GeoProfile, GeoRaster, GridBounds, RasterExtent, bounds_to_geotransform,
)

def test_georaster_immutable_buffer():
    p = GeoProfile(count=1, dtype="uint16", width=4, height=3,
                   transform=(0,10,0,0,0,-10), crs=CRSRef.from_epsg(32719))
    r = GeoRaster(np.zeros((3,4), dtype=np.uint16), p)
    with pytest.raises((ValueError, RuntimeError)):
        r.data[...] = 1

def test_georaster_extent_and_multiband():
    p = GeoProfile(1, "uint16", 4, 3, (100.0, 10, 0, 50.0, 0, -10), CRSRef.from_epsg(32719))
    r = GeoRaster(np.zeros((3, 4), dtype=np.uint16), p)
    assert r.extent == Bounds(100.0, 20.0, 140.0, 50.0)
    assert r.is_single_band()
    mb = r.as_multiband()
    assert mb.shape == (1, 3, 4) and not mb.is_single_band()
    assert mb.as_multiband() is mb

def test_bounds_ops():
    a = Bounds(0, 0, 10, 10)
    b = Bounds(5, 5, 20, 20)
    assert a.intersection(b) == Bounds(5, 5, 10, 10)
    assert a.combine(b) == Bounds(0, 0, 20, 20)
    assert not a.intersects(Bounds(10, 0, 20, 10))  # sólo comparten borde
    assert a.center == (5.0, 5.0)

def test_crsref_str():
    assert str(CRSRef()) == "CRS(unknown)"
    assert str(CRSRef.from_epsg(4326)) == "EPSG:4326"
    assert CRSRef.from_epsg(4326) == CRSRef.from_epsg(4326)
    assert CRSRef().is_empty()
    with pytest.raises(ValueError):
        CRSRef().to_wkt()

def test_raster_extent_grid_roundtrip():
    re = RasterExtent(Bounds(0, 0, 100, 50), cols=10, rows=5)
    assert (re.cell_width, re.cell_height) == (10.0, 10.0)
    g = re.grid_bounds_for(Bounds(10, 10, 40, 30))
    assert g == GridBounds(1, 2, 3, 2)
    assert re.extent_for(g) == Bounds(10, 10, 40, 30)
    assert re.transform == bounds_to_geotransform(re.extent, 10, 5)

def test_raster_extent_snaps_outward_and_clamps():
    re = RasterExtent(Bounds(0, 0, 100, 50), cols=10, rows=5)
    # medio píxel hacia cada lado -> se expande a píxeles completos
    assert re.grid_bounds_for(Bounds(15, 15, 35, 35)) == GridBounds(1, 1, 3, 3)
    # fuera del raster -> recortado
    assert re.grid_bounds_for(Bounds(-50, -50, 500, 500)) == GridBounds(0, 0, 10, 5)

def test_raster_extent_rejects_empty_grid():
    with pytest.raises(ValueError):
        RasterExtent(Bounds(0, 0, 1, 1), cols=0, rows=1)
