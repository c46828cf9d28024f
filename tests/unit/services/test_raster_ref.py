import pickle

import numpy as np
import pytest

from rasterref.adapters.raster_sources import InMemoryRasterSource
from rasterref.contracts.geo import Bounds, GeoRaster
from rasterref.services.raster_ref import RasterRef, RasterRefTile
from tests.factories import make_profile, ramp

def _source(w=100, h=100, tile=50):
    data = ramp(w, h)
    return InMemoryRasterSource(GeoRaster(data, make_profile(w, h)), tile_size=tile), data

def test_ref_without_sub_extent_covers_source():
    src, data = _source()
    ref = RasterRef(src)
    assert ref.extent == src.extent
    assert (ref.cols, ref.rows) == (100, 100)
    assert np.array_equal(ref.materialize().data, data)

def test_ref_sub_extent_metadata_without_pixels():
    src, data = _source()
    sub = Bounds(0.0, -500.0, 500.0, 0.0)
    ref = RasterRef(src, sub)
    assert (ref.cols, ref.rows) == (50, 50)
    assert ref.cell_type == "uint16"
    assert ref.crs == src.crs
    assert ref.tile_context.extent == sub
    assert np.array_equal(ref.materialize().data, data[:50, :50])

def test_ref_tile_is_array_like():
    src, data = _source()
    tile = RasterRef(src, Bounds(500.0, -1000.0, 1000.0, -500.0)).tile
    assert isinstance(tile, RasterRefTile)
    assert (tile.cols, tile.rows) == (50, 50)
    assert np.array_equal(np.asarray(tile), data[50:, 50:])
    assert np.asarray(tile, dtype=np.float64).dtype == np.float64

def test_ref_pickles_with_source():
    src, data = _source()
    ref = RasterRef(src, Bounds(0.0, -500.0, 500.0, 0.0))
    back = pickle.loads(pickle.dumps(ref))
    assert back.extent == ref.extent
    assert np.array_equal(back.materialize().data, data[:50, :50])

def test_materialize_reads_every_time():
    calls = []

    class Counting(InMemoryRasterSource):
        def _read_window(self, window):
            calls.append(window)
            return super()._read_window(window)

    data = ramp(10, 10)
    ref = RasterRef(Counting(GeoRaster(data, make_profile(10, 10))))
    ref.materialize()
    ref.materialize()
    assert len(calls) == 2
