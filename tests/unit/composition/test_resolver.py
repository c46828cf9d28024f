import logging
import pickle

import pytest

from rasterref.adapters import gdal_raster_source as gdal_mod
from rasterref.adapters.gdal_raster_source import GDALRasterSource, has_native_driver
from rasterref.adapters.raster_sources import (
    FileGeoTiffRasterSource, HadoopGeoTiffRasterSource, HttpGeoTiffRasterSource, InMemoryRasterSource,
    S3GeoTiffRasterSource,
)
from rasterref.composition import resolver
from rasterref.composition.resolver import (
    in_memory_source, raster_source, register_scheme, registered_schemes, uri_scheme,
)
from rasterref.config import Settings
from rasterref.contracts.errors import NativeDriverUnavailable, UnsupportedSchemeError
from tests.factories import make_raster

@pytest.fixture
def no_gdal(monkeypatch):
    monkeypatch.setattr(resolver, "has_native_driver", lambda: False)

@pytest.fixture
def with_gdal(monkeypatch):
    monkeypatch.setattr(resolver, "has_native_driver", lambda: True)

@pytest.mark.parametrize("uri, cls", [
    ("/data/scene.tif", FileGeoTiffRasterSource),
    ("relative/scene.tif", FileGeoTiffRasterSource),
    ("file:///data/scene.tif", FileGeoTiffRasterSource),
    ("C:\\data\\scene.tif", FileGeoTiffRasterSource),
    ("http://host/scene.tif", HttpGeoTiffRasterSource),
    ("https://host/scene.tif", HttpGeoTiffRasterSource),
    ("hdfs://nn/scene.tif", HadoopGeoTiffRasterSource),
    ("s3n://bucket/scene.tif", HadoopGeoTiffRasterSource),
    ("s3a://bucket/scene.tif", HadoopGeoTiffRasterSource),
    ("wasb://c@acct/scene.tif", HadoopGeoTiffRasterSource),
    ("wasbs://c@acct/scene.tif", HadoopGeoTiffRasterSource),
    ("s3://bucket/scene.tif", S3GeoTiffRasterSource),
])
def test_dispatch_table(no_gdal, uri, cls):
    src = raster_source(uri)
    assert type(src) is cls
    assert src.uri == uri

def test_unknown_scheme(no_gdal):
    with pytest.raises(UnsupportedSchemeError) as ei:
        raster_source("ftp://host/scene.tif")
    assert ei.value.scheme == "ftp"
    assert "ftp" in str(ei.value)
    assert isinstance(ei.value, ValueError)

def test_gdal_prefix_with_native_driver(with_gdal):
    src = raster_source("gdal+https://host/scene.tif")
    assert isinstance(src, GDALRasterSource)
    assert src.gdal_path == "https://host/scene.tif"

def test_gdal_prefix_without_native_driver_falls_back(no_gdal):
    src = raster_source("gdal+https://host/scene.tif")
    assert type(src) is HttpGeoTiffRasterSource
    assert src.uri == "https://host/scene.tif"

def test_prefer_native_driver_setting(with_gdal):
    s = Settings(prefer_native_driver=True, nominal_tile_size=128)
    src = raster_source("/data/scene.tif", settings=s)
    assert isinstance(src, GDALRasterSource)
    assert src.tile_size == 128
    assert type(raster_source("/data/scene.tif", settings=Settings())) is FileGeoTiffRasterSource

def test_prefer_native_ignored_without_driver(no_gdal):
    src = raster_source("s3://b/k.tif", settings=Settings(prefer_native_driver=True))
    assert type(src) is S3GeoTiffRasterSource

def test_settings_flow_into_sources(no_gdal):
    s = Settings(http_timeout=2.5, storage_options={"s3": {"anon": True}})
    assert raster_source("https://h/x.tif", settings=s).timeout == 2.5
    client = raster_source("s3://b/k.tif", settings=s).client
    assert client.args == ("s3",) and client.keywords == {"anon": True}

def test_resolved_sources_pickle(no_gdal):
    for uri in ("/data/scene.tif", "https://h/x.tif", "s3a://b/k.tif", "s3://b/k.tif"):
        src = raster_source(uri)
        assert str(pickle.loads(pickle.dumps(src))) == str(src)

def test_register_scheme(no_gdal, monkeypatch):
    monkeypatch.setattr(resolver, "_REGISTRY", dict(resolver._REGISTRY))
    register_scheme("MEMORY", lambda uri, cb, s: FileGeoTiffRasterSource(uri, cb))
    assert type(raster_source("memory://x/y.tif")) is FileGeoTiffRasterSource
    assert "memory" in registered_schemes()

def test_uri_scheme():
    assert uri_scheme("D:/x.tif") == ""
    assert uri_scheme("HTTPS://h/x.tif") == "https"
    assert uri_scheme("gdal+s3://b/k") == "gdal+s3"

def test_in_memory_source_uses_nominal_tile_size():
    src = in_memory_source(make_raster(300, 20), settings=Settings(nominal_tile_size=100))
    assert isinstance(src, InMemoryRasterSource)
    assert len(list(src.native_tiling())) == 3

def test_native_probe_failure_logged_once(monkeypatch, caplog):
    def _boom():
        raise NativeDriverUnavailable("libgdal.so: cannot open shared object file")
    monkeypatch.setattr(gdal_mod, "_probe_native_driver", _boom)
    with caplog.at_level(logging.WARNING):
        assert has_native_driver() is False
        assert has_native_driver() is False
    msgs = [r for r in caplog.records if "GDAL native bindings are not available" in r.getMessage()]
    assert len(msgs) == 1

def test_registered_schemes_lists_builtins():
    schemes = registered_schemes()
    assert {"", "file", "http", "https", "hdfs", "s3n", "s3a", "wasb", "wasbs", "s3"} <= set(schemes)
    assert list(schemes) == sorted(schemes)
    assert not any(s.startswith("gdal+") for s in schemes)
