import os
import pytest
from rasterref.adapters.gdal_raster_source import has_native_driver
from rasterref.config import get_settings

def pytest_configure():
    os.environ.setdefault("RASTERREF_LOG_LEVEL", "WARNING")

@pytest.fixture(autouse=True)
def _reset_settings_cache():
    # evita fuga de estado entre tests
    get_settings.cache_clear()
    has_native_driver.cache_clear()
    yield
    get_settings.cache_clear()
    has_native_driver.cache_clear()

def pytest_collection_modifyitems(items):
    for item in items:
        if "integration" in item.keywords and os.environ.get("CI") == "true":
            # marca como slow en CI si quieres escalonar
            item.add_marker(pytest.mark.slow)
