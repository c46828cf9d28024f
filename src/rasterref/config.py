# src/rasterref/config.py
from __future__ import annotations

import logging
from functools import lru_cache
from typing import Any, Dict, Optional

from pydantic import Field, PositiveInt, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

# Alias de protocolo fsspec por esquema de URI
FSSPEC_PROTOCOLS: Dict[str, str] = {
    "s3": "s3",
    "s3a": "s3",
    "s3n": "s3",
    "hdfs": "hdfs",
    "wasb": "abfs",
    "wasbs": "abfs",
}


class Settings(BaseSettings):
    """
    Config del proceso. No toca disco ni red.
    Se lee una vez (ver get_settings); los adapters la reciben ya construida.
    """
    # --- backend ---
    prefer_native_driver: bool = False  # usar GDAL (rasterio) si está disponible

    # --- tiling ---
    nominal_tile_size: PositiveInt = 256  # lado de tile para fuentes sin layout propio

    # --- transportes ---
    http_timeout: Optional[float] = None  # None: sin timeout (lo decide requests)
    storage_options: Dict[str, Dict[str, Any]] = Field(default_factory=dict)  # por protocolo fsspec

    # --- logging ---
    log_level: str = "WARNING"

    model_config = SettingsConfigDict(
        env_file=".env",
        env_prefix="RASTERREF_",
        env_nested_delimiter="__",
        extra="forbid",
        frozen=True,
    )

    # ----------------------------
    # Normalizadores / validadores
    # ----------------------------
    @field_validator("http_timeout")
    @classmethod
    def _positive_timeout(cls, v: Optional[float]) -> Optional[float]:
        if v is not None and v <= 0:
            raise ValueError("http_timeout debe ser > 0")
        return v

    @field_validator("log_level", mode="before")
    @classmethod
    def _valid_level(cls, v: str) -> str:
        v2 = str(v).strip().upper()
        if not isinstance(logging.getLevelName(v2), int):
            raise ValueError(f"log_level inválido: {v}")
        return v2

    @field_validator("storage_options")
    @classmethod
    def _known_protocols(cls, d: Dict[str, Dict[str, Any]]) -> Dict[str, Dict[str, Any]]:
        unknown = set(d) - set(FSSPEC_PROTOCOLS.values())
        if unknown:
            raise ValueError(f"storage_options con protocolos desconocidos: {sorted(unknown)}")
        return d

    # ----------------------------
    # Helpers puros (sin side-effects)
    # ----------------------------
    def options_for(self, protocol: str) -> Dict[str, Any]:
        return dict(self.storage_options.get(protocol, {}))


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """
    Instancia cacheada (se lee una vez por proceso). Para tests, recuerda limpiar:
        get_settings.cache_clear()
    """
    return Settings()
