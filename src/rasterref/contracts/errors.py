# src/rasterref/contracts/errors.py
from __future__ import annotations


class RasterRefError(Exception):
    """Base de los errores propios de rasterref."""


class UnsupportedSchemeError(RasterRefError, ValueError):
    """El esquema del URI no tiene backend registrado."""

    def __init__(self, scheme: str):
        self.scheme = scheme
        super().__init__(f"Scheme '{scheme}' not supported")


class NativeDriverUnavailable(RasterRefError, RuntimeError):
    """No se pudo cargar el driver nativo (GDAL). Nunca llega al llamador: se loguea y se degrada."""


class TransportError(RasterRefError, OSError):
    """Falla de I/O al leer un rango de bytes (red, archivo inexistente, permisos)."""


class FormatParseError(RasterRefError, ValueError):
    """Los bytes del header no tienen la estructura esperada."""


class CodecUnavailableError(RasterRefError, RuntimeError):
    """El header es válido pero falta el codec de compresión de los segmentos (imagecodecs)."""


__all__ = [
    "RasterRefError", "UnsupportedSchemeError", "NativeDriverUnavailable",
    "TransportError", "FormatParseError", "CodecUnavailableError",
]
