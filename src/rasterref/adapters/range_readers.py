# src/rasterref/adapters/range_readers.py
from __future__ import annotations

import io
import logging
import os
import re
from dataclasses import dataclass, field
from typing import Any, Callable, Mapping, Optional

import requests

from ..contracts.errors import TransportError
from ..ports.range_read import RangeReaderPort, ReadCallback

logger = logging.getLogger(__name__)

_CONTENT_RANGE_RE = re.compile(r"^bytes\s+\d+-\d+/(?P<total>\d+)$")

# Lo que se pide de una vez al parsear un header (GDAL usa 16 KiB; COGs suelen caber en 64)
HEADER_PREFETCH = 64 * 1024


def _check_range(start: int, length: int) -> None:
    if start < 0 or length < 0:
        raise ValueError(f"Rango inválido: start={start}, length={length}")


def _clip(start: int, length: int, total: int) -> int:
    """Cantidad de bytes efectivamente legibles desde `start`."""
    return max(0, min(start + length, total) - start)


# --------------- archivo local ---------------
@dataclass(frozen=True)
class FileRangeReader(RangeReaderPort):
    """Lee rangos de un archivo local. Abre y cierra en cada lectura (sin cursor compartido)."""
    path: str

    @property
    def total_length(self) -> int:
        try:
            return os.path.getsize(self.path)
        except OSError as e:
            raise TransportError(f"No se puede acceder a {self.path}: {e}") from e

    def read_range(self, start: int, length: int) -> bytes:
        _check_range(start, length)
        try:
            with open(self.path, "rb") as fh:
                fh.seek(start)
                return fh.read(length)
        except OSError as e:
            raise TransportError(f"Error leyendo {self.path}[{start}:{start + length}]: {e}") from e


# --------------- HTTP ---------------
@dataclass
class HttpRangeReader(RangeReaderPort):
    """
    Lecturas por `Range: bytes=a-b` con requests.
    La sesión se crea perezosamente con `session_factory` (no viaja entre procesos).
    Los headers de la consulta de tamaño quedan en `response_headers` (Last-Modified, etc.).
    """
    url: str
    session_factory: Callable[[], Any] = requests.Session
    timeout: Optional[float] = None
    _session: Any = field(default=None, init=False, repr=False, compare=False)
    _total: Optional[int] = field(default=None, init=False, repr=False, compare=False)
    _headers: Mapping[str, str] = field(default_factory=dict, init=False, repr=False, compare=False)

    @property
    def session(self) -> Any:
        if self._session is None:
            self._session = self.session_factory()
        return self._session

    @property
    def response_headers(self) -> Mapping[str, str]:
        if self._total is None:
            _ = self.total_length
        return self._headers

    @property
    def total_length(self) -> int:
        if self._total is not None:
            return self._total
        try:
            resp = self.session.head(self.url, allow_redirects=True, timeout=self.timeout)
            resp.raise_for_status()
            headers = resp.headers
            total: Optional[int] = None
            if "Content-Length" in headers and not headers.get("Content-Encoding"):
                total = int(headers["Content-Length"])
            else:
                # Sin Content-Length confiable: pedimos 1 byte y leemos Content-Range
                resp = self.session.get(self.url, headers={"Range": "bytes=0-0"}, timeout=self.timeout)
                resp.raise_for_status()
                headers = resp.headers
                m = _CONTENT_RANGE_RE.match(headers.get("Content-Range", "").strip())
                if m:
                    total = int(m.group("total"))
                elif resp.status_code == 200:
                    total = len(resp.content)
            if total is None:
                raise TransportError(f"No se pudo determinar el tamaño de {self.url}")
        except requests.RequestException as e:
            raise TransportError(f"Error HTTP consultando {self.url}: {e}") from e
        self._headers = dict(headers)
        self._total = total
        return total

    def read_range(self, start: int, length: int) -> bytes:
        _check_range(start, length)
        n = _clip(start, length, self.total_length)
        if n == 0:
            return b""
        end = start + n - 1
        try:
            resp = self.session.get(self.url, headers={"Range": f"bytes={start}-{end}"}, timeout=self.timeout)
            resp.raise_for_status()
        except requests.RequestException as e:
            raise TransportError(f"Error HTTP leyendo {self.url}[{start}:{end + 1}]: {e}") from e
        if resp.status_code == 206:
            return resp.content
        # El servidor ignoró Range y devolvió el recurso completo
        logger.debug("Servidor sin soporte de Range para %s; se recorta la respuesta", self.url)
        return resp.content[start:end + 1]

    def __getstate__(self):
        state = dict(self.__dict__)
        state["_session"] = None
        return state


# --------------- fsspec (object store / filesystem distribuido) ---------------
@dataclass
class FsspecRangeReader(RangeReaderPort):
    """
    Lecturas por rango sobre cualquier filesystem fsspec (s3, hdfs, abfs, memory...).
    `filesystem_factory` es una fábrica local al proceso: el cliente no se serializa.
    """
    uri: str
    filesystem_factory: Callable[[], Any]
    _fs: Any = field(default=None, init=False, repr=False, compare=False)
    _total: Optional[int] = field(default=None, init=False, repr=False, compare=False)

    @property
    def fs(self) -> Any:
        if self._fs is None:
            self._fs = self.filesystem_factory()
        return self._fs

    @property
    def total_length(self) -> int:
        if self._total is None:
            try:
                self._total = int(self.fs.size(self.uri))
            except OSError as e:
                raise TransportError(f"No se puede acceder a {self.uri}: {e}") from e
        return self._total

    def read_range(self, start: int, length: int) -> bytes:
        _check_range(start, length)
        n = _clip(start, length, self.total_length)
        if n == 0:
            return b""
        try:
            return self.fs.cat_file(self.uri, start=start, end=start + n)
        except OSError as e:
            raise TransportError(f"Error leyendo {self.uri}[{start}:{start + n}]: {e}") from e

    def __getstate__(self):
        state = dict(self.__dict__)
        state["_fs"] = None
        return state


# --------------- instrumentación ---------------
@dataclass(frozen=True)
class ReportingRangeReader(RangeReaderPort):
    """Decorador transparente: avisa al callback ANTES de cada lectura y delega."""
    delegate: RangeReaderPort
    callback: ReadCallback
    parent: Any

    @property
    def total_length(self) -> int:
        return self.delegate.total_length

    def read_range(self, start: int, length: int) -> bytes:
        self.callback.read_range(self.parent, start, length)
        return self.delegate.read_range(start, length)


@dataclass
class ReadMonitor(ReadCallback):
    """Callback contador (diagnóstico / tests). Picklable: viaja con la fuente."""
    log: bool = False
    reads: int = 0
    bytes_requested: int = 0

    def read_range(self, source: Any, start: int, length: int) -> None:
        self.reads += 1
        self.bytes_requested += length
        if self.log:
            logger.info("read %s [%d, %d) (#%d)", source, start, start + length, self.reads)


def with_callback(reader: RangeReaderPort, callback: Optional[ReadCallback], parent: Any) -> RangeReaderPort:
    return ReportingRangeReader(reader, callback, parent) if callback is not None else reader


def unwrap(reader: RangeReaderPort) -> RangeReaderPort:
    while isinstance(reader, ReportingRangeReader):
        reader = reader.delegate
    return reader


# --------------- vista tipo archivo ---------------
class RangeReaderFile(io.RawIOBase):
    """
    Archivo binario de solo lectura sobre un RangeReader (para tifffile).
    El primer acceso trae `prefetch` bytes con una sola lectura; lo que cae
    fuera de ese bloque se pide por rango.
    """
    mode = "rb"

    def __init__(self, reader: RangeReaderPort, name: str = "", prefetch: int = HEADER_PREFETCH):
        super().__init__()
        self.reader = reader
        self.name = name
        self._prefetch = prefetch
        self._head: Optional[bytes] = None
        self._pos = 0
        self._size: Optional[int] = None

    @property
    def size(self) -> int:
        if self._size is None:
            self._size = self.reader.total_length
        return self._size

    def readable(self) -> bool:
        return True

    def seekable(self) -> bool:
        return True

    def tell(self) -> int:
        return self._pos

    def seek(self, offset: int, whence: int = io.SEEK_SET) -> int:
        if whence == io.SEEK_SET:
            pos = offset
        elif whence == io.SEEK_CUR:
            pos = self._pos + offset
        elif whence == io.SEEK_END:
            pos = self.size + offset
        else:
            raise ValueError(f"whence inválido: {whence}")
        if pos < 0:
            raise ValueError(f"Posición negativa: {pos}")
        self._pos = pos
        return pos

    def _fetch(self, start: int, length: int) -> bytes:
        if self._head is None and self._prefetch > 0 and start < self._prefetch:
            self._head = self.reader.read_range(0, min(self._prefetch, self.size))
        if self._head is not None and start + length <= len(self._head):
            return self._head[start:start + length]
        return self.reader.read_range(start, length)

    def readinto(self, b) -> int:
        mv = memoryview(b).cast("B")
        n = _clip(self._pos, len(mv), self.size)
        if n == 0:
            return 0
        data = self._fetch(self._pos, n)
        k = len(data)
        mv[:k] = data
        self._pos += k
        return k


__all__ = [
    "FileRangeReader", "HttpRangeReader", "FsspecRangeReader", "ReportingRangeReader",
    "ReadMonitor", "RangeReaderFile", "with_callback", "unwrap", "HEADER_PREFETCH",
]
