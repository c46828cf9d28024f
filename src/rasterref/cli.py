# src/rasterref/cli.py
from __future__ import annotations

"""
CLI de diagnóstico para fuentes raster.

Comandos:
  - info: metadata de la fuente (y cantidad de lecturas por rango con --count-reads).
  - windows: ventanas del tiling nativo, una por línea.

Ejemplos:
  python -m rasterref.cli info ./scene.tif --count-reads
  python -m rasterref.cli windows https://example.com/cog.tif
  python -m rasterref.cli --config settings.yaml info s3://bucket/cog.tif
"""

import argparse
import json
import sys
from pathlib import Path
from typing import Any, Dict

from .adapters.range_readers import ReadMonitor
from .composition.di import build_settings, setup_logging
from .composition.resolver import raster_source
from .config import Settings
from .contracts.errors import RasterRefError
from .contracts.geo import pretty_bounds


def _settings_from_args(args: argparse.Namespace) -> Settings:
    s = build_settings(Path(args.config) if args.config else None)
    upd: Dict[str, Any] = {}
    if args.native:
        upd["prefer_native_driver"] = True
    if args.log_level:
        upd["log_level"] = args.log_level.upper()
    if upd:
        s = s.model_copy(update=upd)
    return s


def cmd_info(args: argparse.Namespace) -> int:
    s = _settings_from_args(args)
    setup_logging(s)
    monitor = ReadMonitor(log=args.verbose) if args.count_reads else None
    src = raster_source(args.uri, monitor, settings=s)

    if args.json:
        layout = src.native_layout
        payload = {
            "source": str(src),
            "cols": src.dimensions[0],
            "rows": src.dimensions[1],
            "bands": src.band_count,
            "cell_type": src.cell_type,
            "crs": str(src.crs),
            "extent": list(src.extent),
            "nodata": src.nodata,
            "timestamp": src.timestamp.isoformat() if src.timestamp else None,
            "layout": layout.model_dump() if layout is not None else None,
        }
        if monitor is not None:
            payload["reads"] = monitor.reads
            payload["bytes_requested"] = monitor.bytes_requested
        print(json.dumps(payload, indent=2))
        return 0

    print(src.to_debug_string())
    print(f"bandas={src.band_count} celda={src.cell_type} nodata={src.nodata}")
    print(f"layout={src.native_layout}")
    if src.tags is not None:
        for k, v in sorted(src.tags.head_tags.items()):
            print(f"  {k}={v}")
    if monitor is not None:
        print(f"lecturas={monitor.reads} bytes={monitor.bytes_requested}")
    return 0


def cmd_windows(args: argparse.Namespace) -> int:
    s = _settings_from_args(args)
    setup_logging(s)
    src = raster_source(args.uri, settings=s)
    n = 0
    for e in src.native_tiling():
        print(pretty_bounds(e))
        n += 1
    print(f"{n} ventanas", file=sys.stderr)
    return 0


# ----------------------
# Parser
# ----------------------

def _build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="rasterref", description="Diagnóstico de fuentes raster (GeoTIFF/COG)")
    p.add_argument("--config", help="YAML de Settings (si no, variables RASTERREF_* / .env)")
    p.add_argument("--native", action="store_true", help="prefiere el driver nativo (GDAL) si está disponible")
    p.add_argument("--log-level", help="nivel de logging (sobre-escribe Settings.log_level)")
    sub = p.add_subparsers(dest="cmd", required=True)

    pi = sub.add_parser("info", help="muestra la metadata de una fuente")
    pi.add_argument("uri", help="ruta o URI (file, http(s), s3, hdfs, gdal+...)")
    pi.add_argument("--count-reads", action="store_true", help="cuenta las lecturas por rango")
    pi.add_argument("-v", "--verbose", action="store_true", help="loguea cada lectura (con --count-reads)")
    pi.add_argument("--json", action="store_true", help="salida JSON")
    pi.set_defaults(func=cmd_info)

    pw = sub.add_parser("windows", help="lista las ventanas del tiling nativo")
    pw.add_argument("uri", help="ruta o URI")
    pw.set_defaults(func=cmd_windows)

    return p


def main(argv: list[str] | None = None) -> int:
    argv = list(sys.argv[1:] if argv is None else argv)
    parser = _build_parser()
    args = parser.parse_args(argv)
    try:
        return int(args.func(args))
    except KeyboardInterrupt:
        return 130
    except (RasterRefError, OSError, ValueError) as ex:
        print(f"[ERROR] {ex}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
