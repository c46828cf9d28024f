from __future__ import annotations
from pathlib import Path
import logging
import sys
from typing import Optional

import yaml

from ..config import Settings, get_settings

_LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


def load_settings_from_yaml(path: Path) -> Settings:
    data = yaml.safe_load(Path(path).read_text(encoding="utf-8")) or {}
    return Settings(**data)


def build_settings(config_path: Optional[Path] = None) -> Settings:
    """YAML explícito si se pasa; si no, env/.env vía get_settings()."""
    if config_path is None:
        return get_settings()
    return load_settings_from_yaml(Path(config_path).resolve())


def setup_logging(settings: Settings) -> None:
    """Configura el root logger una sola vez (idempotente); sólo para la CLI."""
    root = logging.getLogger()
    root.setLevel(settings.log_level)
    if getattr(root, "_rasterref_configured", False):
        return
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(logging.Formatter(_LOG_FORMAT))
    root.addHandler(handler)
    root._rasterref_configured = True  # type: ignore[attr-defined]
