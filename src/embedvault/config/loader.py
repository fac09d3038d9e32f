from __future__ import annotations

import os
import tomllib
from pathlib import Path
from typing import Any, Dict


DEFAULT_CONFIG_PATH = Path("config.toml")
CONFIG_PATH_ENV = "EMBEDVAULT_CONFIG"


def load_raw_config(path: str | Path | None = None) -> Dict[str, Any]:
    """
    Load the engine config (``$EMBEDVAULT_CONFIG`` or ``config.toml``).

    A missing file yields an empty dict; every section then falls back to
    environment variables and built-in defaults.
    """
    if path is None:
        path = os.getenv(CONFIG_PATH_ENV) or DEFAULT_CONFIG_PATH
    target = Path(path)
    if not target.is_file():
        return {}

    with target.open("rb") as handle:
        return tomllib.load(handle)


def section(config: dict | None, name: str) -> Dict[str, Any]:
    """Return the ``[embedvault.<name>]`` table, or an empty dict."""
    return (config or {}).get("embedvault", {}).get(name, {}) or {}


def as_bool(raw: Any) -> bool:
    return str(raw).lower() in ("1", "true", "yes")


__all__ = ["load_raw_config", "section", "as_bool", "DEFAULT_CONFIG_PATH", "CONFIG_PATH_ENV"]
