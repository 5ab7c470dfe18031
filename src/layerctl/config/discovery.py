"""Layerfile discovery and loading.

Walk-up finder locates Layerfile.toml, similar to how git finds .git/.
Supports the LAYERCTL_LAYERFILE env var and the -L/--layerfile CLI flag.
"""

from __future__ import annotations

import os
import tomllib
from pathlib import Path
from typing import Any

from pydantic import ValidationError

from layerctl.config.models import LayerFile
from layerctl.domain.errors import ConfigError

LAYERFILE_FILENAME = "Layerfile.toml"
LAYERFILE_ENV_VAR = "LAYERCTL_LAYERFILE"


def find_layerfile(start: Path | None = None) -> Path | None:
    """Walk up from *start* (default: cwd) looking for Layerfile.toml.

    Returns the path to the Layerfile, or None if not found.
    Checks LAYERCTL_LAYERFILE env var first.
    """
    env_path = os.environ.get(LAYERFILE_ENV_VAR)
    if env_path:
        p = Path(env_path)
        if p.is_file():
            return p
        return None

    current = (start or Path.cwd()).resolve()
    while True:
        candidate = current / LAYERFILE_FILENAME
        if candidate.is_file():
            return candidate
        parent = current.parent
        if parent == current:
            break
        current = parent
    return None


def _describe(exc: ValidationError) -> str:
    parts = []
    for err in exc.errors():
        loc = ".".join(str(p) for p in err["loc"])
        parts.append(f"{loc}: {err['msg']}")
    return "; ".join(parts)


def load_layerfile(path: Path) -> LayerFile:
    """Parse and validate a Layerfile.

    Raises:
        ConfigError: the file is unreadable, not TOML, or has unknown or
            ill-typed keys.
    """
    try:
        raw = path.read_text(encoding="utf-8")
    except OSError as exc:
        msg = f"failed to read {path}: {exc}"
        raise ConfigError(msg, path=str(path)) from exc
    try:
        data: dict[str, Any] = tomllib.loads(raw)
    except tomllib.TOMLDecodeError as exc:
        msg = f"invalid TOML in {path}: {exc}"
        raise ConfigError(msg, path=str(path)) from exc
    try:
        return LayerFile.model_validate(data)
    except ValidationError as exc:
        msg = f"invalid Layerfile {path}: {_describe(exc)}"
        raise ConfigError(msg, path=str(path)) from exc
