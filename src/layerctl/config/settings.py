"""Unified settings — CLI flags, env vars, and the Layerfile in one object.

Priority chain (highest to lowest):
  1. Init kwargs  — CLI flags passed by Click
  2. Env vars     — ``LAYERCTL_*`` prefix (``LAYERCTL_CHECK__JOBS=4``)
  3. TOML file    — the ``[check]`` table of ``Layerfile.toml``
  4. Code defaults — baked into :class:`CheckConfig`

Uses Pydantic Settings v2 with a custom :class:`LayerfileSettingsSource`
that reuses the walk-up discovery from :mod:`layerctl.config.discovery`.
Only ``[check]`` is a settings section; ``[crate]`` and ``[layer.*]``
describe the crate and are loaded separately by the workspace.
"""

from __future__ import annotations

import threading
import tomllib
from pathlib import Path
from typing import Any

from pydantic import Field
from pydantic_settings import BaseSettings, PydanticBaseSettingsSource

from layerctl.config.discovery import find_layerfile
from layerctl.config.models import CheckConfig

MANIFEST_FILENAME = "Cargo.toml"
_SETTINGS_SECTIONS = ("check",)


class LayerfileSettingsSource(PydanticBaseSettingsSource):
    """Read settings sections from a discovered ``Layerfile.toml``."""

    def __init__(self, settings_cls: type[BaseSettings], toml_path: Path | None) -> None:
        super().__init__(settings_cls)
        self._data: dict[str, Any] = {}
        if toml_path and toml_path.is_file():
            raw = toml_path.read_text(encoding="utf-8")
            try:
                data = tomllib.loads(raw)
            except tomllib.TOMLDecodeError as exc:
                import click

                msg = f"Invalid TOML in {toml_path}: {exc}"
                raise click.ClickException(msg) from exc
            self._data = {key: data[key] for key in _SETTINGS_SECTIONS if key in data}

    def get_field_value(self, field: Any, field_name: str) -> tuple[Any, str, bool]:
        """Return ``(value, field_name, value_is_complex)``."""
        val = self._data.get(field_name)
        return val, field_name, field_name in self._data

    def __call__(self) -> dict[str, Any]:
        return self._data


# Thread-local storage for the Layerfile path during construction.
_tls = threading.local()


class LayerctlSettings(BaseSettings):
    """Unified settings for the layerctl CLI.

    Stored on the :class:`AppContext` at the CLI root.

    Attributes:
        crate_root: Directory holding the crate's ``Cargo.toml`` (the
            Layerfile's directory, or CWD if none was found).
        layerfile_path: Discovered or explicit Layerfile, or None.
        manifest_path: Explicit ``--manifest-path``, or None for
            ``<crate_root>/Cargo.toml``.
    """

    model_config = {
        "frozen": True,
        "env_prefix": "LAYERCTL_",
        "env_nested_delimiter": "__",
    }

    # --- Resolved paths ---
    crate_root: Path = Field(default_factory=Path.cwd)
    layerfile_path: Path | None = None
    manifest_path: Path | None = None

    # --- CLI flags ---
    json_output: bool = False
    quiet: bool = False
    verbose: bool = False
    log_json: bool = False

    # --- TOML sections ---
    check: CheckConfig = Field(default_factory=CheckConfig)

    @property
    def resolved_manifest_path(self) -> Path:
        return self.manifest_path or self.crate_root / MANIFEST_FILENAME

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        """Insert the Layerfile source between env vars and defaults."""
        toml_path = getattr(_tls, "toml_path", None)
        return (
            init_settings,
            env_settings,
            LayerfileSettingsSource(settings_cls, toml_path),
        )

    @classmethod
    def from_cli(
        cls,
        *,
        layerfile: str | None = None,
        manifest_path: str | None = None,
        crate_root: Path | None = None,
        **cli_flags: Any,
    ) -> LayerctlSettings:
        """Construct settings from a CLI invocation.

        Discovers ``Layerfile.toml`` via walk-up (or explicit *layerfile*),
        resolves *crate_root* from its parent directory (or from
        *manifest_path*), and merges CLI flags as highest-priority overrides.
        """
        manifest = Path(manifest_path).resolve() if manifest_path else None
        toml_path: Path | None = None
        if layerfile:
            toml_path = Path(layerfile).resolve()
        else:
            start = crate_root or (manifest.parent if manifest is not None else None)
            toml_path = find_layerfile(start)
            if toml_path is not None:
                toml_path = toml_path.resolve()

        resolved_root = crate_root
        if resolved_root is None:
            if toml_path is not None:
                resolved_root = toml_path.parent
            elif manifest is not None:
                resolved_root = manifest.parent
            else:
                resolved_root = Path.cwd()

        _tls.toml_path = toml_path
        try:
            return cls(
                crate_root=resolved_root,
                layerfile_path=toml_path,
                manifest_path=manifest,
                **cli_flags,
            )
        finally:
            _tls.toml_path = None
