"""CrateWorkspace — the single dependency injected into every service.

Owns the loaded Layerfile, the resolved Cargo manifest, the parsed module
tree and the validated layer graph. Each is built lazily on first access
and cached, so ``layerctl graph`` never touches the toolchain and
``--help`` never touches the filesystem.
"""

from __future__ import annotations

import logging
from functools import cached_property
from pathlib import Path
from typing import TYPE_CHECKING

from layerctl.config.discovery import LAYERFILE_FILENAME, load_layerfile
from layerctl.domain.errors import ConfigError
from layerctl.domain.layers import LayerGraph
from layerctl.infrastructure.manifest import CrateManifest, read_manifest
from layerctl.infrastructure.rust_syntax import extract_module_tree
from layerctl.infrastructure.toolchain import CargoToolchain

if TYPE_CHECKING:
    from layerctl.config.models import CheckConfig, LayerFile
    from layerctl.config.settings import LayerctlSettings
    from layerctl.domain.modules import ModuleTree

logger = logging.getLogger(__name__)


class CrateWorkspace:
    """Lazy view of one crate and its Layerfile."""

    def __init__(self, settings: LayerctlSettings) -> None:
        self.settings = settings

    @property
    def root(self) -> Path:
        return self.settings.crate_root

    @cached_property
    def layerfile(self) -> LayerFile:
        path = self.settings.layerfile_path
        if path is None or not path.is_file():
            where = path or self.root / LAYERFILE_FILENAME
            msg = f"no {LAYERFILE_FILENAME} found (looked for {where})"
            raise ConfigError(msg, path=str(where))
        logger.debug("loading layerfile %s", path)
        return load_layerfile(path)

    @cached_property
    def manifest(self) -> CrateManifest:
        return read_manifest(self.settings.resolved_manifest_path)

    @cached_property
    def tree(self) -> ModuleTree:
        return extract_module_tree(self.manifest.lib_path)

    @cached_property
    def graph(self) -> LayerGraph:
        graph = LayerGraph.build(
            self.layerfile.layer_configs(),
            self.tree.module_names(),
            exclude=self.layerfile.crate.exclude,
        )
        for warning in graph.warnings:
            logger.debug("layer graph warning: %s", warning)
        return graph

    @property
    def check_config(self) -> CheckConfig:
        """``[check]`` from the Layerfile, overridden by env vars and CLI flags."""
        return self.settings.check

    def toolchain(self, check: CheckConfig | None = None) -> CargoToolchain:
        """Build a fresh toolchain for one run."""
        check = check or self.check_config
        target_dir = check.target_dir
        if target_dir is not None and not target_dir.is_absolute():
            target_dir = self.root / target_dir
        return CargoToolchain(
            check.command,
            check.args,
            timeout=check.timeout,
            deny_unused=check.deny_unused,
            target_dir=target_dir,
        )
