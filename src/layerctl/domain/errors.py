"""Exception taxonomy for layerctl.

Fatal errors (configuration, extraction, manifest) abort a run before any
toolchain invocation. Toolchain errors are caught per layer by the
verification driver and recorded as that layer's verdict.
"""

from __future__ import annotations

from typing import Any


class LayerctlError(Exception):
    """Base class for all layerctl errors.

    Attributes:
        code: Stable machine-readable error code (used in ``ServiceError``).
        detail: Structured payload rendered with ``--json`` / ``--verbose``.
    """

    code = "LAYERCTL_ERROR"

    def __init__(self, message: str, **detail: Any) -> None:
        super().__init__(message)
        self.message = message
        self.detail: dict[str, Any] = detail


# --- Configuration ---


class ConfigError(LayerctlError):
    """The declared layer graph is invalid (unknown reference, self-dependency, cycle)."""

    code = "CONFIG_ERROR"


# --- Extraction ---


class ParseError(LayerctlError):
    """A source file is not syntactically valid Rust."""

    code = "PARSE_ERROR"


class ModuleResolutionError(LayerctlError):
    """The backing file of a non-inline module could not be located."""

    code = "MODULE_RESOLUTION_ERROR"


class UnsupportedModuleError(LayerctlError):
    """A module declaration cannot be resolved without macro expansion."""

    code = "UNSUPPORTED_MODULE"


# --- Crate manifest and synthesis ---


class ManifestError(LayerctlError):
    """Cargo.toml is missing, unreadable, or lacks required keys."""

    code = "MANIFEST_ERROR"


class SynthesisError(LayerctlError):
    """A projected unit could not be produced or materialized."""

    code = "SYNTHESIS_ERROR"


# --- Toolchain ---


class ToolchainError(LayerctlError):
    """Base for failures of the external toolchain process."""

    code = "TOOLCHAIN_ERROR"


class ToolchainTimeoutError(ToolchainError):
    """A check invocation exceeded its timeout and was killed."""

    code = "TOOLCHAIN_TIMEOUT"


class ToolchainInvocationError(ToolchainError):
    """The toolchain binary is missing, crashed, or failed without diagnostics."""

    code = "TOOLCHAIN_INVOCATION_ERROR"


# --- Verification ---


class BaselineError(LayerctlError):
    """The unmodified crate does not compile, so no layer verdict is meaningful."""

    code = "BASELINE_FAILED"
