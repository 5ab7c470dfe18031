"""Pydantic models for ``Layerfile.toml``.

Sparse TOML contract: every table is optional except the layers the user
wants checked. A minimal Layerfile::

    [layer.api]
    depends-on = ["core"]

    [layer.core]
"""

from __future__ import annotations

from pathlib import Path

from pydantic import BaseModel, Field, field_validator

from layerctl.domain.layers import LayerConfig

DEFAULT_COMMAND = ("cargo",)
DEFAULT_CARGO_ARGS = ("check", "--lib", "--message-format=json")


class CrateSection(BaseModel):
    """[crate] section."""

    model_config = {"frozen": True, "extra": "forbid"}

    exclude: tuple[str, ...] = ()


class LayerSection(BaseModel):
    """[layer.<name>] section."""

    model_config = {"frozen": True, "extra": "forbid", "populate_by_name": True}

    depends_on: tuple[str, ...] = Field(default=(), alias="depends-on")
    impl: tuple[str, ...] = ()

    def to_config(self) -> LayerConfig:
        return LayerConfig(
            depends_on=tuple(dict.fromkeys(self.depends_on)),
            impl=tuple(dict.fromkeys(self.impl)),
        )


class CheckConfig(BaseModel):
    """[check] section — how the toolchain is driven.

    ``jobs = 0`` means one worker per CPU.
    """

    model_config = {"frozen": True, "extra": "forbid", "populate_by_name": True}

    command: tuple[str, ...] = DEFAULT_COMMAND
    args: tuple[str, ...] = DEFAULT_CARGO_ARGS
    jobs: int = Field(default=0, ge=0)
    timeout: float | None = Field(default=None, gt=0)
    deny_unused: bool = Field(default=False, alias="deny-unused")
    baseline: bool = True
    scratch_dir: Path | None = Field(default=None, alias="scratch-dir")
    target_dir: Path | None = Field(default=None, alias="target-dir")
    keep_scratch: bool = Field(default=False, alias="keep-scratch")

    @field_validator("command")
    @classmethod
    def _command_not_empty(cls, value: tuple[str, ...]) -> tuple[str, ...]:
        if not value:
            msg = "check.command must name an executable"
            raise ValueError(msg)
        return value


class LayerFile(BaseModel):
    """Root of ``Layerfile.toml``.

    Layer order is the order of the ``[layer.*]`` tables in the file; it is
    the order verdicts are reported in.
    """

    model_config = {"frozen": True}

    crate: CrateSection = Field(default_factory=CrateSection)
    layer: dict[str, LayerSection] = Field(default_factory=dict)
    check: CheckConfig = Field(default_factory=CheckConfig)

    def layer_configs(self) -> dict[str, LayerConfig]:
        return {name: section.to_config() for name, section in self.layer.items()}
