"""Configuration models for the browser harness."""

from __future__ import annotations

from collections.abc import Mapping
from pathlib import Path
from typing import Any, Optional

import yaml
from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from .models import PrintOptions


class BrowserConfig(BaseModel):
    """Settings for the browser process."""

    executable_path: Optional[Path] = None
    headless: bool = True
    disable_gpu: bool = True
    incognito: bool = True
    no_sandbox: Optional[bool] = Field(
        default=None,
        description="Pass --no-sandbox; None enables it automatically when running as root.",
    )
    extra_args: list[str] = Field(default_factory=lambda: ["--disable-dev-shm-usage"])
    isolate: bool = Field(
        default=True,
        description="Create a dedicated browsing context instead of using the default one.",
    )


class TimeoutConfig(BaseModel):
    """Upper bounds, in seconds, for every blocking browser operation."""

    launch: float = Field(default=30.0, gt=0, description="Wait for the CDP endpoint.")
    navigation: float = Field(default=30.0, gt=0)
    document_ready: float = Field(default=30.0, gt=0)
    evaluation: float = Field(default=30.0, gt=0)
    print: float = Field(default=60.0, gt=0)
    kill: float = Field(default=5.0, gt=0, description="Grace period before SIGKILL.")


class OutputConfig(BaseModel):
    """Where artifacts are written."""

    pdf_dir: Path = Field(default=Path("target") / "pdf-output")


class HarnessConfig(BaseSettings):
    """Top-level configuration for a browser harness."""

    model_config = SettingsConfigDict(
        env_prefix="CDP_HARNESS_",
        env_file=(".env",),
        env_file_encoding="utf-8",
        env_nested_delimiter="__",
        extra="ignore",
    )

    browser: BrowserConfig = Field(default_factory=BrowserConfig)
    timeouts: TimeoutConfig = Field(default_factory=TimeoutConfig)
    output: OutputConfig = Field(default_factory=OutputConfig)
    pdf: PrintOptions = Field(default_factory=PrintOptions)


def load_config(
    path: Path | None = None,
    *,
    env_file: Path | None = None,
    **overrides: Mapping[str, Any],
) -> HarnessConfig:
    """Build the harness configuration from layered sources.

    Lowest to highest precedence: field defaults, ``.env`` and ``CDP_HARNESS_*``
    variables, the YAML file at ``path``, then ``overrides`` keyed by section
    (``timeouts={"print": 90}``). Layers are merged per field, so a layer only
    replaces the values it names.
    """

    layers = [_read_yaml(path) if path else {}, overrides]
    unknown = {section for layer in layers for section in layer} - set(HarnessConfig.model_fields)
    if unknown:
        raise ValueError(f"Unknown configuration section(s): {', '.join(sorted(unknown))}")

    base = HarnessConfig(_env_file=env_file) if env_file is not None else HarnessConfig()
    merged = base.model_dump(mode="python")
    for layer in layers:
        for section, values in layer.items():
            merged[section] = _merge(merged.get(section), values)
    return HarnessConfig.model_validate(merged)


def _read_yaml(path: Path) -> dict[str, Any]:
    data = yaml.safe_load(path.read_text()) or {}
    if not isinstance(data, Mapping):
        raise ValueError(f"{path} must contain a mapping of configuration sections")
    return dict(data)


def _merge(current: Any, update: Any) -> Any:
    """Return ``current`` with ``update`` laid over it, recursing into mappings."""

    if not (isinstance(current, Mapping) and isinstance(update, Mapping)):
        return update
    merged = dict(current)
    for key, value in update.items():
        merged[key] = _merge(current.get(key), value)
    return merged
