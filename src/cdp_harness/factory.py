"""Factories for constructing harness components from configuration."""

from __future__ import annotations

from .browser.launcher import ProcessLauncher
from .config import HarnessConfig
from .lifecycle.harness import BrowserHarness


def build_launcher(config: HarnessConfig) -> ProcessLauncher:
    return ProcessLauncher(config.browser, config.timeouts)


def build_harness(config: HarnessConfig) -> BrowserHarness:
    return BrowserHarness(config, launcher=build_launcher(config))
