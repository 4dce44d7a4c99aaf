"""pytest fixtures that hand each test a fresh, isolated browser session.

Registered through the ``pytest11`` entry point, so installing the package is
enough::

    @pytest.mark.browser
    def test_title(browser_session):
        browser_session.navigate("data:text/html,<title>Hi</title>")
        browser_session.wait_document_ready()
        assert browser_session.get_title() == "Hi"
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Iterator

import pytest

from .browser.base import BrowserSession, LaunchError
from .browser.launcher import ProcessLauncher
from .config import HarnessConfig, load_config
from .lifecycle.harness import BrowserHarness

NETWORK_TESTS_ENV = "CDP_HARNESS_NETWORK_TESTS"


def pytest_configure(config: pytest.Config) -> None:
    config.addinivalue_line("markers", "browser: test needs a real Chrome/Chromium executable")
    config.addinivalue_line(
        "markers",
        f"network: test reaches the public internet (set {NETWORK_TESTS_ENV}=1 to run)",
    )


def pytest_collection_modifyitems(config: pytest.Config, items: list[pytest.Item]) -> None:
    if os.environ.get(NETWORK_TESTS_ENV) == "1":
        return
    skip_network = pytest.mark.skip(reason=f"set {NETWORK_TESTS_ENV}=1 to run network tests")
    for item in items:
        if "network" in item.keywords:
            item.add_marker(skip_network)


@pytest.fixture(scope="session")
def harness_config() -> HarnessConfig:
    return load_config()


@pytest.fixture(scope="session")
def browser_executable(harness_config: HarnessConfig) -> Path:
    try:
        return ProcessLauncher(harness_config.browser, harness_config.timeouts).find_executable()
    except LaunchError as exc:
        pytest.skip(str(exc))


@pytest.fixture()
def browser_harness(
    harness_config: HarnessConfig, browser_executable: Path
) -> Iterator[BrowserHarness]:
    config = harness_config.model_copy(deep=True)
    config.browser.executable_path = browser_executable
    harness = BrowserHarness(config)
    try:
        harness.start()
        yield harness
    finally:
        harness.close()


@pytest.fixture()
def browser_session(browser_harness: BrowserHarness) -> BrowserSession:
    assert browser_harness.session is not None
    return browser_harness.session


@pytest.fixture()
def pdf_output_dir(harness_config: HarnessConfig) -> Path:
    directory = harness_config.output.pdf_dir
    directory.mkdir(parents=True, exist_ok=True)
    return directory
