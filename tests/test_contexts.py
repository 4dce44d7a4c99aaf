from __future__ import annotations

from typing import Optional

import pytest
from playwright.sync_api import Error

from cdp_harness.browser.base import (
    ContextCreationError,
    DisposeError,
    LaunchError,
    SessionCreationError,
)
from cdp_harness.browser.contexts import SessionFactory


class FakePage:
    def __init__(self, context: "FakeContext") -> None:
        self.context = context
        self.url = "about:blank"
        self._closed = False

    def is_closed(self) -> bool:
        return self._closed

    def close(self) -> None:
        self._closed = True


class FakeContext:
    def __init__(self, name: str) -> None:
        self.name = name
        self.pages: list[FakePage] = []
        self.close_calls = 0
        self.fail_new_page = False

    def new_page(self) -> FakePage:
        if self.fail_new_page:
            raise Error("Target closed")
        page = FakePage(self)
        self.pages.append(page)
        return page

    def close(self) -> None:
        self.close_calls += 1


class FakeBrowser:
    def __init__(self) -> None:
        self.default = FakeContext("default")
        self.created: list[FakeContext] = []
        self.close_calls = 0
        self.fail_new_context = False

    @property
    def contexts(self) -> list[FakeContext]:
        return [self.default, *self.created]

    def new_context(self) -> FakeContext:
        if self.fail_new_context:
            raise Error("Browser has been closed")
        context = FakeContext(f"ctx-{len(self.created)}")
        self.created.append(context)
        return context

    def close(self) -> None:
        self.close_calls += 1


class FakePlaywright:
    def __init__(self) -> None:
        self.stop_calls = 0

    def stop(self) -> None:
        self.stop_calls += 1


def make_factory(browser: Optional[FakeBrowser] = None) -> tuple[SessionFactory, FakeBrowser, FakePlaywright]:
    browser = browser or FakeBrowser()
    playwright = FakePlaywright()
    return SessionFactory(browser, playwright=playwright), browser, playwright


def test_contexts_get_distinct_ids():
    factory, browser, _ = make_factory()

    first = factory.create_context()
    second = factory.create_context()

    assert first != second
    assert factory.contexts == [first, second]
    assert len(browser.created) == 2


def test_session_is_scoped_to_its_context():
    factory, browser, _ = make_factory()
    context_id = factory.create_context()

    session = factory.create_session(context_id)

    assert session.context_id == context_id
    assert browser.created[0].pages == [session.page]
    assert factory.sessions(context_id) == [session]


def test_session_without_context_uses_default_context():
    factory, browser, _ = make_factory()

    session = factory.create_session()

    assert session.context_id is None
    assert browser.default.pages == [session.page]


def test_dispose_rejects_context_with_open_sessions():
    factory, browser, _ = make_factory()
    context_id = factory.create_context()
    session = factory.create_session(context_id)

    with pytest.raises(DisposeError):
        factory.dispose_context(context_id)
    assert browser.created[0].close_calls == 0

    session.close()
    factory.dispose_context(context_id)

    assert browser.created[0].close_calls == 1
    assert factory.contexts == []


def test_dispose_without_sessions_succeeds_and_repeats_as_noop():
    factory, browser, _ = make_factory()
    context_id = factory.create_context()

    factory.dispose_context(context_id)
    factory.dispose_context(context_id)
    factory.dispose_context("never-created")

    assert browser.created[0].close_calls == 1


def test_context_creation_failure():
    browser = FakeBrowser()
    browser.fail_new_context = True
    factory, _, _ = make_factory(browser)

    with pytest.raises(ContextCreationError):
        factory.create_context()


def test_session_creation_failures():
    factory, browser, _ = make_factory()

    with pytest.raises(SessionCreationError):
        factory.create_session("unknown")

    context_id = factory.create_context()
    browser.created[0].fail_new_page = True
    with pytest.raises(SessionCreationError):
        factory.create_session(context_id)


def test_close_releases_leftovers_once():
    factory, browser, playwright = make_factory()
    context_id = factory.create_context()
    session = factory.create_session(context_id)

    factory.close()
    factory.close()

    assert session.closed is True
    assert browser.created[0].close_calls == 1
    assert browser.close_calls == 1
    assert playwright.stop_calls == 1
    assert factory.closed is True


def test_closed_factory_rejects_new_work():
    factory, _, _ = make_factory()
    factory.close()

    with pytest.raises(ContextCreationError):
        factory.create_context()
    with pytest.raises(SessionCreationError):
        factory.create_session()


def test_connect_requires_an_endpoint():
    class NoEndpoint:
        websocket_url = None
        endpoint_url = None

    with pytest.raises(LaunchError):
        SessionFactory.connect(NoEndpoint())
