"""Isolated browsing contexts and the sessions opened inside them."""

from __future__ import annotations

import logging
import uuid
from typing import Optional

from playwright.sync_api import Browser, BrowserContext, Error, Playwright, sync_playwright

from ..config import TimeoutConfig
from .base import ContextCreationError, DisposeError, LaunchError, SessionCreationError
from .launcher import BrowserProcess
from .playwright_session import PlaywrightSession

LOGGER = logging.getLogger(__name__)


class SessionFactory:
    """Creates contexts and sessions on one browser connected over CDP.

    Contexts are identified by opaque ids handed out by the factory. A context
    can only be disposed once every session opened in it has been closed.
    Instances are not thread-safe.
    """

    def __init__(
        self,
        browser: Browser,
        *,
        playwright: Optional[Playwright] = None,
        timeouts: Optional[TimeoutConfig] = None,
        endpoint_url: Optional[str] = None,
    ) -> None:
        self._browser = browser
        self._playwright = playwright
        self._timeouts = timeouts or TimeoutConfig()
        self._endpoint_url = endpoint_url
        self._contexts: dict[str, BrowserContext] = {}
        self._sessions: list[PlaywrightSession] = []
        self._closed = False

    @classmethod
    def connect(
        cls,
        process: BrowserProcess,
        timeouts: Optional[TimeoutConfig] = None,
    ) -> "SessionFactory":
        """Attach Playwright to the CDP endpoint exposed by ``process``."""

        timeouts = timeouts or TimeoutConfig()
        endpoint = process.websocket_url or process.endpoint_url
        if not endpoint:
            raise LaunchError("Browser process has no CDP endpoint")
        playwright = sync_playwright().start()
        try:
            browser = playwright.chromium.connect_over_cdp(
                endpoint,
                timeout=timeouts.launch * 1000,
            )
        except Error as exc:
            playwright.stop()
            raise LaunchError(f"Could not connect to {endpoint}: {exc.message}") from exc
        LOGGER.debug("Connected to browser %s at %s", browser.version, endpoint)
        return cls(
            browser,
            playwright=playwright,
            timeouts=timeouts,
            endpoint_url=process.endpoint_url,
        )

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def contexts(self) -> list[str]:
        return list(self._contexts)

    def sessions(self, context_id: Optional[str] = None) -> list[PlaywrightSession]:
        """Return the open sessions, optionally limited to one context."""

        return [
            session
            for session in self._sessions
            if not session.closed and (context_id is None or session.context_id == context_id)
        ]

    def create_context(self) -> str:
        if self._closed:
            raise ContextCreationError("Session factory is closed")
        try:
            context = self._browser.new_context()
        except Error as exc:
            raise ContextCreationError(f"Browser did not create a context: {exc.message}") from exc
        context_id = uuid.uuid4().hex
        self._contexts[context_id] = context
        LOGGER.info("Browser context created: %s", context_id)
        return context_id

    def create_session(self, context_id: Optional[str] = None) -> PlaywrightSession:
        """Open a new tab in ``context_id``, or in the default context when omitted."""

        if self._closed:
            raise SessionCreationError("Session factory is closed")
        context = self._resolve_context(context_id)
        try:
            page = context.new_page()
        except Error as exc:
            raise SessionCreationError(f"Browser did not open a tab: {exc.message}") from exc
        session = PlaywrightSession(
            page,
            context_id=context_id,
            timeouts=self._timeouts,
            endpoint_url=self._endpoint_url,
        )
        self._sessions.append(session)
        LOGGER.debug("Session created in context %s", context_id or "default")
        return session

    def dispose_context(self, context_id: str) -> None:
        """Dispose a context that has no open sessions.

        Unknown or already disposed ids are ignored.
        """

        if context_id not in self._contexts:
            LOGGER.debug("Context %s already disposed", context_id)
            return
        attached = self.sessions(context_id)
        if attached:
            raise DisposeError(
                f"Context {context_id} still has {len(attached)} open session(s)"
            )
        context = self._contexts[context_id]
        try:
            context.close()
        except Error as exc:
            raise DisposeError(f"Disposing context {context_id} failed: {exc.message}") from exc
        finally:
            self._sessions = [s for s in self._sessions if s.context_id != context_id]
        del self._contexts[context_id]
        LOGGER.info("Browser context disposed: %s", context_id)

    def close(self) -> None:
        """Close leftover sessions and contexts, then disconnect. Idempotent."""

        if self._closed:
            return
        self._closed = True
        errors: list[Error] = []
        for session in self.sessions():
            try:
                session.close()
            except Error as exc:
                errors.append(exc)
        for context_id in list(self._contexts):
            try:
                self._contexts.pop(context_id).close()
            except Error as exc:
                errors.append(exc)
        self._sessions.clear()
        try:
            self._browser.close()
        finally:
            if self._playwright is not None:
                self._playwright.stop()
                self._playwright = None
        for error in errors:
            LOGGER.warning("Error while closing session factory: %s", error)
        LOGGER.debug("Session factory closed")

    def _resolve_context(self, context_id: Optional[str]) -> BrowserContext:
        if context_id is None:
            try:
                existing = self._browser.contexts
                return existing[0] if existing else self._browser.new_context()
            except Error as exc:
                raise SessionCreationError(
                    f"Default context unavailable: {exc.message}"
                ) from exc
        try:
            return self._contexts[context_id]
        except KeyError:
            raise SessionCreationError(f"Unknown browser context: {context_id}") from None
