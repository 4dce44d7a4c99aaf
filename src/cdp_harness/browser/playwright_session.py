"""Playwright-powered browser session implementation."""

from __future__ import annotations

import base64
import logging
import math
import threading
import time
from typing import Any, Callable, Optional

import httpx
from playwright.sync_api import CDPSession, Error, Page
from playwright.sync_api import TimeoutError as PlaywrightTimeoutError

from ..config import TimeoutConfig
from ..models import PrintOptions
from .base import (
    BrowserSession,
    ChannelError,
    EvaluationError,
    EvaluationTimeoutError,
    NavigationError,
    NavigationTimeoutError,
    PrintError,
    PrintTimeoutError,
    SessionClosedError,
)

LOGGER = logging.getLogger(__name__)

TERMINATED = "Execution was terminated"

_UNSERIALIZABLE = {
    "Infinity": math.inf,
    "-Infinity": -math.inf,
    "NaN": math.nan,
    "-0": -0.0,
}


class _DeadlineExceeded(Exception):
    pass


class _Deadline:
    """Calls ``on_expire`` from a timer thread if the block outlives ``seconds``."""

    def __init__(self, seconds: float, on_expire: Callable[[], None]) -> None:
        self._expired = threading.Event()
        self._on_expire = on_expire
        self._timer = threading.Timer(max(seconds, 0.0), self._fire)
        self._timer.daemon = True

    @property
    def expired(self) -> bool:
        return self._expired.is_set()

    def __enter__(self) -> "_Deadline":
        self._timer.start()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self._timer.cancel()

    def _fire(self) -> None:
        self._expired.set()
        self._on_expire()


class PlaywrightSession(BrowserSession):
    """A single tab driven through a Playwright page and its raw CDP session.

    Evaluation and printing run under a wall-clock deadline. When it passes
    while the protocol call is still pending, the tab is closed through the
    browser's HTTP endpoint (``/json/close``) from a timer thread, which fails
    the pending call. A call that returns late is reported as timed out too.
    """

    def __init__(
        self,
        page: Page,
        *,
        context_id: Optional[str] = None,
        timeouts: Optional[TimeoutConfig] = None,
        endpoint_url: Optional[str] = None,
        http_transport: Optional[httpx.BaseTransport] = None,
    ) -> None:
        self._page = page
        self.context_id = context_id
        self._timeouts = timeouts or TimeoutConfig()
        self._endpoint_url = endpoint_url.rstrip("/") if endpoint_url else None
        self._http_transport = http_transport
        self._cdp: Optional[CDPSession] = None
        self._target_id: Optional[str] = None
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def page(self) -> Page:
        self._ensure_open()
        return self._page

    @property
    def url(self) -> str:
        return self.page.url

    def navigate(self, url: str) -> None:
        self._ensure_open()
        LOGGER.info("Navigating to %s", url)
        try:
            self._page.goto(
                url,
                wait_until="commit",
                timeout=_to_timeout(self._timeouts.navigation),
            )
        except PlaywrightTimeoutError as exc:
            raise NavigationTimeoutError(f"Navigation to {url} timed out") from exc
        except Error as exc:
            raise NavigationError(f"Navigation to {url} failed: {exc.message}") from exc

    def wait_document_ready(self, timeout: Optional[float] = None) -> None:
        self._ensure_open()
        limit = timeout if timeout is not None else self._timeouts.document_ready
        try:
            self._page.wait_for_load_state("load", timeout=_to_timeout(limit))
        except PlaywrightTimeoutError as exc:
            raise NavigationTimeoutError(
                f"Document at {self._page.url} not ready within {limit:.1f}s"
            ) from exc
        except Error as exc:
            raise ChannelError(f"Waiting for document failed: {exc.message}") from exc

    def get_title(self) -> str:
        self._ensure_open()
        try:
            return self._page.title() or ""
        except Error as exc:
            raise ChannelError(f"Reading the title failed: {exc.message}") from exc

    def evaluate(self, script: str) -> Any:
        limit = self._timeouts.evaluation
        params = {
            "expression": script,
            "returnByValue": True,
            "awaitPromise": True,
            "timeout": _to_timeout(limit),
        }
        try:
            result = self._send_within("Runtime.evaluate", params, limit)
        except _DeadlineExceeded as exc:
            raise EvaluationTimeoutError(
                f"Script did not settle within {limit:.1f}s", script=script
            ) from exc
        except ChannelError as exc:
            if TERMINATED in str(exc):
                raise EvaluationTimeoutError(
                    f"Script was terminated after {limit:.1f}s", script=script
                ) from exc
            raise
        details = result.get("exceptionDetails")
        if details:
            exception = details.get("exception") or {}
            text = exception.get("description") or details.get("text") or "Uncaught exception"
            if TERMINATED in text:
                raise EvaluationTimeoutError(
                    f"Script was terminated after {limit:.1f}s", script=script, exception_text=text
                )
            raise EvaluationError(
                f"Script raised in page: {text}", script=script, exception_text=text
            )
        return _remote_value(result.get("result", {}))

    def print_to_pdf(self, options: Optional[PrintOptions] = None) -> bytes:
        self._ensure_open()
        options = options or PrintOptions()
        limit = self._timeouts.print
        started = time.monotonic()
        try:
            self._page.wait_for_load_state("load", timeout=_to_timeout(limit))
        except PlaywrightTimeoutError as exc:
            raise PrintTimeoutError(
                f"Page {self._page.url} did not finish loading within {limit:.1f}s"
            ) from exc
        except Error as exc:
            raise PrintError(f"Page {self._page.url} is not in a printable state") from exc
        remaining = limit - (time.monotonic() - started)
        if remaining <= 0:
            raise PrintTimeoutError(f"No time left to print {self._page.url}")
        try:
            result = self._send_within("Page.printToPDF", options.to_cdp_params(), remaining)
        except _DeadlineExceeded as exc:
            raise PrintTimeoutError(
                f"Printing {self._page.url} did not finish within {limit:.1f}s"
            ) from exc
        except ChannelError as exc:
            raise PrintError(f"Printing {self._page.url} failed: {exc}") from exc
        data = base64.b64decode(result.get("data", ""))
        if not data:
            raise PrintError(f"Printing {self._page.url} produced no output")
        LOGGER.debug("Printed %s to %d PDF bytes", self._page.url, len(data))
        return data

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        try:
            if self._cdp is not None:
                try:
                    self._cdp.detach()
                except Error:
                    LOGGER.debug("CDP session already detached", exc_info=True)
            if not self._page.is_closed():
                self._page.close()
        finally:
            self._cdp = None
        LOGGER.debug("Session closed (context %s)", self.context_id or "default")

    def _send_within(self, method: str, params: dict[str, Any], seconds: float) -> dict[str, Any]:
        deadline = _Deadline(seconds, self._close_target)
        try:
            with deadline:
                result = self._send(method, params)
        except ChannelError as exc:
            if deadline.expired:
                raise _DeadlineExceeded(method) from exc
            raise
        if deadline.expired:
            raise _DeadlineExceeded(method)
        return result

    def _send(self, method: str, params: dict[str, Any]) -> dict[str, Any]:
        self._ensure_open()
        try:
            if self._cdp is None:
                self._cdp = self._page.context.new_cdp_session(self._page)
                if self._endpoint_url:
                    info = self._cdp.send("Target.getTargetInfo")
                    self._target_id = (info.get("targetInfo") or {}).get("targetId")
            return self._cdp.send(method, params)
        except Error as exc:
            raise ChannelError(f"{method} failed: {exc.message}") from exc

    def _close_target(self) -> None:
        # Runs on the timer thread: Playwright objects must not be touched here.
        if not self._endpoint_url or not self._target_id:
            LOGGER.warning("Deadline passed; tab cannot be closed out of band")
            return
        LOGGER.warning("Deadline passed; closing tab %s", self._target_id)
        try:
            with httpx.Client(timeout=2.0, transport=self._http_transport) as client:
                client.get(f"{self._endpoint_url}/json/close/{self._target_id}").raise_for_status()
        except httpx.HTTPError as exc:
            LOGGER.warning("Closing tab %s failed: %s", self._target_id, exc)

    def _ensure_open(self) -> None:
        if self._closed:
            raise SessionClosedError("Session is closed")


def _remote_value(remote: dict[str, Any]) -> Any:
    """Convert a CDP ``RemoteObject`` returned by value into a Python value."""

    raw = remote.get("unserializableValue")
    if raw is None:
        return remote.get("value")
    if raw in _UNSERIALIZABLE:
        return _UNSERIALIZABLE[raw]
    if raw.endswith("n"):
        # BigInt literal, e.g. "10n"
        return int(raw[:-1])
    raise ChannelError(f"Unsupported value returned by the page: {raw}")


def _to_timeout(seconds: Optional[float]) -> Optional[float]:
    if seconds is None:
        return None
    return seconds * 1000
