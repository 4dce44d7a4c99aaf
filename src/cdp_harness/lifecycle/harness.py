"""Scoped acquisition of a browser process, context and session."""

from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import Iterator, Optional

from ..browser.base import BrowserSession, HarnessError
from ..browser.contexts import SessionFactory
from ..browser.launcher import BrowserProcess, ProcessLauncher
from ..config import HarnessConfig
from ..models import HarnessState, TeardownReport
from .teardown import TeardownSequence

LOGGER = logging.getLogger(__name__)

TEARDOWN_STEPS = ("close_session", "dispose_context", "close_factory", "kill_process")


class BrowserHarness:
    """Owns one browser process, one browsing context and one session.

    ``start()`` acquires process, connection, context and session in that order.
    ``close()`` releases them in reverse order through a :class:`TeardownSequence`:
    every step runs even if an earlier one failed, and steps for resources that
    were never acquired are no-ops. Both are safe to combine with ``with``::

        with BrowserHarness(config) as session:
            session.navigate("https://example.com")
            session.wait_document_ready()

    A harness is not thread-safe; parallel test units must each own one.
    """

    def __init__(
        self,
        config: Optional[HarnessConfig] = None,
        *,
        launcher: Optional[ProcessLauncher] = None,
        factory_cls: type[SessionFactory] = SessionFactory,
    ) -> None:
        self._config = config or HarnessConfig()
        self._launcher = launcher or ProcessLauncher(self._config.browser, self._config.timeouts)
        self._factory_cls = factory_cls
        self.state = HarnessState.CREATED
        self.process: Optional[BrowserProcess] = None
        self.factory: Optional[SessionFactory] = None
        self.context_id: Optional[str] = None
        self.session: Optional[BrowserSession] = None
        self.process_killed: Optional[bool] = None
        self._teardown: Optional[TeardownSequence] = None

    @property
    def config(self) -> HarnessConfig:
        return self._config

    @property
    def report(self) -> Optional[TeardownReport]:
        return self._teardown.report if self._teardown else None

    def __enter__(self) -> BrowserSession:
        return self.start()

    def __exit__(self, exc_type, exc, tb) -> None:
        report = self.close()
        if exc is not None and not report.succeeded:
            LOGGER.warning(
                "Teardown after %s also failed in: %s",
                exc_type.__name__,
                ", ".join(step.name for step in report.failures),
            )

    def start(self) -> BrowserSession:
        """Launch the browser and open a session, cleaning up on any failure."""

        if self.state is not HarnessState.CREATED:
            raise HarnessError(f"Harness cannot start from state {self.state.value}")
        try:
            self.process = self._launcher.launch()
            self.factory = self._factory_cls.connect(self.process, self._config.timeouts)
            if self._config.browser.isolate:
                self.context_id = self.factory.create_context()
            self.session = self.factory.create_session(self.context_id)
        except BaseException as exc:
            LOGGER.error("Harness setup failed (%s); releasing partial resources", exc)
            self.close()
            raise
        self.state = HarnessState.ACTIVE
        LOGGER.info(
            "Browser harness active (context %s)",
            self.context_id or "default",
        )
        return self.session

    def close(self) -> TeardownReport:
        """Tear down in reverse acquisition order. Repeated calls return the first report."""

        if self._teardown is not None:
            return self._teardown.report or TeardownReport()
        self.state = HarnessState.TEARING_DOWN
        self._teardown = (
            TeardownSequence()
            .add("close_session", self._close_session)
            .add("dispose_context", self._dispose_context)
            .add("close_factory", self._close_factory)
            .add("kill_process", self._kill_process)
        )
        report = self._teardown.run()
        self.state = HarnessState.CLOSED
        if report.succeeded:
            LOGGER.info("Browser harness closed")
        else:
            LOGGER.warning(
                "Browser harness closed with %d failed teardown step(s)",
                len(report.failures),
            )
        return report

    def _close_session(self) -> None:
        if self.session is not None:
            self.session.close()

    def _dispose_context(self) -> None:
        if self.factory is not None and self.context_id is not None:
            self.factory.dispose_context(self.context_id)

    def _close_factory(self) -> None:
        if self.factory is not None:
            self.factory.close()

    def _kill_process(self) -> None:
        if self.process is None:
            return
        self.process_killed = self.process.kill()
        LOGGER.info("Browser shut down successfully - %s", self.process_killed)
        if not self.process_killed:
            raise HarnessError(f"Browser process {self.process.pid} is still running")


@contextmanager
def open_session(config: Optional[HarnessConfig] = None) -> Iterator[BrowserSession]:
    """Yield a ready session from a fresh harness and always tear it down."""

    with BrowserHarness(config) as session:
        yield session
