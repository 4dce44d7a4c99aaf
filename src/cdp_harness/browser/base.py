"""Browser session abstractions and the harness error taxonomy."""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any, Optional

from ..models import PrintOptions


class HarnessError(RuntimeError):
    """Base class for every error raised by the harness."""


class LaunchError(HarnessError):
    """Raised when the browser cannot be started or its control channel never becomes ready."""


class ContextCreationError(HarnessError):
    """Raised when an isolated browsing context cannot be created."""


class SessionCreationError(HarnessError):
    """Raised when a new session (tab) cannot be created."""


class NavigationError(HarnessError):
    """Raised when navigation fails."""


class NavigationTimeoutError(NavigationError):
    """Raised when the document does not become ready in time."""


class EvaluationError(HarnessError):
    """Raised when a script throws inside the page."""

    def __init__(self, message: str, *, script: str, exception_text: Optional[str] = None) -> None:
        super().__init__(message)
        self.script = script
        self.exception_text = exception_text


class EvaluationTimeoutError(EvaluationError):
    """Raised when a script (or the promise it returns) does not settle in time."""


class ChannelError(HarnessError):
    """Raised when the control channel to the browser fails."""


class SessionClosedError(ChannelError):
    """Raised when an operation targets a session that was already closed."""


class PrintError(HarnessError):
    """Raised when the current page cannot be printed."""


class PrintTimeoutError(PrintError):
    """Raised when rendering the PDF does not finish in time."""


class DisposeError(HarnessError):
    """Raised when a browsing context cannot be disposed."""


class BrowserSession(ABC):
    """Interface for a single controllable tab."""

    context_id: Optional[str]

    @property
    @abstractmethod
    def closed(self) -> bool:
        """Whether :meth:`close` has been called."""

    @abstractmethod
    def navigate(self, url: str) -> None:
        """Start loading ``url`` without waiting for the load to finish."""

    @abstractmethod
    def wait_document_ready(self, timeout: Optional[float] = None) -> None:
        """Block until the document fires its load event."""

    @abstractmethod
    def get_title(self) -> str:
        """Return the current document title."""

    @abstractmethod
    def evaluate(self, script: str) -> Any:
        """Evaluate ``script`` in the page and return its serialised result."""

    @abstractmethod
    def print_to_pdf(self, options: Optional[PrintOptions] = None) -> bytes:
        """Render the current page to PDF bytes."""

    @abstractmethod
    def close(self) -> None:
        """Close the tab. Calling it again is a no-op."""
