"""Best-effort, ordered release of browser resources."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Callable, Optional

from ..browser.base import HarnessError
from ..models import TeardownReport, TeardownStepResult

LOGGER = logging.getLogger(__name__)


class TeardownFailure(HarnessError):
    """Aggregates the steps that failed during teardown."""

    def __init__(self, failures: list[TeardownStepResult]) -> None:
        names = ", ".join(step.name for step in failures)
        super().__init__(f"Teardown steps failed: {names}")
        self.failures = failures


@dataclass
class TeardownStep:
    name: str
    action: Callable[[], object]


class TeardownSequence:
    """Runs cleanup actions in a fixed order, each one regardless of earlier failures.

    Exceptions raised by a step are logged and recorded in the report; they
    never stop later steps from running. The sequence runs at most once.
    """

    def __init__(self) -> None:
        self._steps: list[TeardownStep] = []
        self._report: Optional[TeardownReport] = None

    def add(self, name: str, action: Callable[[], object]) -> "TeardownSequence":
        if self._report is not None:
            raise RuntimeError("Cannot add steps to a teardown sequence that already ran")
        self._steps.append(TeardownStep(name=name, action=action))
        return self

    @property
    def step_names(self) -> list[str]:
        return [step.name for step in self._steps]

    @property
    def has_run(self) -> bool:
        return self._report is not None

    @property
    def report(self) -> Optional[TeardownReport]:
        return self._report

    def run(self) -> TeardownReport:
        if self._report is not None:
            return self._report
        report = TeardownReport()
        # Set first so a step that re-enters run() sees a finished sequence.
        self._report = report
        for step in self._steps:
            LOGGER.debug("Teardown step %s", step.name)
            try:
                step.action()
            except Exception as exc:  # noqa: BLE001
                LOGGER.warning("Teardown step %s failed: %s", step.name, exc, exc_info=True)
                report.steps.append(
                    TeardownStepResult(
                        name=step.name,
                        succeeded=False,
                        error=f"{type(exc).__name__}: {exc}",
                    )
                )
            else:
                report.steps.append(TeardownStepResult(name=step.name, succeeded=True))
        return report


def raise_for_failures(report: TeardownReport) -> None:
    """Raise :class:`TeardownFailure` when any step in ``report`` failed."""

    if report.failures:
        raise TeardownFailure(report.failures)
