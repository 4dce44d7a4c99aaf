"""Shared models used across the browser harness."""

from __future__ import annotations

import enum
from datetime import datetime, timezone
from typing import Any, Optional

from pydantic import BaseModel, Field


class HarnessState(str, enum.Enum):
    """Lifecycle states of a :class:`~cdp_harness.lifecycle.harness.BrowserHarness`."""

    CREATED = "created"
    ACTIVE = "active"
    TEARING_DOWN = "tearing_down"
    CLOSED = "closed"


class PrintMargins(BaseModel):
    """Page margins in inches."""

    top: float = Field(default=0.4, ge=0)
    bottom: float = Field(default=0.4, ge=0)
    left: float = Field(default=0.4, ge=0)
    right: float = Field(default=0.4, ge=0)


class PrintOptions(BaseModel):
    """Options for ``Page.printToPDF``. Defaults produce a portrait US Letter page."""

    landscape: bool = False
    display_header_footer: bool = False
    print_background: bool = True
    scale: float = Field(default=1.0, ge=0.1, le=2.0)
    paper_width: float = Field(default=8.5, gt=0, description="Paper width in inches")
    paper_height: float = Field(default=11.0, gt=0, description="Paper height in inches")
    margins: PrintMargins = Field(default_factory=PrintMargins)
    page_ranges: str = Field(default="", description="e.g. '1-5, 8'; empty prints all pages")
    ignore_invalid_page_ranges: bool = False
    header_template: str = ""
    footer_template: str = ""
    prefer_css_page_size: bool = False

    def to_cdp_params(self) -> dict[str, Any]:
        params: dict[str, Any] = {
            "landscape": self.landscape,
            "displayHeaderFooter": self.display_header_footer,
            "printBackground": self.print_background,
            "scale": self.scale,
            "paperWidth": self.paper_width,
            "paperHeight": self.paper_height,
            "marginTop": self.margins.top,
            "marginBottom": self.margins.bottom,
            "marginLeft": self.margins.left,
            "marginRight": self.margins.right,
            "pageRanges": self.page_ranges,
            "headerTemplate": self.header_template,
            "footerTemplate": self.footer_template,
            "preferCSSPageSize": self.prefer_css_page_size,
        }
        # Removed from recent protocol versions; only sent when asked for.
        if self.ignore_invalid_page_ranges:
            params["ignoreInvalidPageRanges"] = True
        return params


class TeardownStepResult(BaseModel):
    """Outcome of a single teardown step."""

    name: str
    succeeded: bool
    error: Optional[str] = None
    finished_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class TeardownReport(BaseModel):
    """Results of a full teardown sequence, in execution order."""

    steps: list[TeardownStepResult] = Field(default_factory=list)

    @property
    def succeeded(self) -> bool:
        return all(step.succeeded for step in self.steps)

    @property
    def failures(self) -> list[TeardownStepResult]:
        return [step for step in self.steps if not step.succeeded]

    def step_names(self) -> list[str]:
        return [step.name for step in self.steps]
