"""Command line interface for cdp-harness."""

from __future__ import annotations

import json
import logging
from importlib.metadata import PackageNotFoundError
from importlib.metadata import version as get_version
from pathlib import Path
from typing import Annotated, Any, Callable, Optional, TypeVar

import typer
from rich.console import Console

from .artifacts import save_pdf
from .browser.base import BrowserSession, HarnessError
from .config import HarnessConfig, load_config
from .factory import build_harness, build_launcher
from .models import TeardownReport

app = typer.Typer(help="Headless Chrome session harness over the DevTools Protocol")

T = TypeVar("T")

ConfigOption = Annotated[
    Optional[Path],
    typer.Option("--config", "-c", help="Path to YAML configuration."),
]
EnvFileOption = Annotated[
    Optional[Path],
    typer.Option("--env-file", help="Path to an .env file with default configuration values."),
]
HeadlessOption = Annotated[
    Optional[bool],
    typer.Option("--headless/--headed", help="Run the browser in headless mode (or headed)."),
]


@app.callback()
def main(
    verbose: Annotated[
        bool,
        typer.Option("--verbose", "-v", help="Log harness internals at DEBUG level."),
    ] = False,
) -> None:
    """Drive a disposable headless Chrome over the DevTools Protocol."""

    # Results go to stdout; logs go to stderr and stay quiet for third-party modules.
    logging.basicConfig(level=logging.WARNING, format="%(levelname)-7s %(name)s: %(message)s")
    logging.getLogger("cdp_harness").setLevel(logging.DEBUG if verbose else logging.INFO)


@app.command()
def version() -> None:
    """Print the harness and Playwright versions."""

    typer.echo(f"cdp-harness {_distribution_version('cdp-harness')}")
    typer.echo(f"playwright {_distribution_version('playwright')}")


@app.command("find-browser")
def find_browser(config_path: ConfigOption = None, env_file: EnvFileOption = None) -> None:
    """Print the browser executable the harness would launch."""

    config = _load(config_path, env_file, None)
    try:
        typer.echo(str(build_launcher(config).find_executable()))
    except HarnessError as exc:
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(code=1) from exc


@app.command()
def title(
    url: Annotated[str, typer.Argument(help="Page to open.")],
    config_path: ConfigOption = None,
    env_file: EnvFileOption = None,
    headless: HeadlessOption = None,
) -> None:
    """Open URL and print the document title."""

    config = _load(config_path, env_file, headless)
    typer.echo(_with_session(config, lambda session: _open(session, url).get_title()))


@app.command()
def evaluate(
    url: Annotated[str, typer.Argument(help="Page to open.")],
    script: Annotated[str, typer.Argument(help="JavaScript expression to evaluate.")],
    config_path: ConfigOption = None,
    env_file: EnvFileOption = None,
    headless: HeadlessOption = None,
) -> None:
    """Open URL, evaluate SCRIPT in the page and print the result."""

    config = _load(config_path, env_file, headless)
    result = _with_session(config, lambda session: _open(session, url).evaluate(script))
    typer.echo(result if isinstance(result, str) else json.dumps(result))


@app.command()
def pdf(
    url: Annotated[str, typer.Argument(help="Page to print.")],
    output: Annotated[
        Optional[Path],
        typer.Option("--output", "-o", help="Directory for the PDF (created if missing)."),
    ] = None,
    name: Annotated[str, typer.Option("--name", help="File name of the PDF.")] = "page.pdf",
    landscape: Annotated[
        Optional[bool],
        typer.Option("--landscape/--portrait", help="Page orientation."),
    ] = None,
    config_path: ConfigOption = None,
    env_file: EnvFileOption = None,
    headless: HeadlessOption = None,
) -> None:
    """Open URL and print it to a PDF file."""

    overrides: dict[str, Any] = {}
    if output is not None:
        overrides["output"] = {"pdf_dir": str(output)}
    if landscape is not None:
        overrides["pdf"] = {"landscape": landscape}
    config = _load(config_path, env_file, headless, **overrides)

    data = _with_session(config, lambda session: _open(session, url).print_to_pdf(config.pdf))
    try:
        path = save_pdf(data, config.output.pdf_dir, name)
    except HarnessError as exc:
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(code=1) from exc
    typer.echo(f"PDF saved to: {path.resolve()} ({len(data)} bytes)")


def _distribution_version(name: str) -> str:
    try:
        return get_version(name)
    except PackageNotFoundError:
        return "unknown"


def _load(
    config_path: Optional[Path],
    env_file: Optional[Path],
    headless: Optional[bool],
    **overrides: Any,
) -> HarnessConfig:
    if headless is not None:
        overrides.setdefault("browser", {})["headless"] = headless
    return load_config(config_path, env_file=env_file, **overrides)


def _open(session: BrowserSession, url: str) -> BrowserSession:
    session.navigate(url)
    session.wait_document_ready()
    return session


def _with_session(config: HarnessConfig, action: Callable[[BrowserSession], T]) -> T:
    harness = build_harness(config)
    try:
        with harness as session:
            return action(session)
    except HarnessError as exc:
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(code=1) from exc
    finally:
        if harness.report is not None and not harness.report.succeeded:
            _print_teardown_problems(harness.report)


def _print_teardown_problems(report: TeardownReport) -> None:
    console = Console(stderr=True)
    for step in report.failures:
        console.print(f"[WARNING] teardown step {step.name} failed", style="yellow")
        if step.error:
            console.print(step.error, style="dim")


if __name__ == "__main__":
    app()
