"""Locate, start and stop the browser process that serves the CDP endpoint."""

from __future__ import annotations

import logging
import os
import platform
import shutil
import signal
import subprocess
import tempfile
import time
from pathlib import Path
from typing import IO, Optional, Sequence

import httpx

from ..config import BrowserConfig, TimeoutConfig
from .base import LaunchError

LOGGER = logging.getLogger(__name__)

HEADLESS = "--headless"
DISABLE_GPU = "--disable-gpu"
INCOGNITO = "--incognito"
NO_SANDBOX = "--no-sandbox"

# Written by the browser into the profile directory once the endpoint is bound.
DEVTOOLS_PORT_FILE = "DevToolsActivePort"

EXECUTABLE_NAMES = (
    "google-chrome",
    "google-chrome-stable",
    "chromium",
    "chromium-browser",
    "chrome",
    "msedge",
)

_POLL_INTERVAL = 0.1


def _platform_candidates() -> list[Path]:
    system = platform.system()
    if system == "Darwin":
        return [
            Path("/Applications/Google Chrome.app/Contents/MacOS/Google Chrome"),
            Path("/Applications/Chromium.app/Contents/MacOS/Chromium"),
            Path("/Applications/Microsoft Edge.app/Contents/MacOS/Microsoft Edge"),
        ]
    if system == "Windows":
        roots = [
            os.environ.get("PROGRAMFILES", r"C:\Program Files"),
            os.environ.get("PROGRAMFILES(X86)", r"C:\Program Files (x86)"),
            os.environ.get("LOCALAPPDATA", ""),
        ]
        return [
            Path(root) / "Google" / "Chrome" / "Application" / "chrome.exe"
            for root in roots
            if root
        ]
    return [
        Path("/usr/bin/google-chrome"),
        Path("/usr/bin/chromium"),
        Path("/usr/bin/chromium-browser"),
        Path("/snap/bin/chromium"),
    ]


def _running_as_root() -> bool:
    geteuid = getattr(os, "geteuid", None)
    return geteuid is not None and geteuid() == 0


def _playwright_chromium() -> Optional[Path]:
    """Return Playwright's bundled Chromium when it has been installed."""

    from playwright.sync_api import Error, sync_playwright

    try:
        with sync_playwright() as playwright:
            path = Path(playwright.chromium.executable_path)
    except Error:
        LOGGER.debug("Playwright driver unavailable for browser discovery", exc_info=True)
        return None
    return path if path.exists() else None


class BrowserProcess:
    """Handle for a running browser and the CDP endpoint it exposes.

    The handle owns the temporary profile directory passed via ``--user-data-dir``
    and removes it once the process is gone.
    """

    def __init__(
        self,
        process: subprocess.Popen,
        *,
        executable: Path,
        args: Sequence[str],
        user_data_dir: Path,
        log_file: IO[bytes],
        kill_timeout: float = 5.0,
    ) -> None:
        self._process = process
        self.executable = executable
        self.args = list(args)
        self.user_data_dir = user_data_dir
        self._log_file = log_file
        self._kill_timeout = kill_timeout
        self._stopped = False
        self.endpoint_url: Optional[str] = None
        self.websocket_url: Optional[str] = None

    @property
    def pid(self) -> int:
        return self._process.pid

    @property
    def returncode(self) -> Optional[int]:
        return self._process.poll()

    def is_running(self) -> bool:
        return self._process.poll() is None

    def output_tail(self, limit: int = 2000) -> str:
        """Return the last ``limit`` characters the browser wrote to stderr."""

        if self._log_file.closed:
            return ""
        self._log_file.flush()
        self._log_file.seek(0)
        data = self._log_file.read()
        return data[-limit:].decode("utf-8", errors="replace").strip()

    def is_group_alive(self) -> bool:
        """Whether any member of the browser's process group still exists."""

        if os.name != "posix":
            return self.is_running()
        try:
            os.killpg(self._process.pid, 0)
        except ProcessLookupError:
            return False
        except PermissionError:
            return True
        return True

    def kill(self) -> bool:
        """Terminate the browser and return ``True`` once it and its helpers are gone.

        Safe to call repeatedly: after a successful kill further calls return
        ``True`` without touching the process.
        """

        if self._stopped:
            return True
        if self.is_running():
            LOGGER.debug("Terminating browser process %s", self.pid)
            self._signal(signal.SIGTERM)
            try:
                self._process.wait(timeout=self._kill_timeout)
            except subprocess.TimeoutExpired:
                LOGGER.warning("Browser process %s ignored SIGTERM; killing", self.pid)
                self._signal(getattr(signal, "SIGKILL", signal.SIGTERM))
                try:
                    self._process.wait(timeout=self._kill_timeout)
                except subprocess.TimeoutExpired:
                    LOGGER.error("Browser process %s is still running", self.pid)
                    return False
        if not self._wait_for_group():
            LOGGER.warning("Helpers of browser process %s outlived it; killing the group", self.pid)
            self._signal(getattr(signal, "SIGKILL", signal.SIGTERM))
            if not self._wait_for_group():
                LOGGER.error("Process group %s is still alive", self.pid)
                return False
        self._stopped = True
        self._log_file.close()
        shutil.rmtree(self.user_data_dir, ignore_errors=True)
        LOGGER.info("Browser process %s stopped (exit code %s)", self.pid, self.returncode)
        return True

    def _signal(self, signum: int) -> None:
        if os.name == "posix":
            # The browser was started in its own session; take its helpers down too.
            try:
                os.killpg(self._process.pid, signum)
                return
            except (ProcessLookupError, PermissionError):
                pass
        if signum == signal.SIGTERM:
            self._process.terminate()
        else:
            self._process.kill()

    def _wait_for_group(self) -> bool:
        deadline = time.monotonic() + self._kill_timeout
        while self.is_group_alive():
            if time.monotonic() >= deadline:
                return False
            time.sleep(_POLL_INTERVAL)
        return True


class ProcessLauncher:
    """Start browser processes with a fixed flag set and wait for their CDP endpoint."""

    def __init__(
        self,
        config: Optional[BrowserConfig] = None,
        timeouts: Optional[TimeoutConfig] = None,
        *,
        http_transport: Optional[httpx.BaseTransport] = None,
    ) -> None:
        self._config = config or BrowserConfig()
        self._timeouts = timeouts or TimeoutConfig()
        self._http_transport = http_transport

    def find_executable(self) -> Path:
        """Resolve the browser executable, preferring explicit configuration."""

        configured = self._config.executable_path
        if configured:
            if not configured.exists():
                raise LaunchError(f"Configured browser executable does not exist: {configured}")
            return configured

        from_env = os.environ.get("CHROME_PATH")
        if from_env:
            path = Path(from_env)
            if not path.exists():
                raise LaunchError(f"CHROME_PATH points to a missing file: {from_env}")
            return path

        for name in EXECUTABLE_NAMES:
            found = shutil.which(name)
            if found:
                LOGGER.debug("Found browser executable %s on PATH", found)
                return Path(found)

        for candidate in _platform_candidates():
            if candidate.exists():
                return candidate

        bundled = _playwright_chromium()
        if bundled:
            LOGGER.debug("Using Playwright bundled Chromium at %s", bundled)
            return bundled

        raise LaunchError(
            "No Chrome/Chromium executable found. Set CDP_HARNESS_BROWSER__EXECUTABLE_PATH "
            "or CHROME_PATH, or run `playwright install chromium`."
        )

    def flags(self) -> list[str]:
        """Return the configured behaviour flags."""

        flags: list[str] = []
        if self._config.headless:
            flags.append(HEADLESS)
        if self._config.disable_gpu:
            flags.append(DISABLE_GPU)
        if self._config.incognito:
            flags.append(INCOGNITO)
        no_sandbox = self._config.no_sandbox
        if no_sandbox is None:
            no_sandbox = _running_as_root()
        if no_sandbox:
            flags.append(NO_SANDBOX)
        flags.extend(self._config.extra_args)
        return flags

    def build_args(self, user_data_dir: Path, flags: Optional[Sequence[str]] = None) -> list[str]:
        """Combine behaviour flags with the switches the harness itself depends on."""

        return [
            *(self.flags() if flags is None else flags),
            "--remote-debugging-port=0",
            f"--user-data-dir={user_data_dir}",
            "--no-first-run",
            "--no-default-browser-check",
            "about:blank",
        ]

    def launch(
        self,
        executable_path: Optional[Path] = None,
        args: Optional[Sequence[str]] = None,
    ) -> BrowserProcess:
        """Start the browser and block until its control channel accepts connections.

        ``args`` replaces the configured behaviour flags; the debugging port and
        profile directory switches are always added.
        """

        executable = Path(executable_path) if executable_path else self.find_executable()
        if not executable.exists():
            raise LaunchError(f"Browser executable does not exist: {executable}")

        user_data_dir = Path(tempfile.mkdtemp(prefix="cdp-harness-"))
        command = [str(executable), *self.build_args(user_data_dir, args)]
        log_file = tempfile.TemporaryFile()
        LOGGER.debug("Launching browser: %s", " ".join(command))
        try:
            popen = subprocess.Popen(
                command,
                stdin=subprocess.DEVNULL,
                stdout=subprocess.DEVNULL,
                stderr=log_file,
                start_new_session=os.name == "posix",
            )
        except OSError as exc:
            log_file.close()
            shutil.rmtree(user_data_dir, ignore_errors=True)
            raise LaunchError(f"Failed to start browser {executable}: {exc}") from exc

        process = BrowserProcess(
            popen,
            executable=executable,
            args=command[1:],
            user_data_dir=user_data_dir,
            log_file=log_file,
            kill_timeout=self._timeouts.kill,
        )
        try:
            process.endpoint_url, process.websocket_url = self._wait_for_endpoint(process)
        except BaseException:
            process.kill()
            raise
        LOGGER.info(
            "Browser %s started (pid %s), CDP endpoint %s",
            executable.name,
            process.pid,
            process.endpoint_url,
        )
        return process

    def _wait_for_endpoint(self, process: BrowserProcess) -> tuple[str, str]:
        deadline = time.monotonic() + self._timeouts.launch
        port_file = process.user_data_dir / DEVTOOLS_PORT_FILE
        with httpx.Client(timeout=2.0, transport=self._http_transport) as client:
            while True:
                if not process.is_running():
                    raise LaunchError(
                        f"Browser exited with code {process.returncode} before the control "
                        f"channel was ready: {process.output_tail() or '<no output>'}"
                    )
                endpoint = _read_endpoint(port_file)
                if endpoint:
                    try:
                        response = client.get(f"{endpoint}/json/version")
                        response.raise_for_status()
                        websocket_url = response.json().get("webSocketDebuggerUrl")
                    except (httpx.HTTPError, ValueError):
                        LOGGER.debug("CDP endpoint %s not ready yet", endpoint, exc_info=True)
                    else:
                        if websocket_url:
                            return endpoint, websocket_url
                if time.monotonic() >= deadline:
                    raise LaunchError(
                        f"Control channel not ready within {self._timeouts.launch:.1f}s"
                    )
                time.sleep(_POLL_INTERVAL)


def _read_endpoint(port_file: Path) -> Optional[str]:
    try:
        lines = port_file.read_text().splitlines()
    except OSError:
        return None
    if not lines or not lines[0].strip().isdigit():
        return None
    return f"http://127.0.0.1:{lines[0].strip()}"
