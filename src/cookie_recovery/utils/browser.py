# src/cookie_recovery/utils/browser.py
import json
import logging
import os
import socket
import subprocess
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, List, Optional, Tuple

import httpx
import psutil

from cookie_recovery.errors import ProcessError
from cookie_recovery.models import BrowserState
from cookie_recovery.utils.platforms import BrowserFamily, Platform, current_platform, get_browser_family

logger = logging.getLogger(__name__)

DEBUG_HOST = "127.0.0.1"


@dataclass(frozen=True)
class ProfilePaths:
    """Locations inside a browser's original user data directory."""

    family: BrowserFamily
    user_data_dir: Path
    profile_directory: str = "Default"

    @property
    def local_state(self) -> Path:
        return self.user_data_dir / "Local State"

    @property
    def profile_dir(self) -> Path:
        return self.user_data_dir / self.profile_directory

    @property
    def cookies_db(self) -> Path:
        # Chrome 96+ moved the database under Network/
        possible_paths = [
            self.profile_dir / "Network" / "Cookies",
            self.profile_dir / "Cookies",
        ]
        for path in possible_paths:
            if path.exists():
                return path
        return possible_paths[0]


def resolve_profile_paths(
    browser: str, profile: str = "Default", host: Optional[Platform] = None
) -> ProfilePaths:
    family = get_browser_family(browser)
    host = host or current_platform()
    return ProfilePaths(family=family, user_data_dir=host.user_data_dir(family), profile_directory=profile)


def list_profiles(user_data_dir: Path) -> List[Tuple[str, str]]:
    """Return (folder name, display name) for each profile of a browser."""
    user_data_dir = Path(user_data_dir)
    local_state_path = user_data_dir / "Local State"
    if local_state_path.exists():
        try:
            with open(local_state_path, "r", encoding="utf-8") as f:
                data = json.load(f)
            profiles = data.get("profile", {}).get("info_cache", {})
            if profiles:
                return [(folder, info.get("name", "Unknown")) for folder, info in sorted(profiles.items())]
        except (OSError, ValueError, AttributeError) as e:
            logger.warning(f"Error reading Local State file: {e}")

    # Fallback: list directories if Local State reading fails
    if not user_data_dir.is_dir():
        return []
    return [
        (item.name, item.name)
        for item in sorted(user_data_dir.iterdir())
        if item.is_dir() and (item.name == "Default" or item.name.startswith("Profile"))
    ]


def is_port_open(port: int, timeout: float, host: str = DEBUG_HOST) -> bool:
    try:
        with socket.create_connection((host, port), timeout=timeout):
            return True
    except OSError:
        return False


def _process_name(proc) -> str:
    info = getattr(proc, "info", None) or {}
    name = info.get("name")
    return (name or "").lower()


class StateDetector:
    """Classifies the browser as not running, running with or without debugging."""

    def __init__(
        self,
        family: BrowserFamily,
        port: int = 9222,
        probe_timeout: float = 0.1,
        host: Optional[Platform] = None,
        port_probe: Callable[[int, float], bool] = is_port_open,
        process_iter: Callable = psutil.process_iter,
    ):
        self.family = family
        self.port = port
        self.probe_timeout = probe_timeout
        self.host = host or current_platform()
        self._port_probe = port_probe
        self._process_iter = process_iter

    def is_debug_port_open(self) -> bool:
        return self._port_probe(self.port, self.probe_timeout)

    def is_browser_running(self) -> bool:
        names = self.host.process_names(self.family)
        try:
            for proc in self._process_iter(["name"]):
                process_name = _process_name(proc)
                if process_name and any(name in process_name for name in names):
                    return True
        except (psutil.Error, OSError) as exc:
            logger.warning(f"Could not read the process table ({exc}); assuming {self.family.display_name} is not running")
        return False

    def detect(self) -> BrowserState:
        if self.is_debug_port_open():
            return BrowserState.RUNNING_WITH_DEBUGGING
        if self.is_browser_running():
            return BrowserState.RUNNING_WITHOUT_DEBUGGING
        return BrowserState.NOT_RUNNING


class LaunchHandle:
    """A browser process started by us; ``release()`` terminates and reaps it.

    Use as a context manager so release runs on every exit path.
    """

    def __init__(self, process: subprocess.Popen, family: BrowserFamily, kill_timeout: float = 5.0):
        self.process = process
        self.family = family
        self.kill_timeout = kill_timeout
        self.released = False

    @property
    def pid(self) -> int:
        return self.process.pid

    def __enter__(self) -> "LaunchHandle":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.release()

    def release(self) -> None:
        if self.released:
            return
        self.released = True
        if self.process.poll() is not None:
            return
        logger.info(f"Closing temporary {self.family.display_name} instance (pid {self.pid})")
        try:
            self.process.terminate()
            self.process.wait(timeout=self.kill_timeout)
        except subprocess.TimeoutExpired:
            self._kill()
        except OSError as exc:
            logger.warning(f"Failed to terminate {self.family.display_name} (pid {self.pid}): {exc}")

    def _kill(self) -> None:
        try:
            self.process.kill()
            self.process.wait(timeout=self.kill_timeout)
        except subprocess.TimeoutExpired:
            logger.warning(
                f"{self.family.display_name} (pid {self.pid}) did not exit {self.kill_timeout:g} seconds after kill"
            )
        except OSError as exc:
            logger.warning(f"Failed to kill {self.family.display_name} (pid {self.pid}): {exc}")


class ProcessOrchestrator:
    """Finds, closes and relaunches a browser family's processes."""

    def __init__(
        self,
        family: BrowserFamily,
        host: Optional[Platform] = None,
        port: int = 9222,
        headless: bool = True,
        startup_timeout: float = 15.0,
        readiness_interval: float = 0.5,
        terminate_grace: float = 2.0,
        popen: Callable[..., subprocess.Popen] = subprocess.Popen,
        process_iter: Callable = psutil.process_iter,
        http_get: Callable = httpx.get,
        port_probe: Callable[[int, float], bool] = is_port_open,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.family = family
        self.host = host or current_platform()
        self.port = port
        self.headless = headless
        self.startup_timeout = startup_timeout
        self.readiness_interval = readiness_interval
        self.terminate_grace = terminate_grace
        self._popen = popen
        self._process_iter = process_iter
        self._http_get = http_get
        self._port_probe = port_probe
        self._sleep = sleep
        self._clock = clock

    def find_processes(self) -> list:
        names = self.host.process_names(self.family)
        try:
            return [
                proc
                for proc in self._process_iter(["name"])
                if _process_name(proc) and any(name in _process_name(proc) for name in names)
            ]
        except (psutil.Error, OSError) as exc:
            raise ProcessError(f"Could not read the process table: {exc}") from exc

    def terminate_all(self) -> int:
        """Ask every process of the family to exit, killing stragglers.

        Returns the number of processes signalled; exit is not awaited beyond
        the grace period.
        """
        processes = self.find_processes()
        display = self.family.display_name
        if not processes:
            logger.info(f"No {display} processes running")
            return 0

        logger.info(f"Closing {len(processes)} {display} processes")
        for proc in processes:
            try:
                proc.terminate()
            except psutil.NoSuchProcess:
                continue
            except psutil.AccessDenied as exc:
                logger.warning(f"Not allowed to terminate {display} process {proc.pid}: {exc}")

        self._sleep(self.terminate_grace)

        remaining = self.find_processes()
        if remaining:
            logger.warning(f"{len(remaining)} {display} processes ignored the graceful close; killing them")
            for proc in remaining:
                try:
                    proc.kill()
                except (psutil.NoSuchProcess, psutil.AccessDenied) as exc:
                    logger.warning(f"Could not kill {display} process {proc.pid}: {exc}")
        else:
            logger.info(f"All {display} processes closed")
        return len(processes)

    def wait_for_release(self, db_path, timeout: float = 3.0, interval: float = 0.2) -> None:
        """Poll until ``db_path`` can be opened for writing or ``timeout`` elapses."""
        deadline = self._clock() + timeout
        last_error = None
        while True:
            try:
                with open(db_path, "r+b"):
                    logger.debug(f"{db_path} released")
                    return
            except OSError as exc:
                last_error = exc
            if self._clock() >= deadline:
                break
            self._sleep(interval)

        raise ProcessError(
            f"{self.family.display_name} did not release {db_path} within {timeout:g} seconds: {last_error}",
            [f"Close every {self.family.display_name} window and background process, then retry"],
        )

    def find_executable(self) -> str:
        candidates = self.host.executable_candidates(self.family)
        for candidate in candidates:
            if candidate and os.path.isfile(candidate):
                return candidate

        searched = "\n".join(f"  - {candidate}" for candidate in candidates) or "  (no candidate paths)"
        raise ProcessError(
            f"{self.family.display_name} executable not found. Paths searched:\n{searched}",
            [
                f"Install {self.family.display_name} in a standard location",
                f"Or start it yourself with --remote-debugging-port={self.port}",
            ],
        )

    def build_command(self, executable: str, user_data_dir, profile_directory: Optional[str] = None) -> List[str]:
        command = [
            executable,
            f"--remote-debugging-port={self.port}",
            f"--user-data-dir={user_data_dir}",
            f"--remote-allow-origins=http://{DEBUG_HOST}:{self.port}",
        ]
        if profile_directory:
            command.append(f"--profile-directory={profile_directory}")
        if self.headless:
            # New headless mode keeps the real profile and its sessions.
            command.append("--headless=new")
        command.extend(
            [
                "--disable-gpu",
                "--disable-software-rasterizer",
                "--no-first-run",
                "--no-default-browser-check",
                "about:blank",
            ]
        )
        return command

    def launch_with_profile(self, user_data_dir, profile_directory: Optional[str] = None) -> LaunchHandle:
        """Start the browser on its ORIGINAL user data directory with debugging on.

        A copied profile would break App-Bound Encryption's path binding, so
        ``user_data_dir`` must be the browser's own directory. The returned
        handle is already waited to readiness and must be released.
        """
        display = self.family.display_name
        user_data_dir = Path(user_data_dir)
        if not user_data_dir.is_dir():
            raise ProcessError(f"{display} user data directory not found: {user_data_dir}")

        executable = self.find_executable()
        command = self.build_command(executable, user_data_dir, profile_directory)
        logger.info(f"Launching {display} with original profile {user_data_dir} (debug port {self.port})")

        try:
            process = self._popen(
                command,
                stdout=subprocess.DEVNULL,
                stderr=subprocess.DEVNULL,
                creationflags=self.host.no_window_flags(),
            )
        except OSError as exc:
            raise ProcessError(f"Failed to launch {display}: {exc}") from exc

        handle = LaunchHandle(process, self.family)
        try:
            self._wait_until_ready(process)
        except BaseException:
            handle.release()
            raise
        return handle

    def _wait_until_ready(self, process) -> None:
        display = self.family.display_name
        deadline = self._clock() + self.startup_timeout
        while True:
            exit_code = process.poll()
            if exit_code is not None:
                raise ProcessError(
                    f"{display} exited unexpectedly with code {exit_code}",
                    [
                        f"Check that port {self.port} is not already in use",
                        f"Close every {display} instance; another one may hold the profile",
                        "Check that you have permission to run the browser",
                    ],
                )

            if self._port_probe(self.port, self.readiness_interval) and self._version_endpoint_ready():
                logger.info(f"{display} is ready with debugging on port {self.port}")
                return

            if self._clock() >= deadline:
                raise ProcessError(
                    f"Timeout: {display} did not enable remote debugging within {self.startup_timeout:g} seconds",
                    [
                        f"Check that a firewall is not blocking port {self.port}",
                        f"Close every {display} instance; another one may hold the profile",
                    ],
                )
            self._sleep(self.readiness_interval)

    def _version_endpoint_ready(self) -> bool:
        try:
            response = self._http_get(f"http://{DEBUG_HOST}:{self.port}/json/version", timeout=2.0)
        except httpx.HTTPError:
            return False
        return response.status_code == 200
