# src/cookie_recovery/utils/platforms.py
"""Per-platform knowledge about Chromium-based browsers.

One ``Platform`` implementation per operating system answers where a
browser family keeps its user data, which executables to try, which
process names it runs under and how the profile master key is unwrapped.
The implementation is chosen once by ``current_platform()``.
"""
import os
import platform
import shutil
import subprocess
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Optional, Tuple

from cookie_recovery.utils.secret_unwrap import DpapiUnwrapper, SecretUnwrapper, UnsupportedUnwrapper


@dataclass(frozen=True)
class BrowserFamily:
    key: str
    display_name: str
    # Path segments below %LOCALAPPDATA% / Application Support / ~/.config
    windows_user_data: Tuple[str, ...]
    mac_user_data: Tuple[str, ...]
    linux_user_data: Tuple[str, ...]
    windows_executable: Tuple[str, ...]
    mac_app: str
    linux_executables: Tuple[str, ...]
    process_names: Dict[str, Tuple[str, ...]]


BROWSER_FAMILIES: Dict[str, BrowserFamily] = {
    "chrome": BrowserFamily(
        key="chrome",
        display_name="Chrome",
        windows_user_data=("Google", "Chrome", "User Data"),
        mac_user_data=("Google", "Chrome"),
        linux_user_data=("google-chrome",),
        windows_executable=("Google", "Chrome", "Application", "chrome.exe"),
        mac_app="Google Chrome",
        linux_executables=("google-chrome", "google-chrome-stable"),
        process_names={
            "windows": ("chrome.exe",),
            "darwin": ("google chrome",),
            "linux": ("chrome", "google-chrome", "google-chrome-stable"),
        },
    ),
    "edge": BrowserFamily(
        key="edge",
        display_name="Edge",
        windows_user_data=("Microsoft", "Edge", "User Data"),
        mac_user_data=("Microsoft Edge",),
        linux_user_data=("microsoft-edge",),
        windows_executable=("Microsoft", "Edge", "Application", "msedge.exe"),
        mac_app="Microsoft Edge",
        linux_executables=("microsoft-edge", "microsoft-edge-stable", "microsoft-edge-dev"),
        process_names={
            "windows": ("msedge.exe",),
            "darwin": ("microsoft edge",),
            "linux": ("msedge", "microsoft-edge"),
        },
    ),
    "brave": BrowserFamily(
        key="brave",
        display_name="Brave",
        windows_user_data=("BraveSoftware", "Brave-Browser", "User Data"),
        mac_user_data=("BraveSoftware", "Brave-Browser"),
        linux_user_data=("BraveSoftware", "Brave-Browser"),
        windows_executable=("BraveSoftware", "Brave-Browser", "Application", "brave.exe"),
        mac_app="Brave Browser",
        linux_executables=("brave-browser", "brave"),
        process_names={
            "windows": ("brave.exe",),
            "darwin": ("brave browser",),
            "linux": ("brave", "brave-browser"),
        },
    ),
    "chromium": BrowserFamily(
        key="chromium",
        display_name="Chromium",
        windows_user_data=("Chromium", "User Data"),
        mac_user_data=("Chromium",),
        linux_user_data=("chromium",),
        windows_executable=("Chromium", "Application", "chrome.exe"),
        mac_app="Chromium",
        linux_executables=("chromium", "chromium-browser"),
        process_names={
            "windows": ("chrome.exe",),
            "darwin": ("chromium",),
            "linux": ("chromium", "chromium-browser"),
        },
    ),
}

BROWSER_ALIASES = {
    "google-chrome": "chrome",
    "ms-edge": "edge",
    "microsoft-edge": "edge",
    "msedge": "edge",
    "brave-browser": "brave",
}


def get_browser_family(name: str) -> BrowserFamily:
    key = name.strip().lower()
    key = BROWSER_ALIASES.get(key, key)
    try:
        return BROWSER_FAMILIES[key]
    except KeyError:
        supported = ", ".join(sorted(BROWSER_FAMILIES))
        raise ValueError(f"Unsupported browser: {name}. Supported: {supported}") from None


class Platform:
    system = ""

    def user_data_dir(self, family: BrowserFamily) -> Path:
        raise NotImplementedError

    def executable_candidates(self, family: BrowserFamily) -> List[str]:
        raise NotImplementedError

    def secret_unwrapper(self) -> SecretUnwrapper:
        return UnsupportedUnwrapper(self.system)

    def process_names(self, family: BrowserFamily) -> Tuple[str, ...]:
        return family.process_names.get(self.system, ())

    def no_window_flags(self) -> int:
        return 0


class WindowsPlatform(Platform):
    system = "windows"

    def user_data_dir(self, family: BrowserFamily) -> Path:
        local_app_data = os.environ.get("LOCALAPPDATA") or os.path.join(
            os.path.expanduser("~"), "AppData", "Local"
        )
        return Path(local_app_data, *family.windows_user_data)

    def executable_candidates(self, family: BrowserFamily) -> List[str]:
        candidates = []
        # Per-user installs live under %LOCALAPPDATA%; check them first.
        for env_var in ("LOCALAPPDATA", "ProgramFiles", "ProgramFiles(x86)"):
            base = os.environ.get(env_var)
            if base:
                candidates.append(os.path.join(base, *family.windows_executable))
        which = shutil.which(family.windows_executable[-1])
        if which:
            candidates.append(which)
        return candidates

    def secret_unwrapper(self) -> SecretUnwrapper:
        return DpapiUnwrapper()

    def no_window_flags(self) -> int:
        return getattr(subprocess, "CREATE_NO_WINDOW", 0)


class MacPlatform(Platform):
    system = "darwin"

    def user_data_dir(self, family: BrowserFamily) -> Path:
        return Path(os.path.expanduser("~"), "Library", "Application Support", *family.mac_user_data)

    def executable_candidates(self, family: BrowserFamily) -> List[str]:
        bundle = os.path.join(f"{family.mac_app}.app", "Contents", "MacOS", family.mac_app)
        return [
            os.path.join("/Applications", bundle),
            os.path.join(os.path.expanduser("~"), "Applications", bundle),
        ]


class LinuxPlatform(Platform):
    system = "linux"

    def user_data_dir(self, family: BrowserFamily) -> Path:
        config_home = os.environ.get("XDG_CONFIG_HOME") or os.path.join(os.path.expanduser("~"), ".config")
        return Path(config_home, *family.linux_user_data)

    def executable_candidates(self, family: BrowserFamily) -> List[str]:
        candidates = []
        for name in family.linux_executables:
            path = shutil.which(name)
            if path:
                candidates.append(path)
        candidates.extend(os.path.join("/usr/bin", name) for name in family.linux_executables)
        return candidates


_PLATFORMS = {
    "windows": WindowsPlatform,
    "darwin": MacPlatform,
    "linux": LinuxPlatform,
}


def current_platform(system: Optional[str] = None) -> Platform:
    """Select the platform implementation for this host (or for ``system``)."""
    system = (system or platform.system()).lower()
    # Other Unix flavours lay out ~/.config like Linux does.
    return _PLATFORMS.get(system, LinuxPlatform)()
