# Local desktop actions run by an agent: workspace folder, editor, browser
import logging
import os
import platform
import shutil
import subprocess
from pathlib import Path
from typing import Callable, Dict, List, Optional, Sequence

import psutil  # Process lookup for closing editors and browsers

from shared.config import AppConfig
from shared.settings import DEFAULT_FOLDER_NAME

logger = logging.getLogger(__name__)


class LocalActionError(Exception):
    """A local action could not be completed."""


def _launch(argv: Sequence[str]) -> bool:
    """Start ``argv`` detached. Returns False if the executable cannot be started."""
    try:
        subprocess.Popen(
            list(argv),
            stdout=subprocess.DEVNULL,
            stderr=subprocess.DEVNULL,
            stdin=subprocess.DEVNULL,
        )
        return True
    except OSError:
        return False


class Platform:
    """
    Per-OS capabilities used by LocalActions.

    Subclasses list executable candidates; the launch logic itself is shared.
    """

    # Process names (lowercase, substring match) terminated by "clear"
    editor_processes: List[str] = []
    browser_processes: List[str] = []

    def desktop_path(self) -> Path:
        return Path.home() / "Desktop"

    def editor_commands(self) -> List[str]:
        return ["code"]

    def browser_commands(self, urls: List[str]) -> List[List[str]]:
        """Private-window browser invocations, tried in order."""
        return []

    def fallback_open(self, url: str) -> List[str]:
        raise LocalActionError(f"browser opening not supported on {platform.system()}")


class WindowsPlatform(Platform):
    editor_processes = ["code.exe"]
    browser_processes = ["chrome.exe", "chromium.exe", "firefox.exe", "msedge.exe"]

    def desktop_path(self) -> Path:
        profile = os.getenv("USERPROFILE")
        if not profile:
            raise LocalActionError("USERPROFILE environment variable not found")
        return Path(profile) / "Desktop"

    def editor_commands(self) -> List[str]:
        commands = ["code", "code.cmd"]
        for env_var, *parts in (
            ("LOCALAPPDATA", "Programs", "Microsoft VS Code", "Code.exe"),
            ("PROGRAMFILES", "Microsoft VS Code", "Code.exe"),
            ("PROGRAMFILES(X86)", "Microsoft VS Code", "Code.exe"),
        ):
            base = os.getenv(env_var)
            if base:
                commands.append(str(Path(base, *parts)))
        return commands

    def browser_commands(self, urls: List[str]) -> List[List[str]]:
        chromes = ["chrome", "chrome.exe"]
        for env_var in ("PROGRAMFILES", "PROGRAMFILES(X86)", "LOCALAPPDATA"):
            base = os.getenv(env_var)
            if base:
                chromes.append(str(Path(base, "Google", "Chrome", "Application", "chrome.exe")))
        return [[chrome, "--incognito", *urls] for chrome in chromes]

    def fallback_open(self, url: str) -> List[str]:
        return ["rundll32", "url.dll,FileProtocolHandler", url]


class LinuxPlatform(Platform):
    editor_processes = ["code"]
    browser_processes = ["google-chrome", "chromium", "firefox", "chrome"]

    def desktop_path(self) -> Path:
        xdg_desktop = os.getenv("XDG_DESKTOP_DIR")
        if xdg_desktop:
            return Path(xdg_desktop)
        return Path.home() / "Desktop"

    def editor_commands(self) -> List[str]:
        return [
            "code",
            "code-insiders",
            "/usr/bin/code",
            "/usr/local/bin/code",
            "/snap/bin/code",
            "/var/lib/flatpak/exports/bin/com.visualstudio.code",
        ]

    def browser_commands(self, urls: List[str]) -> List[List[str]]:
        chromes = ["google-chrome", "google-chrome-stable", "chromium-browser", "chromium"]
        firefoxes = ["firefox", "firefox-esr"]
        return [[c, "--incognito", *urls] for c in chromes] + [
            [f, "--private-window", *urls] for f in firefoxes
        ]

    def fallback_open(self, url: str) -> List[str]:
        return ["xdg-open", url]


class MacPlatform(Platform):
    editor_processes = ["code", "electron"]
    browser_processes = ["google chrome", "chromium", "firefox", "safari"]

    def editor_commands(self) -> List[str]:
        return [
            "code",
            "/Applications/Visual Studio Code.app/Contents/Resources/app/bin/code",
            "/usr/local/bin/code",
        ]

    def browser_commands(self, urls: List[str]) -> List[List[str]]:
        return [["/Applications/Google Chrome.app/Contents/MacOS/Google Chrome", "--incognito", *urls]]

    def fallback_open(self, url: str) -> List[str]:
        return ["open", url]


_PLATFORMS = {
    "Windows": WindowsPlatform,
    "Linux": LinuxPlatform,
    "Darwin": MacPlatform,
}


def detect_platform(system: Optional[str] = None) -> Platform:
    """Pick the Platform implementation for ``system`` (default: this machine)."""
    system = system or platform.system()
    platform_cls = _PLATFORMS.get(system)
    if platform_cls is None:
        logger.warning(f"Unsupported operating system {system}, using generic defaults")
        return Platform()
    return platform_cls()


class LocalActions:
    """
    The actions an agent can run on its own machine.

    Every action is a blocking call that raises LocalActionError on failure;
    the agent runtime runs them off the event loop and reports the outcome.

    Actions:
    - setup: create the workspace folder on the desktop
    - open-vscode: open the workspace folder in VS Code
    - open-chrome: open the configured tabs in a private browser window
    - clear: remove the workspace folder and close editors and browsers
    """

    def __init__(
        self,
        platform_impl: Optional[Platform] = None,
        folder_name: str = DEFAULT_FOLDER_NAME,
        urls: Optional[List[str]] = None,
    ):
        self.platform = platform_impl or detect_platform()
        self.folder_name = folder_name
        self.default_urls = urls or AppConfig.default().urls

    def resolve(self, action: str) -> Optional[Callable[[Optional[List[str]]], None]]:
        """Return the callable for ``action`` or None if it is unknown."""
        handlers: Dict[str, Callable[[Optional[List[str]]], None]] = {
            "setup": lambda urls=None: self.setup(),
            "open-vscode": lambda urls=None: self.open_editor(),
            "open-chrome": lambda urls=None: self.open_browser(urls),
            "clear": lambda urls=None: self.clear(),
        }
        return handlers.get(action)

    def desktop_path(self) -> Path:
        """Desktop directory of the current user, created if missing."""
        try:
            desktop = self.platform.desktop_path()
        except RuntimeError as e:  # Path.home() without a resolvable home
            raise LocalActionError(f"failed to get current user: {e}")
        if not desktop.exists():
            logger.info(f"Desktop directory doesn't exist, creating: {desktop}")
            try:
                desktop.mkdir(parents=True, exist_ok=True)
            except OSError as e:
                raise LocalActionError(f"failed to create desktop directory: {e}")
        return desktop

    def workspace_path(self) -> Path:
        return self.desktop_path() / self.folder_name

    def setup(self) -> Path:
        workspace = self.workspace_path()
        logger.info(f"Creating folder: {workspace}")
        try:
            workspace.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise LocalActionError(f"error creating folder: {e}")
        return workspace

    def open_editor(self):
        workspace = self.workspace_path()
        for command in self.platform.editor_commands():
            if _launch([command, str(workspace)]):
                logger.info(f"VS Code opened with {command}")
                return
        raise LocalActionError("error opening VS Code: VS Code not found in common locations")

    def open_browser(self, urls: Optional[List[str]] = None):
        urls = AppConfig(urls=urls or self.default_urls).normalized().urls
        if not urls:
            raise LocalActionError("error opening browser: no URLs provided")

        for argv in self.platform.browser_commands(urls):
            if _launch(argv):
                logger.info(f"Browser opened with {len(urls)} tab(s) using {argv[0]}")
                return

        # Fall back to the OS URL handler, one tab per URL
        opened = sum(1 for url in urls if _launch(self.platform.fallback_open(url)))
        if not opened:
            raise LocalActionError("error opening browser: no browser could be started")
        logger.info(f"Opened {opened} URL(s) with the default browser")

    def clear(self):
        """Remove the workspace and close editor and browser processes; errors are aggregated."""
        errors = []

        try:
            workspace = self.workspace_path()
            if workspace.exists():
                shutil.rmtree(workspace)
                logger.info(f"{self.folder_name} folder removed: {workspace}")
        except (OSError, LocalActionError) as e:
            errors.append(f"failed to remove {self.folder_name} folder: {e}")

        for label, names in (
            ("VS Code", self.platform.editor_processes),
            ("browser", self.platform.browser_processes),
        ):
            try:
                closed = terminate_processes(names)
                logger.info(f"Closed {closed} {label} process(es)")
            except psutil.Error as e:
                errors.append(f"failed to close {label}: {e}")

        if errors:
            raise LocalActionError(f"clear environment had errors: {errors}")


def terminate_processes(names: List[str]) -> int:
    """
    Terminate every process whose name contains one of ``names``.

    Processes that vanish or cannot be accessed are skipped.

    Returns:
        int: Number of processes signalled
    """
    if not names:
        return 0
    own_pid = os.getpid()
    closed = 0
    for proc in psutil.process_iter(["pid", "name"]):
        name = (proc.info.get("name") or "").lower()
        if proc.info.get("pid") == own_pid or not any(n in name for n in names):
            continue
        try:
            proc.terminate()
            closed += 1
        except (psutil.NoSuchProcess, psutil.AccessDenied):
            continue
    return closed
