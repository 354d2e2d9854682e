import asyncio
import os
import platform
import re
import shutil
import subprocess
import tempfile
from pathlib import Path
from typing import IO, List, NamedTuple, Optional

from snag.chrome_cdp import get_browser_version
from snag.errors import BrowserConnectionError, BrowserNotFoundError, BrowserTimeoutError, ProcessError
from snag.utils.constants import CONNECT_TIMEOUT, DEFAULT_HOST, REMOTE_DEBUGGING_MARKER
from snag.utils.logger import Logger, logger as default_logger

# Env vars that point straight at a browser binary, checked in order
BROWSER_PATH_ENV_VARS = ("CHROME_PATH", "CHROMIUM_PATH")

# How often the debug endpoint is probed while a launched browser starts
READY_POLL_INTERVAL = 0.2


class BrowserRule(NamedTuple):
    pattern: str
    name: str
    exclude: str
    profile_mac: str
    profile_linux: str


# Order matters: ungoogled before chromium, chrome must not swallow chromium
BROWSER_RULES = (
    BrowserRule("ungoogled", "Ungoogled-Chromium", "", "Chromium", "chromium"),
    BrowserRule("chrome", "Chrome", "chromium", "Google/Chrome", "google-chrome"),
    BrowserRule("chromium", "Chromium", "", "Chromium", "chromium"),
    BrowserRule("msedge", "Edge", "", "Microsoft Edge", "microsoft-edge"),
    BrowserRule("edge", "Edge", "", "Microsoft Edge", "microsoft-edge"),
    BrowserRule("brave", "Brave", "", "BraveSoftware/Brave-Browser", "BraveSoftware/Brave-Browser"),
    BrowserRule("opera", "Opera", "", "com.operasoftware.Opera", "opera"),
    BrowserRule("vivaldi", "Vivaldi", "", "Vivaldi", "vivaldi"),
    BrowserRule("arc", "Arc", "", "Arc", ""),
    BrowserRule("yandex", "Yandex", "", "Yandex/YandexBrowser", "yandex-browser"),
    BrowserRule("thorium", "Thorium", "", "Thorium", "thorium"),
    BrowserRule("slimjet", "Slimjet", "", "Slimjet", "slimjet"),
    BrowserRule("cent", "Cent", "", "CentBrowser", "cent-browser"),
)

MAC_BROWSER_PATHS = [
    "/Applications/Google Chrome.app/Contents/MacOS/Google Chrome",
    "/Applications/Chromium.app/Contents/MacOS/Chromium",
    "/Applications/Microsoft Edge.app/Contents/MacOS/Microsoft Edge",
    "/Applications/Brave Browser.app/Contents/MacOS/Brave Browser",
    "/Applications/Vivaldi.app/Contents/MacOS/Vivaldi",
    "/Applications/Arc.app/Contents/MacOS/Arc",
]

WINDOWS_BROWSER_PATHS = [
    r"%ProgramFiles%\Google\Chrome\Application\chrome.exe",
    r"%ProgramFiles(x86)%\Google\Chrome\Application\chrome.exe",
    r"%LocalAppData%\Google\Chrome\Application\chrome.exe",
    r"%ProgramFiles(x86)%\Microsoft\Edge\Application\msedge.exe",
    r"%ProgramFiles%\Microsoft\Edge\Application\msedge.exe",
    r"%ProgramFiles%\BraveSoftware\Brave-Browser\Application\brave.exe",
    r"%LocalAppData%\Chromium\Application\chrome.exe",
]

# Looked up on PATH, Linux and everything else
BROWSER_EXECUTABLE_NAMES = [
    "google-chrome",
    "google-chrome-stable",
    "chromium",
    "chromium-browser",
    "microsoft-edge",
    "microsoft-edge-stable",
    "brave-browser",
    "brave",
    "vivaldi",
    "chrome",
]


def executable_basename(path: str) -> str:
    """Last path component without `.exe`/`.app`, for either separator style."""
    base = re.split(r"[\\/]", path.rstrip("\\/"))[-1]
    for suffix in (".exe", ".app"):
        if base.lower().endswith(suffix):
            base = base[: -len(suffix)]
    return base


def browser_rule_for(path: str) -> Optional[BrowserRule]:
    lower_name = executable_basename(path).lower()
    for rule in BROWSER_RULES:
        if rule.pattern in lower_name:
            if rule.exclude and rule.exclude in lower_name:
                continue
            return rule
    return None


def detect_browser_name(path: str) -> str:
    """Human readable browser name from an executable path."""
    rule = browser_rule_for(path)
    if rule:
        return rule.name
    base = executable_basename(path)
    if base:
        return base[:1].upper() + base[1:]
    return "Browser"


def is_browser_family(name: str) -> bool:
    """True when a process or executable name belongs to a Chromium-family browser."""
    return browser_rule_for(name) is not None


def candidate_paths() -> List[str]:
    system = platform.system()
    if system == "Darwin":
        return list(MAC_BROWSER_PATHS)
    if system == "Windows":
        return [os.path.expandvars(p) for p in WINDOWS_BROWSER_PATHS]
    return []


def find_browser(logger: Optional[Logger] = None) -> str:
    """
    Locate a Chromium-family executable.

    Env overrides first, then well-known install locations, then PATH.

    Raises:
        BrowserNotFoundError: nothing usable was found
    """
    log = logger or default_logger

    for env_var in BROWSER_PATH_ENV_VARS:
        value = os.environ.get(env_var)
        if not value:
            continue
        if Path(value).is_file():
            log.debug(f"Using browser from {env_var}: {value}")
            return value
        found = shutil.which(value)
        if found:
            log.debug(f"Using browser from {env_var}: {found}")
            return found
        log.warning(f"{env_var} is set but {value} was not found")

    for path in candidate_paths():
        if Path(path).is_file():
            log.debug(f"Found browser at: {path}")
            return path

    for name in BROWSER_EXECUTABLE_NAMES:
        found = shutil.which(name)
        if found:
            log.debug(f"Found browser at: {found}")
            return found

    raise BrowserNotFoundError()


def build_launch_args(
    executable: str,
    port: int,
    headless: bool,
    user_data_dir: str,
    user_agent: Optional[str] = None,
) -> List[str]:
    args = [
        executable,
        f"{REMOTE_DEBUGGING_MARKER}={port}",
        f"--user-data-dir={user_data_dir}",
        "--no-first-run",
        "--no-default-browser-check",
        "--disable-blink-features=AutomationControlled",
    ]
    if headless:
        args.append("--headless=new")
    if user_agent:
        args.append(f"--user-agent={user_agent}")
    return args


class LaunchedBrowser:
    """A browser process started by snag, plus what is needed to clean it up."""

    def __init__(
        self,
        process: subprocess.Popen,
        executable: str,
        port: int,
        headless: bool,
        output_file: IO[bytes],
        temp_profile: Optional[str] = None,
    ):
        self.process = process
        self.executable = executable
        self.port = port
        self.headless = headless
        self.output_file = output_file
        self.temp_profile = temp_profile
        # /json/version payload captured once the browser answered
        self.version_info: dict = {}

    @property
    def pid(self) -> int:
        return self.process.pid

    @property
    def name(self) -> str:
        return detect_browser_name(self.executable)

    def is_running(self) -> bool:
        return self.process.poll() is None

    def output(self) -> str:
        """Everything the browser printed so far."""
        try:
            self.output_file.flush()
            self.output_file.seek(0)
            return self.output_file.read().decode("utf-8", errors="replace").strip()
        except (OSError, ValueError):
            return ""

    def kill(self, logger: Optional[Logger] = None):
        """Force kill the process and remove the temporary profile, if any."""
        log = logger or default_logger
        if self.is_running():
            log.verbose(f"Killing browser process {self.pid}")
            self.process.kill()
            try:
                self.process.wait(timeout=5)
            except subprocess.TimeoutExpired:
                log.warning(f"Browser process {self.pid} did not exit after kill")
        self.cleanup(log)

    def cleanup(self, logger: Optional[Logger] = None):
        log = logger or default_logger
        try:
            self.output_file.close()
        except OSError:
            pass
        if self.temp_profile:
            shutil.rmtree(self.temp_profile, ignore_errors=True)
            if Path(self.temp_profile).exists():
                log.warning(f"Could not remove temporary profile {self.temp_profile}")
            else:
                log.debug(f"Removed temporary profile {self.temp_profile}")
            self.temp_profile = None


async def wait_until_ready(
    browser: LaunchedBrowser,
    host: str = DEFAULT_HOST,
    timeout: float = CONNECT_TIMEOUT,
) -> dict:
    """
    Poll the debug endpoint of a freshly started browser.

    Returns:
        The /json/version payload

    Raises:
        ProcessError: the browser exited first; carries its own output
        BrowserTimeoutError: no answer within `timeout`
    """
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while True:
        if not browser.is_running():
            output = browser.output()
            code = browser.process.returncode
            raise ProcessError(output or f"browser exited with code {code} before it was ready")
        try:
            return await get_browser_version(browser.port, host, timeout=1)
        except (BrowserConnectionError, BrowserTimeoutError):
            pass
        if loop.time() >= deadline:
            raise BrowserTimeoutError(
                f"browser did not open its debug port {browser.port} within {timeout:g}s",
                suggestion=f"snag --kill-browser --port {browser.port}",
            )
        await asyncio.sleep(READY_POLL_INTERVAL)


async def launch_browser(
    port: int,
    headless: bool,
    user_data_dir: Optional[str] = None,
    user_agent: Optional[str] = None,
    executable: Optional[str] = None,
    logger: Optional[Logger] = None,
    timeout: float = CONNECT_TIMEOUT,
) -> LaunchedBrowser:
    """
    Start a browser with remote debugging on `port` and wait for it to answer.

    Without `user_data_dir` a temporary profile is created and removed again
    when the browser is killed.
    """
    log = logger or default_logger
    executable = executable or find_browser(log)

    temp_profile = None
    if not user_data_dir:
        temp_profile = tempfile.mkdtemp(prefix="snag-profile-")
        user_data_dir = temp_profile

    args = build_launch_args(executable, port, headless, user_data_dir, user_agent)
    mode = "headless" if headless else "visible"
    log.verbose(f"Launching {detect_browser_name(executable)} ({mode}) on port {port}")
    log.debug(f"Launch command: {args}")

    output_file = tempfile.TemporaryFile()
    try:
        process = subprocess.Popen(
            args,
            stdout=output_file,
            stderr=subprocess.STDOUT,
            stdin=subprocess.DEVNULL,
            # Own session so a Ctrl+C in the terminal reaches snag only
            start_new_session=True,
        )
    except OSError as e:
        output_file.close()
        if temp_profile:
            shutil.rmtree(temp_profile, ignore_errors=True)
        raise ProcessError(f"failed to start {executable}: {e}") from e

    browser = LaunchedBrowser(process, executable, port, headless, output_file, temp_profile)
    log.debug(f"Browser process started with PID: {process.pid}")

    try:
        browser.version_info = await wait_until_ready(browser, timeout=timeout)
    except (ProcessError, BrowserTimeoutError):
        browser.kill(log)
        raise
    return browser
