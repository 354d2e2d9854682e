import os
import platform
import subprocess
import sys
from pathlib import Path
from typing import Dict, List, Optional

from platformdirs import user_config_dir, user_data_dir
from pydantic import BaseModel, Field
from rich.console import Console

from snag.chrome_cdp import get_browser_version, get_tabs
from snag.chrome_launcher import BROWSER_PATH_ENV_VARS, browser_rule_for, detect_browser_name, find_browser
from snag.errors import BrowserConnectionError, BrowserNotFoundError, BrowserTimeoutError
from snag.utils.constants import DEFAULT_PORT, PORT_PROBE_TIMEOUT, PROJECT_URL
from snag.utils.logger import Logger, logger as default_logger
from snag.utils.version import get_version
from snag.utils.version_check import get_latest_version, is_update_available

LABEL_WIDTH = 20


class PortStatus(BaseModel):
    port: int
    running: bool = False
    tab_count: int = 0
    error: Optional[str] = None


class DoctorReport(BaseModel):
    snag_version: str
    latest_version: Optional[str] = None
    python_version: str
    os: str
    arch: str
    working_dir: str

    browser_name: Optional[str] = None
    browser_path: Optional[str] = None
    browser_version: Optional[str] = None
    browser_error: Optional[str] = None

    profile_path: Optional[str] = None
    profile_exists: bool = False

    default_port_status: Optional[PortStatus] = None
    custom_port_status: Optional[PortStatus] = None

    env_vars: Dict[str, str] = Field(default_factory=dict)


def get_browser_version_output(path: str) -> Optional[str]:
    """What `<browser> --version` prints, or None."""
    try:
        result = subprocess.run([path, "--version"], capture_output=True, text=True, timeout=10)
    except (OSError, subprocess.TimeoutExpired):
        return None
    if result.returncode != 0:
        return None
    return result.stdout.strip() or None


def get_profile_path(browser_path: str) -> Optional[str]:
    """Default profile directory of the detected browser, None when unknown."""
    rule = browser_rule_for(browser_path)
    if rule is None:
        return None
    if platform.system() == "Darwin":
        if not rule.profile_mac:
            return None
        return user_data_dir(rule.profile_mac, appauthor=False)
    if not rule.profile_linux:
        return None
    return user_config_dir(rule.profile_linux, appauthor=False)


async def check_port_connection(port: int) -> PortStatus:
    status = PortStatus(port=port)
    try:
        await get_browser_version(port, timeout=PORT_PROBE_TIMEOUT)
        tabs = await get_tabs(port)
    except (BrowserConnectionError, BrowserTimeoutError) as e:
        status.error = e.message
        return status
    status.running = True
    status.tab_count = len(tabs)
    return status


async def collect_doctor_info(custom_port: Optional[int] = None, logger: Optional[Logger] = None) -> DoctorReport:
    """Gather diagnostics. Never fails: missing pieces are left empty."""
    log = logger or default_logger
    try:
        working_dir = os.getcwd()
    except OSError:
        working_dir = "(unknown)"

    report = DoctorReport(
        snag_version=get_version(),
        python_version=platform.python_version(),
        os=sys.platform,
        arch=platform.machine(),
        working_dir=working_dir,
        env_vars={name: os.environ.get(name, "") for name in BROWSER_PATH_ENV_VARS},
    )

    try:
        with log.suppress():
            path = find_browser(log)
    except BrowserNotFoundError as e:
        report.browser_error = e.message
    else:
        report.browser_path = path
        report.browser_name = detect_browser_name(path)
        report.browser_version = get_browser_version_output(path)
        profile = get_profile_path(path)
        if profile:
            report.profile_path = profile
            report.profile_exists = Path(profile).is_dir()

    report.default_port_status = await check_port_connection(DEFAULT_PORT)
    if custom_port is not None and custom_port != DEFAULT_PORT:
        report.custom_port_status = await check_port_connection(custom_port)

    report.latest_version = get_latest_version()
    return report


def format_item(label: str, value: str) -> str:
    return f"  {label + ':':<{LABEL_WIDTH}} {value}"


def format_check(label: str, value: str, ok: bool) -> str:
    mark = "✓" if ok else "✗"
    return f"  {label + ':':<{LABEL_WIDTH}} {mark} {value}"


def format_section(title: str) -> List[str]:
    return ["", title, "─" * len(title)]


def format_port_status(status: PortStatus) -> str:
    label = f"Port {status.port}"
    if status.running:
        return format_check(label, f"Running ({status.tab_count} tabs open)", True)
    return format_check(label, "Not running", False)


def format_report(report: DoctorReport) -> List[str]:
    lines = ["snag Doctor Report", "==================", PROJECT_URL]

    lines += format_section("Version Information")
    lines.append(format_item("snag version", report.snag_version))
    if report.latest_version:
        if is_update_available(report.snag_version, report.latest_version):
            lines.append(format_item("Latest version", f"{report.latest_version} (update available)"))
        else:
            lines.append(format_item("Latest version", report.latest_version))
    lines.append(format_item("Python version", report.python_version))
    lines.append(format_item("OS/Arch", f"{report.os}/{report.arch}"))

    lines += format_section("Working Directory")
    lines.append(f"  {report.working_dir}")

    lines += format_section("Browser Detection")
    if report.browser_error:
        lines.append(format_check("Detected", "No Chromium-based browser found", False))
        lines.append(format_item("Path", "(none)"))
        lines.append(format_item("Version", "(none)"))
    else:
        lines.append(format_item("Detected", report.browser_name or "(unknown)"))
        lines.append(format_item("Path", report.browser_path or "(none)"))
        lines.append(format_item("Version", report.browser_version or "(unknown)"))

    if report.profile_path:
        lines += format_section("Profile Location")
        lines.append(format_check(report.browser_name or "Browser", report.profile_path, report.profile_exists))

    lines += format_section("Connection Status")
    if report.default_port_status:
        lines.append(format_port_status(report.default_port_status))
    if report.custom_port_status:
        lines.append(format_port_status(report.custom_port_status))

    lines += format_section("Environment Variables")
    for name, value in report.env_vars.items():
        lines.append(format_item(name, value or "(not set)"))
    return lines


def print_report(report: DoctorReport, console: Optional[Console] = None):
    console = console or Console(highlight=False, soft_wrap=True)
    for line in format_report(report):
        console.print(line, markup=False)
