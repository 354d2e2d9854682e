import asyncio
import sys

import pytest

from snag import chrome_launcher
from snag.chrome_cdp import get_browser_version
from snag.chrome_launcher import (
    build_launch_args,
    detect_browser_name,
    executable_basename,
    find_browser,
    is_browser_family,
    launch_browser,
)
from snag.errors import BrowserConnectionError, BrowserNotFoundError, BrowserTimeoutError, ProcessError
from snag.tests.fake_browser import unused_port, write_browser_script
from snag.utils.logger import Logger, LogLevel

quiet = Logger(LogLevel.QUIET)


@pytest.mark.parametrize(
    "path, expected",
    [
        ("/Applications/Google Chrome.app/Contents/MacOS/Google Chrome", "Chrome"),
        ("/usr/bin/google-chrome-stable", "Chrome"),
        ("/usr/bin/chromium-browser", "Chromium"),
        ("/usr/bin/ungoogled-chromium", "Ungoogled-Chromium"),
        (r"C:\Program Files (x86)\Microsoft\Edge\Application\msedge.exe", "Edge"),
        ("/usr/bin/microsoft-edge", "Edge"),
        ("/usr/bin/brave-browser", "Brave"),
        ("/Applications/Vivaldi.app", "Vivaldi"),
        ("/opt/custom/mybrowser", "Mybrowser"),
        ("", "Browser"),
    ],
)
def test_detect_browser_name(path, expected):
    assert detect_browser_name(path) == expected


def test_executable_basename():
    assert executable_basename(r"C:\Apps\chrome.exe") == "chrome"
    assert executable_basename("/usr/bin/chromium/") == "chromium"


def test_is_browser_family():
    assert is_browser_family("chrome")
    assert is_browser_family("Brave Browser")
    assert not is_browser_family("python3")


class TestFindBrowser:
    def test_env_override(self, tmp_path, monkeypatch):
        binary = tmp_path / "my-chrome"
        binary.write_text("")
        monkeypatch.setenv("CHROME_PATH", str(binary))
        assert find_browser(quiet) == str(binary)

    def test_chromium_path_after_chrome_path(self, tmp_path, monkeypatch):
        binary = tmp_path / "chromium"
        binary.write_text("")
        monkeypatch.delenv("CHROME_PATH", raising=False)
        monkeypatch.setenv("CHROMIUM_PATH", str(binary))
        assert find_browser(quiet) == str(binary)

    def test_path_lookup(self, monkeypatch):
        monkeypatch.delenv("CHROME_PATH", raising=False)
        monkeypatch.delenv("CHROMIUM_PATH", raising=False)
        monkeypatch.setattr(chrome_launcher, "candidate_paths", lambda: [])
        monkeypatch.setattr(
            chrome_launcher.shutil, "which", lambda name: "/usr/bin/chromium" if name == "chromium" else None
        )
        assert find_browser(quiet) == "/usr/bin/chromium"

    def test_not_found(self, monkeypatch):
        monkeypatch.delenv("CHROME_PATH", raising=False)
        monkeypatch.delenv("CHROMIUM_PATH", raising=False)
        monkeypatch.setattr(chrome_launcher, "candidate_paths", lambda: [])
        monkeypatch.setattr(chrome_launcher.shutil, "which", lambda name: None)
        with pytest.raises(BrowserNotFoundError):
            find_browser(quiet)


class TestLaunchArgs:
    def test_headless(self):
        args = build_launch_args("/usr/bin/chromium", 9333, True, "/tmp/profile")
        assert args[0] == "/usr/bin/chromium"
        assert "--remote-debugging-port=9333" in args
        assert "--user-data-dir=/tmp/profile" in args
        assert "--headless=new" in args
        assert "--no-first-run" in args
        assert not any(arg.startswith("--user-agent") for arg in args)

    def test_visible_with_user_agent(self):
        args = build_launch_args("chrome", 9222, False, "/tmp/p", user_agent="Agent/1.0")
        assert "--headless=new" not in args
        assert "--user-agent=Agent/1.0" in args


@pytest.mark.skipif(sys.platform == "win32", reason="stand-in browser is a shebang script")
class TestLaunch:
    def test_refused_port_is_a_connection_error(self):
        with pytest.raises(BrowserConnectionError):
            asyncio.run(get_browser_version(unused_port(), timeout=2))

    def test_early_exit_carries_browser_output(self, tmp_path, monkeypatch):
        profile = tmp_path / "profile"
        profile.mkdir()
        monkeypatch.setattr(chrome_launcher.tempfile, "mkdtemp", lambda prefix: str(profile))
        executable = write_browser_script(
            tmp_path, "import sys\nprint('The profile appears to be in use by another process')\nsys.exit(21)"
        )

        with pytest.raises(ProcessError) as exc_info:
            asyncio.run(launch_browser(unused_port(), headless=True, executable=executable, logger=quiet, timeout=10))

        assert exc_info.value.message == "The profile appears to be in use by another process"
        assert not profile.exists()

    def test_silent_exit_reports_exit_code(self, tmp_path):
        executable = write_browser_script(tmp_path, "import sys\nsys.exit(3)")
        profile = tmp_path / "profile"
        profile.mkdir()

        with pytest.raises(ProcessError) as exc_info:
            asyncio.run(
                launch_browser(
                    unused_port(),
                    headless=False,
                    user_data_dir=str(profile),
                    executable=executable,
                    logger=quiet,
                    timeout=10,
                )
            )

        assert "code 3" in exc_info.value.message
        # A profile the user passed is never removed
        assert profile.exists()

    def test_never_ready_times_out_and_kills(self, tmp_path, mocker):
        executable = write_browser_script(tmp_path, "import time\ntime.sleep(60)")
        kill = mocker.spy(chrome_launcher.LaunchedBrowser, "kill")

        with pytest.raises(BrowserTimeoutError) as exc_info:
            asyncio.run(launch_browser(unused_port(), headless=True, executable=executable, logger=quiet, timeout=0.5))

        assert "debug port" in exc_info.value.message
        assert kill.call_count == 1
        browser = kill.call_args.args[0]
        assert not browser.is_running()
