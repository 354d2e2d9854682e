from typing import TYPE_CHECKING, Optional, Sequence

if TYPE_CHECKING:
    from snag.chrome_tabs import TabSnapshot


class SnagError(Exception):
    """Base class for every error snag reports to the user.

    `suggestion` is an optional command or next step printed as "Try: ...".
    """

    def __init__(self, message: str, suggestion: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.suggestion = suggestion


# --- Connection ---


class BrowserConnectionError(SnagError):
    """No reachable debug endpoint, or the connection dropped."""


class BrowserNotFoundError(BrowserConnectionError):
    def __init__(self, message: str = "no Chromium-based browser found"):
        super().__init__(
            message,
            suggestion="install Chrome, Chromium, Edge or Brave, or set CHROME_PATH",
        )


class CDPError(SnagError):
    """The browser answered a DevTools command with an error."""

    def __init__(self, method: str, message: str, code: Optional[int] = None):
        super().__init__(f"{method} failed: {message}")
        self.method = method
        self.code = code


class NoBrowserRunningError(BrowserConnectionError):
    def __init__(self, port: int):
        super().__init__(
            f"no browser instance running with remote debugging on port {port}",
            suggestion=f"snag --open-browser --port {port}",
        )
        self.port = port


# --- Missing resources ---


class ResourceNotFoundError(SnagError):
    pass


class NoTabsError(ResourceNotFoundError):
    def __init__(self):
        super().__init__("no tabs found", suggestion="snag --open-browser")


class TabIndexError(ResourceNotFoundError):
    def __init__(self, index: int, tab_count: int, message: Optional[str] = None):
        super().__init__(
            message or f"tab index {index} out of range (valid range: 1-{tab_count}, {tab_count} tabs open)",
            suggestion="snag --list-tabs",
        )
        self.index = index
        self.tab_count = tab_count


class NoTabMatchError(ResourceNotFoundError):
    def __init__(self, selector: str, tabs: Sequence["TabSnapshot"] = ()):
        super().__init__(f"no tab matches pattern '{selector}'", suggestion="snag --list-tabs")
        self.selector = selector
        self.tabs = list(tabs)


# --- Validation ---


class ValidationError(SnagError):
    """Malformed input: ranges, regexes, flag combinations, paths, URLs."""


# --- Processes and timeouts ---


class ProcessError(SnagError):
    """The browser process failed to start or stay up; message comes from the browser."""


class BrowserTimeoutError(SnagError):
    """A connect, launch or readiness wait ran out of time."""


class PageLoadTimeoutError(BrowserTimeoutError):
    def __init__(self, url: str, timeout: float):
        super().__init__(
            f"page load timeout exceeded ({timeout:g}s) for {url}",
            suggestion=f"snag {url} --timeout {int(timeout) * 2}",
        )


# --- Page level ---


class NavigationError(SnagError):
    pass


class AuthRequiredError(SnagError):
    def __init__(self, status: int, url: str):
        super().__init__(
            f"authentication required (HTTP {status})",
            suggestion=f"snag --force-visible {url}",
        )
        self.status = status


class ConversionError(SnagError):
    pass


class LifecycleWarning(UserWarning):
    """Close or kill problems.

    Logged and never raised: content was already retrieved when these happen.
    """
