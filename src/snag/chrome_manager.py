from enum import Enum
from typing import List, NamedTuple, Optional, Union

from snag.chrome_cdp import CDPConnection, CDPPage, get_browser_version
from snag.chrome_launcher import LaunchedBrowser, detect_browser_name, launch_browser
from snag.chrome_tabs import Generation, TabSnapshot, enumerate_tabs, list_page_targets
from snag.errors import (
    BrowserConnectionError,
    LifecycleWarning,
    NoBrowserRunningError,
    SnagError,
    ValidationError,
)
from snag.types.config import EngineContext, SnagConfig
from snag.utils.constants import CONNECT_TIMEOUT, DEFAULT_HOST, DEFAULT_PORT

# A page handle is an attached DevTools session for one tab
PageHandle = CDPPage


class CloseOutcome(Enum):
    CLOSED = "closed"
    BROWSER_CLOSED = "browser_closed"
    FAILED = "failed"


class EndpointRequest(NamedTuple):
    port: Optional[int] = None
    profile_dir: Optional[str] = None
    user_agent: Optional[str] = None
    force_headless: bool = False
    force_visible: bool = False
    open_browser: bool = False
    allow_launch: bool = True

    @property
    def resolved_port(self) -> int:
        return self.port if self.port is not None else DEFAULT_PORT

    @property
    def headless(self) -> bool:
        return self.force_headless or not (self.open_browser or self.force_visible)

    @classmethod
    def from_config(cls, config: SnagConfig, allow_launch: bool = True) -> "EndpointRequest":
        return cls(
            port=config.port,
            profile_dir=config.user_data_dir,
            user_agent=config.user_agent,
            force_headless=config.force_headless,
            force_visible=config.force_visible,
            open_browser=config.open_browser,
            allow_launch=allow_launch,
        )


def validate_request(request: EndpointRequest):
    if request.force_headless and request.force_visible:
        raise ValidationError("--force-headless and --force-visible cannot be used together")


class BrowserSession:
    """Owns one browser connection and, when snag started it, the browser process."""

    def __init__(
        self,
        ctx: EngineContext,
        connection: CDPConnection,
        port: int,
        launched: Optional[LaunchedBrowser] = None,
        version: str = "Unknown",
    ):
        self.ctx = ctx
        self.logger = ctx.logger
        self.connection = connection
        self.port = port
        self.launched = launched
        self.version = version
        self.generation: Optional[Generation] = None
        self.warnings: List[LifecycleWarning] = []
        self.closed = False

    @property
    def was_launched(self) -> bool:
        return self.launched is not None

    @property
    def headless(self) -> bool:
        return self.launched is not None and self.launched.headless

    def _ensure_open(self):
        if self.closed or self.connection.closed:
            raise BrowserConnectionError("browser session is closed")

    def _warn(self, message: str) -> LifecycleWarning:
        warning = LifecycleWarning(message)
        self.warnings.append(warning)
        self.logger.warning(message)
        return warning

    async def tabs(self) -> Generation:
        """Enumerate tabs into a fresh generation; older snapshots become stale."""
        self._ensure_open()
        self.generation = await enumerate_tabs(self.connection, self.logger)
        return self.generation

    async def page(self, snapshot: TabSnapshot) -> PageHandle:
        self._ensure_open()
        if self.generation is None or not self.generation.owns(snapshot):
            raise ValidationError(f"tab {snapshot.target_id} belongs to an outdated tab listing")
        return await CDPPage.attach(self.connection, snapshot.target_id)

    async def new_page(self, url: str = "about:blank") -> PageHandle:
        self._ensure_open()
        result = await self.connection.send("Target.createTarget", {"url": url})
        target_id = result["targetId"]
        self.logger.debug(f"Created tab {target_id}")
        return await CDPPage.attach(self.connection, target_id)

    async def close_tab(self, target: Union[PageHandle, TabSnapshot]) -> CloseOutcome:
        """
        Close one tab. Never raises.

        When that was the last tab, the browser goes away with it: the outcome is
        BROWSER_CLOSED and this session is closed.
        """
        target_id = target.target_id
        if self.closed or self.connection.closed:
            self._warn(f"Cannot close tab {target_id}: browser session is closed")
            return CloseOutcome.FAILED

        self.logger.verbose("Closing tab...")
        try:
            result = await self.connection.send("Target.closeTarget", {"targetId": target_id})
        except BrowserConnectionError:
            await self._browser_gone()
            return CloseOutcome.BROWSER_CLOSED
        except SnagError as e:
            self._warn(f"Failed to close tab: {e.message}")
            return CloseOutcome.FAILED
        if result.get("success") is False:
            self._warn(f"Failed to close tab {target_id}")
            return CloseOutcome.FAILED

        # closeTarget answers before the target is gone, so it may still be listed
        try:
            remaining = [t for t in await list_page_targets(self.connection) if t != target_id]
        except SnagError as e:
            self.logger.debug(f"Tab count check failed after close: {e}")
            await self._browser_gone()
            return CloseOutcome.BROWSER_CLOSED

        if not remaining:
            self.logger.verbose("Last tab closed, browser closed")
            await self._browser_gone()
            return CloseOutcome.BROWSER_CLOSED

        self.logger.verbose("Tab closed")
        return CloseOutcome.CLOSED

    async def _browser_gone(self):
        """Ask the browser to exit (it may already have) and close the session."""
        if not self.connection.closed:
            try:
                await self.connection.send("Browser.close", timeout=5)
            except SnagError as e:
                self.logger.debug(f"Browser.close: {e}")
        await self.connection.close()
        if self.launched is not None:
            self.launched.kill(self.logger)
        self.closed = True
        self.generation = None

    async def close(self):
        """
        End the session.

        A browser launched headless is killed and its temporary profile removed.
        Visible and attached browsers keep running.
        """
        if self.launched is not None and self.launched.headless:
            self.logger.verbose("Closing headless browser...")
            if not self.closed and not self.connection.closed:
                try:
                    await self.connection.send("Browser.close", timeout=5)
                except SnagError as e:
                    self._warn(f"Failed to close browser: {e.message}")
            self.launched.kill(self.logger)
        elif self.launched is not None:
            self.logger.verbose("Leaving visible browser running")
        elif not self.closed:
            self.logger.verbose("Leaving existing browser instance running")

        await self.connection.close()
        self.closed = True
        self.generation = None


class ChromeManager:
    """Decides between attaching to a running browser and launching one."""

    def __init__(self, ctx: EngineContext, host: str = DEFAULT_HOST, connect_timeout: float = CONNECT_TIMEOUT):
        self.ctx = ctx
        self.logger = ctx.logger
        self.host = host
        self.connect_timeout = connect_timeout

    async def _attach(self, port: int) -> BrowserSession:
        """
        Connect to a browser already listening on `port`.

        Raises:
            BrowserConnectionError: nothing usable on that port
            BrowserTimeoutError: the endpoint accepted but never answered
        """
        self.logger.debug(f"Attempting connection to: http://{self.host}:{port}")
        data = await get_browser_version(port, self.host, timeout=self.connect_timeout)
        ws_url = data["webSocketDebuggerUrl"]
        self.logger.debug(f"Resolved WebSocket URL: {ws_url}")
        connection = await CDPConnection.connect(ws_url, self.logger, timeout=self.connect_timeout)
        return BrowserSession(self.ctx, connection, port, version=data.get("Browser", "Unknown"))

    async def _launch(self, request: EndpointRequest, headless: bool) -> BrowserSession:
        port = request.resolved_port
        if request.user_agent:
            self.logger.verbose(f"Using custom user agent: {request.user_agent}")
        if request.profile_dir:
            self.logger.verbose(f"Using custom user data directory: {request.profile_dir}")

        launched = await launch_browser(
            port=port,
            headless=headless,
            user_data_dir=request.profile_dir,
            user_agent=request.user_agent,
            logger=self.logger,
            timeout=self.connect_timeout,
        )
        data = launched.version_info
        try:
            connection = await CDPConnection.connect(
                data["webSocketDebuggerUrl"], self.logger, timeout=self.connect_timeout
            )
        except SnagError:
            launched.kill(self.logger)
            raise
        return BrowserSession(
            self.ctx, connection, port, launched=launched, version=data.get("Browser", "Unknown")
        )

    def _warn_ignored_options(self, request: EndpointRequest):
        if request.profile_dir:
            self.logger.warning("--user-data-dir ignored (browser already running with its own profile)")
        if request.user_agent:
            self.logger.warning("--user-agent ignored (browser already running with its own user agent)")

    async def connect(self, request: EndpointRequest) -> BrowserSession:
        """
        Attach to the browser on the requested port, or launch one.

        Raises:
            ValidationError: conflicting headless/visible request
            NoBrowserRunningError: nothing to attach to and launching is not allowed
            BrowserNotFoundError: no browser executable to launch
            ProcessError: the launched browser exited before it was ready
            BrowserTimeoutError: the debug endpoint never answered
        """
        validate_request(request)
        port = request.resolved_port

        if not request.force_headless:
            self.logger.verbose(f"Checking for existing browser instance on port {port}...")
            try:
                session = await self._attach(port)
            except BrowserConnectionError as e:
                self.logger.debug(f"Connection failed: {e}")
                self.logger.verbose("No existing browser instance found")
            else:
                if request.open_browser:
                    self.logger.success("Connected to existing browser (visible mode)")
                else:
                    self.logger.success("Connected to existing browser instance")
                self._warn_ignored_options(request)
                return session

            if not request.allow_launch:
                raise NoBrowserRunningError(port)

        headless = request.headless
        if headless:
            self.logger.verbose("Launching browser in headless mode...")
        else:
            self.logger.info("Launching browser in visible mode...")

        session = await self._launch(request, headless)
        name = detect_browser_name(session.launched.executable) if session.launched else "Browser"
        self.logger.success(f"{name} launched in {'headless' if headless else 'visible'} mode")
        return session

    async def open_browser_only(self, request: EndpointRequest) -> BrowserSession:
        """
        Make sure a visible browser is listening on the port and leave it running.

        The returned session must not be closed with the browser: `close()` on
        it only drops the connection.
        """
        validate_request(request)
        port = request.resolved_port

        self.logger.verbose(f"Checking for existing browser instance on port {port}...")
        try:
            session = await self._attach(port)
        except BrowserConnectionError as e:
            self.logger.debug(f"Connection failed: {e}")
        else:
            self.logger.success(f"Browser already running on port {port}")
            self._warn_ignored_options(request)
            self.logger.info("You can connect to it using: snag <url>")
            return session

        session = await self._launch(request, headless=False)
        try:
            await session.connection.send("Target.createTarget", {"url": "about:blank"})
        except SnagError:
            await session.connection.close()
            if session.launched:
                session.launched.kill(self.logger)
            raise

        self.logger.success(f"Browser opened on port {port}")
        self.logger.info("Browser is running with remote debugging enabled")
        self.logger.info("You can now connect to it using: snag <url>")
        return session
