import asyncio
import base64
import json
from collections import deque
from typing import Any, Deque, Dict, List, Optional

import aiohttp
import websockets
import websockets.exceptions
from pydantic import BaseModel, Field

from snag.errors import BrowserConnectionError, BrowserTimeoutError, CDPError
from snag.utils.constants import COMMAND_TIMEOUT, CONNECT_TIMEOUT, DEFAULT_HOST
from snag.utils.logger import Logger, logger as default_logger

# Timeout for Chrome info retrieval via the HTTP endpoint (seconds)
CHROME_INFO_TIMEOUT = 2

# Max websocket frame; full-page screenshots easily exceed the 1mb default
MAX_MESSAGE_SIZE = 100 * 1024 * 1024

# Buffered events beyond this are dropped oldest first
MAX_BUFFERED_EVENTS = 1000


class ChromeTab(BaseModel):
    id: str
    title: str = Field(default="Untitled")
    url: str = Field(default="about:blank")
    webSocketDebuggerUrl: Optional[str] = None
    devtoolsFrontendUrl: Optional[str] = None


def base_url(port: int, host: str = DEFAULT_HOST) -> str:
    return f"http://{host}:{port}"


async def get_browser_version(port: int, host: str = DEFAULT_HOST, timeout: float = CONNECT_TIMEOUT) -> dict:
    """
    Fetch /json/version from a debug endpoint.

    Raises:
        BrowserConnectionError: nothing answered, or it did not look like a browser
        BrowserTimeoutError: something accepted the connection but never answered
    """
    url = f"{base_url(port, host)}/json/version"
    try:
        async with aiohttp.ClientSession() as session:
            async with session.get(url, timeout=aiohttp.ClientTimeout(total=timeout)) as response:
                if response.status != 200:
                    raise BrowserConnectionError(f"{url} answered HTTP {response.status}")
                data = await response.json(content_type=None)
    except asyncio.TimeoutError as e:
        raise BrowserTimeoutError(f"debug endpoint on port {port} did not answer within {timeout:g}s") from e
    except aiohttp.ClientError as e:
        raise BrowserConnectionError(f"failed to connect to browser on port {port}: {e}") from e
    except json.JSONDecodeError as e:
        raise BrowserConnectionError(f"unexpected response from {url}: {e}") from e

    if not isinstance(data, dict) or not data.get("webSocketDebuggerUrl"):
        raise BrowserConnectionError(f"{url} did not report a webSocketDebuggerUrl")
    return data


async def get_chrome_info(port: int, host: str = DEFAULT_HOST) -> dict:
    """
    Get Chrome version info and check connection via CDP HTTP API.

    Never raises; used for polling and diagnostics.

    Returns:
        dict: {
            "connected": bool indicating if connection succeeded,
            "version": Chrome version string (or "Unknown" if not connected),
            "data": Full response data if connected (or None if not connected)
        }
    """
    result: Dict[str, Any] = {"connected": False, "version": "Unknown", "data": None}
    try:
        data = await get_browser_version(port, host, timeout=CHROME_INFO_TIMEOUT)
        result["connected"] = True
        result["data"] = data
        result["version"] = data.get("Browser", "Unknown")
    except (BrowserConnectionError, BrowserTimeoutError) as e:
        default_logger.debug(f"Error getting Chrome info: {e}")
    return result


async def get_tabs(port: int, host: str = DEFAULT_HOST) -> List[ChromeTab]:
    """
    Get all page tabs via the CDP HTTP API (/json/list).

    Only returns actual page tabs (not DevTools, extensions, service workers).
    Used where a cheap count is enough; tab resolution goes through
    `snag.chrome_tabs.enumerate_tabs` instead.
    """
    url = f"{base_url(port, host)}/json/list"
    try:
        async with aiohttp.ClientSession() as session:
            async with session.get(url, timeout=aiohttp.ClientTimeout(total=CHROME_INFO_TIMEOUT)) as response:
                if response.status != 200:
                    raise BrowserConnectionError(f"failed to list tabs: HTTP {response.status}")
                cdp_tabs_json = await response.json(content_type=None)
    except asyncio.TimeoutError as e:
        raise BrowserTimeoutError(f"listing tabs on port {port} timed out") from e
    except aiohttp.ClientError as e:
        raise BrowserConnectionError(f"failed to connect to Chrome DevTools API: {e}") from e

    tabs = []
    for tab_info in cdp_tabs_json:
        if tab_info.get("type") != "page":
            continue
        tabs.append(
            ChromeTab(
                id=tab_info.get("id"),
                title=tab_info.get("title", "Untitled"),
                url=tab_info.get("url", "about:blank"),
                webSocketDebuggerUrl=tab_info.get("webSocketDebuggerUrl"),
                devtoolsFrontendUrl=tab_info.get("devtoolsFrontendUrl"),
            )
        )
    return tabs


class CDPConnection:
    """A single browser-level DevTools websocket.

    Commands are strictly sequential: `send` writes one command and reads until
    the matching response arrives, buffering any events seen on the way. Page
    commands ride on the same socket through flattened target sessions.
    """

    def __init__(
        self,
        ws,
        ws_url: str,
        logger: Optional[Logger] = None,
        command_timeout: float = COMMAND_TIMEOUT,
    ):
        self._ws = ws
        self.ws_url = ws_url
        self.logger = logger or default_logger
        self.command_timeout = command_timeout
        self._msg_id = 0
        self._events: Deque[dict] = deque(maxlen=MAX_BUFFERED_EVENTS)
        self.closed = False

    @classmethod
    async def connect(
        cls, ws_url: str, logger: Optional[Logger] = None, timeout: float = CONNECT_TIMEOUT
    ) -> "CDPConnection":
        log = logger or default_logger
        log.debug(f"Connecting to browser websocket: {ws_url}")
        try:
            ws = await websockets.connect(
                ws_url,
                open_timeout=timeout,
                close_timeout=2,
                max_size=MAX_MESSAGE_SIZE,
                ping_interval=None,
            )
        except asyncio.TimeoutError as e:
            raise BrowserTimeoutError(f"websocket connection to {ws_url} timed out after {timeout:g}s") from e
        except (OSError, websockets.exceptions.WebSocketException) as e:
            if "403" in str(e):
                raise BrowserConnectionError(
                    "browser rejected the websocket connection; relaunch it with --remote-allow-origins=*"
                ) from e
            raise BrowserConnectionError(f"websocket connection error: {e}") from e
        return cls(ws, ws_url, logger=log)

    async def send(
        self,
        method: str,
        params: Optional[dict] = None,
        session_id: Optional[str] = None,
        timeout: Optional[float] = None,
    ) -> dict:
        """Send one command and return its `result` object."""
        if self.closed:
            raise BrowserConnectionError("connection to browser is closed")

        self._msg_id += 1
        msg_id = self._msg_id
        command: Dict[str, Any] = {"id": msg_id, "method": method}
        if params:
            command["params"] = params
        if session_id:
            command["sessionId"] = session_id

        limit = timeout if timeout is not None else self.command_timeout
        self.logger.debug(f"CDP -> {method} (id={msg_id})")
        try:
            await self._ws.send(json.dumps(command))
            response = await asyncio.wait_for(self._read_until(msg_id), timeout=limit)
        except asyncio.TimeoutError as e:
            raise BrowserTimeoutError(f"{method} timed out after {limit:g}s") from e
        except websockets.exceptions.ConnectionClosed as e:
            self.closed = True
            raise BrowserConnectionError(f"browser connection closed during {method}: {e}") from e

        if "error" in response:
            error = response["error"]
            raise CDPError(method, error.get("message", "unknown error"), error.get("code"))
        return response.get("result", {})

    async def _read_until(self, msg_id: int) -> dict:
        while True:
            response = json.loads(await self._ws.recv())
            if response.get("id") == msg_id:
                return response
            if "method" in response:
                self._events.append(response)

    def drain_events(self, method: str, session_id: Optional[str] = None):
        """Drop buffered events of one kind so a later wait only sees fresh ones."""
        self._events = deque(
            (e for e in self._events if not _event_matches(e, method, session_id)),
            maxlen=MAX_BUFFERED_EVENTS,
        )

    async def wait_for_event(
        self, method: str, session_id: Optional[str] = None, timeout: Optional[float] = None
    ) -> dict:
        """Wait for an event, consuming it. Buffered events are checked first."""
        for event in list(self._events):
            if _event_matches(event, method, session_id):
                self._events.remove(event)
                return event.get("params", {})

        async def _read():
            while True:
                message = json.loads(await self._ws.recv())
                if _event_matches(message, method, session_id):
                    return message.get("params", {})
                if "method" in message:
                    self._events.append(message)

        limit = timeout if timeout is not None else self.command_timeout
        try:
            return await asyncio.wait_for(_read(), timeout=limit)
        except asyncio.TimeoutError as e:
            raise BrowserTimeoutError(f"timed out after {limit:g}s waiting for {method}") from e
        except websockets.exceptions.ConnectionClosed as e:
            self.closed = True
            raise BrowserConnectionError(f"browser connection closed while waiting for {method}") from e

    async def close(self):
        if self.closed:
            return
        self.closed = True
        try:
            await self._ws.close()
        except (OSError, websockets.exceptions.WebSocketException) as e:
            self.logger.debug(f"Error closing websocket: {e}")


def _event_matches(event: dict, method: str, session_id: Optional[str]) -> bool:
    if event.get("method") != method:
        return False
    return session_id is None or event.get("sessionId") == session_id


class CDPPage:
    """One tab, reached through a flattened session on the browser connection."""

    def __init__(self, connection: CDPConnection, target_id: str, session_id: str):
        self.connection = connection
        self.target_id = target_id
        self.session_id = session_id
        self._enabled_domains: set = set()

    @classmethod
    async def attach(cls, connection: CDPConnection, target_id: str) -> "CDPPage":
        result = await connection.send("Target.attachToTarget", {"targetId": target_id, "flatten": True})
        return cls(connection, target_id, result["sessionId"])

    async def send(self, method: str, params: Optional[dict] = None, timeout: Optional[float] = None) -> dict:
        return await self.connection.send(method, params, session_id=self.session_id, timeout=timeout)

    async def enable(self, domain: str):
        if domain not in self._enabled_domains:
            await self.send(f"{domain}.enable")
            self._enabled_domains.add(domain)

    async def info(self) -> dict:
        """Current url and title of the tab."""
        result = await self.connection.send("Target.getTargetInfo", {"targetId": self.target_id})
        return result.get("targetInfo", {})

    async def evaluate(self, expression: str, timeout: Optional[float] = None) -> Any:
        result = await self.send(
            "Runtime.evaluate",
            {"expression": expression, "returnByValue": True, "awaitPromise": True},
            timeout=timeout,
        )
        if "exceptionDetails" in result:
            details = result["exceptionDetails"]
            # "text" is only "Uncaught"; the thrown error is in exception.description
            description = details.get("exception", {}).get("description")
            raise CDPError("Runtime.evaluate", description or details.get("text", "script threw an exception"))
        return result.get("result", {}).get("value")

    async def html(self) -> str:
        """Get outer HTML of the document using DOM.getOuterHTML"""
        await self.enable("DOM")
        doc_result = await self.send("DOM.getDocument", {"depth": 0})
        root_node_id = doc_result.get("root", {}).get("nodeId")
        if not root_node_id:
            raise CDPError("DOM.getDocument", "no root node")
        html_result = await self.send("DOM.getOuterHTML", {"nodeId": root_node_id})
        return html_result.get("outerHTML", "")

    async def print_to_pdf(self) -> bytes:
        result = await self.send("Page.printToPDF", {"printBackground": True})
        return base64.b64decode(result["data"])

    async def capture_screenshot(self, full_page: bool = True) -> bytes:
        params: Dict[str, Any] = {"format": "png"}
        if full_page:
            metrics = await self.send("Page.getLayoutMetrics")
            size = metrics.get("cssContentSize") or metrics.get("contentSize") or {}
            if size.get("width") and size.get("height"):
                params["captureBeyondViewport"] = True
                params["clip"] = {
                    "x": 0,
                    "y": 0,
                    "width": size["width"],
                    "height": size["height"],
                    "scale": 1,
                }
        result = await self.send("Page.captureScreenshot", params)
        return base64.b64decode(result["data"])

    async def detach(self):
        if self.connection.closed:
            return
        await self.connection.send("Target.detachFromTarget", {"sessionId": self.session_id})
