import asyncio
import json
from typing import Optional

from snag.chrome_cdp import CDPPage
from snag.errors import (
    AuthRequiredError,
    BrowserTimeoutError,
    CDPError,
    NavigationError,
    PageLoadTimeoutError,
    ValidationError,
)
from snag.utils.constants import STABILIZE_TIMEOUT
from snag.utils.logger import Logger, logger as default_logger

# Interval between DOM samples while waiting for a page or selector
POLL_INTERVAL = 0.25

NAVIGATION_STATUS_JS = (
    "window.performance?.getEntriesByType?.('navigation')?.[0]?.responseStatus || 0"
)

DOM_STATE_JS = "[document.readyState, document.getElementsByTagName('*').length]"

LOGIN_FORM_JS = """(() => {
    const has = (selector) => document.querySelector(selector) !== null;
    return has("input[type='password']")
        && has("input[type='text'], input[type='email'], input[name*='user'], input[name*='login']")
        && has("button[type='submit'], input[type='submit']");
})()"""

LOGIN_KEYWORDS_TITLE = ("login", "sign in")
LOGIN_KEYWORDS_URL = ("/login", "/signin", "/auth")


def selector_visible_js(selector: str) -> str:
    return f"""(() => {{
    const el = document.querySelector({json.dumps(selector)});
    if (!el) return false;
    const style = window.getComputedStyle(el);
    const rect = el.getBoundingClientRect();
    return style.visibility !== 'hidden' && style.display !== 'none' && rect.width > 0 && rect.height > 0;
}})()"""


async def navigate(page: CDPPage, url: str, timeout: float):
    """
    Navigate and wait for the load event, all within `timeout` seconds.

    Raises:
        NavigationError: the browser reported a navigation failure
        PageLoadTimeoutError: no load event in time
    """
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    await page.enable("Page")
    page.connection.drain_events("Page.loadEventFired", page.session_id)

    try:
        result = await page.send("Page.navigate", {"url": url}, timeout=timeout)
    except BrowserTimeoutError as e:
        raise PageLoadTimeoutError(url, timeout) from e
    except CDPError as e:
        raise NavigationError(f"navigation to {url} failed: {e.message}") from e

    error_text = result.get("errorText")
    if error_text:
        raise NavigationError(f"navigation to {url} failed: {error_text}")

    remaining = max(deadline - loop.time(), 0.1)
    try:
        await page.connection.wait_for_event("Page.loadEventFired", page.session_id, timeout=remaining)
    except BrowserTimeoutError as e:
        raise PageLoadTimeoutError(url, timeout) from e


async def wait_stable(page: CDPPage, timeout: float = STABILIZE_TIMEOUT, logger: Optional[Logger] = None) -> bool:
    """
    Wait until the document is complete and its element count stops changing.

    Best effort: returns False (with a warning) when the page is still busy
    after `timeout` seconds.
    """
    log = logger or default_logger
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    previous_count = -1
    while loop.time() < deadline:
        try:
            ready_state, count = await page.evaluate(DOM_STATE_JS, timeout=timeout)
        except (CDPError, BrowserTimeoutError) as e:
            log.debug(f"DOM sample failed: {e}")
            ready_state, count = "", -1
        if ready_state == "complete" and count == previous_count:
            return True
        previous_count = count
        await asyncio.sleep(POLL_INTERVAL)
    log.warning(f"Page did not stabilize within {timeout:g}s")
    return False


async def wait_for_selector(page: CDPPage, selector: str, timeout: float, logger: Optional[Logger] = None):
    """
    Wait for a CSS selector to match a visible element.

    Raises:
        ValidationError: the selector is not valid CSS
        BrowserTimeoutError: nothing visible matched in time
        CDPError: any other evaluation failure, such as a navigation mid-wait
    """
    log = logger or default_logger
    log.verbose(f"Waiting for selector: {selector}")
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    script = selector_visible_js(selector)
    while True:
        try:
            visible = await page.evaluate(script, timeout=timeout)
        except CDPError as e:
            # querySelector throws a SyntaxError for invalid selectors; anything
            # else (a navigation destroying the context) is not the selector's fault
            if "SyntaxError" not in e.message:
                raise
            raise ValidationError(f"invalid CSS selector '{selector}': {e.message}") from e
        if visible:
            log.verbose(f"Selector found: {selector}")
            return
        if loop.time() >= deadline:
            raise BrowserTimeoutError(
                f"selector {selector} not visible within {timeout:g}s",
                suggestion=f"increase --timeout or check the selector '{selector}'",
            )
        await asyncio.sleep(POLL_INTERVAL)


async def detect_auth(page: CDPPage, logger: Optional[Logger] = None):
    """
    Raise AuthRequiredError on a 401/403 navigation; only warn on login-looking pages.
    """
    log = logger or default_logger
    try:
        status = await page.evaluate(NAVIGATION_STATUS_JS)
    except CDPError as e:
        log.debug(f"Could not read HTTP status: {e}")
        status = 0

    info = await page.info()
    url = info.get("url", "")

    if isinstance(status, int) and status > 0:
        log.debug(f"HTTP status code: {status}")
        if status in (401, 403):
            raise AuthRequiredError(status, url)

    try:
        has_login_form = await page.evaluate(LOGIN_FORM_JS)
    except CDPError:
        has_login_form = False
    if not has_login_form:
        return

    log.debug("Detected login form on page")
    title = info.get("title", "").lower()
    lower_url = url.lower()
    if any(k in title for k in LOGIN_KEYWORDS_TITLE) or any(k in lower_url for k in LOGIN_KEYWORDS_URL):
        log.warning("This appears to be a login page")
        log.error_with_suggestion("Authentication may be required", f"snag --force-visible {url}")


class PageFetcher:
    """Loads a url in a page and returns the rendered HTML."""

    def __init__(self, page: CDPPage, timeout: float, logger: Optional[Logger] = None):
        self.page = page
        self.timeout = timeout
        self.logger = logger or default_logger

    async def fetch(self, url: str, wait_for: Optional[str] = None) -> str:
        """
        Args:
            url: validated url to load
            wait_for: optional CSS selector that must become visible

        Returns:
            The page's outer HTML
        """
        self.logger.progress(f"Fetching {url}...")
        self.logger.verbose(f"Navigating to {url} (timeout: {self.timeout:g}s)...")
        await navigate(self.page, url, self.timeout)

        self.logger.verbose("Waiting for page to stabilize...")
        await wait_stable(self.page, STABILIZE_TIMEOUT, self.logger)

        if wait_for:
            await wait_for_selector(self.page, wait_for, self.timeout, self.logger)

        await detect_auth(self.page, self.logger)

        self.logger.verbose("Extracting HTML content...")
        html = await self.page.html()
        self.logger.debug(f"Extracted {len(html)} bytes of HTML")
        self.logger.success("Fetched successfully")
        return html
