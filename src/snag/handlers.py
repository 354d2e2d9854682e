import os
from contextlib import contextmanager
from datetime import datetime
from typing import List, Optional, Sequence, Tuple

from rich.console import Console

from snag.chrome_manager import BrowserSession, ChromeManager, EndpointRequest, PageHandle
from snag.chrome_process import kill_browser
from snag.chrome_tabs import Generation, TabSnapshot, format_tab_list
from snag.doctor import collect_doctor_info, print_report
from snag.errors import NoTabMatchError, NoTabsError, SnagError, TabIndexError, ValidationError
from snag.fetch import PageFetcher, wait_for_selector
from snag.html_to_md import ContentConverter
from snag.output import generate_output_path
from snag.tab_resolver import resolve_target, validate_selector
from snag.types.config import EngineContext
from snag.utils.constants import BINARY_FORMATS
from snag.utils.logger import LogLevel
from snag.validate import (
    check_extension_mismatch,
    is_non_fetchable_url,
    load_urls_from_file,
    validate_directory,
    validate_url,
)


class BatchFailedError(SnagError):
    def __init__(self, failed: int):
        super().__init__(f"batch processing completed with {failed} failures")
        self.failed = failed


def _plural(n: int) -> str:
    return "" if n == 1 else "s"


def _stdout_console() -> Console:
    return Console(highlight=False, soft_wrap=True)


@contextmanager
def _batch(ctx: EngineContext):
    """Mark a batch as running so a signal stops it between items instead of mid-item."""
    ctx.batch_active = True
    try:
        yield
    finally:
        ctx.batch_active = False


def _should_stop(ctx: EngineContext) -> bool:
    if ctx.stop_requested:
        ctx.logger.warning("Interrupted, stopping batch")
        return True
    return False


def _finish_batch(ctx: EngineContext, succeeded: int, failed: int):
    ctx.logger.success(f"Batch complete: {succeeded} succeeded, {failed} failed")
    if failed:
        raise BatchFailedError(failed)


async def _release(page: PageHandle, ctx: EngineContext):
    """Detach from a tab that stays open."""
    try:
        await page.detach()
    except SnagError as e:
        ctx.logger.debug(f"Detach from {page.target_id} failed: {e}")


async def save_content(
    page: PageHandle,
    converter: ContentConverter,
    output_file: Optional[str],
    html: Optional[str] = None,
):
    """Write a page in the converter's format; HTML is read from the page unless given."""
    if converter.is_binary:
        await converter.process_page(page, output_file)
        return
    if html is None:
        html = await page.html()
    converter.process(html, output_file)


def collect_urls(ctx: EngineContext) -> List[str]:
    """Positional urls followed by the ones from --url-file, validated. Invalid ones are skipped."""
    config = ctx.config
    raw = list(config.urls)
    if config.url_file:
        raw.extend(load_urls_from_file(config.url_file, ctx.logger))

    urls = []
    for url in raw:
        try:
            urls.append(validate_url(url, ctx.logger))
        except ValidationError as e:
            ctx.logger.warning(f"Skipping invalid URL '{url}': {e.message}")
    return urls


def _attach_request(ctx: EngineContext) -> EndpointRequest:
    return EndpointRequest(port=ctx.config.port, allow_launch=False)


async def _tabs_or_none(session: BrowserSession) -> Optional[Generation]:
    try:
        return await session.tabs()
    except NoTabsError:
        return None


def _show_tabs_on_error(ctx: EngineContext, tabs: Sequence[TabSnapshot]):
    if not tabs:
        return
    console = ctx.logger.console
    console.print("", markup=False)
    for line in format_tab_list(Generation(tabs=tuple(tabs))):
        console.print(line, markup=False)
    console.print("", markup=False)


# --- Modes without content ---


async def handle_doctor(ctx: EngineContext):
    report = await collect_doctor_info(ctx.config.port, ctx.logger)
    print_report(report, _stdout_console())


async def handle_kill_browser(ctx: EngineContext) -> int:
    port = ctx.config.port if ctx.config.port_given else None
    return kill_browser(port, logger=ctx.logger)


async def handle_open_browser(ctx: EngineContext):
    ctx.logger.info("Opening browser...")
    config = ctx.config
    request = EndpointRequest(
        port=config.port,
        profile_dir=config.user_data_dir,
        user_agent=config.user_agent,
        force_visible=True,
        open_browser=True,
    )
    session = await ChromeManager(ctx).open_browser_only(request)
    await session.close()


async def handle_open_urls(ctx: EngineContext, urls: List[str]):
    """Open every url in its own tab of a visible browser and leave it running."""
    log = ctx.logger
    if not urls:
        raise ValidationError("no valid URLs to open", suggestion="snag --open-browser https://example.com")

    config = ctx.config
    log.info(f"Opening {len(urls)} valid URL{_plural(len(urls))} in browser...")
    request = EndpointRequest(
        port=config.port,
        profile_dir=config.user_data_dir,
        user_agent=config.user_agent,
        open_browser=True,
    )
    session = await ChromeManager(ctx).connect(request)
    try:
        total = len(urls)
        for current, url in enumerate(urls, start=1):
            log.info(f"[{current}/{total}] Opening: {url}")
            try:
                page = await session.new_page(url)
            except SnagError as e:
                log.error(f"[{current}/{total}] Failed to open: {e.message}")
                continue
            await _release(page, ctx)
            log.success(f"[{current}/{total}] Opened: {url}")
    finally:
        await session.close()

    log.success(f"Browser will remain open with {len(urls)} tabs")
    log.info("Use 'snag --list-tabs' to see opened tabs")
    log.info("Use 'snag --tab <index>' to fetch content from a tab")


async def handle_list_tabs(ctx: EngineContext):
    session = await ChromeManager(ctx).connect(_attach_request(ctx))
    try:
        generation = await _tabs_or_none(session)
    finally:
        await session.close()
    console = _stdout_console()
    if generation is None:
        console.print("No tabs open in browser", markup=False)
        return
    verbose = ctx.logger.level >= LogLevel.VERBOSE
    for line in format_tab_list(generation, verbose=verbose):
        console.print(line, markup=False)


# --- Existing tabs ---


async def _process_tab(
    session: BrowserSession,
    ctx: EngineContext,
    tab: TabSnapshot,
    output_file: Optional[str],
):
    """Write one existing tab, waiting for --wait-for first. Closes it with --close-tab."""
    config = ctx.config
    page = await session.page(tab)
    try:
        if config.wait_for:
            await wait_for_selector(page, config.wait_for, config.timeout, ctx.logger)
        await save_content(page, ContentConverter(config.format, ctx.logger), output_file)
    finally:
        if config.close_tab:
            await session.close_tab(page)
        else:
            await _release(page, ctx)


async def _process_tab_batch(
    session: BrowserSession,
    ctx: EngineContext,
    tabs: Sequence[TabSnapshot],
    output_dir: str,
    skip_non_fetchable: bool = False,
):
    log = ctx.logger
    timestamp = datetime.now()
    succeeded = failed = 0
    total = len(tabs)

    with _batch(ctx):
        for current, tab in enumerate(tabs, start=1):
            if _should_stop(ctx):
                break
            if skip_non_fetchable and is_non_fetchable_url(tab.url):
                log.warning(f"[{current}/{total}] Skipping tab: {tab.url} (not fetchable)")
                continue

            log.info(f"[{current}/{total}] Processing: {tab.url}")
            try:
                path = generate_output_path(tab.title, tab.url, ctx.config.format, timestamp, output_dir)
                if ctx.config.close_tab and current == total:
                    log.verbose("Closing last tab, browser will close")
                await _process_tab(session, ctx, tab, path)
            except SnagError as e:
                log.error(f"[{current}/{total}] Failed: {e.message}")
                failed += 1
                continue
            succeeded += 1

    _finish_batch(ctx, succeeded, failed)


async def handle_all_tabs(ctx: EngineContext):
    output_dir = validate_directory(ctx.config.output_dir or ".")
    session = await ChromeManager(ctx).connect(_attach_request(ctx))
    try:
        generation = await _tabs_or_none(session)
        if generation is None:
            ctx.logger.info("No tabs open in browser")
            return
        ctx.logger.info(f"Processing {len(generation)} tabs...")
        await _process_tab_batch(session, ctx, generation.tabs, output_dir, skip_non_fetchable=True)
    finally:
        await session.close()


async def handle_tab(ctx: EngineContext):
    """Fetch from existing tabs picked by --tab: one tab to stdout or a file, several into a directory."""
    config = ctx.config
    log = ctx.logger
    selector = validate_selector(config.tab)

    session = await ChromeManager(ctx).connect(_attach_request(ctx))
    try:
        generation = await session.tabs()
        try:
            resolved = resolve_target(selector, generation, log)
        except NoTabMatchError as e:
            _show_tabs_on_error(ctx, e.tabs)
            raise
        except TabIndexError:
            _show_tabs_on_error(ctx, generation.tabs)
            raise

        if resolved.is_range:
            if config.output:
                raise ValidationError(
                    "cannot use --output with multiple tabs",
                    suggestion=f"snag --tab {selector} --output-dir <directory>",
                )
            output_dir = validate_directory(config.output_dir or ".")
            log.info(f"Processing {len(resolved.indices)} tabs from range [{selector}]...")
            await _process_tab_batch(session, ctx, resolved.tabs, output_dir)
            return

        index = resolved.indices[0]
        tab = resolved.tabs[0]
        if resolved.stage == "integer":
            log.success(f"Connected to tab [{index}] from sorted order (by URL)")
        else:
            log.success(f"Connected to tab [{index}] matching pattern: {selector}")
        log.info(f"Fetching content from: {tab.url}")

        output_file = _single_output_file(ctx, tab.title, tab.url)
        await _process_tab(session, ctx, tab, output_file)
    finally:
        await session.close()


def _single_output_file(ctx: EngineContext, title: str, url: str) -> Optional[str]:
    """
    Where a single result goes: -o (inside -d when both are given), an auto name
    in -d, an auto name in the current directory for binary formats, else stdout (None).
    """
    config = ctx.config
    if config.output:
        path = os.path.join(config.output_dir, config.output) if config.output_dir else config.output
        check_extension_mismatch(path, config.format, ctx.logger)
        return path

    directory = config.output_dir
    if directory is None and config.format in BINARY_FORMATS:
        directory = "."
    if directory is None:
        return None

    path = generate_output_path(title, url, config.format, datetime.now(), directory)
    if not config.output_dir:
        ctx.logger.info(f"Auto-generated filename: {path}")
    return path


# --- New pages ---


async def handle_url(ctx: EngineContext, url: str):
    """Fetch one url into a new tab."""
    config = ctx.config
    log = ctx.logger
    log.verbose(f"Target URL: {url}")

    session = await ChromeManager(ctx).connect(EndpointRequest.from_config(config))
    try:
        page = await session.new_page()
        try:
            html = await PageFetcher(page, config.timeout, log).fetch(url, config.wait_for)
            title = (await page.info()).get("title", "")
            output_file = _single_output_file(ctx, title, url)
            await save_content(page, ContentConverter(config.format, log), output_file, html=html)
        finally:
            if config.close_tab:
                log.verbose("Cleanup: closing tab and browser if needed")
                await session.close_tab(page)
    finally:
        await session.close()


async def handle_urls(ctx: EngineContext, urls: List[str]):
    """Fetch several urls one after another, each saved under an auto-generated name."""
    config = ctx.config
    log = ctx.logger
    output_dir = validate_directory(config.output_dir or ".")
    log.info(f"Processing {len(urls)} URL{_plural(len(urls))}...")

    session = await ChromeManager(ctx).connect(EndpointRequest.from_config(config))
    try:
        if config.close_tab and session.headless:
            log.warning("--close-tab is ignored in headless mode (tabs close automatically)")
        close_each = config.close_tab or session.headless

        timestamp = datetime.now()
        succeeded = failed = 0
        total = len(urls)
        with _batch(ctx):
            for current, url in enumerate(urls, start=1):
                if _should_stop(ctx):
                    break
                log.info(f"[{current}/{total}] Fetching: {url}")
                ok = await _fetch_to_dir(session, ctx, url, output_dir, timestamp, close_each, (current, total))
                if ok:
                    succeeded += 1
                else:
                    failed += 1
                if session.closed:
                    log.error("Browser closed, stopping batch")
                    failed += total - current
                    break
        _finish_batch(ctx, succeeded, failed)
    finally:
        await session.close()


async def _fetch_to_dir(
    session: BrowserSession,
    ctx: EngineContext,
    url: str,
    output_dir: str,
    timestamp: datetime,
    close_each: bool,
    position: Tuple[int, int],
) -> bool:
    log = ctx.logger
    current, total = position
    try:
        page = await session.new_page()
    except SnagError as e:
        log.error(f"[{current}/{total}] Failed to create page: {e.message}")
        return False

    ok = False
    try:
        html = await PageFetcher(page, ctx.config.timeout, log).fetch(url, ctx.config.wait_for)
        title = (await page.info()).get("title", "")
        path = generate_output_path(title, url, ctx.config.format, timestamp, output_dir)
        await save_content(page, ContentConverter(ctx.config.format, log), path, html=html)
        ok = True
    except SnagError as e:
        log.error(f"[{current}/{total}] Failed: {e.message}")
    finally:
        # Failed pages are always closed; successful ones only when asked
        if close_each or not ok:
            await session.close_tab(page)
        else:
            await _release(page, ctx)
    return ok


async def run(ctx: EngineContext) -> Optional[int]:
    """
    Dispatch to the mode the configuration asks for.

    Returns the number of killed processes for --kill-browser, None otherwise.
    """
    config = ctx.config
    if config.doctor:
        await handle_doctor(ctx)
        return None
    if config.kill_browser:
        return await handle_kill_browser(ctx)

    has_urls = bool(config.urls or config.url_file)
    if config.open_browser and not has_urls:
        await handle_open_browser(ctx)
        return None
    if config.list_tabs:
        await handle_list_tabs(ctx)
        return None
    if config.all_tabs:
        await handle_all_tabs(ctx)
        return None
    if config.tab is not None:
        await handle_tab(ctx)
        return None

    urls = collect_urls(ctx)
    if config.open_browser:
        await handle_open_urls(ctx, urls)
        return None
    if not urls:
        raise ValidationError("no valid URLs to process", suggestion="snag <url>")
    if len(urls) == 1 and not config.url_file:
        await handle_url(ctx, urls[0])
    else:
        await handle_urls(ctx, urls)
    return None
