import argparse
import asyncio
import os
import signal
from typing import List, Optional, Sequence

from snag import handlers
from snag.errors import SnagError, ValidationError
from snag.types.config import EngineContext, SnagConfig
from snag.utils.constants import ALL_FORMATS, DEFAULT_FORMAT, DEFAULT_TIMEOUT, PROJECT_URL
from snag.utils.logger import Logger, LogLevel, logger as default_logger
from snag.utils.version import get_version
from snag.validate import (
    normalize_format,
    validate_directory,
    validate_format,
    validate_output_path,
    validate_output_path_escape,
    validate_port,
    validate_timeout,
    validate_user_agent,
    validate_user_data_dir,
    validate_wait_for,
)

EXIT_OK = 0
EXIT_ERROR = 1
EXIT_SIGINT = 130  # 128 + SIGINT
EXIT_SIGTERM = 143  # 128 + SIGTERM

HANDLED_SIGNALS = (signal.SIGINT, signal.SIGTERM)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="snag",
        description="Intelligently fetch web page content with a browser engine",
        epilog=f"Documentation: {PROJECT_URL}",
    )
    parser.add_argument("urls", nargs="*", metavar="URL", help="Page(s) to fetch")
    parser.add_argument("--version", action="version", version=f"snag {get_version()}")

    output = parser.add_argument_group("output")
    output.add_argument("-o", "--output", metavar="FILE", help="Save output to FILE instead of stdout")
    output.add_argument(
        "-d", "--output-dir", metavar="DIRECTORY", help="Save files with auto-generated names to DIRECTORY"
    )
    output.add_argument(
        "-f", "--format", metavar="FORMAT", help=f"Output format: {' | '.join(ALL_FORMATS)} (default: md)"
    )

    loading = parser.add_argument_group("page loading")
    loading.add_argument("--timeout", type=int, metavar="SECONDS", help="Page load timeout (default: 30)")
    loading.add_argument("-w", "--wait-for", metavar="SELECTOR", help="Wait for CSS SELECTOR before extracting")
    loading.add_argument("--url-file", metavar="FILE", help="Read URLs from FILE, one per line")

    browser = parser.add_argument_group("browser")
    browser.add_argument("-p", "--port", type=int, help="Remote debugging port (default: 9222)")
    browser.add_argument("-c", "--close-tab", action="store_true", help="Close the tab after fetching")
    browser.add_argument("--force-headless", action="store_true", help="Always launch a new headless browser")
    browser.add_argument("--force-visible", action="store_true", help="Launch a visible browser for logins")
    browser.add_argument(
        "-b", "--open-browser", action="store_true", help="Open a visible browser (and the given URLs)"
    )
    browser.add_argument("-l", "--list-tabs", action="store_true", help="List open tabs in the browser")
    browser.add_argument("-t", "--tab", metavar="SELECTOR", help="Fetch from existing tab(s): index, range or pattern")
    browser.add_argument("-a", "--all-tabs", action="store_true", help="Fetch every open tab")
    browser.add_argument("--kill-browser", action="store_true", help="Kill browsers running with remote debugging")
    browser.add_argument("--user-agent", metavar="STRING", help="Custom user agent for launched browsers")
    browser.add_argument("--user-data-dir", metavar="DIRECTORY", help="Browser profile directory")

    logging_group = parser.add_argument_group("logging")
    logging_group.add_argument("--verbose", action="store_true", help="Verbose output")
    logging_group.add_argument("-q", "--quiet", action="store_true", help="Only errors and content")
    logging_group.add_argument("--debug", action="store_true", help="Debug output, including CDP traffic")
    logging_group.add_argument("--doctor", action="store_true", help="Print diagnostics and exit")
    return parser


def log_level_from_args(args: argparse.Namespace) -> LogLevel:
    if args.quiet:
        return LogLevel.QUIET
    if args.debug:
        return LogLevel.DEBUG
    if args.verbose:
        return LogLevel.VERBOSE
    return LogLevel.NORMAL


def validate_flag_combinations(args: argparse.Namespace):
    """Reject flag combinations that can never work, before any browser work."""
    if args.force_headless and args.force_visible:
        raise ValidationError("conflicting flags: --force-headless and --force-visible cannot be used together")
    if args.force_headless and args.open_browser:
        raise ValidationError("conflicting flags: --force-headless and --open-browser cannot be used together")
    if args.all_tabs and args.tab is not None:
        raise ValidationError("conflicting flags: --all-tabs and --tab", suggestion="snag --tab <selector>")

    has_urls = bool(args.urls or args.url_file)
    if args.all_tabs and has_urls:
        raise ValidationError(
            "cannot use --all-tabs with URL arguments",
            suggestion="snag --all-tabs --output-dir <directory>",
        )
    if args.tab is not None and has_urls:
        raise ValidationError(
            "cannot use --tab with URL arguments",
            suggestion="use either --tab to fetch from an existing tab or a URL to fetch a new page",
        )

    if args.output and not args.open_browser:
        if len(args.urls) > 1 or args.url_file:
            raise ValidationError(
                "cannot use --output with multiple URLs",
                suggestion="snag --output-dir <directory> <url> <url>",
            )
        if args.all_tabs:
            raise ValidationError(
                "cannot use --output with multiple tabs",
                suggestion="snag --all-tabs --output-dir <directory>",
            )


def warn_ignored_flags(args: argparse.Namespace, logger: Logger):
    has_urls = bool(args.urls or args.url_file)
    if args.open_browser and has_urls:
        ignored = [
            ("--output", args.output),
            ("--output-dir", args.output_dir),
            ("--format", args.format),
            ("--timeout", args.timeout),
            ("--wait-for", args.wait_for),
            ("--close-tab", args.close_tab),
        ]
        for flag, value in ignored:
            if value:
                logger.warning(f"{flag} ignored with --open-browser (no content fetching)")
        return

    if args.tab is not None or args.all_tabs:
        mode = "--tab" if args.tab is not None else "--all-tabs"
        if args.user_agent is not None:
            logger.warning(f"--user-agent is ignored with {mode} (cannot change existing tabs' user agents)")
        if args.user_data_dir is not None:
            logger.warning("--user-data-dir ignored when connecting to existing browser")
        if args.timeout is not None and not args.wait_for:
            logger.warning(f"--timeout is ignored without --wait-for when using {mode}")


def build_config(args: argparse.Namespace, logger: Logger) -> SnagConfig:
    """
    Validate and normalise parsed arguments into a SnagConfig.

    Raises:
        ValidationError: any invalid flag value or combination
    """
    validate_flag_combinations(args)

    format = validate_format(normalize_format(args.format if args.format is not None else DEFAULT_FORMAT))
    timeout = validate_timeout(args.timeout if args.timeout is not None else DEFAULT_TIMEOUT)
    port = validate_port(args.port) if args.port is not None else None

    output = args.output.strip() if args.output else None
    output_dir = args.output_dir.strip() if args.output_dir is not None else None
    if output_dir is not None:
        output_dir = validate_directory(output_dir or ".")
    if output:
        if output_dir:
            validate_output_path_escape(output_dir, output)
            validate_output_path(os.path.join(output_dir, output))
        else:
            validate_output_path(output)

    return SnagConfig(
        urls=list(args.urls),
        url_file=args.url_file,
        output=output,
        output_dir=output_dir,
        format=format,
        timeout=timeout,
        wait_for=validate_wait_for(args.wait_for, logger),
        port=port,
        close_tab=args.close_tab,
        force_headless=args.force_headless,
        force_visible=args.force_visible,
        open_browser=args.open_browser,
        list_tabs=args.list_tabs,
        tab=args.tab,
        all_tabs=args.all_tabs,
        kill_browser=args.kill_browser,
        doctor=args.doctor,
        user_agent=validate_user_agent(args.user_agent, logger),
        user_data_dir=validate_user_data_dir(args.user_data_dir, logger),
        log_level=log_level_from_args(args),
    )


def has_work(config: SnagConfig) -> bool:
    return bool(
        config.urls
        or config.url_file
        or config.doctor
        or config.kill_browser
        or config.open_browser
        or config.list_tabs
        or config.all_tabs
        or config.tab is not None
    )


def report_error(error: SnagError, logger: Logger):
    if error.suggestion:
        logger.error_with_suggestion(error.message, error.suggestion)
    else:
        logger.error(error.message)


async def run_with_signals(ctx: EngineContext, received: List[int]):
    """
    Run the engine with SIGINT/SIGTERM handlers installed.

    During a batch the first signal only sets `ctx.stop_requested`; otherwise,
    or on a second signal, the engine task is cancelled and its cleanup runs.
    """
    loop = asyncio.get_running_loop()
    task = asyncio.current_task()

    def on_signal(signum: int):
        received.append(signum)
        ctx.logger.warning(f"Received {signal.Signals(signum).name}, cleaning up...")
        if ctx.batch_active and not ctx.stop_requested:
            ctx.stop_requested = True
            return
        ctx.stop_requested = True
        task.cancel()

    installed = []
    for signum in HANDLED_SIGNALS:
        try:
            loop.add_signal_handler(signum, on_signal, signum)
        except (NotImplementedError, RuntimeError):
            # No loop signal support on Windows; Ctrl+C arrives as KeyboardInterrupt
            continue
        installed.append(signum)

    try:
        return await handlers.run(ctx)
    finally:
        for signum in installed:
            loop.remove_signal_handler(signum)


def exit_code_for_signal(signum: int) -> int:
    return EXIT_SIGTERM if signum == signal.SIGTERM else EXIT_SIGINT


def main(argv: Optional[Sequence[str]] = None, logger: Optional[Logger] = None) -> int:
    """
    Parse arguments, run the requested mode and return the process exit code.

    argparse exits with 2 by itself on usage errors.
    """
    log = logger or default_logger
    args = build_parser().parse_args(argv)
    log.set_level(log_level_from_args(args))

    try:
        config = build_config(args, log)
    except SnagError as e:
        report_error(e, log)
        return EXIT_ERROR

    if not has_work(config):
        report_error(ValidationError("URL argument is required", suggestion="snag <url>"), log)
        return EXIT_ERROR

    warn_ignored_flags(args, log)
    log.debug(f"Config: format={config.format}, timeout={config.timeout}, port={config.effective_port}")

    ctx = EngineContext(config=config, logger=log)
    received: List[int] = []
    code = EXIT_OK
    try:
        asyncio.run(run_with_signals(ctx, received))
    except SnagError as e:
        report_error(e, log)
        code = EXIT_ERROR
    except asyncio.CancelledError:
        code = EXIT_SIGINT
    except KeyboardInterrupt:
        return EXIT_SIGINT

    if received:
        return exit_code_for_signal(received[0])
    return code
