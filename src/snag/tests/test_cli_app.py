import asyncio
import io
import os
import signal

import pytest

from snag import handlers
from snag.cli.app import (
    build_config,
    build_parser,
    exit_code_for_signal,
    log_level_from_args,
    main,
    warn_ignored_flags,
)
from snag.errors import SnagError, ValidationError
from snag.handlers import BatchFailedError
from snag.utils.logger import Logger, LogLevel


def make_logger(level=LogLevel.NORMAL):
    stream = io.StringIO()
    return Logger(level, file=stream), stream


def parse(*argv):
    return build_parser().parse_args(list(argv))


@pytest.fixture
def run(mocker):
    return mocker.patch.object(handlers, "run", new_callable=mocker.AsyncMock, return_value=None)


class TestParser:
    def test_short_flags(self):
        args = parse("-o", "out.md", "-f", "html", "-p", "9333", "-c", "-w", "#main", "https://x.io")
        assert args.output == "out.md"
        assert args.format == "html"
        assert args.port == 9333
        assert args.close_tab
        assert args.wait_for == "#main"
        assert args.urls == ["https://x.io"]

    def test_defaults_are_unset(self):
        args = parse("x.io")
        assert args.format is None
        assert args.timeout is None
        assert args.port is None
        assert args.tab is None

    def test_usage_error_exits_2(self):
        with pytest.raises(SystemExit) as exc_info:
            parse("--timeout", "soon")
        assert exc_info.value.code == 2

    def test_log_levels(self):
        assert log_level_from_args(parse()) == LogLevel.NORMAL
        assert log_level_from_args(parse("--verbose")) == LogLevel.VERBOSE
        assert log_level_from_args(parse("--debug", "--verbose")) == LogLevel.DEBUG
        assert log_level_from_args(parse("-q", "--debug")) == LogLevel.QUIET


class TestBuildConfig:
    def test_normalises(self):
        logger, _ = make_logger()
        config = build_config(parse("-f", "Markdown", "--timeout", "5", "x.io"), logger)
        assert config.format == "md"
        assert config.timeout == 5
        assert config.port is None
        assert config.effective_port == 9222

    @pytest.mark.parametrize(
        "argv",
        [
            ("--force-headless", "--force-visible", "x.io"),
            ("--force-headless", "--open-browser"),
            ("-o", "out.md", "a.io", "b.io"),
            ("--all-tabs", "x.io"),
            ("--tab", "1", "x.io"),
            ("--tab", "1", "--all-tabs"),
            ("--all-tabs", "-o", "out.md"),
            ("-f", "docx", "x.io"),
            ("--timeout", "0", "x.io"),
            ("-p", "80", "x.io"),
        ],
    )
    def test_rejected(self, argv):
        logger, _ = make_logger()
        with pytest.raises(ValidationError):
            build_config(parse(*argv), logger)

    def test_output_inside_output_dir(self, tmp_path):
        logger, _ = make_logger()
        config = build_config(parse("-o", "page.md", "-d", str(tmp_path), "x.io"), logger)
        assert config.output == "page.md"
        assert config.output_dir == str(tmp_path)
        with pytest.raises(ValidationError):
            build_config(parse("-o", "../page.md", "-d", str(tmp_path), "x.io"), logger)


def test_ignored_flag_warnings():
    logger, stream = make_logger()
    warn_ignored_flags(parse("-b", "-f", "pdf", "-c", "x.io"), logger)
    assert "--format ignored with --open-browser" in stream.getvalue()
    assert "--close-tab ignored with --open-browser" in stream.getvalue()

    logger, stream = make_logger()
    warn_ignored_flags(parse("--tab", "1", "--timeout", "5", "--user-agent", "UA"), logger)
    assert "--timeout is ignored without --wait-for" in stream.getvalue()
    assert "--user-agent is ignored with --tab" in stream.getvalue()


class TestMain:
    def test_success(self, run):
        logger, _ = make_logger()
        assert main(["x.io"], logger) == 0
        ctx = run.await_args.args[0]
        assert ctx.config.urls == ["x.io"]

    def test_no_arguments(self, run):
        logger, stream = make_logger()
        assert main([], logger) == 1
        assert "URL argument is required" in stream.getvalue()
        run.assert_not_called()

    def test_invalid_flags(self, run):
        logger, stream = make_logger()
        assert main(["--force-headless", "--force-visible", "x.io"], logger) == 1
        run.assert_not_called()

    def test_error_with_suggestion(self, run):
        run.side_effect = SnagError("no tabs found", suggestion="snag --open-browser")
        logger, stream = make_logger(LogLevel.QUIET)
        assert main(["--list-tabs"], logger) == 1
        assert "✗ no tabs found" in stream.getvalue()
        assert "Try: snag --open-browser" in stream.getvalue()

    def test_failed_batch(self, run):
        run.side_effect = BatchFailedError(2)
        logger, _ = make_logger()
        assert main(["a.io", "b.io"], logger) == 1

    def test_sigterm_cancels_and_exits_143(self, mocker):
        async def interrupted(ctx):
            os.kill(os.getpid(), signal.SIGTERM)
            await asyncio.sleep(5)

        mocker.patch.object(handlers, "run", side_effect=interrupted)
        logger, stream = make_logger()
        assert main(["x.io"], logger) == 143
        assert "Received SIGTERM" in stream.getvalue()

    def test_signal_during_batch_sets_stop_flag(self, mocker):
        seen = {}

        async def batch(ctx):
            ctx.batch_active = True
            os.kill(os.getpid(), signal.SIGTERM)
            await asyncio.sleep(0.05)
            seen["stop"] = ctx.stop_requested

        mocker.patch.object(handlers, "run", side_effect=batch)
        logger, _ = make_logger()
        assert main(["a.io", "b.io"], logger) == 143
        assert seen["stop"] is True


def test_exit_codes_for_signals():
    assert exit_code_for_signal(signal.SIGINT) == 130
    assert exit_code_for_signal(signal.SIGTERM) == 143
