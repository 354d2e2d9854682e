import io

from snag.utils.logger import Logger, LogLevel


def make_logger(level):
    stream = io.StringIO()
    return Logger(level, file=stream), stream


class TestLevels:
    def test_quiet_only_shows_errors(self):
        logger, stream = make_logger(LogLevel.QUIET)
        logger.info("info message")
        logger.success("done")
        logger.warning("careful")
        logger.error("broken")
        output = stream.getvalue()
        assert "info message" not in output
        assert "done" not in output
        assert "careful" not in output
        assert "✗ broken" in output

    def test_normal(self):
        logger, stream = make_logger(LogLevel.NORMAL)
        logger.success("done")
        logger.warning("careful")
        logger.verbose("details")
        output = stream.getvalue()
        assert "✓ done" in output
        assert "⚠ careful" in output
        assert "details" not in output

    def test_verbose_and_debug(self):
        logger, stream = make_logger(LogLevel.VERBOSE)
        logger.verbose("details")
        logger.debug("internals")
        assert "details" in stream.getvalue()
        assert "internals" not in stream.getvalue()

        logger.set_level(LogLevel.DEBUG)
        logger.debug("internals")
        assert "[DEBUG] internals" in stream.getvalue()


def test_error_with_suggestion():
    logger, stream = make_logger(LogLevel.QUIET)
    logger.error_with_suggestion("no tabs found", "snag --open-browser")
    lines = stream.getvalue().splitlines()
    assert lines[0] == "✗ no tabs found"
    assert lines[1] == "  Try: snag --open-browser"


def test_markup_is_not_interpreted():
    logger, stream = make_logger(LogLevel.NORMAL)
    logger.info("[bold]literal[/bold] [1] tab")
    assert "[bold]literal[/bold] [1] tab" in stream.getvalue()


def test_suppress():
    logger, stream = make_logger(LogLevel.DEBUG)
    with logger.suppress():
        logger.error("hidden")
    logger.error("shown")
    assert "hidden" not in stream.getvalue()
    assert "shown" in stream.getvalue()
