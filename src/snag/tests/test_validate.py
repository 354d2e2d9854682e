import io
import os

import pytest

from snag.errors import ValidationError
from snag.utils.logger import Logger, LogLevel
from snag.validate import (
    check_extension_mismatch,
    is_non_fetchable_url,
    load_urls_from_file,
    normalize_format,
    validate_directory,
    validate_format,
    validate_output_path,
    validate_output_path_escape,
    validate_port,
    validate_timeout,
    validate_url,
    validate_user_agent,
    validate_user_data_dir,
    validate_wait_for,
)

quiet = Logger(LogLevel.QUIET)


class TestURLs:
    def test_adds_https(self):
        assert validate_url("example.com", quiet) == "https://example.com"

    def test_keeps_scheme(self):
        assert validate_url("http://example.com/a?b=1", quiet) == "http://example.com/a?b=1"
        assert validate_url("file:///tmp/page.html", quiet) == "file:///tmp/page.html"

    @pytest.mark.parametrize("url", ["", "   ", "ftp://example.com", "https://", "javascript://alert(1)"])
    def test_rejected(self, url):
        with pytest.raises(ValidationError):
            validate_url(url, quiet)

    def test_non_fetchable(self):
        assert is_non_fetchable_url("chrome://settings")
        assert is_non_fetchable_url("about:blank")
        assert is_non_fetchable_url("DevTools://devtools/bundled")
        assert is_non_fetchable_url("edge://newtab")
        assert not is_non_fetchable_url("https://example.com")


class TestNumbers:
    def test_timeout(self):
        assert validate_timeout(1) == 1
        with pytest.raises(ValidationError):
            validate_timeout(0)
        with pytest.raises(ValidationError):
            validate_timeout(-5)

    def test_port(self):
        assert validate_port(9222) == 9222
        assert validate_port(1024) == 1024
        assert validate_port(65535) == 65535
        for port in (80, 1023, 65536):
            with pytest.raises(ValidationError):
                validate_port(port)


class TestFormats:
    def test_aliases(self):
        assert normalize_format("Markdown") == "md"
        assert normalize_format(" txt ") == "text"
        assert normalize_format("PDF") == "pdf"

    def test_validate(self):
        for format in ("md", "html", "text", "pdf", "png"):
            assert validate_format(format) == format
        with pytest.raises(ValidationError):
            validate_format("docx")
        with pytest.raises(ValidationError):
            validate_format("")

    def test_extension_mismatch(self):
        stream = io.StringIO()
        logger = Logger(LogLevel.NORMAL, file=stream)
        assert not check_extension_mismatch("out.md", "md", logger)
        assert check_extension_mismatch("out.html", "md", logger)
        assert check_extension_mismatch("out", "pdf", logger)
        assert not check_extension_mismatch("", "md", logger)
        assert "no extension" in stream.getvalue()


class TestPaths:
    def test_output_path(self, tmp_path):
        assert validate_output_path(str(tmp_path / "out.md")) == str(tmp_path / "out.md")

    def test_output_path_is_directory(self, tmp_path):
        with pytest.raises(ValidationError):
            validate_output_path(str(tmp_path))

    def test_output_parent_missing(self, tmp_path):
        with pytest.raises(ValidationError):
            validate_output_path(str(tmp_path / "missing" / "out.md"))

    def test_directory(self, tmp_path):
        assert validate_directory(str(tmp_path)) == str(tmp_path)
        with pytest.raises(ValidationError):
            validate_directory(str(tmp_path / "missing"))
        file = tmp_path / "file.txt"
        file.write_text("x")
        with pytest.raises(ValidationError):
            validate_directory(str(file))

    def test_escape(self, tmp_path):
        validate_output_path_escape(str(tmp_path), "out.md")
        validate_output_path_escape(str(tmp_path), "sub/../out.md")
        validate_output_path_escape(str(tmp_path), os.path.abspath("/elsewhere/out.md"))
        with pytest.raises(ValidationError):
            validate_output_path_escape(str(tmp_path), "../out.md")

    def test_user_data_dir(self, tmp_path, monkeypatch):
        monkeypatch.setenv("HOME", str(tmp_path))
        (tmp_path / "profile").mkdir()
        assert validate_user_data_dir("~/profile", quiet) == str(tmp_path / "profile")
        assert validate_user_data_dir("  ", quiet) is None
        assert validate_user_data_dir(None, quiet) is None
        with pytest.raises(ValidationError):
            validate_user_data_dir(str(tmp_path / "missing"), quiet)


class TestOptionalStrings:
    def test_wait_for(self):
        assert validate_wait_for("  #main ", quiet) == "#main"
        assert validate_wait_for("", quiet) is None
        assert validate_wait_for(None, quiet) is None

    def test_user_agent(self):
        assert validate_user_agent("Agent\n1.0", quiet) == "Agent 1.0"
        assert validate_user_agent("   ", quiet) is None


class TestURLFile:
    def test_loads_urls(self, tmp_path):
        url_file = tmp_path / "urls.txt"
        url_file.write_text(
            "\n".join(
                [
                    "# a comment",
                    "// another comment",
                    "",
                    "https://example.com",
                    "example.org/page  # inline comment",
                    "http://a.example // inline",
                    "not a url without comment",
                    "ftp://bad.example",
                ]
            )
        )
        urls = load_urls_from_file(str(url_file), quiet)
        assert urls == ["https://example.com", "https://example.org/page", "http://a.example"]

    def test_missing_file(self, tmp_path):
        with pytest.raises(ValidationError):
            load_urls_from_file(str(tmp_path / "missing.txt"), quiet)

    def test_no_valid_urls(self, tmp_path):
        url_file = tmp_path / "urls.txt"
        url_file.write_text("# only comments\n\n")
        with pytest.raises(ValidationError):
            load_urls_from_file(str(url_file), quiet)
