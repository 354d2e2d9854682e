import asyncio
import io

import pytest

from snag.errors import ConversionError
from snag.html_to_md import ContentConverter, clean_html, html_to_md, html_to_text, post_process_markdown
from snag.utils.logger import Logger, LogLevel

quiet = Logger(LogLevel.QUIET)

PAGE = """<!DOCTYPE html>
<html>
<head><title>Example</title><style>body { color: red; }</style></head>
<body>
  <!-- tracking comment -->
  <h1>Main Title</h1>
  <p>Some <strong>bold</strong> text with a <a href="https://example.com/docs">link</a>.</p>
  <ul><li>first</li><li>second</li></ul>
  <script>console.log("never shown")</script>
  <h2>Section</h2>
  <p>Closing paragraph.</p>
</body>
</html>"""


class TestCleanHTML:
    def test_scripts_styles_and_comments_removed(self):
        soup = clean_html(PAGE)
        assert soup.find("script") is None
        assert soup.find("style") is None
        assert "tracking comment" not in str(soup)


class TestMarkdown:
    def test_headings_links_lists(self):
        markdown = html_to_md(PAGE)
        assert "# Main Title" in markdown
        assert "## Section" in markdown
        assert "**bold**" in markdown
        assert "[link](https://example.com/docs)" in markdown
        assert "- first" in markdown
        assert "- second" in markdown

    def test_head_and_scripts_dropped(self):
        markdown = html_to_md(PAGE)
        assert "never shown" not in markdown
        assert "color: red" not in markdown
        assert "Example" not in markdown

    def test_post_processing(self):
        assert post_process_markdown("a  \n\n\n\n\nb\n\n") == "a\n\nb\n"

    def test_fragment(self):
        assert html_to_md("<p>just text</p>").strip() == "just text"


class TestText:
    def test_visible_text_only(self):
        text = html_to_text(PAGE)
        assert "Main Title" in text
        assert "Closing paragraph." in text
        assert "never shown" not in text
        assert "<p>" not in text
        assert "\n\n\n" not in text


class TestContentConverter:
    def test_markdown_to_stdout(self):
        stdout = io.StringIO()
        ContentConverter("md", quiet, stdout=stdout).process(PAGE)
        assert "# Main Title" in stdout.getvalue()

    def test_html_passthrough(self):
        stdout = io.StringIO()
        ContentConverter("html", quiet, stdout=stdout).process(PAGE)
        assert stdout.getvalue() == PAGE

    def test_write_file(self, tmp_path):
        stream = io.StringIO()
        target = tmp_path / "page.txt"
        ContentConverter("text", Logger(LogLevel.NORMAL, file=stream)).process(PAGE, str(target))
        assert "Main Title" in target.read_text()
        assert f"Saved to {target}" in stream.getvalue()

    def test_binary_formats(self):
        assert ContentConverter("pdf").is_binary
        assert ContentConverter("png").is_binary
        assert not ContentConverter("md").is_binary

    def test_unsupported_text_format(self):
        with pytest.raises(ConversionError):
            ContentConverter("pdf", quiet).convert(PAGE)

    def test_pdf_to_file(self, tmp_path, mocker):
        page = mocker.Mock()
        page.print_to_pdf = mocker.AsyncMock(return_value=b"%PDF-1.4 data")
        target = tmp_path / "page.pdf"
        asyncio.run(ContentConverter("pdf", quiet).process_page(page, str(target)))
        assert target.read_bytes() == b"%PDF-1.4 data"

    def test_png_to_binary_stdout(self, mocker):
        page = mocker.Mock()
        page.capture_screenshot = mocker.AsyncMock(return_value=b"\x89PNG")
        stdout = io.BytesIO()
        asyncio.run(ContentConverter("png", quiet, stdout=stdout).process_page(page))
        assert stdout.getvalue() == b"\x89PNG"
        page.capture_screenshot.assert_awaited_once_with(full_page=True)
