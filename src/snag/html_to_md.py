import re
import sys
from pathlib import Path
from typing import IO, Optional

from bs4 import BeautifulSoup
from bs4.element import Comment
from markdownify import markdownify as md

from snag.chrome_cdp import CDPPage
from snag.errors import ConversionError, SnagError
from snag.utils.constants import (
    BINARY_FORMATS,
    FORMAT_HTML,
    FORMAT_MARKDOWN,
    FORMAT_PDF,
    FORMAT_PNG,
    FORMAT_TEXT,
)
from snag.utils.logger import Logger, logger as default_logger

BYTES_PER_KB = 1024.0

# Elements whose content never belongs in Markdown or text output
ELEMENTS_TO_REMOVE = ["script", "style", "noscript", "template", "svg", "canvas", "iframe"]


def clean_html(html: str) -> BeautifulSoup:
    """Parse HTML and drop scripts, styles and comments."""
    soup = BeautifulSoup(html, "html5lib")
    for tag_name in ELEMENTS_TO_REMOVE:
        for element in soup(tag_name):
            element.decompose()
    for comment in soup.find_all(string=lambda text: isinstance(text, Comment)):
        comment.extract()
    return soup


def post_process_markdown(markdown: str) -> str:
    """Trim trailing spaces and collapse runs of blank lines."""
    lines = [line.rstrip() for line in markdown.splitlines()]
    markdown = "\n".join(lines)
    markdown = re.sub(r"\n{3,}", "\n\n", markdown)
    return markdown.strip() + "\n"


def html_to_md(html: str) -> str:
    """
    Convert a full HTML document to Markdown.

    The <head> is dropped; headings use ATX style, tables and strikethrough are kept.

    Raises:
        ConversionError: the HTML could not be converted
    """
    try:
        soup = clean_html(html)
        content = soup.body if soup.body else soup
        markdown = md(
            str(content),
            heading_style="ATX",
            bullets="-",
            escape_misc=False,
        )
    except (ValueError, TypeError, RecursionError) as e:
        raise ConversionError(f"failed to convert HTML to Markdown: {e}") from e
    return post_process_markdown(markdown)


def html_to_text(html: str) -> str:
    """Visible text of the document, one block per line."""
    soup = clean_html(html)
    content = soup.body if soup.body else soup
    text = content.get_text("\n")
    lines = [re.sub(r"[ \t\xa0]+", " ", line).strip() for line in text.splitlines()]
    text = "\n".join(lines)
    text = re.sub(r"\n{3,}", "\n\n", text)
    return text.strip() + "\n"


class ContentConverter:
    """Turns fetched content into the requested format and writes it out.

    Text formats go to stdout unless a file is given. Binary formats always
    need a file; callers generate one when the user did not.
    """

    def __init__(self, format: str, logger: Optional[Logger] = None, stdout: Optional[IO] = None):
        self.format = format
        self.logger = logger or default_logger
        self.stdout = stdout

    @property
    def is_binary(self) -> bool:
        return self.format in BINARY_FORMATS

    def convert(self, html: str) -> str:
        if self.format == FORMAT_HTML:
            self.logger.verbose("Output format: HTML (passthrough)")
            return html
        if self.format == FORMAT_MARKDOWN:
            self.logger.verbose("Converting HTML to Markdown...")
            content = html_to_md(html)
            self.logger.debug(f"Converted to {len(content)} bytes of Markdown")
            return content
        if self.format == FORMAT_TEXT:
            self.logger.verbose("Extracting plain text...")
            content = html_to_text(html)
            self.logger.debug(f"Extracted {len(content)} bytes of plain text")
            return content
        raise ConversionError(f"unsupported format: {self.format}")

    def process(self, html: str, output_file: Optional[str] = None):
        """Convert HTML and write it to `output_file`, or stdout when None."""
        content = self.convert(html)
        if output_file:
            self._write_file(content.encode("utf-8"), output_file)
        else:
            self._write_stdout(content)

    async def process_page(self, page: CDPPage, output_file: Optional[str] = None):
        """Render the page itself (PDF or PNG) and write it."""
        if self.format == FORMAT_PDF:
            self.logger.verbose("Generating PDF...")
            try:
                data = await page.print_to_pdf()
            except SnagError as e:
                raise ConversionError(f"failed to generate PDF: {e.message}") from e
            self.logger.debug(f"Generated {len(data)} bytes of PDF")
        elif self.format == FORMAT_PNG:
            self.logger.verbose("Capturing screenshot...")
            try:
                data = await page.capture_screenshot(full_page=True)
            except SnagError as e:
                raise ConversionError(f"failed to capture screenshot: {e.message}") from e
            self.logger.debug(f"Captured {len(data)} bytes of screenshot")
        else:
            raise ConversionError(f"unsupported binary format: {self.format}")

        if output_file:
            self._write_file(data, output_file)
        else:
            self._write_stdout_binary(data)

    def _write_stdout(self, content: str):
        self.logger.verbose("Writing to stdout...")
        out = self.stdout or sys.stdout
        out.write(content)
        out.flush()
        self.logger.debug(f"Wrote {len(content)} bytes to stdout")

    def _write_stdout_binary(self, data: bytes):
        self.logger.verbose("Writing binary data to stdout...")
        out = self.stdout or sys.stdout
        buffer = getattr(out, "buffer", out)
        buffer.write(data)
        buffer.flush()
        self.logger.debug(f"Wrote {len(data)} bytes to stdout")

    def _write_file(self, data: bytes, filename: str):
        self.logger.verbose(f"Writing to file: {filename}")
        path = Path(filename)
        if path.exists():
            self.logger.verbose(f"Overwriting existing file: {filename}")
        try:
            path.write_bytes(data)
        except OSError as e:
            raise SnagError(f"failed to write to file {filename}: {e.strerror or e}") from e
        size_kb = len(data) / BYTES_PER_KB
        self.logger.success(f"Saved to {filename} ({size_kb:.1f} KB)")
