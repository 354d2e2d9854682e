from datetime import datetime
from pathlib import Path
from typing import Optional
from urllib.parse import urlparse

from snag.errors import SnagError
from snag.utils.constants import FORMAT_HTML, FORMAT_MARKDOWN, FORMAT_PDF, FORMAT_PNG, FORMAT_TEXT
from snag.utils.slugify import slugify

# Give up looking for a free name after this many numbered attempts
MAX_CONFLICT_ATTEMPTS = 10000

FILE_EXTENSIONS = {
    FORMAT_MARKDOWN: ".md",
    FORMAT_HTML: ".html",
    FORMAT_TEXT: ".txt",
    FORMAT_PDF: ".pdf",
    FORMAT_PNG: ".png",
}


def get_file_extension(format: str) -> str:
    return FILE_EXTENSIONS.get(format, ".md")


def url_slug(url: str) -> str:
    """Slug of the url's host, "page" when there is none (file urls)."""
    try:
        netloc = urlparse(url).netloc
    except ValueError:
        return "page"
    host = netloc.rsplit("@", 1)[-1]
    return slugify(host) or "page"


def generate_filename(title: str, format: str, timestamp: datetime, url: str) -> str:
    """
    `yyyy-mm-dd-hhmmss-<slug><ext>`; the slug comes from the title, else the url host.

    >>> generate_filename("Hello, World!", "md", datetime(2025, 1, 2, 3, 4, 5), "https://x.io")
    '2025-01-02-030405-hello-world.md'
    """
    slug = slugify(title) or url_slug(url)
    return f"{timestamp.strftime('%Y-%m-%d-%H%M%S')}-{slug}{get_file_extension(format)}"


def resolve_conflict(directory: str, filename: str) -> str:
    """
    A filename that does not exist yet in `directory`: `name.md`, then `name-1.md`, `name-2.md`...

    Returns the name only, not the full path.
    """
    base = Path(directory)
    if not (base / filename).exists():
        return filename

    path = Path(filename)
    stem, ext = path.stem, path.suffix
    for counter in range(1, MAX_CONFLICT_ATTEMPTS + 1):
        candidate = f"{stem}-{counter}{ext}"
        if not (base / candidate).exists():
            return candidate
    raise SnagError(f"too many conflicts for filename: {filename}")


def generate_output_path(
    title: str,
    url: str,
    format: str,
    timestamp: datetime,
    output_dir: Optional[str] = None,
) -> str:
    directory = output_dir or "."
    filename = resolve_conflict(directory, generate_filename(title, format, timestamp, url))
    return str(Path(directory) / filename)
