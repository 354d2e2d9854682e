import os
import tempfile
from pathlib import Path
from typing import List, Optional
from urllib.parse import urlparse

from snag.errors import ValidationError
from snag.output import get_file_extension
from snag.utils.constants import ALL_FORMATS, FORMAT_MARKDOWN, FORMAT_TEXT
from snag.utils.logger import Logger, logger as default_logger

VALID_SCHEMES = ("http", "https", "file")

FORMAT_ALIASES = {
    "markdown": FORMAT_MARKDOWN,
    "txt": FORMAT_TEXT,
}

# Browser-internal pages that cannot be fetched
NON_FETCHABLE_PREFIXES = (
    "chrome://",
    "about:",
    "devtools://",
    "chrome-extension://",
    "edge://",
    "brave://",
)

MIN_PORT = 1024
MAX_PORT = 65535


def validate_url(url: str, logger: Optional[Logger] = None) -> str:
    """
    Normalize a url, adding https:// when no scheme is given.

    Raises:
        ValidationError: unsupported scheme or missing host
    """
    log = logger or default_logger
    url = url.strip()
    if not url:
        raise ValidationError("URL cannot be empty", suggestion="snag https://example.com")
    if "://" not in url:
        url = "https://" + url
        log.verbose(f"No scheme provided, using: {url}")

    try:
        parsed = urlparse(url)
    except ValueError as e:
        raise ValidationError(f"invalid URL {url}: {e}", suggestion="snag https://example.com") from e

    if parsed.scheme not in VALID_SCHEMES:
        raise ValidationError(
            f"unsupported URL scheme: {parsed.scheme} (URL must use http://, https://, or file://)",
            suggestion="snag https://example.com",
        )
    if parsed.scheme != "file" and not parsed.netloc:
        raise ValidationError("invalid URL: missing host", suggestion="snag https://example.com")
    return url


def is_non_fetchable_url(url: str) -> bool:
    return url.lower().startswith(NON_FETCHABLE_PREFIXES)


def validate_timeout(timeout: int) -> int:
    if timeout <= 0:
        raise ValidationError(
            f"invalid timeout: {timeout} (must be a positive number of seconds)",
            suggestion="snag <url> --timeout 30",
        )
    return timeout


def validate_port(port: int) -> int:
    # Privileged ports need root and are never used for debugging
    if port < MIN_PORT or port > MAX_PORT:
        raise ValidationError(
            f"invalid port: {port} (must be between {MIN_PORT} and {MAX_PORT})",
            suggestion="snag <url> --port 9222",
        )
    return port


def normalize_format(format: str) -> str:
    format = format.strip().lower()
    return FORMAT_ALIASES.get(format, format)


def validate_format(format: str) -> str:
    if not format:
        raise ValidationError("format cannot be empty", suggestion=f"snag <url> --format {FORMAT_MARKDOWN}")
    if format not in ALL_FORMATS:
        raise ValidationError(
            f"invalid format '{format}'. Supported: {', '.join(ALL_FORMATS)}",
            suggestion=f"snag <url> --format {FORMAT_MARKDOWN}",
        )
    return format


def _check_writable(directory: Path) -> bool:
    try:
        with tempfile.NamedTemporaryFile(dir=directory, prefix=".snag-write-test-"):
            pass
    except OSError:
        return False
    return True


def validate_output_path(path: str) -> str:
    """The output file must be creatable: parent exists and is writable, and it is not a directory."""
    if not path or not path.strip():
        raise ValidationError("output file path cannot be empty", suggestion="snag <url> -o /path/to/output.md")
    target = Path(path)
    if target.is_dir():
        raise ValidationError(
            f"output path is a directory, not a file: {path}",
            suggestion="snag <url> -o /path/to/file.md",
        )
    if target.exists() and not os.access(target, os.W_OK):
        raise ValidationError(f"cannot write to read-only file: {path}", suggestion=f"chmod u+w {path}")

    parent = target.parent
    if not parent.exists():
        raise ValidationError(
            f"output directory does not exist: {parent}",
            suggestion="snag <url> -o /path/to/existing/dir/output.md",
        )
    if not _check_writable(parent):
        raise ValidationError(
            f"cannot write to output directory: {parent}",
            suggestion="snag <url> -o /path/to/writable/dir/output.md",
        )
    return path


def validate_directory(directory: str) -> str:
    path = Path(directory)
    if not path.exists():
        raise ValidationError(
            f"directory does not exist: {directory}",
            suggestion="mkdir -p /path/to/dir && snag <url> -d /path/to/dir",
        )
    if not path.is_dir():
        raise ValidationError(f"not a directory: {directory}")
    if not _check_writable(path):
        raise ValidationError(f"directory not writable: {directory}", suggestion="chmod u+w /path/to/dir")
    return directory


def validate_output_path_escape(output_dir: str, filename: str):
    """Reject a relative `-o` that climbs out of `-d` with `..`."""
    if os.path.isabs(filename):
        return
    abs_dir = os.path.abspath(output_dir)
    abs_path = os.path.abspath(os.path.join(output_dir, filename))
    if not (abs_path + os.sep).startswith(abs_dir + os.sep):
        raise ValidationError(
            f"output path escapes directory: {filename}",
            suggestion="snag <url> -o output.md -d /path/to/dir",
        )


def check_extension_mismatch(output_file: str, format: str, logger: Optional[Logger] = None) -> bool:
    """Warn when the file extension does not match the format. Returns True on mismatch."""
    log = logger or default_logger
    if not output_file:
        return False
    ext = Path(output_file).suffix.lower()
    if ext == get_file_extension(format):
        return False
    if not ext:
        log.warning(f"Writing {format} format to file with no extension: {output_file}")
    else:
        log.warning(f"Writing {format} format to file with {ext} extension: {output_file}")
    return True


def validate_wait_for(selector: Optional[str], logger: Optional[Logger] = None) -> Optional[str]:
    """Trimmed selector; an explicitly empty one is ignored with a warning."""
    log = logger or default_logger
    if selector is None:
        return None
    selector = selector.strip()
    if not selector:
        log.warning("--wait-for is empty, ignoring")
        return None
    return selector


def validate_user_agent(user_agent: Optional[str], logger: Optional[Logger] = None) -> Optional[str]:
    log = logger or default_logger
    if user_agent is None:
        return None
    user_agent = user_agent.strip()
    if not user_agent:
        log.warning("--user-agent is empty, using default user agent")
        return None
    # Newlines would end up in request headers
    return user_agent.replace("\n", " ").replace("\r", " ")


def validate_user_data_dir(path: Optional[str], logger: Optional[Logger] = None) -> Optional[str]:
    """
    Expand `~` and check that the profile directory exists and is writable.

    Returns None (with a warning) for an explicitly empty path.
    """
    log = logger or default_logger
    if path is None:
        return None
    path = path.strip()
    if not path:
        log.warning("--user-data-dir is empty, using default profile")
        return None

    expanded = os.path.expanduser(path)
    target = Path(expanded)
    if not target.exists():
        raise ValidationError(
            f"user data directory does not exist: {expanded}",
            suggestion=f"mkdir -p {expanded} && snag --user-data-dir {expanded} <url>",
        )
    if not target.is_dir():
        raise ValidationError(
            f"path is not a directory: {expanded}",
            suggestion="snag --user-data-dir /path/to/directory <url>",
        )
    if not _check_writable(target) or not os.access(target, os.R_OK):
        raise ValidationError(
            f"permission denied accessing user data directory: {expanded}",
            suggestion=f"chmod u+rw {expanded}",
        )
    return expanded


def load_urls_from_file(filename: str, logger: Optional[Logger] = None) -> List[str]:
    """
    Read urls from a file, one per line.

    `#` and `//` start comments (whole line, or inline after a space). Lines
    with a space and no comment marker are skipped, as are invalid urls.

    Raises:
        ValidationError: the file cannot be read or holds no valid url
    """
    log = logger or default_logger
    try:
        lines = Path(filename).read_text(encoding="utf-8").splitlines()
    except OSError as e:
        raise ValidationError(f"failed to open URL file: {filename} ({e.strerror or e})") from e

    urls = []
    for line_num, raw in enumerate(lines, start=1):
        line = raw.strip()
        if not line or line.startswith(("#", "//")):
            continue

        has_comment = False
        for marker in (" #", " //"):
            idx = line.find(marker)
            if idx != -1:
                line = line[:idx].strip()
                has_comment = True
                break

        if not has_comment and " " in line:
            log.warning(f"Line {line_num}: URL contains space without comment marker - skipping: {line}")
            continue

        if "://" not in line:
            line = "https://" + line

        try:
            validate_url(line, log)
        except ValidationError:
            log.warning(f"Line {line_num}: Invalid URL - skipping: {raw}")
            continue
        urls.append(line)

    if not urls:
        raise ValidationError(f"no valid URLs found in {filename}")

    log.verbose(f"Loaded {len(urls)} URLs from {filename}")
    return urls
