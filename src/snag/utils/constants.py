# Default Chrome remote debugging port
DEFAULT_PORT = 9222
# Host the debug endpoint is reached on; launched browsers only bind loopback
DEFAULT_HOST = "127.0.0.1"
# Default page load timeout in seconds (--timeout)
DEFAULT_TIMEOUT = 30
# Time allowed for the debug endpoint to answer after attach or launch (seconds)
CONNECT_TIMEOUT = 10
# Time allowed for a single CDP command round trip (seconds)
COMMAND_TIMEOUT = 30
# How long to wait for network/DOM activity to settle after navigation (seconds)
STABILIZE_TIMEOUT = 3
# Time allowed for a doctor port probe (seconds)
PORT_PROBE_TIMEOUT = 3
# Command-line flag every debuggable browser carries
REMOTE_DEBUGGING_MARKER = "--remote-debugging-port"
# Default output format
DEFAULT_FORMAT = "md"

FORMAT_MARKDOWN = "md"
FORMAT_HTML = "html"
FORMAT_TEXT = "text"
FORMAT_PDF = "pdf"
FORMAT_PNG = "png"

TEXT_FORMATS = (FORMAT_MARKDOWN, FORMAT_HTML, FORMAT_TEXT)
BINARY_FORMATS = (FORMAT_PDF, FORMAT_PNG)
ALL_FORMATS = TEXT_FORMATS + BINARY_FORMATS

# Tab list display limits
MAX_TAB_LINE_LENGTH = 120
MAX_DISPLAY_URL_LENGTH = 80
# Max length of a title slug in generated filenames
MAX_SLUG_LENGTH = 80

GITHUB_RELEASES_URL = "https://api.github.com/repos/grantcarthew/snag/releases/latest"
PROJECT_URL = "https://github.com/grantcarthew/snag"
