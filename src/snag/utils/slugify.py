import re

from snag.utils.constants import MAX_SLUG_LENGTH


def slugify(text: str | None, max_length: int = MAX_SLUG_LENGTH) -> str:
    """Convert text to a filename safe slug.

    Args:
        text: The text to slugify
        max_length: The maximum length of the slug

    Returns:
        Lowercase runs of a-z and 0-9 joined by single dashes, or "" when
        nothing usable is left
    """
    if not text:
        return ""

    # Everything outside a-z0-9 becomes a single dash
    encoded = re.sub(r"[^a-z0-9]+", "-", text.lower()).strip("-")

    # Truncate, without leaving a dangling dash
    return encoded[:max_length].rstrip("-")
