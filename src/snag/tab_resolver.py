import re
from typing import Callable, List, NamedTuple, Optional, Tuple

from snag.chrome_tabs import Generation, TabSnapshot
from snag.errors import NoTabMatchError, TabIndexError, ValidationError
from snag.utils.logger import Logger, logger as default_logger

RANGE_PATTERN = re.compile(r"^(\d+)-(\d+)$")
INTEGER_PATTERN = re.compile(r"^\d+$")


class ResolvedTarget(NamedTuple):
    selector: str
    indices: List[int]
    stage: str
    generation: Generation

    @property
    def tabs(self) -> List[TabSnapshot]:
        return [self.generation.at(i) for i in self.indices]

    @property
    def is_range(self) -> bool:
        return self.stage == "range"


Matcher = Callable[[str, Generation], Optional[List[int]]]


def parse_range(selector: str) -> Optional[Tuple[int, int]]:
    """(start, end) for an `a-b` selector, None for anything else.

    Raises:
        ValidationError: start below 1 or start after end
    """
    match = RANGE_PATTERN.match(selector)
    if not match:
        return None
    start, end = int(match.group(1)), int(match.group(2))
    if start < 1:
        raise ValidationError(f"invalid tab range '{selector}': start must be at least 1")
    if start > end:
        raise ValidationError(f"invalid tab range '{selector}': start must not be greater than end")
    return start, end


def match_range(selector: str, generation: Generation) -> Optional[List[int]]:
    bounds = parse_range(selector)
    if bounds is None:
        return None
    start, end = bounds
    for index in range(start, end + 1):
        if not generation.has_index(index):
            raise TabIndexError(index, len(generation))
    return list(range(start, end + 1))


def match_integer(selector: str, generation: Generation) -> Optional[List[int]]:
    if not INTEGER_PATTERN.match(selector):
        return None
    index = int(selector)
    if not generation.has_index(index):
        raise TabIndexError(index, len(generation))
    return [index]


def match_exact(selector: str, generation: Generation) -> Optional[List[int]]:
    wanted = selector.casefold()
    for index, tab in generation.indexed():
        if tab.url.casefold() == wanted:
            return [index]
    return None


def match_substring(selector: str, generation: Generation) -> Optional[List[int]]:
    wanted = selector.casefold()
    for index, tab in generation.indexed():
        if wanted in tab.url.casefold():
            return [index]
    return None


def match_regex(selector: str, generation: Generation) -> Optional[List[int]]:
    try:
        pattern = re.compile(selector, re.IGNORECASE)
    except re.error as e:
        raise ValidationError(f"invalid regex pattern '{selector}': {e}") from e
    for index, tab in generation.indexed():
        if pattern.search(tab.url):
            return [index]
    return None


# Tried in order, the first non-None result wins
MATCHERS: Tuple[Tuple[str, Matcher], ...] = (
    ("range", match_range),
    ("integer", match_integer),
    ("exact", match_exact),
    ("substring", match_substring),
    ("regex", match_regex),
)


def validate_selector(selector: Optional[str]) -> str:
    """Trimmed selector; ranges are checked here too so bad ones fail before any browser work."""
    if selector is None or not selector.strip():
        raise ValidationError("tab selector cannot be empty", suggestion="snag --list-tabs")
    selector = selector.strip()
    parse_range(selector)
    return selector


def resolve_target(selector: str, generation: Generation, logger: Optional[Logger] = None) -> ResolvedTarget:
    """
    Turn a user selector into canonical indices of one generation.

    Args:
        selector: a range (`2-4`), an index (`3`), or a url pattern
        generation: the tabs captured for this operation

    Raises:
        ValidationError: empty selector, malformed range or invalid regex
        TabIndexError: an index or range member outside 1..N
        NoTabMatchError: nothing matched; carries the generation's tabs
    """
    log = logger or default_logger
    selector = validate_selector(selector)

    for stage, matcher in MATCHERS:
        indices = matcher(selector, generation)
        if indices is not None:
            log.debug(f"Selector '{selector}' resolved by {stage} match to {indices}")
            return ResolvedTarget(selector=selector, indices=indices, stage=stage, generation=generation)

    raise NoTabMatchError(selector, generation.tabs)
