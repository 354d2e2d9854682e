import uuid
from typing import Iterable, List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field

from snag.chrome_cdp import CDPConnection
from snag.errors import BrowserConnectionError, BrowserTimeoutError, CDPError, NoTabsError
from snag.utils.constants import MAX_DISPLAY_URL_LENGTH, MAX_TAB_LINE_LENGTH
from snag.utils.logger import Logger, logger as default_logger


class TabSnapshot(BaseModel):
    """A tab as seen by one enumeration. Only meaningful inside its generation."""

    model_config = ConfigDict(frozen=True)

    target_id: str
    url: str = ""
    title: str = ""
    generation_id: str = ""


def sort_key(tab: TabSnapshot) -> Tuple[str, str, str, str]:
    # Case-folded url first: https://a.example/x must sort before https://B.example/y,
    # which plain byte order would reverse. The raw url then keeps case-only
    # differences in a fixed order. Do not reduce this to byte order.
    return (tab.url.casefold(), tab.url, tab.title, tab.target_id)


def sort_tabs(tabs: Iterable[TabSnapshot]) -> List[TabSnapshot]:
    return sorted(tabs, key=sort_key)


class Generation(BaseModel):
    """Every tab captured by one enumeration, in canonical order.

    Canonical indices are 1-based positions in `tabs`.
    """

    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    tabs: Tuple[TabSnapshot, ...] = ()

    @classmethod
    def build(cls, tabs: Iterable[TabSnapshot]) -> "Generation":
        generation_id = uuid.uuid4().hex
        stamped = [tab.model_copy(update={"generation_id": generation_id}) for tab in tabs]
        return cls(id=generation_id, tabs=tuple(sort_tabs(stamped)))

    def __len__(self) -> int:
        return len(self.tabs)

    def at(self, index: int) -> TabSnapshot:
        """Tab at a 1-based canonical index."""
        if index < 1 or index > len(self.tabs):
            raise IndexError(index)
        return self.tabs[index - 1]

    def has_index(self, index: int) -> bool:
        return 1 <= index <= len(self.tabs)

    def owns(self, tab: TabSnapshot) -> bool:
        return tab.generation_id == self.id

    def indexed(self) -> List[Tuple[int, TabSnapshot]]:
        return list(enumerate(self.tabs, start=1))


async def list_page_targets(connection: CDPConnection) -> List[str]:
    """Target ids of every page target, in browser order."""
    result = await connection.send("Target.getTargets")
    return [
        info["targetId"]
        for info in result.get("targetInfos", [])
        if info.get("type") == "page" and info.get("targetId")
    ]


async def enumerate_tabs(connection: CDPConnection, logger: Optional[Logger] = None) -> Generation:
    """
    Capture every open tab into a new generation.

    One metadata request per tab; a tab whose request fails (usually because it
    closed in between) is left out with a warning.

    Raises:
        BrowserConnectionError: the connection is gone
        NoTabsError: no tab could be captured
    """
    log = logger or default_logger
    if connection.closed:
        raise BrowserConnectionError("connection to browser is closed")

    target_ids = await list_page_targets(connection)
    log.debug(f"Found {len(target_ids)} page targets")

    snapshots: List[TabSnapshot] = []
    for target_id in target_ids:
        try:
            result = await connection.send("Target.getTargetInfo", {"targetId": target_id})
        except (CDPError, BrowserTimeoutError) as e:
            log.warning(f"Skipping tab {target_id}: {e}")
            continue
        info = result.get("targetInfo", {})
        snapshots.append(
            TabSnapshot(
                target_id=target_id,
                url=info.get("url", ""),
                title=info.get("title", ""),
            )
        )

    if not snapshots:
        raise NoTabsError()

    generation = Generation.build(snapshots)
    log.debug(f"Tab generation {generation.id[:8]} holds {len(generation)} tabs")
    return generation


def strip_url_params(url: str) -> str:
    return url.split("?", 1)[0].split("#", 1)[0]


def format_tab_line(
    index: int,
    tab: TabSnapshot,
    max_length: int = MAX_TAB_LINE_LENGTH,
    verbose: bool = False,
) -> str:
    """
    One line of the tab listing.

    Normal: `  [N] url (title)`, query and fragment dropped, cut to `max_length`.
    Verbose: `  [N] full-url - title`, never cut.
    """
    prefix = f"  [{index}] "
    if verbose:
        return f"{prefix}{tab.url} - {tab.title}" if tab.title else f"{prefix}{tab.url}"

    display_url = strip_url_params(tab.url)
    if len(display_url) > MAX_DISPLAY_URL_LENGTH:
        display_url = display_url[: MAX_DISPLAY_URL_LENGTH - 3] + "..."
    if not tab.title:
        return f"{prefix}{display_url}"

    title = tab.title
    title_budget = max_length - len(prefix) - len(display_url) - 3
    if len(title) > title_budget and title_budget > 3:
        title = title[: title_budget - 3] + "..."
    return f"{prefix}{display_url} ({title})"


def format_tab_list(generation: Generation, verbose: bool = False) -> List[str]:
    header = f"Available tabs in browser ({len(generation)} tabs, sorted by URL):"
    return [header] + [format_tab_line(index, tab, verbose=verbose) for index, tab in generation.indexed()]
