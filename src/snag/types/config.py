from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field

from snag.utils.constants import DEFAULT_FORMAT, DEFAULT_PORT, DEFAULT_TIMEOUT
from snag.utils.logger import Logger, LogLevel


class SnagConfig(BaseModel):
    """Every option a single snag invocation runs with."""

    urls: List[str] = Field(default_factory=list)
    url_file: Optional[str] = None
    output: Optional[str] = None
    output_dir: Optional[str] = None
    format: str = DEFAULT_FORMAT
    timeout: int = DEFAULT_TIMEOUT
    wait_for: Optional[str] = None
    # None means "not given": the default port is used, and kill-browser
    # sweeps every debug browser instead of one port
    port: Optional[int] = None
    close_tab: bool = False
    force_headless: bool = False
    force_visible: bool = False
    open_browser: bool = False
    list_tabs: bool = False
    tab: Optional[str] = None
    all_tabs: bool = False
    kill_browser: bool = False
    doctor: bool = False
    user_agent: Optional[str] = None
    user_data_dir: Optional[str] = None
    log_level: LogLevel = LogLevel.NORMAL

    @property
    def effective_port(self) -> int:
        return self.port if self.port is not None else DEFAULT_PORT

    @property
    def port_given(self) -> bool:
        return self.port is not None


class EngineContext(BaseModel):
    """Configuration and logger handed explicitly to every engine call."""

    model_config = ConfigDict(arbitrary_types_allowed=True)

    config: SnagConfig = Field(default_factory=SnagConfig)
    logger: Logger = Field(default_factory=Logger)
    # Set by signal handlers; batches stop after the item in flight
    stop_requested: bool = False
    batch_active: bool = False
