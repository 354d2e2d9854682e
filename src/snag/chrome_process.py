from typing import List, NamedTuple, Optional, Protocol

import psutil

from snag.chrome_launcher import is_browser_family
from snag.utils.constants import REMOTE_DEBUGGING_MARKER
from snag.utils.logger import Logger, logger as default_logger


class ProcessInfo(NamedTuple):
    pid: int
    name: str
    cmdline: List[str]

    @property
    def has_debug_marker(self) -> bool:
        return any(arg.startswith(REMOTE_DEBUGGING_MARKER) for arg in self.cmdline)


class ProcessPlatform(Protocol):
    """The few OS operations the terminator needs."""

    def list_processes(self) -> List[ProcessInfo]: ...

    def find_listener_pid(self, port: int) -> Optional[int]: ...

    def process_info(self, pid: int) -> Optional[ProcessInfo]: ...

    def kill(self, pid: int) -> None: ...


class PsutilPlatform:
    def list_processes(self) -> List[ProcessInfo]:
        processes = []
        for proc in psutil.process_iter(["pid", "name", "cmdline"]):
            info = proc.info
            processes.append(ProcessInfo(info["pid"], info.get("name") or "", info.get("cmdline") or []))
        return processes

    def find_listener_pid(self, port: int) -> Optional[int]:
        for conn in psutil.net_connections(kind="tcp"):
            if conn.status == psutil.CONN_LISTEN and conn.laddr and conn.laddr.port == port and conn.pid:
                return conn.pid
        return None

    def process_info(self, pid: int) -> Optional[ProcessInfo]:
        try:
            proc = psutil.Process(pid)
            return ProcessInfo(pid, proc.name(), proc.cmdline())
        except (psutil.NoSuchProcess, psutil.AccessDenied):
            return None

    def kill(self, pid: int) -> None:
        psutil.Process(pid).kill()


def _try_kill(platform: ProcessPlatform, proc: ProcessInfo, log: Logger) -> bool:
    try:
        platform.kill(proc.pid)
    except (psutil.Error, OSError) as e:
        log.warning(f"Failed to kill process {proc.pid} ({proc.name}): {e}")
        return False
    log.verbose(f"Killed process {proc.pid} ({proc.name})")
    return True


def kill_browser(
    port: Optional[int] = None,
    platform: Optional[ProcessPlatform] = None,
    logger: Optional[Logger] = None,
) -> int:
    """
    Force kill browsers running with remote debugging. Never raises.

    Args:
        port: only the process listening on this port; None sweeps every
            Chromium-family process that carries the debugging flag
        platform: OS access, psutil by default

    Returns:
        Number of processes killed
    """
    log = logger or default_logger
    platform = platform or PsutilPlatform()

    try:
        if port is not None:
            return _kill_on_port(port, platform, log)
        return _kill_all(platform, log)
    except (psutil.Error, OSError) as e:
        log.warning(f"Could not inspect processes: {e}")
        return 0


def _kill_on_port(port: int, platform: ProcessPlatform, log: Logger) -> int:
    pid = platform.find_listener_pid(port)
    if pid is None:
        log.info(f"No browser running on port {port}")
        return 0

    proc = platform.process_info(pid)
    if proc is None:
        log.info(f"Process {pid} on port {port} is gone")
        return 0
    if not proc.has_debug_marker:
        log.info(f"Process {pid} ({proc.name}) on port {port} is not a debug browser, leaving it alone")
        return 0

    if not _try_kill(platform, proc, log):
        return 0
    log.success(f"Killed browser on port {port} (PID {pid})")
    return 1


def _kill_all(platform: ProcessPlatform, log: Logger) -> int:
    candidates = [
        proc for proc in platform.list_processes() if is_browser_family(proc.name) and proc.has_debug_marker
    ]
    if not candidates:
        log.info("No browser processes with remote debugging found")
        return 0

    killed = sum(1 for proc in candidates if _try_kill(platform, proc, log))
    if killed:
        noun = "process" if killed == 1 else "processes"
        log.success(f"Killed {killed} browser {noun}")
    return killed
