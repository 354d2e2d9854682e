import socket
import stat
import sys
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Tuple

from snag.errors import BrowserConnectionError, CDPError


class FakeBrowser:
    """In-memory stand-in for a browser-level CDP connection.

    Answers the Target.* and Browser.* commands snag sends and records every
    call. Closing the last page makes the browser exit: later commands fail
    the way a dropped websocket does.
    """

    def __init__(self, tabs: Iterable[Tuple[str, str, str]] = ()):
        self.targets: Dict[str, dict] = {}
        for target_id, url, title in tabs:
            self.add_tab(target_id, url, title)
        self.calls: List[Tuple[str, dict, Optional[str]]] = []
        self.failing_info: set = set()
        self.failing_html: set = set()
        self.closed = False
        self.exited = False
        self._created = 0

    def add_tab(self, target_id: str, url: str, title: str = "", type: str = "page"):
        self.targets[target_id] = {"targetId": target_id, "type": type, "url": url, "title": title}

    def methods(self) -> List[str]:
        return [method for method, _, _ in self.calls]

    def count(self, method: str) -> int:
        return self.methods().count(method)

    async def send(
        self,
        method: str,
        params: Optional[dict] = None,
        session_id: Optional[str] = None,
        timeout: Optional[float] = None,
    ) -> dict:
        if self.closed:
            raise BrowserConnectionError("connection to browser is closed")
        if self.exited:
            self.closed = True
            raise BrowserConnectionError(f"browser connection closed during {method}")
        params = params or {}
        self.calls.append((method, params, session_id))
        handler = getattr(self, "_" + method.replace(".", "_"), None)
        if handler is None:
            return {}
        return handler(params, session_id)

    def drain_events(self, method: str, session_id: Optional[str] = None):
        pass

    async def close(self):
        self.closed = True

    def _Target_getTargets(self, params: dict, session_id: Optional[str]) -> dict:
        return {"targetInfos": [dict(info) for info in self.targets.values()]}

    def _Target_getTargetInfo(self, params: dict, session_id: Optional[str]) -> dict:
        target_id = params["targetId"]
        if target_id in self.failing_info or target_id not in self.targets:
            raise CDPError("Target.getTargetInfo", "No target with given id found", -32602)
        return {"targetInfo": dict(self.targets[target_id])}

    def _Target_attachToTarget(self, params: dict, session_id: Optional[str]) -> dict:
        target_id = params["targetId"]
        if target_id not in self.targets:
            raise CDPError("Target.attachToTarget", "No target with given id found", -32602)
        return {"sessionId": f"session-{target_id}"}

    def _Target_detachFromTarget(self, params: dict, session_id: Optional[str]) -> dict:
        return {}

    def _Target_createTarget(self, params: dict, session_id: Optional[str]) -> dict:
        self._created += 1
        target_id = f"new-{self._created}"
        self.add_tab(target_id, params.get("url", "about:blank"))
        return {"targetId": target_id}

    def _Target_closeTarget(self, params: dict, session_id: Optional[str]) -> dict:
        target_id = params["targetId"]
        if target_id not in self.targets:
            return {"success": False}
        del self.targets[target_id]
        if not any(info["type"] == "page" for info in self.targets.values()):
            self.exited = True
        return {"success": True}

    def _Browser_close(self, params: dict, session_id: Optional[str]) -> dict:
        self.exited = True
        return {}

    def _target_for_session(self, session_id: Optional[str]) -> str:
        return (session_id or "").removeprefix("session-")

    def _DOM_getDocument(self, params: dict, session_id: Optional[str]) -> dict:
        return {"root": {"nodeId": 1}}

    def _DOM_getOuterHTML(self, params: dict, session_id: Optional[str]) -> dict:
        target_id = self._target_for_session(session_id)
        if target_id in self.failing_html:
            raise CDPError("DOM.getOuterHTML", "Could not find node with given id", -32000)
        info = self.targets.get(target_id, {})
        html = f"<html><head><title>{info.get('title', '')}</title></head><body><h1>{info.get('url', '')}</h1></body></html>"
        return {"outerHTML": html}


def write_browser_script(directory: Path, body: str) -> str:
    """An executable Python script that stands in for a browser binary.

    Launch flags are passed through as its argv and ignored.
    """
    script = directory / "fake-chromium"
    script.write_text(f"#!{sys.executable}\n{body}\n")
    script.chmod(script.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
    return str(script)


def unused_port() -> int:
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        sock.bind(("127.0.0.1", 0))
        return sock.getsockname()[1]
