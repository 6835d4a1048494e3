from __future__ import annotations

import base64
import json
import logging
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Sequence

from .http_client import HistoryEntry
from .models import MinimizeResult, ReplaySession, RequestDescriptor, RequestSpec, ResponseSnapshot


logger = logging.getLogger(__name__)


class ReplayWorkspace:
    """保存最小化后的请求，每个请求一个 replay 会话。

    同时实现请求查找接口，已最小化的会话可以再次作为输入。
    """

    def __init__(self, prefix: str = "replay"):
        self.prefix = prefix
        self.sessions: Dict[str, ReplaySession] = {}

    def create_session(self, spec: RequestSpec) -> Optional[ReplaySession]:
        session = ReplaySession(id=f"{self.prefix}-{len(self.sessions) + 1}", request=spec)
        self.sessions[session.id] = session
        logger.debug("已创建 replay 会话 %s", session.id)
        return session

    def get(self, session_id: str) -> Optional[RequestDescriptor]:
        session = self.sessions.get(session_id)
        if session is None:
            return None
        return RequestDescriptor.from_spec(session.id, session.request)


def _har_body(body: Optional[bytes], mime_type: str) -> Dict[str, Any]:
    try:
        return {"mimeType": mime_type, "text": body.decode("utf-8") if body else ""}
    except UnicodeDecodeError:
        return {"mimeType": mime_type, "text": base64.b64encode(body).decode("ascii"), "encoding": "base64"}


def _har_request(spec: RequestSpec) -> Dict[str, Any]:
    query = spec.path.partition("?")[2]
    block: Dict[str, Any] = {
        "method": spec.method,
        "url": spec.url,
        "httpVersion": "HTTP/1.1",
        "headers": [{"name": name, "value": value} for name, value in spec.headers],
        "queryString": [
            {"name": name, "value": value}
            for name, _, value in (segment.partition("=") for segment in query.split("&") if segment)
        ],
        "cookies": [],
        "headersSize": -1,
        "bodySize": len(spec.body or b""),
    }
    if spec.body is not None:
        content_type = next((v for n, v in spec.headers if n.lower() == "content-type"), "")
        block["postData"] = _har_body(spec.body, content_type)
    return block


def _har_response(response: Optional[ResponseSnapshot]) -> Dict[str, Any]:
    if response is None:
        return {"status": 0, "statusText": "", "headers": [], "content": {"size": 0, "mimeType": ""}}
    mime_type = response.header("content-type") or ""
    content = _har_body(response.body, mime_type)
    content["size"] = response.length
    return {
        "status": response.status_code,
        "statusText": "",
        "httpVersion": "HTTP/1.1",
        "headers": [{"name": name, "value": value} for name, value in response.headers.items()],
        "cookies": [],
        "content": content,
        "redirectURL": response.header("location") or "",
        "headersSize": -1,
        "bodySize": response.length,
    }


class HarExporter:
    def __init__(self, creator: str = "squash"):
        self.creator = creator
        self.entries: List[Dict[str, Any]] = []

    def add_results(self, results: Iterable[MinimizeResult]) -> None:
        for result in results:
            if result.request is None or not result.ok:
                continue
            entry = {
                "request": _har_request(result.request),
                "response": _har_response(result.response),
                "_minimized": {
                    "source_request": result.request_id,
                    "session_id": result.session_id,
                    "status": result.kind,
                    "final_status_code": result.status_code,
                    "stats": result.stats.as_dict(),
                },
            }
            self.entries.append(entry)

    def add_history(self, history: Sequence[HistoryEntry]) -> None:
        for item in history:
            self.entries.append({"request": _har_request(item.request), "response": _har_response(item.response)})

    def to_dict(self) -> Dict[str, Any]:
        return {"log": {"version": "1.2", "creator": {"name": self.creator, "version": "1.0"}, "entries": self.entries}}

    def write(self, path: str) -> None:
        target = Path(path)
        if target.parent and not target.parent.exists():
            target.parent.mkdir(parents=True, exist_ok=True)
        target.write_text(json.dumps(self.to_dict(), indent=2, ensure_ascii=False), encoding="utf-8")


class ReportWriter:
    def __init__(self, path: str):
        self.path = Path(path)

    def write(self, results: Iterable[MinimizeResult]) -> None:
        data = [self._to_dict(result) for result in results]
        if self.path.parent and not self.path.parent.exists():
            self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.write_text(json.dumps(data, indent=2, ensure_ascii=False), encoding="utf-8")

    def _to_dict(self, result: MinimizeResult) -> Dict[str, Any]:
        request = result.request
        return {
            "request_id": result.request_id,
            "result": result.kind,
            "message": result.message,
            "status_code": result.status_code,
            "session_id": result.session_id,
            "final_request": None
            if request is None
            else {
                "method": request.method,
                "url": request.url,
                "headers": [{"name": n, "value": v} for n, v in request.headers],
                "body": request.body.decode("utf-8", errors="replace") if request.body is not None else None,
            },
            "stats": result.stats.as_dict(),
        }
