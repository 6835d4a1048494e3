from __future__ import annotations

import base64
import binascii
import json
import logging
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple, Union
from urllib.parse import urlsplit

from .models import HeaderField, RequestDescriptor


logger = logging.getLogger(__name__)


def _group_headers(raw_headers: List[Dict[str, str]]) -> Tuple[HeaderField, ...]:
    grouped: Dict[str, List[str]] = {}
    order: List[str] = []
    canonical: Dict[str, str] = {}
    for header in raw_headers:
        name = header.get("name")
        # HTTP/2 伪头部（:authority 等）由传输层自行生成
        if not name or name.startswith(":"):
            continue
        key = canonical.setdefault(name.lower(), name)
        if key not in grouped:
            grouped[key] = []
            order.append(key)
        grouped[key].append(header.get("value", ""))
    return tuple((name, tuple(grouped[name])) for name in order)


def _decode_body(post_data: Optional[Dict[str, Any]]) -> Optional[bytes]:
    if not post_data:
        return None
    text = post_data.get("text")
    if text is None:
        return None
    if post_data.get("encoding") == "base64":
        try:
            return base64.b64decode(text)
        except binascii.Error:
            logger.warning("postData 声明为 base64 但无法解码，按原文处理")
    return text.encode("utf-8")


def descriptor_from_entry(request_id: str, entry: Dict[str, Any]) -> RequestDescriptor:
    req = entry.get("request", {})
    parsed = urlsplit(req.get("url", ""))
    tls = parsed.scheme == "https"
    return RequestDescriptor(
        request_id=request_id,
        method=req.get("method", "GET"),
        host=parsed.hostname or "",
        port=parsed.port or (443 if tls else 80),
        tls=tls,
        path=parsed.path or "/",
        query=parsed.query,
        headers=_group_headers(req.get("headers", [])),
        body=_decode_body(req.get("postData")),
    )


class HarLoader:
    def __init__(self, path: Union[str, Path]):
        self.path = Path(path)

    def load(self) -> List[RequestDescriptor]:
        with self.path.open("r", encoding="utf-8") as handle:
            data = json.load(handle)
        entries = data.get("log", {}).get("entries", [])
        return [descriptor_from_entry(str(idx), entry) for idx, entry in enumerate(entries)]


class HarRequestStore:
    """按 HAR 条目下标（字符串）查找请求。"""

    def __init__(self, descriptors: List[RequestDescriptor]):
        self._by_id = {descriptor.request_id: descriptor for descriptor in descriptors}

    @classmethod
    def from_file(cls, path: Union[str, Path]) -> "HarRequestStore":
        return cls(HarLoader(path).load())

    def get(self, request_id: str) -> Optional[RequestDescriptor]:
        return self._by_id.get(str(request_id))

    def ids(self) -> List[str]:
        return list(self._by_id)
