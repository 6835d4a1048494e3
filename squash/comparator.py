from __future__ import annotations

import json
from typing import Any, Callable, List, Optional, Sequence, Tuple

from .models import ResponseSignature, ResponseSnapshot


Rule = Callable[[ResponseSignature, ResponseSignature], bool]


def _json_keys(body: bytes) -> Optional[Tuple[str, ...]]:
    try:
        parsed: Any = json.loads(body.decode("utf-8")) if body else {}
    except (UnicodeDecodeError, ValueError, RecursionError):
        return None
    if isinstance(parsed, dict):
        return tuple(sorted(parsed))
    if isinstance(parsed, list):
        return tuple(sorted(str(index) for index in range(len(parsed))))
    return ()


class ResponseComparator:
    """判断两个响应是否“行为相同”。

    内置规则按顺序合取执行，遇到第一个不匹配即返回 False：状态码、content-length、
    content-type、location、响应体长度，以及 JSON 响应的顶层键集合。
    ``extra_rules`` 在内置规则全部通过后依次执行，是自定义等价判定的扩展点。
    """

    def __init__(self, extra_rules: Sequence[Rule] = ()):
        self.rules: List[Rule] = [
            self._status_equal,
            self._content_length_equal,
            self._content_type_equal,
            self._location_equal,
            self._length_equal,
            self._json_structure_equal,
        ]
        self.rules.extend(extra_rules)

    def signature(self, response: ResponseSnapshot) -> ResponseSignature:
        content_type = response.header("content-type")
        json_keys = None
        if "json" in (content_type or "").lower():
            json_keys = _json_keys(response.body)
        return ResponseSignature(
            status_code=response.status_code,
            content_length=response.header("content-length"),
            content_type=content_type,
            location=response.header("location"),
            body_length=response.length,
            json_keys=json_keys,
            body=response.body,
        )

    def equivalent(self, original: ResponseSignature, candidate: ResponseSignature) -> bool:
        return all(rule(original, candidate) for rule in self.rules)

    def _status_equal(self, base: ResponseSignature, cand: ResponseSignature) -> bool:
        return base.status_code == cand.status_code

    def _content_length_equal(self, base: ResponseSignature, cand: ResponseSignature) -> bool:
        return base.content_length == cand.content_length

    def _content_type_equal(self, base: ResponseSignature, cand: ResponseSignature) -> bool:
        return base.content_type == cand.content_type

    def _location_equal(self, base: ResponseSignature, cand: ResponseSignature) -> bool:
        if not base.location and not cand.location:
            return True
        return base.location == cand.location

    def _length_equal(self, base: ResponseSignature, cand: ResponseSignature) -> bool:
        return base.body_length == cand.body_length

    def _json_structure_equal(self, base: ResponseSignature, cand: ResponseSignature) -> bool:
        if not base.is_json:
            return True
        if base.json_keys is None or cand.json_keys is None:
            return base.body == cand.body
        return base.json_keys == cand.json_keys
