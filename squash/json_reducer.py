from __future__ import annotations

import json
import logging
from dataclasses import dataclass, replace
from typing import Any, Callable, List, Optional, Sequence, Tuple, Union

from .errors import JsonMinimizationError
from .minimizer import Reducer
from .models import ReductionState


logger = logging.getLogger(__name__)

PathKey = Union[str, int]
JsonPath = Tuple[PathKey, ...]


def parse_json_body(body: Optional[bytes]) -> Tuple[bool, Any]:
    """按内容而非 content-type 判断请求体是否为 JSON。"""
    if not body:
        return False, None
    try:
        return True, json.loads(body)
    except (ValueError, RecursionError):
        # 嵌套过深的请求体按非 JSON 处理
        return False, None


def serialize_json(document: Any) -> bytes:
    try:
        text = json.dumps(document, sort_keys=True, separators=(",", ":"), ensure_ascii=False)
    except (TypeError, ValueError) as exc:
        raise JsonMinimizationError(f"无法序列化 JSON 请求体：{exc}") from exc
    return text.encode("utf-8")


def replace_at(document: Any, path: JsonPath, node: Any) -> Any:
    """返回把 ``path`` 处节点替换为 ``node`` 的新文档，原文档不变。"""
    if not path:
        return node
    head, rest = path[0], path[1:]
    if isinstance(document, list):
        copy: Any = list(document)
    elif isinstance(document, dict):
        copy = dict(document)
    else:
        raise JsonMinimizationError(f"路径 {path!r} 指向了标量节点")
    try:
        copy[head] = replace_at(document[head], rest, node)
    except (KeyError, IndexError) as exc:
        raise JsonMinimizationError(f"路径 {path!r} 不存在") from exc
    return copy


def count_nodes(document: Any) -> int:
    total = 0
    stack = [document]
    while stack:
        node = stack.pop()
        total += 1
        if isinstance(node, dict):
            stack.extend(node.values())
        elif isinstance(node, list):
            stack.extend(node)
    return total


def _is_reducible(node: Any) -> bool:
    return isinstance(node, (dict, list)) and bool(node)


@dataclass(frozen=True)
class _Child:
    ordinal: int
    key: PathKey
    value: Any


def _children(container: Any) -> List[_Child]:
    if isinstance(container, dict):
        return [_Child(i, key, value) for i, (key, value) in enumerate(container.items())]
    return [_Child(i, i, value) for i, value in enumerate(container)]


def _assemble(container: Any, children: Sequence[_Child]) -> Any:
    ordered = sorted(children, key=lambda child: child.ordinal)
    if isinstance(container, dict):
        return {child.key: child.value for child in ordered}
    return [child.value for child in ordered]


class JsonStructureReducer:
    """对 JSON 文档做分层的结构化 delta debugging。

    每个对象或数组分两阶段处理：

    1. 消除阶段：子节点放入工作栈，按后进先出逐个尝试移除。试验容器由“已保留的
       子节点 + 尚未处理的子节点”组成，再沿路径嵌回整个文档交给 ``check``；
       通过则该子节点被永久删除，否则进入保留列表。
    2. 递归阶段：保留下来的对象/数组子节点按原顺序递归处理，重建时使用兄弟节点
       的当前值。标量不递归。

    ``check`` 总是拿到完整文档，只和最初的基线响应比较。数组重组时压缩空位，
    对象只保证键的成员关系。
    """

    def __init__(self, check: Callable[[Any], bool]):
        self.check = check

    def reduce(self, document: Any) -> Any:
        return self._reduce(document, (), document)

    def _reduce(self, root: Any, path: JsonPath, node: Any) -> Any:
        if not _is_reducible(node):
            return node
        survivors = self._eliminate(root, path, node)
        return self._descend(root, path, node, survivors)

    def _eliminate(self, root: Any, path: JsonPath, node: Any) -> List[_Child]:
        pending = _children(node)
        survivors: List[_Child] = []
        while pending:
            child = pending.pop()
            trial = _assemble(node, survivors + pending)
            if self.check(replace_at(root, path, trial)):
                logger.debug("JSON 节点 %s 已消除", list(path + (child.key,)))
                continue
            survivors.append(child)
        return sorted(survivors, key=lambda child: child.ordinal)

    def _descend(self, root: Any, path: JsonPath, node: Any, survivors: List[_Child]) -> Any:
        current = list(survivors)
        for position, child in enumerate(current):
            if not _is_reducible(child.value):
                continue
            container = _assemble(node, current)
            child_key = position if isinstance(node, list) else child.key
            reduced = self._reduce(replace_at(root, path, container), path + (child_key,), child.value)
            current[position] = replace(child, value=reduced)
        return _assemble(node, current)


class JsonBodyReducer(Reducer):
    """JSON 请求体的最小化阶段，内部出错时回退到上一阶段的请求体。"""

    def reduce(self, state: ReductionState) -> Tuple[ReductionState, bool]:
        is_json, document = parse_json_body(state.body)
        if not is_json:
            return state, False
        state = replace(state, json_document=document)
        if not _is_reducible(document):
            return state, False

        def check(candidate: Any) -> bool:
            return self._accepts(replace(state, body=serialize_json(candidate)))

        try:
            reduced = JsonStructureReducer(check).reduce(document)
            body = serialize_json(reduced)
            unchanged = reduced == document
        except (JsonMinimizationError, RecursionError) as exc:
            logger.warning("JSON 最小化失败，保留上一阶段的请求体：%s", exc)
            return state, False
        if unchanged:
            return state, False
        logger.info("JSON 请求体节点数 %d -> %d", count_nodes(document), count_nodes(reduced))
        return replace(state, body=body, json_document=reduced), True
