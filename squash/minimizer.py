from __future__ import annotations

import logging
from dataclasses import replace
from typing import Callable, Dict, List, Optional, Sequence, Tuple
from urllib.parse import unquote_plus

from .comparator import ResponseComparator
from .errors import TransportError
from .filtering import HeaderAction, HeaderPolicy
from .models import (
    HeaderField,
    QueryParam,
    ReductionState,
    ReductionStats,
    RequestDescriptor,
    RequestSpec,
    ResponseSignature,
    TrialOutcome,
)
from .transport import TransportWrapper


logger = logging.getLogger(__name__)

FORM_CONTENT_TYPE = "application/x-www-form-urlencoded"


def split_params(text: str) -> Tuple[QueryParam, ...]:
    """拆分 ``a=1&b=2``，保留每段原始编码，键按解码后比较。"""
    params: List[QueryParam] = []
    for segment in text.split("&"):
        if not segment:
            continue
        key = unquote_plus(segment.partition("=")[0])
        params.append((key, segment))
    return tuple(params)


def join_params(params: Sequence[QueryParam]) -> str:
    return "&".join(segment for _, segment in params)


def distinct_keys(params: Sequence[QueryParam]) -> List[str]:
    seen: Dict[str, None] = {}
    for key, _ in params:
        seen.setdefault(key, None)
    return list(seen)


def initial_state(descriptor: RequestDescriptor) -> ReductionState:
    headers = tuple((name, values) for name, values in descriptor.headers if name.lower() != "host")
    return ReductionState(
        query=split_params(descriptor.query),
        body=descriptor.body,
        header_names=tuple(name for name, _ in headers),
        header_values=headers,
    )


def _expand(headers: Sequence[HeaderField]) -> Tuple[Tuple[str, str], ...]:
    return tuple((name, value) for name, values in headers for value in values)


def baseline_spec(descriptor: RequestDescriptor) -> RequestSpec:
    return RequestSpec(
        method=descriptor.method,
        host=descriptor.host,
        port=descriptor.port,
        tls=descriptor.tls,
        path=descriptor.path_with_query,
        headers=_expand(descriptor.headers),
        body=descriptor.body,
    )


def synthesize(descriptor: RequestDescriptor, state: ReductionState) -> RequestSpec:
    query = join_params(state.query)
    return RequestSpec(
        method=descriptor.method,
        host=descriptor.host,
        port=descriptor.port,
        tls=descriptor.tls,
        path=f"{descriptor.path}?{query}" if query else descriptor.path,
        headers=_expand([(name, state.values_of(name)) for name in state.header_names]),
        body=state.body,
    )


class TrialRunner:
    """发送候选请求并与基线签名比较。

    传输层重试用尽或没有响应时记为 ``FAILED``，调用方一律按“保留”处理。
    """

    def __init__(
        self,
        wrapper: TransportWrapper,
        comparator: ResponseComparator,
        baseline: ResponseSignature,
        stats: Optional[ReductionStats] = None,
    ):
        self.wrapper = wrapper
        self.comparator = comparator
        self.baseline = baseline
        self.stats = stats if stats is not None else ReductionStats()

    def run(self, spec: RequestSpec) -> TrialOutcome:
        self.stats.trials += 1
        try:
            response = self.wrapper.send(spec)
        except TransportError as exc:
            self.stats.failed_trials += 1
            logger.warning("试验请求失败，保留当前元素：%s", exc)
            return TrialOutcome.FAILED
        if response is None:
            self.stats.failed_trials += 1
            logger.warning("试验请求没有收到响应，保留当前元素")
            return TrialOutcome.FAILED
        if self.comparator.equivalent(self.baseline, self.comparator.signature(response)):
            return TrialOutcome.EQUIVALENT
        return TrialOutcome.DIFFERENT

    def accepts(self, spec: RequestSpec) -> bool:
        outcome = self.run(spec)
        logger.debug("%s %s -> %s", spec.method, spec.path, outcome.value)
        return outcome is TrialOutcome.EQUIVALENT


class Reducer:
    def __init__(self, runner: TrialRunner, descriptor: RequestDescriptor):
        self.runner = runner
        self.descriptor = descriptor

    def _accepts(self, state: ReductionState) -> bool:
        return self.runner.accepts(synthesize(self.descriptor, state))

    def _eliminate_keys(
        self,
        params: Tuple[QueryParam, ...],
        build: Callable[[Tuple[QueryParam, ...]], ReductionState],
        label: str,
    ) -> Tuple[QueryParam, ...]:
        # 单次前向扫描：每个键只按首次出现的顺序试一次
        current = params
        for key in distinct_keys(params):
            trial = tuple(param for param in current if param[0] != key)
            if self._accepts(build(trial)):
                logger.info("移除%s %s", label, key)
                current = trial
        return current


class QueryReducer(Reducer):
    def reduce(self, state: ReductionState) -> Tuple[ReductionState, bool]:
        if not state.query:
            return state, False
        minimal = self._eliminate_keys(
            state.query,
            lambda trial: replace(state, query=trial),
            "查询参数",
        )
        return replace(state, query=minimal), minimal != state.query


class FormBodyReducer(Reducer):
    def applies(self, state: ReductionState) -> bool:
        content_type = (self.descriptor.header_value("content-type") or "").lower()
        return FORM_CONTENT_TYPE in content_type and bool(state.body)

    def reduce(self, state: ReductionState) -> Tuple[ReductionState, bool]:
        if not self.applies(state):
            return state, False
        assert state.body is not None
        # latin-1 可逐字节往返，未改动的参数保持原样
        params = split_params(state.body.decode("latin-1"))
        minimal = self._eliminate_keys(
            params,
            lambda trial: replace(state, body=join_params(trial).encode("latin-1")),
            "表单字段",
        )
        if minimal == params:
            return state, False
        return replace(state, body=join_params(minimal).encode("latin-1")), True


class HeaderReducer(Reducer):
    """逐个尝试移除头部；Cookie 先整体移除，失败后逐个 crumb 移除。"""

    def __init__(
        self,
        runner: TrialRunner,
        descriptor: RequestDescriptor,
        policy: HeaderPolicy,
    ):
        super().__init__(runner, descriptor)
        self.policy = policy

    def reduce(self, state: ReductionState) -> Tuple[ReductionState, bool]:
        names = list(state.header_names)
        values = dict(state.header_values)
        for name in state.header_names:
            action = self.policy.decide(name)
            if action is HeaderAction.KEEP:
                logger.debug("头部 %s 命中保留模式，跳过", name)
                continue
            if action is HeaderAction.AUTO_REMOVE:
                logger.info("头部 %s 命中自动移除模式，直接移除", name)
                names.remove(name)
                self.runner.stats.auto_removed_headers += 1
                continue
            if name.lower() == "cookie":
                names, values = self._reduce_cookie(state, name, names, values)
                continue
            trial_names = [n for n in names if n != name]
            if self._accepts(self._state(state, trial_names, values)):
                logger.info("移除头部 %s", name)
                names = trial_names
        reduced = self._state(state, names, values)
        return reduced, reduced != state

    def _reduce_cookie(
        self,
        state: ReductionState,
        name: str,
        names: List[str],
        values: Dict[str, Tuple[str, ...]],
    ) -> Tuple[List[str], Dict[str, Tuple[str, ...]]]:
        without = [n for n in names if n != name]
        if self._accepts(self._state(state, without, values)):
            logger.info("移除整个 Cookie 头部")
            return without, values
        crumbs = [crumb.strip() for crumb in "; ".join(values[name]).split(";") if crumb.strip()]
        for crumb in list(crumbs):
            position = crumbs.index(crumb)
            remaining = crumbs[:position] + crumbs[position + 1 :]
            if remaining:
                trial_names = names
                trial_values = {**values, name: ("; ".join(remaining),)}
            else:
                trial_names = [n for n in names if n != name]
                trial_values = values
            if self._accepts(self._state(state, trial_names, trial_values)):
                logger.info("移除 Cookie %s", crumb.partition("=")[0])
                crumbs = remaining
                names, values = trial_names, trial_values
        return names, values

    @staticmethod
    def _state(state: ReductionState, names: Sequence[str], values: Dict[str, Tuple[str, ...]]) -> ReductionState:
        return replace(
            state,
            header_names=tuple(names),
            header_values=tuple((name, values[name]) for name in names),
        )
