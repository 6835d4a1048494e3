from __future__ import annotations

import enum
import logging
from typing import Callable, Optional, Tuple

from .comparator import ResponseComparator
from .config import MinimizationConfig
from .errors import BaselineError, RequestNotFoundError, SessionError, TransportError
from .filtering import HeaderPolicy
from .json_reducer import JsonBodyReducer, count_nodes, parse_json_body
from .minimizer import (
    FormBodyReducer,
    HeaderReducer,
    QueryReducer,
    TrialRunner,
    baseline_spec,
    distinct_keys,
    initial_state,
    split_params,
    synthesize,
)
from .models import (
    MinimizeResult,
    ReductionState,
    ReductionStats,
    RequestDescriptor,
    RequestSpec,
    RequestStore,
    RequestTransport,
    ResponseSignature,
    SessionFactory,
)
from .transport import TransportWrapper


logger = logging.getLogger(__name__)


class MinimizationStage(enum.Enum):
    INIT = "init"
    BASELINE_SENT = "baseline_sent"
    QUERY_REDUCED = "query_reduced"
    BODY_REDUCED = "body_reduced"
    HEADERS_REDUCED = "headers_reduced"
    JSON_REDUCED = "json_reduced"
    FINAL_SENT = "final_sent"
    DONE = "done"
    ERROR = "error"


class MinimizationOrchestrator:
    """串联各个最小化阶段，独占 ``ReductionState``。

    阶段严格按 基线 -> 查询 -> 表单 -> 头部 -> JSON -> 最终发送 推进，
    关闭的阶段直接跳过。只有找不到请求、基线失败和最终发送失败会返回 error。
    """

    def __init__(
        self,
        store: RequestStore,
        transport: RequestTransport,
        workspace: SessionFactory,
        config: Optional[MinimizationConfig] = None,
        comparator: Optional[ResponseComparator] = None,
        sleep: Optional[Callable[[float], None]] = None,
    ):
        self.store = store
        self.transport = transport
        self.workspace = workspace
        self.config = config or MinimizationConfig()
        self.comparator = comparator or ResponseComparator()
        self._sleep = sleep
        self.stage = MinimizationStage.INIT

    def _advance(self, stage: MinimizationStage) -> None:
        logger.debug("阶段 %s -> %s", self.stage.value, stage.value)
        self.stage = stage

    def _wrapper(self) -> TransportWrapper:
        if self._sleep is None:
            return TransportWrapper(self.transport, self.config)
        return TransportWrapper(self.transport, self.config, sleep=self._sleep)

    def minimize_request(self, request_id: str) -> MinimizeResult:
        self.stage = MinimizationStage.INIT
        stats = ReductionStats()
        try:
            descriptor = self.store.get(request_id)
            if descriptor is None:
                raise RequestNotFoundError(f"找不到请求 {request_id}")
            logger.info("正在最小化请求 %s %s %s", request_id, descriptor.method, descriptor.url)
            wrapper = self._wrapper()
            baseline = self._send_baseline(wrapper, descriptor)
            self._advance(MinimizationStage.BASELINE_SENT)
            runner = TrialRunner(wrapper, self.comparator, baseline, stats)
            state = self._reduce(runner, descriptor)
            final_spec = synthesize(descriptor, state)
            return self._finish(wrapper, request_id, final_spec, stats)
        except (RequestNotFoundError, BaselineError) as exc:
            self._advance(MinimizationStage.ERROR)
            logger.error("请求 %s 无法最小化：%s", request_id, exc)
            return MinimizeResult(kind=MinimizeResult.ERROR, message=str(exc), request_id=request_id, stats=stats)

    def _send_baseline(self, wrapper: TransportWrapper, descriptor: RequestDescriptor) -> ResponseSignature:
        try:
            response = wrapper.send(baseline_spec(descriptor))
        except TransportError as exc:
            raise BaselineError(f"原始请求发送失败：{exc}") from exc
        if response is None:
            raise BaselineError("没有收到原始请求的响应")
        # 任何状态码的基线响应都可以作为等价目标
        logger.info("基线响应：%s，%d 字节", response.status_code, response.length)
        return self.comparator.signature(response)

    def _reduce(self, runner: TrialRunner, descriptor: RequestDescriptor) -> ReductionState:
        config = self.config
        stats = runner.stats
        state = initial_state(descriptor)
        query_before = len(distinct_keys(state.query))
        body_before = self._count_body_params(descriptor, state)
        headers_before = len(state.header_names)
        _, document = parse_json_body(state.body)

        state = self._run_stage(config.minimize_query, QueryReducer(runner, descriptor).reduce, state, "查询参数")
        self._advance(MinimizationStage.QUERY_REDUCED)
        state = self._run_stage(config.minimize_body, FormBodyReducer(runner, descriptor).reduce, state, "表单请求体")
        self._advance(MinimizationStage.BODY_REDUCED)
        policy = HeaderPolicy(keep=config.keep_headers, auto_remove=config.auto_remove_headers)
        header_reducer = HeaderReducer(runner, descriptor, policy)
        state = self._run_stage(config.minimize_headers, header_reducer.reduce, state, "头部")
        self._advance(MinimizationStage.HEADERS_REDUCED)
        state = self._run_stage(config.minimize_json, JsonBodyReducer(runner, descriptor).reduce, state, "JSON 请求体")
        self._advance(MinimizationStage.JSON_REDUCED)

        _, reduced_document = parse_json_body(state.body)
        stats.query_params = (query_before, len(distinct_keys(state.query)))
        stats.body_params = (body_before, self._count_body_params(descriptor, state))
        stats.headers = (headers_before, len(state.header_names))
        if document is not None:
            stats.json_nodes = (count_nodes(document), count_nodes(reduced_document))
        return state

    @staticmethod
    def _run_stage(
        enabled: bool,
        reduce: Callable[[ReductionState], Tuple[ReductionState, bool]],
        state: ReductionState,
        label: str,
    ) -> ReductionState:
        if not enabled:
            logger.info("%s最小化已关闭，跳过", label)
            return state
        reduced, changed = reduce(state)
        logger.info("%s最小化完成%s", label, "" if changed else "，没有可移除的内容")
        return reduced

    @staticmethod
    def _count_body_params(descriptor: RequestDescriptor, state: ReductionState) -> int:
        content_type = (descriptor.header_value("content-type") or "").lower()
        if "x-www-form-urlencoded" not in content_type or not state.body:
            return 0
        return len(distinct_keys(split_params(state.body.decode("latin-1"))))

    def _finish(
        self,
        wrapper: TransportWrapper,
        request_id: str,
        spec: RequestSpec,
        stats: ReductionStats,
    ) -> MinimizeResult:
        try:
            response = wrapper.send(spec)
        except TransportError as exc:
            self._advance(MinimizationStage.ERROR)
            logger.error("最小化后的请求发送失败：%s", exc)
            return MinimizeResult(
                kind=MinimizeResult.ERROR,
                message=f"最小化后的请求发送失败：{exc}",
                request_id=request_id,
                request=spec,
                stats=stats,
            )
        self._advance(MinimizationStage.FINAL_SENT)
        if response is None:
            self._advance(MinimizationStage.DONE)
            return MinimizeResult(
                kind=MinimizeResult.WARNING,
                message="请求已最小化，但最终请求没有收到响应",
                request_id=request_id,
                request=spec,
                stats=stats,
            )
        try:
            session = self.workspace.create_session(spec)
            if session is None:
                raise SessionError("replay 会话创建失败")
        except SessionError as exc:
            self._advance(MinimizationStage.DONE)
            logger.warning("请求 %s 已最小化，但无法打开 replay 会话：%s", request_id, exc)
            return MinimizeResult(
                kind=MinimizeResult.WARNING,
                message=f"请求已最小化，但无法打开 replay 会话：{exc}",
                request_id=request_id,
                status_code=response.status_code,
                request=spec,
                response=response,
                stats=stats,
            )
        self._advance(MinimizationStage.DONE)
        logger.info(
            "REQ %s: %s:%s%s 返回状态码 %s（共 %d 次试验）",
            session.id,
            spec.host,
            spec.port,
            spec.path,
            response.status_code,
            stats.trials,
        )
        return MinimizeResult(
            kind=MinimizeResult.SUCCESS,
            message="请求最小化成功",
            request_id=request_id,
            status_code=response.status_code,
            session_id=session.id,
            request=spec,
            response=response,
            stats=stats,
        )


def minimize_request(
    request_id: str,
    config: Optional[MinimizationConfig] = None,
    *,
    store: RequestStore,
    transport: RequestTransport,
    workspace: SessionFactory,
    comparator: Optional[ResponseComparator] = None,
) -> MinimizeResult:
    orchestrator = MinimizationOrchestrator(store, transport, workspace, config, comparator)
    return orchestrator.minimize_request(request_id)
