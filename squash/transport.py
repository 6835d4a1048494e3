from __future__ import annotations

import logging
import threading
import time
from typing import Callable, List, Optional

from .config import MinimizationConfig
from .errors import RequestTimeoutError, TransportError
from .models import RequestSpec, RequestTransport, ResponseSnapshot, SendResult


logger = logging.getLogger(__name__)


class _Attempt:
    """在独立的守护线程中执行一次发送，超时后线程被丢弃而不是复用。"""

    def __init__(self, transport: RequestTransport, spec: RequestSpec, save: bool):
        self.result: Optional[SendResult] = None
        self.error: Optional[Exception] = None
        self._thread = threading.Thread(
            target=self._run,
            args=(transport, spec, save),
            name="squash-send",
            daemon=True,
        )

    def _run(self, transport: RequestTransport, spec: RequestSpec, save: bool) -> None:
        try:
            self.result = transport.send(spec, save=save)
        except Exception as exc:  # 由调用线程重新抛出
            self.error = exc

    def wait(self, timeout: float) -> bool:
        self._thread.start()
        self._thread.join(timeout)
        return not self._thread.is_alive()


class TransportWrapper:
    """所有试验请求的唯一出口：固定间隔、超时竞速与有限次重试。

    每次尝试前先等待 ``min_delay_ms``；尝试在新的守护线程中执行并与 ``timeout_ms`` 竞速，
    超时或传输错误后重试，最多 ``max_retries`` 次，用尽后抛出最后一个错误。
    响应缺失（``SendResult.response is None``）不算失败，原样返回 ``None``。
    """

    def __init__(
        self,
        transport: RequestTransport,
        config: MinimizationConfig,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.transport = transport
        self.config = config
        self._sleep = sleep
        self.attempts = 0

    def send(self, spec: RequestSpec) -> Optional[ResponseSnapshot]:
        errors: List[TransportError] = []
        for attempt in range(max(0, self.config.max_retries) + 1):
            if errors:
                logger.warning("第 %d 次重试 %s %s：%s", attempt, spec.method, spec.url, errors[-1])
            self._sleep(self.config.min_delay)
            try:
                return self._attempt(spec)
            except TransportError as exc:
                errors.append(exc)
        raise errors[-1]

    def _attempt(self, spec: RequestSpec) -> Optional[ResponseSnapshot]:
        self.attempts += 1
        timeout = self.config.timeout
        if timeout is None:
            return self.transport.send(spec, save=self.config.save_to_history).response
        attempt = _Attempt(self.transport, spec, self.config.save_to_history)
        if not attempt.wait(timeout):
            raise RequestTimeoutError(f"请求在 {self.config.timeout_ms}ms 后超时")
        if attempt.error is not None:
            raise attempt.error
        return attempt.result.response
