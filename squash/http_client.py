from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass
from typing import List, Optional

import requests

from .config import ClientConfig
from .errors import RequestTimeoutError, TransportError
from .models import RequestSpec, ResponseSnapshot, SendResult


logger = logging.getLogger(__name__)


@dataclass
class HistoryEntry:
    request: RequestSpec
    response: ResponseSnapshot


class HttpClient:
    """基于 requests.Session 的请求发送器，save=True 时记录到历史。"""

    def __init__(self, config: ClientConfig, timeout: Optional[float] = None):
        self.session = requests.Session()
        self.config = config
        self.timeout = timeout
        self.history: List[HistoryEntry] = []
        self._lock = threading.Lock()
        if config.proxies:
            self.session.proxies.update(config.proxies)

    def send(self, spec: RequestSpec, save: bool = False) -> SendResult:
        start = time.monotonic()
        try:
            response = self.session.request(
                method=spec.method,
                url=spec.url,
                headers=spec.header_dict(),
                data=spec.body,
                timeout=self.timeout,
                verify=self.config.verify_tls,
                allow_redirects=self.config.allow_redirects,
            )
        except requests.Timeout as exc:
            raise RequestTimeoutError(f"请求 {spec.url} 超时：{exc}") from exc
        except requests.RequestException as exc:
            raise TransportError(f"请求 {spec.url} 发送失败：{exc}") from exc
        snapshot = ResponseSnapshot(
            status_code=response.status_code,
            headers={name.lower(): value for name, value in response.headers.items()},
            body=response.content,
            elapsed=time.monotonic() - start,
        )
        logger.debug("%s %s -> %s (%d 字节)", spec.method, spec.url, snapshot.status_code, snapshot.length)
        if save:
            with self._lock:
                self.history.append(HistoryEntry(request=spec, response=snapshot))
        return SendResult(response=snapshot)

    def close(self) -> None:
        self.session.close()
