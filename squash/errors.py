from __future__ import annotations


class SquashError(Exception):
    """所有最小化错误的基类。"""


class ConfigError(SquashError):
    pass


class RequestNotFoundError(SquashError):
    pass


class BaselineError(SquashError):
    """原始请求无法发送或没有得到响应。"""


class TransportError(SquashError):
    pass


class RequestTimeoutError(TransportError):
    pass


class JsonMinimizationError(SquashError):
    pass


class SessionError(SquashError):
    pass
