from __future__ import annotations

import enum
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Protocol, Tuple


HeaderField = Tuple[str, Tuple[str, ...]]
QueryParam = Tuple[str, str]

_DEFAULT_PORTS = {True: 443, False: 80}


def _netloc(host: str, port: int, tls: bool) -> str:
    if port == _DEFAULT_PORTS[tls]:
        return host
    return f"{host}:{port}"


@dataclass(frozen=True)
class RequestSpec:
    """一次实际发送的请求，每个试验都会重新合成。"""

    method: str
    host: str
    port: int
    tls: bool
    path: str
    headers: Tuple[Tuple[str, str], ...] = ()
    body: Optional[bytes] = None

    @property
    def url(self) -> str:
        scheme = "https" if self.tls else "http"
        return f"{scheme}://{_netloc(self.host, self.port, self.tls)}{self.path}"

    def header_dict(self) -> Dict[str, str]:
        result: Dict[str, str] = {}
        canonical: Dict[str, str] = {}
        for name, value in self.headers:
            key = canonical.setdefault(name.lower(), name)
            if key in result:
                separator = "; " if name.lower() == "cookie" else ", "
                result[key] = result[key] + separator + value
            else:
                result[key] = value
        return result


@dataclass(frozen=True)
class RequestDescriptor:
    """原始请求的不可变快照，仅采集一次。"""

    request_id: str
    method: str
    host: str
    port: int
    tls: bool
    path: str
    query: str = ""
    headers: Tuple[HeaderField, ...] = ()
    body: Optional[bytes] = None

    @property
    def path_with_query(self) -> str:
        return f"{self.path}?{self.query}" if self.query else self.path

    @property
    def url(self) -> str:
        scheme = "https" if self.tls else "http"
        return f"{scheme}://{_netloc(self.host, self.port, self.tls)}{self.path_with_query}"

    def header_names(self) -> List[str]:
        return [name for name, _ in self.headers]

    def header_values(self, name: str) -> Tuple[str, ...]:
        lowered = name.lower()
        for header, values in self.headers:
            if header.lower() == lowered:
                return values
        return ()

    def header_value(self, name: str) -> Optional[str]:
        values = self.header_values(name)
        if not values:
            return None
        return values[0]

    @classmethod
    def from_spec(cls, request_id: str, spec: RequestSpec) -> "RequestDescriptor":
        path, _, query = spec.path.partition("?")
        grouped: Dict[str, List[str]] = {}
        order: List[str] = []
        for name, value in spec.headers:
            if name not in grouped:
                grouped[name] = []
                order.append(name)
            grouped[name].append(value)
        return cls(
            request_id=request_id,
            method=spec.method,
            host=spec.host,
            port=spec.port,
            tls=spec.tls,
            path=path or "/",
            query=query,
            headers=tuple((name, tuple(grouped[name])) for name in order),
            body=spec.body,
        )


@dataclass
class ResponseSnapshot:
    status_code: int
    headers: Mapping[str, str] = field(default_factory=dict)
    body: bytes = b""
    elapsed: float = 0.0

    def header(self, name: str) -> Optional[str]:
        lowered = name.lower()
        for key, value in self.headers.items():
            if key.lower() == lowered:
                return value
        return None

    @property
    def length(self) -> int:
        return len(self.body)


@dataclass(frozen=True)
class ResponseSignature:
    """响应的可比较投影，每个响应现算，不做持久化。"""

    status_code: int
    content_length: Optional[str]
    content_type: Optional[str]
    location: Optional[str]
    body_length: int
    json_keys: Optional[Tuple[str, ...]]
    body: bytes = field(default=b"", repr=False)

    @property
    def is_json(self) -> bool:
        return "json" in (self.content_type or "").lower()


@dataclass(frozen=True)
class ReductionState:
    query: Tuple[QueryParam, ...]
    body: Optional[bytes]
    header_names: Tuple[str, ...]
    header_values: Tuple[HeaderField, ...]
    json_document: Any = None

    def values_of(self, name: str) -> Tuple[str, ...]:
        for header, values in self.header_values:
            if header == name:
                return values
        return ()


class TrialOutcome(enum.Enum):
    EQUIVALENT = "equivalent"
    DIFFERENT = "different"
    FAILED = "failed"


@dataclass
class ReductionStats:
    trials: int = 0
    failed_trials: int = 0
    auto_removed_headers: int = 0
    query_params: Tuple[int, int] = (0, 0)
    body_params: Tuple[int, int] = (0, 0)
    headers: Tuple[int, int] = (0, 0)
    json_nodes: Tuple[int, int] = (0, 0)

    def as_dict(self) -> Dict[str, Any]:
        return {
            "trials": self.trials,
            "failed_trials": self.failed_trials,
            "auto_removed_headers": self.auto_removed_headers,
            "query_params": list(self.query_params),
            "body_params": list(self.body_params),
            "headers": list(self.headers),
            "json_nodes": list(self.json_nodes),
        }


@dataclass
class MinimizeResult:
    kind: str
    message: str
    request_id: str = ""
    status_code: Optional[int] = None
    session_id: Optional[str] = None
    request: Optional[RequestSpec] = None
    response: Optional[ResponseSnapshot] = None
    stats: ReductionStats = field(default_factory=ReductionStats)

    SUCCESS = "success"
    WARNING = "warning"
    ERROR = "error"

    @property
    def ok(self) -> bool:
        return self.kind != self.ERROR


@dataclass
class SendResult:
    response: Optional[ResponseSnapshot]


@dataclass
class ReplaySession:
    id: str
    request: RequestSpec


class RequestStore(Protocol):
    def get(self, request_id: str) -> Optional[RequestDescriptor]:
        ...


class RequestTransport(Protocol):
    def send(self, spec: RequestSpec, save: bool = False) -> SendResult:
        ...


class SessionFactory(Protocol):
    def create_session(self, spec: RequestSpec) -> Optional[ReplaySession]:
        ...
