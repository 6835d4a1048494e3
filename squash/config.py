from __future__ import annotations

import logging
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Union

import yaml

from .errors import ConfigError


logger = logging.getLogger(__name__)


@dataclass
class ClientConfig:
    verify_tls: bool = True
    proxies: Dict[str, str] = field(default_factory=dict)
    allow_redirects: bool = False


@dataclass
class MinimizationConfig:
    """单次最小化的全部参数，缺省值与插件配置一致。"""

    min_delay_ms: int = 100
    timeout_ms: int = 30000
    max_retries: int = 2
    auto_remove_headers: List[str] = field(default_factory=lambda: ["sec-*"])
    keep_headers: List[str] = field(default_factory=list)
    minimize_query: bool = True
    minimize_body: bool = True
    minimize_headers: bool = True
    minimize_json: bool = True
    save_to_history: bool = False

    @property
    def min_delay(self) -> float:
        return max(0, self.min_delay_ms) / 1000.0

    @property
    def timeout(self) -> Optional[float]:
        if not self.timeout_ms or self.timeout_ms <= 0:
            return None
        return self.timeout_ms / 1000.0


@dataclass
class Config:
    input_har: Optional[str] = None
    output_har: Optional[str] = None
    report_path: Optional[str] = None
    client: ClientConfig = field(default_factory=ClientConfig)
    minimization: MinimizationConfig = field(default_factory=MinimizationConfig)


_TYPES = {
    "bool": (bool,),
    "int": (int,),
    "Optional[str]": (str, type(None)),
    "List[str]": (list,),
    "Dict[str, str]": (dict,),
}


def _build(cls, data: Optional[Mapping[str, Any]], section: str):
    if data is None:
        return cls()
    if not isinstance(data, Mapping):
        raise ConfigError(f"配置段 {section} 必须是映射")
    known = {f.name: f for f in fields(cls)}
    unknown = sorted(set(data) - set(known))
    if unknown:
        raise ConfigError(f"配置段 {section} 含未知字段：{', '.join(unknown)}")
    values: Dict[str, Any] = {}
    for name, value in data.items():
        expected = _TYPES.get(str(known[name].type))
        # bool 是 int 的子类，需要单独排除
        if expected and (not isinstance(value, expected) or (bool not in expected and isinstance(value, bool))):
            raise ConfigError(f"配置项 {section}.{name} 类型错误：{value!r}")
        if isinstance(value, list) and not all(isinstance(item, str) for item in value):
            raise ConfigError(f"配置项 {section}.{name} 只能包含字符串")
        values[name] = value
    return cls(**values)


def config_from_dict(data: Optional[Mapping[str, Any]]) -> Config:
    data = dict(data or {})
    client = _build(ClientConfig, data.pop("client", None), "client")
    minimization = _build(MinimizationConfig, data.pop("minimization", None), "minimization")
    config = _build(Config, data, "root")
    config.client = client
    config.minimization = minimization
    return config


def load_config(path: Optional[Union[str, Path]], overrides: Optional[Dict[str, Any]] = None) -> Config:
    data: Dict[str, Any] = {}
    if path is not None:
        config_path = Path(path)
        if config_path.exists():
            with config_path.open("r", encoding="utf-8") as handle:
                try:
                    loaded = yaml.safe_load(handle)
                except yaml.YAMLError as exc:
                    raise ConfigError(f"无法解析配置文件 {config_path}：{exc}") from exc
            if loaded is not None and not isinstance(loaded, dict):
                raise ConfigError(f"配置文件 {config_path} 顶层必须是映射")
            data = loaded or {}
        else:
            logger.info("配置文件 %s 不存在，使用默认配置", config_path)
    if overrides:
        data.update(overrides)
    return config_from_dict(data)
