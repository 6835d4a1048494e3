from __future__ import annotations

import enum
import logging
import re
from typing import Iterable, Pattern, Union


logger = logging.getLogger(__name__)


def compile_header_pattern(pattern: str) -> Union[Pattern[str], str]:
    """把 ``sec-*`` 这类通配模式编译成正则；非法正则退化为小写字面量。"""
    try:
        return re.compile(pattern.replace("*", ".*"), re.IGNORECASE)
    except re.error:
        logger.debug("头部模式 %r 不是合法正则，按字面量匹配", pattern)
        return pattern.lower()


class HeaderPatternSet:
    def __init__(self, patterns: Iterable[str]):
        self.patterns = list(patterns)
        self._compiled = [compile_header_pattern(p) for p in self.patterns]

    def matches(self, name: str) -> bool:
        for compiled in self._compiled:
            if isinstance(compiled, str):
                if name.lower() == compiled:
                    return True
            elif compiled.fullmatch(name):
                return True
        return False


class HeaderAction(enum.Enum):
    KEEP = "keep"
    AUTO_REMOVE = "auto_remove"
    TRIAL = "trial"


class HeaderPolicy:
    """头部的处理策略：保留模式优先于自动移除模式。"""

    def __init__(self, keep: Iterable[str], auto_remove: Iterable[str]):
        self.keep = HeaderPatternSet(keep)
        self.auto_remove = HeaderPatternSet(auto_remove)

    def decide(self, name: str) -> HeaderAction:
        if self.keep.matches(name):
            return HeaderAction.KEEP
        if self.auto_remove.matches(name):
            return HeaderAction.AUTO_REMOVE
        return HeaderAction.TRIAL
