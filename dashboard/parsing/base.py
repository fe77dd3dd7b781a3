"""
BaseParseService — 所有消息解析服务实现的抽象基类。

每个新解析服务只需：
1. 继承 BaseParseService
2. 实现 parse()
3. 在 factory.py 的 _build_registry 注册一行

tasks.py 完全不知道背后用哪种解析服务。
"""

from abc import ABC, abstractmethod

from .types import ParseResult


class BaseParseService(ABC):

    @abstractmethod
    def parse(self, message: str) -> ParseResult:
        """
        解析一条原始消息，返回标准 ParseResult。

        Args:
            message: 原始消息文本（카카오톡 / SMS 原文）

        Returns:
            ParseResult(hospital_name=..., items=[...])

        Raises:
            Exception: 调用失败时抛出，由 tasks.py 的重试机制处理
        """
