"""
工厂函数：根据 settings.PARSE_PROVIDER 返回对应的 ParseService 实例。

新增解析服务只需：
  1. 在 services.py 新建 XxxParseService(BaseParseService) 类
  2. 在此处 _build_registry 加一行
  不需要修改 tasks.py 或任何业务代码。
"""

from django.conf import settings

from .base import BaseParseService


def _build_registry() -> dict[str, type[BaseParseService]]:
    # 延迟导入，避免在 Django 启动前触发 requests import
    from .services import EdgeFunctionParseService

    return {
        "edge_function": EdgeFunctionParseService,
    }


def get_parse_service() -> BaseParseService:
    """
    从 settings.PARSE_PROVIDER 读取解析服务，返回实例。

    Raises:
        ValueError: PARSE_PROVIDER 未知
    """
    provider = getattr(settings, "PARSE_PROVIDER", "edge_function")
    registry = _build_registry()
    service_cls = registry.get(provider)

    if service_cls is None:
        raise ValueError(
            f"Unknown PARSE_PROVIDER: {provider!r}. "
            f"Known providers: {list(registry.keys())}"
        )

    return service_cls()
