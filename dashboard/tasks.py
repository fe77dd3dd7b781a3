import logging

import requests
from celery import shared_task

logger = logging.getLogger(__name__)


@shared_task(
    bind=True,
    max_retries=2,
    default_retry_delay=5,    # 初始重试延迟（秒），指数退避会乘以 2^retry_count
)
def run_test_parse(self, message: str):
    """
    设置页的「解析测试」：把一条消息交给外部解析服务，结果存进 result backend。

    重试策略：
      - 只有连接失败 / 超时才重试，最多 2 次（5s → 10s）
      - HTTP 错误、配置错误直接返回失败，不重试

    Returns:
        {"ok": True, "result": {...}} 或 {"ok": False, "error": "..."}
    """
    from dashboard.parsing.factory import get_parse_service

    logger.info("[Celery][run_test_parse] 开始解析 (attempt %d/%d) 长度=%d",
                self.request.retries + 1, self.max_retries + 1, len(message))

    try:
        result = get_parse_service().parse(message)
    except (requests.ConnectionError, requests.Timeout) as exc:
        if self.request.retries < self.max_retries:
            countdown = self.default_retry_delay * (2 ** self.request.retries)
            logger.warning("[Celery] 解析服务连接失败，%ds 后重试: %s", countdown, exc)
            raise self.retry(exc=exc, countdown=countdown)
        logger.error("[Celery] 解析服务连接失败，已达最大重试次数: %s", exc)
        return {'ok': False, 'error': str(exc)}
    except (requests.RequestException, ValueError) as exc:
        logger.warning("[Celery] 解析失败: %s", exc)
        return {'ok': False, 'error': str(exc)}

    logger.info("[Celery] 解析完成 items=%d method=%s", len(result.items), result.method)
    return {'ok': True, 'result': result.to_dict()}
