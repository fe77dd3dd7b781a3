"""
变更通知通道。

- 进程内：subscribe(table, callback) / Subscription.unsubscribe()
- 跨进程：配置了 REALTIME_REDIS_URL 时，同时 publish 到 Redis 频道
  notiflow:changes:<table>，前端推送服务自己去订阅。

回调只保证「这张表有东西变了」，不保证携带数据；订阅方应整体重新派生视图。
重复刷新是幂等的，和外部推送触发的刷新并发也没关系。
"""

import json
import logging
import threading
from collections import defaultdict
from dataclasses import asdict, dataclass
from typing import Callable, Optional

from django.conf import settings
from django.db import transaction

logger = logging.getLogger(__name__)

ANY_TABLE = '*'


@dataclass(frozen=True)
class ChangeEvent:
    table: str
    event: str                     # INSERT / UPDATE / DELETE
    record_id: Optional[int] = None


class Subscription:

    def __init__(self, notifier, table, callback):
        self._notifier = notifier
        self.table = table
        self.callback = callback

    def unsubscribe(self):
        self._notifier._remove(self)


class ChangeNotifier:

    def __init__(self, redis_url: str = ''):
        self._redis_url = redis_url
        self._redis = None
        self._lock = threading.Lock()
        self._subscribers = defaultdict(list)

    def subscribe(self, table: str, callback: Callable[[ChangeEvent], None]) -> Subscription:
        sub = Subscription(self, table, callback)
        with self._lock:
            self._subscribers[table].append(sub)
        return sub

    def _remove(self, sub: Subscription) -> None:
        with self._lock:
            subs = self._subscribers.get(sub.table, [])
            if sub in subs:
                subs.remove(sub)

    def publish(self, table: str, event: str, record_id: Optional[int] = None) -> ChangeEvent:
        change = ChangeEvent(table=table, event=event, record_id=record_id)
        with self._lock:
            targets = list(self._subscribers.get(table, [])) + list(self._subscribers.get(ANY_TABLE, []))

        for sub in targets:
            try:
                sub.callback(change)
            except Exception:
                # 一个订阅方出错不影响其他订阅方刷新
                logger.exception("change subscriber failed table=%s event=%s", table, event)

        self._broadcast(change)
        return change

    def publish_on_commit(self, table: str, event: str, record_id: Optional[int] = None) -> None:
        """事务提交后再通知；回滚则不通知。"""
        transaction.on_commit(lambda: self.publish(table, event, record_id))

    def _broadcast(self, change: ChangeEvent) -> None:
        if not self._redis_url:
            return
        try:
            client = self._get_redis_client()
            client.publish(f"notiflow:changes:{change.table}", json.dumps(asdict(change)))
        except Exception:
            logger.warning("redis broadcast failed table=%s", change.table, exc_info=True)

    def _get_redis_client(self):
        if self._redis is None:
            import redis
            self._redis = redis.from_url(self._redis_url)
        return self._redis


notifier = ChangeNotifier(redis_url=getattr(settings, 'REALTIME_REDIS_URL', ''))
