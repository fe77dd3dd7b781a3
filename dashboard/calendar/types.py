"""
日历层使用的不可变快照结构。

services 把 ORM 结果转换成这些 dataclass 再传进来，
aggregator / controller 只读这些结构，不碰数据库。
一次按月查询 = 一个 CalendarSnapshot；切换视图只是对快照重新过滤。
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional

ZERO = Decimal('0')


@dataclass(frozen=True)
class CalendarDay:
    date: str                      # ISO 8601: "YYYY-MM-DD"
    message_count: int = 0
    order_count: int = 0
    total_amount: Decimal = ZERO


@dataclass(frozen=True)
class OrderEntry:
    id: int
    order_number: str
    order_date: str                # ISO 8601: "YYYY-MM-DD"
    status: str
    total_amount: Optional[Decimal] = None
    total_items: int = 0
    hospital_name: Optional[str] = None
    delivery_date: Optional[str] = None


@dataclass(frozen=True)
class MessageEntry:
    id: int
    received_at: datetime
    source_app: str = 'manual'
    sender: Optional[str] = None
    content: str = ''
    parse_status: str = 'pending'
    order_id: Optional[int] = None

    @property
    def received_on(self) -> str:
        """received_at 按 UTC 截断后的日期字符串。"""
        ts = self.received_at
        if ts.tzinfo is not None:
            ts = ts.astimezone(timezone.utc)
        return ts.date().isoformat()


@dataclass(frozen=True)
class AggregationOptions:
    # 金额合计是否排除 cancelled 订单（settings.CALENDAR_EXCLUDE_CANCELLED）
    exclude_cancelled: bool = False


@dataclass(frozen=True)
class CalendarSnapshot:
    """
    month:    "YYYY-MM"
    days:     月度聚合（provider 按日期算好的 CalendarDay）
    orders:   order_date 落在该月的订单
    messages: received_at 落在该月的消息
    """

    month: str
    days: tuple = field(default_factory=tuple)
    orders: tuple = field(default_factory=tuple)
    messages: tuple = field(default_factory=tuple)

    @classmethod
    def empty(cls, month: str) -> 'CalendarSnapshot':
        return cls(month=month)
