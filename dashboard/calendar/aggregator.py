"""
日历聚合：全部是纯函数，输入快照，输出新的 dataclass。

月视图直接用月度聚合（provider 预先算好的 CalendarDay）；
周 / 日视图从同一份快照里按日期字符串精确过滤再求和，不再查询数据库。
同一天两种算法的结果必须一致，reconcile() 用来检查这一点。

已知限制：周视图跨月时，不在已加载月份里的日期聚合为 0（不会跨月重新查询），
WeekView.spans_unloaded_month 会把这种情况标出来。
"""

import calendar
from dataclasses import dataclass
from datetime import date, timedelta
from decimal import Decimal

from ..exceptions import ValidationError
from .types import ZERO, AggregationOptions, CalendarDay, CalendarSnapshot

_DEFAULT_OPTIONS = AggregationOptions()


@dataclass(frozen=True)
class MonthGrid:
    month: str
    leading_blanks: int            # 1 号之前的空格数（周日 = 0）
    dates: tuple                   # 该月每一天的 ISO 字符串


@dataclass(frozen=True)
class WeekRow:
    date: str
    in_month: bool
    day: CalendarDay
    orders: tuple
    messages: tuple


@dataclass(frozen=True)
class WeekTotals:
    messages: int = 0
    orders: int = 0
    amount: Decimal = ZERO


# ---------------------------------------------------------------------------
# 日期工具
# ---------------------------------------------------------------------------

def parse_month(month: str) -> date:
    """"YYYY-MM" → 该月 1 号。格式不对抛 ValidationError。"""
    try:
        year, mon = month.split('-')
        return date(int(year), int(mon), 1)
    except (AttributeError, ValueError):
        raise ValidationError(
            message=f"Invalid month: {month!r}, expected YYYY-MM",
            code='INVALID_MONTH',
            detail={'month': month},
        )


def month_of(day) -> str:
    if isinstance(day, str):
        return day[:7]
    return day.strftime('%Y-%m')


def month_bounds(month: str) -> tuple[date, date]:
    first = parse_month(month)
    last_day = calendar.monthrange(first.year, first.month)[1]
    return first, first.replace(day=last_day)


def shift_month(day: date, delta: int) -> date:
    """前后挪 delta 个月，日号超出目标月天数时取月末。"""
    index = day.year * 12 + (day.month - 1) + delta
    year, mon = divmod(index, 12)
    last_day = calendar.monthrange(year, mon + 1)[1]
    return date(year, mon + 1, min(day.day, last_day))


def week_dates(anchor: date) -> tuple:
    """anchor 所在周（周日开始）的 7 个日期。"""
    start = anchor - timedelta(days=(anchor.weekday() + 1) % 7)
    return tuple(start + timedelta(days=i) for i in range(7))


def month_grid(month: str) -> MonthGrid:
    first, last = month_bounds(month)
    return MonthGrid(
        month=month,
        leading_blanks=(first.weekday() + 1) % 7,
        dates=tuple(
            (first + timedelta(days=i)).isoformat()
            for i in range(last.day)
        ),
    )


# ---------------------------------------------------------------------------
# 聚合
# ---------------------------------------------------------------------------

def build_day_map(days) -> dict:
    return {d.date: d for d in days}


def day_from_map(day_map: dict, day: str) -> CalendarDay:
    """没有记录的日期按全 0 处理。"""
    return day_map.get(day) or CalendarDay(date=day)


def orders_on(orders, day: str) -> tuple:
    return tuple(o for o in orders if o.order_date == day)


def messages_on(messages, day: str) -> tuple:
    return tuple(m for m in messages if m.received_on == day)


def order_amount(orders, options: AggregationOptions = _DEFAULT_OPTIONS) -> Decimal:
    total = ZERO
    for o in orders:
        if options.exclude_cancelled and o.status == 'cancelled':
            continue
        total += o.total_amount or ZERO
    return total


def summarize_day(day: str, orders, messages,
                  options: AggregationOptions = _DEFAULT_OPTIONS) -> CalendarDay:
    """从快照里的订单 / 消息现算某一天的 CalendarDay。"""
    day_orders = orders_on(orders, day)
    return CalendarDay(
        date=day,
        message_count=len(messages_on(messages, day)),
        order_count=len(day_orders),
        total_amount=order_amount(day_orders, options),
    )


def week_rows(anchor: date, snapshot: CalendarSnapshot,
              options: AggregationOptions = _DEFAULT_OPTIONS) -> tuple:
    rows = []
    for d in week_dates(anchor):
        key = d.isoformat()
        if month_of(key) != snapshot.month:
            rows.append(WeekRow(date=key, in_month=False, day=CalendarDay(date=key),
                                orders=(), messages=()))
            continue
        day_orders = orders_on(snapshot.orders, key)
        day_messages = messages_on(snapshot.messages, key)
        rows.append(WeekRow(
            date=key,
            in_month=True,
            day=summarize_day(key, day_orders, day_messages, options),
            orders=day_orders,
            messages=day_messages,
        ))
    return tuple(rows)


def week_totals(rows) -> WeekTotals:
    totals = WeekTotals()
    for row in rows:
        totals = WeekTotals(
            messages=totals.messages + row.day.message_count,
            orders=totals.orders + row.day.order_count,
            amount=totals.amount + row.day.total_amount,
        )
    return totals


def reconcile(snapshot: CalendarSnapshot,
              options: AggregationOptions = _DEFAULT_OPTIONS) -> list:
    """
    对比月度聚合和快照现算的结果，返回不一致的日期列表。

    正常情况下应返回 []；不为空说明 provider 的口径（例如是否排除 cancelled）
    和 AggregationOptions 不一致，或者订单查询被 limit 截断了。
    """
    day_map = build_day_map(snapshot.days)
    mismatched = []
    for day in month_grid(snapshot.month).dates:
        expected = day_from_map(day_map, day)
        actual = summarize_day(day, snapshot.orders, snapshot.messages, options)
        if (expected.order_count, expected.message_count, Decimal(expected.total_amount)) != (
            actual.order_count, actual.message_count, actual.total_amount
        ):
            mismatched.append(day)
    return mismatched
