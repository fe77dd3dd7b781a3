"""
日历视图控制器（month / week / day）。

每种粒度各自保存一个 anchor 日期，切回之前看过的粒度时位置不变。
切换粒度或在周 / 日视图里翻页都只是对已加载的快照重新过滤；
只有 anchor 落到另一个月时才需要重新加载（load 新的月度快照）。

构造时传入 loader（month → CalendarSnapshot）则自动加载；
不传则通过 pending_month 告诉调用方该加载哪个月，调用方再 load()。
"""

import logging
from dataclasses import dataclass
from datetime import date, timedelta
from typing import Callable, Optional

from django.utils import timezone

from ..exceptions import ValidationError
from . import aggregator
from .types import AggregationOptions, CalendarDay, CalendarSnapshot

logger = logging.getLogger(__name__)

MONTH = 'month'
WEEK = 'week'
DAY = 'day'
GRANULARITIES = (MONTH, WEEK, DAY)


@dataclass(frozen=True)
class MonthView:
    month: str
    grid: aggregator.MonthGrid
    days: dict
    selected_date: Optional[str]
    selected_orders: tuple
    selected_messages: tuple


@dataclass(frozen=True)
class WeekView:
    start: str
    end: str
    rows: tuple
    totals: aggregator.WeekTotals
    spans_unloaded_month: bool


@dataclass(frozen=True)
class DayView:
    date: str
    in_month: bool
    day: CalendarDay
    orders: tuple
    messages: tuple


class CalendarViewController:

    def __init__(self, month: str, today: Optional[date] = None,
                 loader: Optional[Callable[[str], CalendarSnapshot]] = None,
                 options: Optional[AggregationOptions] = None):
        aggregator.parse_month(month)
        self.today = today or timezone.localdate()
        self.loader = loader
        self.options = options or AggregationOptions()
        self.granularity = MONTH
        self.selected_date = None
        self.pending_month = None

        initial = self.today if aggregator.month_of(self.today) == month else aggregator.parse_month(month)
        self.anchors = {g: initial for g in GRANULARITIES}

        self.snapshot = CalendarSnapshot.empty(month)
        if loader is not None:
            self.load(loader(month))

    # ------------------------------------------------------------------
    # 状态
    # ------------------------------------------------------------------

    @property
    def loaded_month(self) -> str:
        return self.snapshot.month

    @property
    def anchor(self) -> date:
        return self.anchors[self.granularity]

    def load(self, snapshot: CalendarSnapshot) -> None:
        """装入新的月度快照。选中日期不在新月份里时关闭详情面板。"""
        self.snapshot = snapshot
        if self.pending_month == snapshot.month:
            self.pending_month = None
        if self.selected_date and aggregator.month_of(self.selected_date) != snapshot.month:
            self.selected_date = None
        logger.debug("calendar snapshot loaded month=%s orders=%d messages=%d",
                     snapshot.month, len(snapshot.orders), len(snapshot.messages))

    def state(self) -> dict:
        return {
            'month': self.loaded_month,
            'view': self.granularity,
            'anchor': self.anchor.isoformat(),
            'selected': self.selected_date,
        }

    @classmethod
    def from_state(cls, month: str, view: str = MONTH, anchor: Optional[date] = None,
                   selected: Optional[str] = None, **kwargs) -> 'CalendarViewController':
        """state() 的反操作：month / view / anchor / selected → 控制器。"""
        controller = cls(month, **kwargs)
        controller.restore(view=view, anchor=anchor, selected=selected)
        return controller

    def restore(self, view: str = MONTH, anchor: Optional[date] = None,
                selected: Optional[str] = None) -> Optional[str]:
        """按查询参数恢复状态（HTTP API 是无状态的）。"""
        self._check_granularity(view)
        self.granularity = view
        if anchor is not None:
            self.anchors[view] = anchor
        if selected and view == MONTH and aggregator.month_of(selected) == self.loaded_month:
            self.selected_date = selected
        return self._ensure_loaded()

    # ------------------------------------------------------------------
    # 操作
    # ------------------------------------------------------------------

    def set_granularity(self, granularity: str) -> Optional[str]:
        self._check_granularity(granularity)
        self.granularity = granularity
        return self._ensure_loaded()

    def select_date(self, day: str) -> Optional[str]:
        """
        月视图：切换该日期的详情面板（再点一次关闭）。
        周 / 日视图：切到日视图，anchor = 该日期。
        """
        if self.granularity == MONTH:
            self.selected_date = None if self.selected_date == day else day
            return None

        self.anchors[DAY] = date.fromisoformat(day)
        self.granularity = DAY
        return self._ensure_loaded()

    def shifted_anchor(self, delta: int) -> date:
        anchor = self.anchor
        if self.granularity == MONTH:
            return aggregator.shift_month(anchor, delta)
        if self.granularity == WEEK:
            return anchor + timedelta(weeks=delta)
        return anchor + timedelta(days=delta)

    def step(self, delta: int) -> Optional[str]:
        """前后翻一个单位（月 / 周 / 日）。返回需要重新加载的月份，没有则 None。"""
        self.anchors[self.granularity] = self.shifted_anchor(delta)
        return self._ensure_loaded()

    def go_today(self) -> Optional[str]:
        self.anchors = {g: self.today for g in GRANULARITIES}
        self.selected_date = None
        return self._ensure_loaded()

    def _ensure_loaded(self) -> Optional[str]:
        target = aggregator.month_of(self.anchor)
        if target == self.loaded_month:
            self.pending_month = None
            return None

        self.pending_month = target
        if self.loader is not None:
            self.load(self.loader(target))
        return target

    @staticmethod
    def _check_granularity(granularity: str) -> None:
        if granularity not in GRANULARITIES:
            raise ValidationError(
                message=f"Unknown calendar view: {granularity!r}",
                code='INVALID_VIEW',
                detail={'allowed': list(GRANULARITIES)},
            )

    # ------------------------------------------------------------------
    # 派生视图
    # ------------------------------------------------------------------

    def visible_range(self) -> tuple[date, date]:
        if self.granularity == MONTH:
            return aggregator.month_bounds(aggregator.month_of(self.anchor))
        if self.granularity == WEEK:
            days = aggregator.week_dates(self.anchor)
            return days[0], days[-1]
        return self.anchor, self.anchor

    def working_set(self):
        if self.granularity == MONTH:
            return self._month_view()
        if self.granularity == WEEK:
            return self._week_view()
        return self._day_view()

    def _month_view(self) -> MonthView:
        snap = self.snapshot
        selected = self.selected_date
        return MonthView(
            month=snap.month,
            grid=aggregator.month_grid(snap.month),
            days=aggregator.build_day_map(snap.days),
            selected_date=selected,
            selected_orders=aggregator.orders_on(snap.orders, selected) if selected else (),
            selected_messages=aggregator.messages_on(snap.messages, selected) if selected else (),
        )

    def _week_view(self) -> WeekView:
        rows = aggregator.week_rows(self.anchor, self.snapshot, self.options)
        return WeekView(
            start=rows[0].date,
            end=rows[-1].date,
            rows=rows,
            totals=aggregator.week_totals(rows),
            spans_unloaded_month=any(not r.in_month for r in rows),
        )

    def _day_view(self) -> DayView:
        key = self.anchor.isoformat()
        in_month = aggregator.month_of(key) == self.snapshot.month
        orders = aggregator.orders_on(self.snapshot.orders, key) if in_month else ()
        messages = aggregator.messages_on(self.snapshot.messages, key) if in_month else ()
        return DayView(
            date=key,
            in_month=in_month,
            day=aggregator.summarize_day(key, orders, messages, self.options),
            orders=orders,
            messages=messages,
        )
