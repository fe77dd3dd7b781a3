"""
只读查询：列表 / 详情 / 月度聚合 / 报表。

列表函数统一返回 (rows, total)，total 是过滤后、分页前的总数。
写操作都在 services.py。
"""

import logging
from datetime import timedelta
from decimal import Decimal

from django.conf import settings
from django.db import DatabaseError
from django.db.models import Count, Q, Sum
from django.db.models.functions import TruncDate
from django.utils import timezone

from .calendar.aggregator import month_bounds
from .calendar.types import CalendarDay, CalendarSnapshot, MessageEntry, OrderEntry
from .exceptions import NotFound
from .models import Hospital, KpisReport, Order, OrderItem, Product, RawMessage, Setting, Supplier
from . import status as order_status

logger = logging.getLogger(__name__)

SETTING_DEFAULTS = {
    'ai_enabled': False,
    'ai_model': 'claude-haiku-4-5-20251001',
    'ai_parse_prompt': None,
    'ai_auto_process': False,
    'ai_confidence_threshold': 0.7,
}


def _page(queryset, limit, offset):
    total = queryset.count()
    offset = max(offset or 0, 0)
    return list(queryset[offset:offset + limit]), total


# ---------------------------------------------------------------------------
# Orders / messages
# ---------------------------------------------------------------------------

def list_orders(status=None, hospital_id=None, date_from=None, date_to=None,
                search=None, limit=25, offset=0):
    qs = Order.objects.select_related('hospital')
    if status:
        qs = qs.filter(status=status)
    if hospital_id:
        qs = qs.filter(hospital_id=hospital_id)
    if date_from:
        qs = qs.filter(order_date__gte=date_from)
    if date_to:
        qs = qs.filter(order_date__lte=date_to)
    if search:
        qs = qs.filter(
            Q(order_number__icontains=search) |
            Q(hospital__name__icontains=search) |
            Q(notes__icontains=search)
        )
    return _page(qs.order_by('-created_at'), limit, offset)


def get_order(order_id):
    """Get order with items. Raises NotFound."""
    try:
        return (
            Order.objects.select_related('hospital')
            .prefetch_related('items__product', 'items__supplier')
            .get(id=order_id)
        )
    except Order.DoesNotExist:
        raise NotFound(
            message='Order not found',
            code='ORDER_NOT_FOUND',
            detail={'order_id': order_id},
        )


def list_messages(date_from=None, date_to=None, parse_status=None, source_app=None,
                  limit=50, offset=0):
    qs = RawMessage.objects.all()
    if date_from:
        qs = qs.filter(received_at__date__gte=date_from)
    if date_to:
        qs = qs.filter(received_at__date__lte=date_to)
    if parse_status:
        qs = qs.filter(parse_status=parse_status)
    if source_app:
        qs = qs.filter(source_app=source_app)
    return _page(qs.order_by('-received_at'), limit, offset)


# ---------------------------------------------------------------------------
# Calendar
# ---------------------------------------------------------------------------

def get_calendar_stats(month, exclude_cancelled=None):
    """
    月度聚合 provider：该月每一天一条 CalendarDay（没有数据的日期也返回全 0）。

    exclude_cancelled 默认读 settings.CALENDAR_EXCLUDE_CANCELLED，
    和 aggregator 的 AggregationOptions 保持同一口径。
    """
    if exclude_cancelled is None:
        exclude_cancelled = settings.CALENDAR_EXCLUDE_CANCELLED
    first, last = month_bounds(month)

    if exclude_cancelled:
        amount = Sum('total_amount', filter=~Q(status=order_status.CANCELLED))
    else:
        amount = Sum('total_amount')
    order_rows = (
        Order.objects.filter(order_date__range=(first, last))
        .order_by()
        .values('order_date')
        .annotate(order_count=Count('id'), total_amount=amount)
    )
    message_rows = (
        RawMessage.objects.filter(received_at__date__range=(first, last))
        .order_by()
        .annotate(day=TruncDate('received_at'))
        .values('day')
        .annotate(message_count=Count('id'))
    )

    orders_by_day = {row['order_date']: row for row in order_rows}
    messages_by_day = {row['day']: row['message_count'] for row in message_rows}

    days = []
    current = first
    while current <= last:
        row = orders_by_day.get(current) or {}
        days.append(CalendarDay(
            date=current.isoformat(),
            message_count=messages_by_day.get(current, 0),
            order_count=row.get('order_count', 0),
            total_amount=row.get('total_amount') or Decimal('0'),
        ))
        current += timedelta(days=1)
    return days


def _order_entry(order):
    return OrderEntry(
        id=order.id,
        order_number=order.order_number,
        order_date=order.order_date.isoformat(),
        status=order.status,
        total_amount=order.total_amount,
        total_items=order.total_items,
        hospital_name=order.hospital.name if order.hospital_id else None,
        delivery_date=order.delivery_date.isoformat() if order.delivery_date else None,
    )


def _message_entry(message):
    return MessageEntry(
        id=message.id,
        received_at=message.received_at,
        source_app=message.source_app,
        sender=message.sender,
        content=message.content,
        parse_status=message.parse_status,
        order_id=message.order_id,
    )


def load_month_snapshot(month):
    """
    一次性取出某月的聚合 + 订单 + 消息，封装成不可变快照。

    查询失败时用空集合代替（只影响列表展示，变更操作不走这里）。
    """
    first, last = month_bounds(month)
    limit = settings.CALENDAR_FETCH_LIMIT

    try:
        days = tuple(get_calendar_stats(month))
    except DatabaseError:
        logger.warning("calendar stats fetch failed month=%s", month, exc_info=True)
        days = ()

    try:
        orders, total_orders = list_orders(date_from=first, date_to=last, limit=limit)
        if total_orders > limit:
            logger.warning("calendar orders truncated month=%s total=%d limit=%d",
                           month, total_orders, limit)
        orders = tuple(_order_entry(o) for o in orders)
    except DatabaseError:
        logger.warning("calendar orders fetch failed month=%s", month, exc_info=True)
        orders = ()

    try:
        messages, _ = list_messages(date_from=first, date_to=last, limit=limit)
        messages = tuple(_message_entry(m) for m in messages)
    except DatabaseError:
        logger.warning("calendar messages fetch failed month=%s", month, exc_info=True)
        messages = ()

    return CalendarSnapshot(month=month, days=days, orders=orders, messages=messages)


# ---------------------------------------------------------------------------
# Dashboard stats / deliveries / KPIS / reports
# ---------------------------------------------------------------------------

def get_daily_stats(target_date=None):
    target_date = target_date or timezone.localdate()
    messages = RawMessage.objects.filter(received_at__date=target_date)
    total = messages.count()
    parsed = messages.filter(parse_status='parsed').count()
    orders_created = Order.objects.filter(created_at__date=target_date).count()
    return {
        'date': target_date.isoformat(),
        'total_messages': total,
        'parse_success': parsed,
        'orders_created': orders_created,
        'parse_success_rate': round(parsed / total * 100, 1) if total else 0.0,
    }


def get_today_deliveries(today=None):
    today = today or timezone.localdate()
    qs = (
        Order.objects.select_related('hospital')
        .filter(delivery_date=today,
                status__in=[order_status.CONFIRMED, order_status.PROCESSING])
        .order_by('created_at')
    )
    deliveries = list(qs)
    return deliveries, len(deliveries)


def _kpis_queryset():
    return (
        KpisReport.objects.select_related('order_item__order__hospital', 'order_item__product')
        .filter(report_status='pending')
        .order_by('created_at')
    )


def get_pending_kpis():
    reports = list(_kpis_queryset())
    return reports, len(reports)


def get_overdue_kpis(days=7):
    cutoff = timezone.now() - timedelta(days=days)
    reports = list(_kpis_queryset().filter(created_at__lt=cutoff))
    return reports, len(reports)


def get_sales_report(period):
    """
    月度销售报表（period = "YYYY-MM"）。

    只统计 confirmed / processing / delivered 的订单，draft 和 cancelled 不算销售。
    """
    first, last = month_bounds(period)
    items = (
        OrderItem.objects.select_related('order__hospital', 'product', 'supplier')
        .filter(
            order__order_date__range=(first, last),
            order__status__in=[
                order_status.CONFIRMED, order_status.PROCESSING, order_status.DELIVERED,
            ],
        )
        .order_by('order__order_date', 'order__order_number', 'id')
    )

    rows = []
    order_ids = set()
    total_supply = Decimal('0')
    total_tax = Decimal('0')
    for item in items:
        order = item.order
        supply = item.line_total
        if supply is None and item.unit_price is not None:
            supply = item.unit_price * item.quantity
        supply = supply or Decimal('0')
        # 增值税按 10% 计算
        tax = (supply / 10).quantize(Decimal('1'))
        order_ids.add(order.id)
        total_supply += supply
        total_tax += tax
        rows.append({
            'order_number': order.order_number,
            'hospital_name': order.hospital.name,
            'business_number': order.hospital.business_number or '',
            'address': order.hospital.address or '',
            'product_name': item.product.official_name if item.product else (item.original_text or ''),
            'standard_code': (item.product.standard_code or '') if item.product else '',
            'supplier_name': item.supplier.name if item.supplier else '',
            'quantity': item.quantity,
            'unit_price': item.unit_price or Decimal('0'),
            'supply_amount': supply,
            'tax_amount': tax,
        })

    return {
        'period': period,
        'rows': rows,
        'summary': {
            'total_orders': len(order_ids),
            'total_items': len(rows),
            'total_supply': total_supply,
            'total_tax': total_tax,
            'total_amount': total_supply + total_tax,
        },
    }


# ---------------------------------------------------------------------------
# Reference data
# ---------------------------------------------------------------------------

def list_hospitals(search=None, hospital_type=None, limit=50, offset=0):
    qs = Hospital.objects.all()
    if search:
        qs = qs.filter(name__icontains=search)
    if hospital_type:
        qs = qs.filter(hospital_type=hospital_type)
    return _page(qs.order_by('name'), limit, offset)


def list_products(search=None, category=None, limit=50, offset=0):
    qs = Product.objects.all()
    if search:
        qs = qs.filter(Q(name__icontains=search) | Q(official_name__icontains=search))
    if category:
        qs = qs.filter(category=category)
    return _page(qs.order_by('name'), limit, offset)


def list_suppliers(search=None, limit=50, offset=0):
    qs = Supplier.objects.all()
    if search:
        qs = qs.filter(name__icontains=search)
    return _page(qs.order_by('name'), limit, offset)


def get_settings():
    stored = {s.key: s.value for s in Setting.objects.filter(key__in=SETTING_DEFAULTS)}
    result = dict(SETTING_DEFAULTS)
    result.update({k: v for k, v in stored.items() if v is not None})
    result['ai_enabled'] = result['ai_enabled'] in (True, 'true')
    result['ai_auto_process'] = result['ai_auto_process'] in (True, 'true')
    result['ai_confidence_threshold'] = float(result['ai_confidence_threshold'])
    return result


def _get_reference(model, pk, code):
    try:
        return model.objects.get(pk=pk)
    except model.DoesNotExist:
        raise NotFound(
            message=f"{model.__name__} not found",
            code=code,
            detail={'id': pk},
        )


def get_hospital(hospital_id):
    return _get_reference(Hospital, hospital_id, 'HOSPITAL_NOT_FOUND')


def get_product(product_id):
    return _get_reference(Product, product_id, 'PRODUCT_NOT_FOUND')


def get_supplier(supplier_id):
    return _get_reference(Supplier, supplier_id, 'SUPPLIER_NOT_FOUND')
