"""
Response serializers — ORM 对象 / 日历 dataclass → JSON-able dict。

只负责「输出格式化」，不做任何解析或校验。
金额统一输出为字符串（Decimal 不丢精度），前端自己格式化。
"""

from . import status as order_status
from .calendar.aggregator import day_from_map
from .calendar.controller import DayView, MonthView, WeekView


def _iso(value):
    return value.isoformat() if value is not None else None


def _amount(value):
    return str(value) if value is not None else None


# ---------------------------------------------------------------------------
# Orders
# ---------------------------------------------------------------------------

def serialize_order(order):
    return {
        'id': order.id,
        'order_number': order.order_number,
        'order_date': _iso(order.order_date),
        'hospital_id': order.hospital_id,
        'hospital_name': order.hospital.name if order.hospital_id else None,
        'status': order.status,
        'status_label': order_status.STATUS_LABELS.get(order.status, order.status),
        'allowed_transitions': sorted(order_status.allowed_transitions(order.status)),
        'deletable': order.status == order_status.DRAFT,
        'total_items': order.total_items,
        'total_amount': _amount(order.total_amount),
        'supply_amount': _amount(order.supply_amount),
        'tax_amount': _amount(order.tax_amount),
        'delivery_date': _iso(order.delivery_date),
        'confirmed_at': _iso(order.confirmed_at),
        'delivered_at': _iso(order.delivered_at),
        'created_at': _iso(order.created_at),
        'notes': order.notes,
    }


def serialize_delivery(order):
    """配送页的一行：confirmed 的订单也列出来，但只有 processing 能直接标成已送达。"""
    body = serialize_order(order)
    body['deliverable'] = order_status.can_transition(order.status, order_status.DELIVERED)
    return body


def serialize_order_item(item):
    return {
        'id': item.id,
        'order_id': item.order_id,
        'product_id': item.product_id,
        'product_name': item.product.official_name if item.product_id else None,
        'supplier_id': item.supplier_id,
        'supplier_name': item.supplier.name if item.supplier_id else None,
        'original_text': item.original_text,
        'quantity': item.quantity,
        'unit_type': item.unit_type,
        'unit_price': _amount(item.unit_price),
        'line_total': _amount(item.line_total),
        'line_total_consistent': item.line_total_consistent,
        'match_status': item.match_status,
        'match_confidence': item.match_confidence,
    }


def serialize_order_detail(order):
    body = serialize_order(order)
    body['items'] = [serialize_order_item(item) for item in order.items.all()]
    return body


def serialize_page(key, rows, total, serializer, limit, offset):
    return {
        key: [serializer(row) for row in rows],
        'total': total,
        'limit': limit,
        'offset': offset,
    }


# ---------------------------------------------------------------------------
# Messages / KPIS
# ---------------------------------------------------------------------------

def serialize_message(message):
    return {
        'id': message.id,
        'source_app': message.source_app,
        'sender': message.sender,
        'content': message.content,
        'received_at': _iso(message.received_at),
        'device_id': message.device_id,
        'hospital_id': message.hospital_id,
        'parse_status': message.parse_status,
        'parse_method': message.parse_method,
        'parse_result': message.parse_result,
        'order_id': message.order_id,
        'is_order_message': message.is_order_message,
        'synced_at': _iso(message.synced_at),
    }


def serialize_kpis_report(report):
    item = report.order_item
    order = item.order
    return {
        'id': report.id,
        'order_item_id': item.id,
        'order_number': order.order_number,
        'hospital_name': order.hospital.name,
        'product_name': item.product.official_name if item.product_id else item.original_text,
        'quantity': item.quantity,
        'report_status': report.report_status,
        'reference_number': report.reference_number,
        'reported_at': _iso(report.reported_at),
        'notes': report.notes,
        'created_at': _iso(report.created_at),
    }


# ---------------------------------------------------------------------------
# Reference data
# ---------------------------------------------------------------------------

def serialize_hospital(hospital):
    return {
        'id': hospital.id,
        'name': hospital.name,
        'short_name': hospital.short_name,
        'hospital_type': hospital.hospital_type,
        'phone': hospital.phone,
        'address': hospital.address,
        'contact_person': hospital.contact_person,
        'business_number': hospital.business_number,
        'payment_terms': hospital.payment_terms,
        'lead_time_days': hospital.lead_time_days,
        'is_active': hospital.is_active,
    }


def serialize_product(product):
    return {
        'id': product.id,
        'name': product.name,
        'official_name': product.official_name,
        'short_name': product.short_name,
        'category': product.category,
        'manufacturer': product.manufacturer,
        'ingredient': product.ingredient,
        'efficacy': product.efficacy,
        'standard_code': product.standard_code,
        'unit': product.unit,
        'unit_price': _amount(product.unit_price),
        'is_active': product.is_active,
    }


def serialize_alias(alias):
    return {
        'id': alias.id,
        'product_id': alias.product_id,
        'hospital_id': alias.hospital_id,
        'alias': alias.alias,
        'source': alias.source,
    }


def serialize_supplier(supplier):
    return {
        'id': supplier.id,
        'name': supplier.name,
        'short_name': supplier.short_name,
        'contact_info': supplier.contact_info,
        'notes': supplier.notes,
        'is_active': supplier.is_active,
    }


def serialize_sales_report(report):
    rows = [
        {
            **row,
            'unit_price': _amount(row['unit_price']),
            'supply_amount': _amount(row['supply_amount']),
            'tax_amount': _amount(row['tax_amount']),
        }
        for row in report['rows']
    ]
    summary = dict(report['summary'])
    for key in ('total_supply', 'total_tax', 'total_amount'):
        summary[key] = _amount(summary[key])
    return {'period': report['period'], 'rows': rows, 'summary': summary}


# ---------------------------------------------------------------------------
# Calendar
# ---------------------------------------------------------------------------

def serialize_calendar_day(day):
    return {
        'date': day.date,
        'message_count': day.message_count,
        'order_count': day.order_count,
        'total_amount': _amount(day.total_amount),
    }


def serialize_order_entry(entry):
    return {
        'id': entry.id,
        'order_number': entry.order_number,
        'order_date': entry.order_date,
        'hospital_name': entry.hospital_name,
        'status': entry.status,
        'status_label': order_status.STATUS_LABELS.get(entry.status, entry.status),
        'allowed_transitions': sorted(order_status.allowed_transitions(entry.status)),
        'total_items': entry.total_items,
        'total_amount': _amount(entry.total_amount),
        'delivery_date': entry.delivery_date,
    }


def serialize_message_entry(entry):
    return {
        'id': entry.id,
        'received_at': _iso(entry.received_at),
        'source_app': entry.source_app,
        'sender': entry.sender,
        'content': entry.content,
        'parse_status': entry.parse_status,
        'order_id': entry.order_id,
    }


def serialize_calendar_view(controller):
    """控制器当前状态 + 派生视图 + 前后翻页的 anchor。"""
    view = controller.working_set()
    body = {
        'state': controller.state(),
        'visible_range': [d.isoformat() for d in controller.visible_range()],
        'navigation': {
            'prev_anchor': controller.shifted_anchor(-1).isoformat(),
            'next_anchor': controller.shifted_anchor(1).isoformat(),
            'today': controller.today.isoformat(),
        },
    }

    if isinstance(view, MonthView):
        body['month'] = {
            'leading_blanks': view.grid.leading_blanks,
            'days': [serialize_calendar_day(day_from_map(view.days, d)) for d in view.grid.dates],
            'selected_date': view.selected_date,
            'selected_orders': [serialize_order_entry(o) for o in view.selected_orders],
            'selected_messages': [serialize_message_entry(m) for m in view.selected_messages],
        }
    elif isinstance(view, WeekView):
        body['week'] = {
            'start': view.start,
            'end': view.end,
            'spans_unloaded_month': view.spans_unloaded_month,
            'totals': {
                'messages': view.totals.messages,
                'orders': view.totals.orders,
                'amount': _amount(view.totals.amount),
            },
            'days': [
                {
                    **serialize_calendar_day(row.day),
                    'in_month': row.in_month,
                    'orders': [serialize_order_entry(o) for o in row.orders],
                    'messages': [serialize_message_entry(m) for m in row.messages],
                }
                for row in view.rows
            ],
        }
    elif isinstance(view, DayView):
        body['day'] = {
            **serialize_calendar_day(view.day),
            'in_month': view.in_month,
            'orders': [serialize_order_entry(o) for o in view.orders],
            'messages': [serialize_message_entry(m) for m in view.messages],
        }
    return body
