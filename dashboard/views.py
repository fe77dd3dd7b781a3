"""
HTTP 层：只做参数解析 → 调 queries / services → serializers 格式化。

View 里不 catch 业务异常，全部交给 exception_handler 统一格式化。
"""

import logging
from datetime import date

from django.conf import settings
from django.http import JsonResponse
from django.utils import timezone
from rest_framework.views import APIView

from config.celery import app as celery_app

from . import queries, serializers, services
from .calendar.controller import MONTH, CalendarViewController
from .calendar.aggregator import month_of, parse_month
from .calendar.types import AggregationOptions
from .exceptions import ValidationError
from .tasks import run_test_parse

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# 参数解析
# ---------------------------------------------------------------------------

def _int_param(request, name, default=None, minimum=0, maximum=None):
    raw = request.query_params.get(name)
    if raw in (None, ''):
        return default
    try:
        value = int(raw)
    except ValueError:
        value = None
    if value is None or value < minimum or (maximum is not None and value > maximum):
        raise ValidationError(
            message=f"Query parameter {name!r} must be an integer >= {minimum}",
            code='INVALID_PARAMETER',
            detail={'parameter': name, 'value': raw},
        )
    return value


def _date_param(request, name):
    raw = request.query_params.get(name)
    if not raw:
        return None
    try:
        return date.fromisoformat(raw)
    except ValueError:
        raise ValidationError(
            message=f"Query parameter {name!r} must be YYYY-MM-DD",
            code='INVALID_PARAMETER',
            detail={'parameter': name, 'value': raw},
        )


def _body(request):
    data = request.data
    if not isinstance(data, dict):
        raise ValidationError(message='Request body must be a JSON object', code='INVALID_BODY')
    return data


def _required(data, key):
    value = data.get(key)
    if value in (None, ''):
        raise ValidationError(
            message=f"Field {key!r} is required",
            code='FIELD_REQUIRED',
            detail={'field': key},
        )
    return value


def _required_str(data, key):
    value = _required(data, key)
    if not isinstance(value, str):
        raise ValidationError(
            message=f"Field {key!r} must be a string",
            code='INVALID_BODY',
            detail={'field': key},
        )
    return value


def _paging(request, default_limit):
    return (
        _int_param(request, 'limit', default_limit, minimum=1, maximum=500),
        _int_param(request, 'offset', 0),
    )


# ---------------------------------------------------------------------------
# Orders
# ---------------------------------------------------------------------------

class OrderListView(APIView):
    """GET /api/orders/"""

    def get(self, request):
        limit, offset = _paging(request, 25)
        rows, total = queries.list_orders(
            status=request.query_params.get('status'),
            hospital_id=_int_param(request, 'hospital_id'),
            date_from=_date_param(request, 'from'),
            date_to=_date_param(request, 'to'),
            search=request.query_params.get('q'),
            limit=limit,
            offset=offset,
        )
        return JsonResponse(serializers.serialize_page(
            'orders', rows, total, serializers.serialize_order, limit, offset))


class OrderDetailView(APIView):
    """GET / PATCH / DELETE /api/orders/<id>/"""

    def get(self, request, order_id):
        return JsonResponse(serializers.serialize_order_detail(queries.get_order(order_id)))

    def patch(self, request, order_id):
        services.update_order(order_id, _body(request))
        return JsonResponse(serializers.serialize_order_detail(queries.get_order(order_id)))

    def delete(self, request, order_id):
        services.delete_order(order_id)
        return JsonResponse({'deleted': True, 'order_id': order_id})


class OrderStatusView(APIView):
    """POST /api/orders/<id>/status/  body: {"status": "processing"}"""

    def post(self, request, order_id):
        target = _required_str(_body(request), 'status')
        order = services.apply_status_change(order_id, target)
        return JsonResponse(serializers.serialize_order(order))


class OrderConfirmView(APIView):
    """POST /api/orders/<id>/confirm/"""

    def post(self, request, order_id):
        order = services.confirm_order(order_id)
        return JsonResponse(serializers.serialize_order(order))


# ---------------------------------------------------------------------------
# Messages
# ---------------------------------------------------------------------------

class MessageListView(APIView):
    """GET /api/messages/"""

    def get(self, request):
        limit, offset = _paging(request, 50)
        rows, total = queries.list_messages(
            date_from=_date_param(request, 'from'),
            date_to=_date_param(request, 'to'),
            parse_status=request.query_params.get('parse_status'),
            source_app=request.query_params.get('source_app'),
            limit=limit,
            offset=offset,
        )
        return JsonResponse(serializers.serialize_page(
            'messages', rows, total, serializers.serialize_message, limit, offset))


class MessageDetailView(APIView):
    """DELETE /api/messages/<id>/"""

    def delete(self, request, message_id):
        services.delete_message(message_id)
        return JsonResponse({'deleted': True, 'message_id': message_id})


# ---------------------------------------------------------------------------
# Calendar / stats
# ---------------------------------------------------------------------------

class CalendarView(APIView):
    """
    GET /api/calendar/?month=2024-06&view=week&anchor=2024-06-12&selected=2024-06-03

    控制器状态完全由 query 参数携带；响应里的 state 原样带回下一次请求即可。
    anchor 落在别的月份时自动加载那个月，state.month 会跟着变。
    """

    def get(self, request):
        params = request.query_params
        anchor = _date_param(request, 'anchor')
        month = params.get('month') or (month_of(anchor) if anchor else None)
        if month:
            parse_month(month)
        else:
            month = month_of(timezone.localdate())

        controller = CalendarViewController.from_state(
            month,
            view=params.get('view') or MONTH,
            anchor=anchor,
            selected=params.get('selected'),
            loader=queries.load_month_snapshot,
            options=AggregationOptions(exclude_cancelled=settings.CALENDAR_EXCLUDE_CANCELLED),
        )
        return JsonResponse(serializers.serialize_calendar_view(controller))


class DailyStatsView(APIView):
    """GET /api/stats/daily/?date=2024-06-03"""

    def get(self, request):
        return JsonResponse(queries.get_daily_stats(_date_param(request, 'date')))


# ---------------------------------------------------------------------------
# Deliveries / KPIS / reports
# ---------------------------------------------------------------------------

class TodayDeliveriesView(APIView):
    """GET /api/deliveries/today/"""

    def get(self, request):
        deliveries, count = queries.get_today_deliveries()
        return JsonResponse({
            'deliveries': [serializers.serialize_delivery(o) for o in deliveries],
            'count': count,
        })


class MarkDeliveredView(APIView):
    """POST /api/deliveries/<id>/delivered/"""

    def post(self, request, order_id):
        order = services.mark_delivered(order_id)
        return JsonResponse(serializers.serialize_order(order))


class KpisListView(APIView):
    """GET /api/kpis/  加 ?overdue_days=7 只看超期未申报的"""

    def get(self, request):
        overdue_days = _int_param(request, 'overdue_days')
        if overdue_days is None:
            reports, count = queries.get_pending_kpis()
        else:
            reports, count = queries.get_overdue_kpis(days=overdue_days)
        return JsonResponse({
            'reports': [serializers.serialize_kpis_report(r) for r in reports],
            'count': count,
        })


class KpisReportedView(APIView):
    """POST /api/kpis/<id>/reported/  body: {"reference_number": "...", "notes": "..."}"""

    def post(self, request, report_id):
        data = _body(request)
        report = services.mark_kpis_reported(
            report_id, data.get('reference_number'), notes=data.get('notes'))
        return JsonResponse(serializers.serialize_kpis_report(report))


class KpisConfirmView(APIView):
    """POST /api/kpis/<id>/confirm/"""

    def post(self, request, report_id):
        report = services.confirm_kpis_report(report_id)
        return JsonResponse(serializers.serialize_kpis_report(report))


class SalesReportView(APIView):
    """GET /api/reports/sales/?period=2024-06"""

    def get(self, request):
        period = request.query_params.get('period') or month_of(timezone.localdate())
        report = queries.get_sales_report(period)
        return JsonResponse(serializers.serialize_sales_report(report))


# ---------------------------------------------------------------------------
# Reference data
# ---------------------------------------------------------------------------

class HospitalListView(APIView):

    def get(self, request):
        limit, offset = _paging(request, 50)
        rows, total = queries.list_hospitals(
            search=request.query_params.get('q'),
            hospital_type=request.query_params.get('hospital_type'),
            limit=limit,
            offset=offset,
        )
        return JsonResponse(serializers.serialize_page(
            'hospitals', rows, total, serializers.serialize_hospital, limit, offset))

    def post(self, request):
        hospital = services.create_hospital(_body(request))
        return JsonResponse(serializers.serialize_hospital(hospital), status=201)


class HospitalDetailView(APIView):

    def get(self, request, hospital_id):
        return JsonResponse(serializers.serialize_hospital(
            queries.get_hospital(hospital_id)))

    def patch(self, request, hospital_id):
        hospital = services.update_hospital(hospital_id, _body(request))
        return JsonResponse(serializers.serialize_hospital(hospital))

    def delete(self, request, hospital_id):
        services.delete_hospital(hospital_id)
        return JsonResponse({'deleted': True, 'hospital_id': hospital_id})


class ProductListView(APIView):

    def get(self, request):
        limit, offset = _paging(request, 50)
        rows, total = queries.list_products(
            search=request.query_params.get('q'),
            category=request.query_params.get('category'),
            limit=limit,
            offset=offset,
        )
        return JsonResponse(serializers.serialize_page(
            'products', rows, total, serializers.serialize_product, limit, offset))

    def post(self, request):
        product = services.create_product(_body(request))
        return JsonResponse(serializers.serialize_product(product), status=201)


class ProductDetailView(APIView):

    def get(self, request, product_id):
        return JsonResponse(serializers.serialize_product(
            queries.get_product(product_id)))

    def patch(self, request, product_id):
        product = services.update_product(product_id, _body(request))
        return JsonResponse(serializers.serialize_product(product))

    def delete(self, request, product_id):
        services.delete_product(product_id)
        return JsonResponse({'deleted': True, 'product_id': product_id})


class ProductAliasListView(APIView):

    def get(self, request, product_id):
        aliases = services.list_product_aliases(product_id)
        return JsonResponse({'aliases': [serializers.serialize_alias(a) for a in aliases]})

    def post(self, request, product_id):
        alias = services.create_product_alias(product_id, _body(request))
        return JsonResponse(serializers.serialize_alias(alias), status=201)


class ProductAliasDetailView(APIView):

    def patch(self, request, product_id, alias_id):
        alias = services.update_product_alias(product_id, alias_id, _body(request))
        return JsonResponse(serializers.serialize_alias(alias))

    def delete(self, request, product_id, alias_id):
        services.delete_product_alias(product_id, alias_id)
        return JsonResponse({'deleted': True, 'alias_id': alias_id})


class SupplierListView(APIView):

    def get(self, request):
        limit, offset = _paging(request, 50)
        rows, total = queries.list_suppliers(
            search=request.query_params.get('q'),
            limit=limit,
            offset=offset,
        )
        return JsonResponse(serializers.serialize_page(
            'suppliers', rows, total, serializers.serialize_supplier, limit, offset))

    def post(self, request):
        supplier = services.create_supplier(_body(request))
        return JsonResponse(serializers.serialize_supplier(supplier), status=201)


class SupplierDetailView(APIView):

    def get(self, request, supplier_id):
        return JsonResponse(serializers.serialize_supplier(
            queries.get_supplier(supplier_id)))

    def patch(self, request, supplier_id):
        supplier = services.update_supplier(supplier_id, _body(request))
        return JsonResponse(serializers.serialize_supplier(supplier))

    def delete(self, request, supplier_id):
        services.delete_supplier(supplier_id)
        return JsonResponse({'deleted': True, 'supplier_id': supplier_id})


# ---------------------------------------------------------------------------
# Settings / parse test
# ---------------------------------------------------------------------------

class SettingsView(APIView):
    """
    GET /api/settings/
    PUT /api/settings/  body: {"ai_enabled": true, "ai_confidence_threshold": 0.8}
    """

    def get(self, request):
        return JsonResponse(queries.get_settings())

    def put(self, request):
        services.update_settings(_body(request))
        return JsonResponse(queries.get_settings())


class TestParseView(APIView):
    """POST /api/settings/test-parse/  body: {"message": "..."} → 202 + task_id"""

    def post(self, request):
        message = _required_str(_body(request), 'message')
        task = run_test_parse.delay(message)
        logger.info("test-parse task queued id=%s", task.id)
        return JsonResponse({'task_id': task.id, 'status': 'queued'}, status=202)


class TestParseResultView(APIView):
    """GET /api/settings/test-parse/<task_id>/"""

    def get(self, request, task_id):
        result = celery_app.AsyncResult(task_id)
        body = {'task_id': task_id, 'status': result.status.lower()}
        if result.successful():
            body['result'] = result.result
        elif result.failed():
            body['error'] = str(result.result)
        return JsonResponse(body)
