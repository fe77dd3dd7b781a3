"""
写操作网关：所有状态变更、删除、编辑都从这里进入数据库。

- 合法性交给 status.py（订单）或本文件的规则（KPIS / 参考数据）
- 单次尝试，不重试；失败时数据库保持原样，异常交给 exception_handler
- 成功提交后 publish 变更通知，依赖这些表的视图自行刷新
- 不做幂等保护：同一按钮连点两次可能推进两次，由调用方在请求返回前禁用按钮
"""

import logging
from contextlib import contextmanager

from django.core.exceptions import ValidationError as DjangoValidationError
from django.db import DatabaseError, transaction
from django.db.models import ProtectedError
from django.utils import timezone

from . import status as order_status
from .exceptions import BlockError, InvalidTransition, NotFound, PersistenceFailure, ValidationError
from .models import Hospital, KpisReport, Order, Product, ProductAlias, RawMessage, Setting, Supplier
from .queries import SETTING_DEFAULTS
from .realtime import notifier

logger = logging.getLogger(__name__)

# 订单可直接编辑的字段；status / 时间戳 / order_number 只能走状态机或不可变
ORDER_EDITABLE_FIELDS = (
    'order_date', 'hospital_id', 'total_items', 'total_amount',
    'supply_amount', 'tax_amount', 'delivery_date', 'notes',
)

HOSPITAL_FIELDS = (
    'name', 'short_name', 'hospital_type', 'phone', 'address', 'contact_person',
    'business_number', 'payment_terms', 'lead_time_days', 'is_active',
)
PRODUCT_FIELDS = (
    'name', 'official_name', 'short_name', 'category', 'manufacturer', 'ingredient',
    'efficacy', 'standard_code', 'unit', 'unit_price', 'is_active',
)
SUPPLIER_FIELDS = ('name', 'short_name', 'contact_info', 'notes', 'is_active')
ALIAS_FIELDS = ('alias', 'hospital_id', 'source')


@contextmanager
def _persisting(action, **context):
    """一个写操作 = 一个事务；数据库错误统一转成 PersistenceFailure。"""
    try:
        with transaction.atomic():
            yield
    except DatabaseError as exc:
        logger.exception("%s failed %s", action, context)
        raise PersistenceFailure(
            message=f"Could not save changes ({action})",
            detail={'action': action, **context},
        ) from exc


def _get(model, pk, code):
    try:
        return model.objects.get(pk=pk)
    except model.DoesNotExist:
        raise NotFound(
            message=f"{model.__name__} not found",
            code=code,
            detail={'id': pk},
        )


def _reject_unknown(data, allowed, forbidden=()):
    blocked = sorted(k for k in data if k in forbidden)
    unknown = sorted(k for k in data if k not in allowed and k not in forbidden)
    if blocked or unknown:
        raise ValidationError(
            message='Request contains fields that cannot be edited',
            code='FIELD_NOT_EDITABLE',
            detail={'not_editable': blocked, 'unknown': unknown, 'allowed': list(allowed)},
        )


def _clean_and_save(instance):
    """full_clean() 负责类型转换和校验（日期字符串 → date 等）。"""
    try:
        instance.full_clean()
    except DjangoValidationError as exc:
        raise ValidationError(
            message='Request validation failed',
            detail={'errors': exc.message_dict},
        )
    instance.save()
    return instance


# ---------------------------------------------------------------------------
# Orders
# ---------------------------------------------------------------------------

def apply_status_change(order_id, target_status):
    """
    把订单推进到 target_status。

    Raises:
        NotFound            订单不存在
        InvalidTransition   target 不在 allowed_transitions(当前状态) 里
        PersistenceFailure  数据库错误
    """
    with _persisting('status_change', order_id=order_id, target=target_status):
        order = _get(Order, order_id, 'ORDER_NOT_FOUND')
        previous = order.status
        try:
            changed = order_status.transition(order, target_status)
        except InvalidTransition:
            logger.warning("rejected status change order=%s %s -> %s",
                           order.order_number, previous, target_status)
            raise
        order.save(update_fields=changed + ['updated_at'])
        notifier.publish_on_commit('orders', 'UPDATE', order.id)

    logger.info("order %s status %s -> %s", order.order_number, previous, order.status)
    return order


def confirm_order(order_id):
    """确认按钮：draft → confirmed，同时写 confirmed_at。"""
    with _persisting('confirm_order', order_id=order_id):
        order = _get(Order, order_id, 'ORDER_NOT_FOUND')
        try:
            changed = order_status.confirm(order)
        except InvalidTransition:
            logger.warning("rejected confirm order=%s status=%s", order.order_number, order.status)
            raise
        order.save(update_fields=changed + ['updated_at'])
        notifier.publish_on_commit('orders', 'UPDATE', order.id)

    logger.info("order %s confirmed", order.order_number)
    return order


def mark_delivered(order_id):
    """配送页面的「已送达」按钮，走同一个状态机。"""
    return apply_status_change(order_id, order_status.DELIVERED)


def update_order(order_id, data):
    """只改非状态字段。"""
    _reject_unknown(
        data,
        ORDER_EDITABLE_FIELDS,
        forbidden=('id', 'status', 'order_number', 'confirmed_at', 'delivered_at',
                   'created_at', 'updated_at'),
    )
    with _persisting('update_order', order_id=order_id):
        order = _get(Order, order_id, 'ORDER_NOT_FOUND')
        for field, value in data.items():
            setattr(order, field, value)
        _clean_and_save(order)
        notifier.publish_on_commit('orders', 'UPDATE', order.id)

    logger.info("order %s updated fields=%s", order.order_number, sorted(data))
    return order


def delete_order(order_id):
    """
    删除 draft 订单（连带 order_items）。

    引用它的 RawMessage 不删，order_id 保留成悬空引用，消息历史完整保留。
    """
    with _persisting('delete_order', order_id=order_id):
        order = _get(Order, order_id, 'ORDER_NOT_FOUND')
        try:
            order_status.ensure_deletable(order)
        except BlockError:
            logger.warning("rejected delete order=%s status=%s", order.order_number, order.status)
            raise
        order_number = order.order_number
        order.delete()
        notifier.publish_on_commit('orders', 'DELETE', order_id)

    logger.info("order %s deleted", order_number)


# ---------------------------------------------------------------------------
# Messages
# ---------------------------------------------------------------------------

def delete_message(message_id):
    """消息可以无条件删除，和关联订单无关。"""
    with _persisting('delete_message', message_id=message_id):
        message = _get(RawMessage, message_id, 'MESSAGE_NOT_FOUND')
        message.delete()
        notifier.publish_on_commit('raw_messages', 'DELETE', message_id)

    logger.info("message %s deleted", message_id)


# ---------------------------------------------------------------------------
# KPIS
# ---------------------------------------------------------------------------

def mark_kpis_reported(report_id, reference_number, notes=None):
    """pending → reported，必须带申报编号。"""
    if not isinstance(reference_number, str):
        reference_number = ''
    reference_number = reference_number.strip()
    if not reference_number:
        raise ValidationError(
            message='Reference number is required to mark a KPIS report as reported',
            code='REFERENCE_NUMBER_REQUIRED',
            detail={'report_id': report_id},
        )

    with _persisting('mark_kpis_reported', report_id=report_id):
        report = _get(KpisReport, report_id, 'KPIS_REPORT_NOT_FOUND')
        if report.report_status != 'pending':
            raise InvalidTransition(
                message=f"KPIS report {report_id} is already {report.report_status}",
                detail={'current': report.report_status, 'target': 'reported', 'allowed': []},
            )
        report.report_status = 'reported'
        report.reference_number = reference_number
        report.reported_at = timezone.now()
        fields = ['report_status', 'reference_number', 'reported_at']
        if notes is not None:
            report.notes = notes
            fields.append('notes')
        report.save(update_fields=fields)
        notifier.publish_on_commit('kpis_reports', 'UPDATE', report.id)

    logger.info("kpis report %s reported ref=%s", report_id, reference_number)
    return report


def confirm_kpis_report(report_id):
    """reported → confirmed。"""
    with _persisting('confirm_kpis_report', report_id=report_id):
        report = _get(KpisReport, report_id, 'KPIS_REPORT_NOT_FOUND')
        if report.report_status != 'reported':
            raise InvalidTransition(
                message=f"KPIS report {report_id} is {report.report_status}, not reported",
                detail={'current': report.report_status, 'target': 'confirmed',
                        'allowed': ['reported'] if report.report_status == 'pending' else []},
            )
        report.report_status = 'confirmed'
        report.save(update_fields=['report_status'])
        notifier.publish_on_commit('kpis_reports', 'UPDATE', report.id)

    logger.info("kpis report %s confirmed", report_id)
    return report


# ---------------------------------------------------------------------------
# Reference data (hospitals / products / aliases / suppliers)
# ---------------------------------------------------------------------------

def _create(model, table, fields, data, **extra):
    _reject_unknown(data, fields)
    with _persisting(f'create_{table}'):
        instance = _clean_and_save(model(**data, **extra))
        notifier.publish_on_commit(table, 'INSERT', instance.pk)
    logger.info("%s %s created", table, instance.pk)
    return instance


def _update(model, table, fields, pk, data, code):
    _reject_unknown(data, fields)
    with _persisting(f'update_{table}', id=pk):
        instance = _get(model, pk, code)
        for field, value in data.items():
            setattr(instance, field, value)
        _clean_and_save(instance)
        notifier.publish_on_commit(table, 'UPDATE', instance.pk)
    logger.info("%s %s updated fields=%s", table, pk, sorted(data))
    return instance


def _delete(model, table, pk, code):
    with _persisting(f'delete_{table}', id=pk):
        instance = _get(model, pk, code)
        try:
            instance.delete()
        except ProtectedError:
            raise BlockError(
                message=f"{model.__name__} {pk} is still referenced by orders",
                code='REFERENCED_BY_ORDERS',
                detail={'id': pk},
            )
        notifier.publish_on_commit(table, 'DELETE', pk)
    logger.info("%s %s deleted", table, pk)


def create_hospital(data):
    return _create(Hospital, 'hospitals', HOSPITAL_FIELDS, data)


def update_hospital(hospital_id, data):
    return _update(Hospital, 'hospitals', HOSPITAL_FIELDS, hospital_id, data, 'HOSPITAL_NOT_FOUND')


def delete_hospital(hospital_id):
    _delete(Hospital, 'hospitals', hospital_id, 'HOSPITAL_NOT_FOUND')


def create_product(data):
    data = dict(data)
    # name 没给时用 official_name
    if not data.get('name') and data.get('official_name'):
        data['name'] = data['official_name']
    return _create(Product, 'products', PRODUCT_FIELDS, data)


def update_product(product_id, data):
    return _update(Product, 'products', PRODUCT_FIELDS, product_id, data, 'PRODUCT_NOT_FOUND')


def delete_product(product_id):
    _delete(Product, 'products', product_id, 'PRODUCT_NOT_FOUND')


def list_product_aliases(product_id):
    product = _get(Product, product_id, 'PRODUCT_NOT_FOUND')
    return list(product.aliases.order_by('id'))


def create_product_alias(product_id, data):
    _get(Product, product_id, 'PRODUCT_NOT_FOUND')
    return _create(ProductAlias, 'product_aliases', ALIAS_FIELDS, data, product_id=product_id)


def _get_alias(product_id, alias_id):
    alias = _get(ProductAlias, alias_id, 'ALIAS_NOT_FOUND')
    if alias.product_id != int(product_id):
        raise NotFound(
            message='ProductAlias not found',
            code='ALIAS_NOT_FOUND',
            detail={'id': alias_id, 'product_id': product_id},
        )
    return alias


def update_product_alias(product_id, alias_id, data):
    _get_alias(product_id, alias_id)
    return _update(ProductAlias, 'product_aliases', ALIAS_FIELDS, alias_id, data, 'ALIAS_NOT_FOUND')


def delete_product_alias(product_id, alias_id):
    _get_alias(product_id, alias_id)
    _delete(ProductAlias, 'product_aliases', alias_id, 'ALIAS_NOT_FOUND')


def create_supplier(data):
    return _create(Supplier, 'suppliers', SUPPLIER_FIELDS, data)


def update_supplier(supplier_id, data):
    return _update(Supplier, 'suppliers', SUPPLIER_FIELDS, supplier_id, data, 'SUPPLIER_NOT_FOUND')


def delete_supplier(supplier_id):
    _delete(Supplier, 'suppliers', supplier_id, 'SUPPLIER_NOT_FOUND')


# ---------------------------------------------------------------------------
# Settings
# ---------------------------------------------------------------------------

def _clean_setting(key, value):
    if key not in SETTING_DEFAULTS:
        raise ValidationError(
            message=f"Unknown setting: {key!r}",
            code='UNKNOWN_SETTING',
            detail={'known_settings': list(SETTING_DEFAULTS)},
        )
    if key == 'ai_confidence_threshold':
        try:
            value = float(value)
        except (TypeError, ValueError):
            value = None
        if value is None or not 0 <= value <= 1:
            raise ValidationError(
                message='ai_confidence_threshold must be a number between 0 and 1',
                code='INVALID_SETTING',
                detail={'key': key},
            )
    return value


def update_settings(data):
    """设置页一次保存：先校验全部 key，再在同一个事务里写入，失败时一条都不写。"""
    cleaned = {key: _clean_setting(key, value) for key, value in data.items()}

    with _persisting('update_settings', keys=sorted(cleaned)):
        for key, value in cleaned.items():
            Setting.objects.update_or_create(key=key, defaults={'value': value})
        if cleaned:
            notifier.publish_on_commit('settings', 'UPDATE')

    logger.info("settings updated keys=%s", sorted(cleaned))


def update_setting(key, value):
    update_settings({key: value})
