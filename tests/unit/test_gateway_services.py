"""
Unit tests for dashboard/services.py（写操作网关）。

验证：
1. 状态变更走状态机，非法变更数据库不动
2. 只有 draft 可以删除，删除不级联到 raw_messages
3. 数据库错误包装成 PersistenceFailure
4. 成功提交后才发变更通知
"""
import pytest
from decimal import Decimal
from unittest.mock import patch

from django.db import DatabaseError

from dashboard import services
from dashboard.exceptions import (
    BlockError, IllegalDeletion, InvalidTransition, NotFound, PersistenceFailure, ValidationError,
)
from dashboard.models import Hospital, KpisReport, Order, OrderItem, RawMessage, Setting
from dashboard.realtime import ANY_TABLE, notifier
from tests.conftest import (
    HospitalFactory, KpisReportFactory, OrderFactory, OrderItemFactory, ProductAliasFactory,
    ProductFactory, RawMessageFactory,
)


@pytest.fixture
def events():
    """收集所有表的变更通知。"""
    received = []
    sub = notifier.subscribe(ANY_TABLE, received.append)
    yield received
    sub.unsubscribe()


# ---------------------------------------------------------------------------
# Status changes
# ---------------------------------------------------------------------------

@pytest.mark.django_db
class TestApplyStatusChange:

    def test_draft_to_confirmed(self, events, django_capture_on_commit_callbacks):
        o1 = OrderFactory(status='draft')

        with django_capture_on_commit_callbacks(execute=True):
            services.apply_status_change(o1.id, 'confirmed')

        o1.refresh_from_db()
        assert o1.status == 'confirmed'
        assert o1.confirmed_at is not None
        assert o1.delivered_at is None
        assert [(e.table, e.event, e.record_id) for e in events] == [('orders', 'UPDATE', o1.id)]

    def test_confirmed_to_draft_rejected(self, events, django_capture_on_commit_callbacks):
        o2 = OrderFactory(status='confirmed')

        with django_capture_on_commit_callbacks(execute=True):
            with pytest.raises(InvalidTransition) as exc_info:
                services.apply_status_change(o2.id, 'draft')

        o2.refresh_from_db()
        assert o2.status == 'confirmed'
        assert o2.confirmed_at is None
        assert sorted(exc_info.value.detail['allowed']) == ['cancelled', 'processing']
        assert events == []

    def test_full_lifecycle_sets_delivered_at(self):
        order = OrderFactory(status='draft')

        for target in ('confirmed', 'processing', 'delivered'):
            services.apply_status_change(order.id, target)

        order.refresh_from_db()
        assert order.status == 'delivered'
        assert order.confirmed_at is not None
        assert order.delivered_at is not None

    def test_mark_delivered_requires_processing(self):
        order = OrderFactory(status='confirmed')

        with pytest.raises(InvalidTransition):
            services.mark_delivered(order.id)

        order.refresh_from_db()
        assert order.delivered_at is None

    def test_unknown_order(self):
        with pytest.raises(NotFound) as exc_info:
            services.apply_status_change(999999, 'confirmed')
        assert exc_info.value.code == 'ORDER_NOT_FOUND'

    def test_database_error_becomes_persistence_failure(self):
        order = OrderFactory(status='draft')

        with patch.object(Order, 'save', side_effect=DatabaseError('connection lost')):
            with pytest.raises(PersistenceFailure) as exc_info:
                services.apply_status_change(order.id, 'confirmed')

        assert exc_info.value.http_status == 503
        assert exc_info.value.detail['action'] == 'status_change'
        order.refresh_from_db()
        assert order.status == 'draft'

    def test_confirm_order(self, events, django_capture_on_commit_callbacks):
        order = OrderFactory(status='draft')

        with django_capture_on_commit_callbacks(execute=True):
            services.confirm_order(order.id)

        order.refresh_from_db()
        assert order.status == 'confirmed'
        assert order.confirmed_at is not None
        assert len(events) == 1

    def test_confirm_order_twice_rejected(self):
        order = OrderFactory(status='draft')
        services.confirm_order(order.id)

        with pytest.raises(InvalidTransition):
            services.confirm_order(order.id)


# ---------------------------------------------------------------------------
# Edits / deletes
# ---------------------------------------------------------------------------

@pytest.mark.django_db
class TestUpdateOrder:

    def test_updates_non_status_fields(self):
        order = OrderFactory()

        services.update_order(order.id, {'notes': '오후 배송', 'delivery_date': '2024-06-05'})

        order.refresh_from_db()
        assert order.notes == '오후 배송'
        assert order.delivery_date.isoformat() == '2024-06-05'

    @pytest.mark.parametrize('field', ['status', 'order_number', 'confirmed_at', 'created_at'])
    def test_rejects_protected_fields(self, field):
        order = OrderFactory(status='draft')

        with pytest.raises(ValidationError) as exc_info:
            services.update_order(order.id, {field: 'x'})

        assert exc_info.value.code == 'FIELD_NOT_EDITABLE'
        assert exc_info.value.detail['not_editable'] == [field]
        order.refresh_from_db()
        assert order.status == 'draft'

    def test_rejects_invalid_values(self):
        order = OrderFactory()

        with pytest.raises(ValidationError) as exc_info:
            services.update_order(order.id, {'delivery_date': 'not-a-date'})

        assert 'delivery_date' in exc_info.value.detail['errors']


@pytest.mark.django_db
class TestDeleteOrder:

    def test_draft_delete_cascades_items_but_not_messages(self, events, django_capture_on_commit_callbacks):
        o3 = OrderFactory(status='draft')
        OrderItemFactory(order=o3)
        m7 = RawMessageFactory(order_id=o3.id)

        with django_capture_on_commit_callbacks(execute=True):
            services.delete_order(o3.id)

        assert not Order.objects.filter(id=o3.id).exists()
        assert not OrderItem.objects.filter(order_id=o3.id).exists()
        m7.refresh_from_db()
        assert m7.order_id == o3.id
        assert [(e.table, e.event) for e in events] == [('orders', 'DELETE')]

    def test_non_draft_delete_rejected(self):
        order = OrderFactory(status='confirmed')

        with pytest.raises(IllegalDeletion) as exc_info:
            services.delete_order(order.id)

        assert exc_info.value.http_status == 409
        assert Order.objects.filter(id=order.id).exists()

    def test_delete_message_is_unconditional(self):
        order = OrderFactory(status='delivered')
        message = RawMessageFactory(order_id=order.id)

        services.delete_message(message.id)

        assert not RawMessage.objects.filter(id=message.id).exists()
        assert Order.objects.filter(id=order.id).exists()

    def test_delete_unknown_message(self):
        with pytest.raises(NotFound) as exc_info:
            services.delete_message(424242)
        assert exc_info.value.code == 'MESSAGE_NOT_FOUND'


# ---------------------------------------------------------------------------
# KPIS
# ---------------------------------------------------------------------------

@pytest.mark.django_db
class TestKpis:

    def test_mark_reported(self):
        report = KpisReportFactory()

        services.mark_kpis_reported(report.id, ' K-2024-001 ', notes='전산 신고')

        report.refresh_from_db()
        assert report.report_status == 'reported'
        assert report.reference_number == 'K-2024-001'
        assert report.reported_at is not None
        assert report.notes == '전산 신고'

    @pytest.mark.parametrize('reference', [None, '', '   ', 12345, ['K-1']])
    def test_reference_number_required(self, reference):
        report = KpisReportFactory()

        with pytest.raises(ValidationError) as exc_info:
            services.mark_kpis_reported(report.id, reference)

        assert exc_info.value.code == 'REFERENCE_NUMBER_REQUIRED'
        report.refresh_from_db()
        assert report.report_status == 'pending'

    def test_already_reported(self):
        report = KpisReportFactory(report_status='reported', reference_number='K-1')

        with pytest.raises(InvalidTransition):
            services.mark_kpis_reported(report.id, 'K-2')

    def test_confirm_after_reported(self):
        report = KpisReportFactory()
        services.mark_kpis_reported(report.id, 'K-1')

        services.confirm_kpis_report(report.id)

        assert KpisReport.objects.get(id=report.id).report_status == 'confirmed'

    def test_confirm_pending_rejected(self):
        report = KpisReportFactory()

        with pytest.raises(InvalidTransition) as exc_info:
            services.confirm_kpis_report(report.id)

        assert exc_info.value.detail['allowed'] == ['reported']


# ---------------------------------------------------------------------------
# Reference data / settings
# ---------------------------------------------------------------------------

@pytest.mark.django_db
class TestReferenceData:

    def test_create_hospital_publishes_insert(self, events, django_capture_on_commit_callbacks):
        with django_capture_on_commit_callbacks(execute=True):
            hospital = services.create_hospital({'name': '강남내과', 'hospital_type': 'clinic'})

        assert Hospital.objects.get(id=hospital.id).name == '강남내과'
        assert [(e.table, e.event) for e in events] == [('hospitals', 'INSERT')]

    def test_create_hospital_unknown_field(self):
        with pytest.raises(ValidationError) as exc_info:
            services.create_hospital({'name': 'x', 'owner': 'y'})
        assert exc_info.value.detail['unknown'] == ['owner']

    def test_create_hospital_missing_name(self):
        with pytest.raises(ValidationError) as exc_info:
            services.create_hospital({'hospital_type': 'clinic'})
        assert 'name' in exc_info.value.detail['errors']

    def test_delete_hospital_with_orders_blocked(self):
        order = OrderFactory()

        with pytest.raises(BlockError) as exc_info:
            services.delete_hospital(order.hospital_id)

        assert exc_info.value.code == 'REFERENCED_BY_ORDERS'
        assert Hospital.objects.filter(id=order.hospital_id).exists()

    def test_update_hospital(self):
        hospital = HospitalFactory()

        services.update_hospital(hospital.id, {'lead_time_days': 3})

        hospital.refresh_from_db()
        assert hospital.lead_time_days == 3

    def test_create_product_defaults_name(self):
        product = services.create_product({'official_name': '손목보호대', 'unit_price': '12000'})
        product.refresh_from_db()
        assert product.name == '손목보호대'
        assert product.unit_price == Decimal('12000')

    def test_alias_crud(self):
        product = ProductFactory()

        alias = services.create_product_alias(product.id, {'alias': '무릎대'})
        assert [a.alias for a in services.list_product_aliases(product.id)] == ['무릎대']

        services.update_product_alias(product.id, alias.id, {'alias': '무릎 보호대'})
        alias.refresh_from_db()
        assert alias.alias == '무릎 보호대'

        services.delete_product_alias(product.id, alias.id)
        assert services.list_product_aliases(product.id) == []

    def test_alias_of_other_product_not_found(self):
        alias = ProductAliasFactory()
        other = ProductFactory()

        with pytest.raises(NotFound) as exc_info:
            services.update_product_alias(other.id, alias.id, {'alias': 'x'})
        assert exc_info.value.code == 'ALIAS_NOT_FOUND'

    def test_supplier_crud(self):
        supplier = services.create_supplier({'name': '대한메디칼', 'contact_info': {'phone': '02-000'}})
        services.update_supplier(supplier.id, {'is_active': False})
        supplier.refresh_from_db()
        assert supplier.is_active is False

        services.delete_supplier(supplier.id)
        with pytest.raises(NotFound):
            services.delete_supplier(supplier.id)


@pytest.mark.django_db
class TestSettings:

    def test_update_setting(self):
        services.update_setting('ai_enabled', True)
        assert Setting.objects.get(key='ai_enabled').value is True

    def test_unknown_setting(self):
        with pytest.raises(ValidationError) as exc_info:
            services.update_setting('theme', 'dark')
        assert exc_info.value.code == 'UNKNOWN_SETTING'

    @pytest.mark.parametrize('value', [1.5, -0.1, 'high', None])
    def test_threshold_out_of_range(self, value):
        with pytest.raises(ValidationError) as exc_info:
            services.update_setting('ai_confidence_threshold', value)
        assert exc_info.value.code == 'INVALID_SETTING'

    def test_update_settings_together(self, events, django_capture_on_commit_callbacks):
        with django_capture_on_commit_callbacks(execute=True):
            services.update_settings({'ai_enabled': True, 'ai_confidence_threshold': '0.85'})

        assert Setting.objects.get(key='ai_enabled').value is True
        assert Setting.objects.get(key='ai_confidence_threshold').value == 0.85
        assert [(e.table, e.event) for e in events] == [('settings', 'UPDATE')]

    @pytest.mark.parametrize('data', [
        {'ai_enabled': True, 'ai_confidence_threshold': 5},
        {'ai_enabled': True, 'theme': 'dark'},
    ])
    def test_one_bad_key_saves_nothing(self, data, events, django_capture_on_commit_callbacks):
        with django_capture_on_commit_callbacks(execute=True):
            with pytest.raises(ValidationError):
                services.update_settings(data)

        assert not Setting.objects.exists()
        assert events == []
