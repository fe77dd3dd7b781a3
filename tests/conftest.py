"""
Shared fixtures for all tests.

factory-boy factories live here so both unit/ and integration/ can import them.
"""
import pytest
from datetime import date, datetime, timezone as dt_timezone
from decimal import Decimal

import factory
from django.test import Client

from dashboard.models import (
    Hospital, KpisReport, Order, OrderItem, Product, ProductAlias, RawMessage, Supplier,
)


# ---------------------------------------------------------------------------
# Factories
# ---------------------------------------------------------------------------

class HospitalFactory(factory.django.DjangoModelFactory):
    class Meta:
        model = Hospital

    name = factory.Sequence(lambda n: f'서울정형외과 {n}')
    hospital_type = 'clinic'
    business_number = factory.Sequence(lambda n: f'123-45-{10000 + n}')
    address = '서울시 강남구'


class SupplierFactory(factory.django.DjangoModelFactory):
    class Meta:
        model = Supplier

    name = factory.Sequence(lambda n: f'Supplier {n}')


class ProductFactory(factory.django.DjangoModelFactory):
    class Meta:
        model = Product

    name = factory.Sequence(lambda n: f'무릎보호대 {n}')
    official_name = factory.LazyAttribute(lambda o: o.name)
    category = 'supporter'
    standard_code = factory.Sequence(lambda n: f'880{n:07d}')
    unit_price = Decimal('10000')


class ProductAliasFactory(factory.django.DjangoModelFactory):
    class Meta:
        model = ProductAlias

    product = factory.SubFactory(ProductFactory)
    alias = '보호대'


class OrderFactory(factory.django.DjangoModelFactory):
    class Meta:
        model = Order

    order_number = factory.Sequence(lambda n: f'ORD-20240603-{n:04d}')
    order_date = date(2024, 6, 3)
    hospital = factory.SubFactory(HospitalFactory)
    status = 'draft'
    total_items = 1
    total_amount = Decimal('30000')


class OrderItemFactory(factory.django.DjangoModelFactory):
    class Meta:
        model = OrderItem

    order = factory.SubFactory(OrderFactory)
    product = factory.SubFactory(ProductFactory)
    original_text = '무릎보호대 M 3개'
    quantity = 3
    unit_price = Decimal('10000')
    line_total = Decimal('30000')
    match_status = 'matched'
    match_confidence = 0.95


class RawMessageFactory(factory.django.DjangoModelFactory):
    class Meta:
        model = RawMessage

    source_app = 'kakaotalk'
    sender = '김간호사'
    content = '무릎보호대 M 3개 부탁드립니다'
    received_at = datetime(2024, 6, 3, 9, 30, tzinfo=dt_timezone.utc)
    parse_status = 'parsed'


class KpisReportFactory(factory.django.DjangoModelFactory):
    class Meta:
        model = KpisReport

    order_item = factory.SubFactory(OrderItemFactory)
    report_status = 'pending'


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
def api_client():
    """Django test client for integration tests."""
    return Client()
