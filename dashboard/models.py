from django.db import models

from . import status as order_status


class Hospital(models.Model):
    name = models.CharField(max_length=200)
    short_name = models.CharField(max_length=100, blank=True, null=True)
    hospital_type = models.CharField(max_length=50, default='clinic')
    phone = models.CharField(max_length=50, blank=True, null=True)
    address = models.TextField(blank=True, null=True)
    contact_person = models.CharField(max_length=100, blank=True, null=True)
    business_number = models.CharField(max_length=30, blank=True, null=True)
    payment_terms = models.CharField(max_length=100, blank=True, null=True)
    lead_time_days = models.IntegerField(default=1)
    is_active = models.BooleanField(default=True)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        db_table = 'hospitals'
        ordering = ['name']


class Supplier(models.Model):
    name = models.CharField(max_length=200)
    short_name = models.CharField(max_length=100, blank=True, null=True)
    contact_info = models.JSONField(blank=True, null=True)
    notes = models.TextField(blank=True, null=True)
    is_active = models.BooleanField(default=True)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        db_table = 'suppliers'
        ordering = ['name']


class Product(models.Model):
    name = models.CharField(max_length=200)
    official_name = models.CharField(max_length=300)
    short_name = models.CharField(max_length=100, blank=True, null=True)
    category = models.CharField(max_length=50, default='other')
    manufacturer = models.CharField(max_length=200, blank=True, null=True)
    ingredient = models.CharField(max_length=200, blank=True, null=True)
    efficacy = models.TextField(blank=True, null=True)
    standard_code = models.CharField(max_length=50, blank=True, null=True)
    unit = models.CharField(max_length=30, blank=True, null=True)
    unit_price = models.DecimalField(max_digits=14, decimal_places=2, blank=True, null=True)
    is_active = models.BooleanField(default=True)
    suppliers = models.ManyToManyField(Supplier, through='ProductSupplier', related_name='products')
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        db_table = 'products'
        ordering = ['name']


class ProductSupplier(models.Model):
    product = models.ForeignKey(Product, on_delete=models.CASCADE)
    supplier = models.ForeignKey(Supplier, on_delete=models.CASCADE)
    purchase_price = models.DecimalField(max_digits=14, decimal_places=2, blank=True, null=True)
    is_primary = models.BooleanField(default=False)

    class Meta:
        db_table = 'product_suppliers'


class ProductAlias(models.Model):
    product = models.ForeignKey(Product, on_delete=models.CASCADE, related_name='aliases')
    # 按医院区分的别名，null = 所有医院通用
    hospital = models.ForeignKey(Hospital, on_delete=models.CASCADE, blank=True, null=True)
    alias = models.CharField(max_length=200)
    source = models.CharField(max_length=30, default='manual')

    class Meta:
        db_table = 'product_aliases'
        ordering = ['id']


class Order(models.Model):
    order_number = models.CharField(max_length=30, unique=True)
    order_date = models.DateField()
    hospital = models.ForeignKey(Hospital, on_delete=models.PROTECT, related_name='orders')
    status = models.CharField(
        max_length=20, choices=order_status.STATUS_CHOICES, default=order_status.DRAFT
    )
    total_items = models.IntegerField(default=0)
    total_amount = models.DecimalField(max_digits=14, decimal_places=2, blank=True, null=True)
    supply_amount = models.DecimalField(max_digits=14, decimal_places=2, blank=True, null=True)
    tax_amount = models.DecimalField(max_digits=14, decimal_places=2, blank=True, null=True)
    delivery_date = models.DateField(blank=True, null=True)
    confirmed_at = models.DateTimeField(blank=True, null=True)
    delivered_at = models.DateTimeField(blank=True, null=True)
    notes = models.TextField(blank=True, null=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = 'orders'
        ordering = ['-created_at']

    def __str__(self):
        return self.order_number


class OrderItem(models.Model):
    MATCH_STATUS_CHOICES = [
        ('matched', 'Matched'),
        ('review', 'Review'),
        ('unmatched', 'Unmatched'),
    ]

    order = models.ForeignKey(Order, on_delete=models.CASCADE, related_name='items')
    product = models.ForeignKey(Product, on_delete=models.SET_NULL, blank=True, null=True)
    supplier = models.ForeignKey(Supplier, on_delete=models.SET_NULL, blank=True, null=True)
    original_text = models.TextField(blank=True, null=True)
    quantity = models.IntegerField(default=1)
    unit_type = models.CharField(max_length=20, default='piece')
    unit_price = models.DecimalField(max_digits=14, decimal_places=2, blank=True, null=True)
    line_total = models.DecimalField(max_digits=14, decimal_places=2, blank=True, null=True)
    match_status = models.CharField(max_length=20, choices=MATCH_STATUS_CHOICES, default='unmatched')
    match_confidence = models.FloatField(blank=True, null=True)

    class Meta:
        db_table = 'order_items'
        ordering = ['id']

    @property
    def line_total_consistent(self):
        """line_total == quantity × unit_price；缺值时不判断，返回 None。"""
        if self.unit_price is None or self.line_total is None:
            return None
        return self.line_total == self.quantity * self.unit_price


class RawMessage(models.Model):
    SOURCE_APP_CHOICES = [
        ('kakaotalk', 'KakaoTalk'),
        ('sms', 'SMS'),
        ('telegram', 'Telegram'),
        ('manual', 'Manual'),
    ]
    PARSE_STATUS_CHOICES = [
        ('pending', 'Pending'),
        ('parsed', 'Parsed'),
        ('failed', 'Failed'),
        ('skipped', 'Skipped'),
    ]

    source_app = models.CharField(max_length=20, choices=SOURCE_APP_CHOICES)
    sender = models.CharField(max_length=200, blank=True, null=True)
    content = models.TextField()
    received_at = models.DateTimeField()
    device_id = models.CharField(max_length=100, blank=True, null=True)
    hospital_id = models.BigIntegerField(blank=True, null=True)
    parse_status = models.CharField(max_length=20, choices=PARSE_STATUS_CHOICES, default='pending')
    parse_method = models.CharField(max_length=30, blank=True, null=True)
    parse_result = models.JSONField(blank=True, null=True)
    # 不是外键：订单删除后消息保留，order_id 留着当历史
    order_id = models.BigIntegerField(blank=True, null=True)
    is_order_message = models.BooleanField(blank=True, null=True)
    synced_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        db_table = 'raw_messages'
        ordering = ['-received_at']


class KpisReport(models.Model):
    REPORT_STATUS_CHOICES = [
        ('pending', 'Pending'),
        ('reported', 'Reported'),
        ('confirmed', 'Confirmed'),
    ]

    order_item = models.OneToOneField(OrderItem, on_delete=models.CASCADE, related_name='kpis_report')
    report_status = models.CharField(max_length=20, choices=REPORT_STATUS_CHOICES, default='pending')
    reference_number = models.CharField(max_length=100, blank=True, null=True)
    reported_at = models.DateTimeField(blank=True, null=True)
    notes = models.TextField(blank=True, null=True)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        db_table = 'kpis_reports'
        ordering = ['created_at']


class Setting(models.Model):
    key = models.CharField(max_length=100, unique=True)
    value = models.JSONField(blank=True, null=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = 'settings'
