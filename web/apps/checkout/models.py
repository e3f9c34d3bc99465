from django.db import models


class CustomerModel(models.Model):
    email = models.EmailField(max_length=254, unique=True)
    full_name = models.CharField(max_length=200)
    phone_number = models.CharField(max_length=32, null=True, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = "customers"


class DeliveryModel(models.Model):
    class Status(models.TextChoices):
        PENDING = "pending"
        ASSIGNED = "assigned"
        IN_TRANSIT = "in_transit"
        DELIVERED = "delivered"
        CANCELLED = "cancelled"

    address_line_1 = models.CharField(max_length=255)
    address_line_2 = models.CharField(max_length=255, null=True, blank=True)
    city = models.CharField(max_length=120)
    region = models.CharField(max_length=120)
    country = models.CharField(max_length=2, default="CO")
    postal_code = models.CharField(max_length=20, null=True, blank=True)
    phone_number = models.CharField(max_length=32, null=True, blank=True)
    delivery_notes = models.TextField(null=True, blank=True)
    status = models.CharField(max_length=16, choices=Status.choices, default=Status.PENDING, db_index=True)
    estimated_delivery_date = models.DateTimeField(null=True, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = "deliveries"


class TransactionModel(models.Model):
    class Status(models.TextChoices):
        PENDING = "PENDING"
        APPROVED = "APPROVED"
        DECLINED = "DECLINED"
        VOIDED = "VOIDED"
        ERROR = "ERROR"

    # Gateway id; null until the gateway answers (and forever for ERROR rows)
    external_id = models.CharField(max_length=64, unique=True, null=True, blank=True)
    reference = models.CharField(max_length=64, db_index=True)
    amount_in_cents = models.BigIntegerField()
    currency = models.CharField(max_length=3, default="COP")
    status = models.CharField(max_length=16, choices=Status.choices, default=Status.PENDING, db_index=True)
    payment_method_type = models.CharField(max_length=32)
    payment_method_token = models.CharField(max_length=255, null=True, blank=True)
    payment_data = models.JSONField(null=True, blank=True)
    signature = models.CharField(max_length=64, null=True, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = "transactions"


class OrderModel(models.Model):
    class Status(models.TextChoices):
        PENDING = "pending"
        PROCESSING = "processing"
        APPROVED = "approved"
        DECLINED = "declined"
        VOIDED = "voided"
        ERROR = "error"
        CANCELLED = "cancelled"

    reference = models.CharField(max_length=64, unique=True)
    customer = models.ForeignKey(
        CustomerModel, null=True, blank=True, on_delete=models.PROTECT, related_name="orders"
    )
    delivery = models.ForeignKey(
        DeliveryModel, null=True, blank=True, on_delete=models.SET_NULL, related_name="+"
    )
    transaction = models.ForeignKey(
        TransactionModel, null=True, blank=True, on_delete=models.SET_NULL, related_name="+"
    )
    amount_in_cents = models.BigIntegerField()
    currency = models.CharField(max_length=3, default="COP")
    status = models.CharField(max_length=16, choices=Status.choices, default=Status.PENDING, db_index=True)
    # [{product_id, quantity, unit_price_cents}, ...] in submission order
    items = models.JSONField(default=list)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = "orders"
        ordering = ["-created_at"]


class IdempotencyKey(models.Model):
    key = models.CharField(max_length=200, primary_key=True)
    request_hash = models.CharField(max_length=64)
    response_status = models.PositiveSmallIntegerField(default=0)
    response_body = models.JSONField(default=dict)
    order_reference = models.CharField(max_length=64, null=True, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        db_table = "idempotency_keys"
