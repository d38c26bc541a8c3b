from django.db import models


class ProductModel(models.Model):
    name = models.CharField(max_length=100)
    price = models.DecimalField(max_digits=12, decimal_places=2)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        db_table = "products"

    def __str__(self):
        return f"{self.name} ({self.price})"


class OrderModel(models.Model):
    class PaymentStatus(models.TextChoices):
        PENDING = "pending"
        ACCEPTED = "accepted"
        REJECTED = "rejected"
        REFUNDED = "refunded"

    class Status(models.TextChoices):
        CREATED = "created"
        PENDING = "pending"
        PROCESSING = "processing"
        SHIPPED = "shipped"
        DELIVERED = "delivered"
        CANCELLED = "cancelled"

    client_id = models.CharField(max_length=64, db_index=True)
    shipping_fee = models.DecimalField(max_digits=12, decimal_places=2, default=0)
    delivery_address = models.CharField(max_length=200)
    payment_method = models.CharField(max_length=32)
    payment_status = models.CharField(max_length=16, choices=PaymentStatus.choices, default=PaymentStatus.PENDING)
    payment_details = models.JSONField(default=dict, blank=True)
    order_status = models.CharField(max_length=16, choices=Status.choices, default=Status.CREATED)
    # One order per captured provider order; NULL for offline payments
    gateway_order_id = models.CharField(max_length=64, unique=True, null=True, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        db_table = "orders"
        ordering = ["-id"]


class OrderItemModel(models.Model):
    order = models.ForeignKey(OrderModel, related_name="items", on_delete=models.PROTECT)
    product = models.ForeignKey(ProductModel, related_name="+", null=True, on_delete=models.SET_NULL)
    # Copied from the cart so the order survives catalog changes
    product_id_snapshot = models.IntegerField()
    unit_price = models.DecimalField(max_digits=12, decimal_places=2)
    quantity = models.PositiveIntegerField()

    class Meta:
        db_table = "order_items"
        ordering = ["id"]


class IdempotencyKey(models.Model):
    """Gateway order created for a checkout session.

    Keyed by the checkout session id so a re-submitted "create gateway
    order" returns the provider order already created for that attempt.
    """

    key = models.CharField(max_length=64, primary_key=True)
    request_hash = models.CharField(max_length=64)
    response_status = models.PositiveSmallIntegerField(default=0)
    response_body = models.JSONField(default=dict)
    gateway_order_id = models.CharField(max_length=64, null=True, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        db_table = "checkout_idempotency_keys"
