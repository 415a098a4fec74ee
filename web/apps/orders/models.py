from django.db import models
from django.utils import timezone


class OrderModel(models.Model):
    # Auto-incremented identity exposed in the API
    order_id = models.BigAutoField(primary_key=True)
    user_id = models.BigIntegerField(db_index=True)

    class Status(models.TextChoices):
        PENDING = "PENDING"
        CONFIRMED = "CONFIRMED"
        SHIPPED = "SHIPPED"
        DELIVERED = "DELIVERED"
        CANCELLED = "CANCELLED"

    # {"<book_id>": quantity}; JSON object keys are always strings
    items = models.JSONField(default=dict)
    total_amount = models.DecimalField(max_digits=12, decimal_places=2)
    order_date_time = models.DateTimeField(default=timezone.now)
    status = models.CharField(max_length=16, choices=Status.choices, default=Status.PENDING)
    is_deleted = models.BooleanField(default=False, db_index=True)

    class Meta:
        db_table = "orders"
        ordering = ["order_id"]
