from tortoise import fields, models
import uuid


class Car(models.Model):
    id = fields.UUIDField(primary_key=True, default=uuid.uuid4)
    make = fields.CharField(max_length=100)
    model = fields.CharField(max_length=100)
    year = fields.IntField()
    color = fields.CharField(max_length=50, null=True)
    created_at = fields.DatetimeField(auto_now_add=True)
    updated_at = fields.DatetimeField(auto_now=True)

    class Meta:
        table = "cars"
        indexes = [
            ("created_at",),  # Time-based queries
        ]
