from tortoise import fields, models
import uuid
from app.core.config import OUTBOX_TABLE_NAME


class OutboxEvent(models.Model):
    """
    The Outbox table stores events atomically with the database transaction.
    Rows are append-only: the writer inserts them and change data capture
    turns each insert into an integration event.
    """
    id = fields.UUIDField(primary_key=True, default=uuid.uuid4)
    aggregate_type = fields.CharField(max_length=100) # e.g., 'Car'
    aggregate_id = fields.CharField(max_length=255) # ID of the entity that generated the event
    event_type = fields.CharField(max_length=100) # e.g., 'CarCreated'
    event_data = fields.JSONField() # The actual event data
    created_at = fields.DatetimeField(auto_now_add=True)
    processed_at = fields.DatetimeField(null=True) # Set by a separate cleanup process

    class Meta:
        table = OUTBOX_TABLE_NAME
