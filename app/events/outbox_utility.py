from typing import Dict, Any
from app.models.outbox import OutboxEvent


async def create_outbox_event(
    aggregate_type: str,
    aggregate_id: Any,
    event_type: str,
    event_data: Dict[str, Any],
    conn: Any = None
) -> OutboxEvent:
    """
    Creates a new Outbox event record using the provided database connection (transaction).

    CRITICAL: Passing 'conn' ensures the event is created atomically with the business data.
    """
    return await OutboxEvent.create(
        aggregate_type=aggregate_type,
        aggregate_id=str(aggregate_id),
        event_type=event_type,
        event_data=event_data,
        using_db=conn
    )
