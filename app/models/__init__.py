# app/models/__init__.py
from .car import Car
from .outbox import OutboxEvent

# Export all models
__all__ = [
    "Car",
    "OutboxEvent",
]
