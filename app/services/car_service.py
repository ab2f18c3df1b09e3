import asyncio
import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional, Tuple

from tortoise.exceptions import BaseORMException
from tortoise.transactions import in_transaction

from app.core.exceptions import PersistenceError, ValidationError
from app.events.outbox_utility import create_outbox_event
from app.models.car import Car
from app.models.outbox import OutboxEvent

log = logging.getLogger("car_service")

CAR_AGGREGATE_TYPE = "Car"
CAR_CREATED_EVENT = "CarCreated"

MIN_YEAR = 1900
MAX_TEXT_LENGTHS = {"make": 100, "model": 100, "color": 50}


def _is_missing(value: Any) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())


def validate_car_request(make: Any, model: Any, year: Any, color: Any = None) -> None:
    """
    Rejects bad input before any transaction is opened.
    Raises ValidationError with a message suitable for the API response.
    """
    missing = [name for name, value in (("make", make), ("model", model), ("year", year)) if _is_missing(value)]
    if missing:
        raise ValidationError(
            f"Missing required fields: {', '.join(missing)}",
            details={"missing": missing},
        )

    # bool is an int subclass, reject it explicitly
    max_year = datetime.now(timezone.utc).year + 1
    if isinstance(year, bool) or not isinstance(year, int) or not MIN_YEAR <= year <= max_year:
        raise ValidationError("Invalid year", details={"year": year, "min": MIN_YEAR, "max": max_year})

    for name, value in (("make", make), ("model", model), ("color", color)):
        if value is None:
            continue
        if not isinstance(value, str):
            raise ValidationError(f"Field '{name}' must be a string", details={"field": name})
        if len(value) > MAX_TEXT_LENGTHS[name]:
            raise ValidationError(
                f"Field '{name}' exceeds {MAX_TEXT_LENGTHS[name]} characters",
                details={"field": name},
            )


def build_car_created_payload(car: Car) -> Dict[str, Any]:
    """Event payload built from the just-inserted row, so it carries the generated id."""
    return {
        "carId": str(car.id),
        "make": car.make,
        "model": car.model,
        "year": car.year,
        "color": car.color,
        "createdAt": car.created_at.isoformat() if car.created_at else None,
    }


async def create_car_with_event(
    make: str,
    model: str,
    year: int,
    color: Optional[str] = None,
) -> Tuple[Car, OutboxEvent]:
    """
    Creates the Car and its CarCreated OutboxEvent atomically.
    No message bus is touched here: change data capture on the outbox table
    publishes the event after commit.
    """
    validate_car_request(make, model, year, color)

    try:
        async with in_transaction() as conn:
            # 1. Insert the domain record
            car = await Car.create(
                make=make,
                model=model,
                year=year,
                color=color or None,
                using_db=conn,
            )

            # 2. ATOMIC EVENT: same connection, same transaction
            event = await create_outbox_event(
                aggregate_type=CAR_AGGREGATE_TYPE,
                aggregate_id=car.id,
                event_type=CAR_CREATED_EVENT,
                event_data=build_car_created_payload(car),
                conn=conn,
            )
    except (BaseORMException, OSError, asyncio.TimeoutError) as e:
        # The transaction context manager has already rolled back both inserts
        log.error(f"Transaction rolled back while creating car: {e}")
        raise PersistenceError(f"Failed to persist car: {e}") from e

    log.info(f"Car created successfully: {car.id} (outbox event {event.id})")
    return car, event
