import logging
from fastapi import APIRouter, HTTPException, status
from app.core.exceptions import PersistenceError, ValidationError
from app.schemas.car import CarCreateRequest, CarCreatedResponse, CarResponse
from app.schemas.response import SuccessResponse
from app.services.car_service import create_car_with_event

router = APIRouter()
logging.basicConfig(level=logging.INFO, format='%(asctime)s - %(name)s - %(levelname)s - %(message)s')
log = logging.getLogger("uvicorn")


@router.post("/", status_code=status.HTTP_201_CREATED, response_model=SuccessResponse)
async def create_car_endpoint(request_data: CarCreateRequest):
    """
    Creates a car and records a CarCreated event in the outbox, atomically.
    The event reaches the bus asynchronously through change data capture.
    """
    try:
        car, event = await create_car_with_event(
            make=request_data.make,
            model=request_data.model,
            year=request_data.year,
            color=request_data.color,
        )
    except ValidationError as e:
        log.error(f"Validation error creating car: {e.message}")
        raise
    except PersistenceError as e:
        log.error(f"Persistence error creating car: {e.message}")
        raise
    except Exception as e:
        log.error(f"Error creating car: {e}")
        raise HTTPException(status_code=500, detail="Server failed to create car.")

    data = CarCreatedResponse(
        message="Car created successfully",
        car=CarResponse(
            id=car.id,
            make=car.make,
            model=car.model,
            year=car.year,
            color=car.color,
            createdAt=car.created_at.isoformat() if car.created_at else "",
        ),
        eventId=event.id,
    ).model_dump(mode="json")
    return SuccessResponse(data=data)
