import pytest
from datetime import datetime, timezone
from unittest.mock import AsyncMock, MagicMock, patch
from uuid import UUID

from tortoise.exceptions import IntegrityError, OperationalError

from app.core.exceptions import PersistenceError, ValidationError
from app.models.car import Car
from app.services.car_service import create_car_with_event, validate_car_request
from app.testing.testing_mocks import in_transaction as InTransactionMock

CAR_ID = UUID("d675f4f3-6c36-46b9-abcf-ba0aa3c60a5e")


# --- SETUP FIXTURES ---

@pytest.fixture
def inserted_car():
    """Mock Car row as returned by Car.create, with its generated id."""
    car = MagicMock(spec=Car)
    car.id = CAR_ID
    car.make = "Toyota"
    car.model = "Camry"
    car.year = 2023
    car.color = "Blue"
    car.created_at = datetime(2024, 5, 1, 9, 30, tzinfo=timezone.utc)
    return car


@pytest.fixture
def transaction():
    return InTransactionMock()


# --- VALIDATION ---

class TestValidation:
    def test_valid_input_passes(self):
        validate_car_request("Toyota", "Camry", 2023, "Blue")

    def test_color_is_optional(self):
        validate_car_request("Toyota", "Camry", 2023)

    def test_year_before_1900_rejected(self):
        with pytest.raises(ValidationError) as excinfo:
            validate_car_request("Toyota", "Camry", 1899)
        assert excinfo.value.message == "Invalid year"
        assert excinfo.value.kind == "validation_error"

    def test_year_bounds_inclusive(self):
        next_year = datetime.now(timezone.utc).year + 1
        validate_car_request("Ford", "Model T", 1900)
        validate_car_request("Ford", "Mustang", next_year)
        with pytest.raises(ValidationError):
            validate_car_request("Ford", "Mustang", next_year + 1)

    def test_missing_fields_listed(self):
        with pytest.raises(ValidationError) as excinfo:
            validate_car_request("Toyota", "", None)
        assert str(excinfo.value) == "Missing required fields: model, year"
        assert excinfo.value.details["missing"] == ["model", "year"]

    def test_boolean_year_rejected(self):
        with pytest.raises(ValidationError):
            validate_car_request("Toyota", "Camry", True)

    def test_overlong_make_rejected(self):
        with pytest.raises(ValidationError):
            validate_car_request("x" * 101, "Camry", 2023)


# --- ATOMIC WRITE ---

@pytest.mark.asyncio
@patch('app.services.car_service.create_outbox_event', new_callable=AsyncMock)
async def test_car_and_event_written_in_one_transaction(mock_outbox_event, inserted_car, transaction):
    """Both inserts go through the same transaction connection."""
    with patch('app.services.car_service.in_transaction', MagicMock(return_value=transaction)), \
         patch.object(Car, 'create', AsyncMock(return_value=inserted_car)) as mock_create:
        mock_outbox_event.return_value = MagicMock(id=UUID("11111111-0000-0000-0000-000000000001"))

        car, event = await create_car_with_event("Toyota", "Camry", 2023, "Blue")

        assert car is inserted_car
        assert mock_create.call_args.kwargs["using_db"] is transaction.conn
        kwargs = mock_outbox_event.call_args.kwargs
        assert kwargs["conn"] is transaction.conn
        assert kwargs["aggregate_type"] == "Car"
        assert kwargs["aggregate_id"] == CAR_ID
        assert kwargs["event_type"] == "CarCreated"
        assert kwargs["event_data"] == {
            "carId": str(CAR_ID),
            "make": "Toyota",
            "model": "Camry",
            "year": 2023,
            "color": "Blue",
            "createdAt": "2024-05-01T09:30:00+00:00",
        }
        assert transaction.exited_with is None


@pytest.mark.asyncio
@patch('app.services.car_service.create_outbox_event', new_callable=AsyncMock)
async def test_rejected_input_opens_no_transaction(mock_outbox_event):
    mock_in_transaction = MagicMock()
    with patch('app.services.car_service.in_transaction', mock_in_transaction), \
         patch.object(Car, 'create', AsyncMock()) as mock_create:

        with pytest.raises(ValidationError):
            await create_car_with_event("Toyota", "Camry", 1899)

        mock_in_transaction.assert_not_called()
        mock_create.assert_not_called()
        mock_outbox_event.assert_not_called()


@pytest.mark.asyncio
@patch('app.services.car_service.create_outbox_event', new_callable=AsyncMock)
async def test_outbox_failure_rolls_back_and_raises_persistence_error(mock_outbox_event, inserted_car, transaction):
    """A failed outbox insert aborts the whole transaction, car included."""
    with patch('app.services.car_service.in_transaction', MagicMock(return_value=transaction)), \
         patch.object(Car, 'create', AsyncMock(return_value=inserted_car)):
        mock_outbox_event.side_effect = IntegrityError("duplicate key value")

        with pytest.raises(PersistenceError) as excinfo:
            await create_car_with_event("Toyota", "Camry", 2023)

        assert isinstance(excinfo.value.__cause__, IntegrityError)
        assert transaction.exited_with is IntegrityError


@pytest.mark.asyncio
@patch('app.services.car_service.create_outbox_event', new_callable=AsyncMock)
async def test_car_insert_failure_skips_outbox_insert(mock_outbox_event, transaction):
    with patch('app.services.car_service.in_transaction', MagicMock(return_value=transaction)), \
         patch.object(Car, 'create', AsyncMock(side_effect=OperationalError("connection lost"))):

        with pytest.raises(PersistenceError):
            await create_car_with_event("Toyota", "Camry", 2023)

        mock_outbox_event.assert_not_called()
        assert transaction.exited_with is OperationalError


@pytest.mark.asyncio
async def test_connection_refused_is_persistence_error():
    failing_tx = MagicMock()
    failing_tx.return_value.__aenter__ = AsyncMock(side_effect=ConnectionRefusedError("db down"))
    with patch('app.services.car_service.in_transaction', failing_tx):
        with pytest.raises(PersistenceError):
            await create_car_with_event("Toyota", "Camry", 2023)
