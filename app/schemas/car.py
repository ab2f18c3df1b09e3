from pydantic import BaseModel, Field
from typing import Optional
import uuid


class CarCreateRequest(BaseModel):
    """
    Request body for creating a car. Presence and range checks live in the
    service layer so every caller gets the same rules.
    """
    make: Optional[str] = Field(None, description="Manufacturer, e.g. Toyota.")
    model: Optional[str] = Field(None, description="Model name, e.g. Camry.")
    year: Optional[int] = Field(None, description="Model year, between 1900 and next year.")
    color: Optional[str] = Field(None, description="Optional paint color.")


class CarResponse(BaseModel):
    """Schema for a created car."""
    id: uuid.UUID
    make: str
    model: str
    year: int
    color: Optional[str] = None
    createdAt: str


class CarCreatedResponse(BaseModel):
    """Response schema for a newly created car (201 Created)."""
    message: str
    car: CarResponse
    eventId: uuid.UUID
