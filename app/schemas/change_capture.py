import json
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field


class RecordMetadata(BaseModel):
    """Metadata block of a change-capture envelope. Unknown keys are ignored."""
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    record_type: Optional[str] = Field(None, alias="record-type")
    operation: Optional[str] = None
    table_name: Optional[str] = Field(None, alias="table-name")


class OutboxRow(BaseModel):
    """Columns of an outbox row as copied by change data capture."""
    model_config = ConfigDict(extra="ignore", coerce_numbers_to_str=True)

    id: Optional[str] = None
    aggregate_type: Optional[str] = None
    aggregate_id: Optional[str] = None
    event_type: Optional[str] = None
    event_data: Optional[Any] = None
    payload: Optional[Any] = None
    created_at: Optional[str] = None

    def resolved_event_data(self) -> Any:
        """event_data wins, then payload, then an empty document."""
        if self.event_data is not None:
            return self.event_data
        if self.payload is not None:
            return self.payload
        return {}


class ChangeCaptureRecord(BaseModel):
    """One row-level change observed on a source table."""
    model_config = ConfigDict(extra="ignore")

    metadata: RecordMetadata = Field(default_factory=RecordMetadata)
    data: Optional[Dict[str, Any]] = None


class IntegrationEvent(BaseModel):
    """An entry for the event bus PutEvents call."""
    source: str
    detail_type: str
    detail: Dict[str, Any]
    event_bus_name: str

    @property
    def event_id(self) -> Optional[str]:
        return self.detail.get("eventId")

    def to_entry(self) -> Dict[str, str]:
        return {
            "Source": self.source,
            "DetailType": self.detail_type,
            "Detail": json.dumps(self.detail, default=str),
            "EventBusName": self.event_bus_name,
        }


class FailedEntry(BaseModel):
    """An entry the event bus rejected, kept for diagnosis."""
    error_code: Optional[str] = None
    error_message: Optional[str] = None
    event: Dict[str, str]


class PublishReport(BaseModel):
    """Outcome of processing one delivered batch of change-capture records."""
    received: int = 0
    decoded: int = 0
    skipped: int = 0
    decode_failures: int = 0
    mapping_failures: int = 0
    publish_calls: int = 0
    published: int = 0
    failed_entries: List[FailedEntry] = Field(default_factory=list)
    event_ids: List[str] = Field(default_factory=list)

    @property
    def status(self) -> str:
        return "partially_failed" if self.failed_entries else "completed"
