import asyncio
import base64
import json
import logging
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Iterable, Iterator, List, Optional, Protocol, Sequence, Union

from botocore.exceptions import BotoCoreError, ClientError
from pydantic import ValidationError as SchemaValidationError

from app.core.config import (
    EVENT_BUS_NAME,
    LOG_LEVEL,
    OUTBOX_TABLE_NAME,
    PUBLISH_BATCH_SIZE,
    MAX_PUBLISH_BATCH_SIZE,
)
from app.core.exceptions import DecodeError, MappingError, PublishError
from app.events.event_bus import EventBusPublisher
from app.schemas.change_capture import (
    ChangeCaptureRecord,
    FailedEntry,
    IntegrationEvent,
    OutboxRow,
    PublishReport,
)

logging.basicConfig(level=LOG_LEVEL, format='%(asctime)s - %(name)s - %(levelname)s - %(message)s')
log = logging.getLogger("cdc_consumer")

RawRecord = Union[bytes, str]

# Error code for entries the bus counted as failed without saying which
UNREPORTED_FAILURE = "UnreportedFailure"


class Publisher(Protocol):
    async def put_events(self, entries: List[Dict[str, str]]) -> Dict[str, Any]: ...


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def decode_record(raw: RawRecord) -> ChangeCaptureRecord:
    """
    Decodes one transport record: base64 -> UTF-8 -> JSON -> envelope.
    Raises DecodeError on any failure.
    """
    try:
        text = base64.b64decode(raw, validate=True).decode("utf-8")
        return ChangeCaptureRecord.model_validate(json.loads(text))
    except (ValueError, TypeError) as e:
        # binascii.Error, UnicodeDecodeError, JSONDecodeError and pydantic errors are all ValueErrors
        raise DecodeError(f"Undecodable change-capture record: {e}") from e


def chunked(items: Sequence[Any], size: int) -> Iterator[Sequence[Any]]:
    """Yields consecutive slices of at most `size` items, preserving order."""
    if size < 1:
        raise ValueError("Chunk size must be positive")
    for start in range(0, len(items), size):
        yield items[start:start + size]


class ChangeCaptureConsumer:
    """
    Turns batches of change-capture records on the outbox table into
    integration events on the event bus.

    Records are handled sequentially in delivery order. A bad record is logged
    and skipped; only a failed PutEvents call aborts the batch (PublishError),
    so the transport can redeliver it. Redelivered records map to events with
    the same eventId, which downstream consumers use to drop duplicates.
    """

    def __init__(
        self,
        publisher: Publisher,
        event_bus_name: str = EVENT_BUS_NAME,
        outbox_table: str = OUTBOX_TABLE_NAME,
        max_batch_entries: int = PUBLISH_BATCH_SIZE,
        clock: Callable[[], datetime] = _utc_now,
    ):
        if not 1 <= max_batch_entries <= MAX_PUBLISH_BATCH_SIZE:
            raise ValueError(f"max_batch_entries must be between 1 and {MAX_PUBLISH_BATCH_SIZE}")
        self.publisher = publisher
        self.event_bus_name = event_bus_name
        self.outbox_table = outbox_table
        self.max_batch_entries = max_batch_entries
        self._clock = clock

    def is_outbox_insert(self, record: ChangeCaptureRecord) -> bool:
        """Only data inserts on the outbox table qualify; the table is append-only anyway."""
        meta = record.metadata
        return (
            meta.record_type == "data"
            and meta.operation == "insert"
            and meta.table_name == self.outbox_table
        )

    def _timestamp(self, row: OutboxRow) -> str:
        if row.created_at:
            return row.created_at
        # Falls back to consumption time, which is later than the real event time on redelivery
        log.warning(f"Outbox row {row.id} has no created_at; using consumer time as timestamp")
        return self._clock().isoformat(timespec="milliseconds").replace("+00:00", "Z")

    def map_record(self, record: ChangeCaptureRecord) -> IntegrationEvent:
        """Builds the integration event for a qualifying record. Raises MappingError."""
        if not record.data:
            raise MappingError("Change-capture record has no data section")
        try:
            row = OutboxRow.model_validate(record.data)
        except SchemaValidationError as e:
            raise MappingError(f"Outbox row has unexpected column types: {e}") from e

        missing = [name for name in ("id", "aggregate_type", "event_type") if not getattr(row, name)]
        if missing:
            raise MappingError(
                f"Outbox row is missing {', '.join(missing)}",
                details={"missing": missing, "id": row.id},
            )

        return IntegrationEvent(
            source=f"outbox.{row.aggregate_type.lower()}",
            detail_type=row.event_type,
            detail={
                "aggregateId": row.aggregate_id,
                "aggregateType": row.aggregate_type,
                "eventId": row.id,
                "eventData": row.resolved_event_data(),
                "timestamp": self._timestamp(row),
            },
            event_bus_name=self.event_bus_name,
        )

    def prepare_events(self, raw_records: Iterable[RawRecord], report: PublishReport) -> List[IntegrationEvent]:
        """Decode, filter and map, in delivery order."""
        events: List[IntegrationEvent] = []
        for index, raw in enumerate(raw_records):
            report.received += 1
            try:
                record = decode_record(raw)
            except DecodeError as e:
                report.decode_failures += 1
                log.error(f"Error decoding record {index}: {e.message}. Record data: {raw!r}")
                continue
            report.decoded += 1

            if not self.is_outbox_insert(record):
                report.skipped += 1
                log.info(f"Skipping non-insert record or wrong table: {record.metadata.model_dump(by_alias=True)}")
                continue

            try:
                event = self.map_record(record)
            except MappingError as e:
                report.mapping_failures += 1
                log.error(f"Error mapping record {index}: {e.message}. Record data: {record.data}")
                continue

            events.append(event)
            report.event_ids.append(event.event_id)
            log.info(f"Prepared event: {event.detail_type} for aggregate {event.detail['aggregateId']}")
        return events

    async def publish(self, events: List[IntegrationEvent], report: PublishReport) -> None:
        """
        Publishes in sub-batches of at most max_batch_entries. Rejected entries are
        logged and recorded but never resubmitted; a failed call raises PublishError.
        """
        for batch in chunked(events, self.max_batch_entries):
            entries = [event.to_entry() for event in batch]
            try:
                response = await self.publisher.put_events(entries)
            except (ClientError, BotoCoreError) as e:
                log.error(f"Error publishing to event bus: {e}")
                raise PublishError(
                    f"PutEvents call failed: {e}",
                    details={"published_before_failure": report.published},
                ) from e
            report.publish_calls += 1

            results = response.get("Entries") or []
            failed = 0
            unconfirmed = []
            for position, entry in enumerate(entries):
                result = results[position] if position < len(results) else {}
                if result.get("ErrorCode"):
                    failed += 1
                    report.failed_entries.append(FailedEntry(
                        error_code=result.get("ErrorCode"),
                        error_message=result.get("ErrorMessage"),
                        event=entry,
                    ))
                    log.error(
                        f"Failed entry {position}: ErrorCode={result.get('ErrorCode')} "
                        f"ErrorMessage={result.get('ErrorMessage')} Event={entry}"
                    )
                elif not result.get("EventId"):
                    unconfirmed.append((position, entry))

            # FailedEntryCount above the matched errors: entries without an EventId cannot be trusted
            reported_failures = response.get("FailedEntryCount") or 0
            if reported_failures > failed and unconfirmed:
                log.error(
                    f"Bus reported {reported_failures} failed entries but only {failed} carried an ErrorCode; "
                    f"marking {len(unconfirmed)} unconfirmed entries as failed"
                )
                for position, entry in unconfirmed:
                    failed += 1
                    report.failed_entries.append(FailedEntry(
                        error_code=UNREPORTED_FAILURE,
                        error_message="Entry counted in FailedEntryCount without a per-entry result",
                        event=entry,
                    ))
                    log.error(f"Failed entry {position}: ErrorCode={UNREPORTED_FAILURE} Event={entry}")

            report.published += len(entries) - failed
            if failed:
                log.error(f"{failed} of {len(entries)} events failed to publish")
            else:
                log.info(f"Successfully published {len(entries)} events to event bus")

    async def process_batch(self, raw_records: Iterable[RawRecord]) -> PublishReport:
        report = PublishReport()
        events = self.prepare_events(raw_records, report)
        log.info(f"Processing {report.received} change-capture records, {len(events)} events to publish")

        if events:
            await self.publish(events, report)
        else:
            log.info("No events to publish")
        return report


# ----------- Stream entrypoint -----------

_consumer: Optional[ChangeCaptureConsumer] = None


def get_consumer() -> ChangeCaptureConsumer:
    """Process-wide consumer, created on first delivery."""
    global _consumer
    if _consumer is None:
        _consumer = ChangeCaptureConsumer(publisher=EventBusPublisher())
    return _consumer


def extract_stream_payloads(event: Dict[str, Any]) -> List[str]:
    """Pulls the base64 payloads out of a stream delivery, keeping their order."""
    payloads = []
    for record in event.get("Records") or []:
        kinesis = record.get("kinesis") if isinstance(record, dict) else None
        payloads.append((kinesis or {}).get("data") or "")
    return payloads


async def handle_stream_event(event: Dict[str, Any], consumer: Optional[ChangeCaptureConsumer] = None) -> PublishReport:
    consumer = consumer or get_consumer()
    report = await consumer.process_batch(extract_stream_payloads(event))
    log.info(
        f"Batch {report.status}: published={report.published} failed={len(report.failed_entries)} "
        f"skipped={report.skipped} decode_failures={report.decode_failures} "
        f"mapping_failures={report.mapping_failures}"
    )
    return report


def handler(event: Dict[str, Any], context: Any = None) -> Dict[str, Any]:
    """Synchronous entrypoint for function runtimes. PublishError propagates so the batch is retried."""
    report = asyncio.run(handle_stream_event(event))
    return {"status": report.status, **report.model_dump()}
