import logging
from typing import Any, Dict, List, Optional

import aioboto3

from app.core.config import AWS_REGION, EVENT_BUS_ENDPOINT_URL

log = logging.getLogger("event_bus")


class EventBusPublisher:
    """
    Thin async wrapper around the event bus PutEvents API.

    The aioboto3 session is created lazily on first use and reused for the
    lifetime of the process; a client is opened per call.
    """

    def __init__(self, region_name: str = AWS_REGION, endpoint_url: Optional[str] = EVENT_BUS_ENDPOINT_URL):
        self._region = region_name
        self._endpoint_url = endpoint_url
        self._session: Optional[aioboto3.Session] = None

    def _get_session(self) -> aioboto3.Session:
        if self._session is None:
            self._session = aioboto3.Session(region_name=self._region)
        return self._session

    async def put_events(self, entries: List[Dict[str, str]]) -> Dict[str, Any]:
        """
        Submits one PutEvents call. Returns the raw response, whose `Entries`
        list holds one result per submitted entry in the same order.
        botocore ClientError / BotoCoreError propagate to the caller.
        """
        session = self._get_session()
        async with session.client("events", endpoint_url=self._endpoint_url) as events:
            response = await events.put_events(Entries=entries)
        log.debug(f"PutEvents submitted {len(entries)} entries, {response.get('FailedEntryCount', 0)} failed")
        return response
