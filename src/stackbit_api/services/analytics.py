"""Analytics events sent to Segment's HTTP tracking API.

``track`` returns immediately; delivery runs as a background task on the
running event loop and failures are only logged.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from typing import Any, Optional, Protocol

import httpx

from stackbit_api.config import get_http_timeout, get_segment_api_url, get_segment_write_key
from stackbit_api.models.users import User

logger = logging.getLogger(__name__)

SUBSCRIPTION_PURCHASED = "Subscription Purchased"
SUBSCRIPTION_CANCELED = "Subscription Canceled"
TRIAL_EXPIRED = "Trial Expired"
DAILY_OUT_OF_SYNC_PROJECTS = "Daily Out of Sync Projects"
COLLABORATOR_INVITED = "Collaborators Invite Collaborator"
COLLABORATOR_INVITE_ACCEPTED = "Collaborators Invite Accepted (Owner)"


class AnalyticsSink(Protocol):
    def track(
        self, event: str, properties: dict[str, Any], user: Optional[User] = None
    ) -> None: ...

    def anonymous_track(self, event: str, properties: dict[str, Any]) -> None: ...


class SegmentAnalytics:
    def __init__(self, write_key: Optional[str] = None, api_url: Optional[str] = None):
        self.write_key = write_key or get_segment_write_key()
        self.api_url = api_url or get_segment_api_url()
        self._pending: set[asyncio.Task] = set()

    def track(
        self, event: str, properties: dict[str, Any], user: Optional[User] = None
    ) -> None:
        if user is None or user.id is None:
            logger.warning("Analytics event %s has no user; sending anonymously", event)
            self.anonymous_track(event, properties)
            return
        self._dispatch({"event": event, "userId": str(user.id), "properties": properties})

    def anonymous_track(self, event: str, properties: dict[str, Any]) -> None:
        self._dispatch(
            {"event": event, "anonymousId": str(uuid.uuid4()), "properties": properties}
        )

    async def flush(self) -> None:
        """Wait for in-flight events; used before a worker process exits."""
        if self._pending:
            await asyncio.gather(*self._pending, return_exceptions=True)

    def _dispatch(self, payload: dict[str, Any]) -> None:
        if not self.write_key:
            logger.debug("SEGMENT_WRITE_KEY not set; dropping event %s", payload["event"])
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.warning("No running event loop; dropping event %s", payload["event"])
            return
        task = loop.create_task(self._post(payload))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def _post(self, payload: dict[str, Any]) -> None:
        try:
            async with httpx.AsyncClient(timeout=get_http_timeout()) as client:
                response = await client.post(
                    f"{self.api_url}/v1/track",
                    json=payload,
                    auth=(self.write_key or "", ""),
                )
                response.raise_for_status()
        except Exception as exc:
            logger.warning("Analytics event %s failed: %s", payload.get("event"), exc)
