"""Transactional email through the Customer.io app API.

Sending is best effort: a failed request is logged and never raised, so a
tier or collaborator change that has already been written is not reported
as failed because an email could not go out.
"""

from __future__ import annotations

import logging
import uuid
from datetime import datetime
from typing import Any, Optional, Protocol

import httpx

from stackbit_api.config import (
    get_client_origin,
    get_customerio_api_key,
    get_customerio_api_url,
    get_http_timeout,
)
from stackbit_api.models.project import Project
from stackbit_api.models.users import User
from stackbit_api.tiers.catalog import TierCatalog, get_tier_catalog
from stackbit_api.utils.logging import sanitize_for_log

logger = logging.getLogger(__name__)

PLANS_EMAIL_STARTED = "started"
PLANS_EMAIL_CANCELLED = "cancelled"
PLANS_EMAIL_EXPIRED = "expired"
PLANS_EMAIL_EVENTS = (PLANS_EMAIL_STARTED, PLANS_EMAIL_CANCELLED, PLANS_EMAIL_EXPIRED)


class EmailSender(Protocol):
    async def send_plans_email(
        self,
        project: Project,
        tier_id: str,
        event: str,
        user: Optional[User] = None,
    ) -> None: ...

    async def invite_collaborator_email(self, email: str, data: dict[str, Any]) -> None: ...


def format_expiry_date(value: Optional[datetime]) -> str:
    """``October 17th, 2026`` style date, empty when unset."""
    if value is None:
        return ""
    day = value.day
    if 11 <= day % 100 <= 13:
        suffix = "th"
    else:
        suffix = {1: "st", 2: "nd", 3: "rd"}.get(day % 10, "th")
    return f"{value.strftime('%B')} {day}{suffix}, {value.year}"


def plans_email_data(project: Project) -> dict[str, Any]:
    return {
        "projectName": project.name,
        "studioUrl": f"{get_client_origin()}/studio/{project.id}/",
        "expiryDate": format_expiry_date(project.subscription.end_of_billing_cycle),
    }


class CustomerIoEmailSender:
    def __init__(
        self,
        api_key: Optional[str] = None,
        api_url: Optional[str] = None,
        catalog: Optional[TierCatalog] = None,
    ):
        self.api_key = api_key or get_customerio_api_key()
        self.api_url = api_url or get_customerio_api_url()
        self.catalog = catalog or get_tier_catalog()

    async def send_plans_email(
        self,
        project: Project,
        tier_id: str,
        event: str,
        user: Optional[User] = None,
    ) -> None:
        if event not in PLANS_EMAIL_EVENTS:
            raise ValueError(f"Unknown plans email event: {event}")
        message_id = self.catalog.get_plans_message_id(tier_id, event)
        if not message_id:
            logger.debug("No plans email configured for %s/%s", tier_id, event)
            return
        if user is None or not user.email or not user.id:
            logger.warning(
                "Not sending plans email %s for project %s to user without email and id",
                message_id,
                project.id,
            )
            return
        await self._send(
            message_id=message_id,
            to=user.email,
            identifier=str(user.id),
            data=plans_email_data(project),
        )

    async def invite_collaborator_email(self, email: str, data: dict[str, Any]) -> None:
        message_id = self.catalog.get_message_id("inviteCollaborator")
        if not message_id:
            logger.debug("No invite email configured")
            return
        if not email:
            logger.warning("Not sending invite email %s without address", message_id)
            return
        await self._send(
            message_id=message_id,
            to=email,
            identifier=f"anon-{uuid.uuid4()}",
            data=data,
        )

    async def _send(
        self,
        *,
        message_id: int,
        to: str,
        identifier: str,
        data: dict[str, Any],
    ) -> None:
        if not self.api_key:
            logger.debug("CUSTOMERIO_APP_API_KEY not set; skipping email %s", message_id)
            return
        payload = {
            "to": to,
            "transactional_message_id": message_id,
            "identifiers": {"id": identifier},
            "message_data": data,
        }
        try:
            async with httpx.AsyncClient(timeout=get_http_timeout()) as client:
                response = await client.post(
                    f"{self.api_url}/v1/send/email",
                    json=payload,
                    headers={"Authorization": f"Bearer {self.api_key}"},
                )
                response.raise_for_status()
        except Exception as exc:
            logger.warning(
                "Transactional email %s to %s failed: %s",
                message_id,
                sanitize_for_log(to),
                exc,
            )
