"""Takedown delivery handlers, one per delivery type.

``delivery_for`` picks the handler from the template's declared
``DeliveryType``; requests without a known template fall through to manual
processing so they are never dropped silently.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Mapping, Optional, Union
from urllib.parse import urlparse

from copyguard.db.models import TakedownPlatform, TakedownRequest, TakedownStatus
from copyguard.errors import DeliveryError
from copyguard.notify.email import MailTransport
from copyguard.notify.templates import DeliveryType, RenderedNotice, TakedownTemplate

logger = logging.getLogger(__name__)

FORM_NOTE = "Form takedown prepared - manual submission may be required"
MANUAL_NOTE = "Requires manual processing"

PLATFORM_DEFAULT_RECIPIENTS: dict[TakedownPlatform, str] = {
    TakedownPlatform.SCRIBD: "copyright@scribd.com",
}


@dataclass
class DeliveryOutcome:
    status: TakedownStatus
    response: dict[str, Any] = field(default_factory=dict)
    sent: bool = False  # sets sent_at


def _abuse_address(data: Mapping[str, Any]) -> Optional[str]:
    domain = data.get("domain")
    if not domain and data.get("infringing_url"):
        domain = urlparse(data["infringing_url"]).hostname
    if not domain:
        return None
    domain = domain.lower()
    if domain.startswith("www."):
        domain = domain[4:]
    return f"abuse@{domain}"


def resolve_recipient(
    template: TakedownTemplate,
    platform: TakedownPlatform,
    data: Mapping[str, Any],
) -> str:
    """Pick the recipient for an email notice.

    Order: template-declared address, ``recipient_email`` in the request data,
    platform default (GENERIC_DMCA goes to abuse@ the infringing domain).

    Raises:
        DeliveryError: If no address can be resolved
    """
    if template.recipient_email:
        return template.recipient_email
    if data.get("recipient_email"):
        return data["recipient_email"]
    if platform in PLATFORM_DEFAULT_RECIPIENTS:
        return PLATFORM_DEFAULT_RECIPIENTS[platform]
    if platform == TakedownPlatform.GENERIC_DMCA:
        address = _abuse_address(data)
        if address:
            return address
    raise DeliveryError(f"No recipient email configured for platform {platform.value}")


class EmailDelivery:
    delivery = "email"

    def __init__(self, template: TakedownTemplate, transport: MailTransport):
        self.template = template
        self.transport = transport

    async def deliver(
        self,
        request: TakedownRequest,
        notice: RenderedNotice,
        data: Mapping[str, Any],
    ) -> DeliveryOutcome:
        platform = TakedownPlatform(request.platform)
        recipient = resolve_recipient(self.template, platform, data)
        message_id = await self.transport.send(recipient, notice.subject, notice.body)
        logger.info(f"Email takedown sent: {request.id} to {recipient}")
        return DeliveryOutcome(
            status=TakedownStatus.SENT,
            response={"type": "email", "recipient": recipient, "messageId": message_id},
            sent=True,
        )


class FormDelivery:
    """No outbound call; the notice is prepared for manual or platform-API submission."""

    delivery = "form"

    def __init__(self, template: TakedownTemplate):
        self.template = template

    async def deliver(
        self,
        request: TakedownRequest,
        notice: RenderedNotice,
        data: Mapping[str, Any],
    ) -> DeliveryOutcome:
        logger.info(f"Form takedown prepared: {request.id} for {request.platform}")
        return DeliveryOutcome(
            status=TakedownStatus.SENT,
            response={"type": "form", "platform": request.platform, "note": FORM_NOTE},
            sent=True,
        )


class ManualDelivery:
    delivery = "manual"

    async def deliver(
        self,
        request: TakedownRequest,
        notice: Optional[RenderedNotice],
        data: Mapping[str, Any],
    ) -> DeliveryOutcome:
        logger.info(f"Manual takedown flagged: {request.id}")
        return DeliveryOutcome(
            status=TakedownStatus.PENDING,
            response={"type": "manual", "note": MANUAL_NOTE},
        )


Delivery = Union[EmailDelivery, FormDelivery, ManualDelivery]


def delivery_for(
    template: Optional[TakedownTemplate],
    transport: MailTransport,
) -> Delivery:
    if template is None:
        return ManualDelivery()
    if template.delivery == DeliveryType.EMAIL:
        return EmailDelivery(template, transport)
    elif template.delivery == DeliveryType.FORM:
        return FormDelivery(template)
    return ManualDelivery()
