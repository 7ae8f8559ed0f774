"""Takedown queue consumer."""

import logging
from datetime import datetime
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.orm import selectinload

from copyguard import metrics
from copyguard.db.models import Case, Detection, TakedownRequest, TakedownStatus
from copyguard.errors import RecordNotFoundError
from copyguard.notify.delivery import delivery_for
from copyguard.notify.email import MailTransport
from copyguard.notify.state import DISPATCHED_STATUSES, can_transition, transition
from copyguard.notify.templates import TEMPLATES, RenderedNotice, TakedownTemplate, render
from copyguard.worker.messages import TakedownMessage

logger = logging.getLogger(__name__)


class TakedownProcessor:
    """Dispatch takedown requests.

    Each delivery counts as one attempt. A request that is already SENT or
    has an external outcome is not dispatched again when its message is
    redelivered; a FAILED one re-enters PENDING first.
    """

    def __init__(
        self,
        session_factory: Optional[async_sessionmaker[AsyncSession]] = None,
        transport: Optional[MailTransport] = None,
    ):
        if session_factory is None:
            from copyguard.db.session import AsyncSessionLocal

            session_factory = AsyncSessionLocal
        if transport is None:
            from copyguard.notify.email import SMTPTransport

            transport = SMTPTransport()
        self.session_factory = session_factory
        self.transport = transport

    @staticmethod
    def _notice(
        takedown: TakedownRequest,
        template: Optional[TakedownTemplate],
    ) -> Optional[RenderedNotice]:
        if template is None:
            return None
        payload = takedown.request_payload or {}
        if payload.get("templateData"):
            return render(template.id, payload["templateData"])
        return RenderedNotice(subject=payload.get("subject", ""), body=payload.get("body", ""))

    async def process(self, message: TakedownMessage) -> None:
        takedown_id = message.takedown_request_id
        logger.info(f"Processing takedown {takedown_id}, attempt {message.attempt}")

        async with self.session_factory() as db:
            takedown = await db.get(
                TakedownRequest,
                takedown_id,
                options=[
                    selectinload(TakedownRequest.case)
                    .selectinload(Case.detection)
                    .selectinload(Detection.work),
                ],
            )
            if takedown is None:
                logger.warning(f"Takedown request not found: {takedown_id}")
                return
            if takedown.case is None:
                raise RecordNotFoundError(
                    f"Case {takedown.case_id} of takedown {takedown_id} not found"
                )
            if takedown.case.detection is not None:
                logger.debug(f"Takedown {takedown_id} targets {takedown.case.detection.url}")

            status = TakedownStatus(takedown.status)
            if status in DISPATCHED_STATUSES:
                logger.info(f"Takedown {takedown_id} already {status.value}, skipping redelivery")
                return

            delivery = "unknown"
            try:
                if status == TakedownStatus.FAILED:
                    transition(takedown, TakedownStatus.PENDING)
                takedown.attempts += 1
                takedown.last_attempt_at = datetime.utcnow()
                # The attempt is recorded even if dispatch fails
                await db.commit()

                template = TEMPLATES.get(takedown.template_used) if takedown.template_used else None
                handler = delivery_for(template, self.transport)
                delivery = handler.delivery
                data = (takedown.request_payload or {}).get("templateData") or {}

                outcome = await handler.deliver(takedown, self._notice(takedown, template), data)

                transition(takedown, outcome.status)
                takedown.response = outcome.response
                if outcome.sent:
                    takedown.sent_at = datetime.utcnow()
                await db.commit()
            except Exception as exc:
                logger.error(f"Takedown failed: {takedown_id} - {exc}")
                metrics.record_takedown_dispatch(delivery, success=False)
                await db.rollback()
                await self._mark_failed(db, takedown_id, str(exc))
                raise

        metrics.record_takedown_dispatch(delivery, success=True)

    async def _mark_failed(self, db: AsyncSession, takedown_id: str, error: str) -> None:
        takedown = await db.get(TakedownRequest, takedown_id, populate_existing=True)
        if takedown is None:
            return
        status = TakedownStatus(takedown.status)
        if status != TakedownStatus.FAILED:
            if not can_transition(status, TakedownStatus.FAILED):
                logger.warning(
                    f"Takedown {takedown_id} is {status.value}; not marking FAILED ({error})"
                )
                return
            transition(takedown, TakedownStatus.FAILED)
        takedown.response = {"error": error}
        await db.commit()

    async def on_exhausted(self, message: TakedownMessage, exc: Exception) -> None:
        async with self.session_factory() as db:
            await self._mark_failed(db, message.takedown_request_id, str(exc))
