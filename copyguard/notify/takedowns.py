"""Takedown request lifecycle: creation, manual retry and external status updates."""

import logging
from datetime import datetime
from typing import Any, Mapping, Optional

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.orm import selectinload

from copyguard.db.models import (
    Case,
    CaseStatus,
    Detection,
    TakedownPlatform,
    TakedownRequest,
    TakedownStatus,
)
from copyguard.errors import (
    InvalidTransitionError,
    MissingTemplateFieldsError,
    RecordNotFoundError,
    RetryNotAllowedError,
)
from copyguard.notify import templates
from copyguard.notify.state import EXTERNAL_STATUSES, RETRIABLE_STATUSES, transition
from copyguard.worker.messages import TakedownMessage
from copyguard.worker.queue import Channel

logger = logging.getLogger(__name__)

DEFAULT_CLAIMANT_NAME = "Rights Holder"


class TakedownService:
    """Creates takedown requests and hands them to the takedown queue.

    Validation happens before anything is written: a request with missing
    template fields leaves no TakedownRequest behind and emits no message.
    """

    def __init__(
        self,
        session_factory: Optional[async_sessionmaker[AsyncSession]] = None,
        channel: Optional[Channel] = None,
    ):
        if session_factory is None:
            from copyguard.db.session import AsyncSessionLocal

            session_factory = AsyncSessionLocal
        if channel is None:
            from copyguard.worker.queue import takedown_channel

            channel = takedown_channel()
        self.session_factory = session_factory
        self.channel = channel

    @staticmethod
    def build_template_data(
        case: Case,
        additional_data: Optional[Mapping[str, Any]] = None,
    ) -> dict[str, Any]:
        """Template data from the case's detection and work, overridden by
        caller-supplied values."""
        detection = case.detection
        work = detection.work
        data: dict[str, Any] = {
            "work_title": work.title,
            "work_author": work.author,
            "work_isbn": work.isbn,
            "infringing_url": detection.url,
            "domain": detection.domain,
            "claimant_name": DEFAULT_CLAIMANT_NAME,
            "claimant_email": "",
            "detection_date": datetime.utcnow().date().isoformat(),
            "evidence_url": detection.evidence.storage_path if detection.evidence else None,
        }
        for key, value in (additional_data or {}).items():
            if value is not None:
                data[key] = value
        return {k: v for k, v in data.items() if v is not None}

    async def create(
        self,
        case_id: str,
        platform: TakedownPlatform,
        template_id: str,
        additional_data: Optional[Mapping[str, Any]] = None,
    ) -> TakedownRequest:
        """Validate, render and persist a takedown request, then enqueue it.

        Raises:
            TemplateNotFoundError: Unknown template id
            RecordNotFoundError: Unknown case
            MissingTemplateFieldsError: Required template fields are absent
        """
        template = templates.get_template(template_id)

        async with self.session_factory() as db:
            case = await db.get(
                Case,
                case_id,
                options=[
                    selectinload(Case.detection).selectinload(Detection.work),
                    selectinload(Case.detection).selectinload(Detection.evidence),
                ],
            )
            if case is None:
                raise RecordNotFoundError(f"Case not found: {case_id}")

            data = self.build_template_data(case, additional_data)
            missing = templates.validate(template.id, data)
            if missing:
                raise MissingTemplateFieldsError(template.id, missing)

            notice = templates.render(template.id, data)
            takedown = TakedownRequest(
                case_id=case_id,
                platform=platform.value,
                template_used=template.id,
                request_payload={
                    "subject": notice.subject,
                    "body": notice.body,
                    "templateData": data,
                },
                status=TakedownStatus.PENDING.value,
                attempts=0,
            )
            db.add(takedown)
            case.status = CaseStatus.REMOVAL_REQUESTED.value
            await db.commit()

        await self.channel.publish(
            TakedownMessage(
                case_id=case_id,
                takedown_request_id=takedown.id,
                platform=platform,
                attempt=1,
            )
        )
        logger.info(f"Created takedown request {takedown.id} for case {case_id}")
        return takedown

    async def retry(self, takedown_id: str) -> TakedownRequest:
        """Re-queue a FAILED or REJECTED request for one more attempt.

        A manual retry is a single delivery outside the automatic attempt
        ceiling; the worker increments ``attempts`` when it dispatches.

        Raises:
            RecordNotFoundError: Unknown takedown request
            RetryNotAllowedError: The request is not FAILED or REJECTED
        """
        async with self.session_factory() as db:
            takedown = await db.get(TakedownRequest, takedown_id)
            if takedown is None:
                raise RecordNotFoundError(f"Takedown request not found: {takedown_id}")

            if TakedownStatus(takedown.status) not in RETRIABLE_STATUSES:
                raise RetryNotAllowedError(
                    f"Can only retry failed or rejected takedowns (status is {takedown.status})"
                )

            transition(takedown, TakedownStatus.PENDING)
            await db.commit()

        await self.channel.publish(
            TakedownMessage(
                case_id=takedown.case_id,
                takedown_request_id=takedown.id,
                platform=TakedownPlatform(takedown.platform),
                attempt=takedown.attempts + 1,
            ),
            max_attempts=1,
        )
        logger.info(f"Retry queued for takedown {takedown.id} (attempt {takedown.attempts + 1})")
        return takedown

    async def update_status(
        self,
        takedown_id: str,
        status: TakedownStatus,
        response: Optional[dict] = None,
    ) -> TakedownRequest:
        """Record an externally confirmed outcome (acknowledged, removed, rejected).

        Raises:
            RecordNotFoundError: Unknown takedown request
            InvalidTransitionError: ``status`` is not an external outcome, or the
                change is not allowed from the current status
        """
        if status not in EXTERNAL_STATUSES:
            raise InvalidTransitionError(
                f"Takedown {takedown_id}: {status.value} is not an external outcome; "
                "dispatch and retry set it"
            )

        async with self.session_factory() as db:
            takedown = await db.get(TakedownRequest, takedown_id)
            if takedown is None:
                raise RecordNotFoundError(f"Takedown request not found: {takedown_id}")

            transition(takedown, status)
            if response is not None:
                takedown.response = response
            takedown.responded_at = datetime.utcnow()
            await db.commit()

        logger.info(f"Takedown {takedown_id} marked {status.value}")
        return takedown

    def list_templates(
        self, platform: Optional[TakedownPlatform] = None
    ) -> list[templates.TakedownTemplate]:
        return templates.list_templates(platform)
