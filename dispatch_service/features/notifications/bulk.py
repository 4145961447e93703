"""Bulk template sends with per-recipient partial failure accounting."""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING

from dispatch_service.core.database import uuid7_str
from dispatch_service.features.notifications.enums import NotificationStatus
from dispatch_service.features.notifications.exceptions import NotificationError, ValidationError
from dispatch_service.features.notifications.metrics import (
    notification_bulk_batches_total,
    notification_bulk_recipients_total,
)
from dispatch_service.features.notifications.schemas import (
    BulkNotificationResponse,
    BulkNotificationResult,
    DispatchRecipient,
    DispatchRequest,
)
from dispatch_service.infra.logging import set_log_context

if TYPE_CHECKING:
    from dispatch_service.core.settings.notifications import NotificationSettings
    from dispatch_service.features.notifications.dispatcher import NotificationDispatcher
    from dispatch_service.features.notifications.schemas import (
        BulkNotificationRecipient,
        BulkNotificationRequest,
        NotificationTemplate,
    )
    from dispatch_service.features.notifications.templates.store import TemplateStore

logger = logging.getLogger(__name__)


def new_batch_id() -> str:
    """Return a unique batch id (``batch_<uuid7>``)."""
    return f"batch_{uuid7_str()}"


class BulkBatchProcessor:
    """Sends one template to many recipients.

    Each recipient is an independent dispatcher call run under a semaphore;
    an error is captured in that recipient's result and never aborts the
    batch. Results are returned in request order.
    """

    def __init__(
        self,
        dispatcher: NotificationDispatcher,
        templates: TemplateStore,
        settings: NotificationSettings,
    ) -> None:
        self.dispatcher = dispatcher
        self.templates = templates
        self.settings = settings

    async def send_bulk(self, request: BulkNotificationRequest) -> BulkNotificationResponse:
        """Dispatch ``request`` to every recipient.

        Raises:
            ValidationError: Too many recipients
            TemplateNotFound: Unknown template (nothing is sent)
        """
        if len(request.recipients) > self.settings.bulk_max_recipients:
            raise ValidationError(
                f"Bulk send is limited to {self.settings.bulk_max_recipients} recipients",
                extra={"requested": len(request.recipients)},
            )

        template = await self.templates.get(request.template_id)
        batch_id = new_batch_id()
        set_log_context(batch_id=batch_id)
        semaphore = asyncio.Semaphore(self.settings.bulk_concurrency)

        async def run(recipient: BulkNotificationRecipient) -> tuple[BulkNotificationResult, float]:
            async with semaphore:
                return await self._send_one(request, template, recipient, batch_id)

        outcomes = await asyncio.gather(*(run(recipient) for recipient in request.recipients))
        results = [result for result, _cost in outcomes]
        successful = sum(1 for result in results if result.success)
        estimated_cost = round(sum(cost for result, cost in outcomes if result.success), 6)

        notification_bulk_batches_total.inc()
        notification_bulk_recipients_total.labels(outcome="success").inc(successful)
        notification_bulk_recipients_total.labels(outcome="failure").inc(len(results) - successful)
        logger.info(
            "Bulk batch processed",
            extra={
                "batch_id": batch_id,
                "template_id": template.id,
                "total_requested": len(results),
                "successful": successful,
                "failed": len(results) - successful,
                "operation": "bulk.send",
            },
        )
        return BulkNotificationResponse(
            batch_id=batch_id,
            total_requested=len(results),
            successful=successful,
            failed=len(results) - successful,
            results=results,
            estimated_cost=estimated_cost,
        )

    async def _send_one(
        self,
        request: BulkNotificationRequest,
        template: NotificationTemplate,
        recipient: BulkNotificationRecipient,
        batch_id: str,
    ) -> tuple[BulkNotificationResult, float]:
        label = recipient.address or recipient.admin_id or "unknown"
        channel = recipient.channel or template.channels[0]
        try:
            dispatch = DispatchRequest(
                trigger_event=template.trigger_event,
                channels=[channel],
                priority=request.priority or template.priority,
                template_id=template.id,
                metadata=request.metadata,
                recipients=[
                    DispatchRecipient(
                        admin_id=recipient.admin_id,
                        address=recipient.address,
                        variables=recipient.template_variables,
                    )
                ],
                scheduled_at=request.scheduled_at,
                max_retries=request.max_retries,
                batch_id=batch_id,
            )
            records = await self.dispatcher.dispatch(dispatch)
        except NotificationError as exc:
            return BulkNotificationResult(recipient=label, success=False, error=exc.detail), 0.0
        except Exception as exc:
            logger.exception(
                "Bulk recipient failed unexpectedly",
                extra={"batch_id": batch_id, "recipient": label, "operation": "bulk.send_one"},
            )
            return BulkNotificationResult(recipient=label, success=False, error=str(exc)), 0.0

        record = records[0]
        if record.status == NotificationStatus.FAILED:
            return (
                BulkNotificationResult(
                    recipient=label,
                    notification_id=record.id,
                    success=False,
                    error=record.failure_reason,
                ),
                0.0,
            )
        return (
            BulkNotificationResult(recipient=label, notification_id=record.id, success=True),
            self.settings.unit_cost(channel.value),
        )


__all__ = ["BulkBatchProcessor", "new_batch_id"]
