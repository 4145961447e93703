"""Unit tests for BulkBatchProcessor."""

from __future__ import annotations

import pytest

from dispatch_service.core.settings import NotificationSettings
from dispatch_service.features.notifications.bulk import new_batch_id
from dispatch_service.features.notifications.channels import ChannelRegistry, SendResult
from dispatch_service.features.notifications.container import ServiceContainer
from dispatch_service.features.notifications.enums import (
    NotificationChannel,
    NotificationPriority,
    NotificationStatus,
)
from dispatch_service.features.notifications.exceptions import TemplateNotFound, ValidationError
from dispatch_service.features.notifications.schemas import (
    BulkNotificationRecipient,
    BulkNotificationRequest,
    NotificationMetadata,
    NotificationQuery,
    NotificationTemplate,
    NotificationTemplateCreate,
)

EMAIL = NotificationChannel.EMAIL
SMS = NotificationChannel.SMS

METADATA = NotificationMetadata(amount="19.99", currency="EUR")


@pytest.fixture
async def template(
    container: ServiceContainer, payment_template_payload: NotificationTemplateCreate
) -> NotificationTemplate:
    """Stored PAYMENT_FAILED template."""
    return await container.template_service.create(payment_template_payload)


class TestSendBulk:
    """Test bulk sends."""

    async def test_all_successful(self, container: ServiceContainer, template: NotificationTemplate):
        """Test every recipient gets a record tagged with the batch id."""
        request = BulkNotificationRequest(
            template_id=template.id,
            metadata=METADATA,
            recipients=[
                BulkNotificationRecipient(address=f"user{i}@example.com", template_variables={"user_name": f"U{i}"})
                for i in range(5)
            ],
        )

        response = await container.service.bulk_send(request)

        assert response.batch_id.startswith("batch_")
        assert response.total_requested == 5
        assert response.successful == 5
        assert response.failed == 0
        assert response.estimated_cost == pytest.approx(0.0005)
        records = await container.store.find_matching(NotificationQuery(batch_id=response.batch_id))
        assert len(records) == 5
        assert {r.channel for r in records} == {EMAIL}

    async def test_partial_failure(
        self, container: ServiceContainer, registry: ChannelRegistry, template: NotificationTemplate
    ):
        """Test failures are reported per recipient, in request order."""
        registry.get(SMS).script(SendResult.permanent("invalid number"))
        request = BulkNotificationRequest(
            template_id=template.id,
            metadata=METADATA,
            recipients=[
                BulkNotificationRecipient(address="ok@example.com", template_variables={"user_name": "Ok"}),
                BulkNotificationRecipient(address="+1000", channel=SMS, template_variables={"user_name": "Bad"}),
                BulkNotificationRecipient(address="missing@example.com"),
                BulkNotificationRecipient(admin_id="admin-9", template_variables={"user_name": "NoAddress"}),
            ],
        )

        response = await container.service.bulk_send(request)

        assert response.total_requested == 4
        assert response.successful == 1
        assert response.failed == 3
        assert response.successful + response.failed == response.total_requested
        ok, sms, missing_var, no_address = response.results
        assert ok.recipient == "ok@example.com" and ok.success and ok.notification_id
        assert sms.success is False and sms.error == "invalid number" and sms.notification_id
        assert missing_var.success is False and missing_var.notification_id is None
        assert "user_name" in missing_var.error
        assert no_address.recipient == "admin-9"
        assert no_address.error == "no address for channel EMAIL"
        assert response.estimated_cost == pytest.approx(0.0001)

    async def test_priority_override(self, container: ServiceContainer, template: NotificationTemplate):
        """Test the request priority overrides the template priority."""
        request = BulkNotificationRequest(
            template_id=template.id,
            metadata=METADATA,
            priority=NotificationPriority.URGENT,
            recipients=[BulkNotificationRecipient(address="a@example.com", template_variables={"user_name": "A"})],
        )

        response = await container.service.bulk_send(request)

        record = await container.store.find_by_id(response.results[0].notification_id)
        assert record.priority is NotificationPriority.URGENT
        assert record.status is NotificationStatus.SENT
        assert record.batch_id == response.batch_id

    async def test_unknown_template(self, container: ServiceContainer):
        """Test an unknown template fails the whole batch before sending."""
        request = BulkNotificationRequest(
            template_id="missing",
            recipients=[BulkNotificationRecipient(address="a@example.com")],
        )

        with pytest.raises(TemplateNotFound):
            await container.service.bulk_send(request)

    def test_recipient_requires_identity(self):
        """Test a recipient without admin id or address is invalid."""
        with pytest.raises(ValueError, match="admin_id or address"):
            BulkNotificationRecipient()

    def test_batch_ids_unique(self):
        """Test batch ids never repeat."""
        assert len({new_batch_id() for _ in range(100)}) == 100


class TestRecipientLimit:
    """Test the configured recipient cap."""

    @pytest.fixture
    def notification_settings(self) -> NotificationSettings:
        """Settings allowing two recipients per batch."""
        return NotificationSettings(store_backend="memory", sender_mode="fake", bulk_max_recipients=2)

    async def test_too_many_recipients(self, container: ServiceContainer, template: NotificationTemplate):
        """Test batches over the cap are rejected whole."""
        request = BulkNotificationRequest(
            template_id=template.id,
            recipients=[BulkNotificationRecipient(address=f"u{i}@example.com") for i in range(3)],
        )

        with pytest.raises(ValidationError):
            await container.service.bulk_send(request)

        assert await container.store.count(NotificationQuery()) == 0
