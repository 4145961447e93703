"""Unit tests for NotificationDispatcher."""

from __future__ import annotations

from datetime import UTC, datetime, timedelta

import pydantic
import pytest

from dispatch_service.core.settings import NotificationSettings
from dispatch_service.features.notifications.channels import (
    ChannelRegistry,
    FakeSender,
    SendResult,
)
from dispatch_service.features.notifications.container import ServiceContainer
from dispatch_service.features.notifications.dispatcher import resolve_address
from dispatch_service.features.notifications.enums import (
    ConditionOperator,
    NotificationChannel,
    NotificationFrequency,
    NotificationPriority,
    NotificationStatus,
    NotificationTriggerEvent,
)
from dispatch_service.features.notifications.exceptions import (
    InvalidStateTransition,
    PermanentSendFailure,
    TemplateMissingForChannel,
    TemplateNotFound,
    ValidationError,
)
from dispatch_service.features.notifications.schemas import (
    DispatchRecipient,
    DispatchRequest,
    NotificationCondition,
    NotificationMetadata,
    NotificationQuery,
    NotificationTemplateCreate,
    RenderedContent,
    SmsTemplate,
)

EMAIL = NotificationChannel.EMAIL
SMS = NotificationChannel.SMS
SLACK = NotificationChannel.SLACK
IN_APP = NotificationChannel.IN_APP


def direct_request(channels: list[NotificationChannel], recipients: list[DispatchRecipient], **kwargs) -> DispatchRequest:
    """Request with literal title and message."""
    return DispatchRequest(
        trigger_event=NotificationTriggerEvent.SYSTEM_ERROR,
        channels=channels,
        title="Disk almost full",
        message="Volume /data is at 95%",
        recipients=recipients,
        **kwargs,
    )


class TestResolveAddress:
    """Test address resolution order."""

    @pytest.fixture
    def content(self) -> RenderedContent:
        return RenderedContent(channel=SLACK, title="t", message="m", extras={"channel": "#ops"})

    def test_per_channel_address_wins(self, content: RenderedContent):
        """Test a per-channel address beats every other source."""
        recipient = DispatchRecipient(admin_id="admin-1", address="generic", addresses={IN_APP: "inbox-9"})

        assert resolve_address(IN_APP, recipient, NotificationMetadata(), content) == "inbox-9"

    def test_in_app_uses_admin_id(self, content: RenderedContent):
        """Test in-app delivery goes to the admin id before the generic address."""
        recipient = DispatchRecipient(admin_id="admin-1", address="generic")

        assert resolve_address(IN_APP, recipient, NotificationMetadata(), content) == "admin-1"

    def test_email_falls_back_to_metadata(self, content: RenderedContent):
        """Test email falls back to metadata.user_email."""
        metadata = NotificationMetadata(user_email="ada@example.com")

        assert resolve_address(EMAIL, DispatchRecipient(admin_id="admin-1"), metadata, content) == "ada@example.com"

    def test_slack_falls_back_to_rendered_channel(self, content: RenderedContent):
        """Test Slack falls back to the channel named by the template."""
        assert resolve_address(SLACK, DispatchRecipient(), NotificationMetadata(), content) == "#ops"

    def test_sms_without_address(self, content: RenderedContent):
        """Test SMS has no fallback."""
        metadata = NotificationMetadata(user_email="ada@example.com")

        assert resolve_address(SMS, DispatchRecipient(admin_id="admin-1"), metadata, content) is None


class TestDispatch:
    """Test fan-out and send classification."""

    async def test_fan_out_one_record_per_recipient_per_channel(
        self, container: ServiceContainer, registry: ChannelRegistry
    ):
        """Test records are created and sent in (recipient, channel) order."""
        recipients = [
            DispatchRecipient(addresses={EMAIL: "a@example.com", SMS: "+15550001"}),
            DispatchRecipient(addresses={EMAIL: "b@example.com", SMS: "+15550002"}),
        ]

        records = await container.dispatcher.dispatch(direct_request([EMAIL, SMS], recipients))

        assert [(r.channel, r.recipient_address) for r in records] == [
            (EMAIL, "a@example.com"),
            (SMS, "+15550001"),
            (EMAIL, "b@example.com"),
            (SMS, "+15550002"),
        ]
        assert all(r.status is NotificationStatus.SENT for r in records)
        assert all(r.attempts == 1 and r.sent_at is not None for r in records)
        assert registry.get(EMAIL).call_count == 2
        assert registry.get(SMS).call_count == 2

    async def test_sent_record_is_persisted(self, container: ServiceContainer):
        """Test the returned record matches the stored one."""
        records = await container.dispatcher.dispatch(
            direct_request([EMAIL], [DispatchRecipient(address="a@example.com")])
        )

        stored = await container.store.find_by_id(records[0].id)
        assert stored.status is NotificationStatus.SENT
        assert stored.provider_message_id == "fake-email-1"
        assert stored.max_retries == 3

    async def test_missing_address_fails_without_sending(
        self, container: ServiceContainer, registry: ChannelRegistry
    ):
        """Test a channel without an address fails immediately."""
        records = await container.dispatcher.dispatch(
            direct_request([SMS], [DispatchRecipient(admin_id="admin-1")])
        )

        assert records[0].status is NotificationStatus.FAILED
        assert records[0].failure_reason == "no address for channel SMS"
        assert registry.get(SMS).call_count == 0

    async def test_permanent_failure(self, container: ServiceContainer, registry: ChannelRegistry):
        """Test a permanent result fails the record with no retry."""
        registry.get(EMAIL).script(SendResult.permanent("mailbox does not exist", status_code=550))

        records = await container.dispatcher.dispatch(
            direct_request([EMAIL], [DispatchRecipient(address="nobody@example.com")])
        )

        assert records[0].status is NotificationStatus.FAILED
        assert records[0].failure_reason == "mailbox does not exist"
        assert records[0].next_retry_at is None
        assert len(container.retry.timers) == 0

    async def test_permanent_exception(self, container: ServiceContainer, registry: ChannelRegistry):
        """Test a raised PermanentSendFailure is classified as permanent."""
        registry.get(EMAIL).script(PermanentSendFailure("recipient unsubscribed"))

        records = await container.dispatcher.dispatch(
            direct_request([EMAIL], [DispatchRecipient(address="a@example.com")])
        )

        assert records[0].status is NotificationStatus.FAILED
        assert records[0].failure_reason == "recipient unsubscribed"

    async def test_transient_failure_schedules_retry(
        self, container: ServiceContainer, registry: ChannelRegistry
    ):
        """Test a transient result keeps the record PENDING with a retry time."""
        registry.get(SMS).script(SendResult.transient("gateway 503", status_code=503))

        records = await container.dispatcher.dispatch(
            direct_request([SMS], [DispatchRecipient(address="+15550001")])
        )

        record = records[0]
        assert record.status is NotificationStatus.PENDING
        assert record.failure_reason == "gateway 503"
        assert record.next_retry_at is not None
        assert record.retry_count == 0
        assert record.attempts == 1

        await container.retry.wait_idle()

        final = await container.store.find_by_id(record.id)
        assert final.status is NotificationStatus.SENT
        assert final.retry_count == 1
        assert final.attempts == 2
        assert final.failure_reason is None

    async def test_unexpected_exception_is_transient(
        self, container: ServiceContainer, registry: ChannelRegistry
    ):
        """Test an arbitrary sender exception is treated as transient."""
        registry.get(EMAIL).script(ConnectionResetError("connection reset by peer"))

        records = await container.dispatcher.dispatch(
            direct_request([EMAIL], [DispatchRecipient(address="a@example.com")])
        )

        assert records[0].status is NotificationStatus.PENDING
        assert "ConnectionResetError" in records[0].failure_reason

    async def test_one_channel_failure_does_not_block_others(
        self, container: ServiceContainer, registry: ChannelRegistry
    ):
        """Test channels of one dispatch are independent."""
        registry.get(EMAIL).script(SendResult.permanent("rejected"))

        records = await container.dispatcher.dispatch(
            direct_request([EMAIL, IN_APP], [DispatchRecipient(admin_id="admin-1", address="a@example.com")])
        )

        statuses = {r.channel: r.status for r in records}
        assert statuses == {EMAIL: NotificationStatus.FAILED, IN_APP: NotificationStatus.SENT}

    async def test_direct_sms_truncated(self, container: ServiceContainer, registry: ChannelRegistry):
        """Test direct SMS content is limited to the default SMS length."""
        request = direct_request([SMS], [DispatchRecipient(address="+15550001")])
        request = request.model_copy(update={"message": "x" * 200})

        records = await container.dispatcher.dispatch(request)

        assert len(records[0].message) == 160
        assert len(registry.get(SMS).sent[0].content.message) == 160

    async def test_scheduled_dispatch_is_deferred(
        self, container: ServiceContainer, registry: ChannelRegistry
    ):
        """Test a future scheduled_at creates a PENDING record and sends nothing."""
        scheduled_at = datetime.now(UTC) + timedelta(hours=1)

        records = await container.dispatcher.dispatch(
            direct_request([EMAIL], [DispatchRecipient(address="a@example.com")], scheduled_at=scheduled_at)
        )

        assert records[0].status is NotificationStatus.PENDING
        assert records[0].attempts == 0
        assert container.deferred.timers.is_armed(records[0].id)
        assert registry.get(EMAIL).call_count == 0

    async def test_custom_max_retries(self, container: ServiceContainer):
        """Test an explicit max_retries overrides the configured default."""
        records = await container.dispatcher.dispatch(
            direct_request([EMAIL], [DispatchRecipient(address="a@example.com")], max_retries=0)
        )

        assert records[0].max_retries == 0


class TestTemplateDispatch:
    """Test dispatches that render a template."""

    async def test_renders_with_recipient_variables(
        self,
        container: ServiceContainer,
        registry: ChannelRegistry,
        payment_template_payload: NotificationTemplateCreate,
        payment_metadata: NotificationMetadata,
    ):
        """Test per-recipient variables override event metadata."""
        template = await container.template_service.create(payment_template_payload)

        records = await container.dispatcher.dispatch(
            DispatchRequest(
                trigger_event=NotificationTriggerEvent.PAYMENT_FAILED,
                channels=[EMAIL],
                template_id=template.id,
                metadata=payment_metadata,
                recipients=[DispatchRecipient(address="grace@example.com", variables={"user_name": "Grace"})],
            )
        )

        record = records[0]
        assert record.title == "Payment of 42.50 USD failed"
        assert record.message == "Hi Grace, your payment of 42.50 USD failed."
        assert record.template_id == template.id
        assert record.channel_payload["html"] == "<p>Hi Grace</p>"
        assert registry.get(EMAIL).sent[0].address == "grace@example.com"

    async def test_channel_without_content_is_skipped(
        self,
        container: ServiceContainer,
        payment_template_payload: NotificationTemplateCreate,
        payment_metadata: NotificationMetadata,
    ):
        """Test a channel the template cannot render gets no record."""
        template = await container.template_service.create(payment_template_payload)

        records = await container.dispatcher.dispatch(
            DispatchRequest(
                trigger_event=NotificationTriggerEvent.PAYMENT_FAILED,
                channels=[EMAIL, SLACK],
                template_id=template.id,
                metadata=payment_metadata,
                recipients=[DispatchRecipient(address="a@example.com")],
            )
        )

        assert [r.channel for r in records] == [EMAIL]

    async def test_every_channel_failing_to_render_raises(
        self,
        container: ServiceContainer,
        payment_template_payload: NotificationTemplateCreate,
    ):
        """Test a dispatch with nothing renderable raises the render error."""
        template = await container.template_service.create(payment_template_payload)

        with pytest.raises(TemplateMissingForChannel):
            await container.dispatcher.dispatch(
                DispatchRequest(
                    trigger_event=NotificationTriggerEvent.PAYMENT_FAILED,
                    channels=[SLACK],
                    template_id=template.id,
                    recipients=[DispatchRecipient(address="#ops")],
                )
            )

        assert await container.store.count(NotificationQuery()) == 0

    async def test_runtime_render_error_skips_only_that_channel(
        self,
        container: ServiceContainer,
        registry: ChannelRegistry,
        payment_template_payload: NotificationTemplateCreate,
        payment_metadata: NotificationMetadata,
    ):
        """Test a sub-template failing while evaluating does not block sibling channels."""
        payload = payment_template_payload.model_copy(
            update={"sms": SmsTemplate(message="{{ user_name + 1 }}")}
        )
        template = await container.template_service.create(payload)

        records = await container.dispatcher.dispatch(
            DispatchRequest(
                trigger_event=NotificationTriggerEvent.PAYMENT_FAILED,
                channels=[EMAIL, SMS],
                template_id=template.id,
                metadata=payment_metadata,
                recipients=[DispatchRecipient(addresses={EMAIL: "a@example.com", SMS: "+15550001"})],
            )
        )

        assert [(r.channel, r.status) for r in records] == [(EMAIL, NotificationStatus.SENT)]
        assert registry.get(EMAIL).call_count == 1
        assert registry.get(SMS).call_count == 0

    async def test_unknown_template(self, container: ServiceContainer):
        """Test an unknown template id raises before any record exists."""
        with pytest.raises(TemplateNotFound):
            await container.dispatcher.dispatch(
                DispatchRequest(
                    trigger_event=NotificationTriggerEvent.PAYMENT_FAILED,
                    channels=[EMAIL],
                    template_id="missing",
                    recipients=[DispatchRecipient(address="a@example.com")],
                )
            )

    @pytest.mark.parametrize(
        "changes",
        [{"is_active": False}, {"frequency": NotificationFrequency.DISABLED}],
    )
    async def test_unusable_template(
        self,
        container: ServiceContainer,
        payment_template_payload: NotificationTemplateCreate,
        payment_metadata: NotificationMetadata,
        changes: dict,
    ):
        """Test inactive and disabled templates are rejected."""
        template = await container.template_service.create(payment_template_payload.model_copy(update=changes))

        with pytest.raises(ValidationError):
            await container.dispatcher.dispatch(
                DispatchRequest(
                    trigger_event=NotificationTriggerEvent.PAYMENT_FAILED,
                    channels=[EMAIL],
                    template_id=template.id,
                    metadata=payment_metadata,
                    recipients=[DispatchRecipient(address="a@example.com")],
                )
            )

    async def test_conditions_gate_dispatch(
        self,
        container: ServiceContainer,
        payment_template_payload: NotificationTemplateCreate,
        payment_metadata: NotificationMetadata,
    ):
        """Test a template whose conditions do not hold is not applicable."""
        payload = payment_template_payload.model_copy(
            update={
                "conditions": [
                    NotificationCondition(field="amount", operator=ConditionOperator.GREATER_THAN, value=100)
                ]
            }
        )
        template = await container.template_service.create(payload)

        with pytest.raises(ValidationError) as exc_info:
            await container.dispatcher.dispatch(
                DispatchRequest(
                    trigger_event=NotificationTriggerEvent.PAYMENT_FAILED,
                    channels=[EMAIL],
                    template_id=template.id,
                    metadata=payment_metadata,
                    recipients=[DispatchRecipient(address="a@example.com")],
                )
            )

        assert "not applicable" in exc_info.value.detail


class TestValidation:
    """Test request validation."""

    async def test_title_and_message_required_without_template(self, container: ServiceContainer):
        """Test direct content needs both title and message."""
        request = direct_request([EMAIL], [DispatchRecipient(address="a@example.com")])

        with pytest.raises(ValidationError):
            await container.dispatcher.dispatch(request.model_copy(update={"message": None}))

    async def test_duplicate_channels(self, container: ServiceContainer):
        """Test duplicate channels are rejected before any record is created."""
        with pytest.raises(ValidationError):
            await container.dispatcher.dispatch(
                direct_request([EMAIL, EMAIL], [DispatchRecipient(address="a@example.com")])
            )

        assert await container.store.count(NotificationQuery()) == 0

    def test_naive_scheduled_at_rejected(self):
        """Test scheduled_at must carry a timezone."""
        with pytest.raises(pydantic.ValidationError, match="timezone"):
            direct_request([EMAIL], [DispatchRecipient(address="a@example.com")], scheduled_at=datetime(2099, 1, 1))


class TestTransitions:
    """Test apply_transition."""

    async def test_delivery_callback(self, container: ServiceContainer):
        """Test SENT -> DELIVERED stamps delivered_at."""
        records = await container.dispatcher.dispatch(
            direct_request([EMAIL], [DispatchRecipient(address="a@example.com")])
        )

        updated = await container.dispatcher.apply_transition(records[0].id, NotificationStatus.DELIVERED)

        assert updated.status is NotificationStatus.DELIVERED
        assert updated.delivered_at is not None

    async def test_illegal_transition_leaves_record_unchanged(self, container: ServiceContainer):
        """Test a rejected transition persists nothing."""
        records = await container.dispatcher.dispatch(
            direct_request([EMAIL], [DispatchRecipient(address="a@example.com")])
        )

        with pytest.raises(InvalidStateTransition):
            await container.dispatcher.apply_transition(records[0].id, NotificationStatus.CLICKED)

        stored = await container.store.find_by_id(records[0].id)
        assert stored.status is NotificationStatus.SENT
        assert stored.clicked_at is None


class TestSendTimeout:
    """Test the per-send timeout."""

    @pytest.fixture
    def notification_settings(self) -> NotificationSettings:
        """Settings with a very short send timeout and no retries."""
        return NotificationSettings(
            store_backend="memory",
            sender_mode="fake",
            send_timeout_seconds=0.05,
            default_max_retries=0,
            retry_base_delay_seconds=0.001,
            retry_max_delay_seconds=0.01,
        )

    async def test_slow_sender_times_out(self, container: ServiceContainer, registry: ChannelRegistry):
        """Test a send exceeding the timeout counts as a transient failure."""
        registry.register(FakeSender(SMS, delay=1.0))

        records = await container.dispatcher.dispatch(
            direct_request([SMS], [DispatchRecipient(address="+15550001")], priority=NotificationPriority.HIGH)
        )

        record = records[0]
        assert record.status is NotificationStatus.FAILED
        assert record.failure_reason == "retries exhausted"
        assert record.attempts == 1
