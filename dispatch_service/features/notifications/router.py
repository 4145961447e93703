"""API router for the notifications feature.

Notification Endpoints:
- POST /notifications - Create and dispatch
- GET /notifications - List with filters, pagination and summary
- GET /notifications/{notification_id} - Get one record
- PUT /notifications/{notification_id} - Status update (delivery callback) / metadata
- DELETE /notifications/{notification_id} - Delete one record
- POST /notifications/{notification_id}/retry - Manual retry
- POST /notifications/{notification_id}/cancel - Cancel a scheduled send

Batch Endpoints:
- POST /notifications/bulk-send - Send one template to many recipients
- POST /notifications/bulk-retry - Retry many records

Analytics Endpoints:
- GET /notifications/analytics - Delivery summary
- GET /notifications/analytics/engagement - Open/click/unsubscribe rates
- GET /notifications/analytics/failure-analysis - Failures by reason and channel
- GET /notifications/analytics/cost - Estimated provider cost

Maintenance Endpoints:
- POST /notifications/purge-old - Delete old records (dry run supported)
- POST /notifications/process-due - Run the due-record sweep now

Template Endpoints:
- GET|POST /notifications/templates
- GET|PUT|DELETE /notifications/templates/{template_id}
- POST /notifications/templates/{template_id}/duplicate
- POST /notifications/templates/{template_id}/test

Every response is wrapped in ``ApiResponse``.
"""

from __future__ import annotations

from datetime import UTC, datetime, timedelta
import logging
from typing import Annotated, Literal

from fastapi import APIRouter, Body, Depends, Query, Request, status

from dispatch_service.core.schemas import ApiResponse
from dispatch_service.features.notifications.dependencies import (
    AdminIdDep,
    NotificationServiceDep,
    TemplateServiceDep,
    bind_admin_context,
)
from dispatch_service.features.notifications.enums import (
    NotificationChannel,
    NotificationPriority,
    NotificationStatus,
    NotificationTriggerEvent,
)
from dispatch_service.features.notifications.schemas import (
    AnalyticsFilter,
    AnalyticsSummary,
    BaseNotification,
    BulkNotificationRequest,
    BulkNotificationResponse,
    BulkRetryRequest,
    BulkRetryResponse,
    CancelNotificationRequest,
    CostAnalysis,
    CreateNotificationRequest,
    EngagementSummary,
    FailureAnalysis,
    NotificationListData,
    NotificationQuery,
    NotificationTemplate,
    NotificationTemplateCreate,
    NotificationTemplateUpdate,
    ProcessDueResult,
    PurgeRequest,
    PurgeResult,
    TemplateTestRequest,
    TemplateTestResponse,
    UpdateNotificationRequest,
)
from dispatch_service.infra.logging import get_lazy_logger

logger = logging.getLogger(__name__)
lazy_logger = get_lazy_logger(__name__)

DEFAULT_ANALYTICS_WINDOW = timedelta(days=30)

# Declared before ``router`` is included so /templates is not captured by /{notification_id}
templates_router = APIRouter(
    prefix="/notifications/templates",
    tags=["notification-templates"],
    dependencies=[Depends(bind_admin_context)],
)

router = APIRouter(
    prefix="/notifications",
    tags=["notifications"],
    dependencies=[Depends(bind_admin_context)],
)


def get_analytics_filter(
    start: Annotated[datetime | None, Query(description="Range start (timezone-aware); default end - 30 days")] = None,
    end: Annotated[datetime | None, Query(description="Range end (timezone-aware); default now")] = None,
    channels: Annotated[list[NotificationChannel] | None, Query(description="Restrict to channels")] = None,
    events: Annotated[list[NotificationTriggerEvent] | None, Query(description="Restrict to trigger events")] = None,
) -> AnalyticsFilter:
    end = end or datetime.now(UTC)
    start = start or end - DEFAULT_ANALYTICS_WINDOW
    return AnalyticsFilter(start=start, end=end, channels=channels or [], events=events or [])


AnalyticsFilterDep = Annotated[AnalyticsFilter, Depends(get_analytics_filter)]


# ============================================================================
# Template Endpoints
# ============================================================================


@templates_router.get(
    "",
    response_model=ApiResponse[list[NotificationTemplate]],
    summary="List templates",
)
async def list_templates(
    request: Request,
    service: TemplateServiceDep,
    active_only: Annotated[bool, Query(description="Only active templates")] = False,
    trigger_event: Annotated[NotificationTriggerEvent | None, Query(description="Filter by trigger event")] = None,
) -> ApiResponse[list[NotificationTemplate]]:
    templates = await service.list(active_only=active_only, trigger_event=trigger_event)
    return ApiResponse[list[NotificationTemplate]].ok(request, templates, f"{len(templates)} templates")


@templates_router.post(
    "",
    response_model=ApiResponse[NotificationTemplate],
    status_code=status.HTTP_201_CREATED,
    summary="Create template",
)
async def create_template(
    request: Request,
    payload: NotificationTemplateCreate,
    service: TemplateServiceDep,
    admin_id: AdminIdDep,
) -> ApiResponse[NotificationTemplate]:
    template = await service.create(payload, created_by=admin_id)
    return ApiResponse[NotificationTemplate].ok(request, template, "Template created")


@templates_router.get(
    "/{template_id}",
    response_model=ApiResponse[NotificationTemplate],
    summary="Get template",
)
async def get_template(
    request: Request, template_id: str, service: TemplateServiceDep
) -> ApiResponse[NotificationTemplate]:
    template = await service.get(template_id)
    return ApiResponse[NotificationTemplate].ok(request, template, "Template retrieved")


@templates_router.put(
    "/{template_id}",
    response_model=ApiResponse[NotificationTemplate],
    summary="Update template",
)
async def update_template(
    request: Request,
    template_id: str,
    payload: NotificationTemplateUpdate,
    service: TemplateServiceDep,
) -> ApiResponse[NotificationTemplate]:
    template = await service.update(template_id, payload)
    return ApiResponse[NotificationTemplate].ok(request, template, "Template updated")


@templates_router.delete(
    "/{template_id}",
    response_model=ApiResponse[None],
    summary="Delete template",
)
async def delete_template(request: Request, template_id: str, service: TemplateServiceDep) -> ApiResponse[None]:
    await service.delete(template_id)
    return ApiResponse[None].ok(request, None, "Template deleted")


@templates_router.post(
    "/{template_id}/duplicate",
    response_model=ApiResponse[NotificationTemplate],
    status_code=status.HTTP_201_CREATED,
    summary="Duplicate template",
)
async def duplicate_template(
    request: Request,
    template_id: str,
    service: TemplateServiceDep,
    admin_id: AdminIdDep,
) -> ApiResponse[NotificationTemplate]:
    template = await service.duplicate(template_id, created_by=admin_id)
    return ApiResponse[NotificationTemplate].ok(request, template, "Template duplicated")


@templates_router.post(
    "/{template_id}/test",
    response_model=ApiResponse[TemplateTestResponse],
    summary="Render (and optionally send) a template",
    description="""
Render the template for one channel with the given variables and metadata.

When `test_address` is set the rendered content is also sent through the
configured channel sender. No notification record is created.
""",
)
async def test_template(
    request: Request,
    template_id: str,
    payload: TemplateTestRequest,
    service: TemplateServiceDep,
) -> ApiResponse[TemplateTestResponse]:
    result = await service.test(template_id, payload)
    return ApiResponse[TemplateTestResponse].ok(request, result, "Template rendered")


# ============================================================================
# Notification Endpoints
# ============================================================================


@router.post(
    "",
    response_model=ApiResponse[list[BaseNotification]],
    status_code=status.HTTP_201_CREATED,
    summary="Create and dispatch a notification",
    description="""
Create one record per recipient per channel and attempt delivery.

Recipients come from `recipient_admin_ids` and `recipient_addresses`, or from
`metadata.admin_id` / `metadata.user_email` when both lists are empty. Records
with a future `scheduled_at` stay PENDING until due.
""",
)
async def create_notification(
    request: Request,
    payload: CreateNotificationRequest,
    service: NotificationServiceDep,
) -> ApiResponse[list[BaseNotification]]:
    records = await service.create_notification(payload)
    return ApiResponse[list[BaseNotification]].ok(request, records, f"{len(records)} notifications created")


@router.get(
    "",
    response_model=ApiResponse[NotificationListData],
    summary="List notifications",
)
async def list_notifications(
    request: Request,
    service: NotificationServiceDep,
    channels: Annotated[list[NotificationChannel] | None, Query()] = None,
    trigger_events: Annotated[list[NotificationTriggerEvent] | None, Query()] = None,
    statuses: Annotated[list[NotificationStatus] | None, Query()] = None,
    priorities: Annotated[list[NotificationPriority] | None, Query()] = None,
    start_date: Annotated[datetime | None, Query(description="Created at or after")] = None,
    end_date: Annotated[datetime | None, Query(description="Created at or before")] = None,
    recipient_admin_id: Annotated[str | None, Query()] = None,
    batch_id: Annotated[str | None, Query()] = None,
    template_id: Annotated[str | None, Query()] = None,
    sort_by: Annotated[Literal["created_at", "sent_at", "priority"], Query()] = "created_at",
    sort_order: Annotated[Literal["asc", "desc"], Query()] = "desc",
    page: Annotated[int, Query(ge=1, description="Page number (1-indexed)")] = 1,
    limit: Annotated[int, Query(ge=1, le=100, description="Page size")] = 20,
) -> ApiResponse[NotificationListData]:
    query = NotificationQuery(
        channels=channels or [],
        trigger_events=trigger_events or [],
        statuses=statuses or [],
        priorities=priorities or [],
        start_date=start_date,
        end_date=end_date,
        recipient_admin_id=recipient_admin_id,
        batch_id=batch_id,
        template_id=template_id,
        sort_by=sort_by,
        sort_order=sort_order,
    )
    data = await service.list_notifications(query, page=page, limit=limit)
    return ApiResponse[NotificationListData].ok(request, data, "Notifications retrieved")


# ============================================================================
# Batch Endpoints
# ============================================================================


@router.post(
    "/bulk-send",
    response_model=ApiResponse[BulkNotificationResponse],
    summary="Send a template to many recipients",
    description="""
Each recipient is dispatched independently; per-recipient errors are reported
in `results` and never fail the batch.
""",
)
async def bulk_send(
    request: Request,
    payload: BulkNotificationRequest,
    service: NotificationServiceDep,
) -> ApiResponse[BulkNotificationResponse]:
    result = await service.bulk_send(payload)
    return ApiResponse[BulkNotificationResponse].ok(
        request, result, f"Bulk send: {result.successful} succeeded, {result.failed} failed"
    )


@router.post(
    "/bulk-retry",
    response_model=ApiResponse[BulkRetryResponse],
    summary="Retry many notifications",
)
async def bulk_retry(
    request: Request,
    payload: BulkRetryRequest,
    service: NotificationServiceDep,
) -> ApiResponse[BulkRetryResponse]:
    result = await service.bulk_retry(payload.notification_ids)
    return ApiResponse[BulkRetryResponse].ok(
        request, result, f"Bulk retry: {result.successful} succeeded, {result.failed} failed"
    )


# ============================================================================
# Analytics Endpoints
# ============================================================================


@router.get(
    "/analytics",
    response_model=ApiResponse[AnalyticsSummary],
    summary="Delivery analytics",
)
async def get_analytics(
    request: Request, analytics_filter: AnalyticsFilterDep, service: NotificationServiceDep
) -> ApiResponse[AnalyticsSummary]:
    summary = await service.get_analytics(analytics_filter)
    return ApiResponse[AnalyticsSummary].ok(request, summary, "Analytics retrieved")


@router.get(
    "/analytics/engagement",
    response_model=ApiResponse[EngagementSummary],
    summary="Engagement analytics",
)
async def get_engagement(
    request: Request, analytics_filter: AnalyticsFilterDep, service: NotificationServiceDep
) -> ApiResponse[EngagementSummary]:
    summary = await service.get_engagement(analytics_filter)
    return ApiResponse[EngagementSummary].ok(request, summary, "Engagement analytics retrieved")


@router.get(
    "/analytics/failure-analysis",
    response_model=ApiResponse[FailureAnalysis],
    summary="Failure analysis",
)
async def get_failure_analysis(
    request: Request, analytics_filter: AnalyticsFilterDep, service: NotificationServiceDep
) -> ApiResponse[FailureAnalysis]:
    summary = await service.get_failure_analysis(analytics_filter)
    return ApiResponse[FailureAnalysis].ok(request, summary, "Failure analysis retrieved")


@router.get(
    "/analytics/cost",
    response_model=ApiResponse[CostAnalysis],
    summary="Cost analysis",
)
async def get_cost_analysis(
    request: Request, analytics_filter: AnalyticsFilterDep, service: NotificationServiceDep
) -> ApiResponse[CostAnalysis]:
    summary = await service.get_cost_analysis(analytics_filter)
    return ApiResponse[CostAnalysis].ok(request, summary, "Cost analysis retrieved")


# ============================================================================
# Maintenance Endpoints
# ============================================================================


@router.post(
    "/purge-old",
    response_model=ApiResponse[PurgeResult],
    summary="Purge old notifications",
)
async def purge_old(
    request: Request,
    service: NotificationServiceDep,
    payload: Annotated[PurgeRequest | None, Body()] = None,
) -> ApiResponse[PurgeResult]:
    result = await service.purge_old(payload)
    verb = "would delete" if result.dry_run else "deleted"
    return ApiResponse[PurgeResult].ok(request, result, f"Purge {verb} {result.matched} notifications")


@router.post(
    "/process-due",
    response_model=ApiResponse[ProcessDueResult],
    summary="Process due retries and scheduled sends",
)
async def process_due(request: Request, service: NotificationServiceDep) -> ApiResponse[ProcessDueResult]:
    result = await service.process_due()
    return ApiResponse[ProcessDueResult].ok(request, result, "Due notifications processed")


# ============================================================================
# Single-record Endpoints
# ============================================================================


@router.get(
    "/{notification_id}",
    response_model=ApiResponse[BaseNotification],
    summary="Get notification",
)
async def get_notification(
    request: Request, notification_id: str, service: NotificationServiceDep
) -> ApiResponse[BaseNotification]:
    notification = await service.get_notification(notification_id)
    return ApiResponse[BaseNotification].ok(request, notification, "Notification retrieved")


@router.put(
    "/{notification_id}",
    response_model=ApiResponse[BaseNotification],
    summary="Update notification status or metadata",
    description="""
Apply a lifecycle transition (e.g. a provider delivery callback moving SENT to
DELIVERED) and/or replace the metadata. Transitions not permitted by the
lifecycle are rejected with 409 and leave the record unchanged.
""",
)
async def update_notification(
    request: Request,
    notification_id: str,
    payload: UpdateNotificationRequest,
    service: NotificationServiceDep,
) -> ApiResponse[BaseNotification]:
    notification = await service.update_status(notification_id, payload)
    return ApiResponse[BaseNotification].ok(request, notification, "Notification updated")


@router.delete(
    "/{notification_id}",
    response_model=ApiResponse[None],
    summary="Delete notification",
)
async def delete_notification(
    request: Request, notification_id: str, service: NotificationServiceDep
) -> ApiResponse[None]:
    await service.delete_notification(notification_id)
    return ApiResponse[None].ok(request, None, "Notification deleted")


@router.post(
    "/{notification_id}/retry",
    response_model=ApiResponse[BaseNotification],
    summary="Retry notification",
)
async def retry_notification(
    request: Request, notification_id: str, service: NotificationServiceDep
) -> ApiResponse[BaseNotification]:
    notification = await service.retry_notification(notification_id)
    lazy_logger.debug(lambda: f"retry endpoint: {notification_id} -> {notification.status}")
    return ApiResponse[BaseNotification].ok(request, notification, "Notification retried")


@router.post(
    "/{notification_id}/cancel",
    response_model=ApiResponse[BaseNotification],
    summary="Cancel a scheduled notification",
)
async def cancel_notification(
    request: Request,
    notification_id: str,
    service: NotificationServiceDep,
    payload: Annotated[CancelNotificationRequest | None, Body()] = None,
) -> ApiResponse[BaseNotification]:
    reason = payload.reason if payload is not None else None
    notification = await service.cancel_notification(notification_id, reason)
    return ApiResponse[BaseNotification].ok(request, notification, "Notification cancelled")


__all__ = ["router", "templates_router"]
