"""Service container: builds and wires the notification components.

Strategy choices (store backend, sender mode) are read once from settings
when the container is built.

Example:
    container = ServiceContainer.build(get_settings())
    await container.startup()
    records = await container.service.create_notification(request)
    await container.shutdown()
"""

from __future__ import annotations

from dataclasses import dataclass, field
import logging
from typing import TYPE_CHECKING

from dispatch_service.features.notifications.analytics import AnalyticsAggregator
from dispatch_service.features.notifications.bulk import BulkBatchProcessor
from dispatch_service.features.notifications.channels import build_registry
from dispatch_service.features.notifications.dispatcher import NotificationDispatcher
from dispatch_service.features.notifications.locks import RecordLocks
from dispatch_service.features.notifications.repository import (
    InMemoryNotificationStore,
    SqlAlchemyNotificationStore,
)
from dispatch_service.features.notifications.retry import RetryScheduler
from dispatch_service.features.notifications.scheduler import DeferredSendScheduler, SweepScheduler
from dispatch_service.features.notifications.service import NotificationService
from dispatch_service.features.notifications.templates.renderer import TemplateRenderer
from dispatch_service.features.notifications.templates.service import TemplateService
from dispatch_service.features.notifications.templates.store import (
    InMemoryTemplateStore,
    SqlAlchemyTemplateStore,
)
from dispatch_service.infra.database.session import (
    build_engine,
    build_session_factory,
    close_database,
    init_database,
)

if TYPE_CHECKING:
    import random

    from sqlalchemy.ext.asyncio import AsyncEngine

    from dispatch_service.core.settings import Settings
    from dispatch_service.features.notifications.channels import ChannelRegistry
    from dispatch_service.features.notifications.repository import NotificationStore
    from dispatch_service.features.notifications.templates.store import TemplateStore

logger = logging.getLogger(__name__)


@dataclass
class ServiceContainer:
    """Every long-lived notification component, wired together."""

    settings: Settings
    store: NotificationStore
    templates: TemplateStore
    registry: ChannelRegistry
    dispatcher: NotificationDispatcher
    retry: RetryScheduler
    deferred: DeferredSendScheduler
    sweeper: SweepScheduler
    service: NotificationService
    template_service: TemplateService
    engine: AsyncEngine | None = None
    started: bool = field(default=False, init=False)

    @classmethod
    def build(
        cls,
        settings: Settings,
        *,
        registry: ChannelRegistry | None = None,
        rng: random.Random | None = None,
    ) -> ServiceContainer:
        """Build the container for ``settings``.

        Args:
            settings: Unified settings
            registry: Channel senders to use instead of ``NOTIFY_SENDER_MODE``
            rng: Jitter source for the retry scheduler

        Returns:
            A wired, not yet started, container
        """
        notify = settings.notifications
        engine: AsyncEngine | None = None
        store: NotificationStore
        templates: TemplateStore
        if notify.store_backend == "database":
            engine = build_engine(settings.db)
            session_factory = build_session_factory(engine)
            store = SqlAlchemyNotificationStore(session_factory)
            templates = SqlAlchemyTemplateStore(session_factory)
        else:
            store = InMemoryNotificationStore()
            templates = InMemoryTemplateStore()

        sender_mode = notify.sender_mode
        if registry is None:
            registry = build_registry(notify)
        else:
            sender_mode = "custom"
        renderer = TemplateRenderer(sms_overflow=notify.sms_overflow)
        locks = RecordLocks()

        dispatcher = NotificationDispatcher(store, templates, registry, renderer, locks, notify)
        retry = RetryScheduler(store, dispatcher, locks, notify, rng=rng)
        deferred = DeferredSendScheduler(store, dispatcher, locks, notify)
        dispatcher.on_transient = retry.schedule_retry
        dispatcher.on_deferred = deferred.defer

        sweeper = SweepScheduler(retry, deferred, interval_seconds=notify.sweep_interval_seconds)
        service = NotificationService(
            store,
            dispatcher,
            retry,
            deferred,
            BulkBatchProcessor(dispatcher, templates, notify),
            AnalyticsAggregator(store, notify),
            sweeper,
            locks,
            purge_default_days=notify.purge_default_days,
        )
        template_service = TemplateService(
            templates,
            renderer,
            registry,
            send_timeout_seconds=notify.send_timeout_seconds,
        )

        logger.info(
            "Notification container built",
            extra={
                "store_backend": notify.store_backend,
                "sender_mode": sender_mode,
                "channels": [channel.value for channel in registry],
            },
        )
        return cls(
            settings=settings,
            store=store,
            templates=templates,
            registry=registry,
            dispatcher=dispatcher,
            retry=retry,
            deferred=deferred,
            sweeper=sweeper,
            service=service,
            template_service=template_service,
            engine=engine,
        )

    async def startup(self, *, run_scheduler: bool | None = None) -> None:
        """Create tables (database backend) and start the sweep scheduler."""
        if self.engine is not None:
            await init_database(self.engine, create_tables=self.settings.db.create_tables)
        if run_scheduler is None:
            run_scheduler = self.settings.app.enable_scheduler
        if run_scheduler:
            self.sweeper.start()
        self.started = True

    async def shutdown(self) -> None:
        """Stop background work, then release the database engine."""
        self.sweeper.stop()
        await self.retry.shutdown()
        await self.deferred.shutdown()
        if self.engine is not None:
            await close_database(self.engine)
        self.started = False
        logger.info("Notification container shut down")


__all__ = ["ServiceContainer"]
