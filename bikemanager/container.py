"""
Service wiring.

build_services() creates every collaborator once from Settings; the FastAPI
lifespan (or a worker) owns the resulting container and calls start()/stop().
Without DATABASE_URL the stores are in-memory, without REDIS_URL the rate
windows are in-memory, and without RESEND_API_KEY emails are only logged.
"""

from dataclasses import dataclass
from datetime import timedelta

from bikemanager.config import Settings
from bikemanager.db.pool import DatabasePoolManager
from bikemanager.features.maintenance_reminders.jobs import MaintenanceReminderCron
from bikemanager.features.maintenance_reminders.repository import (
    DeliveryLogStore,
    InMemoryDeliveryLog,
    InMemoryMaintenanceSource,
    MaintenanceSource,
    PostgresDeliveryLog,
    PostgresMaintenanceSource,
)
from bikemanager.features.maintenance_reminders.services import (
    DeliveryQueue,
    ReminderScanner,
    make_reminder_payload_builder,
)
from bikemanager.features.password_reset.repository import (
    InMemoryResetTokenStore,
    InMemoryUserDirectory,
    PostgresResetTokenStore,
    PostgresUserDirectory,
    ResetTokenStore,
    UserDirectory,
)
from bikemanager.features.password_reset.services import PasswordResetService, TokenIssuer
from bikemanager.infrastructure.clock import Clock, SystemClock
from bikemanager.infrastructure.observability.logging import get_logger
from bikemanager.services.email_sender import EmailSender, LogOnlyEmailSender, ResendEmailSender
from bikemanager.services.rate_window import InMemoryRateWindow, RateWindow, RedisRateWindow
from bikemanager.services.redis_client import FastRedisClient

logger = get_logger(__name__)


@dataclass
class ServiceContainer:
    settings: Settings
    clock: Clock
    email_sender: EmailSender
    delivery_log: DeliveryLogStore
    maintenance_source: MaintenanceSource
    delivery_queue: DeliveryQueue
    reminder_scanner: ReminderScanner
    reminder_cron: MaintenanceReminderCron
    token_store: ResetTokenStore
    user_directory: UserDirectory
    token_issuer: TokenIssuer
    password_reset_service: PasswordResetService
    db_pool: DatabasePoolManager | None = None
    redis_client: FastRedisClient | None = None
    started: bool = False

    async def start(self, run_background: bool = True) -> None:
        """Open connections, create tables and start the queue and cron tasks."""
        if self.db_pool is not None:
            await self.db_pool.initialize()
            for store in (self.delivery_log, self.token_store):
                ensure_schema = getattr(store, "ensure_schema", None)
                if ensure_schema is not None:
                    await ensure_schema()

        if self.redis_client is not None:
            await self.redis_client.initialize()

        if run_background:
            self.delivery_queue.start()
            self.reminder_cron.start()

        self.started = True
        logger.info(
            "Services started",
            database="postgres" if self.db_pool else "memory",
            rate_window="redis" if self.redis_client else "memory",
            email_sender=type(self.email_sender).__name__,
            background=run_background,
        )

    async def stop(self) -> None:
        """Stop in reverse order: cron, queue, sender, Redis, database."""
        await self.reminder_cron.stop()
        await self.delivery_queue.close(timeout=self.settings.DELIVERY_SHUTDOWN_TIMEOUT_SECONDS)

        close_sender = getattr(self.email_sender, "close", None)
        if close_sender is not None:
            await close_sender()

        if self.redis_client is not None:
            await self.redis_client.close()
        if self.db_pool is not None:
            await self.db_pool.close()

        self.started = False
        logger.info("Services stopped")


def _build_rate_window(
    settings: Settings,
    redis_client: FastRedisClient | None,
    limit: int,
    window: timedelta,
    namespace: str,
) -> RateWindow:
    if redis_client is None:
        return InMemoryRateWindow(limit, window)
    return RedisRateWindow(
        redis_client,
        limit,
        window,
        namespace=namespace,
        fail_open=settings.RATE_WINDOW_FAIL_OPEN,
    )


def _build_email_sender(settings: Settings) -> EmailSender:
    if not settings.RESEND_API_KEY:
        logger.warning("RESEND_API_KEY not configured, emails will only be logged")
        return LogOnlyEmailSender()
    return ResendEmailSender(
        api_key=settings.RESEND_API_KEY,
        from_email=settings.RESEND_FROM_EMAIL,
        from_name=settings.RESEND_FROM_NAME,
        api_url=settings.RESEND_API_URL,
        timeout=settings.EMAIL_SEND_TIMEOUT_SECONDS,
    )


def build_services(
    settings: Settings,
    *,
    clock: Clock | None = None,
    email_sender: EmailSender | None = None,
    maintenance_source: MaintenanceSource | None = None,
    user_directory: UserDirectory | None = None,
) -> ServiceContainer:
    """Create the service graph. Nothing is opened until start()."""
    clock = clock or SystemClock()
    email_sender = email_sender or _build_email_sender(settings)

    db_pool = None
    if settings.DATABASE_URL:
        db_pool = DatabasePoolManager(settings.DATABASE_URL, settings.get_db_pool_config())
        delivery_log = PostgresDeliveryLog(db_pool)
        token_store = PostgresResetTokenStore(db_pool)
        maintenance_source = maintenance_source or PostgresMaintenanceSource(db_pool)
        user_directory = user_directory or PostgresUserDirectory(db_pool)
    else:
        delivery_log = InMemoryDeliveryLog()
        token_store = InMemoryResetTokenStore()
        maintenance_source = maintenance_source or InMemoryMaintenanceSource()
        user_directory = user_directory or InMemoryUserDirectory()

    redis_client = FastRedisClient(settings.REDIS_URL) if settings.REDIS_URL else None

    delivery_config = settings.get_delivery_config()
    delivery_queue = DeliveryQueue(email_sender, delivery_log, clock, **delivery_config)

    reminder_scanner = ReminderScanner(
        maintenance_source,
        delivery_log,
        delivery_queue,
        clock,
        make_reminder_payload_builder(settings.FRONTEND_URL),
        max_attempts=delivery_config["max_attempts"],
        redelivery_window=_build_rate_window(
            settings,
            redis_client,
            settings.REMINDER_REDELIVERY_LIMIT,
            timedelta(seconds=settings.REMINDER_REDELIVERY_WINDOW_SECONDS),
            namespace="reminder_redelivery",
        ),
    )

    reminder_cron = MaintenanceReminderCron(
        reminder_scanner,
        clock,
        cron_expression=settings.MAINTENANCE_REMINDER_CRON,
        timezone=settings.REMINDER_TIMEZONE,
        enabled=settings.MAINTENANCE_REMINDER_ENABLED,
        run_on_startup=settings.scan_on_startup(),
    )

    token_issuer = TokenIssuer(
        token_store,
        _build_rate_window(
            settings,
            redis_client,
            settings.PASSWORD_RESET_RATE_LIMIT,
            timedelta(seconds=settings.PASSWORD_RESET_WINDOW_SECONDS),
            namespace="password_reset_rate",
        ),
        clock,
        ttl=timedelta(seconds=settings.PASSWORD_RESET_TOKEN_EXPIRY),
    )

    password_reset_service = PasswordResetService(
        user_directory,
        token_issuer,
        email_sender,
        settings.password_reset_url,
        min_password_length=settings.PASSWORD_MIN_LENGTH,
    )

    return ServiceContainer(
        settings=settings,
        clock=clock,
        email_sender=email_sender,
        delivery_log=delivery_log,
        maintenance_source=maintenance_source,
        delivery_queue=delivery_queue,
        reminder_scanner=reminder_scanner,
        reminder_cron=reminder_cron,
        token_store=token_store,
        user_directory=user_directory,
        token_issuer=token_issuer,
        password_reset_service=password_reset_service,
        db_pool=db_pool,
        redis_client=redis_client,
    )
