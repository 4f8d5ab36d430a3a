import asyncio
import logging
from contextlib import asynccontextmanager, suppress

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine

from backoffice.api.routes import audit_logs, ping, tickets
from backoffice.audit.logger import AuditLogger
from backoffice.audit.repository import AuditLogRepository
from backoffice.audit.service import AuditLogService
from backoffice.core.clock import SystemClock
from backoffice.core.config import Settings, get_settings
from backoffice.core.errors import STATUS_CODES, ServiceError
from backoffice.core.logging import configure_logging, init_tracer, shutdown_tracer
from backoffice.realtime.hub import TicketHub
from backoffice.security.users import UserDirectory
from backoffice.services.postgres import PostgresConnectionTester
from backoffice.tickets.repository import TicketRepository
from backoffice.tickets.service import TicketService
from backoffice.tickets.state import TicketStateMachine

logger = logging.getLogger(__name__)


def _to_asyncpg_dsn(dsn: str) -> str:
    """Ensure the SQLAlchemy DSN uses the asyncpg driver."""

    if dsn.startswith("postgresql+asyncpg://"):
        return dsn
    if dsn.startswith("postgresql://"):
        return "postgresql+asyncpg://" + dsn[len("postgresql://") :]
    return dsn


async def service_error_handler(request: Request, exc: ServiceError) -> JSONResponse:
    return JSONResponse(status_code=STATUS_CODES[exc.kind], content={"detail": exc.message})


async def run_sla_sweep(service: TicketService, interval: float) -> None:
    """Refresh SLA statuses every ``interval`` seconds until cancelled."""

    while True:
        await asyncio.sleep(interval)
        try:
            await service.refresh_sla_statuses()
        except Exception:
            logger.exception("SLA sweep failed")


def build_services(app: FastAPI, settings: Settings, session_factory, engine=None) -> TicketService:
    """Wire repositories and services onto ``app.state``."""

    clock = SystemClock()
    hub = TicketHub(queue_size=settings.realtime_queue_size)
    ticket_service = TicketService(
        TicketRepository(session_factory, engine=engine),
        state_machine=TicketStateMachine(warning_ratio=settings.sla_warning_ratio),
        clock=clock,
        audit_logger=AuditLogger(clock=clock),
        publisher=hub,
        default_page_size=settings.ticket_default_page_size,
        max_page_size=settings.ticket_max_page_size,
    )
    app.state.ticket_hub = hub
    app.state.ticket_service = ticket_service
    app.state.audit_log_service = AuditLogService(
        AuditLogRepository(session_factory),
        default_page_size=settings.audit_default_page_size,
        max_page_size=settings.audit_max_page_size,
    )
    app.state.user_directory = UserDirectory(session_factory)
    return ticket_service


@asynccontextmanager
async def lifespan(app: FastAPI):  # pragma: no cover - executed by framework
    settings = get_settings()
    app.state.logger = configure_logging(settings)
    tracer_provider = init_tracer(settings)
    app.state.tracer_provider = tracer_provider

    postgres_tester = PostgresConnectionTester(dsn=settings.postgres_dsn)
    app.state.postgres_tester = postgres_tester

    db_engine = create_async_engine(_to_asyncpg_dsn(settings.postgres_dsn), future=True)
    session_factory = async_sessionmaker(db_engine, expire_on_commit=False)
    app.state.db_engine = db_engine
    app.state.db_session_factory = session_factory

    sweep_task: asyncio.Task | None = None
    ticket_service: TicketService | None = None
    try:
        ticket_service = build_services(app, settings, session_factory, engine=db_engine)
        await ticket_service.ensure_schema()
        if settings.sla_sweep_interval_seconds > 0:
            sweep_task = asyncio.create_task(
                run_sla_sweep(ticket_service, settings.sla_sweep_interval_seconds)
            )
        yield
    finally:
        if sweep_task is not None:
            sweep_task.cancel()
            with suppress(asyncio.CancelledError):
                await sweep_task
        if ticket_service is not None:
            await ticket_service.drain()
        await db_engine.dispose()
        await postgres_tester.close()
        shutdown_tracer(tracer_provider)


def create_app() -> FastAPI:
    settings = get_settings()
    app = FastAPI(title=settings.app_name, lifespan=lifespan)
    app.add_exception_handler(ServiceError, service_error_handler)
    app.include_router(ping.router)
    app.include_router(audit_logs.router)
    app.include_router(tickets.router)
    return app


app = create_app()
