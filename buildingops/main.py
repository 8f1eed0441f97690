from contextlib import asynccontextmanager

import asyncpg
from fastapi import FastAPI

from buildingops.api.routes import comments, ping, quotes, suppliers, tickets
from buildingops.core.config import Settings, get_settings
from buildingops.core.logging import configure_logging, init_tracer, shutdown_tracer
from buildingops.tickets.collaborators import InMemoryScheduler, InMemorySupplierDirectory, LoggingNotificationSink
from buildingops.tickets.models import Supplier
from buildingops.tickets.permissions import StaticBuildingMembershipResolver
from buildingops.tickets.repository import InMemoryTicketStore, PostgresTicketStore, TicketStore
from buildingops.tickets.service import TicketService


async def _build_store(settings: Settings) -> tuple[TicketStore, asyncpg.Pool | None]:
    if settings.storage_backend == "postgres":
        pool = await asyncpg.create_pool(
            dsn=settings.postgres_dsn,
            min_size=settings.postgres_pool_min_size,
            max_size=settings.postgres_pool_max_size,
        )
        return PostgresTicketStore(pool), pool
    return InMemoryTicketStore(), None


@asynccontextmanager
async def lifespan(app: FastAPI):  # pragma: no cover - executed by framework
    settings = get_settings()
    logger = configure_logging(settings)
    tracer_provider = init_tracer(settings)

    store, pool = await _build_store(settings)
    directory = InMemorySupplierDirectory(Supplier(**item) for item in settings.suppliers)
    service = TicketService(
        store,
        suppliers=directory,
        scheduler=InMemoryScheduler(),
        notifier=LoggingNotificationSink(),
        memberships=StaticBuildingMembershipResolver(
            settings.building_memberships,
            default_manager_buildings=settings.default_manager_buildings,
        ),
        default_currency=settings.default_currency,
        schedule_window_minutes=settings.schedule_window_minutes,
    )
    await service.ensure_schema()

    app.state.logger = logger
    app.state.tracer_provider = tracer_provider
    app.state.supplier_directory = directory
    app.state.ticket_service = service
    logger.info("Started %s with %s storage", settings.app_name, settings.storage_backend)
    try:
        yield
    finally:
        if pool is not None:
            await pool.close()
        shutdown_tracer(tracer_provider)


def create_app() -> FastAPI:
    settings = get_settings()
    app = FastAPI(title=settings.app_name, lifespan=lifespan)
    app.include_router(ping.router)
    app.include_router(tickets.router)
    app.include_router(quotes.router)
    app.include_router(comments.router)
    app.include_router(suppliers.router)
    return app


app = create_app()
