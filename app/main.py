from contextlib import asynccontextmanager

from fastapi import FastAPI
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine

from app.api.routes import changes, metrics, ping, tickets
from app.core.config import Settings, get_settings
from app.core.logging import configure_logging, init_tracer, shutdown_tracer
from app.middleware import RBACMiddleware
from app.tickets.feed import ChangeFeedSubscriber
from app.tickets.reconstruction import StateReconstructor
from app.tickets.repository import TicketRepository
from app.tickets.service import TicketLifecycleService


def to_asyncpg_dsn(dsn: str) -> str:
    """Ensure the SQLAlchemy DSN uses the asyncpg driver."""

    if dsn.startswith("postgresql+asyncpg://"):
        return dsn
    if dsn.startswith("postgresql://"):
        return "postgresql+asyncpg://" + dsn[len("postgresql://") :]
    return dsn


def build_lifecycle_service(repository: TicketRepository, settings: Settings) -> TicketLifecycleService:
    return TicketLifecycleService(
        repository,
        reconstructor=StateReconstructor(source=settings.metadata_source),
        write_retries=settings.metadata_write_retries,
    )


@asynccontextmanager
async def lifespan(app: FastAPI):  # pragma: no cover - executed by framework
    settings = get_settings()
    logger = configure_logging(settings)
    tracer_provider = init_tracer(settings)

    app.state.logger = logger
    app.state.tracer_provider = tracer_provider
    app.state.lifecycle_service = None
    app.state.change_feed = None
    db_engine = None
    change_feed = None
    try:
        db_engine = create_async_engine(to_asyncpg_dsn(settings.postgres_dsn), future=True)
        session_factory = async_sessionmaker(db_engine, expire_on_commit=False)
        repository = TicketRepository(session_factory, engine=db_engine)
        await repository.ensure_schema()
        service = build_lifecycle_service(repository, settings)
        app.state.lifecycle_service = service
        if settings.change_feed_enabled:
            change_feed = ChangeFeedSubscriber(
                service,
                debounce_seconds=settings.change_feed_debounce_seconds,
                max_queue_size=settings.change_feed_queue_size,
            )
            await change_feed.start()
            app.state.change_feed = change_feed
    except Exception:  # pragma: no cover - service initialisation best effort
        logger.exception("Ticket lifecycle service could not be initialised")
        app.state.lifecycle_service = None
        if db_engine is not None:
            await db_engine.dispose()
            db_engine = None
    try:
        yield
    finally:
        if change_feed is not None:
            await change_feed.stop()
        if db_engine is not None:
            await db_engine.dispose()
        shutdown_tracer(tracer_provider)


def create_app() -> FastAPI:
    settings = get_settings()
    app = FastAPI(title=settings.app_name, lifespan=lifespan)
    app.add_middleware(RBACMiddleware)
    app.include_router(ping.router)
    app.include_router(tickets.router)
    app.include_router(changes.router)
    app.include_router(metrics.router)
    return app


app = create_app()
