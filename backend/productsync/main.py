import logging
from contextlib import asynccontextmanager
from datetime import datetime, timedelta, timezone

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from productsync.config import settings
from productsync.control_database import AsyncSessionLocal, init_control_db
from productsync.logging_config import configure_logging
from productsync.routers.auth import router as auth_router
from productsync.routers.sync import router as sync_router, scheduled_sync_chunk
from productsync.routers.sync_settings import router as sync_settings_router
from productsync.seed import seed_admin
from productsync.services.sync_engine import build_engine

configure_logging()
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    await init_control_db()
    async with AsyncSessionLocal() as session:
        await seed_admin(session)

    engine = build_engine(settings, AsyncSessionLocal)
    await engine.registry.init_schemas()
    app.state.sync_engine = engine

    scheduler = AsyncIOScheduler()
    if settings.scheduler_enabled:
        scheduler.add_job(
            scheduled_sync_chunk,
            "interval",
            minutes=settings.sync_interval_minutes,
            args=[engine],
            max_instances=1,
            coalesce=True,
            next_run_time=datetime.now(timezone.utc) + timedelta(seconds=30),
        )
        scheduler.start()
        logger.info("Sync scheduler started: one chunk every %d minute(s)", settings.sync_interval_minutes)

    yield

    if scheduler.running:
        scheduler.shutdown(wait=False)
    await engine.close()


app = FastAPI(title="Product Sync API", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(auth_router, prefix="/api")
app.include_router(sync_router, prefix="/api")
app.include_router(sync_settings_router, prefix="/api")


@app.get("/health")
async def health() -> dict:
    return {"status": "ok"}
