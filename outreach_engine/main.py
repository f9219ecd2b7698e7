import asyncio
import os

from fastapi import Depends, FastAPI
from fastapi.middleware.cors import CORSMiddleware

from outreach_engine.config import settings
from outreach_engine.database import SessionLocal, init_db
from outreach_engine.logging_config import get_logger, setup_logging
from outreach_engine.routers import admin, followups, message, outbound, outreach
from outreach_engine.services.circuit_breaker import get_circuit_breaker
from outreach_engine.services.dispatch_service import dispatch_pending
from outreach_engine.services.followup_service import queue_followups
from outreach_engine.services.settings_service import SettingsProvider, get_settings_provider
from outreach_engine.services.transport import get_transport

setup_logging(settings.log_level, settings.log_format)

app = FastAPI(
    title="Outreach Engine",
    description="Decision core for conversational outreach",
    version="0.1.0",
)

cors_env = os.environ.get("CORS_ALLOW_ORIGINS", "*")
cors_origins = [origin.strip() for origin in cors_env.split(",") if origin.strip()]
if not cors_origins:
    cors_origins = ["*"]

app.add_middleware(
    CORSMiddleware,
    allow_origins=cors_origins,
    allow_credentials=False,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(message.router)
app.include_router(outbound.router)
app.include_router(followups.router)
app.include_router(outreach.router)
app.include_router(admin.router)

logger = get_logger("main")
worker_logger = get_logger("followup_worker")
_followup_worker_task: asyncio.Task | None = None


def _is_followup_worker_enabled() -> bool:
    if os.environ.get("PYTEST_CURRENT_TEST"):
        return False
    return settings.followup_worker_enabled


def _run_followup_cycle() -> dict:
    """One sweep: queue due follow-ups, then dispatch the queue if a transport exists."""
    settings_provider = get_settings_provider()
    db = SessionLocal()
    try:
        queued = queue_followups(db, settings_provider)
        db.commit()
        transport = get_transport()
        dispatched = None
        if transport is not None:
            dispatched = dispatch_pending(db, transport, get_circuit_breaker(), settings_provider)
        return {"queued": queued["queued"], "dispatched": dispatched}
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()


async def _followup_worker_loop() -> None:
    while True:
        try:
            await asyncio.sleep(max(settings.followup_worker_interval_seconds, 1.0))
            results = await asyncio.to_thread(_run_followup_cycle)
            if results["queued"] or results["dispatched"]:
                worker_logger.info("Follow-up worker processed", extra={"context": results})
        except asyncio.CancelledError:
            break
        except Exception as exc:
            worker_logger.error(
                "Follow-up worker loop failed",
                extra={"context": {"error": str(exc)}},
            )


@app.on_event("startup")
async def prepare_storage() -> None:
    try:
        init_db()
        get_settings_provider().seed_defaults()
    except Exception as exc:
        logger.error("Storage initialisation failed", extra={"context": {"error": str(exc)}})
        raise


@app.on_event("startup")
async def start_followup_worker() -> None:
    global _followup_worker_task
    if not _is_followup_worker_enabled():
        return
    if _followup_worker_task is None or _followup_worker_task.done():
        _followup_worker_task = asyncio.create_task(_followup_worker_loop())
        worker_logger.info("Follow-up worker started")


@app.on_event("shutdown")
async def stop_followup_worker() -> None:
    global _followup_worker_task
    if _followup_worker_task is None:
        return
    _followup_worker_task.cancel()
    try:
        await _followup_worker_task
    except asyncio.CancelledError:
        pass
    _followup_worker_task = None


@app.get("/health")
async def health(settings_provider: SettingsProvider = Depends(get_settings_provider)):
    return {"status": "ok", "global_send_enabled": settings_provider.global_send_enabled()}
