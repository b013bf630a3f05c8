"""Process host for scheduled PracticePanther sync."""

from __future__ import annotations

import logging
import os

from fastapi import FastAPI

from exchange_sync.core.config import settings
from exchange_sync.services import sync_orchestrator
from exchange_sync.services.sync_scheduler import SyncScheduler

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger(__name__)

app = FastAPI()
scheduler = SyncScheduler()


@app.get("/health")
def health() -> dict:
    return {
        "status": "ok",
        "scheduler": {
            "running": scheduler.running,
            "jobs": scheduler.get_jobs_status(),
        },
    }


@app.on_event("startup")
async def _startup() -> None:
    if settings.SYNC_SCHEDULER_ENABLED:
        scheduler.start()
    else:
        logger.info("Sync scheduler disabled (SYNC_SCHEDULER_ENABLED=false)")


@app.on_event("shutdown")
async def _shutdown() -> None:
    scheduler.shutdown()
    await sync_orchestrator.wait_for_background_runs()


def main() -> None:
    import uvicorn

    port = int(os.getenv("PORT", "8080"))
    host = os.getenv("HOST", "0.0.0.0")
    # nosec B104 - container platforms require binding to all interfaces.
    uvicorn.run("exchange_sync.worker_service:app", host=host, port=port)


if __name__ == "__main__":
    main()
