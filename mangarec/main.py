import logging

from fastapi import FastAPI

from mangarec.config import get_settings
from mangarec.db import init_db
from mangarec.routers.preferences import router as preferences_router
from mangarec.routers.recommendations import router as recommendations_router
from mangarec.tasks.scheduler import recommendation_scheduler

logging.basicConfig(
    level=get_settings().log_level.upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)

app = FastAPI(title="MangaRec", version="0.1.0")


@app.on_event("startup")
def on_startup() -> None:
    init_db()
    if get_settings().scheduler_enabled:
        recommendation_scheduler.start()


@app.on_event("shutdown")
def on_shutdown() -> None:
    recommendation_scheduler.stop()


@app.get("/health")
def health() -> dict:
    return {"status": "ok", "scheduler_running": recommendation_scheduler.running}


app.include_router(recommendations_router, prefix="/api")
app.include_router(preferences_router, prefix="/api")
