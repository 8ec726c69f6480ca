from __future__ import annotations
# File: apps/demand/main.py
import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from .router import router as demand_router
from .scheduler import SchedulerWrapper, init_demand_scheduler
from .settings import settings

logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
logger = logging.getLogger(__name__)


app = FastAPI(title="FreightPower Demand API")

app.add_middleware(
    CORSMiddleware,
    allow_origins=[settings.FRONTEND_BASE_URL, "http://localhost:5173", "http://127.0.0.1:5173"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

scheduler = SchedulerWrapper()


@app.get("/health")
async def health():
    return {"status": "ok", "scheduler": scheduler.started}


app.include_router(demand_router)


@app.on_event("startup")
def _start_scheduler():
    if not settings.ENABLE_DEMAND_SCHEDULER:
        logger.info("Demand scheduler disabled")
        return
    scheduler.start()
    init_demand_scheduler(scheduler)


@app.on_event("shutdown")
def _stop_scheduler():
    scheduler.shutdown()
