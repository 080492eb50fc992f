import logging
import time

from fastapi import FastAPI, Request

from api.metrics import REQUEST_LATENCY_SECONDS, REQUESTS_TOTAL
from api.routers import ingest, ops, tasks
from api.workers import start_pipeline, stop_pipeline

# Logging configuration
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(message)s"
)
logger = logging.getLogger(__name__)

app = FastAPI(title="dayplan")
app.include_router(ops.router)
app.include_router(tasks.router)
app.include_router(ingest.router)


@app.middleware("http")
async def count_requests(request: Request, call_next):
    start = time.perf_counter()
    response = await call_next(request)
    route = request.scope.get("route")
    endpoint = getattr(route, "path", request.url.path)
    REQUESTS_TOTAL.labels(endpoint=endpoint, status=str(response.status_code)).inc()
    REQUEST_LATENCY_SECONDS.labels(endpoint=endpoint).observe(time.perf_counter() - start)
    return response


@app.on_event("startup")
async def startup() -> None:
    await start_pipeline()
    logger.info("Day planner started")


@app.on_event("shutdown")
async def shutdown() -> None:
    await stop_pipeline()
    logger.info("Day planner stopped")
