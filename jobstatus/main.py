import logging
import time

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from redis.exceptions import RedisError

from .api import status as status_api
from .metrics import error_count, metrics_response, request_latency_seconds
from .redis_helper import redis_connection

logger = logging.getLogger(__name__)

app = FastAPI(title="Job Status Service")

app.include_router(status_api.router)


@app.middleware("http")
async def metrics_middleware(request: Request, call_next):
    start = time.time()
    try:
        response = await call_next(request)
        return response
    finally:
        request_latency_seconds.observe(time.time() - start)


@app.exception_handler(RedisError)
async def redis_error_handler(request: Request, exc: RedisError):
    error_count.inc()
    logger.error("store error on %s %s: %s", request.method, request.url.path, exc)
    return JSONResponse(status_code=503, content={"detail": "status store unavailable"})


@app.get("/healthz")
async def healthz():
    return {"status": "ok"}


@app.get("/readyz")
async def readyz():
    async with redis_connection() as conn:
        ready = bool(await conn.ping())
    return {"ready": ready}


@app.get("/metrics")
async def metrics():
    return metrics_response()
