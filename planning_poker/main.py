import logging

import redis
from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse

from planning_poker.api.routes import router
from planning_poker.config import get_settings

app = FastAPI(title="planning-poker", version="0.1.0")
app.include_router(router)
# Configure logging
logging.basicConfig(level=get_settings().log_level)
logger = logging.getLogger(__name__)


@app.exception_handler(redis.RedisError)
async def _redis_error_handler(request: Request, exc: redis.RedisError) -> JSONResponse:
    # No retry here: clients poll/reconnect on their own.
    logger.error("Store error on %s %s", request.method, request.url.path, exc_info=exc)
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"detail": "Internal server error"},
    )


@app.get("/info")
async def info() -> dict[str, str]:
    return {"name": "planning-poker", "version": "0.1.0"}
