"""Main FastAPI application"""
import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware

from streamdash.api.responses import error_response, status_code_for, streamdash_error_response, success_response
from streamdash.core.config import settings
from streamdash.core.exceptions import StreamDashError
from streamdash.core.influx import influx_client
from streamdash.core.logging import setup_logging
from streamdash.core.redis import redis_client

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan events"""
    # Startup
    setup_logging()
    await influx_client.connect()
    await redis_client.connect()
    logger.info(f"{settings.APP_NAME} started ({settings.APP_ENV})")
    yield
    # Shutdown
    await redis_client.disconnect()
    await influx_client.disconnect()


app = FastAPI(
    title=settings.APP_NAME,
    debug=settings.DEBUG,
    lifespan=lifespan,
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(StreamDashError)
async def streamdash_error_handler(request: Request, exc: StreamDashError):
    code = status_code_for(exc)
    if code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc.message}")
    else:
        logger.info(f"{request.method} {request.url.path} rejected: {exc.message}")
    return streamdash_error_response(exc)


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    details = [{"loc": list(e.get("loc", ())), "msg": e.get("msg")} for e in exc.errors()]
    return error_response("Input validation failed", details, status.HTTP_400_BAD_REQUEST)


# Import and include routers
from streamdash.api.v1 import bandwidth, data  # noqa: E402

app.include_router(bandwidth.router, prefix="/api", tags=["bandwidth"])
app.include_router(data.router, prefix="/api", tags=["data"])


@app.get("/")
async def root():
    """Root endpoint"""
    return {
        "message": f"{settings.APP_NAME} API",
        "version": "0.1.0",
        "docs": "/docs",
    }


@app.get("/health")
async def health_check():
    """Liveness endpoint"""
    return {"status": "ok"}


@app.get("/api/health")
async def dependency_health():
    """Reachability of InfluxDB and the optional Redis cache"""
    checks = {
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "environment": settings.APP_ENV,
        "influxdb": {
            "url": settings.INFLUX_URL,
            "org": settings.INFLUX_ORG,
            "bucket": settings.INFLUX_BUCKET,
            "tokenExists": bool(settings.INFLUX_TOKEN),
        },
        "status": {"influxdb": "checking", "redis": "disabled"},
    }

    try:
        checks["status"]["influxdb"] = "healthy" if await influx_client.ping() else "error"
    except Exception as e:
        logger.error(f"InfluxDB health check failed: {e}")
        checks["status"]["influxdb"] = "error"

    if redis_client.connected:
        try:
            checks["status"]["redis"] = "healthy" if await redis_client.ping() else "error"
        except Exception as e:
            logger.error(f"Redis health check failed: {e}")
            checks["status"]["redis"] = "error"

    healthy = checks["status"]["influxdb"] == "healthy" and checks["status"]["redis"] != "error"
    return success_response({"healthy": healthy, **checks})


def run():
    """Console entry point"""
    import uvicorn

    uvicorn.run("streamdash.main:app", host=settings.HOST, port=settings.PORT, reload=settings.DEBUG)
