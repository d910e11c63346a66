"""
FORGE - FastAPI ASGI entry point
"""
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from forge.api.v1.router import api_router
from forge.config import get_settings
from forge.core.redis import close_redis
from forge.core.responses import error_response
from forge.exceptions import ForgeError, InvariantViolationError
from forge.logging_config import setup_logging

settings = get_settings()
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan: logging on startup, Redis pool closed on shutdown."""
    setup_logging(settings.LOG_LEVEL)
    logger.info("FORGE starting (%s)", settings.ENVIRONMENT)
    yield
    await close_redis()


app = FastAPI(
    title="FORGE",
    description="Manufacturing fulfillment engine: BOMs, assembly orders, goods receipts",
    version="0.1.0",
    docs_url="/api/v1/docs",
    redoc_url="/api/v1/redoc",
    openapi_url="/api/v1/openapi.json",
    lifespan=lifespan,
)
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(ForgeError)
async def forge_error_handler(request: Request, exc: ForgeError) -> JSONResponse:
    body = exc.to_dict()
    if getattr(exc, "current_status", None):
        body["current_status"] = exc.current_status
    if isinstance(exc, InvariantViolationError):
        logger.error("%s %s: %s", request.method, request.url.path, exc.message)
    else:
        logger.warning("%s %s rejected (%s): %s", request.method, request.url.path, exc.code, exc.message)
    return JSONResponse(status_code=exc.http_status, content=error_response(**body))


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    field_errors = [
        {"field": ".".join(str(part) for part in err["loc"][1:]) or str(err["loc"][0]), "message": err["msg"]}
        for err in exc.errors()
    ]
    return JSONResponse(
        status_code=422,
        content=error_response("validation_error", "Request validation failed", field_errors=field_errors),
    )


app.include_router(api_router, prefix="/api/v1")


@app.get("/health")
async def health():
    """Health check for load balancers and Docker."""
    return {"status": "ok", "service": "forge"}
