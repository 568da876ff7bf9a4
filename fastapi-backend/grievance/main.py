from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.trustedhost import TrustedHostMiddleware
from fastapi.responses import JSONResponse, Response
from fastapi.staticfiles import StaticFiles
import logging

from .config import get_settings
from .database import init_db
from .errors import GrievanceError
from .observability import (
    setup_logging,
    init_sentry,
    setup_metrics_middleware,
    metrics_endpoint,
    get_health_check,
)
from .routes import admin as admin_routes
from .routes import auth as auth_routes
from .routes import complaints as complaint_routes
from .routes import webhooks as webhook_routes
from .storage import DEFAULT_LOCAL_STORAGE_PATH

settings = get_settings()

# Setup observability
setup_logging()
init_sentry(settings)

logger = logging.getLogger("grievance")

app = FastAPI(title="Hostel Grievance Portal API")

setup_metrics_middleware(app)

app.add_middleware(
    CORSMiddleware,
    allow_origins=list(settings.cors_origins),
    # Student sessions ride on a cookie, so credentials must be allowed.
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
app.add_middleware(TrustedHostMiddleware, allowed_hosts=list(settings.allowed_hosts))


@app.exception_handler(GrievanceError)
async def grievance_error_handler(request: Request, exc: GrievanceError):
    if exc.status_code >= 500:
        logger.error("%s on %s %s: %s", type(exc).__name__, request.method, request.url.path, exc.message)
    return JSONResponse(
        status_code=exc.status_code,
        content={"message": exc.message, "error": type(exc).__name__},
    )


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    errors = exc.errors()
    if errors:
        first = errors[0]
        field = ".".join(str(part) for part in first.get("loc", ()) if part not in ("body", "query", "path"))
        message = f"{field}: {first.get('msg')}" if field else str(first.get("msg"))
    else:
        message = "Invalid request"
    return JSONResponse(status_code=400, content={"message": message, "error": "ValidationError"})


# Served at the root and under /api, which is where the web frontend calls.
for prefix in ("", "/api"):
    app.include_router(auth_routes.router, prefix=prefix)
    app.include_router(complaint_routes.router, prefix=prefix)
    app.include_router(admin_routes.router, prefix=prefix)
    app.include_router(webhook_routes.router, prefix=prefix)

# Locally stored evidence (STORAGE_PROVIDER=local or S3 fallback)
app.mount(
    "/storage",
    StaticFiles(directory=str(DEFAULT_LOCAL_STORAGE_PATH), check_dir=False),
    name="storage",
)


@app.on_event("startup")
async def on_startup():
    logger.info("Starting Hostel Grievance Portal (env=%s)", settings.environment)
    await init_db()


@app.get("/health")
def health():
    """Health check endpoint."""
    return get_health_check(settings.storage_provider)


@app.get("/metrics")
def metrics(request: Request) -> Response:
    return metrics_endpoint(request)
