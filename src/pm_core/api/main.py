"""PM Core FastAPI application."""
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from pm_core.config import get_settings
from pm_core.database import SessionLocal, engine
from pm_core.metrics import BudgetValidationError
from pm_core.models import Base
from pm_core.notifications import NotificationDispatcher
from pm_core.permissions import PermissionDeniedError
from pm_core.storage import BlobStore

from .routers import auth, comments, files, notifications, projects, reports, risks, tasks, users

settings = get_settings()

# Configure logging
logging.basicConfig(
    level=settings.log_level,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger("pm-core")

ERROR_CODES = {
    400: "bad_request",
    401: "unauthenticated",
    403: "permission_denied",
    404: "not_found",
    405: "method_not_allowed",
    422: "validation_failed",
    500: "internal_error",
}


def error_response(status_code: int, message: str, headers=None) -> JSONResponse:
    """Render the `{error, message}` envelope."""
    return JSONResponse(
        status_code=status_code,
        content={"error": ERROR_CODES.get(status_code, "error"), "message": message},
        headers=headers,
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Schema is created directly from the models; there are no migrations
    Base.metadata.create_all(bind=engine)
    logger.info("Starting PM Core API")
    yield


# Create FastAPI app
app = FastAPI(
    title="PM Core API",
    description="Project management backend with role-based access and notifications",
    version="1.0.0",
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan,
)

app.state.notification_dispatcher = NotificationDispatcher(
    SessionLocal, max_attempts=settings.notification_max_attempts
)
app.state.blob_store = BlobStore(settings.upload_dir, settings.max_upload_bytes)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origin_list,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    return error_response(exc.status_code, str(exc.detail), headers=getattr(exc, "headers", None))


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    problems = []
    for err in exc.errors():
        location = ".".join(str(part) for part in err.get("loc", ()) if part != "body")
        problems.append(f"{location}: {err.get('msg')}" if location else str(err.get("msg")))
    return error_response(422, "; ".join(problems) or "Invalid request")


@app.exception_handler(PermissionDeniedError)
async def permission_denied_handler(request: Request, exc: PermissionDeniedError):
    return error_response(403, str(exc))


@app.exception_handler(BudgetValidationError)
async def budget_validation_handler(request: Request, exc: BudgetValidationError):
    return error_response(422, str(exc))


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception):
    logger.error(f"Unhandled error on {request.method} {request.url.path}: {exc}", exc_info=exc)
    return error_response(500, str(exc) or exc.__class__.__name__)


# Include all business logic routers with /api/v1 prefix
app.include_router(auth.router, prefix="/api/v1/auth")
app.include_router(users.router, prefix="/api/v1/users")
app.include_router(projects.router, prefix="/api/v1/projects")
app.include_router(tasks.router, prefix="/api/v1/tasks")
app.include_router(comments.router, prefix="/api/v1")
app.include_router(files.router, prefix="/api/v1/files")
app.include_router(risks.router, prefix="/api/v1/risks")
app.include_router(notifications.router, prefix="/api/v1/notifications")
app.include_router(reports.router, prefix="/api/v1/reports")


@app.get("/")
def root():
    """Root endpoint with server info."""
    return {
        "name": "PM Core API",
        "version": "1.0.0",
        "authentication": "bearer",
        "docs": "/docs",
    }


@app.get("/health")
def health_check():
    """Health check endpoint."""
    return {"status": "healthy"}


def run():
    """Serve the API with uvicorn (``pm-core-api`` console script)."""
    import uvicorn
    uvicorn.run("pm_core.api.main:app", host=settings.host, port=settings.port, log_level=settings.log_level.lower())


if __name__ == "__main__":
    run()
