"""Main FastAPI application entry point."""
import logging

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from compliance_tracker.api.routes import router
from compliance_tracker.api.throttle import SlidingWindowRateLimiter
from compliance_tracker.config import get_settings
from compliance_tracker.database import Base, engine
# Import models to register them with SQLAlchemy Base
from compliance_tracker.models.audit import AuditLogEntry  # noqa: F401
from compliance_tracker.models.domain import Task, TimerSession  # noqa: F401
from compliance_tracker.services.errors import (
    InvalidCadenceError,
    LifecycleError,
    NoOpenSessionError,
    NotFoundError,
    SessionAlreadyOpenError,
    StorageError,
    TaskAlreadyTerminalError,
    TaskValidationError,
)

settings = get_settings()

logging.basicConfig(
    level=settings.log_level.upper(),
    format="%(asctime)s %(name)s %(levelname)s %(message)s",
)
logger = logging.getLogger(__name__)

# Create database tables
Base.metadata.create_all(bind=engine)

ERROR_STATUS = {
    NotFoundError: 404,
    TaskAlreadyTerminalError: 409,
    SessionAlreadyOpenError: 409,
    NoOpenSessionError: 400,
    InvalidCadenceError: 422,
    TaskValidationError: 422,
    StorageError: 503,
}

# Create FastAPI app
app = FastAPI(
    title="Compliance Tracker - Task Lifecycle Engine",
    description="Recurring access reviews and compliance audits: lifecycle, recurrence, time accrual and audit trail.",
    version="0.1.0"
)
app.state.rate_limiter = SlidingWindowRateLimiter()

# Enable CORS for local development
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # Internal dashboard - restrict in production
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(LifecycleError)
async def lifecycle_error_handler(request: Request, exc: LifecycleError):
    """Translate typed engine failures into JSON error bodies."""
    status_code = next(
        (code for cls, code in ERROR_STATUS.items() if isinstance(exc, cls)), 400
    )
    if status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
    return JSONResponse(status_code=status_code, content=exc.to_dict())


# Include API routes
app.include_router(router, prefix="/api", tags=["Compliance"])


# Health check
@app.get("/health")
def health_check():
    return {"status": "healthy", "service": "Compliance Tracker"}


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
