from fastapi import FastAPI
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from slowapi import Limiter
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from starlette import status
from starlette.middleware.cors import CORSMiddleware
from starlette.requests import Request
from starlette.responses import JSONResponse, Response

from app.core import config
from app.core.database.engine import init_db
from app.features.rbac.dependencies import get_authorization_header
from app.features.rbac.errors import (
    AssignmentNotFoundError,
    DuplicateAssignmentError,
    InvalidInputError,
    InvariantViolation,
    RbacError,
    RoleConflictError,
    RoleNotFoundError,
)
from app.features.rbac.routes import router as rbac_router
from app.utils import get_logger


log = get_logger(__name__)
log.info("Initializing server")
app = FastAPI(
    title="RBAC Backend",
    description="Role-based access control service with expiring role assignments",
    version="0.1.0",
    docs_url="/docs" if config.ENABLE_DOCS else None,
    redoc_url="/redoc" if config.ENABLE_DOCS else None,
    openapi_url="/openapi.json" if config.ENABLE_DOCS else None
)
limiter = Limiter(key_func=get_authorization_header, default_limits=[config.RATE_LIMIT])
app.state.limiter = limiter
app.add_middleware(SlowAPIMiddleware)

if config.ENABLE_DOCS:
    log.warning("Docs enabled")
if config.ALLOW_ORIGIN:
    log.warning("Setting allow origin to %s", config.ALLOW_ORIGIN)
    origins = [config.ALLOW_ORIGIN]
    app.add_middleware(
        CORSMiddleware,
        allow_origins=origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(_request: Request, exc: RequestValidationError):
    errors = dict()
    for error in exc.errors():
        if "loc" not in error or "msg" not in error:
            continue
        key = error["loc"][-1]
        if key == "__root__":
            key = "root"
        errors[key] = error["msg"]
    log.info("Request validation error %s", errors)
    return JSONResponse(status_code=400, content=jsonable_encoder(errors))


@app.exception_handler(RateLimitExceeded)
def rate_limit_exceeded_handler(_request: Request, _exc: RateLimitExceeded) -> Response:
    return JSONResponse({"error": "You are going too fast"}, status_code=429)


ERROR_STATUS = {
    RoleNotFoundError: status.HTTP_404_NOT_FOUND,
    AssignmentNotFoundError: status.HTTP_404_NOT_FOUND,
    RoleConflictError: status.HTTP_409_CONFLICT,
    DuplicateAssignmentError: status.HTTP_409_CONFLICT,
    InvariantViolation: status.HTTP_409_CONFLICT,
    InvalidInputError: 422,
}


@app.exception_handler(RbacError)
async def rbac_error_handler(_request: Request, exc: RbacError):
    status_code = next(
        (code for error_type, code in ERROR_STATUS.items() if isinstance(exc, error_type)),
        status.HTTP_400_BAD_REQUEST,
    )
    content = {"detail": exc.message}
    if isinstance(exc, InvalidInputError):
        content["errors"] = exc.errors
    log.info("RBAC request rejected (%d): %s", status_code, exc.message)
    return JSONResponse(status_code=status_code, content=content)


@app.on_event("startup")
async def startup():
    """Initialize database on application startup."""
    log.info("Initializing database...")
    await init_db()
    log.info("Database initialized successfully")


@app.get("/")
async def root():
    """Root endpoint - API health check."""
    return {
        "message": "RBAC Backend API",
        "version": "0.1.0",
        "status": "online",
        "docs": "/docs" if config.ENABLE_DOCS else None,
        "authentication": {
            "info": "Protected endpoints require Bearer token in Authorization header",
            "protected_endpoints": ["/rbac/*"],
            "public_endpoints": ["/", "/health"]
        },
        "features": {
            "roles": "Leveled roles carrying normalized permission sets; system roles are read-only",
            "assignments": "User to role grants with optional expiry and soft revocation",
            "evaluation": "Effective permissions and highest role level per user",
            "audit": "role_assign, role_revoke and permission_change events"
        }
    }


@app.get("/health")
@limiter.exempt
async def health():
    """Health check endpoint."""
    return {"status": "healthy"}


# RBAC routes
app.include_router(rbac_router, prefix="/rbac", tags=["rbac"])
