"""HTTP route definitions for the staff provisioning service."""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, FastAPI, Header, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse, PlainTextResponse
from pydantic import BaseModel, ConfigDict

from ..config import Settings, get_settings
from ..domain.contracts import CreateStaffInput
from ..domain.errors import ConfigurationError, RateLimitedError, StaffProvisioningError, ValidationError
from ..domain.service import StaffProvisioningService
from ..metrics import PROVISIONING_REQUESTS
from ..security.rate_limiter import SlidingWindowRateLimiter
from ..security.redis_rate_limiter import RedisSlidingWindowRateLimiter
from ..security.tokens import verify_caller

logger = logging.getLogger(__name__)

router = APIRouter()

RateLimiter = SlidingWindowRateLimiter | RedisSlidingWindowRateLimiter


class CreateStaffRequest(BaseModel):
    """Payload accepted when provisioning a staff member.

    Unknown keys such as ``hotel_id`` are ignored; the hotel always comes from
    the admin's own profile.
    """

    model_config = ConfigDict(extra="ignore")

    admin_email: str | None = None
    email: str | None = None
    role: str | None = None
    full_name: str | None = None


class CreateStaffResponse(BaseModel):
    """Response returned after a staff member was provisioned."""

    success: bool = True
    user_id: str
    hotel_id: str | None


def build_rate_limiter(settings: Settings) -> RateLimiter:
    """Instantiate the configured rate limiter backend, preferring Redis when available."""
    if settings.rate_limit_backend == "redis" and settings.redis_url:
        try:
            import redis

            client = redis.from_url(settings.redis_url)
            # fail fast at startup rather than on the first request
            client.ping()
            logger.info("rate limiter configured for redis backend")
            return RedisSlidingWindowRateLimiter(
                client,
                max_requests=settings.rate_limit_requests,
                window_seconds=settings.rate_limit_window_seconds,
            )
        except Exception as exc:  # pragma: no cover - depends on a live redis
            logger.warning("redis rate limiter unavailable, falling back to in-memory: %s", exc)

    logger.info("rate limiter using in-memory backend")
    return SlidingWindowRateLimiter(
        max_requests=settings.rate_limit_requests,
        window_seconds=settings.rate_limit_window_seconds,
    )


def get_service(request: Request) -> StaffProvisioningService:
    """Resolve the provisioning service stored on the application state."""
    service: StaffProvisioningService | None = getattr(request.app.state, "staff_service", None)
    if service is None:
        missing = getattr(request.app.state, "missing_config", None) or ["SUPABASE_URL", "SUPABASE_SERVICE_ROLE_KEY"]
        raise ConfigurationError(
            "Server misconfigured", f"missing environment variables: {', '.join(missing)}"
        )
    return service


def get_app_settings(request: Request) -> Settings:
    return getattr(request.app.state, "settings", None) or get_settings()


@router.get("/", response_class=PlainTextResponse)
def root() -> str:
    return "Staff provisioning service is running"


@router.post("/create-staff", response_model=CreateStaffResponse)
def create_staff(
    payload: CreateStaffRequest,
    service: StaffProvisioningService = Depends(get_service),
    settings: Settings = Depends(get_app_settings),
    authorization: str | None = Header(default=None),
) -> CreateStaffResponse:
    """Provision a staff account in the calling admin's hotel."""
    staff_input = CreateStaffInput.from_fields(
        admin_email=payload.admin_email,
        email=payload.email,
        role=payload.role,
        full_name=payload.full_name,
    )
    if settings.supabase_jwt_secret:
        verify_caller(
            authorization,
            staff_input.admin_email,
            secret=settings.supabase_jwt_secret,
            audience=settings.jwt_audience,
        )

    result = service.create_staff(staff_input)
    PROVISIONING_REQUESTS.labels(outcome="success").inc()
    return CreateStaffResponse(user_id=result.user_id, hotel_id=result.hotel_id)


def handle_provisioning_error(request: Request, exc: StaffProvisioningError) -> JSONResponse:
    """Translate a provisioning failure into its JSON error response."""
    PROVISIONING_REQUESTS.labels(outcome=exc.code).inc()
    if exc.status_code >= 500:
        logger.error(
            "%s %s failed with %s: %s (auth_user_id=%s)",
            request.method,
            request.url.path,
            exc.code,
            exc,
            getattr(exc, "auth_user_id", None),
        )
    else:
        logger.warning("%s %s rejected with %s: %s", request.method, request.url.path, exc.code, exc)

    headers = None
    if isinstance(exc, RateLimitedError):
        headers = {"Retry-After": str(exc.retry_after)}
    return JSONResponse(status_code=exc.status_code, content=exc.to_body(), headers=headers)


def handle_request_validation_error(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Report malformed bodies as 400 with the same shape as other validation failures."""
    problems = "; ".join(f"{_field_path(error)}: {error.get('msg')}" for error in exc.errors())
    return handle_provisioning_error(request, ValidationError("Invalid request body", problems))


def _field_path(error: dict) -> str:
    parts = [str(part) for part in error.get("loc", ()) if part != "body"]
    return ".".join(parts) or "body"


def register_error_handlers(app: FastAPI) -> None:
    """Register the request-boundary error translation with the FastAPI app."""
    app.add_exception_handler(StaffProvisioningError, handle_provisioning_error)
    app.add_exception_handler(RequestValidationError, handle_request_validation_error)
