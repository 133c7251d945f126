"""
API Routes - Uploads, resource reads, deletion and the expiry sweep.

NO DICTIONARIES - All JSON responses use Pydantic models.
"""

import secrets
from datetime import timedelta

from fastapi import (
    APIRouter,
    Depends,
    File,
    Form,
    Header,
    HTTPException,
    Response,
    UploadFile,
    status,
)
from structlog import get_logger

from app.api.dependencies import (
    get_client_address,
    get_coordinator,
    get_notifier,
    get_optional_session,
    get_policies,
    get_rate_limiter,
    require_session,
)
from app.api.errors import internal_error, rate_limited
from app.config import Settings, get_settings
from app.exceptions import (
    ConflictError,
    ForbiddenError,
    GoneError,
    InternalError,
    InvalidFieldError,
    MissingFieldError,
    NotFoundError,
    PayloadMissingError,
    RateLimitedError,
    StoreError,
    ValidationError,
)
from app.models.api import (
    DeleteResourceResponse,
    ResourceResponse,
    SweepResponse,
)
from app.models.domain import NotificationCategory, RateLimitPolicy, Resource, Session
from app.observability.metrics import metrics
from app.services.notifications import NotificationSink
from app.services.rate_limiter import RateLimitAction, RateLimiter
from app.services.resources import ResourceLifecycleCoordinator, sanitize_name

logger = get_logger(__name__)

router = APIRouter()


def _parse_expires_in(raw: str | None) -> timedelta | None:
    """expires_in form field: whole seconds, blank means permanent."""
    if raw is None or not raw.strip():
        return None
    try:
        seconds = int(raw.strip())
    except ValueError as exc:
        raise InvalidFieldError("expires_in", "must be a whole number of seconds") from exc
    return timedelta(seconds=seconds)


def _content_type(upload: UploadFile) -> str:
    return (upload.content_type or "").split(";")[0].strip().lower()


async def _record_not_found_probe(
    client_address: str,
    limiter: RateLimiter,
    policy: RateLimitPolicy,
    notifier: NotificationSink,
    threshold: int,
) -> None:
    """
    Count a miss against the client address.

    Probes are observed, never blocked. Crossing the threshold is escalated
    once per window.
    """
    try:
        decision = await limiter.hit(policy, client_address)
    except StoreError as exc:
        logger.warning("not_found_probe_record_failed", error=str(exc))
        return

    if decision.count == threshold:
        metrics.not_found_escalations_total.inc()
        logger.warning(
            "not_found_probe_escalation",
            client_address=client_address,
            count=decision.count,
        )
        notifier.notify(
            NotificationCategory.SECURITY,
            "not_found_probe_escalation",
            client_address=client_address,
            count=decision.count,
        )


# ============================================================================
# Upload
# ============================================================================


@router.post(
    "/api/upload",
    response_model=ResourceResponse,
    status_code=status.HTTP_201_CREATED,
)
async def upload(
    file: UploadFile | None = File(None),
    name: str | None = Form(None),
    expires_in: str | None = Form(None),
    client_address: str = Depends(get_client_address),
    session: Session | None = Depends(get_optional_session),
    coordinator: ResourceLifecycleCoordinator = Depends(get_coordinator),
    limiter: RateLimiter = Depends(get_rate_limiter),
    policies: dict[RateLimitAction, RateLimitPolicy] = Depends(get_policies),
    notifier: NotificationSink = Depends(get_notifier),
    config: Settings = Depends(get_settings),
) -> ResourceResponse:
    """
    Upload an image.

    Multipart fields: file (required), name (optional slug), expires_in
    (optional seconds; makes the upload ephemeral). A valid session makes
    the caller the owner; without one the upload is anonymous.

    Errors: 400 invalid upload, 409 name taken, 429 too many uploads.
    """
    owner_id = session.user_id if session else None
    try:
        if file is None:
            raise MissingFieldError("file")

        content_type = _content_type(file)
        if content_type not in config.content_type_allowlist:
            raise InvalidFieldError("file", f"unsupported content type: {content_type or 'none'}")

        payload = await file.read(config.max_upload_bytes + 1)
        if len(payload) > config.max_upload_bytes:
            raise InvalidFieldError("file", f"exceeds {config.max_upload_bytes} bytes")
        if not payload:
            raise InvalidFieldError("file", "upload is empty")

        resource_name = sanitize_name(name)
        ttl = _parse_expires_in(expires_in)
        if ttl is not None:
            coordinator.validate_ttl(ttl)

        decision = await limiter.hit(policies[RateLimitAction.UPLOAD], client_address)
        if not decision.allowed:
            raise RateLimitedError(RateLimitAction.UPLOAD.value, decision.retry_after_seconds)

        metadata = {"filename": file.filename} if file.filename else {}
        resource = await coordinator.create(
            resource_name,
            payload,
            content_type,
            owner_id=owner_id,
            ttl=ttl,
            metadata=metadata,
        )

    except RateLimitedError as exc:
        logger.warning("upload_rate_limited", client_address=client_address)
        raise rate_limited(exc) from exc

    except ValidationError as exc:
        metrics.record_resource_operation("create", "invalid")
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=exc.message) from exc

    except ConflictError as exc:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=exc.message) from exc

    except InternalError as exc:
        raise internal_error(exc, "upload") from exc

    notifier.notify(
        NotificationCategory.ACTIVITY,
        "resource_uploaded",
        name=resource.name,
        owner_id=owner_id,
        size=resource.size,
        ephemeral=resource.is_ephemeral,
        client_address=client_address,
    )
    return ResourceResponse.from_resource(resource)


# ============================================================================
# Reads
# ============================================================================


async def _resolve_or_raise(
    name: str,
    action: str,
    coordinator: ResourceLifecycleCoordinator,
    client_address: str,
    limiter: RateLimiter,
    policies: dict[RateLimitAction, RateLimitPolicy],
    notifier: NotificationSink,
    config: Settings,
    with_payload: bool,
) -> tuple[Resource, bytes | None]:
    try:
        if with_payload:
            return await coordinator.fetch(name)
        return await coordinator.describe(name), None

    except GoneError as exc:
        raise HTTPException(status_code=status.HTTP_410_GONE, detail="Resource expired") from exc

    except PayloadMissingError as exc:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND, detail="Resource not found"
        ) from exc

    except NotFoundError as exc:
        await _record_not_found_probe(
            client_address,
            limiter,
            policies[RateLimitAction.NOT_FOUND],
            notifier,
            config.not_found_escalation_threshold,
        )
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND, detail="Resource not found"
        ) from exc

    except InternalError as exc:
        raise internal_error(exc, action) from exc


@router.get("/i/{name}")
async def fetch_resource(
    name: str,
    client_address: str = Depends(get_client_address),
    coordinator: ResourceLifecycleCoordinator = Depends(get_coordinator),
    limiter: RateLimiter = Depends(get_rate_limiter),
    policies: dict[RateLimitAction, RateLimitPolicy] = Depends(get_policies),
    notifier: NotificationSink = Depends(get_notifier),
    config: Settings = Depends(get_settings),
) -> Response:
    """Serve the stored payload with its content type. 404 unknown, 410 expired."""
    resource, payload = await _resolve_or_raise(
        name,
        "fetch",
        coordinator,
        client_address,
        limiter,
        policies,
        notifier,
        config,
        with_payload=True,
    )
    cache_control = "no-store" if resource.is_ephemeral else "public, max-age=300"
    return Response(
        content=payload,
        media_type=resource.content_type,
        headers={
            "Cache-Control": cache_control,
            "X-Content-Type-Options": "nosniff",
        },
    )


@router.get("/api/resources/{name}", response_model=ResourceResponse)
async def describe_resource(
    name: str,
    client_address: str = Depends(get_client_address),
    coordinator: ResourceLifecycleCoordinator = Depends(get_coordinator),
    limiter: RateLimiter = Depends(get_rate_limiter),
    policies: dict[RateLimitAction, RateLimitPolicy] = Depends(get_policies),
    notifier: NotificationSink = Depends(get_notifier),
    config: Settings = Depends(get_settings),
) -> ResourceResponse:
    """Resource metadata without the payload."""
    resource, _ = await _resolve_or_raise(
        name,
        "describe",
        coordinator,
        client_address,
        limiter,
        policies,
        notifier,
        config,
        with_payload=False,
    )
    return ResourceResponse.from_resource(resource)


@router.delete("/api/resources/{name}", response_model=DeleteResourceResponse)
async def delete_resource(
    name: str,
    session: Session = Depends(require_session),
    coordinator: ResourceLifecycleCoordinator = Depends(get_coordinator),
    notifier: NotificationSink = Depends(get_notifier),
) -> DeleteResourceResponse:
    """Delete a resource you own. 401 without a session, 403 not yours, 404 unknown."""
    try:
        resource = await coordinator.delete(name, session.user_id)

    except ForbiddenError as exc:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN, detail="Not the owner of this resource"
        ) from exc

    except NotFoundError as exc:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND, detail="Resource not found"
        ) from exc

    except InternalError as exc:
        raise internal_error(exc, "delete") from exc

    notifier.notify(
        NotificationCategory.ACTIVITY,
        "resource_deleted",
        name=resource.name,
        account_id=session.user_id,
    )
    return DeleteResourceResponse(name=resource.name)


# ============================================================================
# Expiry sweep (scheduled trigger)
# ============================================================================


@router.post("/internal/sweep", response_model=SweepResponse)
async def run_sweep(
    x_sweep_token: str | None = Header(None),
    coordinator: ResourceLifecycleCoordinator = Depends(get_coordinator),
    config: Settings = Depends(get_settings),
) -> SweepResponse:
    """
    Purge every ephemeral resource whose expiry has passed.

    When SWEEP_TOKEN is configured the caller must send it as X-Sweep-Token.
    """
    if config.sweep_token and not secrets.compare_digest(
        x_sweep_token or "", config.sweep_token
    ):
        logger.warning("sweep_unauthorized")
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid sweep token")

    try:
        result = await coordinator.sweep()
    except InternalError as exc:
        raise internal_error(exc, "sweep") from exc

    return SweepResponse.from_result(result)
