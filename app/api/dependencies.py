"""
FastAPI Dependencies - Store, services, client identity and sessions.

NO DICTIONARIES - All dependencies return typed objects.

Services are cheap to build and hold no state of their own; they are created
per request around the process-wide store. Tests swap the store, the clock
and the password hasher through app.dependency_overrides.
"""

from datetime import timedelta

from argon2 import PasswordHasher
from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from structlog import get_logger

from app.config import Settings, get_settings, settings
from app.db.session import get_engine, get_session_factory
from app.db.sql_store import SqlKeyValueStore
from app.db.store import KeyValueStore, MemoryKeyValueStore
from app.exceptions import AuthError, StoreError
from app.models.domain import Clock, RateLimitPolicy, Session, utc_now
from app.observability.tracing import instrument_sqlalchemy
from app.services.credential_vault import CredentialVault
from app.services.notifications import NotificationSink
from app.services.rate_limiter import RateLimitAction, RateLimiter, build_policies
from app.services.resources import ResourceLifecycleCoordinator
from app.services.session_manager import SessionManager

logger = get_logger(__name__)

# Bearer token scheme for non-browser clients
bearer_scheme = HTTPBearer(auto_error=False)

_store: KeyValueStore | None = None
_notifier: NotificationSink | None = None
_password_hasher = PasswordHasher()


# ============================================================================
# Infrastructure
# ============================================================================


def build_store(config: Settings) -> KeyValueStore:
    """Create the configured key-value store backend."""
    if config.store_backend == "memory":
        logger.warning("memory_store_selected", detail="state is lost on restart")
        return MemoryKeyValueStore()

    instrument_sqlalchemy(get_engine())
    return SqlKeyValueStore(get_session_factory(), config.store_namespace)


def get_store() -> KeyValueStore:
    """Get or create the process-wide store."""
    global _store
    if _store is None:
        _store = build_store(settings)
    return _store


def get_notifier() -> NotificationSink:
    """Get or create the process-wide notification sink."""
    global _notifier
    if _notifier is None:
        _notifier = NotificationSink(
            webhook_url=settings.webhook_url,
            timeout_seconds=settings.webhook_timeout_seconds,
        )
    return _notifier


async def shutdown_dependencies(drain_timeout: float = 5.0) -> None:
    """Drain notifications and release the store (lifespan shutdown)."""
    global _store, _notifier
    if _notifier is not None:
        await _notifier.drain(timeout=drain_timeout)
        _notifier = None
    if _store is not None:
        await _store.close()
        _store = None


def get_clock() -> Clock:
    return utc_now


def get_password_hasher() -> PasswordHasher:
    return _password_hasher


# ============================================================================
# Services
# ============================================================================


def get_vault(
    store: KeyValueStore = Depends(get_store),
    hasher: PasswordHasher = Depends(get_password_hasher),
    clock: Clock = Depends(get_clock),
    config: Settings = Depends(get_settings),
) -> CredentialVault:
    return CredentialVault(
        store, hasher=hasher, min_password_length=config.password_min_length, clock=clock
    )


def get_sessions(
    store: KeyValueStore = Depends(get_store),
    clock: Clock = Depends(get_clock),
    config: Settings = Depends(get_settings),
) -> SessionManager:
    return SessionManager(store, default_ttl=config.session_ttl, clock=clock)


def get_rate_limiter(
    store: KeyValueStore = Depends(get_store),
    clock: Clock = Depends(get_clock),
) -> RateLimiter:
    return RateLimiter(store, clock=clock)


def get_policies(
    config: Settings = Depends(get_settings),
) -> dict[RateLimitAction, RateLimitPolicy]:
    return build_policies(config)


def get_coordinator(
    store: KeyValueStore = Depends(get_store),
    clock: Clock = Depends(get_clock),
    config: Settings = Depends(get_settings),
) -> ResourceLifecycleCoordinator:
    return ResourceLifecycleCoordinator(
        store,
        clock=clock,
        min_ttl=timedelta(seconds=config.min_expiry_seconds),
        max_ttl=timedelta(seconds=config.max_expiry_seconds),
    )


# ============================================================================
# Request identity
# ============================================================================


def get_client_address(request: Request, config: Settings = Depends(get_settings)) -> str:
    """
    Client address used as the rate-limit subject.

    Behind a trusted proxy the first X-Forwarded-For hop is the client;
    otherwise the socket peer is used.
    """
    if config.trust_proxy_headers:
        forwarded_for = request.headers.get("X-Forwarded-For")
        if forwarded_for:
            first_hop = forwarded_for.split(",")[0].strip()
            if first_hop:
                return first_hop
    if request.client and request.client.host:
        return request.client.host
    return "unknown"


def get_session_token(
    request: Request,
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
    config: Settings = Depends(get_settings),
) -> str | None:
    """Session token from the session cookie, else from Authorization: Bearer."""
    cookie_token = request.cookies.get(config.session_cookie_name)
    if cookie_token:
        return cookie_token
    if credentials is not None and credentials.credentials:
        return credentials.credentials
    return None


async def get_optional_session(
    token: str | None = Depends(get_session_token),
    sessions: SessionManager = Depends(get_sessions),
) -> Session | None:
    """Resolve the session if there is a valid one; anonymous otherwise."""
    if token is None:
        return None
    try:
        return await sessions.resolve(token)
    except AuthError:
        return None
    except StoreError as exc:
        logger.warning("optional_session_lookup_failed", error=str(exc))
        return None


async def require_session(
    token: str | None = Depends(get_session_token),
    sessions: SessionManager = Depends(get_sessions),
) -> Session:
    """
    FastAPI dependency requiring a valid session.

    Raises:
        HTTPException 401 if there is no token or it does not resolve
        HTTPException 500 if the store fails
    """
    if token is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Authentication required",
            headers={"WWW-Authenticate": "Bearer"},
        )
    try:
        return await sessions.resolve(token)
    except AuthError as exc:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=exc.message,
            headers={"WWW-Authenticate": "Bearer"},
        ) from exc
    except StoreError as exc:
        logger.error("session_lookup_failed", error=str(exc))
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Internal server error",
        ) from exc
