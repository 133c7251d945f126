"""
Auth Routes - Signup, login, logout and session verification.

The session token is returned in the body and set as an HttpOnly,
SameSite=Strict cookie. Failed logins count against the client address;
a successful login does not reset that count.
"""

import pydantic
from fastapi import APIRouter, Depends, HTTPException, Request, Response, status
from structlog import get_logger

from app.api.dependencies import (
    get_client_address,
    get_notifier,
    get_policies,
    get_rate_limiter,
    get_session_token,
    get_sessions,
    get_vault,
)
from app.api.errors import internal_error, rate_limited
from app.config import Settings, get_settings
from app.exceptions import (
    AuthError,
    ConflictError,
    InternalError,
    InvalidCredentialsError,
    RateLimitedError,
    StoreError,
    ValidationError,
)
from app.models.api import (
    AuthResponse,
    LoginRequest,
    LogoutResponse,
    SignupRequest,
    UserInfo,
    VerifyRequest,
    VerifyResponse,
)
from app.models.domain import (
    Account,
    NotificationCategory,
    RateLimitPolicy,
    Session,
)
from app.observability.metrics import metrics
from app.services.credential_vault import CredentialVault
from app.services.notifications import NotificationSink
from app.services.rate_limiter import RateLimitAction, RateLimiter
from app.services.session_manager import SessionManager

logger = get_logger(__name__)

router = APIRouter(prefix="/api/auth", tags=["auth"])


def _set_session_cookie(response: Response, session: Session, config: Settings) -> None:
    response.set_cookie(
        key=config.session_cookie_name,
        value=session.token,
        httponly=True,
        secure=config.session_cookie_secure,
        samesite="strict",
        max_age=config.session_ttl_seconds,
        path="/",
    )


def _auth_response(account: Account, session: Session) -> AuthResponse:
    return AuthResponse(
        token=session.token,
        expires_at=session.expires_at,
        user=UserInfo.from_account(account),
    )


@router.post("/signup", response_model=AuthResponse, status_code=status.HTTP_201_CREATED)
async def signup(
    request: SignupRequest,
    response: Response,
    client_address: str = Depends(get_client_address),
    vault: CredentialVault = Depends(get_vault),
    sessions: SessionManager = Depends(get_sessions),
    limiter: RateLimiter = Depends(get_rate_limiter),
    policies: dict[RateLimitAction, RateLimitPolicy] = Depends(get_policies),
    notifier: NotificationSink = Depends(get_notifier),
    config: Settings = Depends(get_settings),
) -> AuthResponse:
    """
    Create an account and log it in.

    Errors: 400 invalid input, 409 username/email taken, 429 too many signups.
    """
    try:
        decision = await limiter.hit(policies[RateLimitAction.SIGNUP], client_address)
        if not decision.allowed:
            raise RateLimitedError(RateLimitAction.SIGNUP.value, decision.retry_after_seconds)

        account = await vault.register(request.username, request.email, request.password)
        session = await sessions.issue(account.id)

    except RateLimitedError as exc:
        metrics.record_auth_attempt("signup", "rate_limited")
        logger.warning("signup_rate_limited", client_address=client_address)
        raise rate_limited(exc) from exc

    except ValidationError as exc:
        metrics.record_auth_attempt("signup", "invalid")
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=exc.message) from exc

    except ConflictError as exc:
        metrics.record_auth_attempt("signup", "conflict")
        logger.info("signup_conflict", client_address=client_address, detail=exc.message)
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=exc.message) from exc

    except InternalError as exc:
        raise internal_error(exc, "signup") from exc

    metrics.record_auth_attempt("signup", "success")
    notifier.notify(
        NotificationCategory.ACCOUNT,
        "account_created",
        account_id=account.id,
        username=account.username,
        client_address=client_address,
    )
    _set_session_cookie(response, session, config)
    return _auth_response(account, session)


@router.post("/login", response_model=AuthResponse)
async def login(
    request: LoginRequest,
    response: Response,
    client_address: str = Depends(get_client_address),
    vault: CredentialVault = Depends(get_vault),
    sessions: SessionManager = Depends(get_sessions),
    limiter: RateLimiter = Depends(get_rate_limiter),
    policies: dict[RateLimitAction, RateLimitPolicy] = Depends(get_policies),
    notifier: NotificationSink = Depends(get_notifier),
    config: Settings = Depends(get_settings),
) -> AuthResponse:
    """
    Exchange email and password for a session.

    An address that has used up its failed-login allowance is refused with
    429 before the password is checked. Each wrong password counts one failure.
    """
    failures = policies[RateLimitAction.AUTH_FAILURE]
    try:
        current = await limiter.status(failures, client_address)
        if not current.allowed:
            raise RateLimitedError(failures.action, current.retry_after_seconds)

        try:
            account = await vault.authenticate(request.email, request.password)
        except InvalidCredentialsError as exc:
            decision = await limiter.hit(failures, client_address)
            metrics.record_auth_attempt("login", "invalid_credentials")
            logger.warning(
                "login_failed",
                reason=exc.reason,
                client_address=client_address,
                failures=decision.count,
            )
            notifier.notify(
                NotificationCategory.SECURITY,
                "login_failed",
                email=request.email,
                client_address=client_address,
            )
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail=exc.message,
            ) from exc

        session = await sessions.issue(account.id)

    except RateLimitedError as exc:
        metrics.record_auth_attempt("login", "rate_limited")
        logger.warning("login_rate_limited", client_address=client_address)
        raise rate_limited(exc) from exc

    except ValidationError as exc:
        metrics.record_auth_attempt("login", "invalid")
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=exc.message) from exc

    except InternalError as exc:
        raise internal_error(exc, "login") from exc

    await vault.touch_login(account.id)

    metrics.record_auth_attempt("login", "success")
    logger.info("login_succeeded", account_id=account.id, client_address=client_address)
    notifier.notify(
        NotificationCategory.ACCOUNT,
        "login_succeeded",
        account_id=account.id,
        client_address=client_address,
    )
    _set_session_cookie(response, session, config)
    return _auth_response(account, session)


@router.post("/logout", response_model=LogoutResponse)
async def logout(
    response: Response,
    token: str | None = Depends(get_session_token),
    sessions: SessionManager = Depends(get_sessions),
    config: Settings = Depends(get_settings),
) -> LogoutResponse:
    """
    Revoke the current session and clear the cookie.

    Always succeeds; a store failure is logged and the cookie is still cleared.
    """
    try:
        await sessions.revoke(token)
    except StoreError as exc:
        logger.error("logout_revoke_failed", error=str(exc))

    response.delete_cookie(
        key=config.session_cookie_name,
        path="/",
        secure=config.session_cookie_secure,
        httponly=True,
        samesite="strict",
    )
    return LogoutResponse()


async def _body_token(request: Request) -> str | None:
    """Token from an optional JSON body; anything unreadable counts as absent."""
    raw = await request.body()
    if not raw.strip():
        return None
    try:
        return VerifyRequest.model_validate_json(raw).token
    except pydantic.ValidationError:
        return None


async def _resolve_account(
    token: str, sessions: SessionManager, vault: CredentialVault
) -> Account | None:
    try:
        session = await sessions.resolve(token)
        account = await vault.get_account(session.user_id)
    except AuthError:
        return None
    except Exception:
        logger.exception("verify_failed")
        return None

    if account is None:
        logger.warning("verify_account_missing", account_id=session.user_id)
    return account


@router.post("/verify", response_model=VerifyResponse)
async def verify(
    request: Request,
    token: str | None = Depends(get_session_token),
    sessions: SessionManager = Depends(get_sessions),
    vault: CredentialVault = Depends(get_vault),
) -> VerifyResponse:
    """
    Report whether a session token is valid.

    The cookie (or bearer header) token is tried first; a token in the JSON
    body is tried when that one is absent or does not resolve. Never errors.
    """
    candidates = [token, await _body_token(request)]
    tried: set[str] = set()
    for candidate in candidates:
        if not candidate or candidate in tried:
            continue
        tried.add(candidate)
        account = await _resolve_account(candidate, sessions, vault)
        if account is not None:
            return VerifyResponse(authenticated=True, user=UserInfo.from_account(account))
    return VerifyResponse(authenticated=False)
