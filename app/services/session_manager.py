"""
Session Manager - Opaque bearer sessions stored under sessions/{sha256(token)}.

We never store raw tokens, only hashes, so a leaked store does not leak usable
sessions. Expired sessions are deleted when they are observed; there is no
background cleanup.
"""

import hashlib
import secrets
from datetime import timedelta

from structlog import get_logger

from app.db.store import KeyValueStore
from app.exceptions import SessionExpiredError, SessionNotFoundError
from app.models.domain import Clock, Session, utc_now
from app.observability.metrics import metrics

logger = get_logger(__name__)

DEFAULT_SESSION_TTL = timedelta(days=7)


class SessionManager:
    """
    Issues, resolves and revokes sessions.

    Usage:
        sessions = SessionManager(store)
        session = await sessions.issue(account.id)
        ...
        session = await sessions.resolve(token)  # raises AuthError subclasses
        await sessions.revoke(token)
    """

    def __init__(
        self,
        store: KeyValueStore,
        default_ttl: timedelta = DEFAULT_SESSION_TTL,
        clock: Clock = utc_now,
    ) -> None:
        self.store = store
        self.default_ttl = default_ttl
        self.clock = clock

    @staticmethod
    def hash_token(token: str) -> str:
        """Hash a token using SHA-256."""
        return hashlib.sha256(token.encode()).hexdigest()

    @classmethod
    def session_key(cls, token: str) -> str:
        return f"sessions/{cls.hash_token(token)}"

    async def issue(self, account_id: str, ttl: timedelta | None = None) -> Session:
        """Create and persist a new session for account_id."""
        ttl = ttl or self.default_ttl
        now = self.clock()
        session = Session(
            user_id=account_id,
            token=secrets.token_urlsafe(32),
            created_at=now,
            expires_at=now + ttl,
        )
        await self.store.set_json(self.session_key(session.token), session.to_record())

        metrics.record_session_operation("issue", "success")
        logger.info(
            "session_issued",
            token_hash=self.hash_token(session.token)[:16],
            account_id=account_id,
            expires_at=session.expires_at.isoformat(),
        )
        return session

    async def resolve(self, token: str | None) -> Session:
        """
        Load the session for token.

        Raises:
            SessionNotFoundError: unknown, revoked or empty token
            SessionExpiredError: token past expires_at (the record is deleted)
        """
        if not token:
            metrics.record_session_operation("resolve", "not_found")
            raise SessionNotFoundError()

        key = self.session_key(token)
        record = await self.store.get_json(key)
        if record is None:
            metrics.record_session_operation("resolve", "not_found")
            raise SessionNotFoundError()

        session = Session.from_record(token, record)
        if session.is_expired(self.clock()):
            await self.store.delete(key)
            metrics.record_session_operation("resolve", "expired")
            logger.info(
                "session_expired",
                token_hash=self.hash_token(token)[:16],
                account_id=session.user_id,
            )
            raise SessionExpiredError()

        metrics.record_session_operation("resolve", "success")
        return session

    async def revoke(self, token: str | None) -> None:
        """Delete the session. Unknown tokens are not an error."""
        if not token:
            return
        await self.store.delete(self.session_key(token))
        metrics.record_session_operation("revoke", "success")
        logger.info("session_revoked", token_hash=self.hash_token(token)[:16])
