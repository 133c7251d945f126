"""
Credential Vault - Account records and their uniqueness indices.

Accounts live under accounts/{id}. Two secondary indices map the lowercased
username and email to the account id. Registration reads both indices, writes
the record, then claims both index keys with a conditional put so that a
concurrent registration racing on the same email or username loses cleanly
instead of overwriting. On a store without an atomic conditional put the race
is narrowed, not closed.
"""

import re
import secrets

from argon2 import PasswordHasher
from argon2.exceptions import InvalidHashError, VerificationError
from structlog import get_logger

from app.db.store import KeyValueStore
from app.exceptions import (
    DuplicateEmailError,
    DuplicateUsernameError,
    InvalidCredentialsError,
    InvalidFieldError,
    MissingFieldError,
    StoreError,
    WeakPasswordError,
)
from app.models.domain import Account, Clock, utc_now

logger = get_logger(__name__)

_USERNAME_RE = re.compile(r"[A-Za-z0-9_.-]{3,32}")
_EMAIL_RE = re.compile(r"[^@\s/]+@[^@\s/]+\.[^@\s/]+")


def account_key(account_id: str) -> str:
    return f"accounts/{account_id}"


def username_index_key(username: str) -> str:
    return f"index/username/{username.strip().lower()}"


def email_index_key(email: str) -> str:
    return f"index/email/{email.strip().lower()}"


class CredentialVault:
    """Owns account records and the username/email uniqueness indices."""

    def __init__(
        self,
        store: KeyValueStore,
        hasher: PasswordHasher | None = None,
        min_password_length: int = 6,
        clock: Clock = utc_now,
    ) -> None:
        self.store = store
        self.hasher = hasher or PasswordHasher()
        self.min_password_length = min_password_length
        self.clock = clock

    def _validate_registration(self, username: str, email: str, password: str) -> None:
        """Raise ValidationError subclasses before anything is written."""
        if not username:
            raise MissingFieldError("username")
        if not email:
            raise MissingFieldError("email")
        if not password:
            raise MissingFieldError("password")
        if not _USERNAME_RE.fullmatch(username):
            raise InvalidFieldError(
                "username", "use 3-32 letters, digits, dots, dashes or underscores"
            )
        if not _EMAIL_RE.fullmatch(email):
            raise InvalidFieldError("email", "not an email address")
        if len(password) < self.min_password_length:
            raise WeakPasswordError(self.min_password_length)

    async def register(
        self, username: str | None, email: str | None, password: str | None
    ) -> Account:
        """
        Create an account.

        Raises:
            MissingFieldError / InvalidFieldError / WeakPasswordError: bad input
            DuplicateEmailError / DuplicateUsernameError: unique key taken
        """
        username = (username or "").strip()
        email = (email or "").strip()
        password = password or ""
        self._validate_registration(username, email, password)

        # Two independent reads; a concurrent signup can still slip between
        # these checks and the conditional claims below.
        if await self.store.get(email_index_key(email)) is not None:
            raise DuplicateEmailError(email)
        if await self.store.get(username_index_key(username)) is not None:
            raise DuplicateUsernameError(username)

        account = Account(
            id=secrets.token_urlsafe(16),
            username=username,
            email=email,
            credential_digest=self.hasher.hash(password),
            created_at=self.clock(),
        )
        await self.store.set_json(account_key(account.id), account.to_record())
        await self._claim_indices(account)

        logger.info(
            "account_registered",
            account_id=account.id,
            username=account.username,
            atomic_claims=self.store.atomic_conditional_put,
        )
        return account

    async def _claim_indices(self, account: Account) -> None:
        """Claim email then username index keys, undoing this signup if either is taken."""
        claims: list[tuple[str, Exception]] = [
            (email_index_key(account.email), DuplicateEmailError(account.email)),
            (username_index_key(account.username), DuplicateUsernameError(account.username)),
        ]
        claimed: list[str] = []
        for key, conflict in claims:
            if await self.store.set_if_absent(key, account.id.encode("utf-8")):
                claimed.append(key)
                continue

            logger.warning(
                "account_registration_race_lost",
                account_id=account.id,
                index_key=key.rsplit("/", 2)[1],
            )
            for claimed_key in claimed:
                await self.store.delete(claimed_key)
            await self.store.delete(account_key(account.id))
            raise conflict

    async def get_account(self, account_id: str) -> Account | None:
        """Load an account by id."""
        record = await self.store.get_json(account_key(account_id))
        if record is None:
            return None
        return Account.from_record(record)

    async def authenticate(self, email: str | None, password: str | None) -> Account:
        """
        Check an email/password pair.

        Unknown email and wrong password both raise InvalidCredentialsError;
        only its internal reason differs.
        """
        email = (email or "").strip()
        if not email:
            raise MissingFieldError("email")
        if not password:
            raise MissingFieldError("password")

        raw_id = await self.store.get(email_index_key(email))
        if raw_id is None:
            raise InvalidCredentialsError("unknown_email")

        account = await self.get_account(raw_id.decode("utf-8"))
        if account is None:
            # Index entry survived a registration that lost its race.
            logger.warning("email_index_dangling", account_id=raw_id.decode("utf-8"))
            raise InvalidCredentialsError("unknown_email")

        try:
            self.hasher.verify(account.credential_digest, password)
        except (VerificationError, InvalidHashError):
            raise InvalidCredentialsError("bad_password")

        if self.hasher.check_needs_rehash(account.credential_digest):
            account = await self._rehash(account, password)

        return account

    async def _rehash(self, account: Account, password: str) -> Account:
        """Upgrade a digest produced with older hasher parameters. Best-effort."""
        upgraded = Account(
            id=account.id,
            username=account.username,
            email=account.email,
            credential_digest=self.hasher.hash(password),
            created_at=account.created_at,
            last_login_at=account.last_login_at,
        )
        try:
            await self.store.set_json(account_key(account.id), upgraded.to_record())
        except StoreError as exc:
            logger.warning("credential_rehash_failed", account_id=account.id, error=str(exc))
            return account
        logger.info("credential_rehashed", account_id=account.id)
        return upgraded

    async def touch_login(self, account_id: str) -> None:
        """Record the login time. Failures are logged and never block the login."""
        try:
            account = await self.get_account(account_id)
            if account is None:
                logger.warning("touch_login_account_missing", account_id=account_id)
                return
            updated = account.with_login(self.clock())
            await self.store.set_json(account_key(account_id), updated.to_record())
        except StoreError as exc:
            logger.warning("touch_login_failed", account_id=account_id, error=str(exc))
