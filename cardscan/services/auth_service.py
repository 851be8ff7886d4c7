"""Account registration, login and bearer-token sessions over the KV store.

Key layout:

- ``users_index``        {userIds: [...], emailToId: {email: id}}
- ``user_<id>``          StoredUser (password held as a salted PBKDF2 hash)
- ``session_<token>``    {userId, createdAt}; the key uses the first
                         SESSION_TOKEN_KEY_LENGTH characters of the token
                         when that setting is non-zero

Accounts written before hashing hold a plaintext password. Those still
verify, and are re-saved hashed on the next successful login.
"""

from __future__ import annotations

import hashlib
import hmac
import logging
import re
import secrets
import time

from pydantic import BaseModel, Field, field_validator

from cardscan.config import settings
from cardscan.models import CamelModel, PublicUser, StoredSession, StoredUser, UsersIndex
from cardscan.store.kv_store import KeyValueStore

logger = logging.getLogger(__name__)

USERS_INDEX_KEY = "users_index"
HASH_SCHEME = "pbkdf2_sha256"

_EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


class AuthError(Exception):
    """Base class for user-visible auth failures."""


class EmailAlreadyRegistered(AuthError):
    def __init__(self):
        super().__init__("An account with this email already exists")


class InvalidCredentials(AuthError):
    def __init__(self):
        super().__init__("Invalid email or password")


class AccountStorageError(AuthError):
    """The account or session could not be persisted."""


# ---------------------------------------------------------------------------
# Request / result models
# ---------------------------------------------------------------------------

def _valid_email(value: str) -> str:
    value = value.strip()
    if not _EMAIL_RE.match(value):
        raise ValueError("Invalid email address")
    return value


class RegisterRequest(CamelModel):
    first_name: str = Field(..., min_length=1, description="First name is required")
    last_name: str = Field(..., min_length=1, description="Last name is required")
    email: str
    password: str = Field(..., min_length=6, description="Password must be at least 6 characters")

    @field_validator("email")
    @classmethod
    def _email(cls, value: str) -> str:
        return _valid_email(value)


class LoginRequest(BaseModel):
    email: str
    password: str = Field(..., min_length=1)

    @field_validator("email")
    @classmethod
    def _email(cls, value: str) -> str:
        return _valid_email(value)


class AuthResult(CamelModel):
    success: bool = True
    user: PublicUser
    token: str


class MeResult(CamelModel):
    user: PublicUser | None = None


class UserList(CamelModel):
    users: list[PublicUser] = Field(default_factory=list)
    total: int = 0


# ---------------------------------------------------------------------------
# Password hashing
# ---------------------------------------------------------------------------

def hash_password(password: str, iterations: int | None = None) -> str:
    iterations = iterations or settings.password_hash_iterations
    salt = secrets.token_hex(16)
    digest = hashlib.pbkdf2_hmac("sha256", password.encode("utf-8"), salt.encode("ascii"), iterations)
    return f"{HASH_SCHEME}${iterations}${salt}${digest.hex()}"


def is_hashed(stored: str) -> bool:
    return stored.startswith(f"{HASH_SCHEME}$")


def verify_password(password: str, stored: str) -> bool:
    if not is_hashed(stored):
        # Legacy plaintext record
        return hmac.compare_digest(password.encode("utf-8"), stored.encode("utf-8"))
    try:
        _, iterations, salt, expected = stored.split("$", 3)
        digest = hashlib.pbkdf2_hmac(
            "sha256", password.encode("utf-8"), salt.encode("ascii"), int(iterations),
        )
    except ValueError:
        logger.error("Malformed password hash in stored user record")
        return False
    return hmac.compare_digest(digest.hex(), expected)


def _random_suffix() -> str:
    return secrets.token_hex(8)


# ---------------------------------------------------------------------------
# Service
# ---------------------------------------------------------------------------

class AuthService:
    """Users, index and sessions, each under its own key."""

    def __init__(
        self,
        store: KeyValueStore,
        session_key_length: int | None = None,
        hash_iterations: int | None = None,
    ):
        self.store = store
        self.session_key_length = (
            session_key_length if session_key_length is not None
            else settings.session_token_key_length
        )
        self.hash_iterations = hash_iterations or settings.password_hash_iterations

    # -- keys ----------------------------------------------------------------

    @staticmethod
    def user_key(user_id: str) -> str:
        return user_id if user_id.startswith("user_") else f"user_{user_id}"

    def session_key(self, token: str) -> str:
        if self.session_key_length > 0:
            token = token[: self.session_key_length]
        return f"session_{token}"

    # -- users ---------------------------------------------------------------

    async def get_users_index(self) -> UsersIndex:
        raw = await self.store.get(USERS_INDEX_KEY)
        if not isinstance(raw, dict):
            return UsersIndex()
        try:
            return UsersIndex.model_validate(raw)
        except ValueError as exc:
            logger.error("Users index unreadable – treating as empty: %s", exc)
            return UsersIndex()

    async def get_user_by_id(self, user_id: str) -> StoredUser | None:
        raw = await self.store.get(self.user_key(user_id))
        if not isinstance(raw, dict):
            return None
        try:
            return StoredUser.model_validate(raw)
        except ValueError as exc:
            logger.error("Stored user %s unreadable: %s", user_id, exc)
            return None

    async def get_user_by_email(self, email: str) -> StoredUser | None:
        email_key = email.strip().lower()
        index = await self.get_users_index()
        user_id = index.email_to_id.get(email_key)
        if not user_id:
            # Older index entries may not be normalised
            for key, candidate in index.email_to_id.items():
                if key.strip().lower() == email_key:
                    user_id = candidate
                    break
        if not user_id:
            return None
        return await self.get_user_by_id(user_id)

    async def save_user(self, user: StoredUser) -> bool:
        """Write the user record, then add it to the index."""
        if not await self.store.set(self.user_key(user.id), user.to_storage()):
            logger.error("Failed to save user record %s", user.id)
            return False
        index = await self.get_users_index()
        if user.id not in index.user_ids:
            index.user_ids.append(user.id)
        index.email_to_id[user.email.strip().lower()] = user.id
        saved = await self.store.set(USERS_INDEX_KEY, index.to_storage())
        if not saved:
            logger.error("Failed to update users index for %s", user.id)
        return saved

    # -- sessions ------------------------------------------------------------

    async def _create_session(self, user_id: str) -> str:
        token = f"{user_id}_{int(time.time() * 1000)}_{secrets.token_urlsafe(24)}"
        session = StoredSession(user_id=user_id)
        if not await self.store.set(self.session_key(token), session.to_storage()):
            raise AccountStorageError("Could not create a session")
        return token

    async def _get_session(self, token: str) -> StoredSession | None:
        raw = await self.store.get(self.session_key(token))
        if not isinstance(raw, dict):
            return None
        try:
            return StoredSession.model_validate(raw)
        except ValueError:
            logger.error("Stored session unreadable")
            return None

    # -- operations ----------------------------------------------------------

    async def register(self, first_name: str, last_name: str, email: str, password: str) -> AuthResult:
        request = RegisterRequest(
            first_name=first_name, last_name=last_name, email=email, password=password,
        )
        email_key = request.email.lower()
        if await self.get_user_by_email(email_key) is not None:
            raise EmailAlreadyRegistered()

        user = StoredUser(
            id=f"user_{int(time.time() * 1000)}_{_random_suffix()}",
            email=email_key,
            first_name=request.first_name,
            last_name=request.last_name,
            password=hash_password(request.password, self.hash_iterations),
        )
        if not await self.save_user(user):
            raise AccountStorageError("Could not save the new account")

        token = await self._create_session(user.id)
        logger.info("User registered: %s", user.id)
        return AuthResult(user=user.public(), token=token)

    async def login(self, email: str, password: str) -> AuthResult:
        request = LoginRequest(email=email, password=password)
        user = await self.get_user_by_email(request.email)
        if user is None or not verify_password(request.password, user.password):
            raise InvalidCredentials()

        if not is_hashed(user.password):
            user = user.model_copy(update={"password": hash_password(request.password, self.hash_iterations)})
            if await self.store.set(self.user_key(user.id), user.to_storage()):
                logger.info("Upgraded plaintext password for %s", user.id)

        token = await self._create_session(user.id)
        logger.info("User logged in: %s", user.id)
        return AuthResult(user=user.public(), token=token)

    async def get_me(self, token: str | None) -> MeResult:
        if not token:
            return MeResult()
        session = await self._get_session(token)
        if session is None:
            return MeResult()
        user = await self.get_user_by_id(session.user_id)
        return MeResult(user=user.public() if user else None)

    async def logout(self, token: str | None) -> dict:
        if token and not await self.store.delete(self.session_key(token)):
            logger.warning("Failed to delete session on logout")
        return {"success": True}

    async def get_all_users(self) -> UserList:
        index = await self.get_users_index()
        users: list[PublicUser] = []
        for user_id in index.user_ids:
            user = await self.get_user_by_id(user_id)
            if user is not None:
                users.append(user.public())
        return UserList(users=users, total=len(users))
