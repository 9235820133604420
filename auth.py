"""
Identity and sessions

IdentityService signs users up and in (email/password or a verified OAuth
identity) and hands out opaque bearer tokens. Only a SHA-256 of each token is
stored. Session state changes go out on an AuthEvents stream;
ProfileService.bootstrap listens for SIGNED_IN and creates the user's
profile the first time they show up.
"""

import hashlib
import logging
import secrets
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Optional, Tuple

from pymongo.database import Database
from pymongo.errors import DuplicateKeyError, PyMongoError
from werkzeug.security import check_password_hash, generate_password_hash

from catalog import to_object_id
from database import create_document, to_storage_datetime, utcnow
from errors import AuthError, DataError, InputError
from schemas import User, UserProfile, from_storage
from subscriptions import Listeners, Subscription

logger = logging.getLogger(__name__)

USERS = "users"
SESSIONS = "sessions"
PROFILES = "user_profiles"

MIN_PASSWORD_LENGTH = 6

SIGNED_IN = "signed_in"
SIGNED_OUT = "signed_out"
TOKEN_REFRESHED = "token_refreshed"
USER_UPDATED = "user_updated"


@dataclass
class Session:
    access_token: str
    user: User
    expires_at: datetime

    @property
    def user_id(self) -> str:
        return self.user.id


@dataclass
class AuthEvent:
    type: str
    session: Optional[Session] = None
    user: Optional[User] = None


AuthListener = Callable[[AuthEvent], None]


class AuthEvents:
    def __init__(self):
        self._listeners: Listeners[AuthListener] = Listeners()

    def subscribe(self, listener: AuthListener) -> Subscription:
        return self._listeners.add(listener)

    def emit(self, event: AuthEvent) -> None:
        logger.debug("Auth event %s", event.type)
        self._listeners.notify(event)


def hash_token(token: str) -> str:
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


def _normalize_email(email: str) -> str:
    return (email or "").strip().lower()


class IdentityService:
    def __init__(self, db: Database, events: AuthEvents, session_ttl_seconds: int,
                 oauth_providers: List[str], clock: Callable[[], datetime] = utcnow):
        self.db = db
        self.events = events
        self.session_ttl = timedelta(seconds=session_ttl_seconds)
        self.oauth_providers = set(oauth_providers)
        self.clock = clock

    # -- users --

    def _find_user(self, email: str) -> Optional[User]:
        try:
            doc = self.db[USERS].find_one({"email": _normalize_email(email)})
        except PyMongoError as e:
            raise DataError("fetch user", e)
        return User.from_document(doc)

    def get_user(self, user_id: str) -> Optional[User]:
        oid = to_object_id(user_id)
        if oid is None:
            return None
        try:
            doc = self.db[USERS].find_one({"_id": oid})
        except PyMongoError as e:
            raise DataError("fetch user", e)
        return User.from_document(doc)

    def _create_user(self, email: str, password_hash: Optional[str], provider: str,
                     metadata: Dict[str, Any]) -> User:
        user = User(email=_normalize_email(email), password_hash=password_hash,
                    provider=provider, metadata=metadata)
        try:
            user_id = create_document(self.db, USERS, user)
        except DuplicateKeyError:
            raise AuthError("User already registered")
        except PyMongoError as e:
            raise DataError("create account", e)
        return user.model_copy(update={"id": user_id})

    # -- sessions --

    def _open_session(self, user: User, event_type: str = SIGNED_IN) -> Session:
        token = secrets.token_urlsafe(32)
        expires_at = self.clock() + self.session_ttl
        try:
            self.db[SESSIONS].insert_one({
                "_id": hash_token(token),
                "user_id": user.id,
                "expires_at": to_storage_datetime(expires_at),
                "created_at": to_storage_datetime(self.clock()),
            })
        except PyMongoError as e:
            raise DataError("start session", e)
        session = Session(access_token=token, user=user, expires_at=expires_at)
        self.events.emit(AuthEvent(event_type, session=session, user=user))
        return session

    def _drop_session(self, token: str) -> None:
        try:
            self.db[SESSIONS].delete_one({"_id": hash_token(token)})
        except PyMongoError as e:
            raise DataError("end session", e)

    def sign_up(self, email: str, password: str, metadata: Optional[Dict[str, Any]] = None,
                confirm_password: Optional[str] = None) -> Session:
        if not _normalize_email(email):
            raise InputError("Email is required")
        if confirm_password is not None and password != confirm_password:
            raise InputError("Passwords do not match")
        if len(password or "") < MIN_PASSWORD_LENGTH:
            raise InputError(f"Password must be at least {MIN_PASSWORD_LENGTH} characters long")
        if self._find_user(email) is not None:
            raise AuthError("User already registered")

        user = self._create_user(email, generate_password_hash(password), "email", metadata or {})
        logger.info("Registered user %s", user.id)
        return self._open_session(user)

    def sign_in_with_password(self, email: str, password: str) -> Session:
        user = self._find_user(email)
        if user is None or not user.password_hash or not check_password_hash(user.password_hash, password or ""):
            raise AuthError("Invalid login credentials")
        logger.info("User %s signed in", user.id)
        return self._open_session(user)

    def sign_in_with_oauth(self, provider: str, email: str, metadata: Optional[Dict[str, Any]] = None) -> Session:
        """Sign in an identity the provider's callback has already verified."""
        if provider not in self.oauth_providers:
            raise AuthError(f"Unsupported provider: {provider}")
        if not _normalize_email(email):
            raise AuthError(f"Failed to sign in with {provider}")
        user = self._find_user(email)
        if user is None:
            user = self._create_user(email, None, provider, metadata or {})
            logger.info("Created user %s from %s sign-in", user.id, provider)
        logger.info("User %s signed in with %s", user.id, provider)
        return self._open_session(user)

    def get_session(self, token: Optional[str]) -> Optional[Session]:
        if not token:
            return None
        try:
            doc = self.db[SESSIONS].find_one({"_id": hash_token(token)})
        except PyMongoError as e:
            raise DataError("fetch session", e)
        if not doc:
            return None
        expires_at = from_storage(doc["expires_at"])
        if expires_at <= self.clock():
            self._drop_session(token)
            return None
        user = self.get_user(doc["user_id"])
        if user is None:
            return None
        return Session(access_token=token, user=user, expires_at=expires_at)

    def require_session(self, token: Optional[str]) -> Session:
        session = self.get_session(token)
        if session is None:
            raise AuthError("Please sign in to continue")
        return session

    def refresh_session(self, token: str) -> Session:
        session = self.require_session(token)
        self._drop_session(token)
        return self._open_session(session.user, TOKEN_REFRESHED)

    def sign_out(self, token: str) -> None:
        session = self.get_session(token)
        self._drop_session(token)
        if session is not None:
            logger.info("User %s signed out", session.user_id)
            self.events.emit(AuthEvent(SIGNED_OUT, user=session.user))


def names_from_metadata(email: str, metadata: Dict[str, Any]) -> Tuple[str, str]:
    """First/last name from whatever the sign-up form or OAuth provider gave us."""
    full = metadata.get("full_name") or metadata.get("name") or ""
    parts = full.split()
    first = (
        metadata.get("given_name")
        or metadata.get("first_name")
        or (parts[0] if parts else None)
        or (email.split("@")[0] if email else None)
        or "User"
    )
    last = (
        metadata.get("family_name")
        or metadata.get("last_name")
        or " ".join(parts[1:])
    )
    return first, last


class ProfileService:
    def __init__(self, db: Database, events: Optional[AuthEvents] = None):
        self.db = db
        self.events = events

    def get(self, user_id: str) -> Optional[UserProfile]:
        try:
            doc = self.db[PROFILES].find_one({"_id": user_id})
        except PyMongoError as e:
            raise DataError("fetch profile", e)
        return UserProfile.from_document(doc)

    def ensure_profile(self, user: User) -> UserProfile:
        existing = self.get(user.id)
        if existing is not None:
            return existing
        first, last = names_from_metadata(user.email, user.metadata)
        now = to_storage_datetime(utcnow())
        try:
            self.db[PROFILES].insert_one({
                "_id": user.id,
                "first_name": first,
                "last_name": last,
                "created_at": now,
                "updated_at": now,
            })
            logger.info("Created profile for user %s", user.id)
        except DuplicateKeyError:
            # Created concurrently by another sign-in
            pass
        except PyMongoError as e:
            raise DataError("create profile", e)
        return self.get(user.id)

    def update(self, user: User, first_name: Optional[str] = None, last_name: Optional[str] = None,
               phone: Optional[str] = None) -> UserProfile:
        self.ensure_profile(user)
        changes: Dict[str, Any] = {
            k: v.strip()
            for k, v in (("first_name", first_name), ("last_name", last_name), ("phone", phone))
            if v is not None
        }
        changes["updated_at"] = to_storage_datetime(utcnow())
        try:
            self.db[PROFILES].update_one({"_id": user.id}, {"$set": changes})
        except PyMongoError as e:
            raise DataError("update profile", e)
        if self.events is not None:
            self.events.emit(AuthEvent(USER_UPDATED, user=user))
        return self.get(user.id)

    def bootstrap(self, event: AuthEvent) -> None:
        if event.type == SIGNED_IN and event.user is not None:
            self.ensure_profile(event.user)
