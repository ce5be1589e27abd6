"""Session layer over the identity provider's ``{uid, role}`` claims."""

from __future__ import annotations

import secrets
from threading import Lock
from typing import Optional

from backend.domain.models import Actor, Role, UserProfile
from backend.repository.data_repository import DataRepository, PersistenceError
from backend.utils.config import Settings, get_settings
from backend.utils.logger import get_logger


logger = get_logger(__name__)


class AuthenticationError(Exception):
    """Base authentication failure."""


class InvalidCredentialsError(AuthenticationError):
    """Raised when the uid is unknown or the access key does not match."""


class InvalidSessionTokenError(AuthenticationError):
    """Raised when a bearer token was never issued or has been revoked."""


class RegistrationError(Exception):
    """Raised when a user profile cannot be created."""


class AuthService:
    """Issues bearer tokens for registered users and resolves them to actors."""

    def __init__(
        self,
        repository: Optional[DataRepository] = None,
        settings: Optional[Settings] = None,
    ) -> None:
        self._settings = settings or get_settings()
        self._repository = repository or DataRepository(self._settings)
        self._sessions: dict[str, Actor] = {}
        self._lock = Lock()

    @property
    def access_key_required(self) -> bool:
        return bool(self._settings.identity_access_key)

    def register_user(
        self,
        *,
        uid: str,
        email: str,
        display_name: str,
        role: Role,
        department: Optional[str] = None,
        phone: Optional[str] = None,
    ) -> UserProfile:
        if not uid.strip() or not email.strip() or not display_name.strip():
            raise RegistrationError("uid, email and display_name must be non-empty")
        profile = UserProfile(
            uid=uid.strip(),
            email=email.strip().lower(),
            display_name=display_name.strip(),
            role=role,
            department=department,
            phone=phone,
        )
        try:
            self._repository.create_user(profile)
        except PersistenceError as exc:
            raise RegistrationError(str(exc)) from exc
        logger.info("User registered | uid=%s | role=%s", profile.uid, profile.role.value)
        return profile

    def login(self, uid: str, access_key: Optional[str] = None) -> str:
        if self.access_key_required:
            expected = self._settings.identity_access_key or ""
            if access_key is None or not secrets.compare_digest(access_key, expected):
                raise InvalidCredentialsError("Invalid access key")
        profile = self._repository.get_user(uid)
        if profile is None:
            raise InvalidCredentialsError(f"Unknown user {uid}")
        token = secrets.token_urlsafe(32)
        with self._lock:
            self._sessions[token] = Actor(uid=profile.uid, role=profile.role)
        logger.info("Session issued | uid=%s | role=%s", profile.uid, profile.role.value)
        return token

    def logout(self, bearer_token: str) -> None:
        with self._lock:
            self._sessions.pop(bearer_token, None)

    def resolve_actor(self, bearer_token: str) -> Actor:
        with self._lock:
            actor = self._sessions.get(bearer_token)
        if actor is None:
            raise InvalidSessionTokenError("Invalid or expired bearer token. Login first.")
        return actor
