"""Bearer-session authentication for administrators and pilgrims."""

from __future__ import annotations

import re
import secrets
import threading
from typing import Optional

from backend.domain.models import Identity, Role
from backend.utils.config import Settings, get_settings


_USER_ID_PATTERN = re.compile(r"^[A-Za-z0-9_.@-]{3,64}$")


class AuthenticationError(Exception):
    """Base authentication failure."""


class AdminTokenNotConfiguredError(AuthenticationError):
    """Raised when ADMIN_TOKEN is missing."""


class InvalidAdminTokenError(AuthenticationError):
    """Raised when provided token is invalid."""


class InvalidSessionError(AuthenticationError):
    """Raised when a bearer token does not map to an active session."""


class AuthService:
    """Validates login credentials and maps bearer tokens to identities."""

    def __init__(self, settings: Optional[Settings] = None) -> None:
        self._settings = settings or get_settings()
        self._sessions: dict[str, Identity] = {}
        self._lock = threading.Lock()

    @property
    def auth_enabled(self) -> bool:
        return bool(self._settings.admin_token)

    def _expected_token(self) -> str:
        if not self._settings.admin_token:
            raise AdminTokenNotConfiguredError(
                "ADMIN_TOKEN is not configured. Set ADMIN_TOKEN in environment variables."
            )
        return self._settings.admin_token

    def _open_session(self, identity: Identity) -> str:
        token = secrets.token_urlsafe(32)
        with self._lock:
            self._sessions[token] = identity
        return token

    def login(self, provided_admin_token: str) -> str:
        expected = self._expected_token()
        if not secrets.compare_digest(provided_admin_token, expected):
            raise InvalidAdminTokenError("Invalid admin token")
        return self._open_session(
            Identity(user_id="admin", role=Role.ADMIN, name="Administrator")
        )

    def login_pilgrim(self, user_id: str, name: str, email: str = "", phone: str = "") -> str:
        """Open a pilgrim session for an identity vouched for by the caller."""
        user_id = user_id.strip()
        name = name.strip()
        if _USER_ID_PATTERN.fullmatch(user_id) is None:
            raise AuthenticationError(
                "user_id must be 3-64 characters of letters, digits, '.', '_', '@' or '-'"
            )
        if user_id == "admin":
            raise AuthenticationError("user_id 'admin' is reserved")
        if len(name) < 2:
            raise AuthenticationError("name must be at least 2 characters")
        return self._open_session(
            Identity(
                user_id=user_id,
                role=Role.PILGRIM,
                name=name,
                email=email.strip(),
                phone=phone.strip(),
            )
        )

    def resolve_bearer_token(self, bearer_token: str) -> Identity:
        with self._lock:
            identity = self._sessions.get(bearer_token)
        if identity is None:
            raise InvalidSessionError("Invalid or expired bearer token. Login first.")
        return identity

    def logout(self, bearer_token: str) -> None:
        with self._lock:
            self._sessions.pop(bearer_token, None)
