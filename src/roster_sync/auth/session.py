"""Authenticated session source.

The core only needs ``(uid, email, key)`` for the current user. Identity comes
from the authentication provider's access token; the encryption key comes from
the device key store and is never logged.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any

import jwt

from roster_sync.auth.device_keys import DeviceKeyStore
from roster_sync.domain.models import UserRole
from roster_sync.errors import NotAuthenticatedError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Session:
    """Immutable identity of the acting user.

    SECURITY: ``key`` is excluded from repr so it cannot leak via logging.
    """

    uid: str
    email: str
    key: bytes = field(repr=False)
    role: UserRole | None = None

    def with_role(self, role: UserRole | None) -> "Session":
        return Session(uid=self.uid, email=self.email, key=self.key, role=role)


class AuthProvider(ABC):
    @abstractmethod
    def current_session(self) -> Session:
        """Return the active session or raise NotAuthenticatedError."""

    def current_session_optional(self) -> Session | None:
        try:
            return self.current_session()
        except NotAuthenticatedError:
            return None


class StaticAuthProvider(AuthProvider):
    """Holds a session set explicitly by the host application."""

    def __init__(self, session: Session | None = None) -> None:
        self._session = session

    def sign_in(self, session: Session) -> None:
        self._session = session

    def sign_out(self) -> None:
        self._session = None

    def current_session(self) -> Session:
        if self._session is None:
            raise NotAuthenticatedError("User not authenticated")
        return self._session


class TokenValidationError(NotAuthenticatedError):
    """The access token was rejected."""

    def __init__(self, message: str, code: str) -> None:
        super().__init__(message)
        self.code = code


class JwtAuthProvider(AuthProvider):
    """Builds sessions from HS256 access tokens issued by the auth backend."""

    def __init__(
        self,
        secret: str,
        key_store: DeviceKeyStore,
        audience: str = "authenticated",
    ) -> None:
        if not secret:
            raise ValueError("A JWT secret is required to verify access tokens")
        self._secret = secret
        self._audience = audience
        self._key_store = key_store
        self._session: Session | None = None

    def decode(self, token: str) -> dict[str, Any]:
        try:
            return jwt.decode(
                token,
                self._secret,
                algorithms=["HS256"],
                audience=self._audience,
                options={"require": ["sub", "exp"]},
            )
        except jwt.ExpiredSignatureError as exc:
            raise TokenValidationError("Access token expired", "token_expired") from exc
        except jwt.InvalidTokenError as exc:
            raise TokenValidationError(f"Invalid access token: {exc}", "invalid_token") from exc

    def sign_in(self, access_token: str, role: UserRole | None = None) -> Session:
        claims = self.decode(access_token)
        uid = str(claims["sub"])
        email = str(claims.get("email") or "")
        if not email:
            raise TokenValidationError("Access token has no email claim", "missing_email")
        session = Session(uid=uid, email=email, key=self._key_store.get_or_create(uid), role=role)
        self._session = session
        logger.info("Session started for user %s", uid)
        return session

    def update_role(self, role: UserRole | None) -> None:
        if self._session is not None:
            self._session = self._session.with_role(role)

    def sign_out(self) -> None:
        self._session = None

    def current_session(self) -> Session:
        if self._session is None:
            raise NotAuthenticatedError("User not authenticated")
        return self._session
