"""Signed, short-lived access tokens for camera stream endpoints."""

import time
from dataclasses import dataclass
from typing import Callable, Optional

from jose import JWTError, jwt

from config import Settings, get_settings
from errors import AuthError, AuthReason, NotFoundError

Clock = Callable[[], float]


@dataclass(frozen=True)
class AccessToken:
    """An issued token; never stored server-side"""
    token: str
    camera_id: str
    issued_at: int
    ttl: int

    @property
    def expires_at(self) -> int:
        return self.issued_at + self.ttl

    def to_dict(self):
        return {
            "token": self.token,
            "cameraId": self.camera_id,
            "expiresIn": self.ttl,
        }


def create_access_token(camera_id: str, secret_key: str, algorithm: str, ttl: int, now: float) -> AccessToken:
    """Create a signed JWT bound to one camera."""
    issued_at = int(now)
    claims = {"cameraId": camera_id, "iat": issued_at, "exp": issued_at + ttl}
    token = jwt.encode(claims, secret_key, algorithm=algorithm)
    return AccessToken(token=token, camera_id=camera_id, issued_at=issued_at, ttl=ttl)


def decode_access_token(token: Optional[str], secret_key: str, algorithm: str, now: float) -> str:
    """
    Verify signature and expiry, returning the camera id.

    Expiry is checked against `now` rather than the wall clock so callers can
    verify with virtual time.

    Raises:
        AuthError: missing_token, expired or invalid
    """
    if not token:
        raise AuthError(AuthReason.MISSING_TOKEN)
    try:
        payload = jwt.decode(
            token,
            secret_key,
            algorithms=[algorithm],
            options={"verify_exp": False},
        )
    except JWTError:
        raise AuthError(AuthReason.INVALID)

    camera_id = payload.get("cameraId")
    expires_at = payload.get("exp")
    if not isinstance(camera_id, str) or not isinstance(expires_at, int):
        raise AuthError(AuthReason.INVALID)
    if now >= expires_at:
        raise AuthError(AuthReason.EXPIRED)
    return camera_id


class TokenService:
    """Issues and verifies per-camera access tokens"""

    def __init__(self, registry, settings: Optional[Settings] = None, clock: Clock = time.time):
        self.registry = registry
        self.settings = settings or get_settings()
        self.clock = clock

    def issue_token(self, camera_id: str, ttl: Optional[int] = None) -> AccessToken:
        """
        Raises:
            NotFoundError: Camera is not registered
        """
        if not self.registry.contains(camera_id):
            raise NotFoundError("Camera", camera_id)
        return create_access_token(
            camera_id,
            self.settings.secret_key,
            self.settings.jwt_algorithm,
            ttl if ttl is not None else self.settings.token_ttl_seconds,
            self.clock(),
        )

    def verify_token(self, token: Optional[str]) -> str:
        return decode_access_token(
            token, self.settings.secret_key, self.settings.jwt_algorithm, self.clock()
        )


# Global token service instance
_token_service: Optional[TokenService] = None


def get_token_service() -> TokenService:
    """Get or create the token service singleton."""
    global _token_service
    if _token_service is None:
        from services.registry import get_registry
        _token_service = TokenService(get_registry())
    return _token_service
