"""Supabase access-token verification."""

from dataclasses import dataclass

from jose import JWTError, jwt

from account_api.config import settings


@dataclass(frozen=True)
class AuthenticatedUser:
    """The caller, as asserted by a verified Supabase access token."""

    id: str
    email: str


class InvalidTokenError(Exception):
    """The bearer token is malformed, expired, or not a user access token."""


class IdentityVerifier:
    """Verify Supabase-issued JWTs locally with the project's JWT secret."""

    def __init__(self, secret: str, audience: str, algorithm: str = "HS256") -> None:
        self._secret = secret
        self._audience = audience
        self._algorithm = algorithm

    def verify(self, token: str) -> AuthenticatedUser:
        """Decode ``token`` and return the user it was issued to.

        Raises:
            InvalidTokenError: If the signature, expiry or audience check fails,
                or the token carries no subject (e.g. the anon key).
        """
        try:
            payload = jwt.decode(
                token,
                self._secret,
                algorithms=[self._algorithm],
                audience=self._audience,
            )
        except JWTError as e:
            raise InvalidTokenError(str(e)) from e

        sub: str | None = payload.get("sub")
        if not sub:
            raise InvalidTokenError("Token has no subject")

        return AuthenticatedUser(id=sub, email=payload.get("email") or "")


def get_identity_verifier() -> IdentityVerifier:
    """FastAPI dependency: verifier configured from settings."""
    return IdentityVerifier(
        secret=settings.supabase_jwt_secret,
        audience=settings.supabase_jwt_audience,
        algorithm=settings.jwt_algorithm,
    )
