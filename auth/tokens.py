"""
auth/tokens.py -- Password hashing, JWT issuance, and the auth cookie.

Security design decisions:
  JWT: python-jose with HS256. Access and refresh tokens are signed with
       different secrets and carry sub (user id), role, typ, iat, exp and a
       random jti. The jti makes every token unique (two signins in the same
       second still produce different refresh tokens) and is the identifier
       used by the revocation set. verify() returns None on any failure --
       callers turn that into NotFoundError or a 401.

  Passwords: bcrypt, used directly (no passlib wrapper). The cost factor is
       fixed at _BCRYPT_ROUNDS. _DUMMY_HASH enables timing equalization in
       AuthService.validate_user() so response time does not reveal whether
       an email is registered [C1].

  Refresh tokens: only HMAC-SHA256(REFRESH_SECRET, token) is persisted. A JWT
       is far longer than bcrypt's 72-byte input limit, and two tokens for the
       same user share their first 72 bytes, so bcrypt cannot tell them apart.
       The HMAC covers the whole token, and a leaked users table is useless
       without REFRESH_SECRET. Comparison uses hmac.compare_digest.

  Cookie: the access token is delivered as an HttpOnly "Bearer" cookie,
       Secure iff ENV=production, SameSite=strict, Path=/, Max-Age=3600.

Layer rule: no imports from api/ or cache/. Import from core/ is allowed.
"""

from __future__ import annotations

import hashlib
import hmac
import uuid
from datetime import datetime, timedelta, timezone

import bcrypt
from jose import JWTError, jwt
from jose.exceptions import JOSEError
from starlette.responses import Response

from core.config import Settings

_ALGORITHM = "HS256"
_BCRYPT_ROUNDS = 10

AUTH_COOKIE_NAME = "Bearer"
ACCESS = "access"
REFRESH = "refresh"

# ---------------------------------------------------------------------------
# Password hashing
# ---------------------------------------------------------------------------


def hash_password(plain: str) -> str:
    """Return a salted bcrypt hash of the given plaintext password.

    Raises ValueError for an empty password. Passwords longer than 72 bytes
    are rejected at the API layer (Pydantic max_length) before reaching here.
    """
    if not plain:
        raise ValueError("Password is required for hashing.")
    return bcrypt.hashpw(plain.encode("utf-8"), bcrypt.gensalt(rounds=_BCRYPT_ROUNDS)).decode("utf-8")


def verify_password(plain: str, hashed: str) -> bool:
    """Return True if the plaintext password matches the bcrypt hash."""
    try:
        return bcrypt.checkpw(plain.encode("utf-8"), hashed.encode("utf-8"))
    except (TypeError, ValueError):
        return False


# Computed once at module load so the first signin attempt is not measurably
# slower than subsequent ones [C1].
_DUMMY_HASH: str = hash_password("billing_timing_dummy")


def verify_password_or_dummy(plain: str, hashed: str | None) -> bool:
    """Run bcrypt even when there is no stored hash, then report the result.

    Unknown email: bcrypt runs against _DUMMY_HASH (same cost as a real check).
    """
    if hashed is None:
        verify_password(plain, _DUMMY_HASH)
        return False
    return verify_password(plain, hashed)


# ---------------------------------------------------------------------------
# JWT issuance
# ---------------------------------------------------------------------------


class TokenIssuer:
    """Signs and decodes access/refresh JWTs for one Settings instance."""

    def __init__(self, settings: Settings) -> None:
        self._settings = settings

    def options(self, token_type: str) -> tuple[str, int]:
        """Return (secret, expires_in_seconds) for "access" or "refresh"."""
        if token_type == ACCESS:
            return self._settings.access_secret, self._settings.access_expires_in
        if token_type == REFRESH:
            return self._settings.refresh_secret, self._settings.refresh_expires_in
        raise ValueError(f"Unknown token type: {token_type!r}")

    def sign(self, payload: dict, secret: str, expires_in: int) -> str:
        """Encode payload plus iat/exp/jti as an HS256 JWT."""
        now = datetime.now(timezone.utc)
        claims = {
            **payload,
            "iat": now,
            "exp": now + timedelta(seconds=expires_in),
            "jti": uuid.uuid4().hex,
        }
        return jwt.encode(claims, secret, algorithm=_ALGORITHM)

    def issue(self, user_id: str, role: str, token_type: str) -> str:
        secret, expires_in = self.options(token_type)
        return self.sign({"sub": user_id, "role": role, "typ": token_type}, secret, expires_in)

    def decode(self, token: str) -> dict | None:
        """Return the claims WITHOUT checking signature or expiry, or None if malformed.

        Only use this to locate a record; never trust the result on its own.
        """
        try:
            claims = jwt.get_unverified_claims(token)
        except JOSEError:
            return None
        if not isinstance(claims, dict) or "sub" not in claims:
            return None
        return claims

    def verify(self, token: str, token_type: str) -> dict | None:
        """Verify signature, expiry and token type. Returns claims or None."""
        secret, _ = self.options(token_type)
        try:
            claims = jwt.decode(token, secret, algorithms=[_ALGORITHM])
        except JWTError:
            return None
        if claims.get("typ") != token_type or "sub" not in claims or "jti" not in claims:
            return None
        return claims

    # ------------------------------------------------------------------
    # Refresh-token hashing
    # ------------------------------------------------------------------

    def hash_refresh_token(self, token: str) -> str:
        """Return HMAC-SHA256(REFRESH_SECRET, token) as a hex string."""
        return hmac.new(
            self._settings.refresh_secret.encode(),
            token.encode(),
            hashlib.sha256,
        ).hexdigest()

    def refresh_token_matches(self, token: str, stored_hash: str | None) -> bool:
        if not stored_hash:
            return False
        return hmac.compare_digest(self.hash_refresh_token(token), stored_hash)

    # ------------------------------------------------------------------
    # Cookie
    # ------------------------------------------------------------------

    def build_auth_cookie(self, token: str) -> str:
        """Serialize the access-token cookie as a Set-Cookie header value.

        Starlette's Response does the quoting and attribute formatting; the
        response object itself is discarded.
        """
        response = Response()
        response.set_cookie(
            AUTH_COOKIE_NAME,
            value=token,
            max_age=self._settings.cookie_max_age,
            path="/",
            secure=self._settings.is_production,
            httponly=True,
            samesite="strict",
        )
        return response.headers["set-cookie"]
