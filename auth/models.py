"""
auth/models.py -- Domain dataclasses for authentication entities.

Pattern: Data class (pure data container, zero logic). Stores and services
do the work; these classes only own the shape.

Layer rule: no imports from api/ or cache/.
"""

from __future__ import annotations

from dataclasses import dataclass


@dataclass
class User:
    """A credential record as stored in the users table.

    email is always lower-cased by the store before it is written or queried,
    so two signups that differ only in case collide on the UNIQUE index.

    refresh_token_hash is the HMAC of the single currently valid refresh
    token. None means the user is signed out everywhere.
    """

    email: str
    role: str  # "user", "admin"
    id: str | None = None
    hashed_password: str | None = None
    refresh_token_hash: str | None = None
    created_at: str | None = None


@dataclass
class UserProfile:
    """Public view of a User. Carries no credential material."""

    id: str
    email: str
    role: str
    created_at: str | None = None


@dataclass
class TokenPair:
    access_token: str
    refresh_token: str


@dataclass
class SigninResult:
    """Return value of AuthService.signin().

    cookie is a serialized Set-Cookie value for the access token; the route
    layer appends it to the response verbatim.
    """

    tokens: TokenPair
    cookie: str
