"""
auth/service.py -- AuthService: signup, signin, signout, refresh, password reset.

AuthService coordinates three collaborators, all passed in by the caller:
  UserStore       credential records (sync SQLAlchemy, run via asyncio.to_thread)
  cache           EphemeralCache -- OTP codes and the revoked-token set
  TokenIssuer     JWT signing/decoding, refresh-token HMAC, cookie
  OtpGenerator    TOTP codes for password reset

Session model:
  Each signin issues an access+refresh pair and stores the HMAC of the new
  refresh token on the user row, overwriting the previous one. Only the most
  recent refresh token is therefore accepted. Concurrent signins for the same
  user race on that write; the last writer wins.

  Signout clears the stored refresh hash and adds the access token's jti to
  the "revokedToken" set. Revocation is add-only.

Error policy:
  Expected failures raise ConflictError / NotFoundError with a descriptive
  message. Unexpected failures inside multi-step operations are logged and
  re-raised as InternalError without internal detail. Nothing is retried.

Layer rule: no imports from api/. cache/ is referenced for typing only.
"""

from __future__ import annotations

import asyncio
import logging
import re
from typing import TYPE_CHECKING

from auth.models import SigninResult, TokenPair, User, UserProfile
from auth.otp import OtpGenerator
from auth.store import UserStore, normalize_email
from auth.tokens import ACCESS, REFRESH, TokenIssuer, hash_password, verify_password_or_dummy
from core.config import Settings
from core.errors import ConflictError, InternalError, NotFoundError

if TYPE_CHECKING:
    from cache.store import EphemeralCache

logger = logging.getLogger("billing.auth")

REVOKED_TOKENS_KEY = "revokedToken"
_EMAIL_RE = re.compile(r"^[a-z0-9._%+-]+@[a-z0-9.-]+\.[a-z]{2,}$")


def otp_key(user_id: str) -> str:
    return f"{user_id}:otp"


def to_profile(user: User) -> UserProfile:
    return UserProfile(id=user.id, email=user.email, role=user.role, created_at=user.created_at)


class AuthService:
    def __init__(
        self,
        user_store: UserStore,
        cache: EphemeralCache,
        settings: Settings,
        *,
        issuer: TokenIssuer | None = None,
        otp: OtpGenerator | None = None,
    ) -> None:
        self.users = user_store
        self.cache = cache
        self.settings = settings
        self.issuer = issuer or TokenIssuer(settings)
        self.otp = otp or OtpGenerator(settings)

    # ------------------------------------------------------------------
    # Signup / signin
    # ------------------------------------------------------------------

    async def signup(self, email: str, password: str, role: str = "user") -> UserProfile:
        """Create a credential record.

        Raises NotFoundError for a malformed email, ConflictError if it is taken.
        """
        from sqlalchemy.exc import IntegrityError

        email = self.validate_email(email)
        if await asyncio.to_thread(self.users.get_by_email, email) is not None:
            raise ConflictError("User already exists")

        try:
            hashed = await asyncio.to_thread(hash_password, password)
        except ValueError as exc:
            logger.exception("Password hashing failed during signup")
            raise InternalError() from exc

        candidate = User(email=email, role=role, hashed_password=hashed)
        try:
            created = await asyncio.to_thread(self.users.create_user, candidate)
        except IntegrityError as exc:
            # Lost a race with a concurrent signup for the same email.
            raise ConflictError("User already exists") from exc

        logger.info("User %s signed up", created.id)
        return to_profile(created)

    async def validate_user(self, email: str, password: str) -> UserProfile | None:
        """Return the user if the password matches, else None.

        bcrypt always runs, whether or not the email exists [C1].
        """
        user = await asyncio.to_thread(self.users.get_by_email, email)
        hashed = user.hashed_password if user is not None else None
        if not await asyncio.to_thread(verify_password_or_dummy, password, hashed):
            return None
        return to_profile(user)

    async def signin(self, user: UserProfile | User) -> SigninResult:
        """Issue a token pair, persist the refresh hash, and build the cookie."""
        tokens = self.get_tokens(user)
        await self.set_current_refresh_token(tokens.refresh_token, user.id)
        cookie = self.issuer.build_auth_cookie(tokens.access_token)
        logger.info("User %s signed in", user.id)
        return SigninResult(tokens=tokens, cookie=cookie)

    def get_tokens(self, user: UserProfile | User) -> TokenPair:
        return TokenPair(
            access_token=self.issuer.issue(user.id, user.role, ACCESS),
            refresh_token=self.issuer.issue(user.id, user.role, REFRESH),
        )

    async def set_current_refresh_token(self, refresh_token: str, user_id: str) -> None:
        hashed = self.issuer.hash_refresh_token(refresh_token)
        await asyncio.to_thread(self.users.update_user, user_id, refresh_token_hash=hashed)

    # ------------------------------------------------------------------
    # Signout / revocation
    # ------------------------------------------------------------------

    async def signout(self, user: UserProfile | User | None, access_token: str | None) -> bool:
        """Invalidate the refresh token and revoke the presented access token.

        Raises NotFoundError if user or token is missing, or the token cannot be
        decoded or belongs to another user. Store/cache failures become InternalError; retrying is safe
        because both steps are idempotent.
        """
        if user is None or not access_token:
            raise NotFoundError("User not found")
        claims = self.issuer.decode(access_token)
        if claims is None or "jti" not in claims or str(claims["sub"]) != user.id:
            raise NotFoundError("Invalid token")

        try:
            await asyncio.to_thread(self.users.update_user, user.id, refresh_token_hash=None)
            await self.revoke_token(claims["jti"])
        except Exception as exc:
            logger.exception("Signout failed for user %s", user.id)
            raise InternalError() from exc

        logger.info("User %s signed out", user.id)
        return True

    async def revoke_token(self, token_id: str) -> None:
        await self.cache.sadd(REVOKED_TOKENS_KEY, token_id)

    async def is_token_revoked(self, token_id: str) -> bool:
        return await self.cache.sismember(REVOKED_TOKENS_KEY, token_id)

    async def authenticate_access_token(self, token: str) -> User | None:
        """Resolve a presented access token to its user, or None.

        Rejects bad signatures, expired tokens, refresh tokens, and revoked
        token ids. Used by the request authorization dependency.
        """
        claims = self.issuer.verify(token, ACCESS)
        if claims is None:
            return None
        if await self.is_token_revoked(claims["jti"]):
            return None
        return await asyncio.to_thread(self.users.get_by_id, claims["sub"])

    # ------------------------------------------------------------------
    # Refresh
    # ------------------------------------------------------------------

    async def create_access_token_from_refresh_token(self, refresh_token: str) -> str:
        """Exchange the current refresh token for a new access token.

        The token is decoded first only to find the user. It must then match
        the stored HMAC (so superseded tokens fail) and pass full signature
        and expiry verification. The refresh token itself is not rotated.
        """
        claims = self.issuer.decode(refresh_token) if refresh_token else None
        if claims is None:
            raise NotFoundError("Invalid token")

        user = await asyncio.to_thread(self.users.get_by_id, str(claims["sub"]))
        if user is None:
            raise NotFoundError("Invalid token")

        if not self.issuer.refresh_token_matches(refresh_token, user.refresh_token_hash):
            raise NotFoundError("Invalid token")

        if self.issuer.verify(refresh_token, REFRESH) is None:
            raise NotFoundError("Invalid token")

        return self.issuer.issue(user.id, user.role, ACCESS)

    # ------------------------------------------------------------------
    # Password reset
    # ------------------------------------------------------------------

    async def forgot_password(self, email: str) -> str:
        """Generate and cache a reset OTP for the user. Returns the OTP.

        Delivering the code (email/SMS) is the caller's job.
        """
        email = self.validate_email(email)
        user = await asyncio.to_thread(self.users.get_by_email, email)
        if user is None:
            raise NotFoundError("User not found")

        otp = self.generate_reset_password_otp()
        key = otp_key(user.id)
        if await self.cache.exists(key):
            await self.cache.delete(key)
        await self.cache.set(key, otp, self.settings.otp_ttl_seconds)

        logger.info("Password reset OTP issued for user %s", user.id)
        return otp

    def generate_reset_password_otp(self) -> str:
        return self.otp.generate()

    async def reset_password(self, email: str, otp: str, new_password: str) -> UserProfile:
        email = self.validate_email(email)
        user = await asyncio.to_thread(self.users.get_by_email, email)
        if user is None:
            raise NotFoundError("User not found")

        # Hash before consuming the OTP so a hashing failure leaves the code usable.
        try:
            hashed = await asyncio.to_thread(hash_password, new_password)
        except ValueError as exc:
            logger.exception("Password hashing failed during reset")
            raise InternalError() from exc

        await self.verify_reset_password_otp(otp, user.id)

        # Existing refresh tokens stop working along with the old password.
        updated = await asyncio.to_thread(
            self.users.update_user, user.id, hashed_password=hashed, refresh_token_hash=None
        )
        if updated is None:
            raise NotFoundError("User not found")

        logger.info("Password reset for user %s", user.id)
        return to_profile(updated)

    async def verify_reset_password_otp(self, otp: str, user_id: str) -> None:
        """Accept the OTP only if the TOTP check passes AND it equals the cached code.

        On success the cached code is deleted, so it cannot be used twice.
        """
        if not self.otp.verify(otp):
            raise NotFoundError("Invalid OTP or OTP has expired")

        key = otp_key(user_id)
        cached = await self.cache.get(key)
        if cached is None or cached != otp:
            raise NotFoundError("Invalid OTP")

        await self.cache.delete(key)

    @staticmethod
    def validate_email(email: str) -> str:
        """Return the normalized email, or raise NotFoundError if malformed."""
        normalized = normalize_email(email or "")
        if not _EMAIL_RE.match(normalized):
            raise NotFoundError("Invalid email")
        return normalized
