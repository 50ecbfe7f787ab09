"""
api/routes/v1/auth.py -- Authentication REST endpoints.

Routes:
  POST /api/v1/auth/signup           -- create account; 201 with public user
  POST /api/v1/auth/signin           -- password signin; token pair + Bearer cookie
  POST /api/v1/auth/signout          -- revoke access token, drop refresh token
  POST /api/v1/auth/refresh          -- new access token from the current refresh token
  POST /api/v1/auth/forgot-password  -- issue a password-reset OTP
  POST /api/v1/auth/reset-password   -- consume OTP, set new password
  GET  /api/v1/auth/me               -- current user info (requires auth)

Handlers stay thin: AuthService raises ConflictError / NotFoundError /
InternalError and the exception handlers in api/main.py turn those into the
ErrorResponse envelope.

Security:
  [H2] signin, forgot-password and reset-password are rate-limited per IP
       (LOGIN_RATE_LIMIT, default 10/minute).
  [C1] AuthService.validate_user() provides timing equalization -- use it,
       never inline get_by_email() + verify_password().
  [M5] Cache-Control: no-store on every response that carries a token or OTP.
"""

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse

from api.limiter import limiter, login_rate_limit
from api.models import (
    AccessTokenResponse,
    ForgotPasswordRequest,
    MessageResponse,
    OtpResponse,
    RefreshRequest,
    ResetPasswordRequest,
    SigninRequest,
    SignupRequest,
    TokenResponse,
    UserResponse,
)
from auth.dependencies import get_access_token, get_auth_service, get_current_user
from auth.models import User
from auth.service import AuthService, to_profile
from auth.tokens import AUTH_COOKIE_NAME

# Auth policy:
# - POST /auth/signup, /auth/signin, /auth/refresh:                 public
# - POST /auth/forgot-password, /auth/reset-password:               public (OTP is the credential)
# - POST /auth/signout, GET /auth/me:                               requires auth (get_current_user)
router = APIRouter()


def _no_store(resp: JSONResponse) -> JSONResponse:
    resp.headers["Cache-Control"] = "no-store"  # [M5]
    return resp


# ---------------------------------------------------------------------------
# Public endpoints
# ---------------------------------------------------------------------------


@router.post("/auth/signup", response_model=UserResponse, status_code=201)
async def signup(
    body: SignupRequest,
    auth_service: AuthService = Depends(get_auth_service),
) -> UserResponse:
    """Create a new account. 404 for a malformed email, 409 if already registered."""
    profile = await auth_service.signup(body.email, body.password)
    return UserResponse.from_profile(profile)


@router.post("/auth/signin", response_model=TokenResponse)
@limiter.limit(login_rate_limit)  # [H2] route decorator stays outermost so FastAPI registers the limited wrapper
async def signin(
    request: Request,
    body: SigninRequest,
    auth_service: AuthService = Depends(get_auth_service),
) -> JSONResponse:
    """Authenticate with email and password; return tokens and set the Bearer cookie.

    Wrong email and wrong password get the same "bad_credentials" error so
    the response does not reveal which emails are registered.
    """
    profile = await auth_service.validate_user(body.email, body.password)
    if profile is None:
        return _no_store(
            JSONResponse(
                status_code=401,
                content={"error": {"code": "bad_credentials", "message": "Invalid email or password."}},
            )
        )

    result = await auth_service.signin(profile)
    resp = JSONResponse(
        status_code=200,
        content=TokenResponse(
            access_token=result.tokens.access_token,
            refresh_token=result.tokens.refresh_token,
        ).model_dump(),
    )
    resp.headers.append("set-cookie", result.cookie)
    return _no_store(resp)


@router.post("/auth/refresh", response_model=AccessTokenResponse)
async def refresh(
    body: RefreshRequest,
    auth_service: AuthService = Depends(get_auth_service),
) -> JSONResponse:
    """Exchange the current refresh token for a new access token (and cookie)."""
    access_token = await auth_service.create_access_token_from_refresh_token(body.refresh_token)
    resp = JSONResponse(content=AccessTokenResponse(access_token=access_token).model_dump())
    resp.headers.append("set-cookie", auth_service.issuer.build_auth_cookie(access_token))
    return _no_store(resp)


@router.post("/auth/forgot-password", response_model=OtpResponse)
@limiter.limit(login_rate_limit)  # [H2]
async def forgot_password(
    request: Request,
    body: ForgotPasswordRequest,
    auth_service: AuthService = Depends(get_auth_service),
) -> JSONResponse:
    """Issue a password-reset OTP.

    The OTP is returned to the caller; delivering it to the user (email, SMS)
    belongs to the notification service in front of this API.
    """
    otp = await auth_service.forgot_password(body.email)
    return _no_store(JSONResponse(content=OtpResponse(otp=otp).model_dump()))


@router.post("/auth/reset-password", response_model=UserResponse)
@limiter.limit(login_rate_limit)  # [H2]
async def reset_password(
    request: Request,
    body: ResetPasswordRequest,
    auth_service: AuthService = Depends(get_auth_service),
) -> UserResponse:
    """Set a new password using a valid, unconsumed OTP."""
    profile = await auth_service.reset_password(body.email, body.otp, body.new_password)
    return UserResponse.from_profile(profile)


# ---------------------------------------------------------------------------
# Authenticated endpoints
# ---------------------------------------------------------------------------


@router.post("/auth/signout", response_model=MessageResponse)
async def signout(
    request: Request,
    current_user: User = Depends(get_current_user),
    auth_service: AuthService = Depends(get_auth_service),
) -> JSONResponse:
    """Revoke the presented access token and clear the stored refresh token."""
    await auth_service.signout(current_user, get_access_token(request))
    resp = JSONResponse(content=MessageResponse(message="Signed out.").model_dump())
    resp.delete_cookie(AUTH_COOKIE_NAME, path="/")
    return resp


@router.get("/auth/me", response_model=UserResponse)
async def me(current_user: User = Depends(get_current_user)) -> UserResponse:
    """Return identity information for the currently authenticated user."""
    return UserResponse.from_profile(to_profile(current_user))
