"""FastAPI dependencies: service wiring and bearer-token authentication."""

from datetime import timedelta
from uuid import UUID

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from pydantic import BaseModel

from src.config import Settings, get_settings
from src.database import get_pool
from src.models.user import User
from src.services.auth_service import AuthService
from src.services.credential_store import CredentialStore, CredentialStoreError
from src.services.email_service import EmailService
from src.services.otp_service import OtpService
from src.services.password_reset_service import PasswordResetService
from src.services.redis_service import RedisService
from src.services.response_message_service import ResponseMessageService
from src.services.session_service import SessionService
from src.services.sms_service import SmsService

bearer_scheme = HTTPBearer()


class AuthContext(BaseModel):
    """The authenticated user and the login session their token belongs to."""

    user: User
    session_id: UUID
    branch_id: int


async def get_credential_store() -> CredentialStore:
    """Credential store over the shared connection pool."""
    try:
        pool = await get_pool()
    except RuntimeError as e:
        raise CredentialStoreError("Credential store unavailable") from e
    return CredentialStore(pool)


def get_auth_service(settings: Settings = Depends(get_settings)) -> AuthService:
    return AuthService(settings)


def get_otp_service(
    store: CredentialStore = Depends(get_credential_store),
    settings: Settings = Depends(get_settings),
) -> OtpService:
    return OtpService(
        store,
        expiry_minutes=settings.otp_expiry_minutes,
        code_length=settings.otp_length,
    )


def get_session_service(
    store: CredentialStore = Depends(get_credential_store),
    settings: Settings = Depends(get_settings),
) -> SessionService:
    idle_minutes = settings.session_idle_timeout_minutes
    return SessionService(
        store,
        refresh_token_ttl=timedelta(days=settings.refresh_token_expire_days),
        idle_timeout=timedelta(minutes=idle_minutes) if idle_minutes > 0 else None,
    )


def get_password_reset_service(
    store: CredentialStore = Depends(get_credential_store),
    otp_service: OtpService = Depends(get_otp_service),
    session_service: SessionService = Depends(get_session_service),
    auth_service: AuthService = Depends(get_auth_service),
    settings: Settings = Depends(get_settings),
) -> PasswordResetService:
    return PasswordResetService(
        store=store,
        otp_service=otp_service,
        session_service=session_service,
        auth_service=auth_service,
        sms_service=SmsService(settings),
        email_service=EmailService(settings),
        policy=settings.password_policy,
        reset_grace=timedelta(minutes=settings.reset_grace_minutes),
        notification_timeout=settings.notification_timeout_seconds,
    )


def get_response_message_service(
    store: CredentialStore = Depends(get_credential_store),
    settings: Settings = Depends(get_settings),
) -> ResponseMessageService:
    return ResponseMessageService(store, RedisService(settings.response_message_cache_ttl))


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )


async def get_auth_context(
    credentials: HTTPAuthorizationCredentials = Depends(bearer_scheme),
    auth_service: AuthService = Depends(get_auth_service),
    session_service: SessionService = Depends(get_session_service),
    store: CredentialStore = Depends(get_credential_store),
) -> AuthContext:
    """Validate the bearer token and the login session it is bound to.

    Raises:
        HTTPException 401: If the token is invalid, its session is closed,
            or the user is missing/inactive
    """
    try:
        payload = auth_service.validate_access_token(credentials.credentials)
    except ValueError:
        raise _unauthorized("Invalid or expired access token")

    try:
        user_id = int(payload["sub"])
        session_id = UUID(payload["sid"])
    except (KeyError, TypeError, ValueError):
        raise _unauthorized("Invalid token payload")

    if not await session_service.touch_session(session_id):
        raise _unauthorized("Session is no longer active")

    found = await store.find_user_by_id(user_id)
    if found is None:
        raise _unauthorized("User not found")

    user, _ = found
    if not user.is_active:
        raise _unauthorized("User account is disabled")

    return AuthContext(
        user=user,
        session_id=session_id,
        branch_id=payload.get("branch_id", 0),
    )


async def get_current_user(context: AuthContext = Depends(get_auth_context)) -> User:
    """Extract the authenticated user."""
    return context.user
