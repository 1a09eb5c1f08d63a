"""Authentication and session API endpoints."""

from fastapi import APIRouter, Depends, HTTPException, Request, status
import structlog

from src.api.dependencies import (
    AuthContext,
    get_auth_context,
    get_auth_service,
    get_credential_store,
    get_current_user,
    get_session_service,
)
from src.config import Settings, get_settings
from src.models.auth import (
    ActiveSessionResponse,
    LoginHistoryResponse,
    LoginRequest,
    LoginResponse,
    RefreshRequest,
    UserSummary,
)
from src.models.session import SessionStatus
from src.models.user import User
from src.services.auth_service import AuthService
from src.services.client_metadata import parse_client_metadata
from src.services.credential_store import CredentialStore
from src.services.session_service import SessionService

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/auth", tags=["Auth"])


def _user_summary(user: User) -> UserSummary:
    """Convert a User model to a UserSummary response."""
    return UserSummary(
        id=user.id,
        username=user.username,
        email=user.email,
        contact=user.contact,
        is_active=user.is_active,
    )


@router.post("/login")
async def login(
    request: LoginRequest,
    http_request: Request,
    store: CredentialStore = Depends(get_credential_store),
    auth_service: AuthService = Depends(get_auth_service),
    session_service: SessionService = Depends(get_session_service),
    settings: Settings = Depends(get_settings),
) -> LoginResponse:
    """Login with username and password.

    Opens a login session carrying the caller's client metadata and returns
    an access token plus a refresh token bound to that session.

    Raises:
        HTTPException 401: If credentials are invalid or user is disabled
    """
    found = await store.find_user_by_username(request.username)

    if found is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid username or password",
        )

    user, password_hash = found

    if not auth_service.verify_password(request.password, password_hash):
        logger.warning("login_failed", username=request.username)
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid username or password",
        )

    if not user.is_active:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="User account is disabled",
        )

    client = parse_client_metadata(
        http_request.headers.get("user-agent"),
        http_request.client.host if http_request.client else None,
    )
    session = await session_service.create_session(user.id, request.branch_id, client)
    refresh_token = await session_service.issue_refresh_token(user.id, session.id)
    access_token = auth_service.create_access_token(
        user_id=user.id,
        username=user.username,
        session_id=session.id,
        branch_id=request.branch_id,
    )

    logger.info("user_logged_in", user_id=user.id, session_id=str(session.id))
    return LoginResponse(
        access_token=access_token,
        refresh_token=refresh_token,
        token_type="bearer",
        expires_in=settings.access_token_expire_minutes * 60,
        session_id=session.id,
        user=_user_summary(user),
    )


@router.post("/refresh")
async def refresh(
    request: RefreshRequest,
    store: CredentialStore = Depends(get_credential_store),
    auth_service: AuthService = Depends(get_auth_service),
    session_service: SessionService = Depends(get_session_service),
    settings: Settings = Depends(get_settings),
) -> LoginResponse:
    """Refresh access token using a refresh token.

    Performs token rotation: the old refresh token is revoked and a new
    pair (access + refresh) is issued on the same session.

    Raises:
        HTTPException 401: With the classified reason (not_found, revoked,
            expired, session_inactive) or if the user is disabled
    """
    rotation = await session_service.rotate_refresh_token(request.refresh_token)

    if not rotation.valid:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail={
                "reason": rotation.reason.value,
                "message": "Invalid or expired refresh token",
            },
        )

    found = await store.find_user_by_id(rotation.user_id)
    session = await session_service.get_session(rotation.session_id)

    if found is None or not found[0].is_active or session is None:
        await session_service.invalidate_session(
            rotation.session_id, "user_disabled", SessionStatus.REVOKED
        )
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="User not found or disabled",
        )

    user, _ = found
    access_token = auth_service.create_access_token(
        user_id=user.id,
        username=user.username,
        session_id=session.id,
        branch_id=session.branch_id,
    )

    return LoginResponse(
        access_token=access_token,
        refresh_token=rotation.refresh_token,
        token_type="bearer",
        expires_in=settings.access_token_expire_minutes * 60,
        session_id=session.id,
        user=_user_summary(user),
    )


@router.post("/logout")
async def logout(
    context: AuthContext = Depends(get_auth_context),
    session_service: SessionService = Depends(get_session_service),
) -> dict:
    """Close the caller's current session and revoke its refresh token."""
    await session_service.invalidate_session(context.session_id, "user_logout")
    return {"result": True, "message": "Logged out successfully"}


@router.post("/logout-all")
async def logout_all(
    context: AuthContext = Depends(get_auth_context),
    session_service: SessionService = Depends(get_session_service),
) -> dict:
    """Close every active session of the caller, including the current one."""
    count = await session_service.invalidate_all_user_sessions(
        context.user.id,
        reason="logout_all",
        status=SessionStatus.LOGGED_OUT,
    )
    return {"result": True, "sessions_closed": count}


@router.get("/me")
async def get_me(user: User = Depends(get_current_user)) -> UserSummary:
    """Get current authenticated user info."""
    return _user_summary(user)


@router.get("/sessions")
async def list_sessions(
    context: AuthContext = Depends(get_auth_context),
    session_service: SessionService = Depends(get_session_service),
) -> list[ActiveSessionResponse]:
    """List the caller's active sessions, flagging the current one."""
    sessions = await session_service.list_active_sessions(context.user.id)
    return [
        ActiveSessionResponse(
            session_id=s.id,
            login_at=s.login_at,
            last_activity_at=s.last_activity_at,
            ip_address=s.client.ip_address,
            browser=s.client.browser,
            operating_system=s.client.operating_system,
            device=s.client.device,
            is_current=s.id == context.session_id,
        )
        for s in sessions
    ]


@router.get("/sessions/history")
async def login_history(
    context: AuthContext = Depends(get_auth_context),
    session_service: SessionService = Depends(get_session_service),
) -> list[LoginHistoryResponse]:
    """List the caller's recent logins, newest first."""
    sessions = await session_service.list_login_history(context.user.id)
    return [
        LoginHistoryResponse(
            session_id=s.id,
            login_at=s.login_at,
            logout_at=s.logout_at,
            ip_address=s.client.ip_address,
            browser=s.client.browser,
            operating_system=s.client.operating_system,
            device=s.client.device,
            status=s.status.value,
            logout_reason=s.logout_reason,
        )
        for s in sessions
    ]
