"""
Authentication routes and dependencies
"""

from types import SimpleNamespace
from typing import Optional
from fastapi import APIRouter, HTTPException, Header, Depends, Cookie
from fastapi.responses import JSONResponse
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession
import logging

from database import get_db
from crud.user import UserRepository
from auth_utils import hash_password, verify_password, create_jwt, decode_jwt
from services.trial_service import TrialService, GateState, gate_state
from utils.shared_utils import get_cached
from utils.security_utils import validate_email, validate_password_strength, extract_token
from config.settings import settings

logger = logging.getLogger(__name__)

# Create auth router
auth_router = APIRouter(prefix="/api/auth", tags=["auth"])

# JWT expiration is 7 days = 604800 seconds
AUTH_COOKIE_MAX_AGE = 604800


# Request models
class SignupRequest(BaseModel):
    email: str
    password: str
    first_name: Optional[str] = None
    last_name: Optional[str] = None


class LoginRequest(BaseModel):
    email: str
    password: str


def _auth_response(user_id: str, token: str) -> JSONResponse:
    response = JSONResponse(
        content={
            "ok": True,
            "user_id": user_id
        }
    )
    response.set_cookie(
        key="auth_token",
        value=token,
        httponly=True,
        secure=True,
        samesite="Lax",
        max_age=AUTH_COOKIE_MAX_AGE
    )
    return response


@auth_router.post("/signup")
async def signup(request: SignupRequest, db: AsyncSession = Depends(get_db)):
    """Create a new tenant account. The free trial starts now."""
    try:
        if not validate_email(request.email):
            raise HTTPException(status_code=400, detail="Invalid email format")

        try:
            validate_password_strength(request.password)
        except ValueError as e:
            raise HTTPException(status_code=400, detail=str(e))

        user_repo = UserRepository(db)

        existing_user = await user_repo.get_user_by_email(request.email.lower())
        if existing_user:
            raise HTTPException(status_code=400, detail="Email already registered")

        user = await user_repo.create_user({
            "email": request.email.lower(),
            "hashed_password": hash_password(request.password),
            "first_name": request.first_name,
            "last_name": request.last_name,
            "is_active": True,
        })
        logger.info(f"New tenant signed up: user {user.id}")

        return _auth_response(str(user.id), create_jwt(str(user.id)))
    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Signup failed: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail=f"Signup failed: {str(e)}")


@auth_router.post("/login")
async def login(request: LoginRequest, db: AsyncSession = Depends(get_db)):
    """Login and get JWT token"""
    try:
        user_repo = UserRepository(db)

        user = await user_repo.get_user_by_email(request.email.lower())
        if not user:
            raise HTTPException(status_code=401, detail="Invalid email or password")

        if not verify_password(request.password, user.hashed_password):
            raise HTTPException(status_code=401, detail="Invalid email or password")

        if not user.is_active:
            raise HTTPException(status_code=401, detail="User account is inactive")

        return _auth_response(str(user.id), create_jwt(str(user.id)))
    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Login failed: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail=f"Login failed: {str(e)}")


async def _get_user_data_with_caching(user_id: int, user_repo: UserRepository) -> dict:
    """
    Helper function to fetch user data with caching.

    Only identity fields are cached; trial and subscription facts are always
    read fresh by TrialService.

    Raises:
        HTTPException: If user is not found
    """
    async def fetch_user():
        user = await user_repo.get_user_by_id(user_id)
        if not user:
            raise HTTPException(status_code=401, detail="User not found")
        return {
            "id": user.id,
            "email": user.email,
            "first_name": user.first_name,
            "last_name": user.last_name,
            "is_active": user.is_active,
        }

    return await get_cached(
        key=f"user:{user_id}",
        fallback_func=fetch_user,
        ttl_seconds=300
    )


def _user_id_from_token(token: Optional[str]) -> int:
    if not token:
        raise HTTPException(status_code=401, detail="Missing authentication token")

    payload = decode_jwt(token)
    if not payload:
        raise HTTPException(status_code=401, detail="Invalid or expired token")

    user_id_str = payload.get("sub")
    if not user_id_str:
        raise HTTPException(status_code=401, detail="Invalid token payload")

    # JWT stores the ID as a string
    try:
        return int(user_id_str)
    except (ValueError, TypeError):
        raise HTTPException(status_code=401, detail="Invalid user ID in token")


# Dependency for protected routes
async def get_current_user(
    auth_token: Optional[str] = Cookie(None),
    authorization: Optional[str] = Header(None, alias="Authorization"),
    db: AsyncSession = Depends(get_db)
) -> dict:
    """
    Dependency function to get current authenticated user.

    Authentication priority:
    1. Check auth_token cookie first (httpOnly cookie set by login/signup)
    2. Fallback to Authorization header (Bearer token) for API consumers
    3. Raise 401 if neither is found
    """
    user_id = _user_id_from_token(extract_token(auth_token, authorization))

    user_repo = UserRepository(db)
    user = SimpleNamespace(**await _get_user_data_with_caching(user_id, user_repo))

    if not user.is_active:
        raise HTTPException(status_code=401, detail="User account is inactive")

    return {
        "user_id": str(user.id),
        "email": user.email,
        "first_name": user.first_name,
        "last_name": user.last_name,
        "is_active": user.is_active,
    }


async def require_active_access(
    current_user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
) -> dict:
    """
    Dependency that blocks tenants whose trial has ended without a subscription.

    This service only ships the auth and billing routers, and both stay open
    to expired tenants so they can still log in and subscribe. CRM product
    routes (contacts, deals, email) mounted on this app declare
    `Depends(require_active_access)` instead of `Depends(get_current_user)`.

    Only enforced when ENFORCE_TRIAL_GATE is set. Unlike the banner, this check
    fails closed: if the gate state cannot be computed, access is refused.
    """
    if not settings.enforce_trial_gate:
        return current_user

    try:
        trial_service = TrialService(db, UserRepository(db))
        status = await trial_service.get_trial_status(int(current_user["user_id"]))
        state = gate_state(status)
    except Exception as e:
        logger.error(f"Access check failed for user {current_user.get('user_id')}: {e}", exc_info=True)
        raise HTTPException(status_code=402, detail="Unable to verify subscription")

    if state is GateState.EXPIRED:
        raise HTTPException(status_code=402, detail="Your free trial has ended. Subscribe to continue.")

    return current_user


@auth_router.get("/me")
async def get_current_user_info(current_user: dict = Depends(get_current_user)):
    """Get current user information from JWT token"""
    return {"ok": True, **current_user}


@auth_router.post("/logout")
async def logout():
    """Logout and clear auth token cookie"""
    response = JSONResponse(
        content={
            "ok": True,
            "message": "Logged out successfully"
        }
    )
    # Clear the auth_token cookie by setting max_age=0
    response.set_cookie(
        key="auth_token",
        value="",
        httponly=True,
        secure=True,
        samesite="Lax",
        max_age=0
    )
    return response
