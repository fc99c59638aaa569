"""
Authentication routes and dependencies
"""

from typing import Optional
from fastapi import APIRouter, HTTPException, Header, Depends, Cookie
from fastapi.responses import JSONResponse
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession
import re
import logging

from database import get_db
from database_models import User
from crud.user import UserRepository
from auth_utils import hash_password, verify_password, create_jwt, decode_jwt, validate_password_strength

logger = logging.getLogger(__name__)

# Create auth router
auth_router = APIRouter(prefix="/api/auth", tags=["auth"])

# JWT expiration is 7 days = 604800 seconds
AUTH_COOKIE_MAX_AGE = 604800


# Request models
class SignupRequest(BaseModel):
    email: str
    password: str
    name: Optional[str] = None


class LoginRequest(BaseModel):
    email: str
    password: str


def validate_email(email: str) -> bool:
    """Validate email format"""
    pattern = r'^[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}$'
    return re.match(pattern, email) is not None


def _auth_response(user: User) -> JSONResponse:
    """Success body plus the httpOnly auth cookie."""
    token = create_jwt(str(user.id))
    response = JSONResponse(
        content={
            "ok": True,
            "user_id": str(user.id),
            "token": token,
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
    """Create a new user account"""
    try:
        # Validate email format
        if not validate_email(request.email):
            raise HTTPException(status_code=400, detail="Invalid email format")

        # Validate password strength
        try:
            validate_password_strength(request.password)
        except ValueError as e:
            raise HTTPException(status_code=400, detail=str(e))

        # Initialize repository
        user_repo = UserRepository(db)

        # Check if email already exists
        existing_user = await user_repo.get_user_by_email(request.email.lower())
        if existing_user:
            raise HTTPException(status_code=400, detail="Email already registered")

        user = await user_repo.create_user({
            "email": request.email.lower(),
            "hashed_password": hash_password(request.password),
            "name": request.name,
            "is_active": True,
        })
        logger.info(f"New account created: user {user.id}")

        return _auth_response(user)
    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Signup failed: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail=f"Signup failed: {str(e)}")


@auth_router.post("/login")
async def login(request: LoginRequest, db: AsyncSession = Depends(get_db)):
    """Login and get JWT token"""
    try:
        # Initialize repository
        user_repo = UserRepository(db)

        # Find user by email
        user = await user_repo.get_user_by_email(request.email.lower())
        if not user:
            raise HTTPException(status_code=401, detail="Invalid email or password")

        # Verify password
        if not verify_password(request.password, user.hashed_password):
            raise HTTPException(status_code=401, detail="Invalid email or password")

        # Check if user is active
        if not user.is_active:
            raise HTTPException(status_code=401, detail="User account is inactive")

        return _auth_response(user)
    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Login failed: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail=f"Login failed: {str(e)}")


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


# Dependency for protected routes
async def get_current_user(
    auth_token: Optional[str] = Cookie(None),
    authorization: Optional[str] = Header(None, alias="Authorization"),
    db: AsyncSession = Depends(get_db)
) -> User:
    """
    Dependency function to get current authenticated user.

    Authentication priority:
    1. Check auth_token cookie first (httpOnly cookie set by login/signup)
    2. Fallback to Authorization header (Bearer token) for API consumers
    3. Raise 401 if neither is found
    """
    # Extract token: check cookie first, then Authorization header
    token = None

    # Priority 1: Check httpOnly cookie (preferred for browser clients)
    if auth_token:
        token = auth_token
    # Priority 2: Fallback to Authorization header (for API consumers)
    elif authorization and authorization.startswith("Bearer "):
        token = authorization.replace("Bearer ", "").strip()

    # No token found in either location
    if not token:
        raise HTTPException(status_code=401, detail="Missing authentication token")

    # Decode token
    payload = decode_jwt(token)
    if not payload:
        raise HTTPException(status_code=401, detail="Invalid or expired token")

    user_id_str = payload.get("sub")
    if not user_id_str:
        raise HTTPException(status_code=401, detail="Invalid token payload")

    # Convert user_id to integer (JWT stores it as string)
    try:
        user_id = int(user_id_str)
    except (ValueError, TypeError):
        raise HTTPException(status_code=401, detail="Invalid user ID in token")

    user = await UserRepository(db).get_user_by_id(user_id)
    if not user:
        raise HTTPException(status_code=401, detail="User not found")

    # Check if user is active
    if not user.is_active:
        raise HTTPException(status_code=401, detail="User account is inactive")

    return user


@auth_router.get("/me")
async def get_current_user_info(user: User = Depends(get_current_user)):
    """Get current user information from JWT token"""
    return {
        "ok": True,
        "user_id": str(user.id),
        "email": user.email,
        "name": user.name,
        "tier": user.subscription_tier,
        "is_premium": user.subscription_is_active,
        "is_active": user.is_active,
    }
