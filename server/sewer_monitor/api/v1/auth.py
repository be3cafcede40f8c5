import logging
from datetime import datetime, timedelta, timezone

from fastapi import APIRouter, Depends, HTTPException, status
from jose import jwt
import bcrypt as _bcrypt
from sqlalchemy import or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from sewer_monitor.config import settings
from sewer_monitor.dependencies import get_db, get_current_user, JWT_ALGORITHM
from sewer_monitor.models.user import User
from sewer_monitor.schemas.auth import (
    LoginRequest,
    LoginResponse,
    PasswordChangeRequest,
    ProfileUpdateRequest,
    UserCreateRequest,
    UserInfo,
)

logger = logging.getLogger(__name__)

router = APIRouter(tags=["auth"])

ACCESS_TOKEN_EXPIRE_HOURS = 24


def hash_password(password: str) -> str:
    return _bcrypt.hashpw(password.encode("utf-8"), _bcrypt.gensalt()).decode("utf-8")


def verify_password(password: str, password_hash: str | None) -> bool:
    if not password_hash:
        return False
    return _bcrypt.checkpw(password.encode("utf-8"), password_hash.encode("utf-8"))


def _require_admin(user: User):
    """Raise 403 if user is not an admin."""
    if not user.is_admin:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Admin access required")


def _user_info(user: User) -> UserInfo:
    return UserInfo(
        username=user.username,
        full_name=user.full_name,
        email=user.email,
        role=user.role,
        phone_number=user.phone_number,
        whatsapp_notifications=user.whatsapp_notifications,
        language=user.language,
    )


def create_access_token(data: dict, expires_delta: timedelta | None = None) -> str:
    """Create a signed JWT token."""
    to_encode = data.copy()
    expire = datetime.now(timezone.utc) + (expires_delta or timedelta(hours=ACCESS_TOKEN_EXPIRE_HOURS))
    to_encode.update({"exp": expire})
    return jwt.encode(to_encode, settings.SECRET_KEY, algorithm=JWT_ALGORITHM)


@router.post("/login", response_model=LoginResponse)
async def login(
    payload: LoginRequest,
    db: AsyncSession = Depends(get_db),
):
    """Authenticate with username (or e-mail) and password; returns a JWT access token."""
    result = await db.execute(
        select(User).where((User.username == payload.username) | (User.email == payload.username))
    )
    user = result.scalars().first()

    if user is None or not verify_password(payload.password, user.password_hash):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid username or password",
            headers={"WWW-Authenticate": "Bearer"},
        )

    if not user.is_active:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="User account is disabled",
        )

    user.last_login = datetime.now(timezone.utc)
    await db.commit()

    access_token = create_access_token(
        data={"sub": user.username, "uid": str(user.id), "role": user.role}
    )

    return LoginResponse(
        access_token=access_token,
        username=user.username,
        full_name=user.full_name,
        role=user.role,
        language=user.language,
    )


@router.get("/me", response_model=UserInfo)
async def get_me(
    user: User = Depends(get_current_user),
):
    """Return information about the currently authenticated user."""
    return _user_info(user)


@router.post("/register", response_model=UserInfo, status_code=status.HTTP_201_CREATED)
async def register_user(
    payload: UserCreateRequest,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Create a user account (admin only)."""
    _require_admin(user)

    conditions = [User.username == payload.username]
    if payload.email:
        conditions.append(User.email == payload.email)
    result = await db.execute(select(User.id).where(or_(*conditions)))
    if result.first() is not None:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Username or e-mail already exists")

    new_user = User(
        username=payload.username,
        password_hash=hash_password(payload.password),
        full_name=payload.full_name,
        email=payload.email,
        role=payload.role,
        phone_number=payload.phone_number,
        whatsapp_notifications=payload.whatsapp_notifications,
        language=payload.language,
        is_active=True,
    )
    db.add(new_user)
    await db.commit()

    logger.info("User '%s' created with role %s by %s", new_user.username, new_user.role, user.username)
    return _user_info(new_user)


@router.put("/profile", response_model=UserInfo)
async def update_profile(
    payload: ProfileUpdateRequest,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Update contact details and WhatsApp opt-in of the current user."""
    changes = payload.model_dump(exclude_unset=True)
    if not changes:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="No fields to update")

    for field, value in changes.items():
        setattr(user, field, value)
    await db.commit()

    logger.info("Profile of '%s' updated: %s", user.username, ", ".join(sorted(changes)))
    return _user_info(user)


@router.post("/change-password")
async def change_password(
    payload: PasswordChangeRequest,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Replace the current user's password after checking the old one."""
    if not verify_password(payload.current_password, user.password_hash):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Current password is incorrect")

    user.password_hash = hash_password(payload.new_password)
    await db.commit()

    logger.info("Password changed for '%s'", user.username)
    return {"status": "ok"}
