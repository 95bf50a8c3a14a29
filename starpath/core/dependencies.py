"""Shared dependencies for Starpath Progress Service."""

from typing import Optional
import uuid
from aiocache import Cache
import structlog
from jose import jwt, JWTError
from datetime import datetime, timedelta
from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlalchemy.ext.asyncio import AsyncSession

from starpath.core.config import settings
from starpath.core.exceptions import LearnerNotFound
from starpath.models.catalog import Learner

logger = structlog.get_logger()

ROLE_ADMIN = "admin"
ROLE_PARENT = "parent"
ROLE_CHILD = "child"

# Global instances
_redis_cache: Optional[Cache] = None

# Security
security = HTTPBearer()


async def get_redis_cache():
    """Get Redis cache instance."""
    global _redis_cache

    if _redis_cache is None:
        try:
            _redis_cache = Cache.from_url(settings.REDIS_URL)
            await _redis_cache.exists("test")  # Test connection
            logger.info("Redis cache connection established")
        except Exception as e:
            logger.warning("Redis cache not available, using in-memory cache", error=str(e))
            _redis_cache = Cache(Cache.MEMORY)

    return _redis_cache


def get_cache(request: Request):
    """Cache stored on the app at startup, or None when the app started without one."""
    return getattr(request.app.state, "redis_cache", None)


def create_access_token(data: dict, expires_delta: Optional[timedelta] = None):
    """Create JWT access token."""
    to_encode = data.copy()
    if expires_delta:
        expire = datetime.utcnow() + expires_delta
    else:
        expire = datetime.utcnow() + timedelta(minutes=settings.JWT_EXPIRATION_MINUTES)

    to_encode.update({"exp": expire})
    encoded_jwt = jwt.encode(to_encode, settings.JWT_SECRET, algorithm=settings.JWT_ALGORITHM)
    return encoded_jwt


async def get_current_user(credentials: HTTPAuthorizationCredentials = Depends(security)):
    """Get current user from JWT token."""
    token = credentials.credentials

    try:
        payload = jwt.decode(
            token,
            settings.JWT_SECRET,
            algorithms=[settings.JWT_ALGORITHM]
        )
        user_id: str = payload.get("sub")
        if user_id is None:
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail="Invalid authentication credentials",
                headers={"WWW-Authenticate": "Bearer"},
            )
        return {"user_id": user_id, "role": payload.get("role", ROLE_CHILD)}
    except JWTError:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid authentication credentials",
            headers={"WWW-Authenticate": "Bearer"},
        )


async def require_admin(current_user: dict = Depends(get_current_user)):
    if current_user["role"] != ROLE_ADMIN:
        raise HTTPException(status_code=403, detail="Admin access required")
    return current_user


async def require_admin_or_parent(current_user: dict = Depends(get_current_user)):
    if current_user["role"] not in (ROLE_ADMIN, ROLE_PARENT):
        raise HTTPException(status_code=403, detail="Admin or parent access required")
    return current_user


async def ensure_learner_access(db: AsyncSession, current_user: dict, learner_id: uuid.UUID) -> Learner:
    """Admins see every learner, parents their own children, children themselves."""
    learner = await db.get(Learner, learner_id)
    if learner is None or learner.is_archived:
        raise LearnerNotFound(learner_id)

    role = current_user["role"]
    if role == ROLE_ADMIN:
        return learner
    if role == ROLE_PARENT and learner.parent_id is not None and str(learner.parent_id) == current_user["user_id"]:
        return learner
    if role == ROLE_CHILD and str(learner.id) == current_user["user_id"]:
        return learner

    logger.warning("Learner access denied", learner_id=str(learner_id), user_id=current_user["user_id"], role=role)
    raise HTTPException(status_code=403, detail="Child not found or does not belong to you")
