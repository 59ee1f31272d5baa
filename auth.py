import os
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional

import bcrypt
import jwt
import structlog
from fastapi import Depends, HTTPException
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from database import Store, get_store
from schemas import USERS

JWT_SECRET = os.getenv("JWT_SECRET", "dev_secret_change_me_to_a_long_random_value")
JWT_ALG = "HS256"
TOKEN_EXPIRE_MINUTES = 60 * 24 * 7

logger = structlog.get_logger(__name__)

security = HTTPBearer(auto_error=False)

ROLE_CAPABILITIES = {
    "administrator": {"read", "edit_posts", "manage_options"},
    "editor": {"read", "edit_posts"},
    "subscriber": {"read"},
}

FORBIDDEN_MESSAGE = "You do not have permission to access this resource."


def hash_password(password: str) -> str:
    return bcrypt.hashpw(password.encode(), bcrypt.gensalt()).decode()


def verify_password(password: str, hashed: str) -> bool:
    try:
        return bcrypt.checkpw(password.encode(), hashed.encode())
    except ValueError:
        return False


def create_access_token(sub: int) -> str:
    payload = {
        "sub": str(sub),
        "exp": datetime.now(timezone.utc) + timedelta(minutes=TOKEN_EXPIRE_MINUTES),
        "iat": datetime.now(timezone.utc),
    }
    return jwt.encode(payload, JWT_SECRET, algorithm=JWT_ALG)


def user_can(user: Optional[dict], capability: str) -> bool:
    if not user:
        return False
    return capability in ROLE_CAPABILITIES.get(user.get("role"), set())


def public_user(user: dict) -> dict:
    return {k: v for k, v in user.items() if k != "password_hash"}


def forbidden(status_code: int) -> HTTPException:
    return HTTPException(
        status_code=status_code,
        detail={"code": "rest_forbidden", "message": FORBIDDEN_MESSAGE},
    )


def get_optional_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    store: Store = Depends(get_store),
) -> Optional[dict]:
    if credentials is None:
        return None
    try:
        payload = jwt.decode(credentials.credentials, JWT_SECRET, algorithms=[JWT_ALG])
    except jwt.ExpiredSignatureError:
        raise HTTPException(status_code=401, detail="Token expired")
    except jwt.InvalidTokenError:
        raise HTTPException(status_code=401, detail="Invalid token")
    sub = payload.get("sub")
    if not sub or not str(sub).isdigit():
        raise HTTPException(status_code=401, detail="Invalid token")
    user = store.get_document(USERS, int(sub))
    if not user:
        raise HTTPException(status_code=401, detail="User not found")
    return user


def get_current_user(user: Optional[dict] = Depends(get_optional_user)) -> dict:
    if user is None:
        raise forbidden(401)
    return user


def require_capability(capability: str) -> Callable[..., dict]:
    """Dependency factory: 401 without a token, 403 when the role lacks the capability."""

    def dependency(user: Optional[dict] = Depends(get_optional_user)) -> dict:
        if user is None:
            logger.warning("Unauthenticated request", capability=capability)
            raise forbidden(401)
        if not user_can(user, capability):
            logger.warning("Permission denied", capability=capability, user_id=user.get("id"))
            raise forbidden(403)
        return user

    return dependency
