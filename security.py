"""
Authentication and authorization.

Tokens are HS256 JWTs carrying the user's id, role, name and email, valid for
ACCESS_TOKEN_EXPIRE_MINUTES. Verification is a pure check of signature and
expiry; the identity in the token is trusted for its lifetime.

Every role decision goes through PERMISSIONS. Ownership rules (a parent may
only read their own children, a user may only edit their own profile unless
admin) are enforced in the service layer on top of the table.
"""
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Optional

from fastapi import Depends, Request
from fastapi.security import OAuth2PasswordBearer
from jose import JWTError, jwt
from passlib.context import CryptContext
from pydantic import BaseModel

from config import ACCESS_TOKEN_EXPIRE_MINUTES, ALGORITHM, SECRET_KEY
from errors import AuthenticationError, AuthorizationError
from logging_config import get_logger, log_with_context
from schemas import Role

logger = get_logger("auth")

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/api/auth/login", auto_error=False)


class Identity(BaseModel):
    user_id: str
    role: Role
    name: str
    email: str


class Resource(str, Enum):
    STUDENTS = "students"
    HOMEWORK = "homework"
    MESSAGES = "messages"
    USERS = "users"


class Action(str, Enum):
    LIST = "list"
    READ = "read"
    CREATE = "create"
    UPDATE = "update"
    UPDATE_ATTENDANCE = "update_attendance"
    SEND = "send"
    MARK_READ = "mark_read"


ALL_ROLES = frozenset(Role)
STAFF = frozenset({Role.TEACHER, Role.ADMIN})

PERMISSIONS = {
    (Resource.STUDENTS, Action.LIST): ALL_ROLES,
    (Resource.STUDENTS, Action.READ): ALL_ROLES,
    (Resource.STUDENTS, Action.CREATE): STAFF,
    (Resource.STUDENTS, Action.UPDATE_ATTENDANCE): STAFF,
    (Resource.HOMEWORK, Action.LIST): ALL_ROLES,
    (Resource.HOMEWORK, Action.CREATE): STAFF,
    (Resource.MESSAGES, Action.LIST): ALL_ROLES,
    (Resource.MESSAGES, Action.READ): ALL_ROLES,
    (Resource.MESSAGES, Action.SEND): ALL_ROLES,
    (Resource.MESSAGES, Action.MARK_READ): ALL_ROLES,
    (Resource.USERS, Action.LIST): ALL_ROLES,
    (Resource.USERS, Action.READ): ALL_ROLES,
    (Resource.USERS, Action.UPDATE): ALL_ROLES,
}

ACCESS_DENIED = "Access denied. You do not have the required permission."


def is_allowed(role: Role, resource: Resource, action: Action) -> bool:
    """Unknown (resource, action) pairs are denied."""
    return role in PERMISSIONS.get((resource, action), frozenset())


# ----------------------- Passwords -----------------------

def get_password_hash(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(plain_password: str, hashed_password: str) -> bool:
    if not hashed_password:
        return False
    return pwd_context.verify(plain_password, hashed_password)


# ----------------------- Tokens -----------------------

def create_access_token(user: dict, expires_delta: Optional[timedelta] = None) -> str:
    expire = datetime.now(timezone.utc) + (expires_delta or timedelta(minutes=ACCESS_TOKEN_EXPIRE_MINUTES))
    claims = {
        "sub": str(user["_id"]),
        "role": Role(user["role"]).value,
        "name": user["name"],
        "email": user["email"],
        "exp": expire,
    }
    return jwt.encode(claims, SECRET_KEY, algorithm=ALGORITHM)


def decode_access_token(token: str) -> Identity:
    try:
        payload = jwt.decode(token, SECRET_KEY, algorithms=[ALGORITHM])
        return Identity(
            user_id=payload["sub"],
            role=Role(payload["role"]),
            name=payload.get("name", ""),
            email=payload.get("email", ""),
        )
    except (JWTError, KeyError, ValueError):
        raise AuthenticationError("Invalid or expired token")


# ----------------------- Dependencies -----------------------

async def get_current_user(request: Request, token: Optional[str] = Depends(oauth2_scheme)) -> Identity:
    if not token:
        raise AuthenticationError("Authentication required")
    try:
        identity = decode_access_token(token)
    except AuthenticationError:
        log_with_context(logger, "WARNING", "Rejected bearer token",
                         extra_data={"path": request.url.path})
        raise
    request.state.user = identity
    return identity


def require_roles(*roles: Role):
    allowed = frozenset(roles)

    async def dependency(current: Identity = Depends(get_current_user)) -> Identity:
        if current.role not in allowed:
            log_with_context(logger, "WARNING", "Role not permitted",
                             context={"user_id": current.user_id},
                             extra_data={"role": current.role.value,
                                         "allowed": sorted(r.value for r in allowed)})
            raise AuthorizationError(ACCESS_DENIED)
        return current

    return dependency


def require_permission(resource: Resource, action: Action):
    return require_roles(*PERMISSIONS.get((resource, action), frozenset()))
