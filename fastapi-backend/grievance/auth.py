from typing import Optional
from datetime import datetime, timedelta, timezone
from pydantic import BaseModel
from fastapi import Depends, Query, Request, Response
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from jose import jwt, JWTError
from passlib.context import CryptContext
from sqlmodel import select
import logging

from .config import get_settings
from .database import get_session
from .errors import AuthenticationError, AuthorizationError, InvalidSessionError
from .models import HostelAdmin, Identity

logger = logging.getLogger("grievance.auth")

settings = get_settings()

SECRET_KEY = settings.jwt_secret
if not SECRET_KEY:
    # Fail securely rather than signing sessions with a default key.
    raise ValueError("JWT_SECRET not found in environment or .env file.")

ALGORITHM = "HS256"
SESSION_MAX_AGE_SECONDS = settings.session_days * 24 * 60 * 60
ADMIN_ROLE = "admin"
STUDENT_ROLE = "student"

# pbkdf2_sha256 avoids needing a working bcrypt C-extension in test environments.
pwd_context = CryptContext(schemes=["pbkdf2_sha256"], deprecated="auto")
security = HTTPBearer(auto_error=False)


class TokenPayload(BaseModel):
    sub: str
    role: Optional[str] = None
    hostel: Optional[str] = None
    exp: Optional[int] = None


def verify_password(plain_password: str, hashed_password: str) -> bool:
    return pwd_context.verify(plain_password, hashed_password)


def get_password_hash(password: str) -> str:
    return pwd_context.hash(password)


def create_access_token(
    subject: str,
    role: str = STUDENT_ROLE,
    hostel: Optional[str] = None,
    expires_delta: Optional[timedelta] = None,
) -> str:
    to_encode = {"sub": str(subject), "role": role}
    if hostel:
        to_encode["hostel"] = hostel
    expire = datetime.now(timezone.utc) + (expires_delta or timedelta(seconds=SESSION_MAX_AGE_SECONDS))
    to_encode["exp"] = int(expire.timestamp())
    return jwt.encode(to_encode, SECRET_KEY, algorithm=ALGORITHM)


def decode_access_token(token: str) -> TokenPayload:
    """Decode a signed token; expiry is enforced by python-jose."""
    try:
        payload = jwt.decode(token, SECRET_KEY, algorithms=[ALGORITHM])
        return TokenPayload(**payload)
    except (JWTError, ValueError) as exc:
        raise InvalidSessionError("Invalid token") from exc


def set_session_cookie(response: Response, email: str) -> str:
    """Issue a student session credential as an http-only cookie."""
    token = create_access_token(subject=email, role=STUDENT_ROLE)
    response.set_cookie(
        key=settings.session_cookie_name,
        value=token,
        max_age=SESSION_MAX_AGE_SECONDS,
        httponly=True,
        samesite="lax",
        secure=settings.session_cookie_secure,
    )
    return token


def clear_session_cookie(response: Response) -> None:
    # Sessions are stateless JWTs: this only drops the client copy. A copied
    # token stays valid until it expires.
    response.delete_cookie(
        key=settings.session_cookie_name,
        httponly=True,
        samesite="lax",
        secure=settings.session_cookie_secure,
    )


async def get_current_identity(request: Request, session=Depends(get_session)) -> Identity:
    """Resolve the session cookie to a stored identity.

    Missing cookie -> 401; invalid or expired cookie -> 403; a token whose
    identity row no longer exists -> 401.
    """
    token = request.cookies.get(settings.session_cookie_name)
    if not token:
        raise AuthenticationError("Unauthorized")

    payload = decode_access_token(token)
    if (payload.role or STUDENT_ROLE) != STUDENT_ROLE:
        raise InvalidSessionError("Invalid token")

    result = await session.exec(select(Identity).where(Identity.email == payload.sub))
    identity = result.first()
    if not identity:
        logger.info("Session subject %s has no identity row", payload.sub)
        raise AuthenticationError("Unauthorized")
    return identity


async def authenticate_admin(session, username: str, password: str) -> HostelAdmin:
    result = await session.exec(select(HostelAdmin).where(HostelAdmin.username == username))
    admin = result.first()
    if not admin or not verify_password(password, admin.password_hash):
        raise AuthenticationError("Invalid username or password")
    return admin


async def create_hostel_admin(session, username: str, password: str, hostel: str) -> HostelAdmin:
    """Create or update a hostel admin. Returns the stored row."""
    result = await session.exec(select(HostelAdmin).where(HostelAdmin.username == username))
    admin = result.first()
    if admin:
        admin.password_hash = get_password_hash(password)
        admin.hostel = hostel
    else:
        admin = HostelAdmin(username=username, password_hash=get_password_hash(password), hostel=hostel)
    session.add(admin)
    await session.commit()
    await session.refresh(admin)
    return admin


async def require_hostel_admin(
    hostel: str = Query(..., min_length=1),
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
) -> str:
    """Admin guard: the hostel query parameter is the authorization boundary.

    A bearer token, when supplied, must be an admin token for that hostel.
    With ADMIN_TOKEN_REQUIRED the token becomes mandatory.
    """
    token = credentials.credentials if credentials else None
    if not token:
        if settings.admin_token_required:
            raise AuthenticationError("Admin token required")
        return hostel

    payload = decode_access_token(token)
    if payload.role != ADMIN_ROLE or payload.hostel != hostel:
        raise AuthorizationError("Not authorized for this hostel")
    return hostel


__all__ = [
    "verify_password",
    "get_password_hash",
    "create_access_token",
    "decode_access_token",
    "set_session_cookie",
    "clear_session_cookie",
    "get_current_identity",
    "authenticate_admin",
    "create_hostel_admin",
    "require_hostel_admin",
]
