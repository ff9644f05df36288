import time
from typing import Optional

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from itsdangerous import BadData, SignatureExpired, URLSafeTimedSerializer
from sqlalchemy import select
from sqlalchemy.orm import Session
from werkzeug.security import check_password_hash, generate_password_hash

from config import get_settings
from database import get_db
from errors import AuthError
from models import User

bearer_scheme = HTTPBearer(auto_error=False)


def _serializer() -> URLSafeTimedSerializer:
    settings = get_settings()
    return URLSafeTimedSerializer(settings.auth_secret, salt="access-token")


def hash_password(password: str) -> str:
    return generate_password_hash(password)


def verify_password(password_hash: str, password: str) -> bool:
    return check_password_hash(password_hash, password)


def issue_access_token(user_id: str) -> tuple[str, int]:
    """Return a signed token for ``user_id`` and its expiry as a unix timestamp."""
    settings = get_settings()
    expires_at = int(time.time()) + settings.token_max_age_hours * 3600
    token = _serializer().dumps({"sub": user_id})
    return token, expires_at


def resolve_token(token: str) -> str:
    settings = get_settings()
    try:
        data = _serializer().loads(token, max_age=settings.token_max_age_hours * 3600)
    except SignatureExpired as exc:
        raise AuthError("Token expired") from exc
    except BadData as exc:
        raise AuthError("Invalid token") from exc
    user_id = data.get("sub") if isinstance(data, dict) else None
    if not user_id:
        raise AuthError("Token missing subject")
    return user_id


def authenticate(session: Session, token: Optional[str]) -> User:
    if not token:
        raise AuthError("Bearer token is required")
    user_id = resolve_token(token)
    user = session.get(User, user_id)
    if user is None:
        raise AuthError("User not found")
    return user


def find_user_by_email(session: Session, email: str) -> Optional[User]:
    return session.scalar(select(User).where(User.email == email.strip().lower()))


def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
    db: Session = Depends(get_db),
) -> User:
    if credentials is None or credentials.scheme.lower() != "bearer":
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Authorization header is required",
            headers={"WWW-Authenticate": "Bearer"},
        )
    try:
        return authenticate(db, credentials.credentials)
    except AuthError as exc:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=str(exc),
            headers={"WWW-Authenticate": "Bearer"},
        ) from exc


def get_current_user_id(user: User = Depends(get_current_user)) -> str:
    return user.id
