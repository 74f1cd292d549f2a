from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

from jose import JWTError, jwt
from starlette.requests import HTTPConnection

from hostelhub.core.config import settings
from hostelhub.schemas.session_schema import SessionUser, TokenData

# --- Session Token Management ---

def create_session_token(
    user_id: str,
    email: Optional[str] = None,
    user_metadata: Optional[Dict[str, Any]] = None,
    expires_delta: Optional[timedelta] = None,
) -> str:
    """Issues a session token in the shape the auth provider uses. Mostly useful for tests and scripts."""
    expire = datetime.now(timezone.utc) + (expires_delta or timedelta(hours=1))
    to_encode = {
        "sub": user_id,
        "email": email,
        "user_metadata": user_metadata or {},
        "exp": expire,
    }
    return jwt.encode(to_encode, settings.SECRET_KEY, algorithm=settings.ALGORITHM)


def decode_session_token(token: str) -> Optional[SessionUser]:
    """Decodes a session token, returning None when it is invalid or expired."""
    try:
        payload = jwt.decode(token, settings.SECRET_KEY, algorithms=[settings.ALGORITHM])
    except JWTError:
        return None

    token_data = TokenData(
        sub=payload.get("sub"),
        email=payload.get("email"),
        user_metadata=payload.get("user_metadata"),
    )
    if not token_data.sub:
        return None
    return SessionUser(id=token_data.sub, email=token_data.email, metadata=token_data.user_metadata or {})


def extract_session_token(connection: HTTPConnection) -> Optional[str]:
    authorization = connection.headers.get("authorization")
    if authorization:
        scheme, _, credentials = authorization.partition(" ")
        if scheme.lower() == "bearer" and credentials:
            return credentials.strip()
    return connection.cookies.get(settings.SESSION_COOKIE_NAME)


def resolve_session_user(connection: HTTPConnection) -> Optional[SessionUser]:
    token = extract_session_token(connection)
    if not token:
        return None
    return decode_session_token(token)
