from datetime import datetime, timedelta, timezone
from typing import Optional
import jwt

from src.config import settings

def create_access_token(data: dict, expires_delta: Optional[timedelta] = None) -> str:
    """Issue a token in the identity provider's format (used by tooling and tests)"""
    to_encode = data.copy()
    expire = datetime.now(timezone.utc) + (expires_delta or timedelta(minutes=30))
    to_encode.update({"exp": expire})
    return jwt.encode(to_encode, settings.SECRET_KEY, algorithm=settings.ALGORITHM)

def verify_token(token: str, credentials_exception) -> dict:
    """Decode a bearer token and return its identity claims"""
    try:
        payload = jwt.decode(token, settings.SECRET_KEY, algorithms=[settings.ALGORITHM])
    except jwt.PyJWTError:
        raise credentials_exception

    user_id = payload.get("sub")
    if not user_id:
        raise credentials_exception

    return {
        "user_id": str(user_id),
        "name": payload.get("name"),
        "email": payload.get("email"),
    }
