from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlalchemy.orm import Session
from src.database import get_db
from src.auth.utils import verify_token
from src.auth.service import UserService
from src.auth.schemas import Actor, TokenData

bearer_scheme = HTTPBearer(auto_error=False)

def get_current_actor(
    credentials: HTTPAuthorizationCredentials = Depends(bearer_scheme),
    db: Session = Depends(get_db)
) -> Actor:
    """Resolve the authenticated caller and its role"""
    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Unauthorized",
        headers={"WWW-Authenticate": "Bearer"},
    )

    if credentials is None:
        raise credentials_exception

    # Verify token and get payload
    token_data = TokenData(**verify_token(credentials.credentials, credentials_exception))

    user = UserService.get_or_create_user(db, token_data)
    if user is None:
        raise credentials_exception

    return UserService.to_actor(user)

def require_admin(actor: Actor = Depends(get_current_actor)) -> Actor:
    """Require station admin or super-admin role"""
    if not actor.is_admin:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Forbidden"
        )
    return actor
