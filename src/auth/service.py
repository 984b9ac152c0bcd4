from sqlalchemy.orm import Session
from sqlalchemy.exc import IntegrityError
from typing import Optional
from src.models import User
from src.auth.schemas import Actor, TokenData, UserRole

class UserService:
    @staticmethod
    def get_user_by_id(db: Session, user_id: str) -> Optional[User]:
        """Get user by identity-provider subject id"""
        return db.query(User).filter(User.id == user_id).first()

    @staticmethod
    def get_or_create_user(db: Session, token_data: TokenData) -> User:
        """Return the local user row, creating it on first sight of a subject"""
        user = UserService.get_user_by_id(db, token_data.user_id)
        if user:
            return user

        db_user = User(
            id=token_data.user_id,
            name=(token_data.name or "").strip() or "User",
            email=token_data.email or "",
            role=UserRole.USER.value
        )

        try:
            db.add(db_user)
            db.commit()
            db.refresh(db_user)
            return db_user
        except IntegrityError:
            # Another request created it first
            db.rollback()
            return UserService.get_user_by_id(db, token_data.user_id)

    @staticmethod
    def to_actor(user: User) -> Actor:
        return Actor(
            user_id=user.id,
            name=user.name,
            email=user.email,
            role=UserRole(user.role)
        )
