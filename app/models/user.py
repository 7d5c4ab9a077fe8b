"""
User accounts.
"""
from datetime import datetime, timezone

from sqlalchemy import Column, DateTime, String

from app.database import Base


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class UserModel(Base):
    __tablename__ = "users"

    id = Column(String, primary_key=True)
    name = Column(String, nullable=False)
    email = Column(String, nullable=False, unique=True, index=True)
    avatar = Column(String, nullable=False, default="😀")
    family_id = Column(String, nullable=False, index=True)
    password_hash = Column(String, nullable=False)
    created_at = Column(DateTime, default=_utcnow, nullable=False)

    def to_public(self) -> dict:
        """Profile as sent to clients; never includes the password hash."""
        return {
            "id": self.id,
            "name": self.name,
            "email": self.email,
            "avatar": self.avatar,
            "familyId": self.family_id,
        }
