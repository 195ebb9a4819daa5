"""
User database model.

Users are provisioned by the identity provider; this service only reads
them to resolve roles and each employee's approving manager.
"""

from sqlalchemy import Column, Integer, String, Boolean, DateTime, Enum
from tripshare.app.core.clock import utcnow
from tripshare.app.db.session import Base
from tripshare.app.models.enums import UserRole


class User(Base):
    """
    User model.

    An employee without ``manager_email`` has no approver, so their trips
    are approved automatically on submission.
    """
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    email = Column(String(255), unique=True, index=True, nullable=False)
    full_name = Column(String(150), nullable=False)
    department = Column(String(100), nullable=True)
    is_active = Column(Boolean, default=True, nullable=False)

    role = Column(Enum(UserRole), default=UserRole.EMPLOYEE, nullable=False)

    # Approving manager, used for approval links and join request CC
    manager_email = Column(String(255), nullable=True)
    manager_name = Column(String(150), nullable=True)

    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    @property
    def has_manager(self) -> bool:
        return bool(self.manager_email)

    def __repr__(self):
        return f"<User(id={self.id}, email='{self.email}', role='{self.role.value}')>"
