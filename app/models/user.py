"""Domain 1: Organisation staff accounts"""

from sqlalchemy import Column, String
from sqlalchemy.dialects.postgresql import ENUM
from sqlalchemy.orm import relationship

from app.models.base import BaseModel, OrgScopedMixin, StatusMixin
from app.models.enums import MemberRole


class User(BaseModel, OrgScopedMixin, StatusMixin):
    """
    Staff member of an organisation.
    Admins and staff are the people affected by (and notified about) lifecycle changes.
    """
    __tablename__ = "users"

    email = Column(String(255), nullable=False, index=True)
    name = Column(String(255), nullable=True)
    role = Column(
        ENUM(MemberRole, name="member_role", values_callable=lambda x: [e.value for e in x]),
        nullable=False,
        index=True,
    )

    organisation = relationship("Organisation", back_populates="users")

    @property
    def is_admin(self) -> bool:
        """Owners and admins manage billing"""
        return self.role in (MemberRole.OWNER, MemberRole.ADMIN)

    def __repr__(self) -> str:
        return f"<User {self.email} ({self.role})>"
