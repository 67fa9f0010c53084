"""Domain 2: Students and classes (billable units and fee owners)"""

from sqlalchemy import Column, String, Boolean
from sqlalchemy.orm import relationship

from app.models.base import BaseModel, OrgScopedMixin


class Student(BaseModel, OrgScopedMixin):
    """
    Enrolled student. Every un-archived student is one billable unit
    on the organisation's platform subscription.
    """
    __tablename__ = "students"

    first_name = Column(String(255), nullable=False)
    last_name = Column(String(255), nullable=False)
    is_archived = Column(Boolean, default=False, nullable=False, index=True)

    organisation = relationship("Organisation", back_populates="students")
    payment_records = relationship("MonthlyPaymentRecord", back_populates="student", cascade="all, delete-orphan")

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}"

    def __repr__(self) -> str:
        return f"<Student {self.full_name}>"


class SchoolClass(BaseModel, OrgScopedMixin):
    """Class a student pays monthly fees for."""
    __tablename__ = "classes"

    name = Column(String(255), nullable=False)

    organisation = relationship("Organisation", back_populates="classes")
    payment_records = relationship("MonthlyPaymentRecord", back_populates="school_class")

    def __repr__(self) -> str:
        return f"<SchoolClass {self.name}>"
