"""Domain 4: Audit Log"""

from sqlalchemy import Column, String
from sqlalchemy.dialects.postgresql import UUID, JSONB

from app.models.base import BaseModel

SYSTEM_ACTOR = "system"


class AuditLog(BaseModel):
    """Append-only record of lifecycle and payment actions."""
    __tablename__ = "audit_logs"

    org_id = Column(UUID(as_uuid=True), nullable=True, index=True)
    actor = Column(String(255), nullable=False, default=SYSTEM_ACTOR)
    action = Column(String(64), nullable=False, index=True)
    entity_type = Column(String(64), nullable=False)
    entity_id = Column(String(64), nullable=False)
    details = Column(JSONB, default=dict, nullable=False)

    def __repr__(self) -> str:
        return f"<AuditLog {self.action} {self.entity_type}:{self.entity_id}>"
