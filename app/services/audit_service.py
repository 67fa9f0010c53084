from typing import Any, Dict, Optional
from uuid import UUID
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.audit import AuditLog, SYSTEM_ACTOR
from app.models.enums import AuditAction
from app.core.logging import get_logger

logger = get_logger(__name__)


class AuditService:
    """Writes audit entries inside the caller's transaction."""

    @staticmethod
    def record(
        db: AsyncSession,
        action: AuditAction,
        org_id: Optional[UUID],
        entity_type: str,
        entity_id: Any,
        details: Dict[str, Any],
        actor: str = SYSTEM_ACTOR,
    ) -> AuditLog:
        """
        Stage an audit entry on the session. The caller commits it together
        with the change it describes. `details` must be JSON-serialisable.
        """
        entry = AuditLog(
            org_id=org_id,
            actor=actor,
            action=action.value,
            entity_type=entity_type,
            entity_id=str(entity_id),
            details=details,
        )
        db.add(entry)
        logger.info(
            "Audit %s",
            action.value,
            extra={"org_id": org_id, "actor": actor, "entity_type": entity_type},
        )
        return entry
