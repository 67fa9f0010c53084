"""
Organisation lifecycle driven by platform payment outcomes.

Consecutive payment failures pause and then deactivate a tenant. A
successful payment clears the failure counter but never reactivates the
tenant: reactivation is always a platform administrator decision.
"""

from datetime import timedelta
from typing import List, Optional, Tuple
from uuid import UUID
from sqlalchemy import select, func
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.logging import get_logger
from app.models.organisation import Organisation
from app.models.user import User
from app.models.billing import PlatformPayment
from app.models.enums import OrgStatus, MemberRole, PlatformPaymentStatus, AuditAction
from app.schemas.organisation import (
    PaymentFailureEvent,
    PaymentSuccessEvent,
    PaymentFailureOutcome,
    PaymentSuccessOutcome,
    AutoDeactivateCheck,
    AffectedUser,
)
from app.services.audit_service import AuditService
from app.utils.time import get_utc_now

logger = get_logger(__name__)

AUTO_PAUSE_THRESHOLD = 2
AUTO_DEACTIVATE_THRESHOLD = 3
FAILURE_HISTORY_WINDOW_DAYS = 30

ACTION_NONE = "none"
ACTION_PAUSE = "pause"
ACTION_DEACTIVATE = "deactivate"

AFFECTED_ROLES = (MemberRole.OWNER, MemberRole.ADMIN, MemberRole.STAFF)


class OrganisationNotFoundError(LookupError):
    """No organisation with the given id."""


class InvalidStatusTransition(ValueError):
    """Administrative action not allowed from the organisation's current status."""


def decide_failure_action(current_status: OrgStatus, failure_count: int) -> str:
    """
    Automatic transition for a failure that brought the counter to `failure_count`.

    DEACTIVATED is a floor. A PAUSED organisation only escalates to
    DEACTIVATED; it is never re-paused.
    """
    if current_status == OrgStatus.DEACTIVATED:
        return ACTION_NONE
    if failure_count >= AUTO_DEACTIVATE_THRESHOLD:
        return ACTION_DEACTIVATE
    if current_status == OrgStatus.ACTIVE and failure_count >= AUTO_PAUSE_THRESHOLD:
        return ACTION_PAUSE
    return ACTION_NONE


def affected_user_details(users: List[User]) -> List[AffectedUser]:
    return [
        AffectedUser(user_id=u.id, name=u.name, email=u.email, role=u.role)
        for u in users
    ]


class OrgStatusService:
    """Service layer for organisation lifecycle transitions"""

    @staticmethod
    async def get_org(db: AsyncSession, org_id: UUID) -> Optional[Organisation]:
        result = await db.execute(
            select(Organisation).where(Organisation.id == org_id)
        )
        return result.scalar_one_or_none()

    @staticmethod
    async def lock_org(db: AsyncSession, org_id: UUID) -> Optional[Organisation]:
        """
        Load an organisation with a row lock held until the session commits,
        so concurrent failure/success handlers see each other's counter.
        """
        result = await db.execute(
            select(Organisation)
            .where(Organisation.id == org_id)
            .with_for_update()
        )
        return result.scalar_one_or_none()

    @staticmethod
    async def get_affected_users(db: AsyncSession, org_id: UUID) -> List[User]:
        """Active owners, admins and staff of the organisation."""
        result = await db.execute(
            select(User).where(
                User.org_id == org_id,
                User.role.in_(AFFECTED_ROLES),
                User.is_active == True,
            ).order_by(User.email)
        )
        return list(result.scalars().all())

    @staticmethod
    def apply_payment_failure(org: Organisation, event: PaymentFailureEvent) -> Tuple[str, str, int]:
        """
        Mutate `org` for one payment failure.

        Returns:
            (action, reason, new failure count)
        """
        failure_count = (org.payment_failure_count or 0) + 1
        org.payment_failure_count = failure_count

        action = decide_failure_action(OrgStatus(org.status), failure_count)
        reason = ""
        if action == ACTION_DEACTIVATE:
            reason = (
                f"Account deactivated due to {failure_count} consecutive payment failures. "
                f"Last failure: {event.failure_reason}"
            )
            org.status = OrgStatus.DEACTIVATED
            org.deactivated_at = event.occurred_at
            org.deactivated_reason = reason
        elif action == ACTION_PAUSE:
            reason = (
                f"Account paused due to {failure_count} consecutive payment failures. "
                f"Last failure: {event.failure_reason}"
            )
            org.status = OrgStatus.PAUSED
            org.paused_at = event.occurred_at
            org.paused_reason = reason

        return action, reason, failure_count

    @staticmethod
    async def handle_payment_failure(db: AsyncSession, event: PaymentFailureEvent) -> PaymentFailureOutcome:
        """
        Count a payment failure and pause/deactivate the organisation when
        the consecutive-failure thresholds are reached.

        Raises:
            OrganisationNotFoundError: If the organisation does not exist
        """
        org = await OrgStatusService.lock_org(db, event.org_id)
        if not org:
            raise OrganisationNotFoundError(f"Organisation {event.org_id} not found")

        previous_status = OrgStatus(org.status)
        users = await OrgStatusService.get_affected_users(db, org.id)
        affected = affected_user_details(users)

        action, reason, failure_count = OrgStatusService.apply_payment_failure(org, event)

        if action != ACTION_NONE:
            AuditService.record(
                db,
                AuditAction.ORG_AUTO_DEACTIVATED if action == ACTION_DEACTIVATE else AuditAction.ORG_AUTO_PAUSED,
                org_id=org.id,
                entity_type="ORG",
                entity_id=org.id,
                details={
                    "org_name": org.name,
                    "reason": reason,
                    "failure_count": failure_count,
                    "previous_status": previous_status.value,
                    "last_failure": event.model_dump(mode="json"),
                    "affected_users": [u.model_dump(mode="json") for u in affected],
                },
            )

        await db.commit()

        logger.info(
            "Payment failure recorded (count=%s, action=%s)",
            failure_count,
            action,
            extra={"org_id": org.id},
        )

        return PaymentFailureOutcome(
            org_id=org.id,
            action=action,
            reason=reason,
            failure_reason=event.failure_reason,
            failure_count=failure_count,
            previous_status=previous_status,
            org_status=OrgStatus(org.status),
            affected_users=affected,
        )

    @staticmethod
    async def handle_payment_success(db: AsyncSession, event: PaymentSuccessEvent) -> PaymentSuccessOutcome:
        """
        Reset the failure counter and stamp the payment date. Status is left
        untouched whatever it is.

        Raises:
            OrganisationNotFoundError: If the organisation does not exist
        """
        org = await OrgStatusService.lock_org(db, event.org_id)
        if not org:
            raise OrganisationNotFoundError(f"Organisation {event.org_id} not found")

        previous_count = org.payment_failure_count or 0
        org.payment_failure_count = 0
        org.last_payment_date = event.occurred_at

        AuditService.record(
            db,
            AuditAction.PAYMENT_SUCCESS,
            org_id=org.id,
            entity_type="ORG",
            entity_id=org.id,
            details={
                "amount_p": event.amount_p,
                "payment_date": event.occurred_at.isoformat(),
                "previous_failure_count": previous_count,
                "failure_count_reset": True,
            },
        )

        await db.commit()

        if org.status != OrgStatus.ACTIVE:
            logger.info(
                "Payment succeeded for %s organisation; manual reactivation still required",
                OrgStatus(org.status).value,
                extra={"org_id": org.id},
            )

        return PaymentSuccessOutcome(
            org_id=org.id,
            org_status=OrgStatus(org.status),
            failure_count_reset=True,
            last_payment_date=event.occurred_at,
        )

    @staticmethod
    async def check_auto_deactivate_conditions(db: AsyncSession, org_id: UUID) -> AutoDeactivateCheck:
        """
        Monitoring predicate: did the organisation fail 3+ platform payments
        in the last 30 days? Read-only, and not used by the automatic
        transitions above, which follow the consecutive-failure counter.
        """
        try:
            org = await OrgStatusService.get_org(db, org_id)
            if not org or not org.auto_suspend_enabled:
                return AutoDeactivateCheck(
                    should_deactivate=False,
                    reason="Auto-deactivation disabled or organisation not found",
                )

            since = get_utc_now() - timedelta(days=FAILURE_HISTORY_WINDOW_DAYS)
            failure_count = await db.scalar(
                select(func.count(PlatformPayment.id)).where(
                    PlatformPayment.org_id == org_id,
                    PlatformPayment.status == PlatformPaymentStatus.FAILED,
                    PlatformPayment.created_at >= since,
                )
            ) or 0
        except SQLAlchemyError as e:
            logger.exception("Failed to check auto-deactivation conditions: %s", e, extra={"org_id": org_id})
            return AutoDeactivateCheck(should_deactivate=False, reason="Error checking conditions")

        if failure_count >= AUTO_DEACTIVATE_THRESHOLD:
            return AutoDeactivateCheck(
                should_deactivate=True,
                reason=(
                    f"{AUTO_DEACTIVATE_THRESHOLD}+ payment failures in the last "
                    f"{FAILURE_HISTORY_WINDOW_DAYS} days ({failure_count} total)"
                ),
                failure_count=failure_count,
            )
        return AutoDeactivateCheck(
            should_deactivate=False,
            reason=f"Only {failure_count} failures (need {AUTO_DEACTIVATE_THRESHOLD}+)",
            failure_count=failure_count,
        )

    # Administrative actions (platform admin only)

    @staticmethod
    async def pause(db: AsyncSession, org_id: UUID, reason: Optional[str], actor: str) -> Organisation:
        org = await OrgStatusService.lock_org(db, org_id)
        if not org:
            raise OrganisationNotFoundError(f"Organisation {org_id} not found")
        if org.status != OrgStatus.ACTIVE:
            raise InvalidStatusTransition(f"Cannot pause an organisation that is {OrgStatus(org.status).value}")

        reason = reason or "Account paused by platform administrator"
        org.status = OrgStatus.PAUSED
        org.paused_at = get_utc_now()
        org.paused_reason = reason

        await OrgStatusService._audit_admin_action(db, org, AuditAction.ORG_PAUSED, reason, actor)
        await db.commit()
        return org

    @staticmethod
    async def deactivate(db: AsyncSession, org_id: UUID, reason: Optional[str], actor: str) -> Organisation:
        org = await OrgStatusService.lock_org(db, org_id)
        if not org:
            raise OrganisationNotFoundError(f"Organisation {org_id} not found")
        if org.status == OrgStatus.DEACTIVATED:
            raise InvalidStatusTransition("Organisation is already deactivated")

        reason = reason or "Account deactivated by platform administrator"
        org.status = OrgStatus.DEACTIVATED
        org.deactivated_at = get_utc_now()
        org.deactivated_reason = reason

        await OrgStatusService._audit_admin_action(db, org, AuditAction.ORG_DEACTIVATED, reason, actor)
        await db.commit()
        return org

    @staticmethod
    async def reactivate(db: AsyncSession, org_id: UUID, actor: str) -> Organisation:
        """Return a paused or deactivated organisation to ACTIVE and clear its failure history."""
        org = await OrgStatusService.lock_org(db, org_id)
        if not org:
            raise OrganisationNotFoundError(f"Organisation {org_id} not found")
        if org.status == OrgStatus.ACTIVE:
            raise InvalidStatusTransition("Organisation is already active")

        previous_status = OrgStatus(org.status)
        org.status = OrgStatus.ACTIVE
        org.paused_at = None
        org.paused_reason = None
        org.deactivated_at = None
        org.deactivated_reason = None
        org.payment_failure_count = 0

        await OrgStatusService._audit_admin_action(
            db, org, AuditAction.ORG_REACTIVATED, f"Reactivated from {previous_status.value}", actor
        )
        await db.commit()
        return org

    @staticmethod
    async def _audit_admin_action(
        db: AsyncSession,
        org: Organisation,
        action: AuditAction,
        reason: str,
        actor: str,
    ) -> None:
        users = await OrgStatusService.get_affected_users(db, org.id)
        AuditService.record(
            db,
            action,
            org_id=org.id,
            entity_type="ORG",
            entity_id=org.id,
            actor=actor,
            details={
                "org_name": org.name,
                "reason": reason,
                "failure_count": org.payment_failure_count or 0,
                "affected_users": [u.model_dump(mode="json") for u in affected_user_details(users)],
            },
        )
