"""
Monthly fee records as seen by an organisation.

Statuses are derived on read from the organisation's billing day; the
stored value only matters when it is an explicit PAID.
"""

from datetime import date, datetime
from typing import List, Optional, Tuple
from uuid import UUID
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import settings
from app.core.logging import get_logger
from app.models.organisation import Organisation
from app.models.billing import MonthlyPaymentRecord
from app.models.enums import PaymentStatus, AuditAction
from app.schemas.billing import PaymentRecordResponse, RecordPaymentRequest
from app.services.audit_service import AuditService
from app.services.billing_anchor import resolve_billing_day
from app.services.payment_status import calculate_status, get_payment_due_date, parse_month
from app.utils.time import get_utc_now

logger = get_logger(__name__)


class PaymentRecordService:
    """Service layer for monthly payment records"""

    @staticmethod
    def to_response(
        record: MonthlyPaymentRecord,
        billing_day: int,
        today: Optional[date] = None,
    ) -> PaymentRecordResponse:
        return PaymentRecordResponse(
            id=record.id,
            student_id=record.student_id,
            class_id=record.class_id,
            month=record.month,
            amount_p=record.amount_p,
            stored_status=record.status,
            status=calculate_status(
                record.status,
                record.month,
                billing_day,
                record.paid_at,
                now=today,
                grace_days=settings.PAYMENT_GRACE_PERIOD_DAYS,
            ),
            due_date=get_payment_due_date(record.month, billing_day),
            paid_at=record.paid_at,
            method=record.method,
            reference=record.reference,
        )

    @staticmethod
    async def list_records(
        db: AsyncSession,
        org: Organisation,
        month: Optional[str] = None,
        status: Optional[PaymentStatus] = None,
        page: int = 1,
        page_size: int = 20,
        today: Optional[date] = None,
    ) -> Tuple[List[PaymentRecordResponse], int]:
        """
        Payment records for an organisation with derived statuses.

        The status filter applies to the derived status, so it runs after
        derivation rather than in SQL.

        Raises:
            ValueError: If `month` is not YYYY-MM
        """
        stmt = select(MonthlyPaymentRecord).where(MonthlyPaymentRecord.org_id == org.id)
        if month:
            parse_month(month)
            stmt = stmt.where(MonthlyPaymentRecord.month == month)
        stmt = stmt.order_by(MonthlyPaymentRecord.month.desc(), MonthlyPaymentRecord.created_at)

        result = await db.execute(stmt)
        billing_day = resolve_billing_day(org)
        items = [
            PaymentRecordService.to_response(r, billing_day, today)
            for r in result.scalars().all()
        ]
        if status is not None:
            items = [i for i in items if i.status == status]

        total = len(items)
        start = (page - 1) * page_size
        return items[start:start + page_size], total

    @staticmethod
    async def get_record(db: AsyncSession, org_id: UUID, record_id: UUID) -> Optional[MonthlyPaymentRecord]:
        result = await db.execute(
            select(MonthlyPaymentRecord).where(
                MonthlyPaymentRecord.id == record_id,
                MonthlyPaymentRecord.org_id == org_id,
            )
        )
        return result.scalar_one_or_none()

    @staticmethod
    async def record_manual_payment(
        db: AsyncSession,
        org: Organisation,
        record_id: UUID,
        payment: RecordPaymentRequest,
    ) -> Optional[PaymentRecordResponse]:
        """
        Mark a record as paid outside the card flow (cash, bank transfer...).
        Returns None if the record does not belong to the organisation.
        """
        record = await PaymentRecordService.get_record(db, org.id, record_id)
        if not record:
            return None

        paid_at: datetime = payment.paid_at or get_utc_now()
        previous_status = record.status
        record.status = PaymentStatus.PAID
        record.paid_at = paid_at
        record.method = payment.method
        record.reference = payment.reference
        if payment.notes:
            record.notes = payment.notes

        AuditService.record(
            db,
            AuditAction.RECORD_MANUAL_PAYMENT,
            org_id=org.id,
            entity_type="MONTHLY_PAYMENT_RECORD",
            entity_id=record.id,
            actor=payment.actor,
            details={
                "student_id": str(record.student_id),
                "class_id": str(record.class_id),
                "month": record.month,
                "amount_p": record.amount_p,
                "method": payment.method.value,
                "reference": payment.reference,
                "previous_status": PaymentStatus(previous_status).value,
            },
        )
        await db.commit()
        logger.info("Manual payment recorded for %s", record.month, extra={"org_id": org.id})

        return PaymentRecordService.to_response(record, resolve_billing_day(org))
