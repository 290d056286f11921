import logging
from datetime import datetime, timezone
from decimal import Decimal

from sqlalchemy import func
from sqlalchemy.orm import Session

from multimart.errors import DomainRuleError, NotFoundError, ValidationFailed
from multimart.models import Payout, PayoutStatus, UserRole
from multimart.services.wallet import (
    INSUFFICIENT_BALANCE,
    apply_debit,
    get_or_create_wallet,
)
from multimart.utils.money import money, fmt

logger = logging.getLogger(__name__)

MIN_PAYOUT = Decimal("500")
MAX_PAYOUT = Decimal("50000")

ALLOWED_FROM = {
    PayoutStatus.processing: {PayoutStatus.applied},
    PayoutStatus.paid: {PayoutStatus.applied, PayoutStatus.processing},
    PayoutStatus.rejected: {PayoutStatus.applied, PayoutStatus.processing},
}


def _now():
    return datetime.now(timezone.utc)


def get_payout(db: Session, payout_id: int) -> Payout:
    payout = db.query(Payout).filter(Payout.id == payout_id).first()
    if not payout:
        raise NotFoundError("Payout not found")
    return payout


def apply_for_payout(db: Session, partner_id: int, amount) -> Payout:
    amount = money(amount)
    if amount < MIN_PAYOUT:
        raise ValidationFailed(f"Minimum payout amount is {fmt(MIN_PAYOUT)}")
    if amount > MAX_PAYOUT:
        raise ValidationFailed(f"Maximum payout amount per request is {fmt(MAX_PAYOUT)}")

    try:
        wallet = get_or_create_wallet(db, partner_id, UserRole.deliveryPartner)
        if money(wallet.withdrawable_balance) < amount:
            raise DomainRuleError(INSUFFICIENT_BALANCE)

        payout = Payout(wallet_id=wallet.id, amount=amount, status=PayoutStatus.applied)
        db.add(payout)
        db.commit()
    except Exception:
        db.rollback()
        raise

    db.refresh(payout)
    logger.info(
        "Payout applied | payout_id=%s partner_id=%s amount=%s",
        payout.id,
        partner_id,
        fmt(amount),
    )
    return payout


def list_payouts_for_partner(db: Session, partner_id: int):
    wallet = get_or_create_wallet(db, partner_id, UserRole.deliveryPartner)
    db.commit()
    return (
        db.query(Payout)
        .filter(Payout.wallet_id == wallet.id)
        .order_by(Payout.applied_at.desc(), Payout.id.desc())
        .all()
    )


def list_payouts(db: Session, status: str | None = None, page: int = 1, limit: int = 50):
    query = db.query(Payout)
    if status:
        try:
            query = query.filter(Payout.status == PayoutStatus(status))
        except ValueError:
            raise ValidationFailed(f"Unknown payout status: {status}")
    page = max(1, page)
    return (
        query.order_by(Payout.applied_at.desc(), Payout.id.desc())
        .offset((page - 1) * limit)
        .limit(limit)
        .all()
    )


def update_payout_status(
    db: Session,
    payout_id: int,
    new_status: str,
    payment_reference_id: str | None = None,
    payment_method: str | None = None,
    rejection_reason: str | None = None,
) -> Payout:
    """
    Admin-driven payout transitions. Marking a payout paid debits the
    partner's wallet in the same transaction.
    """
    payout = get_payout(db, payout_id)

    try:
        target = PayoutStatus(new_status)
    except ValueError:
        raise ValidationFailed(f"Unknown payout status: {new_status}")

    if target not in ALLOWED_FROM or payout.status not in ALLOWED_FROM[target]:
        raise DomainRuleError(
            f"Cannot change payout status from {payout.status.value} to {target.value}"
        )

    if target == PayoutStatus.rejected and not rejection_reason:
        raise ValidationFailed("Rejection reason is required")

    try:
        if target == PayoutStatus.paid:
            apply_debit(
                db,
                payout.wallet,
                payout.amount,
                "payout",
                description=f"Payout #{payout.id}",
                reference_id=payment_reference_id,
                metadata={"payoutId": payout.id},
            )
            payout.paid_at = _now()
        elif target == PayoutStatus.processing:
            payout.processed_at = _now()

        payout.status = target
        if payment_reference_id:
            payout.payment_reference_id = payment_reference_id
        if payment_method:
            payout.payment_method = payment_method
        if rejection_reason:
            payout.rejection_reason = rejection_reason
        db.commit()
    except Exception:
        db.rollback()
        raise

    db.refresh(payout)
    logger.info("Payout status updated | payout_id=%s status=%s", payout.id, target.value)
    return payout


def payout_stats(db: Session, wallet_id: int) -> dict:
    def _agg(*statuses):
        count, total = (
            db.query(func.count(Payout.id), func.coalesce(func.sum(Payout.amount), 0))
            .filter(Payout.wallet_id == wallet_id, Payout.status.in_(statuses))
            .one()
        )
        return count, money(total)

    total_count = db.query(func.count(Payout.id)).filter(Payout.wallet_id == wallet_id).scalar()
    _, total_paid = _agg(PayoutStatus.paid)
    pending_count, pending_amount = _agg(PayoutStatus.applied, PayoutStatus.processing)

    return {
        "totalPayouts": total_count,
        "totalPaid": fmt(total_paid),
        "pendingPayouts": pending_count,
        "pendingAmount": fmt(pending_amount),
    }


def serialize_payout(p: Payout) -> dict:
    return {
        "id": p.id,
        "walletId": p.wallet_id,
        "amount": fmt(p.amount),
        "status": p.status.value,
        "paymentReferenceId": p.payment_reference_id,
        "paymentMethod": p.payment_method,
        "rejectionReason": p.rejection_reason,
        "appliedAt": p.applied_at,
        "processedAt": p.processed_at,
        "paidAt": p.paid_at,
    }
