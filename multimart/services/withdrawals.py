import logging
from datetime import datetime, timezone

from sqlalchemy.orm import Session

from multimart.errors import (
    DomainRuleError,
    NotFoundError,
    PermissionDeniedError,
    ValidationFailed,
)
from multimart.models import User, WithdrawalRequest, WithdrawalStatus
from multimart.services.wallet import (
    INSUFFICIENT_BALANCE,
    apply_debit,
    get_or_create_wallet,
)
from multimart.utils.money import money, fmt

logger = logging.getLogger(__name__)

PAYMENT_METHODS = ("bank_transfer", "upi")

# target status -> statuses it may be reached from
ALLOWED_FROM = {
    WithdrawalStatus.approved: {WithdrawalStatus.pending},
    WithdrawalStatus.processing: {WithdrawalStatus.approved},
    WithdrawalStatus.completed: {WithdrawalStatus.approved, WithdrawalStatus.processing},
    WithdrawalStatus.rejected: {WithdrawalStatus.pending},
    WithdrawalStatus.cancelled: {WithdrawalStatus.pending},
}

VERBS = {
    WithdrawalStatus.approved: "approved",
    WithdrawalStatus.processing: "processed",
    WithdrawalStatus.completed: "completed",
    WithdrawalStatus.rejected: "rejected",
    WithdrawalStatus.cancelled: "cancelled",
}


def _now():
    return datetime.now(timezone.utc)


def _check_transition(request: WithdrawalRequest, target: WithdrawalStatus) -> None:
    if request.status not in ALLOWED_FROM[target]:
        raise DomainRuleError(
            f"Withdrawal request cannot be {VERBS[target]}. "
            f"Current status: {request.status.value}"
        )


def get_withdrawal(db: Session, request_id: int) -> WithdrawalRequest:
    request = db.query(WithdrawalRequest).filter(WithdrawalRequest.id == request_id).first()
    if not request:
        raise NotFoundError("Withdrawal request not found")
    return request


# =====================================================
# REQUESTER SIDE
# =====================================================

def create_withdrawal(
    db: Session,
    user: User,
    amount,
    payment_method: str,
    account_details: str | None = None,
) -> WithdrawalRequest:
    amount = money(amount)
    if amount <= 0:
        raise ValidationFailed("Amount must be greater than zero")
    if payment_method not in PAYMENT_METHODS:
        raise ValidationFailed("Payment method must be bank_transfer or upi")

    try:
        wallet = get_or_create_wallet(db, user.id, user.role)

        if money(wallet.withdrawable_balance) < amount:
            raise DomainRuleError(INSUFFICIENT_BALANCE)

        request = WithdrawalRequest(
            wallet_id=wallet.id,
            user_id=user.id,
            user_type=user.role.value,
            amount=amount,
            status=WithdrawalStatus.pending,
            payment_method=payment_method,
            account_details=account_details,
        )
        db.add(request)
        db.commit()
    except Exception:
        db.rollback()
        raise

    db.refresh(request)
    logger.info(
        "Withdrawal requested | request_id=%s user_id=%s amount=%s",
        request.id,
        user.id,
        fmt(amount),
    )
    return request


def list_my_withdrawals(db: Session, user_id: int):
    return (
        db.query(WithdrawalRequest)
        .filter(WithdrawalRequest.user_id == user_id)
        .order_by(WithdrawalRequest.requested_at.desc(), WithdrawalRequest.id.desc())
        .all()
    )


def cancel_withdrawal(db: Session, request_id: int, user_id: int) -> WithdrawalRequest:
    request = get_withdrawal(db, request_id)
    if request.user_id != user_id:
        raise PermissionDeniedError("You do not have access to this withdrawal request")

    _check_transition(request, WithdrawalStatus.cancelled)
    request.status = WithdrawalStatus.cancelled
    db.commit()
    db.refresh(request)

    logger.info("Withdrawal cancelled | request_id=%s user_id=%s", request.id, user_id)
    return request


# =====================================================
# ADMIN SIDE
# =====================================================

def list_withdrawals(
    db: Session,
    status: str | None = None,
    user_type: str | None = None,
    page: int = 1,
    limit: int = 50,
):
    query = db.query(WithdrawalRequest)
    if status:
        try:
            query = query.filter(WithdrawalRequest.status == WithdrawalStatus(status))
        except ValueError:
            raise ValidationFailed(f"Unknown withdrawal status: {status}")
    if user_type:
        query = query.filter(WithdrawalRequest.user_type == user_type)

    page = max(1, page)
    return (
        query.order_by(WithdrawalRequest.requested_at.desc(), WithdrawalRequest.id.desc())
        .offset((page - 1) * limit)
        .limit(limit)
        .all()
    )


def approve_withdrawal(
    db: Session,
    request_id: int,
    admin_id: int,
    admin_notes: str | None = None,
    payout_reference_id: str | None = None,
    gateway_payout_id: str | None = None,
) -> WithdrawalRequest:
    request = get_withdrawal(db, request_id)
    _check_transition(request, WithdrawalStatus.approved)

    request.status = WithdrawalStatus.approved
    request.processed_by = admin_id
    request.processed_at = _now()
    if admin_notes:
        request.admin_notes = admin_notes
    if payout_reference_id:
        request.payout_reference_id = payout_reference_id
    if gateway_payout_id:
        request.gateway_payout_id = gateway_payout_id
    db.commit()
    db.refresh(request)

    logger.info("Withdrawal approved | request_id=%s admin_id=%s", request.id, admin_id)
    return request


def process_withdrawal(db: Session, request_id: int, admin_id: int) -> WithdrawalRequest:
    request = get_withdrawal(db, request_id)
    _check_transition(request, WithdrawalStatus.processing)

    request.status = WithdrawalStatus.processing
    request.processed_by = admin_id
    db.commit()
    db.refresh(request)

    logger.info("Withdrawal processing | request_id=%s admin_id=%s", request.id, admin_id)
    return request


def complete_withdrawal(
    db: Session,
    request_id: int,
    admin_id: int,
    payout_reference_id: str | None = None,
) -> WithdrawalRequest:
    """
    Mark a withdrawal paid out and debit the wallet in the same transaction.

    If the withdrawable balance no longer covers the amount, nothing changes.
    """
    request = get_withdrawal(db, request_id)
    _check_transition(request, WithdrawalStatus.completed)

    try:
        wallet = request.wallet
        apply_debit(
            db,
            wallet,
            request.amount,
            "withdrawal",
            description=f"Withdrawal request #{request.id}",
            reference_id=payout_reference_id or request.payout_reference_id,
            metadata={"withdrawalRequestId": request.id},
        )

        request.status = WithdrawalStatus.completed
        request.processed_by = admin_id
        request.completed_at = _now()
        if payout_reference_id:
            request.payout_reference_id = payout_reference_id
        db.commit()
    except Exception:
        db.rollback()
        raise

    db.refresh(request)
    logger.info(
        "Withdrawal completed | request_id=%s admin_id=%s amount=%s",
        request.id,
        admin_id,
        fmt(request.amount),
    )
    return request


def reject_withdrawal(
    db: Session,
    request_id: int,
    admin_id: int,
    rejection_reason: str,
    admin_notes: str | None = None,
) -> WithdrawalRequest:
    if not rejection_reason or not rejection_reason.strip():
        raise ValidationFailed("Rejection reason is required")

    request = get_withdrawal(db, request_id)
    _check_transition(request, WithdrawalStatus.rejected)

    request.status = WithdrawalStatus.rejected
    request.processed_by = admin_id
    request.processed_at = _now()
    request.rejection_reason = rejection_reason
    if admin_notes:
        request.admin_notes = admin_notes
    db.commit()
    db.refresh(request)

    logger.info("Withdrawal rejected | request_id=%s admin_id=%s", request.id, admin_id)
    return request


def serialize_withdrawal(r: WithdrawalRequest) -> dict:
    return {
        "id": r.id,
        "walletId": r.wallet_id,
        "userId": r.user_id,
        "userType": r.user_type,
        "amount": fmt(r.amount),
        "status": r.status.value,
        "paymentMethod": r.payment_method,
        "accountDetails": r.account_details,
        "processedBy": r.processed_by,
        "adminNotes": r.admin_notes,
        "rejectionReason": r.rejection_reason,
        "payoutReferenceId": r.payout_reference_id,
        "gatewayPayoutId": r.gateway_payout_id,
        "requestedAt": r.requested_at,
        "processedAt": r.processed_at,
        "completedAt": r.completed_at,
    }
