from typing import Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from multimart.database import get_db
from multimart.dependencies import require_admin
from multimart.errors import ok
from multimart.models import User
from multimart.services import withdrawals as withdrawal_service
from multimart.services.wallet import serialize_wallet

router = APIRouter(prefix="/admin/withdrawals", tags=["admin-withdrawals"])


# =====================================================
# SCHEMAS
# =====================================================

class ApprovePayload(BaseModel):
    admin_notes: Optional[str] = None
    payout_reference_id: Optional[str] = None
    gateway_payout_id: Optional[str] = None


class CompletePayload(BaseModel):
    payout_reference_id: Optional[str] = None


class RejectPayload(BaseModel):
    rejection_reason: str = Field(min_length=1)
    admin_notes: Optional[str] = None


# =====================================================
# ADMIN: LIST / DETAIL
# =====================================================

@router.get("")
def list_withdrawals(
    status: Optional[str] = None,
    user_type: Optional[str] = None,
    page: int = Query(1, ge=1),
    limit: int = Query(50, ge=1, le=200),
    db: Session = Depends(get_db),
    admin: User = Depends(require_admin),
):
    requests = withdrawal_service.list_withdrawals(db, status, user_type, page, limit)
    return ok("Withdrawal requests retrieved successfully", {
        "withdrawalRequests": [withdrawal_service.serialize_withdrawal(r) for r in requests],
        "pagination": {"page": page, "limit": limit, "count": len(requests)},
    })


@router.get("/{request_id}")
def get_withdrawal(
    request_id: int,
    db: Session = Depends(get_db),
    admin: User = Depends(require_admin),
):
    request = withdrawal_service.get_withdrawal(db, request_id)
    return ok("Withdrawal request retrieved successfully", {
        "withdrawalRequest": withdrawal_service.serialize_withdrawal(request),
        "wallet": serialize_wallet(request.wallet),
    })


# =====================================================
# ADMIN: TRANSITIONS
# =====================================================

@router.put("/{request_id}/approve")
def approve_withdrawal(
    request_id: int,
    payload: ApprovePayload,
    db: Session = Depends(get_db),
    admin: User = Depends(require_admin),
):
    request = withdrawal_service.approve_withdrawal(
        db,
        request_id,
        admin.id,
        admin_notes=payload.admin_notes,
        payout_reference_id=payload.payout_reference_id,
        gateway_payout_id=payload.gateway_payout_id,
    )
    return ok(
        "Withdrawal request approved successfully",
        withdrawal_service.serialize_withdrawal(request),
    )


@router.put("/{request_id}/process")
def process_withdrawal(
    request_id: int,
    db: Session = Depends(get_db),
    admin: User = Depends(require_admin),
):
    request = withdrawal_service.process_withdrawal(db, request_id, admin.id)
    return ok(
        "Withdrawal request marked as processing",
        withdrawal_service.serialize_withdrawal(request),
    )


@router.put("/{request_id}/complete")
def complete_withdrawal(
    request_id: int,
    payload: CompletePayload,
    db: Session = Depends(get_db),
    admin: User = Depends(require_admin),
):
    request = withdrawal_service.complete_withdrawal(
        db, request_id, admin.id, payout_reference_id=payload.payout_reference_id
    )
    return ok(
        "Withdrawal request completed successfully",
        withdrawal_service.serialize_withdrawal(request),
    )


@router.put("/{request_id}/reject")
def reject_withdrawal(
    request_id: int,
    payload: RejectPayload,
    db: Session = Depends(get_db),
    admin: User = Depends(require_admin),
):
    request = withdrawal_service.reject_withdrawal(
        db,
        request_id,
        admin.id,
        payload.rejection_reason,
        admin_notes=payload.admin_notes,
    )
    return ok(
        "Withdrawal request rejected",
        withdrawal_service.serialize_withdrawal(request),
    )
