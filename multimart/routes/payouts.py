from decimal import Decimal
from typing import Optional

from fastapi import APIRouter, Depends, Query, status
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from multimart.database import get_db
from multimart.dependencies import require_admin, require_delivery_partner
from multimart.errors import ok
from multimart.models import User, UserRole
from multimart.services import payouts as payout_service
from multimart.services.wallet import get_or_create_wallet

router = APIRouter(tags=["payouts"])


class PayoutApplyPayload(BaseModel):
    amount: Decimal = Field(gt=0, max_digits=10, decimal_places=2)


class PayoutStatusPayload(BaseModel):
    status: str
    payment_reference_id: Optional[str] = None
    payment_method: Optional[str] = None
    rejection_reason: Optional[str] = None


# =====================================================
# DELIVERY PARTNER
# =====================================================

@router.post("/payouts", status_code=status.HTTP_201_CREATED)
def apply_for_payout(
    payload: PayoutApplyPayload,
    db: Session = Depends(get_db),
    partner: User = Depends(require_delivery_partner),
):
    payout = payout_service.apply_for_payout(db, partner.id, payload.amount)
    return ok("Payout request submitted successfully", payout_service.serialize_payout(payout))


@router.get("/payouts")
def list_my_payouts(
    db: Session = Depends(get_db),
    partner: User = Depends(require_delivery_partner),
):
    payouts = payout_service.list_payouts_for_partner(db, partner.id)
    return ok("Payouts retrieved successfully", [payout_service.serialize_payout(p) for p in payouts])


@router.get("/payouts/stats")
def my_payout_stats(
    db: Session = Depends(get_db),
    partner: User = Depends(require_delivery_partner),
):
    wallet = get_or_create_wallet(db, partner.id, UserRole.deliveryPartner)
    db.commit()
    return ok("Payout stats retrieved successfully", payout_service.payout_stats(db, wallet.id))


# =====================================================
# ADMIN
# =====================================================

@router.get("/admin/payouts")
def list_payouts(
    status: Optional[str] = None,
    page: int = Query(1, ge=1),
    limit: int = Query(50, ge=1, le=200),
    db: Session = Depends(get_db),
    admin: User = Depends(require_admin),
):
    payouts = payout_service.list_payouts(db, status, page, limit)
    return ok("Payouts retrieved successfully", [payout_service.serialize_payout(p) for p in payouts])


@router.patch("/admin/payouts/{payout_id}/status")
def update_payout_status(
    payout_id: int,
    payload: PayoutStatusPayload,
    db: Session = Depends(get_db),
    admin: User = Depends(require_admin),
):
    payout = payout_service.update_payout_status(
        db,
        payout_id,
        payload.status,
        payment_reference_id=payload.payment_reference_id,
        payment_method=payload.payment_method,
        rejection_reason=payload.rejection_reason,
    )
    return ok("Payout status updated successfully", payout_service.serialize_payout(payout))
