from decimal import Decimal
from typing import Optional

from fastapi import APIRouter, Depends, Query, status
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from multimart.database import get_db
from multimart.dependencies import require_seller_or_delivery_partner
from multimart.errors import ok
from multimart.models import User, WalletTransaction
from multimart.services import withdrawals as withdrawal_service
from multimart.services.wallet import (
    get_or_create_wallet,
    serialize_transaction,
    serialize_wallet,
)

router = APIRouter(prefix="/wallet", tags=["wallet"])


class WithdrawalPayload(BaseModel):
    amount: Decimal = Field(gt=0, max_digits=10, decimal_places=2)
    payment_method: str
    account_details: Optional[str] = None


@router.get("", status_code=status.HTTP_200_OK)
def get_wallet(
    db: Session = Depends(get_db),
    user: User = Depends(require_seller_or_delivery_partner),
):
    wallet = get_or_create_wallet(db, user.id, user.role)
    db.commit()
    return ok("Wallet retrieved successfully", serialize_wallet(wallet))


@router.get("/transactions", status_code=status.HTTP_200_OK)
def get_wallet_transactions(
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    category: Optional[str] = None,
    db: Session = Depends(get_db),
    user: User = Depends(require_seller_or_delivery_partner),
):
    wallet = get_or_create_wallet(db, user.id, user.role)
    db.commit()

    query = db.query(WalletTransaction).filter(WalletTransaction.wallet_id == wallet.id)
    if category:
        query = query.filter(WalletTransaction.category == category)
    txns = (
        query.order_by(WalletTransaction.created_at.desc(), WalletTransaction.id.desc())
        .offset(offset)
        .limit(limit)
        .all()
    )
    return ok("Transactions retrieved successfully", [serialize_transaction(t) for t in txns])


# =====================================================
# WITHDRAWAL REQUESTS (REQUESTER)
# =====================================================

@router.post("/withdrawals", status_code=status.HTTP_201_CREATED)
def request_withdrawal(
    payload: WithdrawalPayload,
    db: Session = Depends(get_db),
    user: User = Depends(require_seller_or_delivery_partner),
):
    request = withdrawal_service.create_withdrawal(
        db, user, payload.amount, payload.payment_method, payload.account_details
    )
    return ok(
        "Withdrawal request submitted successfully",
        withdrawal_service.serialize_withdrawal(request),
    )


@router.get("/withdrawals", status_code=status.HTTP_200_OK)
def list_my_withdrawals(
    db: Session = Depends(get_db),
    user: User = Depends(require_seller_or_delivery_partner),
):
    requests = withdrawal_service.list_my_withdrawals(db, user.id)
    return ok(
        "Withdrawal requests retrieved successfully",
        [withdrawal_service.serialize_withdrawal(r) for r in requests],
    )


@router.post("/withdrawals/{request_id}/cancel", status_code=status.HTTP_200_OK)
def cancel_my_withdrawal(
    request_id: int,
    db: Session = Depends(get_db),
    user: User = Depends(require_seller_or_delivery_partner),
):
    request = withdrawal_service.cancel_withdrawal(db, request_id, user.id)
    return ok(
        "Withdrawal request cancelled successfully",
        withdrawal_service.serialize_withdrawal(request),
    )
