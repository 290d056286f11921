from typing import Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from multimart.config import Settings
from multimart.database import get_db
from multimart.dependencies import get_current_user, get_gateway, get_settings
from multimart.errors import ok
from multimart.gateway import RazorpayClient
from multimart.models import User
from multimart.services import payments as payment_service
from multimart.services.orders import serialize_order

router = APIRouter(prefix="/payments", tags=["payments"])


# =====================================================
# SCHEMAS
# =====================================================

class CreatePaymentOrderPayload(BaseModel):
    address_id: int
    notes: Optional[str] = None


class VerifyPaymentPayload(BaseModel):
    gateway_order_id: str = Field(min_length=1)
    gateway_payment_id: str = Field(min_length=1)
    gateway_signature: str = Field(min_length=1)


# =====================================================
# ROUTES
# =====================================================

@router.get("/key")
def get_key(settings: Settings = Depends(get_settings)):
    return ok("Payment key retrieved", {"keyId": settings.razorpay_key_id})


@router.post("/create-order", status_code=201)
def create_payment_order(
    payload: CreatePaymentOrderPayload,
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_settings),
    gateway: RazorpayClient = Depends(get_gateway),
    user: User = Depends(get_current_user),
):
    data = payment_service.create_payment_order(
        db, settings, gateway, user.id, payload.address_id, payload.notes
    )
    return ok("Payment order created successfully", data)


@router.post("/verify")
def verify_payment(
    payload: VerifyPaymentPayload,
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_settings),
    gateway: RazorpayClient = Depends(get_gateway),
    user: User = Depends(get_current_user),
):
    order = payment_service.verify_payment(
        db,
        settings,
        gateway,
        user.id,
        payload.gateway_order_id,
        payload.gateway_payment_id,
        payload.gateway_signature,
    )
    return ok("Payment verified successfully", serialize_order(order))
