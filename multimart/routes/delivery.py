from typing import Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel
from sqlalchemy.orm import Session

from multimart.database import get_db
from multimart.dependencies import require_admin, require_delivery_partner
from multimart.errors import ok
from multimart.models import User
from multimart.services import delivery as delivery_service

router = APIRouter(tags=["delivery"])


class AssignPayload(BaseModel):
    delivery_partner_id: int


class DeliveryStatusPayload(BaseModel):
    status: str
    reason: Optional[str] = None


# =====================================================
# ADMIN: ASSIGN PARTNER
# =====================================================

@router.post("/admin/orders/{order_id}/assign-delivery")
def assign_delivery(
    order_id: int,
    payload: AssignPayload,
    db: Session = Depends(get_db),
    admin: User = Depends(require_admin),
):
    delivery = delivery_service.assign_delivery_partner(db, order_id, payload.delivery_partner_id)
    return ok("Delivery partner assigned successfully", delivery_service.serialize_delivery(delivery))


# =====================================================
# DELIVERY PARTNER
# =====================================================

@router.get("/delivery")
def list_my_deliveries(
    status: Optional[str] = None,
    db: Session = Depends(get_db),
    partner: User = Depends(require_delivery_partner),
):
    deliveries = delivery_service.list_partner_deliveries(db, partner.id, status)
    return ok(
        "Deliveries retrieved successfully",
        [delivery_service.serialize_delivery(d) for d in deliveries],
    )


@router.patch("/delivery/{delivery_id}/status")
def update_delivery_status(
    delivery_id: int,
    payload: DeliveryStatusPayload,
    db: Session = Depends(get_db),
    partner: User = Depends(require_delivery_partner),
):
    delivery = delivery_service.update_delivery_status(
        db, delivery_id, partner.id, payload.status, payload.reason
    )
    return ok("Delivery status updated successfully", delivery_service.serialize_delivery(delivery))
