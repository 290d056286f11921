from typing import Optional

from fastapi import APIRouter, Depends, Query, status
from pydantic import BaseModel
from sqlalchemy.orm import Session

from multimart.config import Settings
from multimart.database import get_db
from multimart.dependencies import get_current_user, get_settings, require_seller
from multimart.errors import ok
from multimart.models import User
from multimart.services import orders as order_service

router = APIRouter(prefix="/orders", tags=["orders"])


# =====================================================
# PYDANTIC SCHEMAS
# =====================================================

class CreateOrderPayload(BaseModel):
    address_id: int
    notes: Optional[str] = None


class UpdateOrderStatusPayload(BaseModel):
    status: str


# =====================================================
# USER: CREATE ORDER FROM CART
# =====================================================

@router.post("", status_code=status.HTTP_201_CREATED)
def create_order(
    payload: CreateOrderPayload,
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_settings),
    user: User = Depends(get_current_user),
):
    """
    Creates an order from the user's cart.
    Validates stock, snapshots prices, deducts stock, clears cart.
    """
    order = order_service.create_order_from_cart(
        db, settings, user.id, payload.address_id, payload.notes
    )
    return ok("Order created successfully", order_service.serialize_order(order))


# =====================================================
# SELLER: LIST + STATUS
# =====================================================

@router.get("/seller")
def list_seller_orders(
    status: Optional[str] = None,
    db: Session = Depends(get_db),
    seller: User = Depends(require_seller),
):
    orders = order_service.list_orders_for_seller(db, seller.id, status)
    return ok(
        "Orders retrieved successfully",
        [order_service.serialize_order(o, include_items=False) for o in orders],
    )


@router.patch("/{order_id}/status")
def update_order_status(
    order_id: int,
    payload: UpdateOrderStatusPayload,
    db: Session = Depends(get_db),
    seller: User = Depends(require_seller),
):
    order = order_service.seller_update_status(db, order_id, seller.id, payload.status)
    return ok("Order status updated successfully", order_service.serialize_order(order))


# =====================================================
# USER: MY ORDERS
# =====================================================

@router.get("")
def list_my_orders(
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1),
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    orders, total, page, limit = order_service.list_orders_for_user(db, user.id, page, limit)
    return ok("Orders retrieved successfully", {
        "orders": [order_service.serialize_order(o) for o in orders],
        "pagination": {"page": page, "limit": limit, "total": total},
    })


@router.get("/{order_id}")
def get_my_order(
    order_id: int,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    order = order_service.get_order_for_user(db, order_id, user.id)
    return ok("Order retrieved successfully", order_service.serialize_order(order))


@router.post("/{order_id}/cancel")
def cancel_my_order(
    order_id: int,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    order = order_service.cancel_order(db, order_id, user.id)
    return ok("Order cancelled successfully", order_service.serialize_order(order))
