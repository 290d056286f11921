from typing import Optional

from fastapi import APIRouter, Depends, status
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from multimart.database import get_db
from multimart.dependencies import get_current_user
from multimart.errors import ok
from multimart.models import User
from multimart.services import cart as cart_service

router = APIRouter(prefix="/cart", tags=["cart"])


# =====================================================
# Pydantic Schemas
# =====================================================

class AddToCartPayload(BaseModel):
    product_id: int
    variant_id: Optional[int] = None
    quantity: int = Field(default=1, gt=0)


class UpdateCartItemPayload(BaseModel):
    quantity: int = Field(gt=0)


# =====================================================
# USER: GET CART
# =====================================================
@router.get("", status_code=status.HTTP_200_OK)
def get_cart(
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    return ok("Cart retrieved successfully", cart_service.get_cart(db, user.id))


# =====================================================
# USER: ADD TO CART
# =====================================================
@router.post("/items", status_code=status.HTTP_201_CREATED)
def add_to_cart(
    payload: AddToCartPayload,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    item = cart_service.add_item(
        db,
        user.id,
        payload.product_id,
        quantity=payload.quantity,
        variant_id=payload.variant_id,
    )
    return ok("Item added to cart", {"itemId": item.id, "quantity": item.quantity})


# =====================================================
# USER: UPDATE CART ITEM
# =====================================================
@router.patch("/items/{item_id}", status_code=status.HTTP_200_OK)
def update_cart_item(
    item_id: int,
    payload: UpdateCartItemPayload,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    item = cart_service.update_item(db, user.id, item_id, payload.quantity)
    return ok("Cart item updated", {"itemId": item.id, "quantity": item.quantity})


# =====================================================
# USER: REMOVE CART ITEM
# =====================================================
@router.delete("/items/{item_id}", status_code=status.HTTP_200_OK)
def remove_cart_item(
    item_id: int,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    cart_service.remove_item(db, user.id, item_id)
    return ok("Item removed from cart")


# =====================================================
# USER: CLEAR CART
# =====================================================
@router.delete("", status_code=status.HTTP_200_OK)
def clear_cart(
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    if not cart_service.clear_cart(db, user.id):
        return ok("Cart already empty")
    return ok("Cart cleared")
