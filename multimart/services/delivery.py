import logging
from datetime import datetime, timezone

from sqlalchemy.orm import Session

from multimart.errors import (
    ConflictError,
    DomainRuleError,
    NotFoundError,
    PermissionDeniedError,
    ValidationFailed,
)
from multimart.models import (
    Delivery,
    DeliveryStatus,
    Order,
    OrderStatus,
    TransactionType,
    User,
    UserRole,
    WalletTransaction,
)
from multimart.services.wallet import get_or_create_wallet, release_pending
from multimart.utils.money import money, fmt

logger = logging.getLogger(__name__)

PARTNER_TRANSITIONS = {
    DeliveryStatus.assigned: {
        DeliveryStatus.picked_up,
        DeliveryStatus.failed,
        DeliveryStatus.cancelled,
    },
    DeliveryStatus.picked_up: {
        DeliveryStatus.out_for_delivery,
        DeliveryStatus.failed,
        DeliveryStatus.cancelled,
    },
    DeliveryStatus.out_for_delivery: {
        DeliveryStatus.delivered,
        DeliveryStatus.failed,
        DeliveryStatus.cancelled,
    },
}

# order statuses that follow a delivery status change
ORDER_STATUS_FOR = {
    DeliveryStatus.out_for_delivery: OrderStatus.out_for_delivery,
    DeliveryStatus.delivered: OrderStatus.delivered,
}


def _now():
    return datetime.now(timezone.utc)


# =====================================================
# ADMIN: ASSIGN
# =====================================================

def assign_delivery_partner(db: Session, order_id: int, partner_id: int) -> Delivery:
    order = db.query(Order).filter(Order.id == order_id).first()
    if not order:
        raise NotFoundError("Order not found")

    if order.status in (OrderStatus.delivered, OrderStatus.cancelled):
        raise DomainRuleError(
            f"Cannot assign a delivery partner to an order in status {order.status.value}"
        )

    partner = db.query(User).filter(User.id == partner_id).first()
    if not partner or partner.role != UserRole.deliveryPartner:
        raise ValidationFailed("User is not a delivery partner")
    if not partner.is_active:
        raise ValidationFailed("Delivery partner is inactive")

    delivery = db.query(Delivery).filter(Delivery.order_id == order.id).first()
    if delivery and delivery.delivery_partner_id != partner.id:
        # the pending fee lives in the current partner's wallet
        fee_credited = (
            db.query(WalletTransaction.id)
            .filter(
                WalletTransaction.order_id == order.id,
                WalletTransaction.category == "delivery_fee",
                WalletTransaction.type == TransactionType.pending,
            )
            .first()
        )
        if fee_credited:
            raise ConflictError(
                "Delivery fee already credited to the assigned partner; "
                "the order cannot be reassigned"
            )

    try:
        if not delivery:
            delivery = Delivery(order_id=order.id, buyer_id=order.user_id)
            db.add(delivery)

        delivery.delivery_partner_id = partner.id
        delivery.status = DeliveryStatus.assigned
        delivery.delivery_fee = money(order.shipping_charges)
        delivery.assigned_at = _now()

        order.delivery_partner_id = partner.id
        db.commit()
    except Exception:
        db.rollback()
        raise

    db.refresh(delivery)
    logger.info(
        "Delivery assigned | order_id=%s partner_id=%s fee=%s",
        order.id,
        partner.id,
        fmt(delivery.delivery_fee),
    )
    return delivery


# =====================================================
# PARTNER: LIST + ADVANCE
# =====================================================

def list_partner_deliveries(db: Session, partner_id: int, status: str | None = None):
    query = db.query(Delivery).filter(Delivery.delivery_partner_id == partner_id)
    if status:
        try:
            query = query.filter(Delivery.status == DeliveryStatus(status))
        except ValueError:
            raise ValidationFailed(f"Unknown delivery status: {status}")
    return query.order_by(Delivery.created_at.desc(), Delivery.id.desc()).all()


def update_delivery_status(
    db: Session,
    delivery_id: int,
    partner_id: int,
    new_status: str,
    reason: str | None = None,
) -> Delivery:
    """
    Advance a delivery. On delivered the order is marked delivered and the
    partner's pending fee for it becomes withdrawable.
    """
    delivery = db.query(Delivery).filter(Delivery.id == delivery_id).first()
    if not delivery:
        raise NotFoundError("Delivery not found")
    if delivery.delivery_partner_id != partner_id:
        raise PermissionDeniedError("This delivery is not assigned to you")

    try:
        target = DeliveryStatus(new_status)
    except ValueError:
        raise ValidationFailed(f"Unknown delivery status: {new_status}")

    order = delivery.order
    if order.status in (OrderStatus.cancelled, OrderStatus.refunded):
        raise DomainRuleError(f"Order is {order.status.value}; delivery cannot be updated")

    if target not in PARTNER_TRANSITIONS.get(delivery.status, set()):
        raise DomainRuleError(
            f"Cannot change delivery status from {delivery.status.value} to {target.value}"
        )

    try:
        delivery.status = target
        if target == DeliveryStatus.picked_up:
            delivery.picked_up_at = _now()
        elif target == DeliveryStatus.delivered:
            delivery.delivered_at = _now()
        elif target in (DeliveryStatus.cancelled, DeliveryStatus.failed):
            delivery.cancellation_reason = reason

        if target in ORDER_STATUS_FOR:
            order.status = ORDER_STATUS_FOR[target]

        if target == DeliveryStatus.delivered:
            wallet = get_or_create_wallet(db, partner_id, UserRole.deliveryPartner)
            released = release_pending(
                db,
                wallet,
                order.id,
                delivery_id=delivery.id,
            )
            if released:
                logger.info(
                    "Delivery fee released | order_id=%s partner_id=%s amount=%s",
                    order.id,
                    partner_id,
                    fmt(released.amount),
                )

        db.commit()
    except Exception:
        db.rollback()
        raise

    db.refresh(delivery)
    logger.info(
        "Delivery status updated | delivery_id=%s partner_id=%s status=%s",
        delivery.id,
        partner_id,
        target.value,
    )
    return delivery


def serialize_delivery(d: Delivery) -> dict:
    return {
        "id": d.id,
        "orderId": d.order_id,
        "deliveryPartnerId": d.delivery_partner_id,
        "buyerId": d.buyer_id,
        "status": d.status.value,
        "deliveryFee": fmt(d.delivery_fee),
        "assignedAt": d.assigned_at,
        "pickedUpAt": d.picked_up_at,
        "deliveredAt": d.delivered_at,
        "cancellationReason": d.cancellation_reason,
        "createdAt": d.created_at,
    }
