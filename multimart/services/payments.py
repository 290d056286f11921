import logging

from sqlalchemy.orm import Session

from multimart.config import Settings
from multimart.errors import (
    AuthenticationError,
    ConflictError,
    NotFoundError,
    PermissionDeniedError,
)
from multimart.gateway import RazorpayClient
from multimart.models import Order, OrderStatus, PaymentStatus, UserRole
from multimart.services.orders import create_order_from_cart
from multimart.services.wallet import credit_wallet
from multimart.utils.money import money, fmt

logger = logging.getLogger(__name__)


# =====================================================
# CREATE GATEWAY ORDER
# =====================================================

def create_payment_order(
    db: Session,
    settings: Settings,
    gateway: RazorpayClient,
    user_id: int,
    address_id: int,
    notes: str | None = None,
) -> dict:
    """
    Place the order from the cart, then open a matching gateway order.

    The marketplace order is already committed when the gateway call runs;
    a gateway failure leaves it pending with no gateway_order_id.
    """
    order = create_order_from_cart(db, settings, user_id, address_id, notes)

    gateway_order = gateway.create_order(
        amount=money(order.final_amount),
        currency=settings.currency,
        receipt=f"order_{order.id}",
    )

    order.gateway_order_id = gateway_order["id"]
    order.payment_status = PaymentStatus.processing
    db.commit()
    db.refresh(order)

    logger.info(
        "Gateway order created | order_id=%s gateway_order_id=%s amount=%s",
        order.id,
        order.gateway_order_id,
        fmt(order.final_amount),
    )

    return {
        "orderId": order.id,
        "gatewayOrderId": order.gateway_order_id,
        "amount": gateway_order.get("amount"),
        "currency": gateway_order.get("currency", settings.currency),
        "keyId": settings.razorpay_key_id,
    }


# =====================================================
# VERIFY + CREDIT
# =====================================================

def _split(settings: Settings, order: Order):
    base = money(order.final_amount) - money(order.shipping_charges)
    commission = money(base * settings.platform_commission_rate)
    earnings = money(base - commission)
    return commission, earnings


def verify_payment(
    db: Session,
    settings: Settings,
    gateway: RazorpayClient,
    user_id: int,
    gateway_order_id: str,
    gateway_payment_id: str,
    signature: str,
) -> Order:
    """
    Confirm a gateway payment and credit the wallets.

    The order update commits first. Each wallet credit then runs in its own
    transaction; a failed credit is logged and leaves the order completed.
    """
    if not gateway.verify_signature(gateway_order_id, gateway_payment_id, signature):
        logger.warning(
            "Invalid payment signature | gateway_order_id=%s payment_id=%s",
            gateway_order_id,
            gateway_payment_id,
        )
        raise AuthenticationError("Invalid payment signature")

    order = db.query(Order).filter(Order.gateway_order_id == gateway_order_id).first()
    if not order:
        raise NotFoundError("Order not found")
    if order.user_id != user_id:
        raise PermissionDeniedError("You do not have access to this order")

    if order.payment_status == PaymentStatus.completed:
        raise ConflictError("Payment already completed for this order")

    if order.status in (OrderStatus.cancelled, OrderStatus.refunded):
        logger.warning(
            "Payment verified for inactive order | order_id=%s status=%s payment_id=%s",
            order.id,
            order.status.value,
            gateway_payment_id,
        )
        raise ConflictError(f"Order is {order.status.value}; payment cannot be applied")

    payment = gateway.fetch_payment(gateway_payment_id)

    commission, earnings = _split(settings, order)

    try:
        order.payment_status = PaymentStatus.completed
        order.status = OrderStatus.confirmed
        order.gateway_payment_id = gateway_payment_id
        order.gateway_signature = signature
        order.payment_method = payment.get("method")
        order.platform_commission = commission
        order.seller_earnings = earnings
        db.commit()
    except Exception:
        db.rollback()
        raise

    logger.info(
        "Payment verified | order_id=%s payment_id=%s commission=%s seller_earnings=%s",
        order.id,
        gateway_payment_id,
        fmt(commission),
        fmt(earnings),
    )

    _credit_after_payment(db, order, earnings, gateway_payment_id)

    db.refresh(order)
    return order


def _credit_after_payment(db: Session, order: Order, earnings, payment_id: str) -> None:
    order_id = order.id
    seller_id = order.seller_id
    partner_id = order.delivery_partner_id
    shipping = money(order.shipping_charges)

    if seller_id and earnings > 0:
        try:
            credit_wallet(
                db,
                seller_id,
                UserRole.seller,
                earnings,
                "order_earning",
                description=f"Earnings for order #{order_id}",
                order_id=order_id,
                reference_id=payment_id,
            )
        except Exception:
            logger.exception(
                "Seller wallet credit failed | order_id=%s seller_id=%s amount=%s",
                order_id,
                seller_id,
                fmt(earnings),
            )

    if partner_id and shipping > 0:
        try:
            credit_wallet(
                db,
                partner_id,
                UserRole.deliveryPartner,
                shipping,
                "delivery_fee",
                pending=True,
                description=f"Delivery fee for order #{order_id}",
                order_id=order_id,
                reference_id=payment_id,
            )
        except Exception:
            logger.exception(
                "Delivery wallet credit failed | order_id=%s partner_id=%s amount=%s",
                order_id,
                partner_id,
                fmt(shipping),
            )
