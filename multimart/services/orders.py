import logging
from decimal import Decimal

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, joinedload

from multimart.config import Settings
from multimart.errors import (
    NotFoundError,
    DomainRuleError,
    PermissionDeniedError,
    ConflictError,
)
from multimart.models import (
    Address,
    Cart,
    CartItem,
    Delivery,
    DeliveryStatus,
    Order,
    OrderItem,
    OrderStatus,
    Product,
    ProductVariant,
)
from multimart.utils.money import money, fmt

logger = logging.getLogger(__name__)

MAX_PAGE_SIZE = 10

# seller-driven status moves; cancellation is only allowed before shipping
SELLER_TRANSITIONS = {
    OrderStatus.pending: {OrderStatus.confirmed, OrderStatus.cancelled},
    OrderStatus.confirmed: {OrderStatus.processing, OrderStatus.cancelled},
    OrderStatus.processing: {OrderStatus.shipped, OrderStatus.cancelled},
    OrderStatus.shipped: {OrderStatus.out_for_delivery},
    OrderStatus.out_for_delivery: {OrderStatus.delivered},
}

NOT_CANCELLABLE = {OrderStatus.delivered, OrderStatus.cancelled, OrderStatus.refunded}


# =====================================================
# ORDER FROM CART (SINGLE TRANSACTION)
# =====================================================

def _load_line(db: Session, item: CartItem):
    product = db.query(Product).filter(Product.id == item.product_id).first()
    if not product or not product.is_active:
        name = product.name if product else f"#{item.product_id}"
        raise DomainRuleError(f'Product "{name}" is no longer available')

    variant = None
    if item.variant_id is not None:
        variant = (
            db.query(ProductVariant)
            .filter(
                ProductVariant.id == item.variant_id,
                ProductVariant.product_id == product.id,
            )
            .first()
        )
        if not variant or not variant.is_active:
            raise DomainRuleError(f'Product "{product.name}" is no longer available')

    available = variant.stock if variant else product.stock
    if available < item.quantity:
        raise DomainRuleError(
            f'Insufficient stock for product "{product.name}". '
            f"Available: {available}, Requested: {item.quantity}"
        )

    if variant and variant.price is not None:
        price = money(variant.price)
    else:
        price = money(product.price)

    return product, variant, price


def create_order_from_cart(
    db: Session,
    settings: Settings,
    user_id: int,
    address_id: int,
    notes: str | None = None,
) -> Order:
    """
    Turn the user's cart into an order.

    Validates the address, every product/variant and its stock, snapshots
    prices, writes the order and its items, decrements stock and clears the
    cart. Everything commits together or nothing does.
    """
    try:
        address = (
            db.query(Address)
            .filter(Address.id == address_id, Address.user_id == user_id)
            .first()
        )
        if not address:
            raise NotFoundError("Address not found")

        cart = (
            db.query(Cart)
            .options(joinedload(Cart.items))
            .filter(Cart.user_id == user_id)
            .first()
        )
        if not cart or not cart.items:
            raise DomainRuleError("Cart is empty")

        lines = []
        for item in cart.items:
            product, variant, price = _load_line(db, item)
            lines.append((item, product, variant, price))

        total = sum((price * item.quantity for item, _, _, price in lines), Decimal("0"))
        total = money(total)
        discount = money(0)
        tax = money(0)
        shipping = money(settings.shipping_charge)
        final = money(total - discount + shipping + tax)

        order = Order(
            user_id=user_id,
            seller_id=lines[0][1].seller_id,
            address_id=address.id,
            status=OrderStatus.pending,
            total_amount=total,
            discount=discount,
            shipping_charges=shipping,
            tax_amount=tax,
            final_amount=final,
            notes=notes,
        )
        db.add(order)
        db.flush()

        for item, product, variant, price in lines:
            db.add(OrderItem(
                order_id=order.id,
                product_id=product.id,
                variant_id=variant.id if variant else None,
                seller_id=product.seller_id,
                quantity=item.quantity,
                price=price,
                discount=money(0),
                tax_amount=money(0),
                final_price=money(price * item.quantity),
            ))

            # evaluated in SQL so concurrent checkouts hit the CHECK constraint
            if variant:
                variant.stock = ProductVariant.stock - item.quantity
            else:
                product.stock = Product.stock - item.quantity

        db.query(CartItem).filter(CartItem.cart_id == cart.id).delete(
            synchronize_session=False
        )

        db.commit()

    except IntegrityError as e:
        db.rollback()
        logger.warning("Order rejected by stock constraint | user_id=%s", user_id)
        raise ConflictError("Stock changed while placing the order") from e
    except Exception:
        db.rollback()
        raise

    db.refresh(order)
    logger.info(
        "Order created | order_id=%s user_id=%s items=%s final_amount=%s",
        order.id,
        user_id,
        len(lines),
        fmt(order.final_amount),
    )
    return order


# =====================================================
# QUERIES
# =====================================================

def get_order_for_user(db: Session, order_id: int, user_id: int) -> Order:
    order = (
        db.query(Order)
        .options(joinedload(Order.items))
        .filter(Order.id == order_id)
        .first()
    )
    if not order:
        raise NotFoundError("Order not found")
    if order.user_id != user_id:
        raise PermissionDeniedError("You do not have access to this order")
    return order


def list_orders_for_user(db: Session, user_id: int, page: int = 1, limit: int = 10):
    limit = max(1, min(limit, MAX_PAGE_SIZE))
    page = max(1, page)

    query = db.query(Order).filter(Order.user_id == user_id)
    total = query.count()
    orders = (
        query.options(joinedload(Order.items))
        .order_by(Order.created_at.desc(), Order.id.desc())
        .offset((page - 1) * limit)
        .limit(limit)
        .all()
    )
    return orders, total, page, limit


def list_orders_for_seller(db: Session, seller_id: int, status: str | None = None):
    query = db.query(Order).filter(Order.seller_id == seller_id)
    if status:
        try:
            query = query.filter(Order.status == OrderStatus(status))
        except ValueError:
            raise DomainRuleError(f"Unknown order status: {status}")
    return query.order_by(Order.created_at.desc(), Order.id.desc()).all()


# =====================================================
# STATUS CHANGES
# =====================================================

def _restore_stock(db: Session, order: Order) -> None:
    for item in order.items:
        if item.variant_id is not None:
            db.query(ProductVariant).filter(ProductVariant.id == item.variant_id).update(
                {ProductVariant.stock: ProductVariant.stock + item.quantity},
                synchronize_session=False,
            )
        else:
            db.query(Product).filter(Product.id == item.product_id).update(
                {Product.stock: Product.stock + item.quantity},
                synchronize_session=False,
            )


def _cancel_delivery(db: Session, order: Order) -> None:
    db.query(Delivery).filter(
        Delivery.order_id == order.id,
        Delivery.status.notin_(
            (DeliveryStatus.delivered, DeliveryStatus.failed, DeliveryStatus.cancelled)
        ),
    ).update(
        {
            Delivery.status: DeliveryStatus.cancelled,
            Delivery.cancellation_reason: "Order cancelled",
        },
        synchronize_session=False,
    )


def cancel_order(db: Session, order_id: int, user_id: int) -> Order:
    order = get_order_for_user(db, order_id, user_id)

    if order.status in NOT_CANCELLABLE:
        raise DomainRuleError(f"Order cannot be cancelled in status {order.status.value}")

    try:
        _restore_stock(db, order)
        _cancel_delivery(db, order)
        order.status = OrderStatus.cancelled
        db.commit()
    except Exception:
        db.rollback()
        raise

    db.refresh(order)
    logger.info("Order cancelled | order_id=%s user_id=%s", order.id, user_id)
    return order


def seller_update_status(db: Session, order_id: int, seller_id: int, new_status: str) -> Order:
    order = (
        db.query(Order)
        .options(joinedload(Order.items))
        .filter(Order.id == order_id)
        .first()
    )
    if not order:
        raise NotFoundError("Order not found")
    if order.seller_id != seller_id:
        raise PermissionDeniedError("You do not have access to this order")

    try:
        target = OrderStatus(new_status)
    except ValueError:
        raise DomainRuleError(f"Unknown order status: {new_status}")

    if target not in SELLER_TRANSITIONS.get(order.status, set()):
        raise DomainRuleError(
            f"Cannot change order status from {order.status.value} to {target.value}"
        )

    try:
        if target == OrderStatus.cancelled:
            _restore_stock(db, order)
            _cancel_delivery(db, order)
        order.status = target
        db.commit()
    except Exception:
        db.rollback()
        raise

    db.refresh(order)
    logger.info(
        "Order status updated | order_id=%s seller_id=%s status=%s",
        order.id,
        seller_id,
        target.value,
    )
    return order


# =====================================================
# SERIALIZERS
# =====================================================

def serialize_order_item(i: OrderItem) -> dict:
    return {
        "id": i.id,
        "productId": i.product_id,
        "variantId": i.variant_id,
        "sellerId": i.seller_id,
        "quantity": i.quantity,
        "price": fmt(i.price),
        "discount": fmt(i.discount),
        "taxAmount": fmt(i.tax_amount),
        "finalPrice": fmt(i.final_price),
    }


def serialize_order(o: Order, include_items: bool = True) -> dict:
    data = {
        "id": o.id,
        "userId": o.user_id,
        "sellerId": o.seller_id,
        "addressId": o.address_id,
        "status": o.status.value,
        "paymentStatus": o.payment_status.value,
        "totalAmount": fmt(o.total_amount),
        "discount": fmt(o.discount),
        "shippingCharges": fmt(o.shipping_charges),
        "taxAmount": fmt(o.tax_amount),
        "finalAmount": fmt(o.final_amount),
        "platformCommission": fmt(o.platform_commission) if o.platform_commission is not None else None,
        "sellerEarnings": fmt(o.seller_earnings) if o.seller_earnings is not None else None,
        "gatewayOrderId": o.gateway_order_id,
        "gatewayPaymentId": o.gateway_payment_id,
        "paymentMethod": o.payment_method,
        "deliveryPartnerId": o.delivery_partner_id,
        "notes": o.notes,
        "createdAt": o.created_at,
        "updatedAt": o.updated_at,
    }
    if include_items:
        data["items"] = [serialize_order_item(i) for i in o.items]
    return data
