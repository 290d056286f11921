import logging

from sqlalchemy.orm import Session, joinedload

from multimart.errors import NotFoundError, DomainRuleError, ValidationFailed
from multimart.models import Cart, CartItem, Product, ProductVariant
from multimart.utils.money import money, fmt

logger = logging.getLogger(__name__)


# =====================================================
# HELPERS
# =====================================================

def get_or_create_cart(db: Session, user_id: int) -> Cart:
    """Get existing cart or create new one for user."""
    cart = db.query(Cart).filter(Cart.user_id == user_id).first()

    if not cart:
        cart = Cart(user_id=user_id)
        db.add(cart)
        db.commit()
        db.refresh(cart)

    return cart


def _get_item(db: Session, user_id: int, item_id: int) -> CartItem:
    cart = db.query(Cart).filter(Cart.user_id == user_id).first()
    if not cart:
        raise NotFoundError("Cart not found")

    item = (
        db.query(CartItem)
        .options(joinedload(CartItem.product), joinedload(CartItem.variant))
        .filter(CartItem.id == item_id, CartItem.cart_id == cart.id)
        .first()
    )
    if not item:
        raise NotFoundError("Cart item not found")
    return item


def _resolve_variant(db: Session, product: Product, variant_id: int | None):
    if variant_id is None:
        return None

    variant = (
        db.query(ProductVariant)
        .filter(
            ProductVariant.id == variant_id,
            ProductVariant.product_id == product.id,
            ProductVariant.is_active == True,  # noqa: E712
        )
        .first()
    )
    if not variant:
        raise NotFoundError("Variant not found")
    return variant


def _available_stock(product: Product, variant: ProductVariant | None) -> int:
    return variant.stock if variant else product.stock


# =====================================================
# OPERATIONS
# =====================================================

def get_cart(db: Session, user_id: int) -> dict:
    cart = (
        db.query(Cart)
        .options(joinedload(Cart.items).joinedload(CartItem.product))
        .filter(Cart.user_id == user_id)
        .first()
    )

    if not cart:
        return {"cartId": None, "items": [], "totalItems": 0, "subtotal": fmt(0)}

    items = []
    subtotal = money(0)
    total_items = 0

    for item in cart.items:
        # inactive products stay in the cart but are not shown
        if not item.product or not item.product.is_active:
            continue

        line_total = money(item.price) * item.quantity
        subtotal += line_total
        total_items += item.quantity

        items.append({
            "id": item.id,
            "productId": item.product_id,
            "variantId": item.variant_id,
            "name": item.product.name,
            "price": fmt(item.price),
            "quantity": item.quantity,
            "subtotal": fmt(line_total),
            "stock": _available_stock(item.product, item.variant),
        })

    return {
        "cartId": cart.id,
        "items": items,
        "totalItems": total_items,
        "subtotal": fmt(subtotal),
    }


def add_item(
    db: Session,
    user_id: int,
    product_id: int,
    quantity: int = 1,
    variant_id: int | None = None,
) -> CartItem:
    if quantity <= 0:
        raise ValidationFailed("Quantity must be positive")

    product = db.query(Product).filter(
        Product.id == product_id,
        Product.is_active == True,  # noqa: E712
    ).first()
    if not product:
        raise NotFoundError("Product not found or inactive")

    variant = _resolve_variant(db, product, variant_id)
    stock = _available_stock(product, variant)

    if quantity > stock:
        raise DomainRuleError(f"Insufficient stock. Available: {stock}")

    cart = get_or_create_cart(db, user_id)

    existing = (
        db.query(CartItem)
        .filter(
            CartItem.cart_id == cart.id,
            CartItem.product_id == product_id,
            CartItem.variant_id == variant_id if variant_id else CartItem.variant_id.is_(None),
        )
        .first()
    )

    if existing:
        new_quantity = existing.quantity + quantity
        if new_quantity > stock:
            raise DomainRuleError(f"Cannot add more. Stock limit: {stock}")
        existing.quantity = new_quantity
        db.commit()
        db.refresh(existing)
        return existing

    price = variant.price if variant and variant.price is not None else product.price
    item = CartItem(
        cart_id=cart.id,
        product_id=product_id,
        variant_id=variant_id,
        quantity=quantity,
        price=price,
    )
    db.add(item)
    db.commit()
    db.refresh(item)

    logger.info("Cart item added | user_id=%s product_id=%s qty=%s", user_id, product_id, quantity)
    return item


def update_item(db: Session, user_id: int, item_id: int, quantity: int) -> CartItem:
    if quantity <= 0:
        raise ValidationFailed("Quantity must be positive")

    item = _get_item(db, user_id, item_id)
    stock = _available_stock(item.product, item.variant)
    if quantity > stock:
        raise DomainRuleError(f"Insufficient stock. Available: {stock}")

    item.quantity = quantity
    db.commit()
    db.refresh(item)
    return item


def remove_item(db: Session, user_id: int, item_id: int) -> None:
    item = _get_item(db, user_id, item_id)
    db.delete(item)
    db.commit()


def clear_cart(db: Session, user_id: int) -> bool:
    """Returns False when there was no cart to clear."""
    cart = db.query(Cart).filter(Cart.user_id == user_id).first()
    if not cart:
        return False

    db.query(CartItem).filter(CartItem.cart_id == cart.id).delete()
    db.commit()
    return True
