import enum
from sqlalchemy import (
    Column,
    String,
    Text,
    Integer,
    Numeric,
    Boolean,
    DateTime,
    JSON,
    Enum,
    ForeignKey,
    Index,
    CheckConstraint,
    UniqueConstraint,
)
from sqlalchemy.sql import func
from sqlalchemy.orm import relationship

from multimart.database import Base


Money = Numeric(10, 2)


# =========================
# ENUMS
# =========================

class UserRole(str, enum.Enum):
    buyer = "buyer"
    seller = "seller"
    deliveryPartner = "deliveryPartner"
    admin = "admin"


class OrderStatus(str, enum.Enum):
    pending = "pending"
    confirmed = "confirmed"
    processing = "processing"
    shipped = "shipped"
    out_for_delivery = "out_for_delivery"
    delivered = "delivered"
    cancelled = "cancelled"
    refunded = "refunded"


class PaymentStatus(str, enum.Enum):
    pending = "pending"
    processing = "processing"
    completed = "completed"
    failed = "failed"
    refunded = "refunded"


class DeliveryStatus(str, enum.Enum):
    pending = "pending"
    assigned = "assigned"
    picked_up = "picked_up"
    out_for_delivery = "out_for_delivery"
    delivered = "delivered"
    cancelled = "cancelled"
    failed = "failed"


class TransactionType(str, enum.Enum):
    received = "received"
    pending = "pending"
    deducted = "deducted"
    bonus = "bonus"


class TransactionStatus(str, enum.Enum):
    completed = "completed"
    pending = "pending"
    failed = "failed"
    reversed = "reversed"


class WithdrawalStatus(str, enum.Enum):
    pending = "pending"
    approved = "approved"
    processing = "processing"
    completed = "completed"
    rejected = "rejected"
    cancelled = "cancelled"


class PayoutStatus(str, enum.Enum):
    applied = "applied"
    processing = "processing"
    paid = "paid"
    rejected = "rejected"


class TicketStatus(str, enum.Enum):
    open = "open"
    in_progress = "in_progress"
    resolved = "resolved"
    closed = "closed"


class IssueType(str, enum.Enum):
    payment_issue = "payment_issue"
    technical_problem = "technical_problem"
    account_related = "account_related"
    delivery_issue = "delivery_issue"
    vehicle_issue = "vehicle_issue"
    product_related = "product_related"
    order_issue = "order_issue"
    payout_issue = "payout_issue"
    other = "other"


# =========================
# USER
# =========================

class User(Base):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, autoincrement=True)

    email = Column(String, nullable=False, unique=True, index=True)
    name = Column(String)
    contact_number = Column(String)
    avatar_url = Column(String)

    role = Column(
        Enum(UserRole, name="user_role"),
        default=UserRole.buyer,
        nullable=False,
    )
    is_active = Column(Boolean, default=True, nullable=False)
    is_approved = Column(Boolean, default=False, nullable=False)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    addresses = relationship(
        "Address",
        back_populates="user",
        cascade="all, delete-orphan",
    )
    cart = relationship(
        "Cart",
        back_populates="user",
        uselist=False,
        cascade="all, delete-orphan",
    )
    orders = relationship(
        "Order",
        back_populates="user",
        foreign_keys="Order.user_id",
    )

    @property
    def is_admin(self) -> bool:
        return self.role == UserRole.admin

    @property
    def has_completed_profile(self) -> bool:
        return bool(self.name and self.contact_number)


# =========================
# OTP VERIFICATION
# =========================

class OtpVerification(Base):
    __tablename__ = "otp_verifications"

    id = Column(Integer, primary_key=True, autoincrement=True)
    email = Column(String, nullable=False, index=True)
    otp_hash = Column(String, nullable=False)
    expires_at = Column(DateTime(timezone=True), nullable=False)
    is_used = Column(Boolean, default=False, nullable=False)
    attempts = Column(Integer, default=0, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())


# =========================
# ADDRESS
# =========================

class Address(Base):
    __tablename__ = "addresses"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    full_name = Column(String, nullable=False)
    contact_number = Column(String, nullable=False)
    address_line1 = Column(String, nullable=False)
    address_line2 = Column(String)
    city = Column(String, nullable=False)
    state = Column(String)
    postal_code = Column(String, nullable=False)
    country = Column(String, nullable=False, default="India")
    is_default = Column(Boolean, default=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    user = relationship("User", back_populates="addresses")


# =========================
# PRODUCT
# =========================

class Product(Base):
    __tablename__ = "products"
    __table_args__ = (
        CheckConstraint("stock >= 0", name="ck_products_stock_non_negative"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    seller_id = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"), nullable=True, index=True)

    name = Column(String, nullable=False)
    description = Column(Text)
    price = Column(Money, nullable=False)
    stock = Column(Integer, default=0, nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
    )

    seller = relationship("User")
    variants = relationship(
        "ProductVariant",
        back_populates="product",
        cascade="all, delete-orphan",
        order_by="ProductVariant.id",
    )


Index("idx_products_is_active", Product.is_active)
Index("idx_products_created_at", Product.created_at)


class ProductVariant(Base):
    __tablename__ = "product_variants"
    __table_args__ = (
        CheckConstraint("stock >= 0", name="ck_product_variants_stock_non_negative"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    product_id = Column(Integer, ForeignKey("products.id", ondelete="CASCADE"), nullable=False, index=True)
    name = Column(String, nullable=False)
    sku = Column(String, index=True)
    price = Column(Money)  # overrides the product price when set
    stock = Column(Integer, default=0, nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    product = relationship("Product", back_populates="variants")


# =========================
# CART
# =========================

class Cart(Base):
    __tablename__ = "carts"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, unique=True, index=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    user = relationship("User", back_populates="cart")
    items = relationship(
        "CartItem",
        back_populates="cart",
        cascade="all, delete-orphan",
        order_by="CartItem.id",
    )


class CartItem(Base):
    __tablename__ = "cart_items"

    id = Column(Integer, primary_key=True, autoincrement=True)
    cart_id = Column(Integer, ForeignKey("carts.id", ondelete="CASCADE"), nullable=False, index=True)
    product_id = Column(Integer, ForeignKey("products.id", ondelete="CASCADE"), nullable=False, index=True)
    variant_id = Column(Integer, ForeignKey("product_variants.id", ondelete="SET NULL"), nullable=True)
    quantity = Column(Integer, nullable=False, default=1)
    price = Column(Money, nullable=False)  # price snapshot at time of adding
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    cart = relationship("Cart", back_populates="items")
    product = relationship("Product")
    variant = relationship("ProductVariant")


# =========================
# ORDER
# =========================

class Order(Base):
    __tablename__ = "orders"

    id = Column(Integer, primary_key=True, autoincrement=True)

    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    seller_id = Column(Integer, ForeignKey("users.id"), nullable=True, index=True)
    address_id = Column(Integer, ForeignKey("addresses.id"), nullable=False)

    status = Column(
        Enum(OrderStatus, name="order_status"),
        default=OrderStatus.pending,
        nullable=False,
    )
    payment_status = Column(
        Enum(PaymentStatus, name="payment_status"),
        default=PaymentStatus.pending,
        nullable=False,
    )

    total_amount = Column(Money, nullable=False)
    discount = Column(Money, default=0)
    shipping_charges = Column(Money, default=0)
    tax_amount = Column(Money, default=0)
    final_amount = Column(Money, nullable=False)
    platform_commission = Column(Money)
    seller_earnings = Column(Money)

    gateway_order_id = Column(String, index=True)
    gateway_payment_id = Column(String)
    gateway_signature = Column(String)
    payment_method = Column(String)

    delivery_partner_id = Column(Integer, ForeignKey("users.id"), nullable=True)

    notes = Column(Text)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    user = relationship("User", back_populates="orders", foreign_keys=[user_id])
    address = relationship("Address")
    items = relationship(
        "OrderItem",
        back_populates="order",
        cascade="all, delete-orphan",
        order_by="OrderItem.id",
    )
    delivery = relationship("Delivery", back_populates="order", uselist=False)


Index("idx_orders_status", Order.status)
Index("idx_orders_created_at", Order.created_at)


class OrderItem(Base):
    __tablename__ = "order_items"

    id = Column(Integer, primary_key=True, autoincrement=True)
    order_id = Column(Integer, ForeignKey("orders.id", ondelete="CASCADE"), nullable=False, index=True)
    product_id = Column(Integer, ForeignKey("products.id"), nullable=False)
    variant_id = Column(Integer, ForeignKey("product_variants.id", ondelete="SET NULL"), nullable=True)
    seller_id = Column(Integer, ForeignKey("users.id"), nullable=True)
    quantity = Column(Integer, nullable=False)
    price = Column(Money, nullable=False)  # price at time of order
    discount = Column(Money, default=0)
    tax_amount = Column(Money, default=0)
    final_price = Column(Money, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    order = relationship("Order", back_populates="items")
    product = relationship("Product")
    variant = relationship("ProductVariant")


# =========================
# DELIVERY
# =========================

class Delivery(Base):
    __tablename__ = "deliveries"

    id = Column(Integer, primary_key=True, autoincrement=True)
    order_id = Column(Integer, ForeignKey("orders.id", ondelete="CASCADE"), nullable=False, unique=True)
    delivery_partner_id = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"), nullable=True, index=True)
    buyer_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)

    status = Column(
        Enum(DeliveryStatus, name="delivery_status"),
        default=DeliveryStatus.pending,
        nullable=False,
    )
    delivery_fee = Column(Money, nullable=False, default=0)

    assigned_at = Column(DateTime(timezone=True))
    picked_up_at = Column(DateTime(timezone=True))
    delivered_at = Column(DateTime(timezone=True))
    cancellation_reason = Column(Text)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    order = relationship("Order", back_populates="delivery")


Index("idx_deliveries_status", Delivery.status)


# =========================
# WALLET
# =========================

class Wallet(Base):
    __tablename__ = "wallets"
    __table_args__ = (
        UniqueConstraint("user_id", "role", name="uq_wallets_user_role"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    role = Column(String(20), nullable=False)  # seller / deliveryPartner

    balance = Column(Money, default=0, nullable=False)
    withdrawable_balance = Column(Money, default=0, nullable=False)
    pending_amount = Column(Money, default=0, nullable=False)
    total_earnings = Column(Money, default=0, nullable=False)
    total_withdrawn = Column(Money, default=0, nullable=False)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    transactions = relationship(
        "WalletTransaction",
        back_populates="wallet",
        cascade="all, delete-orphan",
    )


class WalletTransaction(Base):
    """Append-only ledger row. Never updated after insert."""
    __tablename__ = "wallet_transactions"

    id = Column(Integer, primary_key=True, autoincrement=True)
    wallet_id = Column(Integer, ForeignKey("wallets.id", ondelete="CASCADE"), nullable=False, index=True)
    order_id = Column(Integer, ForeignKey("orders.id", ondelete="SET NULL"), nullable=True, index=True)
    delivery_id = Column(Integer, ForeignKey("deliveries.id", ondelete="SET NULL"), nullable=True)

    amount = Column(Money, nullable=False)
    type = Column(Enum(TransactionType, name="transaction_type"), nullable=False)
    status = Column(
        Enum(TransactionStatus, name="transaction_status"),
        default=TransactionStatus.completed,
        nullable=False,
    )
    category = Column(String(50), nullable=False)  # order_earning/delivery_fee/withdrawal/payout/...
    description = Column(Text)
    reference_id = Column(String)  # gateway payment id, payout reference, etc.
    extra = Column("metadata", JSON)
    balance_after = Column(Money, nullable=False)

    created_at = Column(DateTime(timezone=True), server_default=func.now())

    wallet = relationship("Wallet", back_populates="transactions")


Index("idx_wallet_transactions_created_at", WalletTransaction.created_at)
Index("idx_wallet_transactions_category", WalletTransaction.category)


# =========================
# WITHDRAWAL REQUESTS
# =========================

class WithdrawalRequest(Base):
    __tablename__ = "withdrawal_requests"

    id = Column(Integer, primary_key=True, autoincrement=True)
    wallet_id = Column(Integer, ForeignKey("wallets.id", ondelete="CASCADE"), nullable=False, index=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    user_type = Column(String(20), nullable=False)

    amount = Column(Money, nullable=False)
    status = Column(
        Enum(WithdrawalStatus, name="withdrawal_status"),
        default=WithdrawalStatus.pending,
        nullable=False,
    )

    payment_method = Column(String(50))  # bank_transfer / upi
    account_details = Column(Text)

    processed_by = Column(Integer, ForeignKey("users.id"))
    admin_notes = Column(Text)
    rejection_reason = Column(Text)
    payout_reference_id = Column(String(100))
    gateway_payout_id = Column(String(100))

    requested_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    processed_at = Column(DateTime(timezone=True))
    completed_at = Column(DateTime(timezone=True))
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    wallet = relationship("Wallet")


Index("idx_withdrawal_requests_status", WithdrawalRequest.status)


# =========================
# PAYOUTS (DELIVERY PARTNERS)
# =========================

class Payout(Base):
    __tablename__ = "payouts"

    id = Column(Integer, primary_key=True, autoincrement=True)
    wallet_id = Column(Integer, ForeignKey("wallets.id", ondelete="CASCADE"), nullable=False, index=True)

    amount = Column(Money, nullable=False)
    status = Column(
        Enum(PayoutStatus, name="payout_status"),
        default=PayoutStatus.applied,
        nullable=False,
    )

    payment_reference_id = Column(String)  # UTR or transaction id
    payment_method = Column(String)
    rejection_reason = Column(Text)

    applied_at = Column(DateTime(timezone=True), server_default=func.now())
    processed_at = Column(DateTime(timezone=True))
    paid_at = Column(DateTime(timezone=True))
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    wallet = relationship("Wallet")


Index("idx_payouts_status", Payout.status)


# =========================
# SUPPORT TICKETS
# =========================

class Ticket(Base):
    __tablename__ = "tickets"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    user_type = Column(String(20), nullable=False)

    issue_type = Column(Enum(IssueType, name="issue_type"), nullable=False)
    subject = Column(String, nullable=False)
    description = Column(Text, nullable=False)
    status = Column(
        Enum(TicketStatus, name="ticket_status"),
        default=TicketStatus.open,
        nullable=False,
    )

    admin_response = Column(Text)
    admin_id = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"), nullable=True)

    resolved_at = Column(DateTime(timezone=True))
    closed_at = Column(DateTime(timezone=True))

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())


Index("idx_tickets_status", Ticket.status)
Index("idx_tickets_issue_type", Ticket.issue_type)
