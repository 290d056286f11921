import logging
from decimal import Decimal

from sqlalchemy.orm import Session

from multimart.errors import DomainRuleError, ValidationFailed
from multimart.models import (
    Wallet,
    WalletTransaction,
    TransactionType,
    TransactionStatus,
)
from multimart.utils.money import money, fmt

logger = logging.getLogger(__name__)

INSUFFICIENT_BALANCE = "Insufficient withdrawable balance"


# =====================================================
# WALLET LOOKUP
# =====================================================

def get_or_create_wallet(db: Session, user_id: int, role: str) -> Wallet:
    """
    Return the wallet for (user, role), creating an empty one if needed.

    Does not commit; the new row is flushed so it has an id.
    """
    role = getattr(role, "value", role)
    wallet = (
        db.query(Wallet)
        .filter(Wallet.user_id == user_id, Wallet.role == role)
        .first()
    )
    if wallet:
        return wallet

    wallet = Wallet(
        user_id=user_id,
        role=role,
        balance=money(0),
        withdrawable_balance=money(0),
        pending_amount=money(0),
        total_earnings=money(0),
        total_withdrawn=money(0),
    )
    db.add(wallet)
    db.flush()
    logger.info("Wallet created | user_id=%s role=%s", user_id, role)
    return wallet


# =====================================================
# BALANCE ARITHMETIC (NO COMMIT)
# =====================================================

def _record(
    db: Session,
    wallet: Wallet,
    amount: Decimal,
    type_: TransactionType,
    category: str,
    description: str | None = None,
    order_id: int | None = None,
    delivery_id: int | None = None,
    reference_id: str | None = None,
    metadata: dict | None = None,
    status: TransactionStatus = TransactionStatus.completed,
) -> WalletTransaction:
    txn = WalletTransaction(
        wallet_id=wallet.id,
        order_id=order_id,
        delivery_id=delivery_id,
        amount=amount,
        type=type_,
        status=status,
        category=category,
        description=description,
        reference_id=reference_id,
        extra=metadata,
        balance_after=money(wallet.balance),
    )
    db.add(txn)
    return txn


def apply_credit(
    db: Session,
    wallet: Wallet,
    amount,
    category: str,
    pending: bool = False,
    **kwargs,
) -> WalletTransaction:
    """
    Credit a wallet.

    A pending credit is held in pending_amount and is not withdrawable until
    released; a received credit is withdrawable at once and counts towards
    total_earnings.
    """
    amount = money(amount)
    if amount <= 0:
        raise ValidationFailed("Credit amount must be positive")

    wallet.balance = money(wallet.balance) + amount
    if pending:
        wallet.pending_amount = money(wallet.pending_amount) + amount
        type_, status = TransactionType.pending, TransactionStatus.pending
    else:
        wallet.withdrawable_balance = money(wallet.withdrawable_balance) + amount
        wallet.total_earnings = money(wallet.total_earnings) + amount
        type_, status = TransactionType.received, TransactionStatus.completed

    return _record(db, wallet, amount, type_, category, status=status, **kwargs)


def apply_debit(
    db: Session,
    wallet: Wallet,
    amount,
    category: str,
    **kwargs,
) -> WalletTransaction:
    amount = money(amount)
    if amount <= 0:
        raise ValidationFailed("Debit amount must be positive")

    if money(wallet.withdrawable_balance) < amount:
        raise DomainRuleError(INSUFFICIENT_BALANCE)

    wallet.withdrawable_balance = money(wallet.withdrawable_balance) - amount
    wallet.balance = money(wallet.balance) - amount
    wallet.total_withdrawn = money(wallet.total_withdrawn) + amount

    return _record(db, wallet, amount, TransactionType.deducted, category, **kwargs)


def release_pending(
    db: Session,
    wallet: Wallet,
    order_id: int,
    category: str = "delivery_fee",
    delivery_id: int | None = None,
) -> WalletTransaction | None:
    """
    Move the pending credit recorded for an order into the withdrawable
    balance. Returns None when nothing is pending or it was already released.
    """
    pending_txn = (
        db.query(WalletTransaction)
        .filter(
            WalletTransaction.wallet_id == wallet.id,
            WalletTransaction.order_id == order_id,
            WalletTransaction.category == category,
            WalletTransaction.type == TransactionType.pending,
        )
        .first()
    )
    if not pending_txn:
        return None

    already_released = (
        db.query(WalletTransaction)
        .filter(
            WalletTransaction.wallet_id == wallet.id,
            WalletTransaction.order_id == order_id,
            WalletTransaction.category == category,
            WalletTransaction.type == TransactionType.received,
        )
        .first()
    )
    if already_released:
        return None

    amount = money(pending_txn.amount)
    wallet.pending_amount = money(wallet.pending_amount) - amount
    wallet.withdrawable_balance = money(wallet.withdrawable_balance) + amount
    wallet.total_earnings = money(wallet.total_earnings) + amount

    return _record(
        db,
        wallet,
        amount,
        TransactionType.received,
        category,
        description=f"Delivery fee released for order #{order_id}",
        order_id=order_id,
        delivery_id=delivery_id,
    )


# =====================================================
# SELF-CONTAINED CREDIT (OWN TRANSACTION)
# =====================================================

def credit_wallet(
    db: Session,
    user_id: int,
    role: str,
    amount,
    category: str,
    pending: bool = False,
    **kwargs,
) -> WalletTransaction:
    """Get-or-create the wallet, credit it and commit, all in one transaction."""
    try:
        wallet = get_or_create_wallet(db, user_id, role)
        txn = apply_credit(db, wallet, amount, category, pending=pending, **kwargs)
        db.commit()
    except Exception:
        db.rollback()
        raise

    logger.info(
        "Wallet credited | wallet_id=%s amount=%s type=%s category=%s",
        wallet.id,
        txn.amount,
        txn.type.value,
        category,
    )
    return txn


# =====================================================
# SERIALIZERS
# =====================================================

def serialize_wallet(wallet: Wallet) -> dict:
    return {
        "id": wallet.id,
        "userId": wallet.user_id,
        "role": wallet.role,
        "balance": fmt(wallet.balance),
        "withdrawableBalance": fmt(wallet.withdrawable_balance),
        "pendingAmount": fmt(wallet.pending_amount),
        "totalEarnings": fmt(wallet.total_earnings),
        "totalWithdrawn": fmt(wallet.total_withdrawn),
        "updatedAt": wallet.updated_at,
    }


def serialize_transaction(t: WalletTransaction) -> dict:
    return {
        "id": t.id,
        "walletId": t.wallet_id,
        "orderId": t.order_id,
        "deliveryId": t.delivery_id,
        "amount": fmt(t.amount),
        "type": t.type.value,
        "status": t.status.value,
        "category": t.category,
        "description": t.description,
        "referenceId": t.reference_id,
        "metadata": t.extra,
        "balanceAfter": fmt(t.balance_after),
        "createdAt": t.created_at,
    }
