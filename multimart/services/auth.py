import logging
from datetime import datetime, timezone

from sqlalchemy.orm import Session

from multimart.errors import AuthenticationError, ValidationFailed
from multimart.models import OtpVerification, User, UserRole
from multimart.security import hash_otp, verify_otp_hash
from multimart.utils.email import Mailer
from multimart.utils.otp import (
    OTP_EXPIRY_MINUTES,
    OTP_MAX_ATTEMPTS,
    generate_otp,
    is_expired,
    otp_expiry,
)

logger = logging.getLogger(__name__)

SELF_SERVICE_ROLES = (UserRole.buyer, UserRole.seller, UserRole.deliveryPartner)


def _normalise(email: str) -> str:
    return email.strip().lower()


# =====================================================
# SEND OTP
# =====================================================

def send_otp(db: Session, mailer: Mailer, email: str) -> bool:
    """
    Issue a fresh login OTP for the email, creating a buyer account for
    unknown addresses. Returns True when the account was just created.

    Delivery failures are logged; the OTP row is kept either way.
    """
    email = _normalise(email)

    user = db.query(User).filter(User.email == email).first()
    is_new_user = user is None

    try:
        if is_new_user:
            user = User(email=email, role=UserRole.buyer, is_active=True)
            db.add(user)

        db.query(OtpVerification).filter(OtpVerification.email == email).delete(
            synchronize_session=False
        )

        otp = generate_otp()
        db.add(OtpVerification(
            email=email,
            otp_hash=hash_otp(otp),
            expires_at=otp_expiry(),
            is_used=False,
            attempts=0,
        ))
        db.commit()
    except Exception:
        db.rollback()
        raise

    if not mailer.send_otp(email, otp, OTP_EXPIRY_MINUTES):
        logger.warning("OTP email not delivered | email=%s", email)

    logger.info("OTP issued | email=%s new_user=%s", email, is_new_user)
    return is_new_user


# =====================================================
# VERIFY OTP
# =====================================================

def verify_otp(db: Session, email: str, otp: str) -> User:
    email = _normalise(email)

    record = (
        db.query(OtpVerification)
        .filter(
            OtpVerification.email == email,
            OtpVerification.is_used == False,  # noqa: E712
        )
        .order_by(OtpVerification.created_at.desc(), OtpVerification.id.desc())
        .first()
    )

    if not record or is_expired(record.expires_at):
        raise AuthenticationError("OTP expired or not found. Please request a new one")

    if record.attempts >= OTP_MAX_ATTEMPTS:
        raise AuthenticationError("Too many attempts. Please request a new OTP")

    if not verify_otp_hash(otp, record.otp_hash):
        record.attempts += 1
        if record.attempts >= OTP_MAX_ATTEMPTS:
            record.is_used = True
        db.commit()
        logger.warning("Invalid OTP | email=%s attempts=%s", email, record.attempts)
        raise AuthenticationError("Invalid OTP")

    user = db.query(User).filter(User.email == email).first()
    if not user or not user.is_active:
        raise AuthenticationError("User not found or inactive")

    record.is_used = True
    db.commit()
    db.refresh(user)

    logger.info("OTP verified | user_id=%s", user.id)
    return user


# =====================================================
# PROFILE
# =====================================================

def complete_profile(db: Session, user: User, name: str, contact_number: str, role: str) -> User:
    try:
        target = UserRole(role)
    except ValueError:
        raise ValidationFailed(f"Invalid role: {role}")

    if target not in SELF_SERVICE_ROLES:
        raise ValidationFailed("Role must be buyer, seller or deliveryPartner")

    # admins keep their role
    if user.role != UserRole.admin:
        user.role = target
    user.name = name.strip()
    user.contact_number = contact_number.strip()
    user.updated_at = datetime.now(timezone.utc)
    db.commit()
    db.refresh(user)

    logger.info("Profile completed | user_id=%s role=%s", user.id, user.role.value)
    return user


def ensure_admin_exists(db: Session, admin_email: str | None) -> None:
    """
    Promote or create the bootstrap admin. Idempotent on every startup.
    """
    if not admin_email:
        logger.warning("ADMIN_EMAIL not set, admin bootstrap skipped")
        return

    admin_email = _normalise(admin_email)
    admin = db.query(User).filter(User.email == admin_email).first()

    if admin:
        if admin.role != UserRole.admin:
            admin.role = UserRole.admin
            db.commit()
            logger.warning("Existing user upgraded to admin | email=%s", admin_email)
        return

    db.add(User(
        email=admin_email,
        name="Admin",
        role=UserRole.admin,
        is_active=True,
        is_approved=True,
    ))
    db.commit()
    logger.info("Admin user created from environment | email=%s", admin_email)


def serialize_user(u: User) -> dict:
    return {
        "id": u.id,
        "email": u.email,
        "name": u.name,
        "contactNumber": u.contact_number,
        "role": u.role.value,
        "isActive": u.is_active,
        "isApproved": u.is_approved,
        "createdAt": u.created_at,
    }
