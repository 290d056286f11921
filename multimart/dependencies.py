from fastapi import Depends, HTTPException, status, Request
from sqlalchemy.orm import Session

from multimart.config import Settings
from multimart.database import get_db
from multimart.gateway import RazorpayClient
from multimart.models import User, UserRole
from multimart.security import decode_token, get_token_from_request
from multimart.utils.email import Mailer


# =========================
# APP COLLABORATORS
# =========================

def get_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_gateway(request: Request) -> RazorpayClient:
    return request.app.state.gateway


def get_mailer(request: Request) -> Mailer:
    return request.app.state.mailer


# =========================
# CURRENT USER
# =========================

def get_current_user(
    request: Request,
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_settings),
) -> User:
    token = get_token_from_request(request)

    if not token:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
        )

    payload = decode_token(settings, token)
    if not payload:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired token",
        )

    user_id = payload.get("sub")
    if not user_id or not str(user_id).isdigit():
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid token payload",
        )

    user = db.query(User).filter(User.id == int(user_id)).first()
    if not user or not user.is_active:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="User not found or inactive",
        )

    return user


# =========================
# ROLE GUARDS
# =========================

def _require_role(role: UserRole, detail: str):
    def guard(user: User = Depends(get_current_user)) -> User:
        if user.role != role:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=detail,
            )
        return user

    return guard


require_admin = _require_role(UserRole.admin, "Admin access required")
require_seller = _require_role(UserRole.seller, "Seller access required")
require_delivery_partner = _require_role(
    UserRole.deliveryPartner, "Delivery partner access required"
)


def require_seller_or_delivery_partner(
    user: User = Depends(get_current_user),
) -> User:
    if user.role not in (UserRole.seller, UserRole.deliveryPartner):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Seller or delivery partner access required",
        )
    return user
