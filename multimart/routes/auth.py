from fastapi import APIRouter, Depends, Response, status
from pydantic import BaseModel, EmailStr, Field
from sqlalchemy.orm import Session

from multimart.config import Settings
from multimart.database import get_db
from multimart.dependencies import get_current_user, get_mailer, get_settings
from multimart.errors import ok
from multimart.models import User
from multimart.security import create_token
from multimart.services import auth as auth_service
from multimart.utils.email import Mailer

router = APIRouter(prefix="/api/auth", tags=["auth"])


# =============================
# SCHEMAS
# =============================

class SendOtpRequest(BaseModel):
    email: EmailStr


class VerifyOtpRequest(BaseModel):
    email: EmailStr
    otp: str = Field(pattern=r"^\d{6}$")


class CompleteProfileRequest(BaseModel):
    name: str = Field(min_length=1, max_length=100)
    contactNumber: str = Field(min_length=7, max_length=20)
    role: str


def _set_auth_cookie(response: Response, settings: Settings, token: str) -> None:
    response.set_cookie(
        key="access_token",
        value=token,
        httponly=True,
        secure=settings.cookie_secure,
        samesite="none" if settings.cookie_secure else "lax",
        max_age=settings.access_token_expire_days * 24 * 60 * 60,
        path="/",
    )


# =============================
# OTP LOGIN
# =============================

@router.post("/send-otp")
def send_otp(
    payload: SendOtpRequest,
    db: Session = Depends(get_db),
    mailer: Mailer = Depends(get_mailer),
):
    is_new_user = auth_service.send_otp(db, mailer, payload.email)
    return ok("OTP sent successfully", {"isNewUser": is_new_user})


@router.post("/verify-otp")
def verify_otp(
    payload: VerifyOtpRequest,
    response: Response,
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_settings),
):
    user = auth_service.verify_otp(db, payload.email, payload.otp)

    token = create_token(settings, user.id, user.role.value)
    _set_auth_cookie(response, settings, token)

    return ok("Login successful", {
        "token": token,
        "user": auth_service.serialize_user(user),
        "needsProfileCompletion": not user.has_completed_profile,
    })


# =============================
# PROFILE / SESSION
# =============================

@router.post("/complete-profile")
def complete_profile(
    payload: CompleteProfileRequest,
    response: Response,
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_settings),
    user: User = Depends(get_current_user),
):
    user = auth_service.complete_profile(
        db, user, payload.name, payload.contactNumber, payload.role
    )

    # role may have changed, so the token is reissued
    token = create_token(settings, user.id, user.role.value)
    _set_auth_cookie(response, settings, token)

    return ok("Profile completed successfully", {
        "token": token,
        "user": auth_service.serialize_user(user),
    })


@router.get("/me")
def me(user: User = Depends(get_current_user)):
    return ok("User retrieved successfully", auth_service.serialize_user(user))


@router.post("/logout", status_code=status.HTTP_200_OK)
def logout(response: Response):
    response.delete_cookie(key="access_token", path="/")
    return ok("Logged out successfully")
