from datetime import datetime, timedelta, timezone

from fastapi import Request
from jose import jwt, JWTError
from passlib.context import CryptContext

from multimart.config import Settings


# =====================================================
# OTP HASHING
# =====================================================

# pbkdf2 keeps passlib independent of the bcrypt backend version
otp_context = CryptContext(schemes=["pbkdf2_sha256"], deprecated="auto")


def hash_otp(otp: str) -> str:
    return otp_context.hash(otp)


def verify_otp_hash(otp: str, otp_hash: str) -> bool:
    return otp_context.verify(otp, otp_hash)


# =====================================================
# JWT HANDLING
# =====================================================

def create_token(settings: Settings, user_id, role: str) -> str:
    now = datetime.now(timezone.utc)
    payload = {
        "sub": str(user_id),
        "role": role,
        "exp": now + timedelta(days=settings.access_token_expire_days),
        "iat": now,
    }
    return jwt.encode(payload, settings.secret_key, algorithm=settings.jwt_algorithm)


def decode_token(settings: Settings, token: str) -> dict | None:
    try:
        return jwt.decode(token, settings.secret_key, algorithms=[settings.jwt_algorithm])
    except JWTError:
        return None


# =====================================================
# AUTH HELPERS
# =====================================================

def get_token_from_request(request: Request) -> str | None:
    # HTTP-only cookie first
    token = request.cookies.get("access_token")
    if token:
        return token

    auth_header = request.headers.get("Authorization")
    if auth_header and auth_header.startswith("Bearer "):
        return auth_header.split(" ", 1)[1]

    return None
