import hashlib
import hmac
import secrets
from datetime import datetime, timedelta, timezone

from jose import jwt

from school_api.core.config import settings


# ── One-time codes ────────────────────────────────────────────────────
def generate_otp(length: int = 6) -> str:
    """Numeric code, zero-padded to `length` digits."""
    return f"{secrets.randbelow(10 ** length):0{length}d}"


def hash_otp(otp: str) -> str:
    return hashlib.sha256(otp.encode("utf-8")).hexdigest()


def constant_time_equals(a: str, b: str) -> bool:
    return hmac.compare_digest(a, b)


# ── Trusted-device tokens ─────────────────────────────────────────────
def generate_device_token() -> str:
    return secrets.token_hex(32)


def hash_token(token: str) -> str:
    # Store only hash in DB
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


# ── JWT Token ─────────────────────────────────────────────────────────
def create_access_token(
    user_id: str,
    phone: str,
    role: str,
    school_id: str | None,
    expires_minutes: int | None = None,
) -> str:
    """
    Creates a signed session JWT. Change SECRET_KEY in .env to invalidate all
    tokens, ACCESS_TOKEN_EXPIRE_MINUTES to adjust session length.

    Payload contains:
      sub     : user ID (standard JWT claim)
      phone   : verified contact in E.164
      role    : one of Role
      schoolId: tenant of the user (platform tenant for super admins)
      type    : guards against using wrong token types
      iat/exp : issued at / expiry
    """
    now = datetime.now(timezone.utc)
    payload = {
        "sub": str(user_id),
        "phone": phone,
        "role": role,
        "schoolId": school_id,
        "type": "access",
        "iat": now,
        "exp": now + timedelta(minutes=expires_minutes or settings.ACCESS_TOKEN_EXPIRE_MINUTES),
    }
    return jwt.encode(payload, settings.SECRET_KEY, algorithm=settings.ALGORITHM)


def decode_access_token(token: str) -> dict:
    """
    Decodes and verifies JWT signature + expiry.
    Raises jose.JWTError on any failure.
    """
    return jwt.decode(token, settings.SECRET_KEY, algorithms=[settings.ALGORITHM])
