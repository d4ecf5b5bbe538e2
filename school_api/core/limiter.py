"""
Shared Rate Limiter Instance

Coarse per-IP throttle for the public OTP endpoints. The per-contact OTP
ledger (services/otp_security.py) is the real issuance limit; this only
stops a single address from hammering the API.
"""
from slowapi import Limiter
from slowapi.util import get_remote_address

from school_api.core.config import settings

limiter = Limiter(
    key_func=get_remote_address,
    enabled=settings.RATE_LIMIT_ENABLED,
)
