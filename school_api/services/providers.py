"""
Service factories injected with Depends(); override them in tests through
app.dependency_overrides.
"""
from functools import lru_cache

from school_api.core.config import settings
from school_api.services.device_service import DeviceService
from school_api.services.otp_security import OtpSecurityService
from school_api.services.sms_service import SmsService


@lru_cache()
def get_otp_security() -> OtpSecurityService:
    return OtpSecurityService(
        max_attempts=settings.OTP_MAX_ATTEMPTS,
        rate_limit_max_requests=settings.OTP_RATE_LIMIT_MAX_REQUESTS,
        rate_limit_window_minutes=settings.OTP_RATE_LIMIT_WINDOW_MINUTES,
    )


@lru_cache()
def get_sms_service() -> SmsService:
    return SmsService(
        api_key=settings.FAST2SMS_API_KEY,
        sender_id=settings.FAST2SMS_SENDER_ID,
        otp_expire_minutes=settings.OTP_EXPIRE_MINUTES,
    )


@lru_cache()
def get_device_service() -> DeviceService:
    return DeviceService(validity_days=settings.TRUSTED_DEVICE_DAYS)
