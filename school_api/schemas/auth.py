from datetime import datetime
from typing import Annotated, Optional

from pydantic import EmailStr, Field, StringConstraints, field_validator, model_validator

from school_api.core.contact import normalize_phone
from school_api.models.user import Role
from school_api.schemas.base import CamelModel


# ── Request Bodies ────────────────────────────────────────────────────
class PhoneContact(CamelModel):
    country_code: str = Field(..., min_length=1, max_length=5)
    mobile_no: str = Field(..., min_length=6, max_length=20)

    @model_validator(mode="after")
    def _check_phone(self):
        normalize_phone(self.country_code, self.mobile_no)
        return self

    @property
    def phone(self) -> str:
        """E.164 form, e.g. +919876543210"""
        return normalize_phone(self.country_code, self.mobile_no)


OtpStr = Annotated[str, StringConstraints(strip_whitespace=True, pattern=r"^\d{4,8}$")]


class SendOtpRequest(PhoneContact):
    model_config = {
        "json_schema_extra": {
            "example": {"countryCode": "+91", "mobileNo": "9876543210"}
        }
    }


class RegisterRequest(PhoneContact):
    otp: OtpStr
    role: Role
    school_id: Optional[str] = None
    name: str = Field(..., min_length=1, max_length=120)
    email: Optional[EmailStr] = None

    @field_validator("email", mode="before")
    @classmethod
    def _blank_email(cls, v):
        if isinstance(v, str) and not v.strip():
            return None
        return v

    @field_validator("name")
    @classmethod
    def _strip_name(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("name must not be blank")
        return v


class LoginRequest(PhoneContact):
    otp: OtpStr


class DeviceLoginRequest(LoginRequest):
    device_id: Optional[str] = Field(None, max_length=255)
    device_name: Optional[str] = Field(None, max_length=255)
    remember_device: bool = False


class DeviceVerifyRequest(PhoneContact):
    device_id: str = Field(..., min_length=1, max_length=255)
    device_token: str = Field(..., min_length=1)


# ── Response Bodies ───────────────────────────────────────────────────
class MessageResponse(CamelModel):
    message: str


class UserOut(CamelModel):
    """Identity projection; never includes OTP or device secrets."""
    id: str
    phone: str
    email: Optional[str] = None
    name: str
    role: Role
    school_id: str
    created_at: datetime


class LoginResponse(CamelModel):
    """
    Either a session (access_token + user) or, for a verified phone with no
    account yet, needs_registration + contact.
    """
    access_token: Optional[str] = None
    token_type: Optional[str] = None
    expires_in: Optional[int] = None  # seconds
    user: Optional[UserOut] = None

    needs_registration: Optional[bool] = None
    contact: Optional[str] = None

    device_token: Optional[str] = None  # returned once, on rememberDevice


class DeviceOut(CamelModel):
    device_id: str
    device_name: Optional[str] = None
    ip_address: Optional[str] = None
    last_used_at: datetime
    expires_at: datetime
    created_at: datetime
