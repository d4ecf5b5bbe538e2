from fastapi import APIRouter, Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from school_api.controllers import auth_controller
from school_api.core.access import RequestUser
from school_api.core.config import settings
from school_api.core.contact import get_client_ip
from school_api.core.database import get_db
from school_api.core.dependencies import get_current_user
from school_api.core.limiter import limiter
from school_api.schemas.auth import (
    DeviceLoginRequest,
    DeviceOut,
    DeviceVerifyRequest,
    LoginRequest,
    LoginResponse,
    MessageResponse,
    RegisterRequest,
    SendOtpRequest,
    UserOut,
)
from school_api.services.device_service import DeviceService
from school_api.services.otp_security import OtpSecurityService
from school_api.services.providers import get_device_service, get_otp_security, get_sms_service
from school_api.services.sms_service import SmsService

router = APIRouter(prefix="/auth", tags=["Auth"])


@router.post(
    "/send-otp",
    response_model=MessageResponse,
    summary="Send OTP",
    description="""
Sends a 6-digit code to the phone. Limited to 5 requests per phone+IP in a
sliding 15 minute window. The reply is the same whether or not the SMS went out.
    """,
)
@limiter.limit(settings.PUBLIC_RATE_LIMIT)
async def send_otp(
    request: Request,
    payload: SendOtpRequest,
    db: AsyncSession = Depends(get_db),
    security: OtpSecurityService = Depends(get_otp_security),
    sms: SmsService = Depends(get_sms_service),
) -> MessageResponse:
    return await auth_controller.send_otp(
        db, payload, get_client_ip(request), security=security, sms=sms
    )


@router.post("/register", response_model=UserOut, summary="Register with OTP")
@limiter.limit(settings.PUBLIC_RATE_LIMIT)
async def register(
    request: Request,
    payload: RegisterRequest,
    db: AsyncSession = Depends(get_db),
    security: OtpSecurityService = Depends(get_otp_security),
) -> UserOut:
    return await auth_controller.register(
        db, payload, get_client_ip(request), security=security
    )


@router.post(
    "/login",
    response_model=LoginResponse,
    response_model_exclude_none=True,
    summary="Login with OTP",
    description="""
Returns `{accessToken}` for a known phone, or `{needsRegistration: true, contact}`
when the phone is verified but has no account yet.

**How to use the token:**
Add to request headers: `Authorization: Bearer <your_token>`
    """,
)
@limiter.limit(settings.PUBLIC_RATE_LIMIT)
async def login(
    request: Request,
    payload: LoginRequest,
    db: AsyncSession = Depends(get_db),
    security: OtpSecurityService = Depends(get_otp_security),
) -> LoginResponse:
    return await auth_controller.login(db, payload, security=security)


@router.post(
    "/login/with-device",
    response_model=LoginResponse,
    response_model_exclude_none=True,
    summary="Login with OTP and optionally trust this device",
)
@limiter.limit(settings.PUBLIC_RATE_LIMIT)
async def login_with_device(
    request: Request,
    payload: DeviceLoginRequest,
    db: AsyncSession = Depends(get_db),
    security: OtpSecurityService = Depends(get_otp_security),
    devices: DeviceService = Depends(get_device_service),
) -> LoginResponse:
    return await auth_controller.login_with_device(
        db,
        payload,
        get_client_ip(request),
        request.headers.get("user-agent"),
        security=security,
        devices=devices,
    )


@router.post(
    "/device/verify",
    response_model=LoginResponse,
    response_model_exclude_none=True,
    summary="Login from a trusted device (no OTP)",
)
@limiter.limit(settings.PUBLIC_RATE_LIMIT)
async def verify_device(
    request: Request,
    payload: DeviceVerifyRequest,
    db: AsyncSession = Depends(get_db),
    devices: DeviceService = Depends(get_device_service),
) -> LoginResponse:
    return await auth_controller.verify_device_login(db, payload, devices=devices)


@router.get("/me", response_model=UserOut, summary="Current user")
async def me(
    user: RequestUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
) -> UserOut:
    return await auth_controller.get_profile(db, user.sub)


@router.get("/devices", response_model=list[DeviceOut], summary="List trusted devices")
async def list_devices(
    user: RequestUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    devices: DeviceService = Depends(get_device_service),
):
    return await auth_controller.list_devices(db, user.sub, devices=devices)


@router.delete("/devices/{device_id}", response_model=MessageResponse, summary="Forget one device")
async def remove_device(
    device_id: str,
    user: RequestUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    devices: DeviceService = Depends(get_device_service),
):
    return await auth_controller.remove_device(db, user.sub, device_id, devices=devices)


@router.delete("/devices", response_model=MessageResponse, summary="Forget all devices")
async def remove_all_devices(
    user: RequestUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    devices: DeviceService = Depends(get_device_service),
):
    return await auth_controller.remove_all_devices(db, user.sub, devices=devices)
