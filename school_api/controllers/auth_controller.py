import logging
from datetime import timedelta

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from school_api.core.config import settings
from school_api.core.contact import mask_phone
from school_api.core.dates import ensure_utc, utcnow
from school_api.core.errors import (
    AuthenticationError,
    ConflictError,
    NotFoundError,
    RateLimitError,
    ValidationError,
)
from school_api.core.security import (
    constant_time_equals,
    create_access_token,
    generate_otp,
    hash_otp,
)
from school_api.models.otp import Otp
from school_api.models.school import School
from school_api.models.user import Role, User
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
from school_api.services.sms_service import SmsService

logger = logging.getLogger(__name__)

OTP_SENT_MESSAGE = "OTP sent successfully"


# ---------------------------
# Helpers
# ---------------------------

async def _find_user_by_phone(db: AsyncSession, phone: str) -> User | None:
    q = await db.execute(select(User).where(User.phone == phone))
    return q.scalar_one_or_none()


async def _verify_otp(
    db: AsyncSession,
    phone: str,
    otp: str,
    *,
    security: OtpSecurityService,
    error_cls: type[ValidationError] | type[AuthenticationError],
) -> Otp:
    """
    Returns the live code record for `phone` if `otp` matches it.
    A mismatch is charged against the record before the error is raised.
    """
    q = await db.execute(
        select(Otp)
        .where(Otp.phone == phone, Otp.used.is_(False))
        .order_by(Otp.created_at.desc())
        .limit(1)
    )
    record = q.scalar_one_or_none()
    if not record or ensure_utc(record.expires_at) < utcnow():
        raise error_cls("Invalid or expired OTP")

    await security.check_attempt_limit(db, record.id)

    if not constant_time_equals(record.code_hash, hash_otp(otp)):
        await security.record_failed_attempt(db, record.id)
        raise error_cls("Invalid OTP")

    return record


async def _consume_otp(
    db: AsyncSession,
    record: Otp,
    error_cls: type[ValidationError] | type[AuthenticationError],
) -> None:
    """Marks the code used only if it still is unused; a concurrent redeemer loses."""
    result = await db.execute(
        update(Otp)
        .where(Otp.id == record.id, Otp.used.is_(False))
        .values(used=True)
    )
    if result.rowcount != 1:
        raise error_cls("Invalid or expired OTP")


def _session_response(user: User) -> LoginResponse:
    token = create_access_token(user.id, user.phone, user.role.value, user.school_id)
    return LoginResponse(
        access_token=token,
        token_type="bearer",
        expires_in=settings.ACCESS_TOKEN_EXPIRE_MINUTES * 60,
        user=UserOut.model_validate(user),
    )


# ---------------------------
# OTP issuance
# ---------------------------

async def send_otp(
    db: AsyncSession,
    payload: SendOtpRequest,
    ip_address: str,
    *,
    security: OtpSecurityService,
    sms: SmsService,
) -> MessageResponse:
    """
    Issues a fresh code. Previous unused codes for the phone are retired, and
    the reply is the same whether or not the SMS went out.
    """
    phone = payload.phone

    await security.check_rate_limit(db, phone, ip_address)
    try:
        await security.record_otp_request(db, phone, ip_address)
    except RateLimitError:
        await db.rollback()
        raise

    code = generate_otp(settings.OTP_LENGTH)

    await db.execute(
        update(Otp)
        .where(Otp.phone == phone, Otp.used.is_(False))
        .values(used=True)
    )
    db.add(
        Otp(
            phone=phone,
            channel="sms",
            code_hash=hash_otp(code),
            expires_at=utcnow() + timedelta(minutes=settings.OTP_EXPIRE_MINUTES),
            used=False,
            attempts=0,
        )
    )
    await db.commit()
    logger.info("OTP issued for %s", mask_phone(phone))

    await sms.send_otp(phone, code)
    return MessageResponse(message=OTP_SENT_MESSAGE)


# ---------------------------
# Register / Login
# ---------------------------

async def register(
    db: AsyncSession,
    payload: RegisterRequest,
    ip_address: str,
    *,
    security: OtpSecurityService,
) -> UserOut:
    phone = payload.phone
    record = await _verify_otp(db, phone, payload.otp, security=security, error_cls=ValidationError)

    if await _find_user_by_phone(db, phone):
        raise ConflictError("Phone already exists")

    email = str(payload.email).lower() if payload.email else None
    if email:
        q = await db.execute(select(User.id).where(User.email == email))
        if q.scalar_one_or_none():
            raise ConflictError("Email already exists")

    # SUPER_ADMIN lives in the platform school; everyone else must name theirs
    if payload.role == Role.SUPER_ADMIN:
        school_id = settings.PLATFORM_SCHOOL_ID
        if not await db.get(School, school_id):
            raise ValidationError(
                f'Platform school missing. Create School with id="{school_id}" first.'
            )
    else:
        school_id = (payload.school_id or "").strip()
        if not school_id:
            raise ValidationError("schoolId is required for non-super-admin users")
        if school_id == settings.PLATFORM_SCHOOL_ID or not await db.get(School, school_id):
            raise ValidationError("Invalid schoolId")

    await _consume_otp(db, record, ValidationError)

    user = User(
        phone=phone,
        email=email,
        name=payload.name,
        role=payload.role,
        school_id=school_id,
    )
    db.add(user)

    try:
        await db.flush()
        await security.reset_rate_limit(db, phone, ip_address)
        await db.commit()
    except IntegrityError:
        await db.rollback()
        raise ConflictError("Phone or email already registered")

    await db.refresh(user)
    logger.info("Registered %s user %s in school %s", user.role.value, user.id, school_id)
    return UserOut.model_validate(user)


async def login(
    db: AsyncSession,
    payload: LoginRequest,
    *,
    security: OtpSecurityService,
) -> LoginResponse:
    """
    Verifies the code and issues a session. A verified phone with no account
    gets needs_registration instead; the code is consumed either way.
    """
    phone = payload.phone
    record = await _verify_otp(db, phone, payload.otp, security=security, error_cls=AuthenticationError)

    await _consume_otp(db, record, AuthenticationError)
    user = await _find_user_by_phone(db, phone)
    await db.commit()

    if user is None:
        return LoginResponse(needs_registration=True, contact=phone)

    return _session_response(user)


async def login_with_device(
    db: AsyncSession,
    payload: DeviceLoginRequest,
    ip_address: str,
    user_agent: str | None,
    *,
    security: OtpSecurityService,
    devices: DeviceService,
) -> LoginResponse:
    if payload.remember_device and not payload.device_id:
        raise ValidationError("deviceId is required when rememberDevice is true")

    result = await login(db, payload, security=security)

    if result.user and payload.remember_device:
        result.device_token = await devices.register_device(
            db,
            user_id=result.user.id,
            device_id=payload.device_id,
            device_name=payload.device_name,
            ip_address=ip_address,
            user_agent=user_agent,
        )
        await db.commit()

    return result


async def verify_device_login(
    db: AsyncSession,
    payload: DeviceVerifyRequest,
    *,
    devices: DeviceService,
) -> LoginResponse:
    """OTP bypass for a trusted, unexpired device."""
    user = await _find_user_by_phone(db, payload.phone)
    trusted = user is not None and await devices.verify_device(
        db, user.id, payload.device_id, payload.device_token
    )
    if not trusted:
        raise AuthenticationError("Device is not trusted or has expired")

    await db.commit()
    return _session_response(user)


# ---------------------------
# Profile / devices
# ---------------------------

async def get_profile(db: AsyncSession, user_id: str) -> UserOut:
    user = await db.get(User, user_id)
    if not user:
        raise NotFoundError("User not found")
    return UserOut.model_validate(user)


async def list_devices(db: AsyncSession, user_id: str, *, devices: DeviceService) -> list[DeviceOut]:
    rows = await devices.get_user_devices(db, user_id)
    return [DeviceOut.model_validate(d) for d in rows]


async def remove_device(db: AsyncSession, user_id: str, device_id: str, *, devices: DeviceService) -> MessageResponse:
    if not await devices.remove_device(db, user_id, device_id):
        raise NotFoundError("Device not found")
    await db.commit()
    return MessageResponse(message="Device removed")


async def remove_all_devices(db: AsyncSession, user_id: str, *, devices: DeviceService) -> MessageResponse:
    count = await devices.remove_all_user_devices(db, user_id)
    await db.commit()
    return MessageResponse(message=f"Removed {count} device(s)")
