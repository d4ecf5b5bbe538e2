import asyncio

import pytest
from sqlalchemy import func, select

from school_api.controllers import auth_controller
from school_api.core.errors import (
    AuthenticationError,
    ConflictError,
    NotFoundError,
    RateLimitError,
    TooManyAttemptsError,
    ValidationError,
)
from school_api.core.security import decode_access_token
from school_api.models.otp import Otp, OtpRateLimit
from school_api.models.user import Role, User
from school_api.schemas.auth import (
    DeviceLoginRequest,
    DeviceVerifyRequest,
    LoginRequest,
    RegisterRequest,
    SendOtpRequest,
)

IP = "10.0.0.1"
CONTACT = {"countryCode": "+91", "mobileNo": "9876543210"}
PHONE = "+919876543210"


async def _send(db, otp_security, sms, contact=CONTACT, ip=IP) -> str:
    await auth_controller.send_otp(
        db, SendOtpRequest(**contact), ip, security=otp_security, sms=sms
    )
    return sms.last_code(SendOtpRequest(**contact).phone)


def _wrong(code: str) -> str:
    return "000000" if code != "000000" else "111111"


# ── Issue ─────────────────────────────────────────────────────────────
async def test_send_otp_stores_only_a_hash(db, otp_security, sms):
    result = await auth_controller.send_otp(
        db, SendOtpRequest(**CONTACT), IP, security=otp_security, sms=sms
    )
    assert result.message == "OTP sent successfully"

    code = sms.last_code(PHONE)
    assert len(code) == 6 and code.isdigit()

    stored = (await db.execute(select(Otp))).scalar_one()
    assert stored.phone == PHONE
    assert stored.code_hash != code
    assert stored.used is False and stored.attempts == 0


async def test_reissue_retires_previous_code(db, otp_security, sms):
    first = await _send(db, otp_security, sms)
    second = await _send(db, otp_security, sms)

    live = (await db.execute(select(func.count()).select_from(Otp).where(Otp.used.is_(False)))).scalar_one()
    assert live == 1

    if first != second:
        with pytest.raises(AuthenticationError):
            await auth_controller.login(db, LoginRequest(**CONTACT, otp=first), security=otp_security)
    result = await auth_controller.login(db, LoginRequest(**CONTACT, otp=second), security=otp_security)
    assert result.needs_registration is True


async def test_sixth_send_is_rate_limited(db, otp_security, sms):
    for _ in range(5):
        await _send(db, otp_security, sms)
    with pytest.raises(RateLimitError):
        await _send(db, otp_security, sms)
    assert len(sms.sent) == 5


async def test_concurrent_first_sends_both_succeed(db, session_factory, otp_security, sms):
    async def send():
        async with session_factory() as session:
            return await auth_controller.send_otp(
                session, SendOtpRequest(**CONTACT), IP, security=otp_security, sms=sms
            )

    results = await asyncio.gather(send(), send())

    assert [r.message for r in results] == ["OTP sent successfully"] * 2
    assert (await db.execute(select(OtpRateLimit.count))).scalar_one() == 2
    live = (await db.execute(select(func.count()).select_from(Otp).where(Otp.used.is_(False)))).scalar_one()
    assert live == 1


# ── Register ──────────────────────────────────────────────────────────
async def test_register_teacher_in_school(db, otp_security, sms):
    code = await _send(db, otp_security, sms)

    created = await auth_controller.register(
        db,
        RegisterRequest(**CONTACT, otp=code, role="TEACHER", schoolId="S1", name="A "),
        IP,
        security=otp_security,
    )

    assert created.school_id == "S1"
    assert created.role == Role.TEACHER
    assert created.phone == PHONE
    assert created.name == "A"


async def test_register_resets_issue_counter(db, otp_security, sms):
    code = await _send(db, otp_security, sms)
    await auth_controller.register(
        db,
        RegisterRequest(**CONTACT, otp=code, role="PARENT", schoolId="S1", name="Parent"),
        IP,
        security=otp_security,
    )
    assert (await db.execute(select(OtpRateLimit.id))).scalar_one_or_none() is None


async def test_register_rejects_reused_code(db, otp_security, sms):
    code = await _send(db, otp_security, sms)
    payload = RegisterRequest(**CONTACT, otp=code, role="TEACHER", schoolId="S1", name="Asha")
    await auth_controller.register(db, payload, IP, security=otp_security)

    with pytest.raises(ValidationError):
        await auth_controller.register(db, payload, IP, security=otp_security)
    with pytest.raises(AuthenticationError):
        await auth_controller.login(db, LoginRequest(**CONTACT, otp=code), security=otp_security)


async def test_register_replayed_concurrently_creates_one_user(db, session_factory, otp_security, sms):
    code = await _send(db, otp_security, sms)
    payload = RegisterRequest(**CONTACT, otp=code, role="TEACHER", schoolId="S1", name="Asha")

    async def register():
        async with session_factory() as session:
            return await auth_controller.register(session, payload, IP, security=otp_security)

    results = await asyncio.gather(register(), register(), return_exceptions=True)

    assert sum(1 for r in results if not isinstance(r, Exception)) == 1
    rejected = [r for r in results if isinstance(r, ValidationError)]
    assert len(rejected) == 1
    assert rejected[0].detail == "Invalid or expired OTP"
    users = (await db.execute(select(func.count()).select_from(User).where(User.phone == PHONE))).scalar_one()
    assert users == 1


async def test_register_existing_phone_conflicts(db, otp_security, sms):
    contact = {"countryCode": "+91", "mobileNo": "9000000002"}  # TEACHER1
    code = await _send(db, otp_security, sms, contact)
    with pytest.raises(ConflictError):
        await auth_controller.register(
            db,
            RegisterRequest(**contact, otp=code, role="TEACHER", schoolId="S1", name="Dup"),
            IP,
            security=otp_security,
        )


@pytest.mark.parametrize("school_id", [None, "", "NOPE", "platform"])
async def test_register_requires_a_real_school(db, otp_security, sms, school_id):
    code = await _send(db, otp_security, sms)
    with pytest.raises(ValidationError):
        await auth_controller.register(
            db,
            RegisterRequest(**CONTACT, otp=code, role="SCHOOL_ADMIN", schoolId=school_id, name="Admin"),
            IP,
            security=otp_security,
        )
    # the code was not consumed by the failed registration
    stored = (await db.execute(select(Otp))).scalar_one()
    assert stored.used is False


async def test_register_super_admin_lands_in_platform_school(db, otp_security, sms):
    code = await _send(db, otp_security, sms)
    created = await auth_controller.register(
        db,
        RegisterRequest(**CONTACT, otp=code, role="SUPER_ADMIN", schoolId="S1", name="Root Two"),
        IP,
        security=otp_security,
    )
    assert created.school_id == "platform"


async def test_register_with_wrong_code(db, otp_security, sms):
    code = await _send(db, otp_security, sms)
    with pytest.raises(ValidationError) as exc:
        await auth_controller.register(
            db,
            RegisterRequest(**CONTACT, otp=_wrong(code), role="TEACHER", schoolId="S1", name="Asha"),
            IP,
            security=otp_security,
        )
    assert exc.value.detail == "Invalid OTP"


# ── Login ─────────────────────────────────────────────────────────────
async def test_login_known_user_issues_session(db, otp_security, sms):
    contact = {"countryCode": "+91", "mobileNo": "9000000002"}
    code = await _send(db, otp_security, sms, contact)

    result = await auth_controller.login(db, LoginRequest(**contact, otp=code), security=otp_security)

    assert result.token_type == "bearer"
    assert result.user.id == "TEACHER1"
    claims = decode_access_token(result.access_token)
    assert claims["sub"] == "TEACHER1"
    assert claims["role"] == "TEACHER"
    assert claims["schoolId"] == "S1"
    assert claims["type"] == "access"


async def test_login_unknown_phone_needs_registration(db, otp_security, sms):
    code = await _send(db, otp_security, sms)
    result = await auth_controller.login(db, LoginRequest(**CONTACT, otp=code), security=otp_security)
    assert result.needs_registration is True
    assert result.contact == PHONE
    assert result.access_token is None


async def test_login_code_is_single_use(db, otp_security, sms):
    contact = {"countryCode": "+91", "mobileNo": "9000000002"}
    code = await _send(db, otp_security, sms, contact)
    await auth_controller.login(db, LoginRequest(**contact, otp=code), security=otp_security)

    with pytest.raises(AuthenticationError) as exc:
        await auth_controller.login(db, LoginRequest(**contact, otp=code), security=otp_security)
    assert exc.value.detail == "Invalid or expired OTP"


async def test_login_replayed_concurrently_issues_one_session(db, session_factory, otp_security, sms):
    contact = {"countryCode": "+91", "mobileNo": "9000000002"}
    code = await _send(db, otp_security, sms, contact)

    async def login():
        async with session_factory() as session:
            return await auth_controller.login(session, LoginRequest(**contact, otp=code), security=otp_security)

    results = await asyncio.gather(login(), login(), return_exceptions=True)

    sessions = [r for r in results if not isinstance(r, Exception) and r.access_token]
    assert len(sessions) == 1
    assert sessions[0].user.id == "TEACHER1"
    assert sum(1 for r in results if isinstance(r, AuthenticationError)) == 1


async def test_login_without_any_code(db, otp_security):
    with pytest.raises(AuthenticationError):
        await auth_controller.login(db, LoginRequest(**CONTACT, otp="123456"), security=otp_security)


async def test_exhausted_code_never_succeeds(db, otp_security, sms):
    contact = {"countryCode": "+91", "mobileNo": "9000000002"}
    code = await _send(db, otp_security, sms, contact)

    for _ in range(5):
        with pytest.raises(AuthenticationError):
            await auth_controller.login(db, LoginRequest(**contact, otp=_wrong(code)), security=otp_security)

    with pytest.raises(TooManyAttemptsError):
        await auth_controller.login(db, LoginRequest(**contact, otp=code), security=otp_security)

    # retired for good, even with the right value
    with pytest.raises(AuthenticationError):
        await auth_controller.login(db, LoginRequest(**contact, otp=code), security=otp_security)


# ── Trusted devices ───────────────────────────────────────────────────
async def test_remember_device_then_bypass_otp(db, otp_security, sms, devices):
    contact = {"countryCode": "+91", "mobileNo": "9000000004"}  # PARENT1
    code = await _send(db, otp_security, sms, contact)

    result = await auth_controller.login_with_device(
        db,
        DeviceLoginRequest(**contact, otp=code, deviceId="phone-1", deviceName="Pixel", rememberDevice=True),
        IP,
        "pytest",
        security=otp_security,
        devices=devices,
    )
    assert result.device_token

    bypass = await auth_controller.verify_device_login(
        db,
        DeviceVerifyRequest(**contact, deviceId="phone-1", deviceToken=result.device_token),
        devices=devices,
    )
    assert bypass.user.id == "PARENT1"
    assert decode_access_token(bypass.access_token)["sub"] == "PARENT1"


async def test_device_bypass_rejects_wrong_token_and_expiry(db, otp_security, sms, devices, clock):
    contact = {"countryCode": "+91", "mobileNo": "9000000004"}
    code = await _send(db, otp_security, sms, contact)
    result = await auth_controller.login_with_device(
        db,
        DeviceLoginRequest(**contact, otp=code, deviceId="phone-1", rememberDevice=True),
        IP,
        None,
        security=otp_security,
        devices=devices,
    )

    with pytest.raises(AuthenticationError):
        await auth_controller.verify_device_login(
            db, DeviceVerifyRequest(**contact, deviceId="phone-1", deviceToken="forged"), devices=devices
        )
    with pytest.raises(AuthenticationError):
        await auth_controller.verify_device_login(
            db, DeviceVerifyRequest(**contact, deviceId="phone-2", deviceToken=result.device_token), devices=devices
        )

    clock.advance(days=31)
    with pytest.raises(AuthenticationError):
        await auth_controller.verify_device_login(
            db, DeviceVerifyRequest(**contact, deviceId="phone-1", deviceToken=result.device_token), devices=devices
        )


async def test_remember_device_requires_device_id(db, otp_security, sms, devices):
    code = await _send(db, otp_security, sms)
    with pytest.raises(ValidationError):
        await auth_controller.login_with_device(
            db,
            DeviceLoginRequest(**CONTACT, otp=code, rememberDevice=True),
            IP,
            None,
            security=otp_security,
            devices=devices,
        )


async def test_device_login_without_remember_returns_no_token(db, otp_security, sms, devices):
    contact = {"countryCode": "+91", "mobileNo": "9000000004"}
    code = await _send(db, otp_security, sms, contact)
    result = await auth_controller.login_with_device(
        db, DeviceLoginRequest(**contact, otp=code), IP, None, security=otp_security, devices=devices
    )
    assert result.access_token and result.device_token is None


async def test_remove_devices(db, devices):
    await devices.register_device(db, "PARENT1", "phone-1")
    await devices.register_device(db, "PARENT1", "phone-2")
    await db.commit()

    await auth_controller.remove_device(db, "PARENT1", "phone-1", devices=devices)
    with pytest.raises(NotFoundError) as exc:
        await auth_controller.remove_device(db, "PARENT1", "phone-1", devices=devices)
    assert exc.value.status_code == 404

    result = await auth_controller.remove_all_devices(db, "PARENT1", devices=devices)
    assert result.message == "Removed 1 device(s)"
