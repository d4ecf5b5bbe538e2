import asyncio

import pytest
from sqlalchemy import select

from school_api.core.errors import RateLimitError, TooManyAttemptsError, ValidationError
from school_api.models.otp import Otp, OtpRateLimit
from school_api.core.security import hash_otp

PHONE = "+919876543210"
IP = "10.0.0.1"


async def _issue(db, security):
    await security.check_rate_limit(db, PHONE, IP)
    await security.record_otp_request(db, PHONE, IP)
    await db.commit()


async def test_sixth_request_in_window_is_rate_limited(db, otp_security):
    for _ in range(5):
        await _issue(db, otp_security)

    with pytest.raises(RateLimitError) as exc:
        await _issue(db, otp_security)

    assert exc.value.status_code == 429
    assert "Too many OTP requests" in exc.value.detail
    assert int(exc.value.headers["Retry-After"]) > 0


async def test_window_resets_after_it_lapses(db, otp_security, clock):
    for _ in range(5):
        await _issue(db, otp_security)

    clock.advance(minutes=16)
    await _issue(db, otp_security)

    count = (await db.execute(select(OtpRateLimit.count))).scalar_one()
    assert count == 1


async def test_window_slides_with_each_request(db, otp_security, clock):
    for _ in range(4):
        await _issue(db, otp_security)
        clock.advance(minutes=10)

    # 40 minutes in, but each request pushed the expiry out again
    await _issue(db, otp_security)
    with pytest.raises(RateLimitError):
        await _issue(db, otp_security)


async def test_concurrent_first_requests_share_one_window(session_factory, otp_security):
    async def issue():
        async with session_factory() as session:
            await _issue(session, otp_security)

    await asyncio.gather(issue(), issue())

    async with session_factory() as session:
        rows = (await session.execute(select(OtpRateLimit.count))).scalars().all()
    assert rows == [2]


async def test_concurrent_requests_at_the_threshold_admit_one(session_factory, otp_security):
    async with session_factory() as session:
        for _ in range(4):
            await _issue(session, otp_security)

    async def issue():
        async with session_factory() as session:
            await _issue(session, otp_security)

    results = await asyncio.gather(issue(), issue(), issue(), return_exceptions=True)

    assert sum(1 for r in results if r is None) == 1
    assert sum(1 for r in results if isinstance(r, RateLimitError)) == 2
    async with session_factory() as session:
        count = (await session.execute(select(OtpRateLimit.count))).scalar_one()
    assert count == 5


async def test_limits_are_per_contact_and_ip(db, otp_security):
    for _ in range(5):
        await _issue(db, otp_security)

    await otp_security.check_rate_limit(db, PHONE, "10.0.0.2")
    await otp_security.check_rate_limit(db, "+919999999999", IP)


async def test_reset_rate_limit_clears_counter(db, otp_security):
    for _ in range(5):
        await _issue(db, otp_security)

    await otp_security.reset_rate_limit(db, PHONE, IP)
    await db.commit()
    await otp_security.check_rate_limit(db, PHONE, IP)


async def test_attempt_limit_retires_code(db, otp_security, clock):
    otp = Otp(phone=PHONE, code_hash=hash_otp("123456"), expires_at=clock(), used=False, attempts=0)
    db.add(otp)
    await db.commit()

    for _ in range(5):
        await otp_security.check_attempt_limit(db, otp.id)
        await otp_security.record_failed_attempt(db, otp.id)

    with pytest.raises(TooManyAttemptsError) as exc:
        await otp_security.check_attempt_limit(db, otp.id)
    assert exc.value.status_code == 429

    refreshed = await db.get(Otp, otp.id, populate_existing=True)
    assert refreshed.used is True
    assert refreshed.attempts == 5


async def test_attempt_limit_on_unknown_code(db, otp_security):
    with pytest.raises(ValidationError):
        await otp_security.check_attempt_limit(db, "missing")


async def test_cleanup_drops_only_lapsed_windows(db, otp_security, clock):
    await _issue(db, otp_security)
    await otp_security.record_otp_request(db, "+919999999999", IP)
    await db.commit()

    clock.advance(minutes=20)
    await otp_security.record_otp_request(db, "+918888888888", IP)
    await db.commit()

    removed = await otp_security.cleanup_expired_rate_limits(db)
    assert removed == 2
    remaining = (await db.execute(select(OtpRateLimit.contact))).scalars().all()
    assert remaining == ["+918888888888"]
