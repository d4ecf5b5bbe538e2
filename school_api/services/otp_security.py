import logging
import math
from datetime import timedelta

from sqlalchemy import case, delete, select, update
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.ext.asyncio import AsyncSession

from school_api.core.dates import ensure_utc, utcnow
from school_api.core.errors import RateLimitError, TooManyAttemptsError, ValidationError
from school_api.models.otp import Otp, OtpRateLimit

logger = logging.getLogger(__name__)


class OtpSecurityService:
    """
    Two independent brakes on the OTP flow:
      - issuance is rate limited per (contact, ip) with a sliding window
      - verification is attempt limited per issued code
    """

    def __init__(
        self,
        max_attempts: int = 5,
        rate_limit_max_requests: int = 5,
        rate_limit_window_minutes: int = 15,
        clock=utcnow,
    ):
        self.max_attempts = max_attempts
        self.rate_limit_max_requests = rate_limit_max_requests
        self.window = timedelta(minutes=rate_limit_window_minutes)
        self._clock = clock

    def now(self):
        return self._clock()

    async def check_rate_limit(self, db: AsyncSession, contact: str, ip_address: str) -> None:
        q = await db.execute(
            select(OtpRateLimit.count, OtpRateLimit.expires_at).where(
                OtpRateLimit.contact == contact,
                OtpRateLimit.ip_address == ip_address,
            )
        )
        row = q.one_or_none()
        if row is not None:
            self._enforce(contact, ip_address, row.count, row.expires_at)

    async def record_otp_request(self, db: AsyncSession, contact: str, ip_address: str) -> int:
        """
        Single-statement upsert: starts a new window (count=1) when there is
        none or the old one lapsed, otherwise bumps the count and pushes the
        expiry out again. Returns the new count; a request that lands past
        the threshold (a concurrent caller won the last slot) is rejected.
        """
        now = self.now()
        window_expiry = now + self.window
        table = OtpRateLimit.__table__

        insert = _dialect_insert(db)
        stmt = insert(table).values(
            contact=contact,
            ip_address=ip_address,
            count=1,
            expires_at=window_expiry,
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=[table.c.contact, table.c.ip_address],
            set_={
                "count": case((table.c.expires_at <= now, 1), else_=table.c.count + 1),
                "expires_at": window_expiry,
            },
        ).returning(table.c.count, table.c.expires_at)

        row = (await db.execute(stmt)).one()
        self._enforce(contact, ip_address, row.count - 1, row.expires_at)
        return row.count

    def _enforce(self, contact: str, ip_address: str, count: int, expires_at) -> None:
        now = self.now()
        expires_at = ensure_utc(expires_at)
        if expires_at > now and count >= self.rate_limit_max_requests:
            wait = (expires_at - now).total_seconds()
            logger.warning("OTP rate limit hit for %s from %s", contact[-4:], ip_address)
            raise RateLimitError(
                f"Too many OTP requests. Please try again after {math.ceil(wait / 60)} minutes",
                retry_after_seconds=math.ceil(wait),
            )

    async def check_attempt_limit(self, db: AsyncSession, otp_id: str) -> None:
        otp = await db.get(Otp, otp_id, populate_existing=True)
        if otp is None:
            raise ValidationError("OTP not found")

        if otp.attempts >= self.max_attempts:
            otp.used = True
            await db.commit()
            logger.warning("OTP %s retired after %d failed attempts", otp_id, otp.attempts)
            raise TooManyAttemptsError(
                "Maximum OTP verification attempts exceeded. Please request a new OTP"
            )

    async def record_failed_attempt(self, db: AsyncSession, otp_id: str) -> None:
        await db.execute(
            update(Otp).where(Otp.id == otp_id).values(attempts=Otp.attempts + 1)
        )
        await db.commit()

    async def reset_rate_limit(self, db: AsyncSession, contact: str, ip_address: str) -> None:
        await db.execute(
            delete(OtpRateLimit).where(
                OtpRateLimit.contact == contact,
                OtpRateLimit.ip_address == ip_address,
            )
        )

    async def cleanup_expired_rate_limits(self, db: AsyncSession) -> int:
        result = await db.execute(delete(OtpRateLimit).where(OtpRateLimit.expires_at < self.now()))
        await db.commit()
        return result.rowcount or 0


def _dialect_insert(db: AsyncSession):
    """INSERT construct with ON CONFLICT support for the bound database."""
    name = db.get_bind().dialect.name
    if name == "postgresql":
        return postgresql.insert
    if name == "sqlite":
        return sqlite.insert
    raise RuntimeError(f"OTP rate limiting needs an upsert-capable database, got {name!r}")
