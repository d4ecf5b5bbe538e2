import logging
from datetime import timedelta

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from school_api.core.dates import ensure_utc, utcnow
from school_api.core.security import constant_time_equals, generate_device_token, hash_token
from school_api.models.trusted_device import TrustedDevice

logger = logging.getLogger(__name__)


class DeviceService:
    """Trusted devices that may log in without an OTP until they expire."""

    def __init__(self, validity_days: int = 30, clock=utcnow):
        self.validity = timedelta(days=validity_days)
        self._clock = clock

    async def register_device(
        self,
        db: AsyncSession,
        user_id: str,
        device_id: str,
        device_name: str | None = None,
        ip_address: str | None = None,
        user_agent: str | None = None,
    ) -> str:
        """Creates or refreshes the device row; returns the new plaintext token."""
        now = self._clock()
        token = generate_device_token()

        q = await db.execute(
            select(TrustedDevice).where(
                TrustedDevice.user_id == user_id,
                TrustedDevice.device_id == device_id,
            )
        )
        device = q.scalar_one_or_none()

        if device:
            device.device_token_hash = hash_token(token)
            device.last_used_at = now
            device.expires_at = now + self.validity
            device.ip_address = ip_address
            device.user_agent = user_agent
            if device_name:
                device.device_name = device_name
            logger.info("Updated trusted device for user %s", user_id)
        else:
            db.add(
                TrustedDevice(
                    user_id=user_id,
                    device_id=device_id,
                    device_name=device_name,
                    device_token_hash=hash_token(token),
                    ip_address=ip_address,
                    user_agent=user_agent,
                    expires_at=now + self.validity,
                    last_used_at=now,
                )
            )
            logger.info("Registered new trusted device for user %s", user_id)

        await db.flush()
        return token

    async def verify_device(self, db: AsyncSession, user_id: str, device_id: str, device_token: str) -> bool:
        now = self._clock()
        q = await db.execute(
            select(TrustedDevice).where(
                TrustedDevice.user_id == user_id,
                TrustedDevice.device_id == device_id,
            )
        )
        device = q.scalar_one_or_none()
        if not device or ensure_utc(device.expires_at) <= now:
            return False
        if not constant_time_equals(device.device_token_hash, hash_token(device_token)):
            return False

        device.last_used_at = now
        await db.flush()
        return True

    async def get_user_devices(self, db: AsyncSession, user_id: str) -> list[TrustedDevice]:
        q = await db.execute(
            select(TrustedDevice)
            .where(TrustedDevice.user_id == user_id, TrustedDevice.expires_at > self._clock())
            .order_by(TrustedDevice.last_used_at.desc())
        )
        return list(q.scalars().all())

    async def remove_device(self, db: AsyncSession, user_id: str, device_id: str) -> bool:
        result = await db.execute(
            delete(TrustedDevice).where(
                TrustedDevice.user_id == user_id,
                TrustedDevice.device_id == device_id,
            )
        )
        removed = (result.rowcount or 0) > 0
        if removed:
            logger.info("Removed trusted device for user %s", user_id)
        return removed

    async def remove_all_user_devices(self, db: AsyncSession, user_id: str) -> int:
        result = await db.execute(delete(TrustedDevice).where(TrustedDevice.user_id == user_id))
        return result.rowcount or 0

    async def cleanup_expired_devices(self, db: AsyncSession) -> int:
        result = await db.execute(delete(TrustedDevice).where(TrustedDevice.expires_at < self._clock()))
        await db.commit()
        count = result.rowcount or 0
        logger.info("Cleaned up %d expired devices", count)
        return count
