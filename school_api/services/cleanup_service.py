"""
Cleanup Service - drops lapsed OTP rate-limit windows and expired trusted devices
"""
import asyncio
import logging

from school_api.services.device_service import DeviceService
from school_api.services.otp_security import OtpSecurityService

logger = logging.getLogger(__name__)


class CleanupService:
    """Background loop; every pass is idempotent so overlap or restarts are harmless."""

    def __init__(
        self,
        session_factory,
        otp_security: OtpSecurityService,
        devices: DeviceService,
        interval_seconds: int = 3600,
    ):
        self.session_factory = session_factory
        self.otp_security = otp_security
        self.devices = devices
        self.cleanup_interval = interval_seconds
        self.is_running = False

    async def run_once(self) -> dict[str, int]:
        async with self.session_factory() as db:
            rate_limits = await self.otp_security.cleanup_expired_rate_limits(db)
            devices = await self.devices.cleanup_expired_devices(db)
        if rate_limits or devices:
            logger.info("Cleanup removed %d rate-limit windows, %d devices", rate_limits, devices)
        return {"rate_limits": rate_limits, "devices": devices}

    async def start(self):
        if self.is_running:
            logger.warning("Cleanup service already running")
            return

        self.is_running = True
        logger.info("Cleanup service started (every %ds)", self.cleanup_interval)
        while self.is_running:
            try:
                await self.run_once()
            except Exception:
                logger.exception("Error in cleanup loop")
            await asyncio.sleep(self.cleanup_interval)

    async def stop(self):
        self.is_running = False
        logger.info("Cleanup service stopped")
