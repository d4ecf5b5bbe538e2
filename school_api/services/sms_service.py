import logging

import httpx

logger = logging.getLogger(__name__)

FAST2SMS_URL = "https://www.fast2sms.com/dev/bulkV2"


class SmsService:
    """
    OTP delivery over Fast2SMS. Without an API key the code is only logged,
    and delivery failures never fail the calling request.
    """

    def __init__(self, api_key: str = "", sender_id: str = "VYASAI", otp_expire_minutes: int = 5):
        self.api_key = api_key
        self.sender_id = sender_id
        self.otp_expire_minutes = otp_expire_minutes
        if not api_key:
            logger.warning("SMS service not configured (FAST2SMS_API_KEY missing). OTPs will only be logged.")

    @property
    def enabled(self) -> bool:
        return bool(self.api_key)

    async def send_otp(self, phone_e164: str, otp: str) -> bool:
        if not self.enabled:
            logger.warning("[SMS DISABLED] OTP for %s: %s", phone_e164, otp)
            return False

        # Fast2SMS expects the 10-digit national number
        number = phone_e164.lstrip("+")
        if number.startswith("91") and len(number) == 12:
            number = number[2:]
        if len(number) > 10:
            number = number[-10:]

        message = (
            f"Your verification code is {otp}. "
            f"Valid for {self.otp_expire_minutes} minutes. Do not share this code."
        )
        payload = {
            "route": "q",
            "sender_id": self.sender_id,
            "message": message,
            "language": "english",
            "flash": 0,
            "numbers": number,
        }

        try:
            async with httpx.AsyncClient(timeout=20) as client:
                r = await client.post(
                    FAST2SMS_URL,
                    headers={"authorization": self.api_key, "Content-Type": "application/json"},
                    json=payload,
                )
            if r.status_code >= 400:
                raise RuntimeError(f"Fast2SMS error {r.status_code}: {r.text}")
            body = r.json()
            logger.info("SMS sent to %s, request id %s", number[-4:], body.get("request_id", "N/A"))
            return True
        except (httpx.HTTPError, RuntimeError, ValueError) as e:
            logger.error("Failed to send SMS to %s: %s", phone_e164[-4:], e)
            return False
