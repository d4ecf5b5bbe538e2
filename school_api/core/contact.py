import re

from fastapi import Request

_COUNTRY_CODE_RE = re.compile(r"^\+\d{1,4}$")
_MOBILE_RE = re.compile(r"^\d{6,14}$")


def normalize_phone(country_code: str, mobile_no: str) -> str:
    """
    Joins a country code ("+91") and a local number ("98765 43210") into
    E.164 ("+919876543210"). Raises ValueError when either part is malformed.
    """
    cc = (country_code or "").strip()
    if cc and not cc.startswith("+"):
        cc = "+" + cc
    if not _COUNTRY_CODE_RE.match(cc):
        raise ValueError("countryCode must look like +91")

    number = re.sub(r"[\s\-()]", "", mobile_no or "")
    if not _MOBILE_RE.match(number):
        raise ValueError("mobileNo must contain 6 to 14 digits")

    e164 = cc + number
    if len(e164) - 1 > 15:
        raise ValueError("Phone number is too long for E.164")
    return e164


def mask_phone(phone: str) -> str:
    """
    +91******3210
    """
    if len(phone) <= 7:
        return phone
    return phone[:3] + ("*" * (len(phone) - 7)) + phone[-4:]


def get_client_ip(request: Request) -> str:
    # behind a proxy x-forwarded-for is "client, proxy1, proxy2"
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        first = forwarded.split(",")[0].strip()
        if first:
            return first
    if request.client and request.client.host:
        return request.client.host
    return "unknown"
