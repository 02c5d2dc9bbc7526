"""
phone_utils.py — E.164 normalisation for Mexican mobile numbers.

    +52 + 10 digits = 12 digits total (13 with the legacy mobile "1")

    "55 1234-5678"      → "+525512345678"
    "525512345678"      → "+525512345678"
    "55+12345678"       → "+525512345678"   (stray + removed)
"""

from __future__ import annotations

import logging
import re

logger = logging.getLogger(__name__)

DEFAULT_COUNTRY_CODE = "52"

_NON_DIALABLE = re.compile(r"[^\d+]")


def normalize_to_e164(phone: str) -> str:
    cleaned = _NON_DIALABLE.sub("", phone)

    # A "+" anywhere but the front means the number was mangled
    if cleaned.find("+") > 0:
        cleaned = cleaned.replace("+", "")

    if not cleaned.startswith("+"):
        if cleaned.startswith(DEFAULT_COUNTRY_CODE):
            cleaned = "+" + cleaned
        else:
            cleaned = "+" + DEFAULT_COUNTRY_CODE + cleaned

    digits = cleaned.lstrip("+")
    if not 12 <= len(digits) <= 13:
        logger.warning(
            "Phone number has unexpected length: %s → %s (%d digits, expected 12-13)",
            phone, cleaned, len(digits),
        )

    return cleaned


def format_phone_for_sms(phone: str) -> str:
    return normalize_to_e164(phone)


def format_phone_for_whatsapp(phone: str) -> str:
    """E.164 without the ``whatsapp:`` scheme; Twilio adds that."""
    return normalize_to_e164(phone)


def format_phone_for_waba(phone: str) -> str:
    """Digits only; the Meta Cloud API rejects a leading '+'."""
    return normalize_to_e164(phone).lstrip("+")
