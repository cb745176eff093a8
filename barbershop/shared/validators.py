"""Shared validation utilities"""

import re
import unicodedata
import uuid
from typing import Optional


def validate_uuid(value: str) -> bool:
    """Validate UUID format"""
    try:
        uuid.UUID(value)
        return True
    except (ValueError, AttributeError):
        return False


def normalize_br_phone(phone: Optional[str]) -> Optional[str]:
    """
    Normalize a Brazilian phone number to the digits-only international
    form the WhatsApp Cloud API expects (e.g. 5511999999999).

    Raises:
        ValueError: If phone number is invalid
    """
    if not phone:
        return phone

    digits = re.sub(r"\D", "", phone)

    # DDD + number without country code
    if len(digits) in (10, 11):
        digits = f"55{digits}"

    if len(digits) < 12 or len(digits) > 15:
        raise ValueError("Invalid phone number. Use DDD + number, e.g. (11) 99999-9999")

    return digits


def slugify(value: str) -> str:
    """Lowercase ASCII slug: accents stripped, other characters collapsed to '-'"""
    normalized = unicodedata.normalize("NFKD", value).encode("ascii", "ignore").decode("ascii")
    slug = re.sub(r"[^a-z0-9]+", "-", normalized.lower()).strip("-")
    return slug or "barbearia"
