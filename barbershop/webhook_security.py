"""
Webhook Security Module

Signature verification for inbound webhook deliveries (WhatsApp Cloud API):
- Constant-time signature comparison (prevents timing attacks)
- Raw request body is used for the HMAC, never the re-serialized JSON
"""

import hashlib
import hmac
import logging
from typing import Optional

from fastapi import HTTPException, Request

logger = logging.getLogger(__name__)


def constant_time_compare(a: str, b: str) -> bool:
    """
    Compare two strings in constant time to prevent timing attacks.
    Uses hmac.compare_digest which is designed for this purpose.
    """
    if not a or not b:
        return False
    return hmac.compare_digest(a, b)


def compute_hmac_sha256(secret: str, payload: bytes) -> str:
    """Compute HMAC-SHA256 signature of payload"""
    return hmac.new(secret.encode("utf-8"), payload, hashlib.sha256).hexdigest()


def validate_meta_signature(payload: bytes, signature_header: Optional[str], app_secret: str) -> bool:
    """Validate an X-Hub-Signature-256 header ("sha256=<hex>")"""
    if not signature_header or not signature_header.startswith("sha256="):
        return False
    expected = compute_hmac_sha256(app_secret, payload)
    return constant_time_compare(signature_header[len("sha256="):], expected)


async def verify_meta_webhook(request: Request, app_secret: Optional[str]) -> bytes:
    """
    Verify a Meta webhook delivery and return its raw body.
    Skipped (with a warning) when no app secret is configured.

    Raises:
        HTTPException: 401 if the signature is missing or invalid
    """
    body = await request.body()
    if not app_secret:
        logger.warning("⚠️ WHATSAPP_APP_SECRET not set - webhook signature NOT verified")
        return body

    signature = request.headers.get("X-Hub-Signature-256")
    if not validate_meta_signature(body, signature, app_secret):
        client_ip = request.client.host if request.client else "unknown"
        logger.warning(f"🚫 Invalid WhatsApp webhook signature from {client_ip}")
        raise HTTPException(status_code=401, detail="Invalid webhook signature")

    return body
