"""GitHub ``X-Hub-Signature-256`` verification."""
from __future__ import annotations

import hashlib
import hmac
import logging
from typing import Optional, Union

logger = logging.getLogger(__name__)

SIGNATURE_PREFIX = "sha256="

BytesLike = Union[str, bytes]


def _as_bytes(value: BytesLike) -> bytes:
    return value.encode("utf-8") if isinstance(value, str) else value


def compute_signature(secret: BytesLike, raw_body: BytesLike) -> str:
    """Return the ``sha256=<hex>`` signature GitHub would send for ``raw_body``."""

    mac = hmac.new(_as_bytes(secret), msg=_as_bytes(raw_body), digestmod=hashlib.sha256)
    return SIGNATURE_PREFIX + mac.hexdigest()


def verify_signature(
    secret: Optional[BytesLike], raw_body: BytesLike, signature_header: Optional[str]
) -> bool:
    """Check ``signature_header`` against the HMAC of the unparsed body.

    An empty secret disables verification and every request is accepted.
    Never raises; any malformed or mismatching header yields ``False``.
    """

    if not secret:
        logger.warning("Webhook secret is empty, skipping signature verification")
        return True

    if not signature_header or not signature_header.startswith(SIGNATURE_PREFIX):
        return False

    expected = compute_signature(secret, raw_body)
    return hmac.compare_digest(signature_header.encode("utf-8"), expected.encode("utf-8"))
