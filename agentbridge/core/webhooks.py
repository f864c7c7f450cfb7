"""
Webhook authentication helpers.

Jira automation sends a shared secret as a bearer token; GitHub signs the raw
body with HMAC-SHA256 (``X-Hub-Signature-256: sha256=<hex>``).
"""

from __future__ import annotations

import hashlib
import hmac
import logging
from typing import Optional

from fastapi import HTTPException

logger = logging.getLogger(__name__)


def bearer_token(authorization: Optional[str]) -> Optional[str]:
    if not authorization:
        return None
    scheme, _, token = authorization.strip().partition(" ")
    if scheme.lower() == "bearer":
        return token.strip() or None
    return authorization.strip()


def _reject(status: int, detail: str, connector: str, reason: str) -> HTTPException:
    log = logger.error if status >= 500 else logger.warning
    log("ingress.rejected", extra={"connector": connector, "reason": reason, "status": status})
    return HTTPException(status_code=status, detail=detail)


def verify_shared_secret(
    authorization: Optional[str],
    expected: Optional[str],
    connector: str,
    require_secret: bool = False,
) -> None:
    """
    Check ``Authorization: Bearer <secret>``; raise HTTPException(401) on mismatch.

    With no secret configured the request passes unless ``require_secret`` is set.
    """
    if expected:
        presented = bearer_token(authorization) or ""
        if not hmac.compare_digest(presented.encode(), expected.encode()):
            raise _reject(401, "Invalid webhook secret", connector, "secret_mismatch")
        return
    if require_secret:
        raise _reject(401, "Webhook secret not configured", connector, "secret_required")
    logger.warning("ingress.unauthenticated", extra={"connector": connector})


def verify_hmac_signature(
    signature: Optional[str],
    payload: bytes,
    secret: Optional[str],
    connector: str,
    scheme_prefix: str = "sha256=",
    failure_status: int = 401,
) -> None:
    """
    GitHub-style HMAC check.

    An unconfigured secret is always a 500. A malformed or mismatched
    signature raises ``failure_status``.
    """
    if not secret:
        raise _reject(500, "Webhook secret not configured", connector, "secret_not_configured")
    prefix, digest = (signature or "")[: len(scheme_prefix)], (signature or "")[len(scheme_prefix) :]
    if prefix != scheme_prefix or not digest:
        raise _reject(failure_status, "Invalid webhook signature", connector, "malformed_signature")
    computed = hmac.new(secret.encode(), payload, hashlib.sha256).hexdigest()
    if not hmac.compare_digest(computed, digest):
        raise _reject(failure_status, "Invalid webhook signature", connector, "signature_mismatch")
