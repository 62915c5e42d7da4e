"""Webhook signature verification and service-token auth for internal endpoints."""
from __future__ import annotations

import hashlib
import hmac
import logging

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from copyflow.config import Settings, get_settings, secret_value

logger = logging.getLogger(__name__)

AUTH_SCHEME = HTTPBearer(auto_error=False)
SIGNATURE_HEADERS = ("x-signature", "x-clickup-signature")


def compute_signature(body: bytes, secret: str) -> str:
    """Hex HMAC-SHA256 of the raw request body."""
    return hmac.new(secret.encode("utf-8"), body, hashlib.sha256).hexdigest()


def verify_signature(body: bytes, header_signature: str | None, secret: str | None) -> bool:
    """
    Verify a webhook body against its signature header.

    With no secret configured verification is bypassed. A configured secret
    requires a header; ``sha256=`` prefixes are accepted.
    """
    if not secret:
        return True
    if not header_signature:
        return False
    candidate = header_signature.strip()
    if candidate.lower().startswith("sha256="):
        candidate = candidate[len("sha256="):]
    expected = compute_signature(body, secret)
    return hmac.compare_digest(expected, candidate.lower())


def require_service_token(
    creds: HTTPAuthorizationCredentials | None = Depends(AUTH_SCHEME),
    settings: Settings = Depends(get_settings),
) -> None:
    """Guard internal endpoints when SERVICE_TOKEN is configured."""
    expected = secret_value(settings.service_token)
    if expected is None:
        return
    if creds is None or not creds.credentials:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing authorization token",
        )
    if not hmac.compare_digest(creds.credentials, expected):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid service token"
        )
