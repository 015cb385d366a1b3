"""
Trigger Authentication
======================

Shared-secret check for machine-to-machine trigger calls (external cron).
"""

import hmac
from typing import Optional

from fastapi import HTTPException, Request, status

from casewatch.config import settings


def extract_presented_secret(request: Request) -> str:
    """
    Pull the secret from, in order: `Authorization: Bearer <secret>`,
    `X-Cron-Secret` header, `secret` query parameter.
    """
    auth = request.headers.get("authorization")
    if auth:
        if auth.lower().startswith("bearer "):
            return auth[7:].strip()
        return auth.strip()
    header = request.headers.get("x-cron-secret")
    if header:
        return header.strip()
    return request.query_params.get("secret", "")


def is_authorized(presented: str, expected: Optional[str]) -> bool:
    """An unset expected secret leaves the trigger open (development)."""
    if not expected:
        return True
    return hmac.compare_digest(presented.encode(), expected.encode())


async def require_cron_secret(request: Request) -> None:
    """FastAPI dependency rejecting trigger calls with a wrong secret."""
    if not is_authorized(extract_presented_secret(request), settings.cron_secret):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Unauthorized"
        )
