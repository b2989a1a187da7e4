"""
Signed waiver preview tokens using python-jose.

A preview call issues a token carrying the fingerprint of the filter it
matched. Apply only accepts a token this server signed, for the same filter,
before it expires.
"""

import os
from datetime import datetime, timedelta, timezone
from typing import Optional

from dotenv import load_dotenv
from jose import jwt, JWTError

load_dotenv()

# Configuration
SECRET_KEY = os.getenv("WAIVER_TOKEN_SECRET", "dev-waiver-secret-change-in-production")
ALGORITHM = "HS256"
TOKEN_SUBJECT = "waiver-preview"

# Fail startup in production if using the default secret key
_ENVIRONMENT = os.getenv("ENVIRONMENT", "development")
if _ENVIRONMENT == "production" and SECRET_KEY == "dev-waiver-secret-change-in-production":
    raise RuntimeError(
        "SECURITY ERROR: WAIVER_TOKEN_SECRET environment variable must be set in production. "
        "Generate a secure key with: python -c \"import secrets; print(secrets.token_hex(32))\""
    )
PREVIEW_TOKEN_EXPIRE_MINUTES = int(os.getenv("WAIVER_PREVIEW_TTL_MINUTES", "30"))


def create_preview_token(fingerprint: str, expires_delta: Optional[timedelta] = None) -> str:
    """
    Sign a preview token for a waiver filter.

    Args:
        fingerprint: Filter fingerprint (WaiverRequest.fingerprint)
        expires_delta: Optional custom lifetime

    Returns:
        Encoded JWT string
    """
    now = datetime.now(timezone.utc)
    expire = now + (expires_delta or timedelta(minutes=PREVIEW_TOKEN_EXPIRE_MINUTES))
    to_encode = {
        "sub": TOKEN_SUBJECT,
        "fp": fingerprint,
        "iat": now,
        "exp": expire,
    }
    return jwt.encode(to_encode, SECRET_KEY, algorithm=ALGORITHM)


def verify_preview_token(token: str) -> Optional[str]:
    """
    Verify a preview token.

    Returns:
        The filter fingerprint it was issued for, or None if the token is
        forged, malformed or expired
    """
    try:
        payload = jwt.decode(token, SECRET_KEY, algorithms=[ALGORITHM])
    except JWTError:
        return None
    if payload.get("sub") != TOKEN_SUBJECT:
        return None
    return payload.get("fp")
