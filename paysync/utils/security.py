from __future__ import annotations

import hashlib
import hmac
import secrets
import string

from fastapi import HTTPException, Request, Security, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

_bearer_scheme = HTTPBearer(auto_error=False, scheme_name="BearerAuth")

_HEX_DIGITS = frozenset(string.hexdigits)
# Both processors sign with HMAC-SHA512 and send the hex digest
SIGNATURE_DIGEST = hashlib.sha512
SIGNATURE_HEX_LENGTH = SIGNATURE_DIGEST().digest_size * 2


def is_well_formed_signature(signature_header: str | None) -> bool:
    """True when the header looks like a hex digest of the expected length."""
    if not signature_header:
        return False
    candidate = signature_header.strip()
    return len(candidate) == SIGNATURE_HEX_LENGTH and all(ch in _HEX_DIGITS for ch in candidate)


def compute_signature(raw_body: bytes, shared_secret: str) -> str:
    return hmac.new(shared_secret.strip().encode("utf-8"), raw_body, SIGNATURE_DIGEST).hexdigest()


def verify_signature(raw_body: bytes, signature_header: str | None, shared_secret: str) -> bool:
    """Check a webhook signature over the exact bytes received.

    Never raises: a missing or malformed header, or an unconfigured secret,
    simply fails verification. The body must not be parsed and re-serialized
    before calling this.
    """
    if not shared_secret or not shared_secret.strip():
        return False
    if not is_well_formed_signature(signature_header):
        return False
    expected = compute_signature(raw_body, shared_secret)
    return hmac.compare_digest(expected, signature_header.strip().lower())  # type: ignore[union-attr]


def verify_bearer_token(
    request: Request,
    credentials: HTTPAuthorizationCredentials | None = Security(_bearer_scheme),
) -> None:
    """Validate Bearer token matches configured API token."""

    if credentials is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Unauthorized",
            headers={"WWW-Authenticate": "Bearer"},
        )
    expected = request.app.state.settings.api_bearer_token
    token = credentials.credentials.strip()
    if not token or not secrets.compare_digest(token, expected):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Unauthorized",
            headers={"WWW-Authenticate": "Bearer"},
        )
