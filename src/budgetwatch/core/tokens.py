"""Signed, expiring access tokens for budget deep links (core domain).

Token format::

    base64url(canonical JSON {"bid", "exp", "iat", "uid"}) "." base64url(HMAC-SHA256)

Tokens are stateless: anyone holding the secret can verify one from its own
bytes and the current time. Expiry is the only way a token stops working.
"""

from __future__ import annotations

import base64
import hashlib
import hmac
import json
import logging
import re
import time
from datetime import datetime, timezone
from typing import Any, Optional, Union

from budgetwatch.core.config import DEFAULT_TOKEN_TTL_SECONDS, MIN_TOKEN_TTL_SECONDS, LinkConfig
from budgetwatch.core.errors import MissingSecretError
from budgetwatch.core.models import MintedToken, TokenFailure, TokenPayload, TokenVerification

LOGGER = logging.getLogger(__name__)

# Unsafe default for local development only; production settings refuse it.
PLACEHOLDER_SECRET = "budget-link-secret"

_BASE64URL = re.compile(r"[A-Za-z0-9_-]+")

_placeholder_warning_issued = False

Instant = Union[datetime, int, float, None]


def resolve_secret(secret: Optional[str]) -> str:
    """Return the configured secret, or the placeholder with a one-time warning."""

    global _placeholder_warning_issued
    if isinstance(secret, str) and secret.strip():
        return secret.strip()
    if not _placeholder_warning_issued:
        LOGGER.warning(
            "No link secret configured; access links are signed with a well-known "
            "placeholder. Set BUDGET_LINK_SECRET before exposing links."
        )
        _placeholder_warning_issued = True
    return PLACEHOLDER_SECRET


def _b64encode(data: bytes) -> str:
    return base64.urlsafe_b64encode(data).rstrip(b"=").decode("ascii")


def _b64decode(segment: str) -> bytes:
    if not _BASE64URL.fullmatch(segment) or len(segment) % 4 == 1:
        raise ValueError("not base64url")
    return base64.urlsafe_b64decode(segment + "=" * (-len(segment) % 4))


def _epoch_seconds(now: Instant) -> int:
    if now is None:
        return int(time.time())
    if isinstance(now, datetime):
        if now.tzinfo is None:
            now = now.replace(tzinfo=timezone.utc)
        return int(now.timestamp())
    return int(now)


def _sign(secret: str, payload_bytes: bytes) -> str:
    return _b64encode(hmac.new(secret.encode("utf-8"), payload_bytes, hashlib.sha256).digest())


def _resolve_ttl(ttl_seconds: Any, default_ttl_seconds: int) -> int:
    if ttl_seconds is None or isinstance(ttl_seconds, bool):
        ttl = default_ttl_seconds
    else:
        try:
            ttl = int(ttl_seconds)
        except (TypeError, ValueError):
            ttl = default_ttl_seconds
    return max(MIN_TOKEN_TTL_SECONDS, ttl)


def mint(
    budget_id: Optional[int],
    recipient_id: Optional[int],
    ttl_seconds: Optional[int] = None,
    secret: Optional[str] = None,
    now: Instant = None,
    default_ttl_seconds: int = DEFAULT_TOKEN_TTL_SECONDS,
) -> MintedToken:
    """Sign a token for (budget_id, recipient_id) valid for ``ttl_seconds``.

    The lifetime never drops below ``MIN_TOKEN_TTL_SECONDS`` so a typo in the
    configuration cannot silently produce links that are dead on arrival.
    """

    issued_at = _epoch_seconds(now)
    expires_at = issued_at + _resolve_ttl(ttl_seconds, default_ttl_seconds)
    payload = TokenPayload(
        budget_id=budget_id,
        recipient_id=recipient_id,
        issued_at=issued_at,
        expires_at=expires_at,
    )
    claims = {"bid": budget_id, "uid": recipient_id, "iat": issued_at, "exp": expires_at}
    payload_bytes = json.dumps(claims, sort_keys=True, separators=(",", ":")).encode("utf-8")
    token = f"{_b64encode(payload_bytes)}.{_sign(resolve_secret(secret), payload_bytes)}"
    return MintedToken(
        token=token,
        issued_at=datetime.fromtimestamp(issued_at, tz=timezone.utc),
        expires_at=datetime.fromtimestamp(expires_at, tz=timezone.utc),
        payload=payload,
    )


def _optional_int(value: Any) -> Optional[int]:
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValueError("claim must be an integer or null")
    return value


def _parse_claims(payload_bytes: bytes) -> TokenPayload:
    claims = json.loads(payload_bytes.decode("utf-8"))
    if not isinstance(claims, dict):
        raise ValueError("claims must be an object")
    issued_at = _optional_int(claims.get("iat"))
    expires_at = _optional_int(claims.get("exp"))
    if issued_at is None or expires_at is None:
        raise ValueError("iat and exp are required")
    return TokenPayload(
        budget_id=_optional_int(claims.get("bid")),
        recipient_id=_optional_int(claims.get("uid")),
        issued_at=issued_at,
        expires_at=expires_at,
    )


def verify(token: str, secret: Optional[str], now: Instant = None) -> TokenVerification:
    """Check signature first, then expiry; never raises on bad tokens.

    Calling without a secret is a programmer error and raises
    ``MissingSecretError``.
    """

    if not isinstance(secret, str) or not secret.strip():
        raise MissingSecretError("verify() requires a signing secret")
    if not isinstance(token, str) or not token:
        return TokenVerification(valid=False, reason=TokenFailure.MALFORMED)

    payload_segment, separator, signature_segment = token.partition(".")
    if not separator or not payload_segment or not _BASE64URL.fullmatch(signature_segment):
        return TokenVerification(valid=False, reason=TokenFailure.MALFORMED)
    try:
        payload_bytes = _b64decode(payload_segment)
    except ValueError:
        return TokenVerification(valid=False, reason=TokenFailure.MALFORMED)

    # Compare encoded forms so any altered character fails, including ones
    # that only touch base64 padding bits.
    expected = _sign(secret.strip(), payload_bytes).encode("ascii")
    provided = signature_segment.encode("ascii")
    if not hmac.compare_digest(expected, provided):
        return TokenVerification(valid=False, reason=TokenFailure.BAD_SIGNATURE)

    try:
        payload = _parse_claims(payload_bytes)
    except ValueError:
        return TokenVerification(valid=False, reason=TokenFailure.MALFORMED)

    if _epoch_seconds(now) > payload.expires_at:
        return TokenVerification(valid=False, reason=TokenFailure.EXPIRED)
    return TokenVerification(valid=True, payload=payload)


class AccessTokenCodec:
    """Token signer/verifier bound to a ``LinkConfig``."""

    def __init__(self, link_config: LinkConfig) -> None:
        self._config = link_config

    @property
    def uses_placeholder_secret(self) -> bool:
        return self._config.secret is None

    def mint(
        self,
        budget_id: Optional[int],
        recipient_id: Optional[int],
        ttl_seconds: Optional[int] = None,
        now: Instant = None,
    ) -> MintedToken:
        return mint(
            budget_id,
            recipient_id,
            ttl_seconds=ttl_seconds,
            secret=self._config.secret,
            now=now,
            default_ttl_seconds=self._config.default_ttl_seconds,
        )

    def verify(self, token: str, now: Instant = None) -> TokenVerification:
        return verify(token, resolve_secret(self._config.secret), now=now)
