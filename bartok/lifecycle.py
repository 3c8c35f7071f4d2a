# bartok/lifecycle.py
"""
Barcode token lifecycle on top of a TTL-only store.

Per subject key the states are::

    (absent) --issue--> active --consume--> used
    active / used --ttl expiry--> (absent)

The manager never deletes a key; only the store's TTL does. A consume
rewrites the key as ``used`` while keeping the countdown the key already had.
"""
from __future__ import annotations
import json
import secrets
from dataclasses import dataclass, replace
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional

from .config import TokenPolicy
from .store import NO_EXPIRY, TokenStore
from .utils import get_context_logger, sanitize_subject_id

STATUS_ACTIVE = "active"
STATUS_USED = "used"

# 18 random bytes -> 24 URL-safe characters
CODE_BYTES = 18


def new_code() -> str:
    return secrets.token_urlsafe(CODE_BYTES)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class IssuedToken:
    subject: str
    code: str
    ttl_seconds: int
    # Advisory only, the store's countdown is authoritative.
    expires_at: datetime


@dataclass(frozen=True)
class TokenRecord:
    """Tagged value stored under a subject key."""
    status: str
    code: Optional[str] = None
    ttl_seconds: Optional[float] = None

    @property
    def is_used(self) -> bool:
        return self.status == STATUS_USED

    def encode(self) -> str:
        payload = {"status": self.status}
        if self.code is not None:
            payload["code"] = self.code
        return json.dumps(payload, separators=(",", ":"), sort_keys=True)

    @classmethod
    def decode(cls, raw: str) -> "TokenRecord":
        """
        Parse a stored value. Bare strings are accepted too: ``"used"`` in any
        case is the used marker, anything else is an active code.
        """
        try:
            data = json.loads(raw)
        except (json.JSONDecodeError, TypeError):
            data = None
        if isinstance(data, dict) and data.get("status") in (STATUS_ACTIVE, STATUS_USED):
            return cls(status=data["status"], code=data.get("code"))
        if raw.strip().lower() == STATUS_USED:
            return cls(status=STATUS_USED)
        return cls(status=STATUS_ACTIVE, code=raw)


USED_MARKER = TokenRecord(STATUS_USED).encode()


class TokenLifecycleManager:
    """Issue, validate and consume single-use barcodes keyed by subject ID."""

    def __init__(
        self,
        store: TokenStore,
        policy: Optional[TokenPolicy] = None,
        *,
        now: Callable[[], datetime] = utc_now,
        code_factory: Callable[[], str] = new_code,
    ) -> None:
        self.policy = policy or TokenPolicy()
        self.policy.validate()
        self.store = store
        self._now = now
        self._new_code = code_factory

    def _key(self, subject: str) -> str:
        return self.store.key_for(sanitize_subject_id(subject))

    def issue(self, subject: str) -> IssuedToken:
        """
        Issue a fresh barcode for ``subject``.

        Any token previously stored for the subject is overwritten, whatever
        its state.
        """
        subject = sanitize_subject_id(subject)
        code = self._new_code()
        ttl = self.policy.total_ttl_seconds
        self.store.set_with_ttl(
            self.store.key_for(subject), TokenRecord(STATUS_ACTIVE, code).encode(), ttl
        )
        get_context_logger(subject=subject, op="issue").info("Issued barcode (ttl=%ss)", ttl)
        return IssuedToken(
            subject=subject,
            code=code,
            ttl_seconds=ttl,
            expires_at=self._now() + timedelta(seconds=ttl),
        )

    def validate(self, subject: str) -> bool:
        """True if the subject holds an unexpired, unused barcode. Read-only."""
        key = self._key(subject)
        remaining = self.store.get_remaining_ttl(key)
        if remaining is None or remaining <= 0:
            return False
        raw = self.store.get(key)
        if raw is None:
            return False
        return not TokenRecord.decode(raw).is_used

    def consume(self, subject: str) -> None:
        """
        Mark the subject's barcode as used, keeping its remaining TTL.

        Idempotent. On a key that has already expired (or never existed) the
        used marker is still written, with ``orphan_marker_ttl_seconds`` as
        its TTL.

        Without an atomic store write, reading the TTL and writing the marker
        are two calls: a concurrent issue or expiry between them can be lost.
        Either resulting state is a complete record.
        """
        subject = sanitize_subject_id(subject)
        key = self.store.key_for(subject)
        orphan_ttl = self.policy.orphan_marker_ttl_seconds
        log = get_context_logger(subject=subject, op="consume")

        if self.policy.atomic_consume and self.store.supports_keep_ttl:
            remaining = self.store.replace_keep_ttl(key, USED_MARKER, orphan_ttl)
        else:
            remaining = self.store.get_remaining_ttl(key)
            if remaining is not None and remaining > 0:
                self.store.set_with_ttl(key, USED_MARKER, remaining)
            else:
                self.store.set_with_ttl(key, USED_MARKER, orphan_ttl)

        if remaining is None or remaining <= 0:
            log.info("Consume on expired or unknown barcode, wrote used marker")
        else:
            log.info("Consumed barcode (%.1fs left)", remaining)

    def get(self, subject: str) -> Optional[TokenRecord]:
        """Return the stored record with its remaining TTL, or None if absent."""
        key = self._key(subject)
        remaining = self.store.get_remaining_ttl(key)
        if remaining is None:
            return None
        raw = self.store.get(key)
        if raw is None:
            return None
        ttl = None if remaining == NO_EXPIRY else remaining
        return replace(TokenRecord.decode(raw), ttl_seconds=ttl)
