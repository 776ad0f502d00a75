"""API key issuance, validation and revocation.

Raw secrets are returned exactly once, by create(). The keystore only ever
holds an HMAC-SHA256 of each secret under process root key material, and
looks keys up by that hash.
"""

import hashlib
import hmac
import logging
import secrets
import threading
from collections.abc import Callable, Iterable
from dataclasses import dataclass, replace
from datetime import UTC, datetime, timedelta

from rethink.exceptions import AuthFailure, ConfigurationError, KeyNotFoundError, ValidationError

logger = logging.getLogger(__name__)

SECRET_PREFIX = "rtk_"
SECRET_BYTES = 32

# Scopes checked by the HTTP layer
SCOPE_CHAT = "chat"
SCOPE_ADMIN = "admin"
KNOWN_SCOPES = frozenset({SCOPE_CHAT, SCOPE_ADMIN})


@dataclass(frozen=True)
class APIKeyRecord:
    """Stored metadata for one key. Never contains the raw secret."""

    key_id: str
    secret_hash: str
    name: str
    scopes: frozenset[str]
    created_at: datetime
    expires_at: datetime | None = None
    revoked_at: datetime | None = None

    @property
    def revoked(self) -> bool:
        return self.revoked_at is not None

    def is_expired(self, now: datetime) -> bool:
        return self.expires_at is not None and now >= self.expires_at

    def has_scope(self, scope: str) -> bool:
        return scope in self.scopes


class APIKeyManager:
    """Process-wide keystore with an explicit open/close lifecycle.

    One lock guards both indexes, so a revoke() is visible to the very next
    validate().
    """

    def __init__(
        self,
        pepper: str | bytes | None = None,
        *,
        default_ttl: timedelta | None = None,
        now_func: Callable[[], datetime] | None = None,
    ):
        """Initialize the manager (closed until open() is called).

        Args:
            pepper: Root key material for hashing; generated at open() if empty
            default_ttl: Lifetime applied when create() is given no expiry
            now_func: Callable returning the current UTC datetime (for tests)
        """
        self._configured_pepper = pepper.encode() if isinstance(pepper, str) else pepper
        self.default_ttl = default_ttl
        self._now = now_func or (lambda: datetime.now(UTC))
        self._root_key: bytearray | None = None
        self._by_id: dict[str, APIKeyRecord] = {}
        self._by_hash: dict[str, str] = {}
        self._lock = threading.RLock()

    @property
    def is_open(self) -> bool:
        return self._root_key is not None

    def open(self) -> None:
        """Load (or generate) root key material. Idempotent."""
        with self._lock:
            if self._root_key is not None:
                return
            if self._configured_pepper:
                self._root_key = bytearray(self._configured_pepper)
            else:
                self._root_key = bytearray(secrets.token_bytes(SECRET_BYTES))
                logger.info("Generated ephemeral API key root material; keys will not survive restart")

    def close(self) -> None:
        """Zeroize root key material and drop every key."""
        with self._lock:
            if self._root_key is not None:
                for i in range(len(self._root_key)):
                    self._root_key[i] = 0
            self._root_key = None
            self._by_id.clear()
            self._by_hash.clear()

    def create(
        self,
        name: str,
        scopes: Iterable[str],
        *,
        expires_in: timedelta | None = None,
    ) -> tuple[APIKeyRecord, str]:
        """Issue a new key.

        Returns:
            (record, raw_secret). The raw secret is not retrievable again.
        """
        name = name.strip()
        if not name:
            raise ValidationError("API key name must not be empty")
        scope_set = frozenset(s.strip() for s in scopes if s and s.strip())
        if not scope_set:
            raise ValidationError("API key must have at least one scope")

        raw_secret = SECRET_PREFIX + secrets.token_urlsafe(SECRET_BYTES)
        with self._lock:
            secret_hash = self._hash(raw_secret)
            key_id = "key_" + secrets.token_hex(8)
            while key_id in self._by_id:
                key_id = "key_" + secrets.token_hex(8)

            now = self._now()
            ttl = expires_in if expires_in is not None else self.default_ttl
            record = APIKeyRecord(
                key_id=key_id,
                secret_hash=secret_hash,
                name=name,
                scopes=scope_set,
                created_at=now,
                expires_at=now + ttl if ttl is not None else None,
            )
            self._by_id[key_id] = record
            self._by_hash[secret_hash] = key_id

        logger.info("Created API key %s (%s) with scopes %s", key_id, name, sorted(scope_set))
        return record, raw_secret

    def register(self, name: str, raw_secret: str, scopes: Iterable[str]) -> APIKeyRecord:
        """Register an externally supplied secret (the configured bootstrap key)."""
        if not raw_secret:
            raise ValidationError("API key secret must not be empty")
        scope_set = frozenset(s.strip() for s in scopes if s and s.strip())
        with self._lock:
            secret_hash = self._hash(raw_secret)
            existing = self._by_hash.get(secret_hash)
            if existing is not None:
                return self._by_id[existing]
            key_id = "key_" + secrets.token_hex(8)
            record = APIKeyRecord(
                key_id=key_id,
                secret_hash=secret_hash,
                name=name,
                scopes=scope_set,
                created_at=self._now(),
            )
            self._by_id[key_id] = record
            self._by_hash[secret_hash] = key_id
        logger.info("Registered API key %s (%s)", key_id, name)
        return record

    def validate(self, raw_secret: str | None) -> APIKeyRecord:
        """Authenticate a presented secret.

        Raises:
            AuthFailure: Unknown, revoked or expired key. The reason is
                logged but never exposed to the caller.
        """
        if not raw_secret:
            logger.info("API key rejected: no credential presented")
            raise AuthFailure()

        with self._lock:
            if self._root_key is None:
                logger.error("API key rejected: keystore is closed")
                raise AuthFailure()
            secret_hash = self._hash(raw_secret)
            key_id = self._by_hash.get(secret_hash)
            record = self._by_id.get(key_id) if key_id is not None else None

        if record is None:
            logger.info("API key rejected: unknown key")
            raise AuthFailure()
        if record.revoked:
            logger.warning("API key rejected: %s was revoked", record.key_id)
            raise AuthFailure()
        if record.is_expired(self._now()):
            logger.info("API key rejected: %s expired at %s", record.key_id, record.expires_at)
            raise AuthFailure()
        return record

    def revoke(self, key_id: str) -> APIKeyRecord:
        """Revoke a key. Idempotent; effective for the next validate() call.

        Raises:
            KeyNotFoundError: No key with that id
        """
        with self._lock:
            record = self._by_id.get(key_id)
            if record is None:
                raise KeyNotFoundError(key_id)
            if record.revoked:
                return record
            record = replace(record, revoked_at=self._now())
            self._by_id[key_id] = record
        logger.info("Revoked API key %s (%s)", key_id, record.name)
        return record

    def get(self, key_id: str) -> APIKeyRecord:
        with self._lock:
            record = self._by_id.get(key_id)
        if record is None:
            raise KeyNotFoundError(key_id)
        return record

    def list_keys(self) -> list[APIKeyRecord]:
        with self._lock:
            return sorted(self._by_id.values(), key=lambda r: r.created_at)

    def _hash(self, raw_secret: str) -> str:
        if self._root_key is None:
            raise ConfigurationError("API key manager is not open")
        return hmac.new(bytes(self._root_key), raw_secret.encode(), hashlib.sha256).hexdigest()
