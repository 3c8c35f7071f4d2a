# bartok/config.py
"""
Configuration module for bartok.
"""
from __future__ import annotations
from dataclasses import dataclass
from pathlib import Path
from typing import Optional
from dotenv import load_dotenv
import os

load_dotenv()

# --- Core Directories ---
PROJECT_ROOT = Path(__file__).resolve().parent.parent

DATA_ROOT = Path(os.getenv("DATA_ROOT", PROJECT_ROOT / "data"))

LOG_DIR = Path(os.getenv("LOG_DIR", DATA_ROOT / "logs"))


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


def _env_optional_int(name: str) -> Optional[int]:
    raw = os.getenv(name, "").strip()
    if not raw or raw.lower() == "none":
        return None
    return int(raw)


# --- Token Policy ---

@dataclass(frozen=True)
class TokenPolicy:
    """
    Lifetime rules for issued barcodes.

    The store TTL of a fresh token is ``active_window_seconds`` plus
    ``grace_buffer_seconds``; the buffer covers the time between a token
    being shown to a user and a scanner checking it.
    """
    active_window_seconds: int = 5 * 60
    grace_buffer_seconds: int = 2 * 60
    key_prefix: str = "barcode:"
    # TTL for a "used" marker written onto a key that had already expired.
    # None writes it without expiry.
    orphan_marker_ttl_seconds: Optional[int] = None
    atomic_consume: bool = True

    @property
    def total_ttl_seconds(self) -> int:
        return self.active_window_seconds + self.grace_buffer_seconds

    @classmethod
    def from_env(cls) -> "TokenPolicy":
        return cls(
            active_window_seconds=int(os.getenv("BARTOK_ACTIVE_WINDOW_SECONDS", "300")),
            grace_buffer_seconds=int(os.getenv("BARTOK_GRACE_BUFFER_SECONDS", "120")),
            key_prefix=os.getenv("BARTOK_KEY_PREFIX", "barcode:"),
            orphan_marker_ttl_seconds=_env_optional_int("BARTOK_ORPHAN_MARKER_TTL_SECONDS"),
            atomic_consume=_env_bool("BARTOK_ATOMIC_CONSUME", True),
        )

    def validate(self) -> None:
        if self.active_window_seconds <= 0:
            raise ValueError("active_window_seconds must be positive")
        if self.grace_buffer_seconds < 0:
            raise ValueError("grace_buffer_seconds cannot be negative")
        if not self.key_prefix:
            raise ValueError("key_prefix cannot be empty")
        if self.orphan_marker_ttl_seconds is not None and self.orphan_marker_ttl_seconds <= 0:
            raise ValueError("orphan_marker_ttl_seconds must be positive or None")


# --- Redis ---

@dataclass
class RedisSettings:
    """Connection settings for the Redis token backend."""
    url: Optional[str] = None
    host: str = "localhost"
    port: int = 6379
    db: int = 0
    password: Optional[str] = None
    socket_timeout: float = 5.0
    socket_connect_timeout: float = 5.0
    max_connections: int = 20

    @classmethod
    def from_env(cls) -> "RedisSettings":
        return cls(
            url=os.getenv("REDIS_URL") or None,
            host=os.getenv("REDIS_HOST", "localhost"),
            port=int(os.getenv("REDIS_PORT", "6379")),
            db=int(os.getenv("REDIS_DB", "0")),
            password=os.getenv("REDIS_PASSWORD") or None,
            socket_timeout=float(os.getenv("REDIS_SOCKET_TIMEOUT", "5")),
            socket_connect_timeout=float(os.getenv("REDIS_CONNECT_TIMEOUT", "5")),
            max_connections=int(os.getenv("REDIS_MAX_CONNECTIONS", "20")),
        )

    def validate(self) -> None:
        if self.url:
            return
        if not self.host:
            raise ValueError("Redis host cannot be empty")
        if not 1 <= self.port <= 65535:
            raise ValueError(f"Invalid Redis port: {self.port}")
        if self.max_connections < 1:
            raise ValueError("max_connections must be at least 1")


# --- Store Backend ---
STORE_BACKEND = os.getenv("BARTOK_STORE", "redis").strip().lower()

if STORE_BACKEND not in ("redis", "memory"):
    raise RuntimeError(f"⚠️  BARTOK_STORE must be 'redis' or 'memory', got {STORE_BACKEND!r}")

# --- Server Configuration ---
SERVER_HOST = os.getenv("SERVER_HOST", "127.0.0.1")
SERVER_PORT = int(os.getenv("SERVER_PORT", "8080"))
