# bartok/barcode_tokens.py
"""
Barcode token management using the configured store backend.
"""
from __future__ import annotations
from typing import Optional
from .config import STORE_BACKEND, TokenPolicy
from .lifecycle import IssuedToken, TokenLifecycleManager, TokenRecord
from .store import create_store_from_env

_MANAGER: Optional[TokenLifecycleManager] = None


def set_manager(manager: Optional[TokenLifecycleManager]) -> None:
    """Replace the process-wide manager (None rebuilds it from the environment)."""
    global _MANAGER
    _MANAGER = manager


def get_manager() -> TokenLifecycleManager:
    global _MANAGER
    if _MANAGER is None:
        policy = TokenPolicy.from_env()
        store = create_store_from_env(STORE_BACKEND, policy.key_prefix)
        _MANAGER = TokenLifecycleManager(store, policy)
    return _MANAGER


def issue_token(subject_id: str) -> IssuedToken:
    """ Issues the subject a single-use barcode valid for the active window plus grace buffer"""
    return get_manager().issue(subject_id)


def is_token_valid(subject_id: str) -> bool:
    """Returns True/False. Never raises for unknown or expired subjects."""
    return get_manager().validate(subject_id)


def consume_token(subject_id: str) -> None:
    """Mark the subject's barcode as used (one-time scan)."""
    get_manager().consume(subject_id)


def get_token(subject_id: str) -> Optional[TokenRecord]:
    return get_manager().get(subject_id)
