"""Magic-link capability tokens for external providers."""
from __future__ import annotations

from careguard.tokens.manager import CapabilityTokenManager, TokenDenial, TokenResult
from careguard.tokens.models import LinkStatus, MagicLink, MagicLinkAccess, ProviderInfo
from careguard.tokens.store import IncrementResult, InMemoryTokenStore, TokenStore

__all__ = [
    "CapabilityTokenManager",
    "IncrementResult",
    "InMemoryTokenStore",
    "LinkStatus",
    "MagicLink",
    "MagicLinkAccess",
    "ProviderInfo",
    "TokenDenial",
    "TokenResult",
    "TokenStore",
]
