"""careguard: authorization and cryptography core for family health records.

Public API
----------
The stable public surface is everything exported from this module.
Anything inside submodules not re-exported here is considered private
and may change without notice.

Example
-------
>>> import careguard
>>> careguard.__version__
'0.1.0'
>>> guard = careguard.Careguard()
>>> _ = guard.add_member("fam-1", "user-1", "viewer", invited_by="parent-1")
>>> requirement = careguard.AccessRequirement(permissions={"write_data"}, require_all=True)
>>> decision = guard.can("user-1", requirement, careguard.AccessScope("fam-1"))
>>> decision.reason
<DenialReason.INSUFFICIENT_PERMISSION: 'insufficient_permission'>
"""
from __future__ import annotations

__version__: str = "0.1.0"

from careguard.convenience import Careguard

# ---------------------------------------------------------------------------
# Access
# ---------------------------------------------------------------------------
from careguard.access.roles import (
    MagicLinkPermission,
    PrivacyPermission,
    Role,
    RolePermission,
    permissions_for_role,
)
from careguard.access.models import AccessScope, FamilyAccess, PrivacyGrant
from careguard.access.stores import (
    FamilyAccessStore,
    InMemoryFamilyAccessStore,
    InMemoryPrivacyGrantStore,
    PrivacyGrantStore,
)
from careguard.access.resolver import EffectivePermissions, PermissionResolver
from careguard.access.guard import AccessGuard, AccessRequirement, Decision, DenialReason
from careguard.access.requirement_loader import RequirementCatalog, RequirementLoader

# ---------------------------------------------------------------------------
# Capability tokens
# ---------------------------------------------------------------------------
from careguard.tokens.manager import CapabilityTokenManager, TokenDenial, TokenResult
from careguard.tokens.models import LinkStatus, MagicLink, MagicLinkAccess, ProviderInfo
from careguard.tokens.store import IncrementResult, InMemoryTokenStore, TokenStore

# ---------------------------------------------------------------------------
# Crypto
# ---------------------------------------------------------------------------
from careguard.crypto.engine import CryptoEngine, CryptoValidation, EncryptedPayload, HashResult
from careguard.crypto.envelope import TransmissionEnvelope
from careguard.crypto.keys import (
    EnvKeyProvider,
    KeyManager,
    KeyMetadata,
    KeyProvider,
    KeyPurpose,
    KeyStatus,
    StaticKeyProvider,
)

# ---------------------------------------------------------------------------
# Audit
# ---------------------------------------------------------------------------
from careguard.audit.logger import AuditLogger, AuditSink, InMemoryAuditLog
from careguard.audit.search import AuditSearch
from careguard.audit.report import AuditReportGenerator
from careguard.audit.exporter import AuditExporter

# ---------------------------------------------------------------------------
# Configuration & errors
# ---------------------------------------------------------------------------
from careguard.config.loader import CareguardConfig, ConfigLoader
from careguard.errors import (
    CareguardError,
    CollaboratorUnavailableError,
    ConfigError,
    CryptoConfigError,
    CryptoError,
    DecryptionFailed,
    IntegrityCheckFailed,
    PayloadExpired,
    RequirementConfigError,
)

__all__ = [
    "__version__",
    "Careguard",
    # Access
    "AccessGuard",
    "AccessRequirement",
    "AccessScope",
    "Decision",
    "DenialReason",
    "EffectivePermissions",
    "FamilyAccess",
    "FamilyAccessStore",
    "InMemoryFamilyAccessStore",
    "InMemoryPrivacyGrantStore",
    "MagicLinkPermission",
    "PermissionResolver",
    "PrivacyGrant",
    "PrivacyGrantStore",
    "PrivacyPermission",
    "RequirementCatalog",
    "RequirementLoader",
    "Role",
    "RolePermission",
    "permissions_for_role",
    # Capability tokens
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
    # Crypto
    "CryptoEngine",
    "CryptoValidation",
    "EncryptedPayload",
    "EnvKeyProvider",
    "HashResult",
    "KeyManager",
    "KeyMetadata",
    "KeyProvider",
    "KeyPurpose",
    "KeyStatus",
    "StaticKeyProvider",
    "TransmissionEnvelope",
    # Audit
    "AuditExporter",
    "AuditLogger",
    "AuditReportGenerator",
    "AuditSearch",
    "AuditSink",
    "InMemoryAuditLog",
    # Configuration & errors
    "CareguardConfig",
    "CareguardError",
    "CollaboratorUnavailableError",
    "ConfigError",
    "ConfigLoader",
    "CryptoConfigError",
    "CryptoError",
    "DecryptionFailed",
    "IntegrityCheckFailed",
    "PayloadExpired",
    "RequirementConfigError",
]
