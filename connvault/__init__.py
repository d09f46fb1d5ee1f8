"""
connvault - remote connection profiles in a hierarchical YAML file.

Passwords are either sealed locally under a master password (AES-256-GCM,
PBKDF2-derived keys) or kept in 1Password and referenced as
``op://vault/item/field``.
"""

from .config import APP_VERSION as __version__
from .crypto import CryptoProvider
from .errors import (
    ConnVaultError,
    DecryptError,
    EncryptionDisabledError,
    InvalidPathError,
    NotFoundError,
    PersistenceError,
    ResolutionFailure,
    ResolverUnavailable,
)
from .models import Configuration, Node, NodeType, Protocol, Settings
from .resolver import SecretResolver
from .storage import ConfigManager

__all__ = [
    "__version__",
    "ConfigManager",
    "Configuration",
    "ConnVaultError",
    "CryptoProvider",
    "DecryptError",
    "EncryptionDisabledError",
    "InvalidPathError",
    "Node",
    "NodeType",
    "NotFoundError",
    "PersistenceError",
    "Protocol",
    "ResolutionFailure",
    "ResolverUnavailable",
    "SecretResolver",
    "Settings",
]
