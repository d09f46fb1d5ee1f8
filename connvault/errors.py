"""
Exception types raised by the connection store.
"""

from typing import Optional


class ConnVaultError(Exception):
    """Base class for all connvault errors."""


class NotFoundError(ConnVaultError):
    """A connection or folder name did not match any node."""

    def __init__(self, name: str):
        super().__init__(f"connection '{name}' not found")
        self.name = name


class InvalidPathError(ConnVaultError, ValueError):
    """A folder path could not be resolved into any segment."""


class DecryptError(ConnVaultError):
    """
    An envelope could not be decrypted.

    Wrong master password and corrupted data are reported identically.
    When raised while loading a file, ``connection`` names the node whose
    password failed.
    """

    def __init__(self, message: str, connection: Optional[str] = None):
        if connection:
            message = f"{message} (connection '{connection}')"
        super().__init__(message)
        self.connection = connection


class EncryptionDisabledError(ConnVaultError):
    """Encryption was requested from a provider without a master password."""


class ResolverUnavailable(ConnVaultError):
    """Neither the 1Password SDK nor the op CLI is usable."""


class ResolutionFailure(ConnVaultError):
    """A vault reference could not be resolved or an item could not be written."""


class PersistenceError(ConnVaultError):
    """Reading, parsing or writing the configuration file failed."""

    def __init__(self, message: str, path: Optional[str] = None):
        super().__init__(message)
        self.path = path
