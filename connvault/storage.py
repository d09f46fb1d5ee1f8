"""
Storage management for the connection configuration.

The configuration is a human-editable YAML file. Passwords are sealed one by
one on save and opened on load; 1Password references pass through untouched
and are only resolved when a connection is used.

LEGAL NOTICE:
This module writes connection credentials to local disk. Secrets are never
transmitted except to the 1Password backend the user configured.
"""

import datetime
import logging
import os
from typing import Iterable, List, Optional

import yaml

from . import config, tree, vault_manager
from .crypto import CryptoProvider, is_encrypted, is_reference
from .errors import DecryptError, NotFoundError, PersistenceError, ResolverUnavailable
from .models import Configuration, Node
from .resolver import SecretResolver
from .utils import set_owner_only_permissions
from .vault_manager import get_default_config_path

logger = logging.getLogger(__name__)

__all__ = ["ConfigManager", "get_default_config_path"]


def _now() -> str:
    return datetime.datetime.now().astimezone().isoformat(timespec="seconds")


class ConfigManager:
    """
    Loads, saves and edits one configuration file.

    Not thread-safe: callers serialize load, save and mutations themselves.
    """

    def __init__(self, config_path: Optional[str] = None, crypto: Optional[CryptoProvider] = None,
                 resolver: Optional[SecretResolver] = None):
        """
        Initialize the manager.

        Args:
            config_path: Path to the YAML file, defaults to the platform config location
            crypto: Provider holding the master password; None stores passwords as given
            resolver: 1Password resolver; created from the settings on first use if None
        """
        self.config_path = config_path or get_default_config_path()
        self.crypto = crypto
        self._resolver = resolver
        self._config: Optional[Configuration] = None

    def get_config_path(self) -> str:
        return self.config_path

    def get_config(self) -> Configuration:
        """Return the live configuration, creating an empty one if nothing is loaded."""
        if self._config is None:
            self._config = Configuration()
        return self._config

    def set_config(self, configuration: Configuration) -> None:
        self._config = configuration

    # -- persistence ------------------------------------------------------

    def load(self, path: Optional[str] = None, strict: bool = True) -> Configuration:
        """
        Load the configuration from disk.

        A missing file yields an empty configuration. Encrypted passwords are
        decrypted when a master password is set.

        Args:
            path: File to read, defaults to the manager's path
            strict: If True, a password that fails to decrypt aborts the load
                and the current configuration is kept. If False, that
                password is cleared and loading continues.

        Raises:
            PersistenceError: If the file cannot be read or parsed
            DecryptError: If strict and a password cannot be decrypted
        """
        path = path or self.config_path
        try:
            with open(path, 'r', encoding='utf-8') as f:
                text = f.read()
        except FileNotFoundError:
            logger.info(f"No configuration at {path}, starting empty")
            self.config_path = path
            self._config = Configuration()
            return self._config
        except OSError as e:
            logger.error(f"Error reading configuration file {path}: {e}", exc_info=True)
            raise PersistenceError(f"failed to read config file: {e}", path) from e
        except UnicodeDecodeError as e:
            logger.error(f"Configuration file {path} is not valid UTF-8: {e}")
            raise PersistenceError(f"config file {path} is not valid UTF-8 text", path) from e

        try:
            loaded = Configuration.from_dict(yaml.safe_load(text))
        except yaml.YAMLError as e:
            raise PersistenceError(f"failed to parse config file {path}: {e}", path) from e
        except (TypeError, ValueError) as e:
            raise PersistenceError(f"invalid config file {path}: {e}", path) from e

        if self.crypto is not None and self.crypto.enabled:
            self._decrypt_passwords(loaded.connections, strict)

        self.config_path = path
        self._config = loaded
        if self._resolver is not None:
            self._resolver.set_vault_names(loaded.settings.vault_names)
        vault_manager.save_recent_config_path(path)
        return loaded

    def save(self, path: Optional[str] = None) -> None:
        """
        Write the configuration to disk.

        Passwords are encrypted in a deep copy, so the live configuration
        keeps plaintext.

        Raises:
            PersistenceError: If the directory or file cannot be written
        """
        path = path or self.config_path
        self._write(path, self._serialize())
        self.config_path = path
        vault_manager.save_recent_config_path(path)

    def export_to(self, dest: str) -> None:
        """Write the configuration, encrypted as on save, to another file."""
        self._write(dest, self._serialize())
        logger.info(f"Exported configuration to {dest}")

    def change_master_password(self, new_password: str) -> None:
        """
        Re-encrypt every password under *new_password* and save.
        An empty password turns local encryption off.
        """
        self.crypto = CryptoProvider(new_password) if new_password else None
        self.save()

    def _serialize(self) -> str:
        snapshot = self.get_config().deep_copy()
        if self.crypto is not None and self.crypto.enabled:
            self._encrypt_passwords(snapshot.connections)
        return yaml.safe_dump(
            snapshot.to_dict(),
            sort_keys=False,
            allow_unicode=True,
            default_flow_style=False,
        )

    def _write(self, path: str, text: str) -> None:
        tmp_path = path + config.TEMP_FILE_SUFFIX
        try:
            directory = os.path.dirname(os.path.abspath(path))
            os.makedirs(directory, mode=config.CONFIG_DIR_MODE, exist_ok=True)

            fd = os.open(tmp_path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
            with os.fdopen(fd, 'w', encoding='utf-8') as f:
                f.write(text)

            os.replace(tmp_path, path)
        except OSError as e:
            logger.error(f"Error saving configuration file {path}: {e}", exc_info=True)
            if os.path.exists(tmp_path):
                os.remove(tmp_path)
            raise PersistenceError(f"failed to write config file: {e}", path) from e

        if not set_owner_only_permissions(path):
            logger.warning(f"Failed to set secure file permissions for configuration: {path}")

    def _encrypt_passwords(self, nodes: List[Node]) -> None:
        for _, node in tree.walk(nodes):
            if self.crypto.should_encrypt(node.password):
                node.password = self.crypto.encrypt(node.password)

    def _decrypt_passwords(self, nodes: List[Node], strict: bool) -> None:
        for _, node in tree.walk(nodes):
            if not is_encrypted(node.password):
                continue
            try:
                node.password = self.crypto.decrypt(node.password)
            except DecryptError as e:
                if strict:
                    raise DecryptError(str(e), connection=node.name) from e
                logger.warning(f"Could not decrypt password of '{node.name}', clearing it: {e}")
                node.password = ""

    # -- tree operations --------------------------------------------------

    def add_connection(self, node: Node, folder_path: str = "") -> None:
        """Add *node* under *folder_path* (root if empty), creating folders as needed."""
        node.created = _now()
        node.modified = node.created
        tree.add_to_folder_path(self.get_config().connections, folder_path, node)

    def find_connection(self, name: str) -> Node:
        return tree.find(self.get_config().connections, name)

    def delete_connection(self, name: str) -> None:
        """
        Raises:
            NotFoundError: If nothing called *name* exists; the tree is unchanged
        """
        if not tree.delete(self.get_config().connections, name):
            raise NotFoundError(name)

    def update_connection(self, name: str, updates: Node) -> Node:
        """Apply the non-empty fields of *updates*; see :func:`connvault.tree.update`."""
        node = tree.update(self.get_config().connections, name, updates)
        node.modified = _now()
        return node

    def clear_connection_fields(self, name: str, fields: Iterable[str]) -> Node:
        node = tree.clear_fields(self.get_config().connections, name, fields)
        node.modified = _now()
        return node

    def move_connection(self, name: str, folder_path: str = "") -> Node:
        node = tree.move(self.get_config().connections, name, folder_path)
        node.modified = _now()
        return node

    def list_connections(self) -> List[Node]:
        return tree.list_leaves(self.get_config().connections)

    # -- secrets ----------------------------------------------------------

    @property
    def resolver(self) -> SecretResolver:
        if self._resolver is None:
            settings = self.get_config().settings
            self._resolver = SecretResolver(
                account_name=settings.onepassword_account,
                vault_names=settings.vault_names,
            )
        return self._resolver

    def is_reference(self, password: str) -> bool:
        return is_reference(password)

    def create_secret_item(self, vault: str, title: str, username: str, password: str) -> str:
        """
        Store a password in 1Password and return the reference to put in the
        connection's password field.

        Raises:
            ResolverUnavailable: If 1Password is not usable
            ResolutionFailure: If the vault is unknown or the write failed
        """
        if not self.resolver.enabled:
            raise ResolverUnavailable("1Password is not available - neither SDK nor CLI is configured")
        return self.resolver.create_item(vault, title, username, password)

    def resolve_password(self, node: Node) -> str:
        """The usable password of *node*, resolving a 1Password reference if needed."""
        if not is_reference(node.password):
            return node.password
        return self.resolver.resolve(node.password)
