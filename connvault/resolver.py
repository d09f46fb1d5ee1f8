"""
Resolution of 1Password references used as connection passwords.

A password field holds plaintext, a local ``enc:`` envelope or a reference of
the form ``op://<vault>/<item>/<field>``. References are never decrypted on
load; they are resolved here, on demand, when a connection is used.
"""

import logging
import os
from dataclasses import dataclass
from typing import Dict, List, Optional
from urllib.parse import quote, unquote

from . import config
from .backends import CLIBackend, SDKBackend, SDKClientHandle, VaultBackend, VaultInfo, VaultTitleState, default_handle
from .crypto import is_reference
from .errors import ResolutionFailure, ResolverUnavailable

logger = logging.getLogger(__name__)

# Sub-delimiters allowed unescaped inside a path segment
_SEGMENT_SAFE = "$&+:=@"


@dataclass(frozen=True)
class SecretReference:
    vault: str
    item: str
    field: str


def parse_reference(reference: str) -> SecretReference:
    """
    Split a reference into vault, item and field. The item segment is
    percent-decoded.

    Raises:
        ResolutionFailure: If the value is not a well-formed reference. The
            message never repeats the value.
    """
    if not is_reference(reference):
        raise ResolutionFailure(f"reference must start with {config.REFERENCE_SCHEME}")

    parts = reference[len(config.REFERENCE_SCHEME):].split("/", 2)
    if len(parts) < 3 or not all(parts):
        raise ResolutionFailure("reference must be in format op://vault/item/field")

    vault, item, field = parts
    try:
        item = unquote(item, errors="strict")
    except UnicodeDecodeError:
        pass
    return SecretReference(vault=vault, item=item, field=field)


def build_reference(vault: str, title: str, field: str = config.DEFAULT_REFERENCE_FIELD) -> str:
    """
    Format a reference, percent-encoding the item title as a path segment
    (``/``, ``?``, ``;``, ``,``, spaces and non-ASCII are escaped, ``@``,
    ``:``, ``&``, ``=``, ``+`` and ``$`` are kept).
    """
    return f"{config.REFERENCE_SCHEME}{vault}/{quote(title, safe=_SEGMENT_SAFE)}/{field}"


class SecretResolver:
    """
    Resolves and creates 1Password references.

    The backend is chosen once, here: the SDK when a session can be opened,
    otherwise the ``op`` CLI when it is installed, otherwise none and every
    call fails fast with :class:`ResolverUnavailable`.
    """

    def __init__(self, account_name: str = "", vault_names: Optional[Dict[str, str]] = None,
                 handle: Optional[SDKClientHandle] = None, cli_backend: Optional[CLIBackend] = None):
        """
        Args:
            account_name: 1Password account shown in the desktop app sidebar
            vault_names: Vault id to friendly name mapping from the settings
            handle: SDK session to use instead of the process-wide one
            cli_backend: CLI backend to fall back to
        """
        self.account_name = account_name
        self.vault_names: Dict[str, str] = dict(vault_names or {})
        self._vaults: List[VaultInfo] = []
        self.backend: Optional[VaultBackend] = self._select_backend(handle, cli_backend)

    def _select_backend(self, handle: Optional[SDKClientHandle],
                        cli_backend: Optional[CLIBackend]) -> Optional[VaultBackend]:
        if handle is None and (self.account_name or os.environ.get(config.SERVICE_ACCOUNT_TOKEN_ENV)):
            handle = default_handle(self.account_name)
        if handle is not None and handle.available:
            logger.info("Using 1Password SDK backend")
            return SDKBackend(handle)

        cli = cli_backend or CLIBackend(account_name=self.account_name)
        if cli.available():
            logger.info("Falling back to 1Password CLI backend")
            return cli

        logger.warning("Neither the 1Password SDK nor the op CLI is available; vault references cannot be resolved")
        return None

    @property
    def enabled(self) -> bool:
        return self.backend is not None

    @property
    def backend_name(self) -> Optional[str]:
        return self.backend.name if self.backend else None

    def is_reference(self, value: str) -> bool:
        return is_reference(value)

    def _require_backend(self) -> VaultBackend:
        if self.backend is None:
            raise ResolverUnavailable("1Password is not available - neither SDK nor CLI is configured")
        return self.backend

    def resolve(self, reference: str) -> str:
        """
        Return the secret *reference* points at.

        Raises:
            ResolverUnavailable: If no backend is usable
            ResolutionFailure: If the reference is malformed, the item or
                field does not exist, or the backend timed out
        """
        backend = self._require_backend()
        ref = parse_reference(reference)
        try:
            return backend.resolve(reference, config.RESOLVE_TIMEOUT)
        except ResolutionFailure as e:
            raise ResolutionFailure(
                f"could not resolve field '{ref.field}' in vault '{ref.vault}': {e}"
            ) from e

    def resolve_if_reference(self, value: str) -> str:
        """Resolve *value* if it is a reference, otherwise return it unchanged."""
        if not is_reference(value):
            return value
        return self.resolve(value)

    def list_vaults(self) -> List[VaultInfo]:
        """Enumerate vaults, applying friendly names from the settings."""
        backend = self._require_backend()
        self._vaults = [self._named(v) for v in backend.list_vaults(config.VAULT_LIST_TIMEOUT)]
        return list(self._vaults)

    @property
    def vaults(self) -> List[VaultInfo]:
        """Vaults from the last enumeration, without contacting the backend."""
        return list(self._vaults)

    def _named(self, vault: VaultInfo) -> VaultInfo:
        vault.friendly_name = self.vault_names.get(vault.id, "")
        return vault

    def set_vault_names(self, vault_names: Dict[str, str]) -> None:
        self.vault_names = dict(vault_names)
        for vault in self._vaults:
            self._named(vault)

    def refresh(self) -> bool:
        """
        Force an authenticated read so the backend decrypts vault titles, then
        enumerate again.

        Returns:
            True if every vault title is now resolved
        """
        backend = self._require_backend()
        vaults = backend.list_vaults(config.VAULT_LIST_TIMEOUT)
        if vaults:
            try:
                backend.list_items(vaults[0].id, config.ITEM_LIST_TIMEOUT)
            except ResolutionFailure as e:
                logger.debug(f"Authentication read during vault refresh failed: {e}")
        self._vaults = [self._named(v) for v in backend.list_vaults(config.VAULT_LIST_TIMEOUT)]
        return all(v.state is VaultTitleState.RESOLVED for v in self._vaults)

    def _find_vault(self, backend: VaultBackend, vault: str) -> VaultInfo:
        # Vault ids are looked up per call and never cached across calls
        vaults = [self._named(v) for v in backend.list_vaults(config.VAULT_LIST_TIMEOUT)]
        match = next((v for v in vaults if v.matches(vault)), None)
        if match is None and any(v.state is VaultTitleState.ENCRYPTED for v in vaults):
            self.refresh()
            vaults = self._vaults
            match = next((v for v in vaults if v.matches(vault)), None)
        if match is None:
            available = ", ".join(
                f"'{v.display_name}'" if v.state is VaultTitleState.RESOLVED or v.friendly_name else f"ID:{v.id}"
                for v in vaults
            )
            raise ResolutionFailure(f"vault '{vault}' not found. Available vaults: {available}")
        return match

    def create_item(self, vault: str, title: str, username: str, password: str) -> str:
        """
        Create or update a Login item and return a reference to its password.

        Args:
            vault: Vault title, id or friendly name
            title: Item title
            username: Value of the username field
            password: Value of the password field

        Returns:
            ``op://<vault>/<title>/password`` with the title percent-encoded.
            The vault segment is the vault's real title when known, else its
            id; friendly names exist only locally and are never written.
        """
        if not vault or not title:
            raise ValueError("vault and title are required")
        backend = self._require_backend()
        match = self._find_vault(backend, vault)
        backend.create_or_update_item(match.id, title, username, password, config.CREATE_ITEM_TIMEOUT)
        vault_ref = match.title if match.state is VaultTitleState.RESOLVED else match.id
        return build_reference(vault_ref, title)

    def check_item_exists(self, vault: str, title: str) -> Optional[str]:
        """Return the id of the item called *title* in *vault*, or None."""
        backend = self._require_backend()
        vault_id = self._find_vault(backend, vault).id
        for item in backend.list_items(vault_id, config.ITEM_LIST_TIMEOUT):
            if item.title == title:
                return item.id
        return None

    def is_authenticated(self) -> bool:
        if self.backend is None:
            return False
        return self.backend.is_authenticated()
