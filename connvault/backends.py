"""
1Password access backends.

Two implementations of the same capability set are provided: the SDK backend
talks to the 1Password desktop app (or a service account) through the
``onepassword-sdk`` package, and the CLI backend shells out to the ``op``
command-line tool. :class:`~connvault.resolver.SecretResolver` picks one at
construction and only talks to the :class:`VaultBackend` interface.
"""

import abc
import asyncio
import json
import logging
import os
import re
import shutil
import subprocess
import threading
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, List, Optional

from . import config
from .errors import ResolutionFailure, ResolverUnavailable

logger = logging.getLogger(__name__)

_REFERENCE_RE = re.compile(r"op://\S+")


def sanitize_error(msg: str) -> str:
    """Strip vault references from backend error text."""
    return _REFERENCE_RE.sub("op://***", msg)


class VaultTitleState(Enum):
    UNKNOWN = "unknown"
    ENCRYPTED = "encrypted"
    RESOLVED = "resolved"


@dataclass
class VaultInfo:
    """
    A vault as seen by a backend.

    The SDK reports ``[Encrypted]`` titles until a real secret has been read;
    such vaults are kept with ``state`` ENCRYPTED rather than treated as errors.
    """
    id: str
    title: str = ""
    state: VaultTitleState = VaultTitleState.UNKNOWN
    friendly_name: str = ""

    @classmethod
    def from_listing(cls, vault_id: str, title: Optional[str]) -> "VaultInfo":
        title = title or ""
        if not title or title == config.ENCRYPTED_VAULT_TITLE:
            return cls(id=vault_id, title=title, state=VaultTitleState.ENCRYPTED)
        return cls(id=vault_id, title=title, state=VaultTitleState.RESOLVED)

    @property
    def display_name(self) -> str:
        if self.friendly_name:
            return self.friendly_name
        if self.state is VaultTitleState.RESOLVED:
            return self.title
        return self.id

    def matches(self, vault: str) -> bool:
        """True if *vault* names this vault by id, resolved title or friendly name."""
        if vault == self.id:
            return True
        if self.state is VaultTitleState.RESOLVED and vault == self.title:
            return True
        return bool(self.friendly_name) and vault == self.friendly_name


@dataclass
class ItemInfo:
    id: str
    title: str


class VaultBackend(abc.ABC):
    """Operations both 1Password backends provide."""

    name = ""

    @abc.abstractmethod
    def resolve(self, reference: str, timeout: float) -> str:
        """Return the secret a reference points at."""

    @abc.abstractmethod
    def list_vaults(self, timeout: float) -> List[VaultInfo]:
        """Enumerate vaults; titles may still be encrypted placeholders."""

    @abc.abstractmethod
    def list_items(self, vault_id: str, timeout: float) -> List[ItemInfo]:
        """Enumerate items of one vault."""

    @abc.abstractmethod
    def create_or_update_item(self, vault_id: str, title: str, username: str,
                              password: str, timeout: float) -> str:
        """Write a Login item, replacing fields of an existing item with the same title. Returns the item id."""

    @abc.abstractmethod
    def is_authenticated(self) -> bool:
        """Cheap probe for a usable session."""


# ---------------------------------------------------------------------------
# SDK backend
# ---------------------------------------------------------------------------

async def _authenticate_sdk_client(account_name: str, token: str) -> Any:
    """Open an SDK session: service account token if set, else desktop app integration."""
    from onepassword.client import Client

    if token:
        auth: Any = token
    elif account_name:
        try:
            from onepassword import DesktopAuth
        except ImportError as e:
            raise ImportError(
                "installed onepassword-sdk does not support desktop app authentication, "
                "upgrade to 0.4.0 or later"
            ) from e
        auth = DesktopAuth(account_name=account_name)
    else:
        raise ValueError("no 1Password account name or service account token configured")

    return await Client.authenticate(
        auth=auth,
        integration_name=config.OP_INTEGRATION_NAME,
        integration_version=f"v{config.APP_VERSION}",
    )


def _sdk_types() -> Any:
    """The SDK's item model module, imported on first use."""
    from onepassword import types
    return types


class SDKClientHandle:
    """
    A lazily initialized, shared SDK session.

    The session is opened at most once, on the first call to :meth:`get`, and
    all calls run on a private event loop so synchronous callers can share it.
    Pass ``client_factory`` to substitute the SDK (it receives the account
    name and token and must return an awaitable of the client).
    """

    def __init__(self, account_name: str = "", token: Optional[str] = None,
                 client_factory: Optional[Callable[[str, str], Awaitable[Any]]] = None):
        self.account_name = account_name
        self._token = token if token is not None else os.environ.get(config.SERVICE_ACCOUNT_TOKEN_ENV, "")
        self._factory = client_factory or _authenticate_sdk_client
        self._init_lock = threading.Lock()
        self._call_lock = threading.Lock()
        self._initialized = False
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._client: Any = None
        self.init_error: Optional[Exception] = None

    def get(self) -> Any:
        """Return the SDK client, initializing it once. None if unavailable."""
        with self._init_lock:
            if not self._initialized:
                self._initialized = True
                self._open()
        return self._client

    def _open(self) -> None:
        loop = asyncio.new_event_loop()
        try:
            self._client = loop.run_until_complete(
                asyncio.wait_for(self._factory(self.account_name, self._token), config.SDK_INIT_TIMEOUT)
            )
            self._loop = loop
            logger.info("1Password SDK session established")
        except ImportError as e:
            self.init_error = e
            logger.info(f"1Password SDK unavailable: {e}")
            loop.close()
        except asyncio.TimeoutError as e:
            self.init_error = e
            logger.warning(f"1Password SDK did not respond within {config.SDK_INIT_TIMEOUT}s")
            loop.close()
        except Exception as e:
            self.init_error = e
            logger.warning(f"Failed to initialize 1Password SDK: {sanitize_error(str(e))}")
            loop.close()

    @property
    def available(self) -> bool:
        return self.get() is not None

    def run(self, call: Callable[[Any], Awaitable[Any]], timeout: float, what: str) -> Any:
        """
        Run ``call(client)`` on the session loop, bounded by *timeout*.

        Raises:
            ResolverUnavailable: If the session could not be opened
            ResolutionFailure: On timeout or any SDK error
        """
        client = self.get()
        if client is None:
            raise ResolverUnavailable(f"1Password SDK is not available: {self.init_error}")
        with self._call_lock:
            try:
                return self._loop.run_until_complete(asyncio.wait_for(call(client), timeout))
            except asyncio.TimeoutError as e:
                raise ResolutionFailure(f"1Password SDK timed out after {timeout}s while trying to {what}") from e
            except Exception as e:
                msg = sanitize_error(str(e))
                if "not authenticated" in msg or "authorization" in msg:
                    raise ResolutionFailure(
                        f"not authenticated with 1Password - please unlock the desktop app ({what}): {msg}"
                    ) from e
                raise ResolutionFailure(f"1Password SDK failed to {what}: {msg}") from e


_default_handle: Optional[SDKClientHandle] = None
_default_handle_lock = threading.Lock()


def default_handle(account_name: str = "") -> SDKClientHandle:
    """
    The process-wide SDK handle. The first caller's account name wins; the
    session is shared by every resolver that does not bring its own handle.
    """
    global _default_handle
    with _default_handle_lock:
        if _default_handle is None:
            _default_handle = SDKClientHandle(account_name)
        elif account_name and account_name != _default_handle.account_name:
            logger.warning(
                f"1Password SDK session already bound to account '{_default_handle.account_name}', "
                f"ignoring '{account_name}'"
            )
        return _default_handle


class SDKBackend(VaultBackend):
    """Vault access through the 1Password SDK."""

    name = "sdk"

    def __init__(self, handle: SDKClientHandle):
        self.handle = handle

    def resolve(self, reference: str, timeout: float) -> str:
        return self.handle.run(lambda c: c.secrets.resolve(reference), timeout, "resolve secret")

    def list_vaults(self, timeout: float) -> List[VaultInfo]:
        vaults = self.handle.run(lambda c: c.vaults.list(), timeout, "list vaults")
        return [VaultInfo.from_listing(v.id, v.title) for v in vaults]

    def list_items(self, vault_id: str, timeout: float) -> List[ItemInfo]:
        items = self.handle.run(lambda c: c.items.list(vault_id), timeout, "list items")
        return [ItemInfo(id=i.id, title=i.title) for i in items]

    def create_or_update_item(self, vault_id: str, title: str, username: str,
                              password: str, timeout: float) -> str:
        existing = next((i for i in self.list_items(vault_id, timeout) if i.title == title), None)
        if existing is not None:
            return self.handle.run(
                lambda c: self._update(c, vault_id, existing.id, username, password),
                timeout, "update item",
            )
        return self.handle.run(
            lambda c: self._create(c, vault_id, title, username, password),
            timeout, "create item",
        )

    @staticmethod
    def _login_field(types: Any, field_id: str, value: str) -> Any:
        field_type = types.ItemFieldType.CONCEALED if field_id == "password" else types.ItemFieldType.TEXT
        return types.ItemField(id=field_id, title=field_id, value=value, field_type=field_type)

    @classmethod
    async def _create(cls, client: Any, vault_id: str, title: str, username: str, password: str) -> str:
        types = _sdk_types()
        fields = [
            cls._login_field(types, field_id, value)
            for field_id, value in (("username", username), ("password", password))
            if value
        ]
        item = await client.items.create(types.ItemCreateParams(
            title=title,
            category=types.ItemCategory.LOGIN,
            vault_id=vault_id,
            fields=fields,
        ))
        return item.id

    @classmethod
    async def _update(cls, client: Any, vault_id: str, item_id: str, username: str, password: str) -> str:
        item = await client.items.get(vault_id, item_id)
        for field_id, value in (("username", username), ("password", password)):
            if not value:
                continue
            existing = next((f for f in item.fields if f.id == field_id), None)
            if existing is not None:
                existing.value = value
            else:
                item.fields.append(cls._login_field(_sdk_types(), field_id, value))
        updated = await client.items.put(item)
        return updated.id

    def is_authenticated(self) -> bool:
        try:
            self.list_vaults(config.AUTH_CHECK_TIMEOUT)
        except (ResolutionFailure, ResolverUnavailable) as e:
            logger.debug(f"1Password SDK authentication probe failed: {e}")
            return False
        return True


# ---------------------------------------------------------------------------
# CLI backend
# ---------------------------------------------------------------------------

class CLIBackend(VaultBackend):
    """Vault access by running the ``op`` command-line tool."""

    name = "cli"

    def __init__(self, account_name: str = "", executable: str = config.OP_EXECUTABLE):
        self.account_name = account_name
        self.executable = executable

    def available(self) -> bool:
        """True if the op executable can be found."""
        return shutil.which(self.executable) is not None

    def _run(self, args: List[str], timeout: float, what: str) -> str:
        command = [self.executable, *args]
        if self.account_name:
            command += ["--account", self.account_name]
        try:
            result = subprocess.run(
                command,
                capture_output=True,
                text=True,
                timeout=timeout,
                check=False,
            )
        except FileNotFoundError as e:
            raise ResolverUnavailable(f"1Password CLI '{self.executable}' not found") from e
        except subprocess.TimeoutExpired as e:
            raise ResolutionFailure(f"1Password CLI timed out after {timeout}s while trying to {what}") from e

        if result.returncode != 0:
            detail = sanitize_error((result.stderr or "").strip()) or f"exit status {result.returncode}"
            raise ResolutionFailure(f"1Password CLI failed to {what}: {detail}")
        return result.stdout

    def _run_json(self, args: List[str], timeout: float, what: str) -> Any:
        output = self._run(args + ["--format", "json"], timeout, what)
        try:
            return json.loads(output or "null")
        except json.JSONDecodeError as e:
            raise ResolutionFailure(f"1Password CLI returned invalid JSON while trying to {what}") from e

    def resolve(self, reference: str, timeout: float) -> str:
        return self._run(["read", "--no-newline", reference], timeout, "resolve secret")

    def list_vaults(self, timeout: float) -> List[VaultInfo]:
        vaults = self._run_json(["vault", "list"], timeout, "list vaults") or []
        return [VaultInfo.from_listing(v.get("id", ""), v.get("name")) for v in vaults]

    def list_items(self, vault_id: str, timeout: float) -> List[ItemInfo]:
        items = self._run_json(["item", "list", "--vault", vault_id], timeout, "list items") or []
        return [ItemInfo(id=i.get("id", ""), title=i.get("title", "")) for i in items]

    def create_or_update_item(self, vault_id: str, title: str, username: str,
                              password: str, timeout: float) -> str:
        assignments = []
        if username:
            assignments.append(f"username={username}")
        if password:
            assignments.append(f"password={password}")

        existing = next((i for i in self.list_items(vault_id, timeout) if i.title == title), None)
        if existing is not None:
            item = self._run_json(
                ["item", "edit", existing.id, "--vault", vault_id, *assignments],
                timeout, "update item",
            )
        else:
            item = self._run_json(
                ["item", "create", "--category", "login", "--vault", vault_id, "--title", title, *assignments],
                timeout, "create item",
            )
        return (item or {}).get("id", "")

    def is_authenticated(self) -> bool:
        try:
            self._run(["whoami"], config.AUTH_CHECK_TIMEOUT, "check authentication")
        except (ResolutionFailure, ResolverUnavailable) as e:
            logger.debug(f"1Password CLI authentication probe failed: {e}")
            return False
        return True
