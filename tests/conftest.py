"""Shared pytest fixtures for connvault tests."""

from __future__ import annotations

from types import SimpleNamespace

import pytest

from connvault import backends
from connvault.backends import SDKClientHandle
from connvault.models import Configuration, Node, Protocol


@pytest.fixture(autouse=True)
def isolated_config_dir(tmp_path, monkeypatch):
    """Point the platform config directory (and the recent-config list) at a temp dir."""
    appdata = tmp_path / "appdata"
    monkeypatch.setenv("APPDATA", str(appdata))
    monkeypatch.delenv("OP_SERVICE_ACCOUNT_TOKEN", raising=False)
    return appdata / "connvault"


@pytest.fixture()
def sample_tree() -> list[Node]:
    """Root list: Prod/{web, DB/{db1}}, staging, Lab (empty folder)."""
    return [
        Node.folder("Prod", [
            Node.connection("web", Protocol.SSH, host="web.prod", username="deploy"),
            Node.folder("DB", [
                Node.connection("db1", Protocol.SSH, host="db1.prod", port=2222),
            ]),
        ]),
        Node.connection("staging", Protocol.RDP, host="staging.local", password="s3cret"),
        Node.folder("Lab"),
    ]


@pytest.fixture()
def sample_config(sample_tree) -> Configuration:
    config = Configuration()
    config.settings.onepassword_account = "TestAccount"
    config.settings.vault_names = {"vault1": "DevOps"}
    config.connections = sample_tree
    return config


class FakeSecrets:
    def __init__(self, store: dict):
        self.store = store

    async def resolve(self, reference):
        if reference not in self.store:
            raise RuntimeError(f"secret reference {reference} not found")
        return self.store[reference]


class FakeVaults:
    def __init__(self, vaults: list):
        self.vaults = vaults
        self.list_calls = 0

    async def list(self):
        self.list_calls += 1
        return list(self.vaults)


class FakeItems:
    def __init__(self, client):
        self.client = client
        self.items: dict[str, list] = {}
        self.created: list = []
        self.put_calls: list = []

    async def list(self, vault_id):
        self.client.authenticated = True
        return list(self.items.get(vault_id, []))

    async def get(self, vault_id, item_id):
        for item in self.items.get(vault_id, []):
            if item.id == item_id:
                return item
        raise RuntimeError("item not found")

    async def put(self, item):
        self.put_calls.append(item)
        return item

    async def create(self, params):
        self.created.append(params)
        item = SimpleNamespace(id=f"item{len(self.created)}", title=params.title, fields=params.fields)
        self.items.setdefault(params.vault_id, []).append(item)
        return item


class FakeSDKClient:
    """Mimics the async surface of the 1Password SDK client."""

    def __init__(self, secrets=None, vaults=None):
        self.authenticated = False
        self.secrets = FakeSecrets(secrets or {})
        self.vaults = FakeVaults(vaults or [])
        self.items = FakeItems(self)


@pytest.fixture()
def fake_sdk_client() -> FakeSDKClient:
    return FakeSDKClient(
        secrets={"op://DevOps/web/password": "from-vault"},
        vaults=[SimpleNamespace(id="vault1", title="DevOps"), SimpleNamespace(id="vault2", title="Private")],
    )


@pytest.fixture()
def sdk_handle(fake_sdk_client) -> SDKClientHandle:
    async def factory(account_name, token):
        return fake_sdk_client

    return SDKClientHandle("TestAccount", token="", client_factory=factory)


@pytest.fixture()
def fake_sdk_types(monkeypatch) -> SimpleNamespace:
    """Stand-in for the SDK's item model so item writes run without the SDK installed."""
    types = SimpleNamespace(
        ItemField=lambda **kwargs: SimpleNamespace(**kwargs),
        ItemCreateParams=lambda **kwargs: SimpleNamespace(**kwargs),
        ItemFieldType=SimpleNamespace(TEXT="Text", CONCEALED="Concealed"),
        ItemCategory=SimpleNamespace(LOGIN="Login"),
    )
    monkeypatch.setattr(backends, "_sdk_types", lambda: types)
    return types


@pytest.fixture()
def failing_handle() -> SDKClientHandle:
    async def factory(account_name, token):
        raise RuntimeError("desktop app integration is not enabled")

    return SDKClientHandle("TestAccount", token="", client_factory=factory)
