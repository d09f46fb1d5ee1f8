"""Tests for connvault.resolver."""

from __future__ import annotations

from types import SimpleNamespace
from unittest import mock

import pytest

from connvault import backends
from connvault.backends import CLIBackend, VaultTitleState
from connvault.errors import ResolutionFailure, ResolverUnavailable
from connvault.resolver import SecretResolver, build_reference, parse_reference


class EncryptedUntilReadVaults:
    """Vault titles stay ``[Encrypted]`` until an item listing has authenticated the client."""

    def __init__(self, client):
        self.client = client

    async def list(self):
        title = "DevOps" if self.client.authenticated else "[Encrypted]"
        return [SimpleNamespace(id="vault1", title=title)]


class AlwaysEncryptedVaults:
    async def list(self):
        return [SimpleNamespace(id="vault1", title="[Encrypted]")]


def _cli(monkeypatch, available=True) -> CLIBackend:
    cli = CLIBackend()
    monkeypatch.setattr(cli, "available", lambda: available)
    return cli


class TestReferences:
    def test_parse(self):
        ref = parse_reference("op://DevOps/web/password")
        assert (ref.vault, ref.item, ref.field) == ("DevOps", "web", "password")

    def test_parse_decodes_item(self):
        assert parse_reference("op://DevOps/My%20Server/password").item == "My Server"

    def test_field_keeps_remaining_segments(self):
        assert parse_reference("op://V/I/section/field").field == "section/field"

    @pytest.mark.parametrize("value", ["hunter2", "op://secretvault/only-two", "op://secretvault//password"])
    def test_malformed_reference_is_not_echoed(self, value):
        with pytest.raises(ResolutionFailure) as exc_info:
            parse_reference(value)
        assert "secretvault" not in str(exc_info.value)
        assert "hunter2" not in str(exc_info.value)

    def test_build_encodes_title(self):
        assert build_reference("DevOps", "My Server") == "op://DevOps/My%20Server/password"
        assert build_reference("DevOps", "a/b", "username") == "op://DevOps/a%2Fb/username"

    def test_build_keeps_segment_sub_delimiters(self):
        assert build_reference("DevOps", "root@db:5432") == "op://DevOps/root@db:5432/password"
        assert build_reference("DevOps", "a&b=c?d;e,f") == "op://DevOps/a&b=c%3Fd%3Be%2Cf/password"

    def test_build_then_parse(self):
        assert parse_reference(build_reference("DevOps", "My Server")).item == "My Server"


class TestBackendSelection:
    def test_prefers_sdk(self, sdk_handle, monkeypatch):
        resolver = SecretResolver(handle=sdk_handle, cli_backend=_cli(monkeypatch))
        assert resolver.enabled
        assert resolver.backend_name == "sdk"

    def test_falls_back_to_cli(self, failing_handle, monkeypatch):
        resolver = SecretResolver(handle=failing_handle, cli_backend=_cli(monkeypatch))
        assert resolver.backend_name == "cli"

    def test_disabled_when_nothing_available(self, failing_handle, monkeypatch):
        resolver = SecretResolver(handle=failing_handle, cli_backend=_cli(monkeypatch, available=False))
        assert not resolver.enabled
        assert resolver.backend_name is None
        assert not resolver.is_authenticated()
        with pytest.raises(ResolverUnavailable):
            resolver.resolve("op://DevOps/web/password")
        with pytest.raises(ResolverUnavailable):
            resolver.list_vaults()

    def test_no_account_skips_sdk(self):
        with mock.patch("connvault.backends.shutil.which", return_value=None):
            resolver = SecretResolver()
        assert not resolver.enabled

    def test_account_uses_shared_handle(self, sdk_handle, monkeypatch):
        monkeypatch.setattr(backends, "_default_handle", sdk_handle)
        resolver = SecretResolver(account_name="TestAccount")
        assert resolver.backend_name == "sdk"
        assert resolver.backend.handle is sdk_handle


class TestResolve:
    def test_resolves_reference(self, sdk_handle):
        resolver = SecretResolver(handle=sdk_handle)
        assert resolver.resolve("op://DevOps/web/password") == "from-vault"

    def test_failure_names_vault_and_field_only(self, sdk_handle):
        resolver = SecretResolver(handle=sdk_handle)
        with pytest.raises(ResolutionFailure) as exc_info:
            resolver.resolve("op://DevOps/hidden-item/password")
        message = str(exc_info.value)
        assert "field 'password' in vault 'DevOps'" in message
        assert "hidden-item" not in message

    def test_resolve_if_reference(self, sdk_handle):
        resolver = SecretResolver(handle=sdk_handle)
        assert resolver.resolve_if_reference("plain") == "plain"
        assert resolver.resolve_if_reference("op://DevOps/web/password") == "from-vault"

    def test_is_reference(self, sdk_handle):
        resolver = SecretResolver(handle=sdk_handle)
        assert resolver.is_reference("op://a/b/c")
        assert not resolver.is_reference("enc:abc")


class TestVaults:
    def test_friendly_names_applied(self, sdk_handle):
        resolver = SecretResolver(vault_names={"vault2": "Employee"}, handle=sdk_handle)
        names = [v.display_name for v in resolver.list_vaults()]
        assert names == ["DevOps", "Employee"]
        assert [v.id for v in resolver.vaults] == ["vault1", "vault2"]

    def test_set_vault_names_updates_cached_listing(self, sdk_handle):
        resolver = SecretResolver(handle=sdk_handle)
        resolver.list_vaults()
        resolver.set_vault_names({"vault1": "Ops"})
        assert resolver.vaults[0].display_name == "Ops"

    def test_encrypted_titles_are_not_errors(self, sdk_handle, fake_sdk_client):
        fake_sdk_client.vaults = EncryptedUntilReadVaults(fake_sdk_client)
        resolver = SecretResolver(handle=sdk_handle)
        vaults = resolver.list_vaults()
        assert vaults[0].state is VaultTitleState.ENCRYPTED
        assert vaults[0].display_name == "vault1"

    def test_refresh_resolves_titles(self, sdk_handle, fake_sdk_client):
        fake_sdk_client.vaults = EncryptedUntilReadVaults(fake_sdk_client)
        resolver = SecretResolver(handle=sdk_handle)
        assert resolver.refresh() is True
        assert resolver.vaults[0].title == "DevOps"


class TestCreateItem:
    @pytest.fixture()
    def existing_items(self, fake_sdk_client):
        fields = [SimpleNamespace(id="username", value=""), SimpleNamespace(id="password", value="")]
        fake_sdk_client.items.items["vault1"] = [
            SimpleNamespace(id="item-web", title="My Server", fields=fields),
        ]
        return fields

    def test_returns_reference_with_encoded_title(self, sdk_handle, existing_items):
        resolver = SecretResolver(handle=sdk_handle)
        ref = resolver.create_item("DevOps", "My Server", "deploy", "pw")
        assert ref == "op://DevOps/My%20Server/password"
        assert [f.value for f in existing_items] == ["deploy", "pw"]

    def test_friendly_name_is_not_written_into_reference(self, sdk_handle, existing_items):
        resolver = SecretResolver(vault_names={"vault1": "Team"}, handle=sdk_handle)
        ref = resolver.create_item("Team", "My Server", "", "pw")
        assert ref == "op://DevOps/My%20Server/password"
        assert parse_reference(ref).vault == "DevOps"

    def test_vault_id_used_while_title_is_encrypted(self, sdk_handle, fake_sdk_client, existing_items):
        fake_sdk_client.vaults = AlwaysEncryptedVaults()
        resolver = SecretResolver(vault_names={"vault1": "Team"}, handle=sdk_handle)
        assert resolver.create_item("Team", "My Server", "", "pw") == "op://vault1/My%20Server/password"

    def test_vault_by_id(self, sdk_handle, existing_items):
        resolver = SecretResolver(handle=sdk_handle)
        assert resolver.create_item("vault1", "My Server", "", "pw") == "op://DevOps/My%20Server/password"

    def test_refreshes_encrypted_titles_before_lookup(self, sdk_handle, fake_sdk_client, existing_items):
        fake_sdk_client.vaults = EncryptedUntilReadVaults(fake_sdk_client)
        resolver = SecretResolver(handle=sdk_handle)
        assert resolver.create_item("DevOps", "My Server", "", "pw").startswith("op://DevOps/")

    def test_unknown_vault_lists_available(self, sdk_handle):
        resolver = SecretResolver(handle=sdk_handle)
        with pytest.raises(ResolutionFailure, match="Available vaults: 'DevOps', 'Private'"):
            resolver.create_item("Nope", "web", "", "pw")

    def test_requires_vault_and_title(self, sdk_handle):
        resolver = SecretResolver(handle=sdk_handle)
        with pytest.raises(ValueError):
            resolver.create_item("", "web", "", "pw")
        with pytest.raises(ValueError):
            resolver.create_item("DevOps", "", "", "pw")

    def test_check_item_exists(self, sdk_handle, existing_items):
        resolver = SecretResolver(handle=sdk_handle)
        assert resolver.check_item_exists("DevOps", "My Server") == "item-web"
        assert resolver.check_item_exists("DevOps", "other") is None
