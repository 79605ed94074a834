"""Tests for server record storage."""

from __future__ import annotations

import json

import pytest
from pydantic import ValidationError

from sshdesk.config import Config
from sshdesk.exceptions import ServerNotFoundError
from sshdesk.models import ServerRecord
from sshdesk.server_store import ServerStore
from sshdesk.vault import CredentialVault


def read_document(config: Config) -> list:
    return json.loads(config.servers_file.read_text(encoding="utf-8"))


def stored(config: Config, server_id: str) -> dict:
    return next(r for r in read_document(config) if r["id"] == server_id)


def test_list_servers_empty(store: ServerStore):
    """Test listing when no servers file exists."""
    assert store.list_servers() == []


def test_create_server(store: ServerStore, config: Config, password_server: ServerRecord):
    """Test a created server is returned with plaintext and stored encrypted."""
    assert password_server.password == "secret123"
    assert password_server.name == "admin@192.168.1.10"
    assert password_server.created_at == password_server.updated_at
    assert password_server.created_at.endswith("Z")

    raw = stored(config, password_server.id)
    assert raw["password"] != "secret123"
    assert CredentialVault.is_envelope(raw["password"])
    assert raw["authType"] == "password"
    assert "passphrase" not in raw
    assert "secret123" not in config.servers_file.read_text(encoding="utf-8")


def test_get_server(store: ServerStore, password_server: ServerRecord):
    """Test lookup by id returns decrypted secrets."""
    server = store.get_server(password_server.id)
    assert server is not None
    assert server.password == "secret123"
    assert store.get_server("missing") is None


def test_create_server_blank_secret_not_stored(store: ServerStore, config: Config):
    """Test empty secrets are omitted from the document."""
    server = store.create_server({"host": "h", "username": "u", "password": ""})
    assert server.password is None
    assert "password" not in stored(config, server.id)


def test_create_server_invalid(store: ServerStore):
    """Test invalid input is rejected."""
    with pytest.raises(ValidationError):
        store.create_server({"host": "h", "username": "u", "port": 70000})
    with pytest.raises(ValidationError):
        store.create_server({"host": "", "username": "u"})


def test_update_without_secret_keeps_envelope(store: ServerStore, config: Config, password_server: ServerRecord):
    """Test updating other fields leaves the stored envelope byte-identical."""
    before = stored(config, password_server.id)["password"]

    updated = store.update_server(password_server.id, {"name": "Renamed"})

    assert updated.name == "Renamed"
    assert updated.password == "secret123"
    assert stored(config, password_server.id)["password"] == before


def test_update_blank_secret_keeps_envelope(store: ServerStore, config: Config, password_server: ServerRecord):
    """Test a blank or null secret for the current mode means unchanged."""
    before = stored(config, password_server.id)["password"]

    store.update_server(password_server.id, {"password": ""})
    assert stored(config, password_server.id)["password"] == before

    store.update_server(password_server.id, {"password": None})
    assert stored(config, password_server.id)["password"] == before


def test_update_new_secret(store: ServerStore, config: Config, password_server: ServerRecord):
    """Test a non-blank secret replaces the stored one."""
    before = stored(config, password_server.id)["password"]

    updated = store.update_server(password_server.id, {"password": "n3w"})

    assert updated.password == "n3w"
    after = stored(config, password_server.id)["password"]
    assert after != before
    assert CredentialVault.is_envelope(after)


def test_update_mode_switch_clears_old_secret(store: ServerStore, config: Config, password_server: ServerRecord, key_file):
    """Test switching to key authentication drops the stored password."""
    updated = store.update_server(password_server.id, {
        "authType": "privateKey",
        "privateKeyPath": str(key_file),
        "passphrase": "pp",
    })

    assert updated.auth_type == "privateKey"
    assert updated.password is None
    assert updated.passphrase == "pp"
    raw = stored(config, password_server.id)
    assert "password" not in raw
    assert CredentialVault.is_envelope(raw["passphrase"])


def test_update_keeps_passphrase_in_key_mode(store: ServerStore, config: Config, key_server: ServerRecord):
    """Test the passphrase envelope survives an update that omits it."""
    before = stored(config, key_server.id)["passphrase"]

    updated = store.update_server(key_server.id, {"port": 2200, "passphrase": "  "})

    assert updated.port == 2200
    assert updated.passphrase == "hunter2"
    assert stored(config, key_server.id)["passphrase"] == before


def test_update_null_semantics(store: ServerStore, password_server: ServerRecord):
    """Test null clears optional fields and leaves required ones alone."""
    store.update_server(password_server.id, {"notes": "rack 4"})
    assert store.get_server(password_server.id).notes == "rack 4"

    updated = store.update_server(password_server.id, {"notes": None, "host": None})
    assert updated.notes is None
    assert updated.host == "192.168.1.10"


def test_update_refreshes_timestamp_only(store: ServerStore, password_server: ServerRecord):
    """Test updatedAt changes while id and createdAt do not."""
    updated = store.update_server(password_server.id, {"name": "x"})
    assert updated.id == password_server.id
    assert updated.created_at == password_server.created_at
    assert updated.updated_at >= password_server.updated_at


def test_update_invalid_leaves_file(store: ServerStore, config: Config, password_server: ServerRecord):
    """Test a rejected update does not touch the document."""
    before = config.servers_file.read_text(encoding="utf-8")
    with pytest.raises(ValidationError):
        store.update_server(password_server.id, {"port": 0})
    assert config.servers_file.read_text(encoding="utf-8") == before


def test_update_unknown_server(store: ServerStore):
    """Test updating a missing id raises ServerNotFoundError."""
    with pytest.raises(ServerNotFoundError, match="Server with id nope not found"):
        store.update_server("nope", {"name": "x"})


def test_delete_server_preserves_order(store: ServerStore):
    """Test deletion keeps the remaining records in order."""
    ids = [store.create_server({"host": f"h{i}", "username": "u"}).id for i in range(3)]

    store.delete_server(ids[1])

    assert [s.id for s in store.list_servers()] == [ids[0], ids[2]]
    with pytest.raises(ServerNotFoundError):
        store.delete_server(ids[1])


def test_plaintext_secrets_migrated_on_write(store: ServerStore, config: Config):
    """Test legacy plaintext secrets are readable and encrypted by the next write."""
    config.ensure_config_dir()
    config.servers_file.write_text(json.dumps([{
        "id": "legacy-1",
        "name": "old",
        "host": "old.example.com",
        "port": 22,
        "username": "root",
        "authType": "password",
        "password": "plain",
        "createdAt": "2024-01-01T00:00:00Z",
        "updatedAt": "2024-01-01T00:00:00Z",
    }]), encoding="utf-8")

    assert store.get_server("legacy-1").password == "plain"

    store.create_server({"host": "new", "username": "u"})

    raw = stored(config, "legacy-1")
    assert CredentialVault.is_envelope(raw["password"])
    assert store.get_server("legacy-1").password == "plain"


def test_corrupt_document_reads_empty(store: ServerStore, config: Config):
    """Test an unreadable document is treated as empty."""
    config.ensure_config_dir()
    config.servers_file.write_text("{not json", encoding="utf-8")
    assert store.list_servers() == []

    config.servers_file.write_text(json.dumps({"servers": []}), encoding="utf-8")
    assert store.list_servers() == []


def test_update_mode_switch_back_to_password(store: ServerStore, config: Config, key_server: ServerRecord):
    """Test switching to password authentication drops the stored passphrase."""
    updated = store.update_server(key_server.id, {"authType": "password", "password": "pw"})

    assert updated.passphrase is None
    assert updated.password == "pw"
    assert "passphrase" not in stored(config, key_server.id)


def test_blank_password_update_end_to_end(store: ServerStore, config: Config):
    """Test create, list, then a blank-password update leaves the envelope intact."""
    created = store.create_server({"host": "h", "port": 22, "username": "u", "authType": "password", "password": "p"})

    servers = store.list_servers()
    assert len(servers) == 1
    assert servers[0].password == "p"

    before = stored(config, created.id)["password"]
    store.update_server(created.id, {"password": ""})
    assert stored(config, created.id)["password"] == before
    assert store.get_server(created.id).password == "p"
