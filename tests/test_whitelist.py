"""Tests for app config (whitelist, upload limits) and the admin API."""

import json

import pytest
from fastapi.testclient import TestClient

from blossomd.whitelist.models import DEFAULT_MAX_FILE_SIZE, AppConfig
from blossomd.whitelist.service import ConfigStore

ADMIN = {"Authorization": "Bearer test-admin-token"}
KEY = "ab" * 32


def test_app_config_defaults():
    config = AppConfig()
    assert config.to_file() == {"whitelist": [], "maxFileSize": DEFAULT_MAX_FILE_SIZE, "allowAnonymous": False}


def test_app_config_lenient_validation():
    config = AppConfig.model_validate(
        {"whitelist": [KEY.upper(), "short", 7, KEY], "maxFileSize": -5, "allowAnonymous": "yes"}
    )
    assert config.whitelist == [KEY]
    assert config.max_file_size == DEFAULT_MAX_FILE_SIZE
    assert config.allow_anonymous is False
    assert AppConfig.model_validate({"whitelist": "nope"}).whitelist == []


def test_initialize_writes_defaults(tmp_path):
    f = tmp_path / "config" / "app-config.json"
    store = ConfigStore(f)
    store.initialize()
    assert json.loads(f.read_text(encoding="utf-8"))["maxFileSize"] == DEFAULT_MAX_FILE_SIZE


def test_corrupt_file_is_replaced_by_defaults(tmp_path):
    f = tmp_path / "app-config.json"
    f.write_text("[]", encoding="utf-8")
    store = ConfigStore(f)
    store.initialize()
    assert store.get_config() == AppConfig()
    assert json.loads(f.read_text(encoding="utf-8"))["whitelist"] == []


def test_whitelist_mutations_persist(tmp_path):
    f = tmp_path / "app-config.json"
    store = ConfigStore(f)
    store.initialize()
    assert store.add_to_whitelist(KEY.upper()) is True
    assert store.add_to_whitelist(KEY) is False
    assert store.is_whitelisted(KEY.upper())
    assert json.loads(f.read_text(encoding="utf-8"))["whitelist"] == [KEY]
    assert store.remove_from_whitelist(KEY) is True
    assert store.remove_from_whitelist(KEY) is False
    assert not store.is_whitelisted(KEY)


def test_update_and_reset(tmp_path):
    store = ConfigStore(tmp_path / "app-config.json")
    store.initialize()
    updated = store.update_config(max_file_size=2048, allow_anonymous=True)
    assert updated.max_file_size == 2048
    assert store.reload().allow_anonymous is True
    assert store.reset_to_defaults() == AppConfig()


def test_get_config_returns_copy(tmp_path):
    store = ConfigStore(tmp_path / "app-config.json")
    store.initialize()
    store.get_config().whitelist.append(KEY)
    assert not store.is_whitelisted(KEY)


def test_admin_requires_token(client):
    assert client.get("/admin/config").status_code == 403
    r = client.get("/admin/config", headers={"Authorization": "Bearer wrong"})
    assert r.status_code == 403
    assert r.headers["x-reason"]


def test_admin_disabled_without_token(app_env, monkeypatch):
    monkeypatch.setenv("BLOSSOMD_ADMIN_TOKEN", "")
    from blossomd.main import app

    with TestClient(app) as c:
        r = c.get("/admin/config", headers=ADMIN)
    assert r.status_code == 403
    assert r.headers["x-reason"] == "Admin API disabled"


def test_admin_config_roundtrip(client, pubkey, app_env):
    r = client.get("/admin/config", headers=ADMIN)
    assert r.status_code == 200
    assert r.json()["whitelist"] == [pubkey]

    r = client.patch("/admin/config", headers=ADMIN, json={"maxFileSize": 4096})
    assert r.status_code == 200
    assert r.json()["maxFileSize"] == 4096
    on_disk = json.loads((app_env / "config" / "app-config.json").read_text(encoding="utf-8"))
    assert on_disk["maxFileSize"] == 4096

    assert client.patch("/admin/config", headers=ADMIN, json={}).status_code == 400
    assert client.patch("/admin/config", headers=ADMIN, json={"maxFileSize": 0}).status_code == 422

    r = client.post("/admin/config/reset", headers=ADMIN)
    assert r.status_code == 200
    assert r.json()["whitelist"] == []


def test_admin_whitelist(client):
    r = client.post("/admin/whitelist", headers=ADMIN, json={"pubkey": KEY})
    assert r.status_code == 201
    assert r.json() == {"pubkey": KEY, "added": True}
    assert client.post("/admin/whitelist", headers=ADMIN, json={"pubkey": KEY}).json()["added"] is False
    assert client.post("/admin/whitelist", headers=ADMIN, json={"pubkey": "xyz"}).status_code == 422

    assert client.delete(f"/admin/whitelist/{KEY}", headers=ADMIN).status_code == 200
    assert client.delete(f"/admin/whitelist/{KEY}", headers=ADMIN).status_code == 404
    assert client.delete("/admin/whitelist/xyz", headers=ADMIN).status_code == 400


def test_admin_storage_rescan(client, app_env):
    r = client.get("/admin/storage", headers=ADMIN)
    assert r.status_code == 200
    assert r.json()["entries"] == 0
    assert r.json()["watching"] is False

    dropped = app_env / "blobs" / "manual" / "file.bin"
    dropped.parent.mkdir(parents=True)
    dropped.write_bytes(b"copied in by hand")
    r = client.post("/admin/storage/rescan", headers=ADMIN)
    assert r.status_code == 200
    assert r.json() == {"updated": 1, "removed": 0, "entries": 1}


@pytest.mark.parametrize("path", ["/admin/config", "/admin/storage"])
def test_admin_get_endpoints_exist(client, path):
    assert client.get(path, headers=ADMIN).status_code == 200
