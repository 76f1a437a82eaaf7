"""Pytest configuration: set test env before any blossomd imports so settings use test paths."""

import base64
import hashlib
import json
import os
import tempfile
import time

import pytest
from coincurve import PrivateKey

# Set before blossomd.config / blossomd.main are imported (main reads settings at import)
_tmp = tempfile.mkdtemp(prefix="blossomd_test_")
os.environ.setdefault("BLOSSOMD_DATA_DIR", _tmp)
os.environ.setdefault("BLOSSOMD_WATCH_ENABLED", "false")
os.environ.setdefault("BLOSSOMD_LOG_LEVEL", "DEBUG")

ADMIN_TOKEN = "test-admin-token"
TEST_MAX_FILE_SIZE = 1024


def xonly_pubkey(sk: PrivateKey) -> str:
    """32-byte x-only public key (hex) as used in Nostr events."""
    return sk.public_key.format(compressed=True)[1:].hex()


def sign_event(sk: PrivateKey, kind: int, tags, content: str = "", created_at=None) -> dict:
    """Build a NIP-01 event with a real BIP-340 signature."""
    pubkey = xonly_pubkey(sk)
    created_at = int(time.time()) if created_at is None else created_at
    serialized = json.dumps(
        [0, pubkey, created_at, kind, tags, content], separators=(",", ":"), ensure_ascii=False
    )
    event_id = hashlib.sha256(serialized.encode("utf-8")).hexdigest()
    sig = sk.sign_schnorr(bytes.fromhex(event_id)).hex()
    return {
        "id": event_id,
        "pubkey": pubkey,
        "created_at": created_at,
        "kind": kind,
        "tags": tags,
        "content": content,
        "sig": sig,
    }


def encode_auth(event: dict) -> str:
    return "Nostr " + base64.b64encode(json.dumps(event).encode("utf-8")).decode("ascii")


@pytest.fixture
def secret_key() -> PrivateKey:
    """Key of the whitelisted test user."""
    return PrivateKey()


@pytest.fixture
def pubkey(secret_key) -> str:
    return xonly_pubkey(secret_key)


@pytest.fixture
def make_event(secret_key):
    """Factory: make_event(kind, tags, sk=None, created_at=None) -> signed event dict."""

    def _make(kind: int, tags, sk=None, content: str = "", created_at=None) -> dict:
        return sign_event(sk or secret_key, kind, tags, content=content, created_at=created_at)

    return _make


@pytest.fixture
def make_auth(make_event):
    """
    Factory for 'Authorization: Nostr ...' headers:
    make_auth("upload", hashes=[sha], expiration=None, kind=24242, sk=None).
    Expiration defaults to one hour from now; pass a past timestamp to get an expired event.
    """

    def _make(action: str, hashes=(), expiration=None, kind: int = 24242, sk=None) -> str:
        if expiration is None:
            expiration = int(time.time()) + 3600
        tags = [["t", action], ["expiration", str(expiration)]]
        tags += [["x", h] for h in hashes]
        return encode_auth(make_event(kind, tags, sk=sk, content=f"{action} blob"))

    return _make


@pytest.fixture
def app_env(tmp_path, monkeypatch, pubkey):
    """Point the app at tmp_path and whitelist the test key."""
    monkeypatch.setenv("BLOSSOMD_DATA_DIR", str(tmp_path))
    monkeypatch.setenv("BLOSSOMD_ADMIN_TOKEN", ADMIN_TOKEN)
    monkeypatch.setenv("BLOSSOMD_WATCH_ENABLED", "false")
    config_dir = tmp_path / "config"
    config_dir.mkdir()
    (config_dir / "app-config.json").write_text(
        json.dumps({"whitelist": [pubkey], "maxFileSize": TEST_MAX_FILE_SIZE, "allowAnonymous": False}),
        encoding="utf-8",
    )
    return tmp_path


@pytest.fixture
def client(app_env):
    """TestClient as context manager so the lifespan (config load, initial scan) runs."""
    from fastapi.testclient import TestClient

    from blossomd.main import app

    with TestClient(app) as c:
        yield c
