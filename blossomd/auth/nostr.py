"""Nostr event parsing and verification for Blossom authorization (NIP-01, BUD-02)."""

import base64
import binascii
import hashlib
import json
import logging
import re
from typing import List, Optional

from coincurve import PublicKeyXOnly
from pydantic import BaseModel, ValidationError, field_validator

log = logging.getLogger(__name__)

BLOSSOM_AUTH_KIND = 24242

_HEX64 = re.compile(r"^[a-fA-F0-9]{64}$")
_SHA256 = re.compile(r"^[a-f0-9]{64}$")
_HEX128 = re.compile(r"^[a-fA-F0-9]{128}$")


class NostrEvent(BaseModel):
    """Signed Nostr event as sent in 'Authorization: Nostr <base64 JSON>'."""

    id: str
    pubkey: str
    created_at: int
    kind: int
    tags: List[List[str]]
    content: str
    sig: str

    @field_validator("id", "pubkey")
    @classmethod
    def _hex64(cls, v: str) -> str:
        if not _HEX64.match(v):
            raise ValueError("must be 64 hex characters")
        return v.lower()

    @field_validator("sig")
    @classmethod
    def _hex128(cls, v: str) -> str:
        if not _HEX128.match(v):
            raise ValueError("must be 128 hex characters")
        return v.lower()

    def tag_value(self, name: str) -> Optional[str]:
        """Value of the first tag with this name, or None."""
        for tag in self.tags:
            if len(tag) >= 2 and tag[0] == name:
                return tag[1]
        return None

    def tag_values(self, name: str) -> List[str]:
        """Values of every tag with this name (e.g. all 'x' hashes)."""
        return [tag[1] for tag in self.tags if len(tag) >= 2 and tag[0] == name]


def is_valid_pubkey(pubkey: str) -> bool:
    """64-character hex string."""
    return bool(_HEX64.match(pubkey))


def is_valid_sha256(value: str) -> bool:
    """64-character lowercase hex string."""
    return bool(_SHA256.match(value))


def serialize_event(event: NostrEvent) -> bytes:
    """NIP-01 canonical serialization: [0, pubkey, created_at, kind, tags, content]."""
    payload = [0, event.pubkey, event.created_at, event.kind, event.tags, event.content]
    return json.dumps(payload, separators=(",", ":"), ensure_ascii=False).encode("utf-8")


def compute_event_id(event: NostrEvent) -> str:
    """Event id: SHA-256 hex of the canonical serialization."""
    return hashlib.sha256(serialize_event(event)).hexdigest()


def verify_event_signature(event: NostrEvent) -> bool:
    """True if the id matches the event content and sig is a valid BIP-340 signature of it."""
    if event.id != compute_event_id(event):
        return False
    try:
        key = PublicKeyXOnly(bytes.fromhex(event.pubkey))
        return bool(key.verify(bytes.fromhex(event.sig), bytes.fromhex(event.id)))
    except (ValueError, TypeError) as e:
        log.debug("Signature verification failed for %s: %s", event.id, e)
        return False


def parse_authorization_header(auth_header: str) -> Optional[NostrEvent]:
    """Decode 'Nostr <base64 JSON event>'. Returns None if the header is malformed."""
    if not auth_header.startswith("Nostr "):
        return None
    encoded = auth_header[len("Nostr "):].strip()
    try:
        raw = base64.b64decode(encoded + "=" * (-len(encoded) % 4))
        return NostrEvent.model_validate_json(raw)
    except (binascii.Error, ValueError, ValidationError) as e:
        log.debug("Could not parse authorization header: %s", e)
        return None
