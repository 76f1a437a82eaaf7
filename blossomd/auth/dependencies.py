"""FastAPI dependencies for Blossom authorization (kind 24242 events)."""

import hmac
import logging
import time
from typing import Annotated, Iterable, Optional

from fastapi import Depends, Header
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from blossomd.auth.nostr import (
    BLOSSOM_AUTH_KIND,
    NostrEvent,
    parse_authorization_header,
    verify_event_signature,
)
from blossomd.config import Settings
from blossomd.errors import AuthError, ForbiddenError, ValidationError
from blossomd.state import get_app_settings, get_config_store
from blossomd.whitelist.service import ConfigStore

log = logging.getLogger(__name__)


def is_expired(event: NostrEvent, now: Optional[float] = None) -> bool:
    """True if the event carries an 'expiration' tag in the past. Unparseable values are ignored."""
    raw = event.tag_value("expiration")
    if not raw:
        return False
    try:
        expiration = int(raw)
    except ValueError:
        return False
    return (time.time() if now is None else now) > expiration


def validate_authorization_hash(event: NostrEvent, expected_hashes: Iterable[str]) -> bool:
    """True if at least one 'x' tag equals one of the expected hashes."""
    x_values = set(event.tag_values("x"))
    if not x_values:
        return False
    return any(h in x_values for h in expected_hashes)


def validate_authorization(
    auth_header: Optional[str], action: str, config_store: ConfigStore
) -> NostrEvent:
    """
    Validate everything that does not depend on the request body: header present and
    decodable, signature valid, kind 24242, matching 't' tag, not expired, pubkey allowed.
    Raises AuthError / ValidationError / ForbiddenError; returns the event otherwise.
    """
    if not auth_header:
        log.debug("Request missing Nostr authorization for %s", action)
        raise AuthError("Authorization header required")
    event = parse_authorization_header(auth_header)
    if event is None:
        raise ValidationError("Invalid authorization header format")
    if not verify_event_signature(event):
        log.warning("Invalid event signature: id=%s pubkey=%s", event.id, event.pubkey)
        raise AuthError("Invalid event signature")
    if event.kind != BLOSSOM_AUTH_KIND or event.tag_value("t") != action:
        raise AuthError(f"Invalid {action} authorization event")
    if is_expired(event):
        raise AuthError("Authorization event has expired")
    config = config_store.get_config()
    if not config.allow_anonymous and not config_store.is_whitelisted(event.pubkey):
        log.warning("Pubkey not whitelisted attempted %s: pubkey=%s", action, event.pubkey)
        raise ForbiddenError("Pubkey not whitelisted")
    return event


class BlossomAuthorization:
    """Dependency: `Depends(BlossomAuthorization("upload"))` yields the validated event."""

    def __init__(self, action: str) -> None:
        self.action = action

    def __call__(
        self,
        config_store: Annotated[ConfigStore, Depends(get_config_store)],
        authorization: Annotated[Optional[str], Header()] = None,
    ) -> NostrEvent:
        return validate_authorization(authorization, self.action, config_store)


require_upload_auth = BlossomAuthorization("upload")


security = HTTPBearer(auto_error=False)


def require_admin(
    credentials: Annotated[Optional[HTTPAuthorizationCredentials], Depends(security)],
    settings: Annotated[Settings, Depends(get_app_settings)],
) -> None:
    """Bearer admin_token check. The admin API is disabled while admin_token is empty."""
    if not settings.admin_token:
        raise ForbiddenError("Admin API disabled")
    supplied = credentials.credentials if credentials else ""
    if not hmac.compare_digest(supplied.encode(), settings.admin_token.encode()):
        log.warning("Admin request with invalid token")
        raise ForbiddenError("Admin token required")
