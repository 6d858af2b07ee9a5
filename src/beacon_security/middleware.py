"""
Beacon Identity Boundary - Shared FastAPI dependencies for resolving the caller's actor identity.

Credential validation happens upstream (gateway or an authentication middleware owned by the
deployment). This module only reads the identity that layer has already established:

- ``request.state.actor`` set by an in-process authentication middleware, or
- consumer headers forwarded by the API gateway after it validated the credentials
  (only when the deployment explicitly trusts them).

Usage:
    from beacon_security.middleware import ActorIdentity, get_actor_identity

    @router.post("/track")
    async def track(actor: ActorIdentity | None = Depends(get_actor_identity)):
        ...
"""
from __future__ import annotations

from typing import Any

from fastapi import Request
from pydantic import BaseModel, ConfigDict, Field
import structlog

logger = structlog.get_logger(__name__)

STATE_ATTRIBUTE = "actor"
GATEWAY_ACTOR_ID_HEADER = "X-Consumer-Custom-ID"
GATEWAY_DISPLAY_ID_HEADER = "X-Consumer-Username"


class ActorIdentity(BaseModel):
    """An already-validated caller identity."""

    actor_id: str = Field(..., min_length=1, description="Opaque actor identifier")
    display_id: str | None = Field(default=None, description="Human readable identifier, e.g. email")
    model_config = ConfigDict(frozen=True)

    @classmethod
    def coerce(cls, value: Any) -> "ActorIdentity | None":
        """Accept an ActorIdentity, a mapping with actor_id/display_id, or None."""
        if value is None or isinstance(value, ActorIdentity):
            return value
        if isinstance(value, dict) and value.get("actor_id"):
            return cls(actor_id=str(value["actor_id"]), display_id=value.get("display_id"))
        logger.warning("actor_identity_unrecognized", value_type=type(value).__name__)
        return None


def identity_from_state(request: Request) -> ActorIdentity | None:
    """Read the identity placed on request.state by the authentication layer."""
    return ActorIdentity.coerce(getattr(request.state, STATE_ATTRIBUTE, None))


def identity_from_gateway_headers(request: Request) -> ActorIdentity | None:
    """Read the identity forwarded by the gateway's authentication plugin."""
    actor_id = request.headers.get(GATEWAY_ACTOR_ID_HEADER, "").strip()
    if not actor_id:
        return None
    display_id = request.headers.get(GATEWAY_DISPLAY_ID_HEADER, "").strip() or None
    return ActorIdentity(actor_id=actor_id, display_id=display_id)


class ActorIdentityResolver:
    """FastAPI dependency resolving the current actor, or None for anonymous callers."""

    def __init__(self, trust_gateway_headers: bool = False) -> None:
        self._trust_gateway_headers = trust_gateway_headers

    async def __call__(self, request: Request) -> ActorIdentity | None:
        identity = identity_from_state(request)
        if identity is None and self._trust_gateway_headers:
            identity = identity_from_gateway_headers(request)
        if identity is not None:
            logger.debug("actor_resolved", actor_id=identity.actor_id, path=request.url.path)
        return identity


get_actor_identity = ActorIdentityResolver()
