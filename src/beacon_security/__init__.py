"""Beacon security boundary: actor identity supplied by the upstream authentication layer."""

from .middleware import (
    ActorIdentity,
    ActorIdentityResolver,
    get_actor_identity,
    identity_from_gateway_headers,
    identity_from_state,
)

__all__ = [
    "ActorIdentity",
    "ActorIdentityResolver",
    "get_actor_identity",
    "identity_from_gateway_headers",
    "identity_from_state",
]
