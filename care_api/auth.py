"""
Bearer-token authentication and role checks.

Tokens are never stored.  The registry file holds SHA-256 digests:

    tokens:
      - sha256: 9f86d081884c7d65...
        user_id: 6f1c...
        tenant_id: 2b7e...
        roles: [manager, nurse]

The tenant a request acts on always comes from the matched principal.
"""

from __future__ import annotations

import hashlib
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Iterable
from uuid import UUID

import yaml
from fastapi import Depends, Request

from care_kernel.exceptions import AuthenticationError, AuthorizationError
from care_kernel.logging_config import LogContext, get_logger

logger = get_logger("api.auth")

ADMIN_ROLE = "admin"
ROLES = ("admin", "manager", "nurse", "carer", "finance", "hr", "family")


def hash_token(token: str) -> str:
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


@dataclass(frozen=True)
class Principal:
    user_id: UUID
    tenant_id: UUID
    roles: frozenset[str]

    @property
    def is_admin(self) -> bool:
        return ADMIN_ROLE in self.roles

    def has_any(self, roles: Iterable[str]) -> bool:
        return self.is_admin or bool(self.roles.intersection(roles))


class TokenRegistry:
    """Maps token digests to principals."""

    def __init__(self, entries: dict[str, Principal] | None = None):
        self._entries = dict(entries or {})

    def __len__(self) -> int:
        return len(self._entries)

    def register(self, token: str, principal: Principal) -> None:
        self._entries[hash_token(token)] = principal

    def resolve(self, token: str) -> Principal | None:
        return self._entries.get(hash_token(token))

    @classmethod
    def from_yaml(cls, path: Path) -> "TokenRegistry":
        with path.open("r", encoding="utf-8") as handle:
            data = yaml.safe_load(handle) or {}
        entries: dict[str, Principal] = {}
        for item in data.get("tokens", ()):
            roles = frozenset(str(r) for r in item.get("roles", ()))
            unknown = roles.difference(ROLES)
            if unknown:
                raise ValueError(f"Unknown roles in token registry: {sorted(unknown)}")
            entries[str(item["sha256"]).lower()] = Principal(
                user_id=UUID(str(item["user_id"])),
                tenant_id=UUID(str(item["tenant_id"])),
                roles=roles,
            )
        logger.info("token_registry_loaded", extra={"path": str(path), "tokens": len(entries)})
        return cls(entries)


def _bearer(request: Request) -> str:
    header = request.headers.get("Authorization", "")
    scheme, _, token = header.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        raise AuthenticationError()
    return token.strip()


async def get_principal(request: Request) -> Principal:
    """Resolve the caller from the ``Authorization`` header."""
    registry: TokenRegistry = request.app.state.token_registry
    principal = registry.resolve(_bearer(request))
    if principal is None:
        logger.warning("authentication_failed", extra={"path": request.url.path})
        raise AuthenticationError()
    LogContext.set(tenant_id=str(principal.tenant_id), actor_id=str(principal.user_id))
    return principal


def require_roles(*roles: str) -> Callable[..., Any]:
    """Dependency factory: the caller must hold one of ``roles`` (or admin)."""

    async def _check(principal: Principal = Depends(get_principal)) -> Principal:
        if roles and not principal.has_any(roles):
            logger.warning(
                "authorization_denied",
                extra={"user_id": str(principal.user_id), "required_roles": list(roles)},
            )
            raise AuthorizationError(required_roles=tuple(roles))
        return principal

    return _check
