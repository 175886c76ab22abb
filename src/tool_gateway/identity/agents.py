"""Agent identity creation with delegation enforcement."""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta, timezone
from typing import Protocol

from pydantic import BaseModel, Field

from tool_gateway.errors import ErrorKind, GatewayError
from tool_gateway.identity.delegation import (
    AgentBudget,
    DelegationMetadata,
    derive_child_metadata,
    validate_delegation,
)

logger = logging.getLogger(__name__)


@dataclass(slots=True, frozen=True)
class AgentIdentity:
    """A stored agent identity."""

    identity_id: str
    name: str
    tenant_id: str
    metadata: DelegationMetadata
    status: str = "active"
    expires_at: str | None = None
    created_at: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())


class CreateAgentRequest(BaseModel):
    name: str = Field(min_length=1)
    tenant_id: str = Field(min_length=1)
    parent_identity_id: str | None = None
    scopes: list[str] = Field(default_factory=list)
    budget: AgentBudget = Field(default_factory=AgentBudget)


class IdentityStore(Protocol):
    """Minimal identity store contract used by `AgentService`."""

    def get(self, identity_id: str) -> AgentIdentity | None:
        """Fetch one identity or `None`."""

    def create(self, identity: AgentIdentity) -> AgentIdentity:
        """Persist a new identity."""

    def update_status(self, identity_id: str, status: str) -> AgentIdentity | None:
        """Change an identity's status."""

    def list(self, tenant_id: str, status: str | None = None) -> list[AgentIdentity]:
        """List identities owned by a tenant."""


class InMemoryIdentityStore:
    """Process-local identity store used for tests and local runs."""

    def __init__(self) -> None:
        self._records: dict[str, AgentIdentity] = {}

    def get(self, identity_id: str) -> AgentIdentity | None:
        return self._records.get(identity_id)

    def create(self, identity: AgentIdentity) -> AgentIdentity:
        if identity.identity_id in self._records:
            raise ValueError(f"Identity already exists: {identity.identity_id}")
        self._records[identity.identity_id] = identity
        return identity

    def update_status(self, identity_id: str, status: str) -> AgentIdentity | None:
        current = self._records.get(identity_id)
        if current is None:
            return None
        updated = replace(current, status=status)
        self._records[identity_id] = updated
        return updated

    def list(self, tenant_id: str, status: str | None = None) -> list[AgentIdentity]:
        return [
            record
            for record in self._records.values()
            if record.tenant_id == tenant_id and (status is None or record.status == status)
        ]


class AgentService:
    """Creates, reads and revokes agent identities.

    A child agent is only written after `validate_delegation` approves it
    against the parent; a denial raises `GatewayError` with kind
    `DELEGATION_DENIED` and leaves the store untouched.
    """

    def __init__(self, store: IdentityStore) -> None:
        self.store = store

    def create_agent(self, request: CreateAgentRequest) -> AgentIdentity:
        metadata = DelegationMetadata(scopes=list(request.scopes), budget=request.budget)

        if request.parent_identity_id:
            parent = self.store.get(request.parent_identity_id)
            if parent is None or parent.status != "active":
                raise GatewayError(
                    ErrorKind.NOT_FOUND,
                    f"Parent agent not found: {request.parent_identity_id}",
                )

            result = validate_delegation(parent.metadata, request.scopes, request.budget)
            if not result.valid:
                logger.info(
                    "delegation denied for child of %s: %s",
                    parent.identity_id,
                    result.reason,
                )
                raise GatewayError(
                    ErrorKind.DELEGATION_DENIED,
                    f"Delegation denied: {result.reason}",
                )

            metadata = derive_child_metadata(
                parent.metadata,
                parent.identity_id,
                request.scopes,
                request.budget,
            )

        expires_at = None
        if request.budget.ttl_hours:
            expires_at = (
                datetime.now(timezone.utc) + timedelta(hours=request.budget.ttl_hours)
            ).isoformat()

        identity = AgentIdentity(
            identity_id=str(uuid.uuid4()),
            name=request.name,
            tenant_id=request.tenant_id,
            metadata=metadata,
            expires_at=expires_at,
        )
        return self.store.create(identity)

    def get_agent(self, identity_id: str) -> AgentIdentity | None:
        return self.store.get(identity_id)

    def list_agents(self, tenant_id: str) -> list[AgentIdentity]:
        return self.store.list(tenant_id, status="active")

    def revoke_agent(self, identity_id: str) -> bool:
        return self.store.update_status(identity_id, "revoked") is not None
