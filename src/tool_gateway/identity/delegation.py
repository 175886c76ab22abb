"""Delegation checks: a child identity never exceeds its parent.

Validation runs once, when a delegated agent is created. It is a pure
function over the parent's metadata and the child's requested scopes and
budget; nothing here touches storage.
"""

from __future__ import annotations

from dataclasses import dataclass

from pydantic import BaseModel, ConfigDict, Field

MAX_DELEGATION_DEPTH = 3


class AgentBudget(BaseModel):
    """Optional per-identity limits. A missing limit is unconstrained."""

    model_config = ConfigDict(frozen=True)

    max_tool_calls: int | None = Field(default=None, ge=0)
    max_cost_usd: float | None = Field(default=None, ge=0.0)
    ttl_hours: float | None = Field(default=None, ge=0.0)


class DelegationMetadata(BaseModel):
    """Delegation-relevant attributes of an agent identity."""

    model_config = ConfigDict(frozen=True)

    scopes: list[str] = Field(default_factory=list)
    budget: AgentBudget = Field(default_factory=AgentBudget)
    delegation_depth: int = Field(default=0, ge=0)
    root_identity_id: str | None = None
    parent_identity_id: str | None = None


@dataclass(slots=True, frozen=True)
class DelegationResult:
    valid: bool
    reason: str | None = None


def scope_covers(parent_scope: str, child_scope: str) -> bool:
    """`*` covers everything, `github:*` covers `github:search_code`."""
    if parent_scope == "*" or parent_scope == child_scope:
        return True
    if parent_scope.endswith(":*"):
        return child_scope.startswith(parent_scope[:-1])
    return False


def is_scope_subset(parent_scopes: list[str], child_scopes: list[str]) -> bool:
    return all(
        any(scope_covers(parent_scope, child_scope) for parent_scope in parent_scopes)
        for child_scope in child_scopes
    )


_BUDGET_LIMITS: tuple[tuple[str, str], ...] = (
    ("max_tool_calls", "Child tool call budget exceeds parent"),
    ("max_cost_usd", "Child cost budget exceeds parent"),
    ("ttl_hours", "Child TTL exceeds parent"),
)


def validate_delegation(
    parent: DelegationMetadata,
    child_scopes: list[str],
    child_budget: AgentBudget,
) -> DelegationResult:
    """Approve or reject a child identity against its parent.

    Checks run in order and stop at the first failure:
    1. parent depth must be below `MAX_DELEGATION_DEPTH`;
    2. every child scope must be covered by some parent scope;
    3. each budget limit set on both sides must not grow.

    The returned reason names the failed check and is shown to whoever tried
    to create the child.
    """
    if parent.delegation_depth >= MAX_DELEGATION_DEPTH:
        return DelegationResult(
            valid=False,
            reason=f"Max delegation depth ({MAX_DELEGATION_DEPTH}) exceeded",
        )

    if not is_scope_subset(parent.scopes, child_scopes):
        return DelegationResult(valid=False, reason="Child scopes exceed parent scopes")

    for field_name, reason in _BUDGET_LIMITS:
        child_limit = getattr(child_budget, field_name)
        parent_limit = getattr(parent.budget, field_name)
        if child_limit is None or parent_limit is None:
            continue
        if child_limit > parent_limit:
            return DelegationResult(valid=False, reason=reason)

    return DelegationResult(valid=True)


def derive_child_metadata(
    parent: DelegationMetadata,
    parent_id: str,
    child_scopes: list[str],
    child_budget: AgentBudget,
) -> DelegationMetadata:
    """Depth and root are fixed here and never recomputed."""
    return DelegationMetadata(
        scopes=list(child_scopes),
        budget=child_budget,
        delegation_depth=parent.delegation_depth + 1,
        root_identity_id=parent.root_identity_id or parent_id,
        parent_identity_id=parent_id,
    )
