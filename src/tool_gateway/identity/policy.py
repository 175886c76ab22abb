"""Scope checks for individual tool calls."""

from __future__ import annotations


def enforce_tool_policy(scopes: list[str] | None, backend_id: str, tool_name: str) -> bool:
    """Return whether `scopes` allow calling `tool_name` on `backend_id`.

    `None` means the caller is unrestricted; an empty list allows nothing.
    A scope is `backend`, `backend:*` or `backend:tool`, and `*` stands in for
    any backend. Backend ids may themselves contain `:`.
    """
    if scopes is None:
        return True
    accepted = {
        "*",
        "*:*",
        f"*:{tool_name}",
        backend_id,
        f"{backend_id}:*",
        f"{backend_id}:{tool_name}",
    }
    return any(scope in accepted for scope in scopes)
