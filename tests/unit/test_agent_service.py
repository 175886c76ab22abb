import pytest

from tool_gateway.errors import ErrorKind, GatewayError
from tool_gateway.identity.agents import AgentService, CreateAgentRequest, InMemoryIdentityStore
from tool_gateway.identity.delegation import AgentBudget
from tool_gateway.identity.policy import enforce_tool_policy


def _service() -> AgentService:
    return AgentService(InMemoryIdentityStore())


def test_root_agent_has_depth_zero_and_expiry() -> None:
    service = _service()

    agent = service.create_agent(
        CreateAgentRequest(
            name="root",
            tenant_id="acme",
            scopes=["github:*"],
            budget=AgentBudget(ttl_hours=2),
        )
    )

    assert agent.metadata.delegation_depth == 0
    assert agent.metadata.root_identity_id is None
    assert agent.expires_at is not None
    assert service.list_agents("acme") == [agent]


def test_delegation_chain_derives_depth_and_root() -> None:
    service = _service()
    root = service.create_agent(CreateAgentRequest(name="root", tenant_id="acme", scopes=["*"]))
    child = service.create_agent(
        CreateAgentRequest(
            name="child",
            tenant_id="acme",
            parent_identity_id=root.identity_id,
            scopes=["github:*"],
        )
    )
    grandchild = service.create_agent(
        CreateAgentRequest(
            name="grandchild",
            tenant_id="acme",
            parent_identity_id=child.identity_id,
            scopes=["github:search_code"],
        )
    )

    assert child.metadata.delegation_depth == 1
    assert grandchild.metadata.delegation_depth == 2
    assert grandchild.metadata.root_identity_id == root.identity_id


def test_denied_delegation_raises_and_writes_nothing() -> None:
    service = _service()
    parent = service.create_agent(
        CreateAgentRequest(name="parent", tenant_id="acme", scopes=["github:*"])
    )

    with pytest.raises(GatewayError) as exc_info:
        service.create_agent(
            CreateAgentRequest(
                name="child",
                tenant_id="acme",
                parent_identity_id=parent.identity_id,
                scopes=["slack:post"],
            )
        )

    assert exc_info.value.kind is ErrorKind.DELEGATION_DENIED
    assert "Child scopes exceed parent scopes" in exc_info.value.message
    assert service.list_agents("acme") == [parent]


def test_fourth_level_delegation_rejected() -> None:
    service = _service()
    current = service.create_agent(CreateAgentRequest(name="a0", tenant_id="acme", scopes=["*"]))
    for depth in range(1, 4):
        current = service.create_agent(
            CreateAgentRequest(
                name=f"a{depth}",
                tenant_id="acme",
                parent_identity_id=current.identity_id,
                scopes=["*"],
            )
        )
    assert current.metadata.delegation_depth == 3

    with pytest.raises(GatewayError) as exc_info:
        service.create_agent(
            CreateAgentRequest(
                name="too-deep",
                tenant_id="acme",
                parent_identity_id=current.identity_id,
                scopes=[],
            )
        )
    assert "Max delegation depth (3) exceeded" in exc_info.value.message


def test_missing_or_revoked_parent_is_not_found() -> None:
    service = _service()
    parent = service.create_agent(CreateAgentRequest(name="p", tenant_id="acme", scopes=["*"]))
    assert service.revoke_agent(parent.identity_id) is True
    assert service.revoke_agent("missing") is False

    for parent_id in (parent.identity_id, "missing"):
        with pytest.raises(GatewayError) as exc_info:
            service.create_agent(
                CreateAgentRequest(name="c", tenant_id="acme", parent_identity_id=parent_id)
            )
        assert exc_info.value.kind is ErrorKind.NOT_FOUND


@pytest.mark.parametrize(
    ("scopes", "expected"),
    [
        (None, True),
        ([], False),
        (["*"], True),
        (["builtin:fault"], True),
        (["builtin:fault:*"], True),
        (["builtin:fault:fault_call"], True),
        (["builtin:fault:fault_set_health"], False),
        (["*:fault_call"], True),
        (["github:*"], False),
    ],
)
def test_enforce_tool_policy(scopes: list[str] | None, expected: bool) -> None:
    assert enforce_tool_policy(scopes, "builtin:fault", "fault_call") is expected
