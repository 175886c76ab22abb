import os

from fastapi.testclient import TestClient


def _client() -> TestClient:
    os.environ.setdefault("TOOL_GATEWAY_FAILURE_THRESHOLD", "2")
    # Import after environment setup so module-level wiring picks it up.
    from tool_gateway.api.main import app

    return TestClient(app)


def _call(client: TestClient, backend_id: str, tool_name: str, **arguments: object):
    return client.post(
        "/v1/tools/call",
        json={"backend_id": backend_id, "tool_name": tool_name, "arguments": arguments},
    )


def test_api_discover_call_and_metrics() -> None:
    with _client() as client:
        health = client.get("/health").json()
        assert health["status"] == "ok"
        assert health["backends"] == 2
        assert health["tools_indexed"] == 4
        assert health["probe_running"] is True

        discover_resp = client.post(
            "/v1/tools/discover",
            json={"query": "echo a text message back", "top_k": 3},
        )
        assert discover_resp.status_code == 200
        results = discover_resp.json()["results"]
        assert results[0]["tool_name"] == "echo"
        assert results[0]["backend_id"] == "builtin:echo"

        scoped = client.post(
            "/v1/tools/discover",
            json={"query": "message failure", "scopes": ["builtin:echo:*"]},
        )
        assert scoped.json()["results"]
        assert all(hit["backend_id"] == "builtin:echo" for hit in scoped.json()["results"])

        echoed = _call(client, "builtin:echo", "echo", text="hello gateway", uppercase=True)
        assert echoed.status_code == 200
        assert echoed.json()["output"] == "HELLO GATEWAY"

        bad_args = _call(client, "builtin:echo", "echo")
        assert bad_args.status_code == 422
        assert bad_args.json()["detail"]["error"] == "invalid_arguments"

        missing = _call(client, "builtin:echo", "nope")
        assert missing.status_code == 404

        servers = client.get("/v1/servers/health").json()["items"]
        assert {item["backend_id"] for item in servers} == {"builtin:echo", "builtin:fault"}

        metrics = client.get("/metrics").json()
        assert metrics["total_calls"] >= 2


def test_api_failures_open_circuit_until_backend_recovers() -> None:
    with _client() as client:
        client.post("/v1/servers/builtin:fault/circuit/reset")

        for _ in range(2):
            failed = _call(client, "builtin:fault", "fault_call", fail=True)
            assert failed.status_code == 502
            assert failed.json()["detail"]["error"] == "upstream_failure"

        rejected = _call(client, "builtin:fault", "fault_call", message="hi")
        assert rejected.status_code == 503
        assert rejected.json()["detail"]["error"] == "circuit_open"
        assert int(rejected.headers["Retry-After"]) >= 1

        circuit = client.get("/v1/servers/builtin:fault/circuit").json()
        assert circuit["state"] == "open"
        assert circuit["failures"] == 2

        checked = client.post("/v1/servers/probe").json()["results"]
        assert checked == {"builtin:echo": True, "builtin:fault": True}
        assert client.get("/v1/servers/builtin:fault/circuit").json()["state"] == "closed"

        ok = _call(client, "builtin:fault", "fault_call", message="hi")
        assert ok.json()["output"] == "hi"


def test_api_unhealthy_backend_is_reported() -> None:
    with _client() as client:
        client.post("/v1/servers/builtin:fault/circuit/reset")
        assert _call(client, "builtin:fault", "fault_set_health", healthy=False).status_code == 200
        try:
            checked = client.post("/v1/servers/probe").json()["results"]
            assert checked == {"builtin:echo": True, "builtin:fault": False}

            servers = {
                item["backend_id"]: item
                for item in client.get("/v1/servers/health").json()["items"]
            }
            assert servers["builtin:fault"]["healthy"] is False
            assert servers["builtin:fault"]["last_error"] == "Probe returned unhealthy"
            assert servers["builtin:fault"]["failures"] == 1
            assert servers["builtin:echo"]["healthy"] is True
        finally:
            _call(client, "builtin:fault", "fault_set_health", healthy=True)
            client.post("/v1/servers/builtin:fault/circuit/reset")


def test_api_trace_lookup_by_id() -> None:
    with _client() as client:
        _call(client, "builtin:echo", "word_count", text="one two three")

        latest = client.get("/traces", params={"limit": 1}).json()["items"][-1]
        found = client.get(f"/traces/{latest['trace_id']}")
        assert found.status_code == 200
        body = found.json()
        assert body["trace_id"] == latest["trace_id"]
        assert body["trace"]["tool_name"] == "word_count"
        assert body["trace"]["output_preview"] == "3"
        assert body["trace"]["ok"] is True

        unknown = client.get("/traces/does-not-exist")
        assert unknown.status_code == 404
        assert unknown.json()["detail"] == "Trace not found: does-not-exist"


def test_api_agent_delegation_flow() -> None:
    with _client() as client:
        parent = client.post(
            "/v1/agents",
            json={
                "name": "planner",
                "tenant_id": "acme",
                "scopes": ["builtin:echo:*"],
                "budget": {"max_cost_usd": 20},
            },
        )
        assert parent.status_code == 200
        parent_id = parent.json()["identity_id"]

        denied = client.post(
            "/v1/agents",
            json={
                "name": "spender",
                "tenant_id": "acme",
                "parent_identity_id": parent_id,
                "scopes": ["builtin:echo:word_count"],
                "budget": {"max_cost_usd": 50},
            },
        )
        assert denied.status_code == 403
        assert denied.json()["detail"]["error"] == "delegation_denied"
        assert "Child cost budget exceeds parent" in denied.json()["detail"]["message"]

        child = client.post(
            "/v1/agents",
            json={
                "name": "counter",
                "tenant_id": "acme",
                "parent_identity_id": parent_id,
                "scopes": ["builtin:echo:word_count"],
                "budget": {"max_cost_usd": 5},
            },
        )
        assert child.status_code == 200
        child_body = child.json()
        assert child_body["metadata"]["delegation_depth"] == 1
        assert child_body["metadata"]["root_identity_id"] == parent_id

        allowed = client.post(
            "/v1/tools/call",
            json={
                "backend_id": "builtin:echo",
                "tool_name": "word_count",
                "arguments": {"text": "one two three"},
                "agent_id": child_body["identity_id"],
            },
        )
        assert allowed.json()["output"] == "3"

        forbidden = client.post(
            "/v1/tools/call",
            json={
                "backend_id": "builtin:fault",
                "tool_name": "fault_call",
                "arguments": {},
                "agent_id": child_body["identity_id"],
            },
        )
        assert forbidden.status_code == 403

        assert client.delete(f"/v1/agents/{child_body['identity_id']}").status_code == 200
        assert client.get(f"/v1/agents/{child_body['identity_id']}").json()["status"] == "revoked"


def test_api_circuit_status_and_reset() -> None:
    with _client() as client:
        status = client.get("/v1/servers/unknown-backend/circuit").json()
        assert status == {
            "state": "closed",
            "failures": 0,
            "last_failure_at": None,
            "last_success_at": None,
        }

        reset = client.post("/v1/servers/builtin:fault/circuit/reset")
        assert reset.json() == {"backend_id": "builtin:fault", "state": "closed"}
