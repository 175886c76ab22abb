"""In-process builtin backends served directly by the gateway."""

from __future__ import annotations

from pydantic import BaseModel, Field

from tool_gateway.registry.catalogue import BackendSpec, ToolRegistry, ToolSpec

ECHO_BACKEND_ID = "builtin:echo"
FAULT_BACKEND_ID = "builtin:fault"


class EchoToolInput(BaseModel):
    text: str = Field(min_length=1)
    uppercase: bool = False


class WordCountToolInput(BaseModel):
    text: str


class FaultCallToolInput(BaseModel):
    fail: bool = False
    message: str = "ok"


class FaultHealthToolInput(BaseModel):
    healthy: bool


class _FaultState:
    def __init__(self) -> None:
        self.healthy = True


def register_builtin_backends(registry: ToolRegistry) -> list[str]:
    """Register the builtin backends and return their ids.

    Backends:
    - `builtin:echo`: `echo`, `word_count`; always live.
    - `builtin:fault`: `fault_call` fails on request and `fault_set_health`
      flips what its health check reports, so breaker and probe behaviour
      can be driven end to end without a real upstream.
    """

    fault_state = _FaultState()

    def _echo(input_data: EchoToolInput) -> str:
        return input_data.text.upper() if input_data.uppercase else input_data.text

    def _word_count(input_data: WordCountToolInput) -> str:
        return str(len(input_data.text.split()))

    def _fault_call(input_data: FaultCallToolInput) -> str:
        if input_data.fail:
            raise RuntimeError("injected backend failure")
        return input_data.message

    def _fault_set_health(input_data: FaultHealthToolInput) -> str:
        fault_state.healthy = input_data.healthy
        return "healthy" if input_data.healthy else "unhealthy"

    async def _fault_health() -> bool:
        return fault_state.healthy

    registry.register_backend(
        BackendSpec(
            backend_id=ECHO_BACKEND_ID,
            name="Echo",
            tools=[
                ToolSpec(
                    name="echo",
                    description="Echo a text message back, optionally uppercased.",
                    args_schema=EchoToolInput,
                    handler=_echo,
                    tags=["diagnostics"],
                ),
                ToolSpec(
                    name="word_count",
                    description="Count the words in a text passage.",
                    args_schema=WordCountToolInput,
                    handler=_word_count,
                    tags=["text"],
                ),
            ],
        )
    )
    registry.register_backend(
        BackendSpec(
            backend_id=FAULT_BACKEND_ID,
            name="Fault injection",
            tools=[
                ToolSpec(
                    name="fault_call",
                    description="Return a message, or raise an injected failure when asked.",
                    args_schema=FaultCallToolInput,
                    handler=_fault_call,
                    tags=["diagnostics"],
                ),
                ToolSpec(
                    name="fault_set_health",
                    description="Set whether the fault backend health check passes.",
                    args_schema=FaultHealthToolInput,
                    handler=_fault_set_health,
                    tags=["diagnostics"],
                ),
            ],
            health_check=_fault_health,
        )
    )
    return [ECHO_BACKEND_ID, FAULT_BACKEND_ID]
