from __future__ import annotations
import json
from typing import Any, Callable, List, Optional

import pytest

from finflow.catalog import BUILTIN_FLOWS, FlowRegistry
from finflow.flow import FlowRunner, FlowSpec
from finflow.providers.registry import ProviderRegistry
from finflow.providers.types import ProviderRequest, ProviderResponse
from finflow.retry import RetryPolicy


class StubProvider:
    """Scripted provider: each call consumes the next outcome, the last one repeats.

    An outcome that is an exception instance is raised; anything else is
    returned as the response content.
    """

    def __init__(self, vendor: str = "stub", script: Optional[List[Any]] = None,
                 respond: Optional[Callable[[ProviderRequest], Any]] = None, enabled: bool = True) -> None:
        self.vendor = vendor
        self.script = list(script or [])
        self.respond = respond
        self._enabled = enabled
        self.calls: List[ProviderRequest] = []

    @property
    def enabled(self) -> bool:
        return self._enabled

    async def generate(self, req: ProviderRequest) -> ProviderResponse:
        self.calls.append(req)
        if self.respond is not None:
            outcome = self.respond(req)
        else:
            idx = min(len(self.calls), len(self.script)) - 1
            outcome = self.script[idx]
        if isinstance(outcome, BaseException):
            raise outcome
        return ProviderResponse(outcome, 5, {"stub": True})


class FakeSleep:
    def __init__(self) -> None:
        self.delays: List[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


SUMMARY_FLOW = FlowSpec(
    name="summarizeNotes",
    input_schema={
        "type": "object",
        "required": ["investmentNotes"],
        "properties": {"investmentNotes": {"type": "string", "minLength": 10}},
    },
    output_schema={
        "type": "object",
        "required": ["summary", "total"],
        "properties": {"summary": {"type": "string"}, "total": {"type": "number"}},
    },
    prompt_template="Summarize these notes as JSON:\n{{investmentNotes}}",
    default_model="stub/small",
)

VALID_OUTPUT = json.dumps({"summary": "two funds", "total": 8000})


@pytest.fixture
def fake_sleep() -> FakeSleep:
    return FakeSleep()


@pytest.fixture
def make_runner(fake_sleep):
    def _make(*providers, policy: Optional[RetryPolicy] = None, flows: Optional[FlowRegistry] = None,
              default_model: Optional[str] = "stub/small") -> FlowRunner:
        return FlowRunner(
            ProviderRegistry(providers, aliases={"small": "stub/small"}),
            policy or RetryPolicy(max_attempts=3, base_delay=0.5, growth=2.0),
            flows=flows if flows is not None else FlowRegistry([SUMMARY_FLOW, *BUILTIN_FLOWS]),
            default_model=default_model,
            sleep=fake_sleep,
            rand=lambda: 0.0,
        )
    return _make
