import asyncio
import json

import httpx
import pytest

from conftest import SUMMARY_FLOW, VALID_OUTPUT, StubProvider
from finflow.errors import (
    Cancelled,
    ConfigurationError,
    InvalidInput,
    OutputSchemaViolation,
    ProviderUnavailable,
    UnknownFlow,
)
from finflow.flow import FlowSpec, FlowState
from finflow.providers.errors import ProviderAuthError, TransientProviderError
from finflow.providers.openai import OpenAIProvider
from finflow.retry import CancelToken, RetryPolicy

NOTES = {"investmentNotes": "Fund A: 5000, Fund B: 3000"}


def overloaded():
    return TransientProviderError("stub", "HTTP 503: model is overloaded", 503)


@pytest.mark.asyncio
async def test_valid_input_returns_typed_output_with_provenance(make_runner):
    stub = StubProvider(script=[VALID_OUTPUT])
    runner = make_runner(stub)
    result = await runner.run(SUMMARY_FLOW, NOTES)
    assert result.output == {"summary": "two funds", "total": 8000}
    assert result.model == "stub/small"
    assert result.attempts == 1
    assert result.flow == "summarizeNotes"
    assert result.states == (
        FlowState.PENDING,
        FlowState.INPUT_VALIDATED,
        FlowState.PROMPT_RENDERED,
        FlowState.DISPATCHED,
        FlowState.OUTPUT_VALIDATED,
        FlowState.COMPLETE,
    )
    req = stub.calls[0]
    assert req.model == "small"
    assert req.prompt == "Summarize these notes as JSON:\nFund A: 5000, Fund B: 3000"


@pytest.mark.asyncio
async def test_flow_can_be_run_by_name(make_runner):
    runner = make_runner(StubProvider(script=[VALID_OUTPUT]))
    result = await runner.run("summarizeNotes", NOTES)
    assert result.output["total"] == 8000


@pytest.mark.asyncio
@pytest.mark.parametrize("raw", [{}, {"investmentNotes": None}, {"investmentNotes": "short"}, "not an object"])
async def test_invalid_input_never_calls_provider(make_runner, raw):
    stub = StubProvider(script=[VALID_OUTPUT])
    runner = make_runner(stub)
    with pytest.raises(InvalidInput) as ei:
        await runner.run(SUMMARY_FLOW, raw)
    assert ei.value.attempts == 0
    assert len(stub.calls) == 0
    if isinstance(raw, dict):
        assert [v.field for v in ei.value.violations] == ["investmentNotes"]


@pytest.mark.asyncio
async def test_missing_field_reported_with_reason(make_runner):
    runner = make_runner(StubProvider(script=[VALID_OUTPUT]))
    with pytest.raises(InvalidInput) as ei:
        await runner.run(SUMMARY_FLOW, {})
    d = ei.value.to_dict()
    assert d["error"] == "InvalidInput"
    assert d["details"]["violations"][0]["field"] == "investmentNotes"
    assert d["details"]["violations"][0]["reason"] == "missing"


@pytest.mark.asyncio
async def test_always_transient_exhausts_policy(make_runner, fake_sleep):
    stub = StubProvider(script=[overloaded()])
    runner = make_runner(stub, policy=RetryPolicy(max_attempts=4, base_delay=0.5))
    with pytest.raises(ProviderUnavailable) as ei:
        await runner.run(SUMMARY_FLOW, NOTES)
    assert ei.value.attempts == 4
    assert len(stub.calls) == 4
    assert isinstance(ei.value.cause, TransientProviderError)
    assert len(fake_sleep.delays) == 3
    assert "after 4 attempts" in ei.value.summary


@pytest.mark.asyncio
async def test_two_transient_failures_then_success(make_runner):
    stub = StubProvider(script=[overloaded(), overloaded(), VALID_OUTPUT])
    result = await make_runner(stub).run(SUMMARY_FLOW, NOTES)
    assert result.attempts == 3
    assert result.output["summary"] == "two funds"
    assert result.states.count(FlowState.RETRYING) == 2


@pytest.mark.asyncio
async def test_retries_replay_identical_request(make_runner):
    stub = StubProvider(script=[overloaded(), "not json", VALID_OUTPUT])
    await make_runner(stub).run(SUMMARY_FLOW, NOTES)
    assert len(stub.calls) == 3
    assert len({(c.model, c.prompt, c.params) for c in stub.calls}) == 1


@pytest.mark.asyncio
async def test_invalid_json_once_then_valid(make_runner):
    stub = StubProvider(script=["{not json", VALID_OUTPUT])
    result = await make_runner(stub).run(SUMMARY_FLOW, NOTES)
    assert result.attempts == 2


@pytest.mark.asyncio
async def test_missing_numeric_field_is_retried(make_runner):
    stub = StubProvider(script=[json.dumps({"summary": "no total"}), VALID_OUTPUT])
    result = await make_runner(stub).run(SUMMARY_FLOW, NOTES)
    assert result.attempts == 2
    assert result.output["total"] == 8000


@pytest.mark.asyncio
async def test_persistently_invalid_output_raises_schema_violation(make_runner):
    stub = StubProvider(script=[json.dumps({"summary": "no total"})])
    with pytest.raises(OutputSchemaViolation) as ei:
        await make_runner(stub).run(SUMMARY_FLOW, NOTES)
    assert ei.value.attempts == 3
    assert [(v.field, v.reason) for v in ei.value.violations] == [("total", "missing")]
    assert ei.value.model == "stub/small"


@pytest.mark.asyncio
async def test_structured_provider_output_is_accepted(make_runner):
    stub = StubProvider(script=[{"summary": "native", "total": 1}])
    result = await make_runner(stub).run(SUMMARY_FLOW, NOTES)
    assert result.output == {"summary": "native", "total": 1}


@pytest.mark.asyncio
async def test_unknown_model_is_configuration_error_without_calls(make_runner):
    stub = StubProvider(script=[VALID_OUTPUT])
    with pytest.raises(ConfigurationError):
        await make_runner(stub).run(SUMMARY_FLOW, NOTES, model="acme/does-not-exist")
    assert len(stub.calls) == 0


@pytest.mark.asyncio
async def test_unknown_flow_name(make_runner):
    with pytest.raises(UnknownFlow):
        await make_runner(StubProvider(script=[VALID_OUTPUT])).run("noSuchFlow", NOTES)


@pytest.mark.asyncio
async def test_terminal_provider_error_is_not_retried(make_runner, fake_sleep):
    stub = StubProvider(script=[ProviderAuthError("stub", "HTTP 401: bad key", 401), VALID_OUTPUT])
    with pytest.raises(ProviderUnavailable) as ei:
        await make_runner(stub).run(SUMMARY_FLOW, NOTES)
    assert ei.value.attempts == 1
    assert len(stub.calls) == 1
    assert fake_sleep.delays == []
    assert ei.value.details()["retryable"] is False


@pytest.mark.asyncio
async def test_model_override_and_alias(make_runner):
    small = StubProvider(vendor="stub", script=[VALID_OUTPUT])
    other = StubProvider(vendor="other", script=[VALID_OUTPUT])
    runner = make_runner(small, other)
    result = await runner.run(SUMMARY_FLOW, NOTES, model="other/large")
    assert result.model == "other/large"
    assert other.calls[0].model == "large"
    assert small.calls == []
    assert (await runner.run(SUMMARY_FLOW, NOTES, model="small")).model == "stub/small"


@pytest.mark.asyncio
async def test_runner_default_model_used_when_flow_has_none(make_runner):
    spec = FlowSpec(
        name="noDefault",
        input_schema={"type": "object"},
        output_schema={"type": "object"},
        prompt_template="hi",
    )
    stub = StubProvider(script=["{}"])
    assert (await make_runner(stub).run(spec, {})).model == "stub/small"
    with pytest.raises(ConfigurationError):
        await make_runner(stub, default_model=None).run(spec, {})


@pytest.mark.asyncio
async def test_generation_params_override(make_runner):
    stub = StubProvider(script=[VALID_OUTPUT])
    runner = make_runner(stub)
    await runner.run(SUMMARY_FLOW, NOTES, params={"temperature": 0.9})
    assert stub.calls[0].params.temperature == 0.9
    assert stub.calls[0].params.max_output_tokens == SUMMARY_FLOW.params.max_output_tokens
    with pytest.raises(ConfigurationError):
        await runner.run(SUMMARY_FLOW, NOTES, params={"top_k": 3})


@pytest.mark.asyncio
async def test_template_needing_absent_optional_field_is_invalid_input(make_runner):
    spec = FlowSpec(
        name="needsGoal",
        input_schema={"type": "object", "properties": {"goal": {"type": "string"}}},
        output_schema={"type": "object"},
        prompt_template="Goal: {{goal}}",
        default_model="stub/small",
    )
    stub = StubProvider(script=["{}"])
    with pytest.raises(InvalidInput) as ei:
        await make_runner(stub).run(spec, {})
    assert ei.value.violations[0].field == "goal"
    assert stub.calls == []


@pytest.mark.asyncio
async def test_cancel_token_aborts_run(make_runner):
    token = CancelToken()

    def respond(req):
        token.cancel()
        return overloaded()

    stub = StubProvider(respond=respond)
    with pytest.raises(Cancelled) as ei:
        await make_runner(stub).run(SUMMARY_FLOW, NOTES, cancel=token)
    assert len(stub.calls) == 1
    assert ei.value.to_dict()["error"] == "Cancelled"


@pytest.mark.asyncio
async def test_concurrent_runs_are_independent(make_runner):
    def echo(req):
        notes = req.prompt.split("\n", 1)[1]
        return json.dumps({"summary": notes, "total": len(notes)})

    runner = make_runner(StubProvider(respond=echo))
    inputs = [{"investmentNotes": f"Fund {i}: {i * 1000} invested"} for i in range(8)]
    results = await asyncio.gather(*(runner.run(SUMMARY_FLOW, x) for x in inputs))
    assert [r.output["summary"] for r in results] == [x["investmentNotes"] for x in inputs]
    assert all(r.attempts == 1 for r in results)


def test_flow_spec_rejects_bad_template_and_schema():
    with pytest.raises(ConfigurationError):
        FlowSpec(name="bad", input_schema={"type": "object"}, output_schema={"type": "object"}, prompt_template="{% for x in items %}")
    with pytest.raises(ConfigurationError):
        FlowSpec(name="bad", input_schema={"type": 5}, output_schema={"type": "object"}, prompt_template="x")
    with pytest.raises(ConfigurationError):
        FlowSpec(name="", input_schema={}, output_schema={}, prompt_template="x")


def test_flow_spec_keeps_private_schema_copy():
    schema = {"type": "object", "required": ["a"]}
    spec = FlowSpec(name="copy", input_schema=schema, output_schema={"type": "object"}, prompt_template="x")
    schema["required"].append("b")
    assert spec.input_schema["required"] == ["a"]


@pytest.mark.asyncio
async def test_malformed_provider_body_is_retried(make_runner):
    bodies = [{"choices": []}, {"choices": [{"message": {"content": VALID_OUTPUT}}]}]
    seen = []

    def handler(request):
        seen.append(request)
        return httpx.Response(200, json=bodies[len(seen) - 1])

    provider = OpenAIProvider("k", transport=httpx.MockTransport(handler))
    result = await make_runner(provider).run(SUMMARY_FLOW, NOTES, model="openai/gpt-4o-mini")
    assert result.attempts == 2
    assert result.output["total"] == 8000
    assert len(seen) == 2


def test_error_summaries_count_attempts():
    cause = TransientProviderError("stub", "HTTP 503: overloaded", 503)
    assert "after 1 attempt:" in ProviderUnavailable(cause, 1).summary
    assert "after 1 attempt:" in OutputSchemaViolation([], 1).summary
    assert Cancelled(1).summary == "Generation cancelled after 1 attempt"
    assert Cancelled(2, "deadline exceeded").summary == "Generation deadline exceeded after 2 attempts"
