from __future__ import annotations
import asyncio
import copy
import enum
import logging
import random
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple, Union, TYPE_CHECKING

from .errors import ConfigurationError, InvalidInput, OutputSchemaViolation, ProviderUnavailable
from .providers.registry import ProviderRegistry
from .providers.types import GenerationParams, ProviderHandle, ProviderResponse
from .retry import CancelToken, RetryError, RetryPolicy, execute
from .schemas import SchemaValidator, Violation, validate_output
from .templates import TemplateError, compile_template, render

if TYPE_CHECKING:
    from .catalog import FlowRegistry

logger = logging.getLogger(__name__)


class FlowState(str, enum.Enum):
    PENDING = "pending"
    INPUT_VALIDATED = "input_validated"
    PROMPT_RENDERED = "prompt_rendered"
    DISPATCHED = "dispatched"
    RETRYING = "retrying"
    OUTPUT_VALIDATED = "output_validated"
    COMPLETE = "complete"
    FAILED = "failed"


@dataclass(frozen=True)
class FlowSpec:
    """Definition of one generation operation; built once, shared by all runs."""

    name: str
    input_schema: Dict[str, Any]
    output_schema: Dict[str, Any]
    prompt_template: str
    default_model: Optional[str] = None
    params: GenerationParams = field(default_factory=GenerationParams)
    # Returns a finished output for inputs that need no model call, else None.
    short_circuit: Optional[Callable[[Dict[str, Any]], Optional[Dict[str, Any]]]] = None
    # Extra template fields derived from validated input (labels, lookups).
    template_context: Optional[Callable[[Dict[str, Any]], Dict[str, Any]]] = None
    description: str = ""
    input_validator: SchemaValidator = field(init=False, repr=False, compare=False)
    output_validator: SchemaValidator = field(init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        if not self.name:
            raise ConfigurationError("Flow name must not be empty")
        # private copies so later mutation of the caller's dicts has no effect
        object.__setattr__(self, "input_schema", copy.deepcopy(self.input_schema))
        object.__setattr__(self, "output_schema", copy.deepcopy(self.output_schema))
        object.__setattr__(self, "input_validator", SchemaValidator(self.input_schema))
        object.__setattr__(self, "output_validator", SchemaValidator(self.output_schema))
        try:
            compile_template(self.prompt_template)
        except TemplateError as e:
            raise ConfigurationError(f"Flow '{self.name}' has an invalid prompt template: {e}") from e


@dataclass(frozen=True)
class GenerationRequest:
    flow: str
    input: Dict[str, Any]
    model_id: str
    prompt: str
    params: GenerationParams


@dataclass(frozen=True)
class FlowResult:
    output: Any
    model: Optional[str]
    attempts: int
    flow: str
    latency_ms: int = 0
    states: Tuple[FlowState, ...] = ()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "flow": self.flow,
            "model": self.model,
            "attempts": self.attempts,
            "latency_ms": self.latency_ms,
            "output": self.output,
        }


class MalformedOutput(Exception):
    """The provider answered but the answer does not fit the output schema."""

    retryable = True

    def __init__(self, violations: List[Violation]) -> None:
        super().__init__("output failed validation: " + ", ".join(f"{v.field or '<root>'} ({v.reason})" for v in violations))
        self.violations = violations


class FlowRunner:
    def __init__(
        self,
        router: ProviderRegistry,
        policy: RetryPolicy = RetryPolicy(),
        *,
        flows: Optional["FlowRegistry"] = None,
        default_model: Optional[str] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        rand: Callable[[], float] = random.random,
    ) -> None:
        self.router = router
        self.policy = policy
        self.flows = flows
        self.default_model = default_model
        self._sleep = sleep
        self._rand = rand

    def _flow(self, flow: Union[FlowSpec, str]) -> FlowSpec:
        if isinstance(flow, FlowSpec):
            return flow
        if self.flows is None:
            raise ConfigurationError(f"No flow registry configured; cannot look up '{flow}'")
        return self.flows.get(flow)

    def prepare(self, spec: FlowSpec, data: Dict[str, Any], model: Optional[str] = None,
                params: Optional[Dict[str, Any]] = None) -> Tuple[GenerationRequest, ProviderHandle]:
        """Render the prompt and resolve the provider for already validated input."""
        fields = data
        if spec.template_context is not None:
            fields = {**data, **spec.template_context(data)}
        try:
            prompt = render(spec.prompt_template, fields)
        except TemplateError as e:
            raise InvalidInput([Violation(e.path or "", "missing", str(e))], flow=spec.name) from e
        model_id = model or spec.default_model or self.default_model
        if not model_id:
            raise ConfigurationError(f"No model given for flow '{spec.name}' and no default configured")
        handle = self.router.resolve(model_id)
        try:
            merged = spec.params.merged(params)
        except TypeError as e:
            raise ConfigurationError(f"Unknown generation parameter: {e}") from e
        req = GenerationRequest(spec.name, data, handle.model_id, prompt, merged)
        return req, handle

    async def run(
        self,
        flow: Union[FlowSpec, str],
        raw_input: Any,
        *,
        model: Optional[str] = None,
        params: Optional[Dict[str, Any]] = None,
        cancel: Optional[CancelToken] = None,
        timeout: Optional[float] = None,
    ) -> FlowResult:
        spec = self._flow(flow)
        states: List[FlowState] = [FlowState.PENDING]

        checked = spec.input_validator.validate(raw_input)
        if not checked.ok:
            logger.info("flow %s rejected input: %d violation(s)", spec.name, len(checked.violations))
            raise InvalidInput(checked.violations, flow=spec.name)
        data = checked.value
        states.append(FlowState.INPUT_VALIDATED)

        if spec.short_circuit is not None:
            canned = spec.short_circuit(data)
            if canned is not None:
                result = spec.output_validator.validate(canned)
                if not result.ok:
                    raise ConfigurationError(f"Flow '{spec.name}' short-circuit output does not match its output schema")
                states += [FlowState.OUTPUT_VALIDATED, FlowState.COMPLETE]
                logger.info("flow %s answered without a model call", spec.name)
                return FlowResult(result.value, None, 0, spec.name, 0, tuple(states))

        req, handle = self.prepare(spec, data, model, params)
        states.append(FlowState.PROMPT_RENDERED)

        deadline = asyncio.get_running_loop().time() + timeout if timeout is not None else None
        attempts = 0
        last: Dict[str, ProviderResponse] = {}

        async def attempt() -> Any:
            nonlocal attempts
            attempts += 1
            states.append(FlowState.DISPATCHED if attempts == 1 else FlowState.RETRYING)
            resp = await handle.generate(req.prompt, req.params)
            checked_out = validate_output(resp.content, spec.output_validator)
            if not checked_out.ok:
                raise MalformedOutput(checked_out.violations)
            last["response"] = resp
            return checked_out.value

        logger.info("flow %s dispatched to %s", spec.name, req.model_id)
        try:
            output = await execute(
                attempt,
                self.policy,
                cancel=cancel,
                deadline=deadline,
                sleep=self._sleep,
                rand=self._rand,
                label=f"flow {spec.name} ({req.model_id})",
            )
        except RetryError as e:
            states.append(FlowState.FAILED)
            if isinstance(e.last_error, MalformedOutput):
                raise OutputSchemaViolation(e.last_error.violations, e.attempts, model=req.model_id) from e.last_error
            raise ProviderUnavailable(e.last_error, e.attempts, model=req.model_id) from e.last_error

        states += [FlowState.OUTPUT_VALIDATED, FlowState.COMPLETE]
        latency = last["response"].latency_ms
        logger.info("flow %s completed by %s in %d attempt(s)", spec.name, req.model_id, attempts)
        return FlowResult(output, req.model_id, attempts, spec.name, latency, tuple(states))
