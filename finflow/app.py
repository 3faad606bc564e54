from __future__ import annotations
from typing import Any, Dict, List, Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from .errors import (
    Cancelled,
    ConfigurationError,
    FlowError,
    InvalidInput,
    OutputSchemaViolation,
    ProviderUnavailable,
    UnknownFlow,
)
from .flow import FlowRunner
from .settings import APP_VERSION, build_runner, configure_logging, get_settings, load_env_file

# most specific first
STATUS_BY_ERROR = [
    (InvalidInput, 422),
    (UnknownFlow, 404),
    (ConfigurationError, 400),
    (ProviderUnavailable, 502),
    (OutputSchemaViolation, 502),
    (Cancelled, 504),
]


def status_for(err: FlowError) -> int:
    for cls, status in STATUS_BY_ERROR:
        if isinstance(err, cls):
            return status
    return 500


class Health(BaseModel):
    status: str


class VersionInfo(BaseModel):
    version: str
    default_model: Optional[str] = None
    vendors: List[str]
    enabled_vendors: List[str]


class FlowInfo(BaseModel):
    name: str
    description: str
    default_model: Optional[str] = None


class RunFlowBody(BaseModel):
    input: Dict[str, Any]
    model: Optional[str] = None
    timeout: Optional[float] = None


class RunFlowResponse(BaseModel):
    flow: str
    model: Optional[str] = None
    attempts: int
    latency_ms: int
    output: Any


def create_app(runner: Optional[FlowRunner] = None) -> FastAPI:
    if runner is None:
        load_env_file()
        settings = get_settings()
        configure_logging(settings["LOG_LEVEL"])
        runner = build_runner(settings)

    app = FastAPI(title="FinFlow generation service", version=APP_VERSION)
    # CORS for the web app in local dev
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.state.runner = runner

    @app.exception_handler(FlowError)
    async def flow_error_handler(request: Request, exc: FlowError) -> JSONResponse:
        return JSONResponse(status_code=status_for(exc), content={"detail": exc.to_dict()})

    @app.get("/health", response_model=Health)
    async def health():
        return Health(status="ok")

    @app.get("/version", response_model=VersionInfo)
    async def version():
        r: FlowRunner = app.state.runner
        return VersionInfo(
            version=APP_VERSION,
            default_model=r.default_model,
            vendors=r.router.vendors,
            enabled_vendors=r.router.enabled_vendors,
        )

    @app.get("/flows", response_model=List[FlowInfo])
    async def list_flows():
        r: FlowRunner = app.state.runner
        if r.flows is None:
            return []
        out = []
        for name in r.flows.names():
            spec = r.flows.get(name)
            out.append(FlowInfo(name=name, description=spec.description, default_model=spec.default_model or r.default_model))
        return out

    @app.post("/flows/{name}/run", response_model=RunFlowResponse)
    async def run_flow(name: str, body: RunFlowBody):
        r: FlowRunner = app.state.runner
        result = await r.run(name, body.input, model=body.model, timeout=body.timeout)
        return RunFlowResponse(**result.to_dict())

    return app
