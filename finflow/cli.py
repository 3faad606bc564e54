from __future__ import annotations
import argparse
import asyncio
import json
import sys
from pathlib import Path
from typing import List, Optional

from .errors import ConfigurationError, FlowError, InvalidInput
from .flow import FlowRunner
from .settings import build_runner, configure_logging, get_settings, load_env_file

EXIT_OK = 0
EXIT_USAGE = 2  # bad input or configuration
EXIT_REMOTE = 3  # provider failed, output invalid, cancelled


def _read_input(source: str) -> object:
    text = sys.stdin.read() if source == "-" else Path(source).read_text(encoding="utf-8")
    return json.loads(text)


def cmd_list(runner: FlowRunner) -> int:
    if runner.flows is None:
        return EXIT_OK
    for name in runner.flows.names():
        spec = runner.flows.get(name)
        print(f"{name}\t{spec.default_model or runner.default_model}\t{spec.description}")
    return EXIT_OK


def cmd_run(runner: FlowRunner, flow: str, source: str, model: Optional[str], timeout: Optional[float]) -> int:
    try:
        data = _read_input(source)
    except (OSError, ValueError) as e:
        print(f"Cannot read input: {e}", file=sys.stderr)
        return EXIT_USAGE
    try:
        result = asyncio.run(runner.run(flow, data, model=model, timeout=timeout))
    except FlowError as e:
        print(json.dumps(e.to_dict(), indent=2), file=sys.stderr)
        return EXIT_USAGE if isinstance(e, (InvalidInput, ConfigurationError)) else EXIT_REMOTE
    print(json.dumps(result.to_dict(), indent=2, ensure_ascii=False))
    return EXIT_OK


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="finflow", description="Run structured generation flows")
    p.add_argument("--log-level", default=None, help="override FINFLOW_LOG_LEVEL")
    sub = p.add_subparsers(dest="cmd", required=True)

    sub.add_parser("list", help="list available flows")

    run = sub.add_parser("run", help="run one flow and print the result as JSON")
    run.add_argument("flow")
    run.add_argument("--input", "-i", default="-", help="JSON input file, or - for stdin")
    run.add_argument("--model", "-m", default=None, help="<vendor>/<model> override")
    run.add_argument("--timeout", type=float, default=None, help="overall deadline in seconds")
    return p


def main(argv: Optional[List[str]] = None, runner: Optional[FlowRunner] = None) -> int:
    args = build_parser().parse_args(argv)
    load_env_file()
    try:
        settings = get_settings()
        configure_logging(args.log_level or settings["LOG_LEVEL"])
        runner = runner or build_runner(settings)
    except ConfigurationError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        return EXIT_USAGE
    if args.cmd == "list":
        return cmd_list(runner)
    return cmd_run(runner, args.flow, args.input, args.model, args.timeout)


if __name__ == "__main__":
    raise SystemExit(main())
