"""Entry point for `python -m form_builder` and the `form-builder` CLI script."""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
from collections.abc import Sequence
from pathlib import Path
from typing import Any

from form_builder.compiler import AppCompiler, write_files
from form_builder.errors import EventExecutionError
from form_builder.interpreter import execute_event
from form_builder.providers import create_provider_registry
from form_builder.settings import RuntimeSettings


def parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Compile form apps and run their events")
    parser.add_argument(
        "--log-level",
        default=None,
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        help="Logging verbosity (default: FORM_BUILDER_LOG_LEVEL or INFO)",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    compile_parser = subparsers.add_parser("compile", help="Validate an app definition and emit build artifacts")
    compile_parser.add_argument("app_file", type=Path, help="Path to the app definition JSON")
    compile_parser.add_argument("--out", type=Path, default=Path.cwd(), help="Directory artifacts are written under")

    run_parser = subparsers.add_parser("run-event", help="Execute one event of an app definition")
    run_parser.add_argument("app_file", type=Path, help="Path to the app definition JSON")
    run_parser.add_argument("event_id", help="Event id to execute")
    state_group = run_parser.add_mutually_exclusive_group()
    state_group.add_argument("--state", default=None, help="Form state as an inline JSON object")
    state_group.add_argument("--state-file", type=Path, default=None, help="Path to a JSON file holding form state")
    return parser.parse_args(argv)


def load_json_file(path: Path) -> Any:
    if not path.is_file():
        raise FileNotFoundError(f"Input file does not exist: {path}")
    return json.loads(path.read_text(encoding="utf-8"))


def load_state(*, state: str | None, state_file: Path | None) -> dict[str, Any]:
    payload = load_json_file(state_file) if state_file is not None else json.loads(state or "{}")
    if not isinstance(payload, dict):
        raise ValueError("state must be a JSON object")
    return payload


def _run_compile(args: argparse.Namespace, settings: RuntimeSettings) -> int:
    output = AppCompiler(settings).compile(load_json_file(args.app_file))
    for diagnostic in output.diagnostics:
        print(diagnostic.render())
    if not output.succeeded:
        return 1

    written = write_files(output.files, args.out)
    print(f"image_name={output.docker.image_name}")
    print(f"fingerprint={output.fingerprint}")
    print(f"generated {len(written)} files into {args.out}")
    return 0


def _run_event(args: argparse.Namespace, settings: RuntimeSettings) -> int:
    output = AppCompiler(settings).compile(load_json_file(args.app_file))
    if not output.succeeded or output.app is None:
        for diagnostic in output.diagnostics:
            print(diagnostic.render())
        return 1

    state = load_state(state=args.state, state_file=args.state_file)
    providers = create_provider_registry(settings)
    try:
        result = asyncio.run(execute_event(output.app, args.event_id, state, providers))
    except EventExecutionError as exc:
        logging.error("Event execution failed: %s", exc)
        return 1

    print(json.dumps(result.to_json_dict(), indent=2))
    return 0


def main(argv: Sequence[str] | None = None) -> int:
    args = parse_args(argv)
    try:
        settings = RuntimeSettings.from_env()
    except ValueError as exc:
        logging.basicConfig(level=logging.INFO)
        logging.error("Invalid configuration: %s", exc)
        return 1

    logging.basicConfig(
        level=getattr(logging, args.log_level or settings.log_level),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    try:
        if args.command == "compile":
            return _run_compile(args, settings)
        return _run_event(args, settings)
    except (OSError, ValueError) as exc:
        logging.error("Unable to load input: %s", exc)
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
