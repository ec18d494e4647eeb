from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Literal

from .canonical import fingerprint, to_canonical_json
from .ir import normalize_to_ir
from .models import AppDefinition, ButtonComponent, CompileOutput, DockerImage, GeneratedFile
from .settings import RuntimeSettings
from .validation import parse_and_validate

logger = logging.getLogger(__name__)

CompileTarget = Literal["python-runtime"]


@dataclass(frozen=True)
class CompilePlan:
    app: AppDefinition
    target: CompileTarget
    out_root: str


def docker_image_name(app_id: str) -> str:
    return f"app-{app_id}"


def build_compile_plan(app: AppDefinition, target: CompileTarget, settings: RuntimeSettings) -> CompilePlan:
    return CompilePlan(app=app, target=target, out_root=f"{settings.out_root}/{app.app_id}")


def _pretty(value: Any) -> str:
    # Round-trip through the canonical form so key order is stable across runs.
    return json.dumps(json.loads(to_canonical_json(value)), indent=2) + "\n"


def _event_manifest(app: AppDefinition) -> dict[str, Any]:
    buttons = {
        component.on_click: component.id
        for component in app.components
        if isinstance(component, ButtonComponent) and component.on_click
    }
    return {
        "appId": app.app_id,
        "eventIds": [event.id for event in app.events],
        "triggers": [
            {
                "eventId": event.id,
                "componentId": event.trigger.component_id,
                "event": event.trigger.event,
                "boundButton": buttons.get(event.id),
            }
            for event in app.events
        ],
    }


def generate_files(plan: CompilePlan) -> list[GeneratedFile]:
    app = plan.app
    ui_schema = {
        "appId": app.app_id,
        "version": app.version,
        "ui": app.ui,
        "stateModel": app.state_model,
    }
    return [
        GeneratedFile(path=f"{plan.out_root}/app-definition.json", content=_pretty(app)),
        GeneratedFile(path=f"{plan.out_root}/ui-schema.json", content=_pretty(ui_schema)),
        GeneratedFile(path=f"{plan.out_root}/event-manifest.json", content=_pretty(_event_manifest(app))),
    ]


class AppCompiler:
    """Validate, normalize and emit build artifacts for one application description."""

    def __init__(self, settings: RuntimeSettings | None = None) -> None:
        self.settings = settings if settings is not None else RuntimeSettings.from_env()

    def compile(self, raw_app: Any, target: CompileTarget = "python-runtime") -> CompileOutput:
        result = parse_and_validate(raw_app)
        if not result.ok or result.app is None:
            for diagnostic in result.errors:
                logger.warning("Compile blocked: %s", diagnostic.render())
            return CompileOutput(diagnostics=result.diagnostics)

        ir = normalize_to_ir(result.app)
        plan = build_compile_plan(ir, target, self.settings)
        files = generate_files(plan)
        logger.info("Compiled app '%s' into %d file(s)", ir.app_id, len(files))
        return CompileOutput(
            files=files,
            diagnostics=result.diagnostics,
            docker=DockerImage(image_name=docker_image_name(ir.app_id), tags=[self.settings.image_tag]),
            app=ir,
            fingerprint=fingerprint(ir),
        )


def write_files(files: list[GeneratedFile], root: Path) -> list[Path]:
    written: list[Path] = []
    for generated in files:
        path = root / generated.path
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(generated.content, encoding="utf-8")
        written.append(path)
    return written
