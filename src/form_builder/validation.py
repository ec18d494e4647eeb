from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import Any

from pydantic import ValidationError

from .aliases import build_alias_map, canonical_var, collect_template_tokens
from .graph import order_nodes
from .models import (
    AppDefinition,
    ButtonComponent,
    DataTableComponent,
    Diagnostic,
    DiagnosticCode,
    EventDefinition,
    PromptTaskNode,
    Severity,
    TextAreaComponent,
    TransformNode,
)

logger = logging.getLogger(__name__)

OUTPUT_REFERENCE_RE = re.compile(r"^\[\$(.+?)\.output\]$")


@dataclass
class ValidationResult:
    app: AppDefinition | None
    diagnostics: list[Diagnostic] = field(default_factory=list)

    @property
    def errors(self) -> list[Diagnostic]:
        return [item for item in self.diagnostics if item.is_error]

    @property
    def warnings(self) -> list[Diagnostic]:
        return [item for item in self.diagnostics if not item.is_error]

    @property
    def ok(self) -> bool:
        return self.app is not None and not self.errors


def _error(code: DiagnosticCode, path: str, message: str) -> Diagnostic:
    return Diagnostic(code=code, severity=Severity.ERROR, path=path, message=message)


def _warning(code: DiagnosticCode, path: str, message: str) -> Diagnostic:
    return Diagnostic(code=code, severity=Severity.WARNING, path=path, message=message)


def _schema_diagnostics(exc: ValidationError) -> list[Diagnostic]:
    return [
        _error(
            DiagnosticCode.SCHEMA_VALIDATION_ERROR,
            ".".join(str(part) for part in issue["loc"]),
            issue["msg"],
        )
        for issue in exc.errors()
    ]


def _check_components(app: AppDefinition, diagnostics: list[Diagnostic]) -> None:
    component_ids: set[str] = set()
    state_keys = set(app.state_model)
    ui_state_key_owners: dict[str, str] = {}
    trigger_event_owners: dict[str, str] = {}

    for component in app.components:
        c_path = f"ui.components.{component.id}"
        if component.id in component_ids:
            diagnostics.append(
                _error(DiagnosticCode.DUPLICATE_COMPONENT_ID, c_path, f"Duplicate component id '{component.id}'.")
            )
        component_ids.add(component.id)

        if isinstance(component, (TextAreaComponent, DataTableComponent)):
            if isinstance(component, TextAreaComponent):
                key, key_field = component.state_key, "stateKey"
            else:
                key, key_field = component.data_key, "dataKey"
            key_path = f"{c_path}.{key_field}"

            if key not in state_keys:
                diagnostics.append(
                    _error(
                        DiagnosticCode.MISSING_STATE_KEY,
                        key_path,
                        f"{component.type} component '{component.id}' references missing state key '{key}'.",
                    )
                )

            owner = ui_state_key_owners.get(key)
            if owner is not None and owner != component.id:
                diagnostics.append(
                    _error(
                        DiagnosticCode.DUPLICATE_UI_STATE_KEY,
                        key_path,
                        f"State key '{key}' is used by both '{owner}' and '{component.id}'.",
                    )
                )
            else:
                ui_state_key_owners[key] = component.id

        if isinstance(component, ButtonComponent):
            event_id = component.on_click
            if event_id is None:
                continue
            owner = trigger_event_owners.get(event_id)
            if owner is not None and owner != component.id:
                diagnostics.append(
                    _error(
                        DiagnosticCode.DUPLICATE_TRIGGER_EVENT_ID,
                        f"{c_path}.events.onClick",
                        f"Button event id '{event_id}' is used by both '{owner}' and '{component.id}'.",
                    )
                )
            else:
                trigger_event_owners[event_id] = component.id


def _check_graph(event: EventDefinition, diagnostics: list[Diagnostic]) -> None:
    g_path = f"events.{event.id}.actionGraph"
    seen: set[str] = set()
    for node in event.action_graph.nodes:
        if node.id in seen:
            diagnostics.append(
                _error(
                    DiagnosticCode.GRAPH_DUPLICATE_NODE_ID,
                    f"{g_path}.nodes.{node.id}",
                    f"Duplicate action node id '{node.id}' in event '{event.id}'.",
                )
            )
        seen.add(node.id)

    result = order_nodes(event.action_graph.node_ids, event.action_graph.edge_pairs())
    for source, target in result.unknown_edges:
        diagnostics.append(
            _error(
                DiagnosticCode.GRAPH_UNKNOWN_EDGE_NODE,
                f"{g_path}.edges",
                f"Edge references unknown node(s) '{source}' -> '{target}' in event '{event.id}'.",
            )
        )
    if not result.is_acyclic:
        diagnostics.append(
            _error(
                DiagnosticCode.GRAPH_CYCLE_DETECTED,
                g_path,
                f"Action graph for event '{event.id}' contains a cycle.",
            )
        )


def _check_prompt_task(
    event: EventDefinition,
    node: PromptTaskNode,
    aliases: dict[str, str],
    state_keys: set[str],
    diagnostics: list[Diagnostic],
) -> None:
    n_path = f"events.{event.id}.actionGraph.nodes.{node.id}.promptSpec"
    spec = node.prompt_spec

    for token in collect_template_tokens(spec.template):
        if canonical_var(token, aliases) not in state_keys:
            diagnostics.append(
                _error(
                    DiagnosticCode.UNKNOWN_PROMPT_VARIABLE,
                    f"{n_path}.template",
                    f"Prompt variable '{{{{{token}}}}}' does not map to a known state key.",
                )
            )

    for variable in spec.variables:
        if canonical_var(variable, aliases) not in state_keys:
            diagnostics.append(
                _error(
                    DiagnosticCode.UNKNOWN_PROMPT_VARIABLE,
                    f"{n_path}.variables",
                    f"Prompt variable '{variable}' does not map to a known state key.",
                )
            )

    declared = {canonical_var(variable, aliases) for variable in spec.variables}
    for token in collect_template_tokens(spec.template):
        canonical = canonical_var(token, aliases)
        if canonical in state_keys and canonical not in declared:
            diagnostics.append(
                _error(
                    DiagnosticCode.PROMPT_TOKEN_NOT_DECLARED,
                    f"{n_path}.template",
                    f"Prompt token '{{{{{token}}}}}' is not listed in promptSpec.variables.",
                )
            )


def _check_transform(
    event: EventDefinition,
    node: TransformNode,
    state_keys: set[str],
    diagnostics: list[Diagnostic],
) -> None:
    n_path = f"events.{event.id}.actionGraph.nodes.{node.id}.mapToState"
    node_ids = set(event.action_graph.node_ids)
    for target, expression in node.map_to_state.items():
        if target not in state_keys:
            diagnostics.append(
                _error(
                    DiagnosticCode.TRANSFORM_UNKNOWN_STATE_KEY,
                    f"{n_path}.{target}",
                    f"Transform '{node.id}' maps into unknown state key '{target}'.",
                )
            )
        match = OUTPUT_REFERENCE_RE.match(expression)
        if match and match.group(1) not in node_ids:
            diagnostics.append(
                _error(
                    DiagnosticCode.TRANSFORM_UNKNOWN_NODE,
                    f"{n_path}.{target}",
                    f"Transform '{node.id}' references unknown node '{match.group(1)}'.",
                )
            )


def _check_events(app: AppDefinition, diagnostics: list[Diagnostic]) -> None:
    components = {component.id: component for component in app.components}
    state_keys = set(app.state_model)
    aliases = build_alias_map(app.components)
    event_ids: set[str] = set()

    for event in app.events:
        e_path = f"events.{event.id}"
        if event.id in event_ids:
            diagnostics.append(_error(DiagnosticCode.DUPLICATE_EVENT_ID, e_path, f"Duplicate event id '{event.id}'."))
        event_ids.add(event.id)

        trigger_id = event.trigger.component_id
        trigger = components.get(trigger_id)
        if trigger is None:
            diagnostics.append(
                _error(
                    DiagnosticCode.UNKNOWN_TRIGGER_COMPONENT,
                    f"{e_path}.trigger.componentId",
                    f"Event '{event.id}' references unknown trigger component '{trigger_id}'.",
                )
            )
        elif not isinstance(trigger, ButtonComponent):
            diagnostics.append(
                _warning(
                    DiagnosticCode.TRIGGER_COMPONENT_NOT_BUTTON,
                    f"{e_path}.trigger.componentId",
                    f"Event '{event.id}' is triggered by {trigger.type} '{trigger_id}', not a Button.",
                )
            )

        _check_graph(event, diagnostics)

        for node in event.action_graph.nodes:
            if isinstance(node, PromptTaskNode):
                _check_prompt_task(event, node, aliases, state_keys, diagnostics)
            elif isinstance(node, TransformNode):
                _check_transform(event, node, state_keys, diagnostics)


def parse_and_validate(raw: Any) -> ValidationResult:
    """Parse an untyped JSON value into an AppDefinition and run every structural check.

    Schema failures short-circuit: one SCHEMA_VALIDATION_ERROR per schema issue
    and no app. Otherwise every cross-reference check runs and all findings
    accumulate; the caller decides success by looking for error severity.
    """
    try:
        app = AppDefinition.model_validate(raw)
    except ValidationError as exc:
        schema_issues = _schema_diagnostics(exc)
        logger.debug("App definition failed schema validation with %d issue(s)", len(schema_issues))
        return ValidationResult(app=None, diagnostics=schema_issues)

    diagnostics: list[Diagnostic] = []
    _check_components(app, diagnostics)
    _check_events(app, diagnostics)
    logger.debug("Validated app '%s': %d diagnostic(s)", app.app_id, len(diagnostics))
    return ValidationResult(app=app, diagnostics=diagnostics)
