from __future__ import annotations

import logging
from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any, assert_never

from .errors import CyclicGraphError, EventExecutionError, StateValidationError, UnknownEventError, UnknownNodeError
from .graph import order_nodes
from .models import (
    ActionNode,
    AppDefinition,
    EventLog,
    EventStage,
    ExecuteEventResult,
    PromptTaskNode,
    TransformNode,
    ValidateNode,
)
from .orchestrator import execute_prompt_task
from .providers import LlmProvider
from .validation import OUTPUT_REFERENCE_RE

logger = logging.getLogger(__name__)


# -- Transform expressions --


@dataclass(frozen=True)
class OutputReference:
    """``[$<node_id>.output]``: a one-element list wrapping that node's output."""

    node_id: str


@dataclass(frozen=True)
class LiteralValue:
    """Any other expression string, passed through verbatim."""

    value: str


TransformExpression = OutputReference | LiteralValue


def parse_transform_expression(expression: str) -> TransformExpression:
    match = OUTPUT_REFERENCE_RE.match(expression)
    if match is None:
        return LiteralValue(expression)
    return OutputReference(match.group(1))


def evaluate_transform_expression(expression: TransformExpression, node_outputs: Mapping[str, Any]) -> Any:
    if isinstance(expression, OutputReference):
        if expression.node_id not in node_outputs:
            raise UnknownNodeError(f"Transform references node '{expression.node_id}' which produced no output.")
        return [node_outputs[expression.node_id]]
    if isinstance(expression, LiteralValue):
        return expression.value
    assert_never(expression)


# -- Execution --


@dataclass
class ExecutionContext:
    event_id: str
    state: Mapping[str, Any]
    providers: Mapping[str, LlmProvider]
    node_outputs: dict[str, Any] = field(default_factory=dict)
    state_patch: dict[str, Any] = field(default_factory=dict)
    logs: list[EventLog] = field(default_factory=list)

    def log(self, stage: EventStage, message: str) -> None:
        self.logs.append(
            EventLog(at=datetime.now(UTC).isoformat(), event_id=self.event_id, stage=stage, message=message)
        )


def _run_validate(node: ValidateNode, ctx: ExecutionContext) -> None:
    for key in node.input.state_keys:
        value = ctx.state.get(key)
        if value is None or value == "":
            raise StateValidationError(key)
    ctx.log("validate", f"Validated {len(node.input.state_keys)} state keys.")


async def _run_prompt_task(node: PromptTaskNode, ctx: ExecutionContext) -> None:
    spec = node.prompt_spec
    variables = {variable: ctx.state.get(variable) for variable in spec.variables}
    result = await execute_prompt_task(
        template=spec.template,
        variables=variables,
        output_schema=spec.output_schema,
        model_policy=spec.model_policy,
        providers=ctx.providers,
    )
    ctx.node_outputs[node.id] = result.output
    logger.debug("PromptTask '%s' provider meta: %s", node.id, result.provider_meta)
    ctx.log("prompt", f"PromptTask '{node.id}' executed via '{spec.model_policy.provider}'.")


def _run_transform(node: TransformNode, ctx: ExecutionContext) -> None:
    for target, expression in node.map_to_state.items():
        ctx.state_patch[target] = evaluate_transform_expression(
            parse_transform_expression(expression), ctx.node_outputs
        )
    ctx.log("transform", f"Mapped {len(node.map_to_state)} outputs into state patch.")


async def _run_node(node: ActionNode, ctx: ExecutionContext) -> None:
    if isinstance(node, ValidateNode):
        _run_validate(node, ctx)
    elif isinstance(node, PromptTaskNode):
        await _run_prompt_task(node, ctx)
    elif isinstance(node, TransformNode):
        _run_transform(node, ctx)
    else:
        assert_never(node)


async def execute_event(
    app: AppDefinition,
    event_id: str,
    state: Mapping[str, Any],
    providers: Mapping[str, LlmProvider],
) -> ExecuteEventResult:
    """Execute one event's action graph against ``state``.

    ``app`` must already be normalized to IR: prompt variables are read from
    ``state`` by their canonical key and aliases are never re-resolved here.
    Nodes run one at a time in topological order. The first failure aborts the
    run and is raised with event/node context; no partial patch is returned.
    """
    event = app.find_event(event_id)
    if event is None:
        raise UnknownEventError(f"Unknown event '{event_id}'.", event_id=event_id)

    graph = event.action_graph
    ordering = order_nodes(graph.node_ids, graph.edge_pairs())
    if not ordering.is_acyclic:
        raise CyclicGraphError("Graph contains a cycle; cannot execute event.", event_id=event_id)

    nodes = {node.id: node for node in graph.nodes}
    ctx = ExecutionContext(event_id=event_id, state=state, providers=providers)
    for node_id in ordering.order:
        node = nodes.get(node_id)
        if node is None:
            raise UnknownNodeError(f"Node '{node_id}' not found during execution.", event_id=event_id)
        try:
            await _run_node(node, ctx)
        except EventExecutionError as exc:
            exc.with_context(event_id=event_id, node_id=node_id)
            logger.info("Event '%s' aborted at node '%s': %s", event_id, node_id, exc.message)
            raise

    logger.info("Event '%s' executed %d node(s)", event_id, len(ordering.order))
    return ExecuteEventResult(state_patch=ctx.state_patch, logs=ctx.logs)
