from __future__ import annotations

from .aliases import build_alias_map, canonical_var, rewrite_template
from .models import AppDefinition, PromptTaskNode


def normalize_to_ir(app: AppDefinition) -> AppDefinition:
    """Return a copy of ``app`` whose prompt templates and variables use canonical state keys.

    Tokens that do not resolve are left as written. The input is not mutated
    and normalizing already-canonical input is a no-op.
    """
    aliases = build_alias_map(app.components)
    events = []
    for event in app.events:
        nodes = []
        for node in event.action_graph.nodes:
            if isinstance(node, PromptTaskNode):
                spec = node.prompt_spec
                node = node.model_copy(
                    update={
                        "prompt_spec": spec.model_copy(
                            update={
                                "template": rewrite_template(spec.template, aliases),
                                "variables": [canonical_var(variable, aliases) for variable in spec.variables],
                            }
                        )
                    }
                )
            nodes.append(node)
        graph = event.action_graph.model_copy(update={"nodes": nodes})
        events.append(event.model_copy(update={"action_graph": graph}))
    return app.model_copy(update={"events": events})
