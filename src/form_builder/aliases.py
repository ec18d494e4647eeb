"""Alias canonicalization for prompt variables.

Users reference form inputs in prompt templates by whatever name they see in
the editor: the component label ("Customer Complaint"), the raw state key
("customerComplaint"), or a loose spelling of either ("customer_complaint ").
Every one of those resolves to the TextArea's ``stateKey``, which is the only
name the state model and the interpreter understand.
"""

from __future__ import annotations

import re
from collections.abc import Iterable, Mapping

from .models import TextAreaComponent

VAR_TOKEN_RE = re.compile(r"{{\s*([^}]+?)\s*}}")
_NON_ALNUM_RE = re.compile(r"[^a-z0-9]+")
_WHITESPACE_RE = re.compile(r"\s+")


def normalize_key(text: str) -> str:
    lowered = text.strip().lower()
    spaced = _NON_ALNUM_RE.sub(" ", lowered).strip()
    return _WHITESPACE_RE.sub("", spaced)


def build_alias_map(components: Iterable[object]) -> dict[str, str]:
    """Map raw and normalized labels/state keys of TextArea components to their state key.

    Only TextArea components contribute entries; buttons and tables carry no
    free-form input a prompt could reference. When two components produce the
    same alias, raw state keys beat raw labels, which beat normalized forms,
    and ties fall to the component id that sorts last. The result therefore
    does not depend on the order components were declared in.
    """
    text_areas = sorted(
        (component for component in components if isinstance(component, TextAreaComponent)),
        key=lambda component: component.id,
    )
    aliases: dict[str, str] = {}
    for component in text_areas:
        aliases[normalize_key(component.label)] = component.state_key
    for component in text_areas:
        aliases[normalize_key(component.state_key)] = component.state_key
    for component in text_areas:
        aliases[component.label] = component.state_key
    for component in text_areas:
        aliases[component.state_key] = component.state_key
    return aliases


def canonical_var(raw: str, aliases: Mapping[str, str]) -> str:
    """Resolve ``raw`` to a canonical key; unresolved tokens come back unchanged."""
    if raw in aliases:
        return aliases[raw]
    normalized = normalize_key(raw)
    if normalized in aliases:
        return aliases[normalized]
    return raw


def collect_template_tokens(template: str) -> list[str]:
    return [match.group(1).strip() for match in VAR_TOKEN_RE.finditer(template) if match.group(1).strip()]


def rewrite_template(template: str, aliases: Mapping[str, str]) -> str:
    return VAR_TOKEN_RE.sub(lambda match: "{{" + canonical_var(match.group(1).strip(), aliases) + "}}", template)
