"""Build pydantic validators at run time from an app-defined output shape.

A shape is plain data, e.g.::

    {"sentiment": {"type": "string", "enum": ["positive", "neutral", "negative"]},
     "reply": {"type": "string", "minLength": 1}}

Each field descriptor becomes an annotated type; the shape as a whole becomes
a ``TypedDict`` wrapped in a ``TypeAdapter``, so arbitrary field names work and
validated output stays a plain ``dict``.
"""

from __future__ import annotations

from collections.abc import Callable, Mapping
from typing import Annotated, Any, Union

from pydantic import AfterValidator, StrictBool, StrictFloat, StrictInt, StrictStr, StringConstraints, TypeAdapter
from typing_extensions import TypedDict


def _one_of(allowed: list[str]) -> Callable[[str], str]:
    def check(value: str) -> str:
        if value not in allowed:
            raise ValueError(f"Expected one of: {', '.join(allowed)}")
        return value

    return check


def _string_type(rule: Mapping[str, Any]) -> Any:
    constraints: dict[str, int] = {}
    if isinstance(rule.get("minLength"), int):
        constraints["min_length"] = rule["minLength"]
    if isinstance(rule.get("maxLength"), int):
        constraints["max_length"] = rule["maxLength"]
    metadata: list[Any] = [StringConstraints(**constraints)] if constraints else []
    allowed = rule.get("enum")
    if isinstance(allowed, list) and allowed:
        metadata.append(AfterValidator(_one_of([str(item) for item in allowed])))
    if not metadata:
        return StrictStr
    return Annotated[(StrictStr, *metadata)]


def descriptor_to_type(rule: Any, *, name: str = "Field") -> Any:
    """Translate one field descriptor into a type pydantic can validate against."""
    if not isinstance(rule, Mapping):
        return Any
    kind = str(rule.get("type", "string"))
    if kind == "string":
        return _string_type(rule)
    if kind == "number":
        return Union[StrictInt, StrictFloat]
    if kind == "boolean":
        return StrictBool
    if kind == "object" and isinstance(rule.get("shape"), Mapping):
        return shape_to_typed_dict(rule["shape"], name=name)
    if kind == "array":
        return list[descriptor_to_type(rule.get("items"), name=f"{name}Item")]
    return Any


def shape_to_typed_dict(shape: Mapping[str, Any], *, name: str = "PromptOutput") -> type:
    fields = {
        key: descriptor_to_type(descriptor, name=f"{name}_{key}")
        for key, descriptor in shape.items()
    }
    return TypedDict(name, fields)  # type: ignore[operator]


def shape_to_validator(shape: Mapping[str, Any], *, name: str = "PromptOutput") -> TypeAdapter[Any]:
    return TypeAdapter(shape_to_typed_dict(shape, name=name))
