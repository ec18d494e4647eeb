from __future__ import annotations

import json
import logging
import re
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any

from pydantic import ValidationError

from .aliases import VAR_TOKEN_RE
from .errors import MissingTemplateVariableError, OutputSchemaError, ProviderResponseError, UnknownProviderError
from .models import ModelPolicy, PromptOutputSchema
from .providers import LlmProvider, ProviderRequest
from .shapes import shape_to_validator

logger = logging.getLogger(__name__)

SYSTEM_INSTRUCTION = "You are a strict JSON API.\nReturn ONLY valid JSON."


@dataclass(frozen=True)
class PromptExecutionResult:
    output: Any
    raw_text: str
    provider_meta: dict[str, Any] = field(default_factory=dict)


def interpolate_template(template: str, variables: Mapping[str, Any]) -> str:
    """Substitute every ``{{key}}``; strings go in verbatim, anything else as JSON text."""

    def substitute(match: re.Match[str]) -> str:
        key = match.group(1).strip()
        if key not in variables:
            raise MissingTemplateVariableError(key)
        value = variables[key]
        if isinstance(value, str):
            return value
        return json.dumps(value)

    return VAR_TOKEN_RE.sub(substitute, template)


def build_prompt(interpolated: str) -> str:
    return f"{SYSTEM_INSTRUCTION}\n{interpolated}"


def _reject_constant(name: str) -> Any:
    raise ValueError(f"{name} is not a valid JSON value")


def safe_json_parse(text: str) -> Any:
    """Parse strict JSON; the NaN and Infinity extensions of ``json`` are rejected."""
    try:
        return json.loads(text, parse_constant=_reject_constant)
    except ValueError as exc:
        raise ProviderResponseError(str(exc), raw_text=text) from exc


def validate_output(payload: Any, output_schema: PromptOutputSchema) -> Any:
    validator = shape_to_validator(output_schema.shape)
    try:
        return validator.validate_python(payload)
    except ValidationError as exc:
        raise OutputSchemaError(str(exc), errors=exc.errors(include_url=False), payload=payload) from exc


async def execute_prompt_task(
    *,
    template: str,
    variables: Mapping[str, Any],
    output_schema: PromptOutputSchema,
    model_policy: ModelPolicy,
    providers: Mapping[str, LlmProvider],
) -> PromptExecutionResult:
    """Run one prompt against the provider named by ``model_policy``.

    Raises:
        MissingTemplateVariableError: A template token has no value.
        UnknownProviderError: The policy names a provider absent from ``providers``.
        ProviderResponseError: The provider did not return valid JSON.
        OutputSchemaError: The JSON does not satisfy the declared output shape.
    """
    interpolated = interpolate_template(template, variables)
    provider = providers.get(model_policy.provider)
    if provider is None:
        raise UnknownProviderError(model_policy.provider)

    request = ProviderRequest(
        prompt=build_prompt(interpolated),
        model=model_policy.model,
        temperature=model_policy.temperature if model_policy.temperature is not None else 0.0,
    )
    response = await provider.execute(request)
    logger.debug("Provider '%s' returned %d chars", model_policy.provider, len(response.text))

    payload = safe_json_parse(response.text)
    output = validate_output(payload, output_schema)
    return PromptExecutionResult(output=output, raw_text=response.text, provider_meta=dict(response.meta))
