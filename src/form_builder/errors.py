from __future__ import annotations

from typing import Any


class EventExecutionError(RuntimeError):
    """Fatal failure while executing one event. The whole execution is a no-op on state."""

    def __init__(self, message: str, *, event_id: str | None = None, node_id: str | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.event_id = event_id
        self.node_id = node_id

    def with_context(self, *, event_id: str | None = None, node_id: str | None = None) -> "EventExecutionError":
        if self.event_id is None:
            self.event_id = event_id
        if self.node_id is None:
            self.node_id = node_id
        return self

    def __str__(self) -> str:
        if self.event_id and self.node_id:
            return f"{self.message} (event '{self.event_id}', node '{self.node_id}')"
        if self.event_id:
            return f"{self.message} (event '{self.event_id}')"
        return self.message


class UnknownEventError(EventExecutionError):
    pass


class CyclicGraphError(EventExecutionError):
    pass


class UnknownNodeError(EventExecutionError):
    pass


class StateValidationError(EventExecutionError):
    def __init__(self, state_key: str, **context: Any) -> None:
        super().__init__(f"Validation failed: state key '{state_key}' is empty.", **context)
        self.state_key = state_key


class MissingTemplateVariableError(EventExecutionError):
    def __init__(self, variable: str, **context: Any) -> None:
        super().__init__(f"Missing template variable '{variable}'.", **context)
        self.variable = variable


class UnknownProviderError(EventExecutionError):
    def __init__(self, provider: str, **context: Any) -> None:
        super().__init__(f"Unknown provider '{provider}'.", **context)
        self.provider = provider


class ProviderResponseError(EventExecutionError):
    """Provider text could not be parsed as JSON."""

    def __init__(self, detail: str, raw_text: str, **context: Any) -> None:
        super().__init__(f"Provider response is not valid JSON: {detail}", **context)
        self.raw_text = raw_text


class OutputSchemaError(EventExecutionError):
    """Parsed provider JSON does not match the PromptTask's declared output shape."""

    def __init__(self, detail: str, errors: list[dict[str, Any]], payload: Any, **context: Any) -> None:
        super().__init__(f"Provider output does not match output schema: {detail}", **context)
        self.errors = errors
        self.payload = payload
