from importlib.metadata import version

from .aliases import build_alias_map, canonical_var, collect_template_tokens, normalize_key
from .canonical import fingerprint, to_canonical_json
from .compiler import AppCompiler, CompilePlan, docker_image_name, generate_files, write_files
from .errors import (
    CyclicGraphError,
    EventExecutionError,
    MissingTemplateVariableError,
    OutputSchemaError,
    ProviderResponseError,
    StateValidationError,
    UnknownEventError,
    UnknownNodeError,
    UnknownProviderError,
)
from .graph import GraphOrder, order_nodes, topological_sort
from .interpreter import execute_event
from .ir import normalize_to_ir
from .models import (
    AppDefinition,
    CompileOutput,
    Diagnostic,
    DiagnosticCode,
    EventLog,
    ExecuteEventResult,
    Severity,
)
from .orchestrator import PromptExecutionResult, execute_prompt_task, interpolate_template
from .providers import LlmProvider, MockProvider, ProviderRequest, ProviderResponse, create_provider_registry
from .settings import RuntimeSettings
from .validation import ValidationResult, parse_and_validate


def get_version() -> str:
    try:
        return version("form-builder")
    except Exception:
        return "0.0.0"


__all__ = [
    "AppCompiler",
    "AppDefinition",
    "CompileOutput",
    "CompilePlan",
    "CyclicGraphError",
    "Diagnostic",
    "DiagnosticCode",
    "EventExecutionError",
    "EventLog",
    "ExecuteEventResult",
    "GraphOrder",
    "LlmProvider",
    "MissingTemplateVariableError",
    "MockProvider",
    "OutputSchemaError",
    "PromptExecutionResult",
    "ProviderRequest",
    "ProviderResponse",
    "ProviderResponseError",
    "RuntimeSettings",
    "Severity",
    "StateValidationError",
    "UnknownEventError",
    "UnknownNodeError",
    "UnknownProviderError",
    "ValidationResult",
    "build_alias_map",
    "canonical_var",
    "collect_template_tokens",
    "create_provider_registry",
    "docker_image_name",
    "execute_event",
    "execute_prompt_task",
    "fingerprint",
    "generate_files",
    "get_version",
    "interpolate_template",
    "normalize_key",
    "normalize_to_ir",
    "order_nodes",
    "parse_and_validate",
    "to_canonical_json",
    "topological_sort",
    "write_files",
]
