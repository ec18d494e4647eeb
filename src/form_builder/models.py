from __future__ import annotations

from enum import Enum
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

NonEmptyStr = Annotated[str, Field(min_length=1)]
JsonShape = dict[str, Any]


class SchemaModel(BaseModel):
    """Base for every app-definition model: camelCase on the wire, snake_case in Python."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        protected_namespaces=(),
    )

    def to_json_dict(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class Severity(str, Enum):
    ERROR = "error"
    WARNING = "warning"


class DiagnosticCode(str, Enum):
    SCHEMA_VALIDATION_ERROR = "SCHEMA_VALIDATION_ERROR"
    DUPLICATE_COMPONENT_ID = "DUPLICATE_COMPONENT_ID"
    MISSING_STATE_KEY = "MISSING_STATE_KEY"
    DUPLICATE_UI_STATE_KEY = "DUPLICATE_UI_STATE_KEY"
    DUPLICATE_TRIGGER_EVENT_ID = "DUPLICATE_TRIGGER_EVENT_ID"
    DUPLICATE_EVENT_ID = "DUPLICATE_EVENT_ID"
    UNKNOWN_TRIGGER_COMPONENT = "UNKNOWN_TRIGGER_COMPONENT"
    TRIGGER_COMPONENT_NOT_BUTTON = "TRIGGER_COMPONENT_NOT_BUTTON"
    GRAPH_DUPLICATE_NODE_ID = "GRAPH_DUPLICATE_NODE_ID"
    GRAPH_UNKNOWN_EDGE_NODE = "GRAPH_UNKNOWN_EDGE_NODE"
    GRAPH_CYCLE_DETECTED = "GRAPH_CYCLE_DETECTED"
    UNKNOWN_PROMPT_VARIABLE = "UNKNOWN_PROMPT_VARIABLE"
    PROMPT_TOKEN_NOT_DECLARED = "PROMPT_TOKEN_NOT_DECLARED"
    TRANSFORM_UNKNOWN_STATE_KEY = "TRANSFORM_UNKNOWN_STATE_KEY"
    TRANSFORM_UNKNOWN_NODE = "TRANSFORM_UNKNOWN_NODE"


class Diagnostic(BaseModel):
    """One validation finding. Diagnostics are collected, never raised."""

    model_config = ConfigDict(use_enum_values=True)

    code: DiagnosticCode
    severity: Severity
    message: str
    path: str | None = None

    @property
    def is_error(self) -> bool:
        return self.severity == Severity.ERROR.value

    def render(self) -> str:
        location = f" {self.path}" if self.path else ""
        return f"[{self.severity}] {self.code}{location}: {self.message}"


# -- State model --


class PrimitiveStateField(SchemaModel):
    type: Literal["string", "number", "boolean"]
    source: str | None = None
    enum: list[str] | None = None
    min_length: Annotated[int, Field(ge=0)] | None = None
    max_length: Annotated[int, Field(ge=0)] | None = None


class ObjectShape(SchemaModel):
    type: Literal["object"]
    shape: JsonShape


class ArrayStateField(SchemaModel):
    type: Literal["array"]
    source: str | None = None
    items: ObjectShape


StateField = Annotated[Union[PrimitiveStateField, ArrayStateField], Field(discriminator="type")]


# -- UI components --


class TextAreaProps(SchemaModel):
    required: bool | None = None
    max_length: Annotated[int, Field(gt=0)] | None = None


class TextAreaComponent(SchemaModel):
    type: Literal["TextArea"]
    id: NonEmptyStr
    label: NonEmptyStr
    state_key: NonEmptyStr
    props: TextAreaProps = Field(default_factory=TextAreaProps)


class ButtonComponent(SchemaModel):
    type: Literal["Button"]
    id: NonEmptyStr
    label: NonEmptyStr
    events: dict[str, str] = Field(default_factory=dict)

    @property
    def on_click(self) -> str | None:
        return self.events.get("onClick") or None


class DataTableComponent(SchemaModel):
    type: Literal["DataTable"]
    id: NonEmptyStr
    label: NonEmptyStr
    data_key: NonEmptyStr


UIComponent = Annotated[
    Union[TextAreaComponent, ButtonComponent, DataTableComponent],
    Field(discriminator="type"),
]


class UILayout(SchemaModel):
    components: Annotated[list[UIComponent], Field(min_length=1)]


# -- Action graph --


class ModelPolicy(SchemaModel):
    provider: Literal["openai", "anthropic", "mock"]
    model: NonEmptyStr
    temperature: Annotated[float, Field(ge=0, le=2)] | None = None


class PromptOutputSchema(SchemaModel):
    type: Literal["object"]
    shape: JsonShape


class PromptSpec(SchemaModel):
    template: NonEmptyStr
    variables: list[NonEmptyStr] = Field(default_factory=list)
    model_policy: ModelPolicy
    output_schema: PromptOutputSchema


class ValidateInput(SchemaModel):
    state_keys: Annotated[list[NonEmptyStr], Field(min_length=1)]


class ValidateNode(SchemaModel):
    kind: Literal["Validate"]
    id: NonEmptyStr
    input: ValidateInput


class PromptTaskNode(SchemaModel):
    kind: Literal["PromptTask"]
    id: NonEmptyStr
    prompt_spec: PromptSpec


class TransformNode(SchemaModel):
    kind: Literal["Transform"]
    id: NonEmptyStr
    map_to_state: dict[str, str]


ActionNode = Annotated[
    Union[ValidateNode, PromptTaskNode, TransformNode],
    Field(discriminator="kind"),
]


class ActionEdge(SchemaModel):
    from_: NonEmptyStr = Field(alias="from")
    to: NonEmptyStr


class ActionGraph(SchemaModel):
    nodes: Annotated[list[ActionNode], Field(min_length=1)]
    edges: list[ActionEdge]

    @property
    def node_ids(self) -> list[str]:
        return [node.id for node in self.nodes]

    def edge_pairs(self) -> list[tuple[str, str]]:
        return [(edge.from_, edge.to) for edge in self.edges]


class Trigger(SchemaModel):
    component_id: NonEmptyStr
    event: Literal["onClick", "onChange", "onSubmit"]


class EventDefinition(SchemaModel):
    id: NonEmptyStr
    trigger: Trigger
    action_graph: ActionGraph


class AppDefinition(SchemaModel):
    app_id: NonEmptyStr
    version: NonEmptyStr
    ui: UILayout
    state_model: dict[str, StateField]
    events: list[EventDefinition]

    @property
    def components(self) -> list[TextAreaComponent | ButtonComponent | DataTableComponent]:
        return self.ui.components

    def find_event(self, event_id: str) -> EventDefinition | None:
        for event in self.events:
            if event.id == event_id:
                return event
        return None


# -- Execution --


EventStage = Literal["validate", "prompt", "transform"]


class EventLog(SchemaModel):
    at: str
    event_id: str
    stage: EventStage
    message: str


class ExecuteEventResult(SchemaModel):
    state_patch: dict[str, Any] = Field(default_factory=dict)
    logs: list[EventLog] = Field(default_factory=list)


# -- Compilation --


class GeneratedFile(SchemaModel):
    path: str
    content: str


class DockerImage(SchemaModel):
    image_name: str = ""
    tags: list[str] = Field(default_factory=list)


class CompileOutput(SchemaModel):
    files: list[GeneratedFile] = Field(default_factory=list)
    diagnostics: list[Diagnostic] = Field(default_factory=list)
    docker: DockerImage = Field(default_factory=DockerImage)
    app: AppDefinition | None = None
    fingerprint: str = ""

    @property
    def succeeded(self) -> bool:
        return self.app is not None and not any(item.is_error for item in self.diagnostics)
