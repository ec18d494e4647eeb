import asyncio
from pathlib import Path
from typing import Any

import pytest
from langchain_core.messages import AIMessage
from pydantic import ValidationError

from conftest import StubProvider, build_valid_app, prompt_node
from form_builder import (
    AppCompiler,
    AppDefinition,
    MockProvider,
    ProviderRequest,
    create_provider_registry,
    execute_event,
    interpolate_template,
)
from form_builder.errors import (
    CyclicGraphError,
    MissingTemplateVariableError,
    OutputSchemaError,
    ProviderResponseError,
    StateValidationError,
    UnknownEventError,
    UnknownNodeError,
    UnknownProviderError,
)
from form_builder.interpreter import LiteralValue, OutputReference, parse_transform_expression
from form_builder.orchestrator import SYSTEM_INSTRUCTION, safe_json_parse
from form_builder.providers import ChatModelProvider, message_text
from form_builder.settings import RuntimeSettings
from form_builder.shapes import shape_to_validator


def compiled_app(raw: dict[str, Any] | None = None) -> AppDefinition:
    output = AppCompiler(RuntimeSettings()).compile(raw if raw is not None else build_valid_app())
    assert output.succeeded, [item.render() for item in output.diagnostics]
    assert output.app is not None
    return output.app


def run(app: AppDefinition, state: dict[str, Any], providers: dict[str, Any], event_id: str = "evt_analyze_click"):
    return asyncio.run(execute_event(app, event_id, state, providers))


# -- Event interpreter --


def test_execute_event_happy_path() -> None:
    stub = StubProvider({"sentiment": "neutral", "reply": "ok"})
    result = run(compiled_app(), {"customerComplaint": "too slow"}, {"mock": stub})

    assert result.state_patch == {"analysisRows": [{"sentiment": "neutral", "reply": "ok"}]}
    assert [entry.stage for entry in result.logs] == ["validate", "prompt", "transform"]
    assert all(entry.event_id == "evt_analyze_click" for entry in result.logs)
    assert "via 'mock'" in result.logs[1].message

    assert len(stub.requests) == 1
    request = stub.requests[0]
    assert request.prompt == f"{SYSTEM_INSTRUCTION}\nAnalyze too slow and return JSON."
    assert request.model == "mock-v1"
    assert request.temperature == 0.0


def test_execute_event_result_serializes_with_wire_keys() -> None:
    result = run(compiled_app(), {"customerComplaint": "too slow"}, {"mock": MockProvider()})
    payload = result.to_json_dict()
    assert set(payload) == {"statePatch", "logs"}
    assert set(payload["logs"][0]) == {"at", "eventId", "stage", "message"}
    assert "T" in payload["logs"][0]["at"]


@pytest.mark.parametrize("state", [{"customerComplaint": ""}, {"customerComplaint": None}, {}])
def test_empty_input_fails_before_any_provider_call(state: dict[str, Any]) -> None:
    stub = StubProvider({"sentiment": "neutral", "reply": "ok"})
    with pytest.raises(StateValidationError, match="Validation failed") as excinfo:
        run(compiled_app(), state, {"mock": stub})
    assert stub.requests == []
    assert excinfo.value.node_id == "validate"
    assert excinfo.value.event_id == "evt_analyze_click"


def test_unknown_event_is_fatal() -> None:
    with pytest.raises(UnknownEventError, match="evt_missing"):
        run(compiled_app(), {"customerComplaint": "x"}, {"mock": MockProvider()}, event_id="evt_missing")


def test_cyclic_graph_is_fatal_at_run_time() -> None:
    raw = build_valid_app()
    raw["events"][0]["actionGraph"]["edges"].append({"from": "transform", "to": "validate"})
    app = AppDefinition.model_validate(raw)
    stub = StubProvider({"sentiment": "neutral", "reply": "ok"})
    with pytest.raises(CyclicGraphError):
        run(app, {"customerComplaint": "x"}, {"mock": stub})
    assert stub.requests == []


def test_nodes_run_in_edge_order_not_declaration_order() -> None:
    raw = build_valid_app()
    raw["events"][0]["actionGraph"]["nodes"].reverse()
    result = run(compiled_app(raw), {"customerComplaint": "late"}, {"mock": MockProvider()})
    assert [entry.stage for entry in result.logs] == ["validate", "prompt", "transform"]


def test_transform_literal_passthrough() -> None:
    raw = build_valid_app()
    raw["stateModel"]["status"] = {"type": "string"}
    raw["events"][0]["actionGraph"]["nodes"][2]["mapToState"]["status"] = "done"
    result = run(compiled_app(raw), {"customerComplaint": "x"}, {"mock": StubProvider({"sentiment": "a", "reply": "b"})})
    assert result.state_patch["status"] == "done"
    assert result.state_patch["analysisRows"] == [{"sentiment": "a", "reply": "b"}]


def test_parse_transform_expression_variants() -> None:
    assert parse_transform_expression("[$prompt.output]") == OutputReference("prompt")
    assert parse_transform_expression("[$prompt.output].rows") == LiteralValue("[$prompt.output].rows")
    assert parse_transform_expression("plain text") == LiteralValue("plain text")


def test_transform_reference_to_node_without_output_is_fatal() -> None:
    raw = build_valid_app()
    raw["events"][0]["actionGraph"]["nodes"][2]["mapToState"] = {"analysisRows": "[$validate.output]"}
    with pytest.raises(UnknownNodeError) as excinfo:
        run(AppDefinition.model_validate(raw), {"customerComplaint": "x"}, {"mock": MockProvider()})
    assert excinfo.value.node_id == "transform"


def test_unknown_provider_is_fatal() -> None:
    raw = build_valid_app()
    prompt_node(raw)["promptSpec"]["modelPolicy"]["provider"] = "openai"
    with pytest.raises(UnknownProviderError, match="Unknown provider 'openai'") as excinfo:
        run(compiled_app(raw), {"customerComplaint": "x"}, {"mock": MockProvider()})
    assert excinfo.value.node_id == "prompt"


def test_malformed_provider_json_is_fatal() -> None:
    with pytest.raises(ProviderResponseError, match="not valid JSON") as excinfo:
        run(compiled_app(), {"customerComplaint": "x"}, {"mock": StubProvider("sure! {oops")})
    assert excinfo.value.raw_text == "sure! {oops"


def test_output_schema_mismatch_is_fatal_with_details() -> None:
    with pytest.raises(OutputSchemaError) as excinfo:
        run(compiled_app(), {"customerComplaint": "x"}, {"mock": StubProvider({"sentiment": "neutral", "reply": ""})})
    error = excinfo.value
    assert error.payload == {"sentiment": "neutral", "reply": ""}
    assert error.errors[0]["loc"] == ("reply",)
    assert error.errors[0]["type"] == "string_too_short"


def test_interpreter_does_not_resolve_aliases() -> None:
    # Without normalization the label is read from state verbatim and finds nothing.
    app = AppDefinition.model_validate(build_valid_app())
    stub = StubProvider({"sentiment": "neutral", "reply": "ok"})
    run(app, {"customerComplaint": "x"}, {"mock": stub})
    assert stub.requests[0].prompt.endswith("Analyze null and return JSON.")


# -- Prompt orchestration --


def test_interpolate_template_renders_values() -> None:
    rendered = interpolate_template("{{ name }} / {{n}} / {{o}}", {"name": "Ada", "n": 3, "o": {"a": 1}})
    assert rendered == 'Ada / 3 / {"a": 1}'


def test_interpolate_template_missing_variable() -> None:
    with pytest.raises(MissingTemplateVariableError, match="Missing template variable 'who'"):
        interpolate_template("Hello {{who}}", {})


def test_safe_json_parse() -> None:
    assert safe_json_parse('{"a": [1, 2]}') == {"a": [1, 2]}
    with pytest.raises(ProviderResponseError):
        safe_json_parse("")


def test_safe_json_parse_rejects_non_standard_constants() -> None:
    for constant in ("NaN", "Infinity", "-Infinity"):
        text = f'{{"x": {constant}}}'
        with pytest.raises(ProviderResponseError, match="not a valid JSON value") as excinfo:
            safe_json_parse(text)
        assert excinfo.value.raw_text == text


def test_provider_nan_is_fatal() -> None:
    stub = StubProvider('{"sentiment": NaN, "reply": "ok"}')
    with pytest.raises(ProviderResponseError) as excinfo:
        run(compiled_app(), {"customerComplaint": "x"}, {"mock": stub})
    assert excinfo.value.node_id == "prompt"


# -- Output shapes --


def test_shape_validator_enforces_enum_and_lengths() -> None:
    validator = shape_to_validator(
        {
            "sentiment": {"type": "string", "enum": ["positive", "neutral", "negative"]},
            "reply": {"type": "string", "minLength": 1, "maxLength": 5},
        }
    )
    assert validator.validate_python({"sentiment": "neutral", "reply": "ok"}) == {"sentiment": "neutral", "reply": "ok"}

    with pytest.raises(ValidationError, match="Expected one of: positive, neutral, negative"):
        validator.validate_python({"sentiment": "furious", "reply": "ok"})
    with pytest.raises(ValidationError):
        validator.validate_python({"sentiment": "neutral", "reply": "too long"})
    with pytest.raises(ValidationError):
        validator.validate_python({"sentiment": "neutral"})


def test_shape_validator_primitive_types_are_strict() -> None:
    validator = shape_to_validator({"score": {"type": "number"}, "flag": {"type": "boolean"}, "note": {}})
    assert validator.validate_python({"score": 3, "flag": True, "note": "x"}) == {"score": 3, "flag": True, "note": "x"}
    assert validator.validate_python({"score": 2.5, "flag": False, "note": "y"})["score"] == 2.5
    for bad in ({"score": "3", "flag": True, "note": "x"}, {"score": True, "flag": True, "note": "x"}, {"score": 1, "flag": "yes", "note": "x"}):
        with pytest.raises(ValidationError):
            validator.validate_python(bad)


def test_shape_validator_nested_objects_and_arrays() -> None:
    validator = shape_to_validator(
        {
            "summary": {"type": "object", "shape": {"title": {"type": "string"}}},
            "tags": {"type": "array", "items": {"type": "string"}},
            "extra": {"type": "anything"},
        }
    )
    payload = {"summary": {"title": "t"}, "tags": ["a", "b"], "extra": [1, {"x": None}]}
    assert validator.validate_python(payload) == payload
    with pytest.raises(ValidationError):
        validator.validate_python({"summary": {"title": 1}, "tags": ["a"], "extra": None})


# -- Providers --


def test_mock_provider_returns_analysis_payload() -> None:
    response = asyncio.run(MockProvider().execute(ProviderRequest(prompt="p", model="mock-v1")))
    assert '"sentiment": "neutral"' in response.text
    assert response.meta == {"provider": "mock"}


def test_registry_only_enables_configured_providers(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    assert set(create_provider_registry(RuntimeSettings(), repo_root=tmp_path)) == {"mock"}

    monkeypatch.setenv("OPENAI_API_KEY", "sk-test")
    assert set(create_provider_registry(RuntimeSettings(), repo_root=tmp_path)) == {"mock", "openai"}


def test_registry_reads_keys_from_env_file(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    # Registered first so teardown removes whatever load_dotenv writes into os.environ.
    monkeypatch.setenv("ANTHROPIC_API_KEY", "unset")
    monkeypatch.delenv("ANTHROPIC_API_KEY")
    (tmp_path / ".env").write_text("ANTHROPIC_API_KEY=sk-ant-test\n", encoding="utf-8")
    registry = create_provider_registry(RuntimeSettings(), repo_root=tmp_path)
    assert set(registry) == {"mock", "anthropic"}


def test_chat_model_provider_adapts_langchain_messages() -> None:
    seen: list[tuple[str, float]] = []

    class FakeChatModel:
        async def ainvoke(self, messages):  # noqa: ANN001,ANN201
            assert messages[0].content == "prompt text"
            return AIMessage(
                content='{"ok": true}',
                id="msg-1",
                response_metadata={"model_name": "gpt-test-2026"},
            )

    def factory(model_name: str, temperature: float) -> FakeChatModel:
        seen.append((model_name, temperature))
        return FakeChatModel()

    provider = ChatModelProvider("openai", factory)
    response = asyncio.run(provider.execute(ProviderRequest(prompt="prompt text", model="gpt-test", temperature=None)))
    assert response.text == '{"ok": true}'
    assert response.meta == {"id": "msg-1", "model": "gpt-test-2026"}
    assert seen == [("gpt-test", 0.0)]


def test_message_text_flattens_content_blocks() -> None:
    message = AIMessage(content=[{"type": "text", "text": '{"a":'}, {"type": "tool_use", "id": "t"}, {"type": "text", "text": " 1}"}])
    assert message_text(message) == '{"a": 1}'
    assert message_text(AIMessage(content=[])) == "{}"


# -- Settings --


def test_runtime_settings_from_env(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("FORM_BUILDER_PROVIDER_TIMEOUT", "30")
    monkeypatch.setenv("FORM_BUILDER_LOG_LEVEL", "debug")
    settings = RuntimeSettings.from_env()
    assert settings.provider_timeout == 30
    assert settings.log_level == "DEBUG"
    assert settings.out_root == "generated"


@pytest.mark.parametrize(
    ("name", "value"),
    [
        ("FORM_BUILDER_PROVIDER_TIMEOUT", "abc"),
        ("FORM_BUILDER_PROVIDER_TIMEOUT", "0"),
        ("FORM_BUILDER_PROVIDER_MAX_RETRIES", "-1"),
        ("FORM_BUILDER_IMAGE_TAG", "   "),
        ("FORM_BUILDER_LOG_LEVEL", "LOUD"),
    ],
)
def test_runtime_settings_invalid_env_raises(monkeypatch: pytest.MonkeyPatch, name: str, value: str) -> None:
    monkeypatch.setenv(name, value)
    with pytest.raises(ValueError):
        RuntimeSettings.from_env()
