from __future__ import annotations

import json
from pathlib import Path
from typing import Any

import pytest

from form_builder.providers import ProviderRequest, ProviderResponse

REPO_ROOT = Path(__file__).resolve().parents[1]
EXAMPLE_APP_PATH = REPO_ROOT / "examples" / "customer-complaint-app.json"


def build_valid_app() -> dict[str, Any]:
    return {
        "appId": "test_app",
        "version": "1.0.0",
        "ui": {
            "components": [
                {
                    "id": "input_customer_complaint",
                    "type": "TextArea",
                    "label": "Customer Complaint",
                    "stateKey": "customerComplaint",
                    "props": {"required": True, "maxLength": 2000},
                },
                {
                    "id": "btn_analyze",
                    "type": "Button",
                    "label": "Analyze",
                    "events": {"onClick": "evt_analyze_click"},
                },
                {
                    "id": "table_results",
                    "type": "DataTable",
                    "label": "Analysis Result",
                    "dataKey": "analysisRows",
                },
            ]
        },
        "stateModel": {
            "customerComplaint": {"type": "string", "source": "ui.input_customer_complaint"},
            "analysisRows": {
                "type": "array",
                "items": {
                    "type": "object",
                    "shape": {"sentiment": {"type": "string"}, "reply": {"type": "string"}},
                },
            },
        },
        "events": [
            {
                "id": "evt_analyze_click",
                "trigger": {"componentId": "btn_analyze", "event": "onClick"},
                "actionGraph": {
                    "nodes": [
                        {"id": "validate", "kind": "Validate", "input": {"stateKeys": ["customerComplaint"]}},
                        {
                            "id": "prompt",
                            "kind": "PromptTask",
                            "promptSpec": {
                                "template": "Analyze {{Customer Complaint}} and return JSON.",
                                "variables": ["Customer Complaint"],
                                "modelPolicy": {"provider": "mock", "model": "mock-v1", "temperature": 0},
                                "outputSchema": {
                                    "type": "object",
                                    "shape": {
                                        "sentiment": {"type": "string"},
                                        "reply": {"type": "string", "minLength": 1},
                                    },
                                },
                            },
                        },
                        {"id": "transform", "kind": "Transform", "mapToState": {"analysisRows": "[$prompt.output]"}},
                    ],
                    "edges": [{"from": "validate", "to": "prompt"}, {"from": "prompt", "to": "transform"}],
                },
            }
        ],
    }


def prompt_node(app: dict[str, Any]) -> dict[str, Any]:
    return app["events"][0]["actionGraph"]["nodes"][1]


class StubProvider:
    """Records every request and answers with a fixed text."""

    def __init__(self, text: str | dict[str, Any]) -> None:
        self.text = text if isinstance(text, str) else json.dumps(text)
        self.requests: list[ProviderRequest] = []

    async def execute(self, request: ProviderRequest) -> ProviderResponse:
        self.requests.append(request)
        return ProviderResponse(text=self.text, meta={"id": f"stub-{len(self.requests)}", "model": request.model})


@pytest.fixture
def valid_app() -> dict[str, Any]:
    return build_valid_app()


@pytest.fixture(autouse=True)
def _isolated_environment(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    """Keep real API keys, .env files and FORM_BUILDER_* overrides out of tests."""
    for name in (
        "OPENAI_API_KEY",
        "ANTHROPIC_API_KEY",
        "FORM_BUILDER_OUT_ROOT",
        "FORM_BUILDER_IMAGE_TAG",
        "FORM_BUILDER_PROVIDER_TIMEOUT",
        "FORM_BUILDER_PROVIDER_MAX_RETRIES",
        "FORM_BUILDER_MAX_COMPLETION_TOKENS",
        "FORM_BUILDER_LOG_LEVEL",
    ):
        monkeypatch.delenv(name, raising=False)
    monkeypatch.chdir(tmp_path)
