"""Shared pytest fixtures for hivemind tests."""

from __future__ import annotations

import json
from typing import Callable, List

import httpx
import pytest

from hivemind.models.schemas import InvocationParams, ModelResult
from hivemind.services.model_client import ModelInvoker

BASE_URL = "http://model.test/v1"
MODEL_ID = "test-model"


# ============================================================================
# Model endpoint helpers
# ============================================================================


def chat_payload(content: str | None) -> dict:
    """Minimal OpenAI-compatible chat completion body."""
    return {
        "id": "chatcmpl-test",
        "object": "chat.completion",
        "choices": [
            {
                "index": 0,
                "message": {"role": "assistant", "content": content},
                "finish_reason": "stop",
            }
        ],
    }


def sent_prompt(request: httpx.Request) -> str:
    """The single user message of a captured chat request."""
    return json.loads(request.content)["messages"][0]["content"]


@pytest.fixture
def captured() -> List[httpx.Request]:
    """Requests seen by the mock transport, in arrival order."""
    return []


@pytest.fixture
def make_invoker(captured) -> Callable[..., ModelInvoker]:
    """Build a ModelInvoker whose HTTP client is backed by a handler function."""

    def _make(handler, **kwargs) -> ModelInvoker:
        async def _recording(request: httpx.Request):
            captured.append(request)
            response = handler(request)
            if not isinstance(response, httpx.Response):
                response = await response
            return response

        options = {
            "base_url": BASE_URL,
            "model_id": MODEL_ID,
            "api_key": "",
            "max_tokens": 100,
            "request_timeout": 5.0,
            "probe_timeout": 1.0,
        }
        options.update(kwargs)
        client = httpx.AsyncClient(transport=httpx.MockTransport(_recording))
        return ModelInvoker(client=client, **options)

    return _make


# ============================================================================
# Domain fixtures
# ============================================================================


@pytest.fixture
def balanced_params() -> InvocationParams:
    """Parameters inside every 'balanced' band of the heuristic evaluator."""
    return InvocationParams(temperature=0.7, top_k=40, top_p=0.85, worker_id="w")


def make_result(
    label: str = "Agent-A",
    output: str = "",
    error: str | None = None,
    processing_time_ms: int = 8000,
    confidence: float | None = 0.7,
    params: InvocationParams | None = None,
) -> ModelResult:
    return ModelResult(
        label=label,
        output=output,
        error=error,
        processing_time_ms=processing_time_ms,
        confidence=confidence,
        params=params,
    )
