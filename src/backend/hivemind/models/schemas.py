"""
Domain models for the Hivemind backend.

These Pydantic models define the data flowing between the dispatcher, the
evaluators and the HTTP layer. Python attributes are snake_case; the JSON
aliases match the wire format the frontend already speaks.
"""
from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ──────────────────────────────────────────────
# Enums
# ──────────────────────────────────────────────

class ResponseLengthMode(str, Enum):
    BRIEF = "brief"
    DETAILED = "detailed"
    COMPREHENSIVE = "comprehensive"
    UNLIMITED = "unlimited"


# ──────────────────────────────────────────────
# Worker / Agent Models
# ──────────────────────────────────────────────

class InvocationParams(BaseModel):
    """Sampling parameters for one model call. Frozen once assigned."""
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    temperature: float = Field(0.7, description="Sampling temperature")
    top_k: int = Field(40, description="Top-k sampling cutoff")
    top_p: float = Field(0.8, description="Nucleus sampling cutoff")
    worker_id: str = Field("", description="Worker identifier")


class Agent(BaseModel):
    """Caller-supplied worker configuration. Read-only during processing."""
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    name: str = Field(..., description="Agent display name")
    specialization: Optional[str] = Field(None, description="Role / specialization line")
    response_length: ResponseLengthMode = Field(
        ResponseLengthMode.UNLIMITED, alias="responseLength"
    )
    params: Optional[InvocationParams] = Field(None, alias="workerParams")

    @field_validator("response_length", mode="before")
    @classmethod
    def _normalise_response_length(cls, v):
        if isinstance(v, ResponseLengthMode):
            return v
        if isinstance(v, str) and v.lower() in {m.value for m in ResponseLengthMode}:
            return v.lower()
        return ResponseLengthMode.UNLIMITED


class ModelResult(BaseModel):
    """Outcome of a single model invocation, successful or not."""
    model_config = ConfigDict(populate_by_name=True)

    label: str = Field(..., alias="model")
    output: str = ""
    error: Optional[str] = None
    processing_time_ms: int = Field(0, alias="processingTime")
    timestamp: datetime = Field(default_factory=_utcnow)
    confidence: Optional[float] = Field(None, ge=0.0, le=1.0)
    params: Optional[InvocationParams] = Field(None, alias="workerParams")

    @property
    def is_valid(self) -> bool:
        """No error and non-blank output."""
        return not self.error and bool(self.output.strip())


# ──────────────────────────────────────────────
# Evaluation Models
# ──────────────────────────────────────────────

class Ranking(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    original_index: int = Field(..., alias="index", description="Index into the caller-facing result list")
    score: float = Field(..., ge=0.0, le=1.0)
    reasoning: str = ""


class Evaluation(BaseModel):
    """Master evaluation of all agent responses. Rankings are best first."""
    model_config = ConfigDict(populate_by_name=True)

    best_index: int = Field(-1, alias="bestResponseIndex")
    reasoning: str = ""
    rankings: List[Ranking] = Field(default_factory=list)
    evaluation_time_ms: int = Field(0, alias="evaluationTime")


# ──────────────────────────────────────────────
# Model Endpoint Wire Models (OpenAI-compatible chat)
# ──────────────────────────────────────────────

class ChatMessage(BaseModel):
    role: str = "user"
    content: Optional[str] = None


class ChatCompletionRequest(BaseModel):
    model: str
    messages: List[ChatMessage]
    temperature: float
    max_tokens: int
    top_k: Optional[int] = None
    top_p: Optional[float] = None
    stream: bool = False


class ChatChoice(BaseModel):
    message: Optional[ChatMessage] = None


class ChatCompletionResponse(BaseModel):
    choices: Optional[List[ChatChoice]] = None

    def first_content(self) -> str:
        """Content of the first choice, or "" when the provider returned none."""
        if not self.choices or self.choices[0].message is None:
            return ""
        return self.choices[0].message.content or ""


# ──────────────────────────────────────────────
# API Request / Response Models
# ──────────────────────────────────────────────

class QueryRequest(BaseModel):
    """API request: a query and the agents that should answer it."""
    query: str = Field("", description="The user query")
    agents: List[Agent] = Field(default_factory=list)


class QueryResponse(BaseModel):
    """API response with every agent result and the master evaluation."""
    model_config = ConfigDict(populate_by_name=True)

    results: List[ModelResult]
    query_id: str = Field(..., alias="queryId")
    master_evaluation: Optional[Evaluation] = Field(None, alias="masterEvaluation")
