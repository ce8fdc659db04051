"""
Model Client: handles all communication with the model endpoint.

Calls an OpenAI-compatible chat completions endpoint (LM Studio by default)
with per-worker sampling parameters. Every call returns a ModelResult; transport,
status and parse failures are captured in ``ModelResult.error`` rather than
raised, so one failing worker never takes the batch down with it.

All components that need a model call go through this service.
"""
from __future__ import annotations

import asyncio
import json
import logging
import random
import time
from typing import Callable, Optional

import httpx
from pydantic import ValidationError

from hivemind.agent.confidence import estimate_confidence
from hivemind.config import settings
from hivemind.models.schemas import (
    ChatCompletionRequest,
    ChatCompletionResponse,
    ChatMessage,
    InvocationParams,
    ModelResult,
)

logger = logging.getLogger(__name__)


class Deadline:
    """
    A single expiry instant shared by every call made for one query.

    Usage:
        deadline = Deadline(90)
        result = await invoker.invoke(prompt, params, deadline)
    """

    def __init__(self, seconds: float, clock: Callable[[], float] = time.monotonic):
        self._clock = clock
        self.expires_at = clock() + seconds

    def remaining(self) -> float:
        return max(0.0, self.expires_at - self._clock())

    @property
    def expired(self) -> bool:
        return self.remaining() <= 0.0


def _elapsed_ms(start: float) -> int:
    return int((time.monotonic() - start) * 1000)


class ModelInvoker:
    """
    Issues single chat calls against the model endpoint.

    Usage:
        invoker = ModelInvoker()
        result = await invoker.invoke("Explain CAP theorem", params, deadline)
        available = await invoker.check_availability()
        await invoker.aclose()
    """

    def __init__(
        self,
        base_url: Optional[str] = None,
        model_id: Optional[str] = None,
        api_key: Optional[str] = None,
        max_tokens: Optional[int] = None,
        request_timeout: Optional[float] = None,
        probe_timeout: Optional[float] = None,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.base_url = (base_url or settings.model_base_url).rstrip("/")
        self.model_id = model_id or settings.model_id
        self.api_key = settings.model_api_key if api_key is None else api_key
        self.max_tokens = max_tokens or settings.max_output_tokens
        self.request_timeout = request_timeout or settings.request_timeout_seconds
        self.probe_timeout = probe_timeout or settings.probe_timeout_seconds
        self._client = client

    @property
    def chat_url(self) -> str:
        return f"{self.base_url}/chat/completions"

    @property
    def models_url(self) -> str:
        return f"{self.base_url}/models"

    async def _get_client(self) -> httpx.AsyncClient:
        """Lazy-initialize the HTTP client."""
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.request_timeout)
        return self._client

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    def _headers(self) -> dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        return headers

    def build_request(self, query: str, params: InvocationParams) -> ChatCompletionRequest:
        """Single user-role message, streaming disabled, fixed output ceiling."""
        return ChatCompletionRequest(
            model=self.model_id,
            messages=[ChatMessage(role="user", content=query)],
            temperature=params.temperature,
            max_tokens=self.max_tokens,
            top_k=params.top_k or None,
            top_p=params.top_p or None,
            stream=False,
        )

    async def invoke(
        self,
        query: str,
        params: InvocationParams,
        deadline: Optional[Deadline] = None,
        rng: Optional[random.Random] = None,
    ) -> ModelResult:
        """
        Call the model once.

        Args:
            query: Full prompt sent as the single user message
            params: Sampling parameters for this call
            deadline: Shared query deadline; the call is cut off when it expires
            rng: Random source for the confidence jitter

        Returns:
            ModelResult with either ``output`` or ``error`` populated
        """
        start = time.monotonic()
        label = f"Worker-{params.worker_id}"

        def _failed(message: str) -> ModelResult:
            logger.warning(f"[{label}] {message[:200]}")
            return ModelResult(
                label=label,
                error=message,
                processing_time_ms=_elapsed_ms(start),
                params=params,
            )

        try:
            body = json.dumps(
                self.build_request(query, params).model_dump(exclude_none=True),
                allow_nan=False,
            )
        except (TypeError, ValueError) as e:
            return _failed(f"Failed to serialize request: {e}")

        timeout = self.request_timeout
        bounded_by_deadline = False
        if deadline is not None:
            remaining = deadline.remaining()
            if remaining <= 0:
                return _failed("Request failed: deadline exceeded")
            if remaining < timeout:
                timeout = remaining
                bounded_by_deadline = True

        client = await self._get_client()
        try:
            response = await asyncio.wait_for(
                client.post(self.chat_url, content=body, headers=self._headers()),
                timeout=timeout,
            )
        except asyncio.TimeoutError:
            if bounded_by_deadline:
                return _failed("Request failed: deadline exceeded")
            return _failed(f"Request failed: timed out after {timeout:.0f}s")
        except httpx.HTTPError as e:
            return _failed(f"Request failed: {str(e) or e.__class__.__name__}")

        if not response.is_success:
            return _failed(f"API error (status {response.status_code}): {response.text}")

        try:
            parsed = ChatCompletionResponse.model_validate_json(response.content)
        except ValidationError as e:
            return _failed(f"Failed to parse response: {e}")

        output = parsed.first_content()
        elapsed = _elapsed_ms(start)
        logger.debug(f"[{label}] {len(output)} chars in {elapsed}ms")

        return ModelResult(
            label=label,
            output=output,
            processing_time_ms=elapsed,
            confidence=estimate_confidence(output, params, rng),
            params=params,
        )

    async def check_availability(self) -> bool:
        """
        Lightweight probe: GET the endpoint's model list.

        Returns True on HTTP 200, False on any other status or transport error.
        """
        try:
            client = await self._get_client()
            response = await client.get(
                self.models_url,
                headers=self._headers(),
                timeout=self.probe_timeout,
            )
        except httpx.HTTPError as e:
            logger.debug(f"Availability probe failed: {e}")
            return False
        return response.status_code == 200
