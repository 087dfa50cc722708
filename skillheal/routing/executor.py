"""Single model call execution against an OpenRouter-compatible endpoint.

The executor never raises for provider or transport failures: every outcome
is reported through the returned CallAttempt so the router's fallback loop is
plain control flow. Cancellation is the exception: a cancelled caller gets
``asyncio.CancelledError`` and the in-flight request is aborted.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

import httpx

from skillheal.config import (
    LLM_CALL_TIMEOUT,
    OPENROUTER_API_KEY,
    OPENROUTER_BASE_URL,
    OPENROUTER_REFERER,
    OPENROUTER_TITLE,
)
from skillheal.routing.catalog import ModelCatalog

logger = logging.getLogger(__name__)

Message = dict[str, str]


class FailureReason(str, Enum):
    """Why a call attempt failed."""

    TIMEOUT = "timeout"
    PROVIDER_ERROR = "provider_error"  # non-2xx response
    TRANSPORT_ERROR = "transport_error"  # unreachable endpoint, malformed body


@dataclass
class CallOptions:
    """Sampling parameters and per-call overrides."""

    temperature: float = 0.7
    max_tokens: int = 2048
    top_p: float = 1.0
    timeout: float | None = None  # overrides the executor default


@dataclass
class CallAttempt:
    """One execution against one model.

    Attributes:
        model_id: Model that was called
        messages: Messages sent
        content: Output text (empty on failure)
        input_tokens: Provider-reported prompt tokens
        output_tokens: Provider-reported completion tokens
        cost: Price of the call computed from the catalog
        latency_ms: Wall-clock duration of the attempt
        reason: Failure reason, None on success
        status_code: HTTP status for provider errors
        error: Human-readable failure detail

    """

    model_id: str
    messages: list[Message] = field(default_factory=list)
    content: str = ""
    input_tokens: int = 0
    output_tokens: int = 0
    cost: float = 0.0
    latency_ms: int = 0
    reason: FailureReason | None = None
    status_code: int | None = None
    error: str | None = None
    started_at: float = field(default_factory=time.time)

    @property
    def succeeded(self) -> bool:
        return self.reason is None

    @property
    def outcome(self) -> str:
        """'success' or the failure label, e.g. 'provider_error(429)'."""
        if self.reason is None:
            return "success"
        if self.reason == FailureReason.PROVIDER_ERROR:
            return f"provider_error({self.status_code})"
        return self.reason.value


class CallExecutor:
    """Issues one chat-completion request per call.

    Example:
        executor = CallExecutor(catalog, api_key="sk-...")
        attempt = await executor.execute("nous-hermes-3", [{"role": "user", "content": "hi"}])
        if attempt.succeeded:
            print(attempt.content, attempt.cost)

    """

    def __init__(
        self,
        catalog: ModelCatalog,
        api_key: str = OPENROUTER_API_KEY,
        base_url: str = OPENROUTER_BASE_URL,
        timeout: float = LLM_CALL_TIMEOUT,
        client: httpx.AsyncClient | None = None,
    ):
        """Initialize executor.

        Args:
            catalog: Model catalog used for cost computation
            api_key: Bearer token for the provider
            base_url: Provider API root (``/chat/completions`` is appended)
            timeout: Default hard timeout per call, in seconds
            client: Shared HTTP client; a short-lived one is created per call if None

        """
        self.catalog = catalog
        self.api_key = api_key
        self.url = base_url.rstrip("/") + "/chat/completions"
        self.timeout = timeout
        self._client = client

    def _headers(self) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
            "HTTP-Referer": OPENROUTER_REFERER,
            "X-Title": OPENROUTER_TITLE,
        }

    async def _post(self, payload: dict[str, Any], timeout: float) -> httpx.Response:
        if self._client is not None:
            return await self._client.post(self.url, json=payload, headers=self._headers(), timeout=timeout)
        async with httpx.AsyncClient(timeout=timeout) as client:
            return await client.post(self.url, json=payload, headers=self._headers())

    async def execute(
        self,
        model_id: str,
        messages: list[Message],
        options: CallOptions | None = None,
    ) -> CallAttempt:
        """Call model_id once and report the outcome.

        Args:
            model_id: Model to call
            messages: Chat messages (role/content dicts)
            options: Sampling parameters and timeout override

        Returns:
            CallAttempt; check ``succeeded`` / ``reason``

        """
        options = options or CallOptions()
        timeout = options.timeout if options.timeout is not None else self.timeout
        attempt = CallAttempt(model_id=model_id, messages=list(messages))
        started = time.monotonic()

        if not self.api_key:
            attempt.reason = FailureReason.TRANSPORT_ERROR
            attempt.error = "API key not set"
            logger.error("Cannot call %s: API key not set", model_id)
            return attempt

        payload = {
            "model": model_id,
            "messages": list(messages),
            "temperature": options.temperature,
            "max_tokens": options.max_tokens,
            "top_p": options.top_p,
        }

        try:
            response = await asyncio.wait_for(self._post(payload, timeout), timeout=timeout)
        except (asyncio.TimeoutError, httpx.TimeoutException):
            attempt.reason = FailureReason.TIMEOUT
            attempt.error = f"No response within {timeout:g}s"
        except httpx.HTTPError as e:
            attempt.reason = FailureReason.TRANSPORT_ERROR
            attempt.error = f"{type(e).__name__}: {e}"
        else:
            self._read_response(attempt, response)
        finally:
            attempt.latency_ms = int((time.monotonic() - started) * 1000)

        if attempt.succeeded:
            logger.info(
                "Call to %s ok: %d in / %d out tokens, $%.6f, %dms",
                model_id, attempt.input_tokens, attempt.output_tokens, attempt.cost, attempt.latency_ms,
            )
        else:
            logger.warning("Call to %s failed: %s (%s)", model_id, attempt.outcome, attempt.error)
        return attempt

    def _read_response(self, attempt: CallAttempt, response: httpx.Response) -> None:
        if not response.is_success:
            attempt.reason = FailureReason.PROVIDER_ERROR
            attempt.status_code = response.status_code
            attempt.error = response.text[:500]
            return

        try:
            data = response.json()
            content = data["choices"][0]["message"]["content"]
        except (ValueError, KeyError, IndexError, TypeError) as e:
            attempt.reason = FailureReason.TRANSPORT_ERROR
            attempt.error = f"Malformed response body: {type(e).__name__}: {e}"
            return

        if content is None:
            content = ""
        if not isinstance(content, str):
            attempt.reason = FailureReason.TRANSPORT_ERROR
            attempt.error = "Malformed response body: content is not text"
            return

        usage = data.get("usage") or {}
        attempt.content = content
        attempt.input_tokens = _as_int(usage.get("prompt_tokens"))
        attempt.output_tokens = _as_int(usage.get("completion_tokens"))
        attempt.cost = self.catalog.cost_for(attempt.model_id, attempt.input_tokens, attempt.output_tokens)


def _as_int(value: Any) -> int:
    try:
        return int(value or 0)
    except (TypeError, ValueError):
        return 0
