"""
Stage client base: one remote chat-completion call per pipeline stage.

Each concrete client supplies its prompts and an ``extract`` step that turns
the raw completion into usable content. ``run`` never raises for remote or
extraction problems; every failure comes back as a failed ``StageResult``
carrying a readable message.
"""

import json
import re
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, ClassVar

import httpx
from tenacity import (
    AsyncRetrying,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

from ..config.settings import InferenceConfig, StageEndpoint
from ..core.models import ContextAccumulator, ExecutionStatus, StageKind
from ..observability.logging import get_logger, get_session_id
from ..observability.metrics import get_metrics_collector
from ..observability.probe import probe
from ..observability.tracing import trace_span

logger = get_logger(__name__)

RETRYABLE_STATUS_CODES = frozenset({429, 500, 502, 503, 504})


class StageClientError(Exception):
    """Base error for stage calls; ``message`` is shown to users as is."""

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class InvalidAPIKeyError(StageClientError):
    def __init__(self):
        super().__init__("Invalid or missing API key")


class StageHTTPError(StageClientError):
    def __init__(self, status_code: int, message: str):
        super().__init__(f"HTTP error {status_code}: {message}")
        self.status_code = status_code

    @property
    def retryable(self) -> bool:
        return self.status_code in RETRYABLE_STATUS_CODES


class NoChoicesError(StageClientError):
    def __init__(self):
        super().__init__("No response choices received")


class InvalidOutputError(StageClientError):
    """The completion arrived but held nothing usable for the stage."""


@dataclass(frozen=True)
class StageRequest:
    """Fully resolved chat-completion request for one stage."""

    stage: StageKind
    model: str
    messages: tuple[dict[str, str], ...]
    temperature: float
    max_tokens: int
    top_p: float
    reasoning_effort: str | None = None
    use_completion_tokens: bool = True

    def to_payload(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "model": self.model,
            "messages": [dict(m) for m in self.messages],
            "temperature": self.temperature,
            "top_p": self.top_p,
            "stream": False,
        }
        if self.use_completion_tokens:
            payload["max_completion_tokens"] = self.max_tokens
        else:
            payload["max_tokens"] = self.max_tokens
        if self.reasoning_effort:
            payload["reasoning_effort"] = self.reasoning_effort
        return payload


@dataclass(frozen=True)
class StageResult:
    """Tagged outcome of one stage call."""

    status: ExecutionStatus
    content: str | None = None
    error: str | None = None
    duration_seconds: float = 0.0
    metadata: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def completed(cls, content: str, duration_seconds: float = 0.0, **metadata) -> "StageResult":
        return cls(ExecutionStatus.COMPLETED, content=content, duration_seconds=duration_seconds, metadata=metadata)

    @classmethod
    def failed(cls, error: str, duration_seconds: float = 0.0, **metadata) -> "StageResult":
        return cls(ExecutionStatus.FAILED, error=error, duration_seconds=duration_seconds, metadata=metadata)

    @property
    def succeeded(self) -> bool:
        return self.status is ExecutionStatus.COMPLETED


# Text helpers shared by the clients

_FENCE_OPEN = re.compile(r"```[A-Za-z0-9_+-]*[ \t]*\n?")
_THINK_BLOCK = re.compile(r"<(think|thinking)[^>]*>[\s\S]*?</(think|thinking)>", re.IGNORECASE)
_APP_FUNCTION = re.compile(r"function\s+App\s*\([^)]*\)")
_APP_CONST = re.compile(r"const\s+App\s*=")


def strip_code_fences(text: str) -> str:
    """Remove markdown fences (with or without a language tag)."""
    return _FENCE_OPEN.sub("", text).replace("```", "").strip()


def strip_think_blocks(text: str) -> str:
    return _THINK_BLOCK.sub("", text).strip()


def extract_app_component(text: str) -> str:
    """
    Cut the ``App`` component out of a completion.

    Starts at ``function App(...)`` or ``const App =`` when present and ends
    at the brace that closes the first opened block. Text without braces is
    returned trimmed.
    """
    match = _APP_FUNCTION.search(text) or _APP_CONST.search(text)
    if match:
        text = text[match.start():]

    depth = 0
    opened = False
    for index, char in enumerate(text):
        if char == "{":
            opened = True
            depth += 1
        elif char == "}":
            depth -= 1
            if opened and depth == 0:
                return text[: index + 1].strip()
    return text.strip()


def message_text(payload: dict[str, Any]) -> str:
    """Content of the first choice, falling back to its reasoning field."""
    choices = payload.get("choices") or []
    if not choices:
        raise NoChoicesError()
    message = choices[0].get("message") or {}
    content = message.get("content")
    if content:
        return content
    reasoning = message.get("reasoning")
    if reasoning:
        logger.debug("Completion content empty, using reasoning field")
        return reasoning
    return ""


def _is_transient(exc: BaseException) -> bool:
    if isinstance(exc, (httpx.TimeoutException, httpx.ConnectError)):
        return True
    return isinstance(exc, StageHTTPError) and exc.retryable


def _error_detail(response: httpx.Response) -> str:
    try:
        body = response.json()
    except (json.JSONDecodeError, ValueError):
        return response.text or "Unknown error"
    if isinstance(body, dict):
        error = body.get("error")
        if isinstance(error, dict) and error.get("message"):
            return str(error["message"])
        if isinstance(error, str):
            return error
        if body.get("message"):
            return str(body["message"])
    return response.text or "Unknown error"


class StageClient(ABC):
    """
    Base class for the four stage clients.

    Subclasses set ``stage`` and ``invalid_output_message`` and implement the
    prompt builders and ``extract``. The HTTP client can be shared across
    stages; when none is given the client owns one for the duration of an
    ``async with`` block.
    """

    stage: ClassVar[StageKind]
    invalid_output_message: ClassVar[str] = "Stage returned no usable output"

    def __init__(
        self,
        endpoint: StageEndpoint,
        inference: InferenceConfig,
        http_client: httpx.AsyncClient | None = None,
    ):
        self.endpoint = endpoint
        self.inference = inference
        self._http_client = http_client
        self._owned_client = http_client is None

    async def __aenter__(self):
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(timeout=httpx.Timeout(self.inference.timeout))
            self._owned_client = True
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        if self._owned_client and self._http_client:
            await self._http_client.aclose()
            self._http_client = None

    @abstractmethod
    def system_prompt(self) -> str:
        ...

    @abstractmethod
    def user_prompt(self, context: ContextAccumulator) -> str:
        ...

    @abstractmethod
    def extract(self, raw: str) -> str:
        """Turn raw completion text into stage content; empty means invalid."""
        ...

    def build_request(self, context: ContextAccumulator) -> StageRequest:
        """Pure mapping from a stage context to the request to send."""
        user = self.user_prompt(context)
        if context.extra_instructions:
            user = f"{user}\n\nAdditional instructions:\n{context.extra_instructions}"
        return StageRequest(
            stage=self.stage,
            model=self.endpoint.model,
            messages=(
                {"role": "system", "content": self.system_prompt()},
                {"role": "user", "content": user},
            ),
            temperature=self.endpoint.temperature,
            max_tokens=self.endpoint.max_tokens,
            top_p=self.endpoint.top_p,
            reasoning_effort=self.endpoint.reasoning_effort,
            use_completion_tokens=self.endpoint.use_completion_tokens,
        )

    def _headers(self) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {self.inference.api_key}",
            "Content-Type": "application/json",
            "Accept": "application/json",
        }

    async def _post(self, request: StageRequest) -> str:
        response = await self._http_client.post(
            f"{self.inference.base_url}/chat/completions",
            json=request.to_payload(),
            headers=self._headers(),
        )
        if response.status_code == 401:
            raise InvalidAPIKeyError()
        if response.status_code != 200:
            raise StageHTTPError(response.status_code, _error_detail(response))
        try:
            payload = response.json()
        except (json.JSONDecodeError, ValueError) as e:
            raise StageClientError("Invalid response from API") from e
        return message_text(payload)

    async def complete(self, request: StageRequest) -> str:
        """Send a request, retrying transient failures; returns raw completion text."""
        if not (self.inference.api_key or "").strip():
            raise InvalidAPIKeyError()
        if self._http_client is None:
            raise RuntimeError("Stage client not initialized. Use async context manager.")

        retrying = AsyncRetrying(
            stop=stop_after_attempt(self.inference.max_retries),
            wait=wait_exponential(
                multiplier=1, min=self.inference.retry_wait_min, max=self.inference.retry_wait_max
            ),
            retry=retry_if_exception(_is_transient),
            reraise=True,
        )
        async for attempt in retrying:
            with attempt:
                if attempt.retry_state.attempt_number > 1:
                    logger.warning(
                        f"Retrying {self.stage.display_name} request",
                        stage=self.stage.value,
                        attempt=attempt.retry_state.attempt_number,
                    )
                return await self._post(request)
        raise AssertionError("unreachable")

    @trace_span("stage.run")
    async def run(self, context: ContextAccumulator) -> StageResult:
        """Execute this stage for ``context``; never raises for remote failures."""
        start = time.perf_counter()
        session_id = get_session_id()
        request = self.build_request(context)

        logger.info(
            f"Calling {self.stage.display_name}",
            stage=self.stage.value,
            model=request.model,
            prompt_length=len(context.original_prompt),
        )

        try:
            with probe(f"stage.{self.stage.value}", session_id, model=request.model):
                raw = await self.complete(request)
            content = self.extract(raw)
            if not content:
                raise InvalidOutputError(self.invalid_output_message)
        except StageClientError as e:
            duration = time.perf_counter() - start
            get_metrics_collector().record_stage_call(self.stage.value, duration, success=False)
            logger.warning(f"{self.stage.display_name} failed: {e.message}", stage=self.stage.value)
            return StageResult.failed(e.message, duration, model=request.model)
        except httpx.HTTPError as e:
            duration = time.perf_counter() - start
            get_metrics_collector().record_stage_call(self.stage.value, duration, success=False)
            logger.warning(f"{self.stage.display_name} request error: {e}", stage=self.stage.value)
            return StageResult.failed(f"Network error: {e}", duration, model=request.model)

        duration = time.perf_counter() - start
        get_metrics_collector().record_stage_call(self.stage.value, duration, success=True)
        return StageResult.completed(content, duration, model=request.model, raw_length=len(raw))
