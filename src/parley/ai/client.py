"""Async model client for OpenAI-compatible chat completion endpoints."""

from __future__ import annotations

import asyncio
import inspect
import json
import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, AsyncIterator, Dict, Iterable, List, Mapping, Sequence, cast

import httpx
from openai import APIConnectionError, APIError, APIStatusError, AsyncOpenAI, RateLimitError
from openai.lib.streaming.chat import ChatCompletionStreamEvent
from openai.types.chat import ChatCompletionMessageParam, ChatCompletionToolParam
from tenacity import AsyncRetrying, retry_if_exception, stop_after_attempt, wait_exponential

from .orchestration.model_types import ChatPayload, StreamEvent

if TYPE_CHECKING:  # pragma: no cover
    from .orchestration.cancellation import CancellationToken

LOGGER = logging.getLogger(__name__)

_RETRYABLE_ERRORS: tuple[type[BaseException], ...] = (
    APIError,
    APIStatusError,
    APIConnectionError,
    RateLimitError,
    httpx.TimeoutException,
)


@dataclass(slots=True)
class ClientSettings:
    """Subset of settings required to configure the AI client."""

    base_url: str
    api_key: str
    model: str
    organization: str | None = None
    temperature: float | None = 0.2
    request_timeout: float | None = 90.0
    max_retries: int = 3
    retry_min_seconds: float = 0.5
    retry_max_seconds: float = 6.0
    web_search_model: str | None = None
    default_headers: Mapping[str, str] | None = None
    debug_logging: bool = False


@dataclass(slots=True)
class AIStreamEvent:
    """Normalized representation of OpenAI streaming deltas."""

    type: str
    content: str | None = None
    tool_name: str | None = None
    tool_arguments: str | None = None
    parsed: Any | None = None
    tool_call_id: str | None = None


class AIClient:
    """OpenAI-backed model collaborator.

    :meth:`stream_chat` yields raw normalized deltas; :meth:`invoke` adapts them
    to the engine's :class:`StreamEvent` protocol and honours the request's
    cancellation token between events.
    """

    def __init__(self, settings: ClientSettings, *, client: AsyncOpenAI | None = None) -> None:
        self._settings = settings
        self._client = client or self._build_client(settings)
        self._models_cache: List[str] | None = None
        self._models_lock = asyncio.Lock()

    @property
    def settings(self) -> ClientSettings:
        return self._settings

    async def invoke(self, payload: ChatPayload, token: CancellationToken) -> AsyncIterator[StreamEvent]:
        """Stream ``payload`` as engine events.

        Transport failures are reported as a single ``error`` event; an
        observed cancellation ends the stream with a ``cancelled`` event.
        """

        parts: list[str] = []
        tools_used: list[str] = []
        messages = self._attach(payload.messages, payload.attachments)
        model = payload.model or self._settings.model
        extra: Dict[str, Any] = {}
        if payload.web_search and self._settings.web_search_model:
            model = self._settings.web_search_model
            extra["web_search_options"] = {}
        if payload.metadata:
            extra["metadata"] = dict(payload.metadata)
        if token.cancelled:
            yield StreamEvent(type="cancelled")
            return
        try:
            async for event in self.stream_chat(
                messages,
                tools=payload.tools or None,
                model=model,
                **extra,
            ):
                if token.cancelled:
                    LOGGER.debug("Model stream observed cancellation (generation %s)", token.generation)
                    yield StreamEvent(type="cancelled")
                    return
                if event.type == "content.delta" and event.content:
                    parts.append(event.content)
                    yield StreamEvent(type="token", text=event.content)
                elif event.type == "tool_calls.function.arguments.done" and event.tool_name:
                    arguments = self._parse_arguments(event)
                    yield StreamEvent(type="tool.start", tool_name=event.tool_name, arguments=arguments)
                    yield StreamEvent(type="tool.end", tool_name=event.tool_name)
                    if event.tool_name not in tools_used:
                        tools_used.append(event.tool_name)
        except _RETRYABLE_ERRORS as exc:
            LOGGER.warning("Model stream failed: %s", exc)
            yield StreamEvent(type="error", error=str(exc) or type(exc).__name__)
            return
        if token.cancelled:
            yield StreamEvent(type="cancelled")
            return
        if tools_used:
            yield StreamEvent(type="tools.used", tools=tuple(tools_used))
        yield StreamEvent(type="done", text="".join(parts))

    async def stream_chat(
        self,
        messages: Iterable[Mapping[str, Any] | ChatCompletionMessageParam],
        *,
        tools: Iterable[ChatCompletionToolParam] | None = None,
        model: str | None = None,
        temperature: float | None = None,
        **extra_params: Any,
    ) -> AsyncIterator[AIStreamEvent]:
        """Stream chat completions for the provided messages.

        Connection attempts are retried until the first delta arrives; a
        failure after that propagates so no token is ever delivered twice.
        """

        payload: Dict[str, Any] = {
            "model": model or self._settings.model,
            "messages": self._coerce_messages(messages),
        }
        if tools:
            payload["tools"] = list(tools)
        effective_temperature = temperature if temperature is not None else self._settings.temperature
        if effective_temperature is not None:
            payload["temperature"] = effective_temperature
        payload.update(extra_params)
        LOGGER.debug("Starting streamed chat completion via %s with %d message(s)", payload["model"], len(payload["messages"]))
        if self._settings.debug_logging:
            self._log_prompt_payload(payload)

        emitted = False
        async for attempt in self._retrying(lambda: not emitted):
            with attempt:
                async with self._client.chat.completions.stream(**payload) as stream:
                    async for event in stream:
                        normalized = self._normalize_stream_event(event)
                        if normalized is not None:
                            emitted = True
                            yield normalized

    async def list_models(self, *, force_refresh: bool = False) -> List[str]:
        """Return the model identifiers offered by the endpoint."""

        if self._models_cache is not None and not force_refresh:
            return list(self._models_cache)
        async with self._models_lock:
            if self._models_cache is not None and not force_refresh:
                return list(self._models_cache)
            response = await self._client.models.list()
            self._models_cache = [item.id for item in response.data if getattr(item, "id", None)]
            return list(self._models_cache)

    async def aclose(self) -> None:
        """Close the underlying OpenAI client to release network resources."""

        close = getattr(self._client, "close", None)
        if close is None:
            return
        result = close()
        if inspect.isawaitable(result):
            await result

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _build_client(self, settings: ClientSettings) -> AsyncOpenAI:
        headers = dict(settings.default_headers) if settings.default_headers else None
        return AsyncOpenAI(
            api_key=settings.api_key,
            base_url=settings.base_url,
            organization=settings.organization,
            timeout=settings.request_timeout,
            default_headers=headers,
        )

    def _retrying(self, may_retry: Any) -> AsyncRetrying:
        return AsyncRetrying(
            reraise=True,
            stop=stop_after_attempt(max(1, self._settings.max_retries)),
            wait=wait_exponential(
                multiplier=self._settings.retry_min_seconds,
                max=self._settings.retry_max_seconds,
            ),
            retry=retry_if_exception(lambda exc: isinstance(exc, _RETRYABLE_ERRORS) and may_retry()),
        )

    @staticmethod
    def _coerce_messages(
        messages: Iterable[Mapping[str, Any] | ChatCompletionMessageParam],
    ) -> List[ChatCompletionMessageParam]:
        normalized = [cast(ChatCompletionMessageParam, dict(message)) for message in messages]
        if not normalized:
            raise ValueError("At least one message is required to start a chat")
        return normalized

    @staticmethod
    def _attach(messages: Sequence[Mapping[str, str]], attachments: Sequence[Mapping[str, Any]]) -> list[Dict[str, Any]]:
        result = [dict(message) for message in messages]
        if not attachments or not result:
            return result
        blocks = []
        for item in attachments:
            name = item.get("name") or "attachment"
            text = str(item.get("text") or "").strip()
            if text:
                blocks.append(f"[Attachment: {name}]\n{text}")
        if blocks and result[-1].get("role") == "user":
            result[-1]["content"] = "\n\n".join([str(result[-1].get("content") or ""), *blocks])
        return result

    @staticmethod
    def _parse_arguments(event: AIStreamEvent) -> Mapping[str, Any]:
        if isinstance(event.parsed, Mapping):
            return event.parsed
        if not event.tool_arguments:
            return {}
        try:
            parsed = json.loads(event.tool_arguments)
        except json.JSONDecodeError:
            LOGGER.debug("Tool %s sent non-JSON arguments", event.tool_name)
            return {}
        return parsed if isinstance(parsed, dict) else {}

    @staticmethod
    def _normalize_stream_event(event: ChatCompletionStreamEvent[Any]) -> AIStreamEvent | None:
        event_type = getattr(event, "type", None)
        if event_type == "content.delta":
            delta_text = getattr(event, "delta", None)
            return AIStreamEvent(type=event_type, content=str(delta_text)) if delta_text else None
        if event_type == "content.done":
            return AIStreamEvent(type=event_type, content=getattr(event, "content", None))
        if event_type == "tool_calls.function.arguments.done":
            return AIStreamEvent(
                type=event_type,
                tool_name=getattr(event, "name", None),
                tool_arguments=getattr(event, "arguments", None),
                parsed=getattr(event, "parsed_arguments", None),
                tool_call_id=getattr(event, "id", None) or getattr(event, "tool_call_id", None),
            )
        return None

    def _log_prompt_payload(self, payload: Mapping[str, Any]) -> None:
        try:
            serialized = json.dumps(payload, ensure_ascii=False, indent=2)
        except (TypeError, ValueError):
            LOGGER.debug("AI prompt payload (unserializable): %s", payload)
        else:
            LOGGER.debug("AI prompt payload:\n%s", serialized)


__all__ = ["AIClient", "AIStreamEvent", "ClientSettings"]
