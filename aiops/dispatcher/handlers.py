"""
Dispatcher Handlers - Model invocation collaborator.

This module performs the actual API calls to model providers (OpenAI, Groq),
hiding provider differences behind a single ``invoke(model_id, prompt,
params)`` interface used by the quality judge, the A/B framework and the
benchmark runner.

Key components:
- InvocationResult: Standardized response from any provider
- ModelInvoker: Protocol every invoker satisfies (tests use fakes)
- ProviderClients: Lazy-initialized async SDK clients
- ProviderInvoker: Registry-aware invoker with a bounded timeout

Invocations are never retried here; retry policy belongs to the caller.
"""

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Any, Protocol

from groq import AsyncGroq
from openai import AsyncOpenAI

from aiops.config import Settings, get_settings
from aiops.registry.models import (
    ModelKind,
    ModelMetadata,
    ModelProvider,
    ModelRegistry,
    get_model_registry,
)

logger = logging.getLogger(__name__)


@dataclass
class InvocationResult:
    """
    Result from one model invocation.

    Attributes:
        text: Generated text (or an embedding description for embedding models)
        input_tokens: Prompt tokens reported by the provider
        output_tokens: Completion tokens reported by the provider
        latency_ms: Wall-clock time of the call in milliseconds
        model_used: Model ID from registry
        provider: Provider that executed inference
        error: Error message if the invocation failed
    """

    text: str
    input_tokens: int
    output_tokens: int
    latency_ms: float
    model_used: str
    provider: str
    error: str | None = None  # Error message if failed

    @property
    def success(self) -> bool:
        """Check if invocation completed without errors."""
        return self.error is None

    @property
    def total_tokens(self) -> int:
        """Total tokens consumed (input + output)."""
        return self.input_tokens + self.output_tokens


class ModelInvoker(Protocol):
    """Anything that can run a prompt against a model."""

    async def invoke(
        self, model_id: str, prompt: str, params: dict[str, Any] | None = None
    ) -> InvocationResult: ...


class ProviderClients:
    """
    Lazy-initialized provider SDK clients.

    Clients are created on first use to avoid initialization errors
    when API keys are not configured for unused providers.
    """

    def __init__(self, settings: Settings | None = None) -> None:
        self._settings = settings or get_settings()
        self._groq: AsyncGroq | None = None
        self._openai: AsyncOpenAI | None = None

    @property
    def groq(self) -> AsyncGroq:
        """
        Get Groq client (lazy initialization).

        Raises:
            ValueError: If GROQ_API_KEY is not configured.
        """
        if self._groq is None:
            if self._settings.groq_api_key is None:
                raise ValueError("GROQ_API_KEY is not configured")
            self._groq = AsyncGroq(
                api_key=self._settings.groq_api_key.get_secret_value()
            )
            logger.debug("Initialized Groq client")
        return self._groq

    @property
    def openai(self) -> AsyncOpenAI:
        """
        Get OpenAI client (lazy initialization).

        Raises:
            ValueError: If OPENAI_API_KEY is not configured.
        """
        if self._openai is None:
            if self._settings.openai_api_key is None:
                raise ValueError("OPENAI_API_KEY is not configured")
            self._openai = AsyncOpenAI(
                api_key=self._settings.openai_api_key.get_secret_value()
            )
            logger.debug("Initialized OpenAI client")
        return self._openai


def build_messages(prompt: str, params: dict[str, Any]) -> list[dict[str, str]]:
    """
    Build the chat message list for a prompt.

    Explicit ``messages`` in params win; otherwise the prompt becomes a
    single user message, preceded by ``system_prompt`` when given.
    """
    if params.get("messages"):
        return list(params["messages"])
    messages = []
    if params.get("system_prompt"):
        messages.append({"role": "system", "content": params["system_prompt"]})
    messages.append({"role": "user", "content": prompt})
    return messages


class ProviderInvoker:
    """
    Invoke registered models through their provider SDKs.

    Every call is bounded by ``timeout_seconds``; a timeout or provider
    error yields an ``InvocationResult`` with ``error`` set rather than an
    exception, so callers record failures uniformly.

    Example:
        invoker = ProviderInvoker()
        result = await invoker.invoke("openai/gpt-4o-mini", "Summarize Q3")
        if result.success:
            print(result.text)
    """

    def __init__(
        self,
        settings: Settings | None = None,
        registry: ModelRegistry | None = None,
        clients: ProviderClients | None = None,
        timeout_seconds: float | None = None,
    ):
        self._settings = settings or get_settings()
        self._registry = registry or get_model_registry()
        self._clients = clients or ProviderClients(self._settings)
        self._timeout = timeout_seconds or self._settings.model_timeout_seconds

    async def invoke(
        self, model_id: str, prompt: str, params: dict[str, Any] | None = None
    ) -> InvocationResult:
        """
        Run a prompt against a model.

        Args:
            model_id: Registered model identifier
            prompt: Prompt text
            params: Optional ``temperature``, ``max_tokens``,
                ``system_prompt`` or ``messages``

        Returns:
            InvocationResult with text, usage and latency
        """
        params = params or {}
        model = self._registry.get_model(model_id)
        if model is None:
            logger.error(f"Invocation requested for unknown model: {model_id}")
            return InvocationResult(
                text="",
                input_tokens=0,
                output_tokens=0,
                latency_ms=0.0,
                model_used=model_id,
                provider="unknown",
                error=f"Unknown model: {model_id}",
            )

        start_time = time.perf_counter()
        try:
            return await asyncio.wait_for(
                self._dispatch(model, prompt, params, start_time), self._timeout
            )
        except asyncio.TimeoutError:
            latency_ms = (time.perf_counter() - start_time) * 1000
            logger.warning(
                f"Invocation timed out: model={model.model_id}, "
                f"timeout={self._timeout}s"
            )
            return self._failure(model, latency_ms, f"timeout after {self._timeout}s")
        except Exception as e:
            latency_ms = (time.perf_counter() - start_time) * 1000
            logger.error(f"Invocation failed: model={model.model_id}, error={e}")
            return self._failure(model, latency_ms, str(e))

    async def _dispatch(
        self,
        model: ModelMetadata,
        prompt: str,
        params: dict[str, Any],
        start_time: float,
    ) -> InvocationResult:
        match model.provider:
            case ModelProvider.OPENAI if model.kind == ModelKind.EMBEDDING:
                return await self._invoke_openai_embedding(model, prompt, start_time)
            case ModelProvider.OPENAI:
                return await self._invoke_chat(
                    self._clients.openai, model, prompt, params, start_time
                )
            case ModelProvider.GROQ:
                return await self._invoke_chat(
                    self._clients.groq, model, prompt, params, start_time
                )
            case _:
                logger.warning(f"No client configured for provider {model.provider.value}")
                return self._failure(
                    model, 0.0, f"Provider {model.provider.value} is not configured"
                )

    async def _invoke_chat(
        self,
        client: AsyncOpenAI | AsyncGroq,
        model: ModelMetadata,
        prompt: str,
        params: dict[str, Any],
        start_time: float,
    ) -> InvocationResult:
        response = await client.chat.completions.create(
            model=model.api_model_name,
            messages=build_messages(prompt, params),
            max_tokens=params.get("max_tokens", 1000),
            temperature=params.get("temperature", 0.7),
        )
        latency_ms = (time.perf_counter() - start_time) * 1000
        text = response.choices[0].message.content or ""

        logger.info(
            f"{model.provider.value} invocation completed: model={model.model_id}, "
            f"latency={latency_ms:.0f}ms"
        )

        return InvocationResult(
            text=text,
            input_tokens=response.usage.prompt_tokens,
            output_tokens=response.usage.completion_tokens,
            latency_ms=latency_ms,
            model_used=model.model_id,
            provider=model.provider.value,
        )

    async def _invoke_openai_embedding(
        self, model: ModelMetadata, prompt: str, start_time: float
    ) -> InvocationResult:
        response = await self._clients.openai.embeddings.create(
            model=model.api_model_name, input=prompt
        )
        latency_ms = (time.perf_counter() - start_time) * 1000
        dimensions = len(response.data[0].embedding)

        return InvocationResult(
            text=f"embedding_vector_{dimensions}_dimensions",
            input_tokens=response.usage.prompt_tokens,
            output_tokens=0,
            latency_ms=latency_ms,
            model_used=model.model_id,
            provider=model.provider.value,
        )

    @staticmethod
    def _failure(model: ModelMetadata, latency_ms: float, error: str) -> InvocationResult:
        return InvocationResult(
            text="",
            input_tokens=0,
            output_tokens=0,
            latency_ms=latency_ms,
            model_used=model.model_id,
            provider=model.provider.value,
            error=error,
        )
