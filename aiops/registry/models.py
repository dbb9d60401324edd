"""
Model Registry

Pricing and dispatch metadata for every model the engine can record,
invoke, compare or benchmark. Costs are USD per 1M tokens:

- openai/gpt-4o: flagship chat model ($2.50 in / $10.00 out)
- openai/gpt-4o-mini: cheap chat model, default judge ($0.15 / $0.60)
- anthropic/claude-3-haiku: ($0.25 / $1.25)
- anthropic/claude-3-sonnet: ($3.00 / $15.00)
- openai/text-embedding-3-small: embeddings ($0.02)
- openai/text-embedding-ada-002: legacy embeddings ($0.10)
- groq/llama-3.1-8b: bulk inference ($0.05 / $0.08)

Model identifiers use the ``provider/name`` form; lookups also accept the
bare name.
"""

from enum import Enum
from pydantic import BaseModel, Field


class ModelProvider(str, Enum):
    """Inference providers."""

    OPENAI = "openai"
    GROQ = "groq"
    ANTHROPIC = "anthropic"


class ModelKind(str, Enum):
    """What endpoint a model is served from."""

    CHAT = "chat"
    EMBEDDING = "embedding"


class ModelMetadata(BaseModel):
    """
    Complete metadata for a registered model.

    This class holds all information needed to:
    1. Dispatch requests to the correct provider endpoint
    2. Price recorded invocations
    3. Compare models on cost in reports and benchmarks
    """

    model_id: str = Field(
        ...,
        description="Unique identifier in provider/name form",
    )

    display_name: str = Field(
        ...,
        description="Human-readable model name",
    )

    provider: ModelProvider = Field(
        ...,
        description="Inference provider",
    )

    kind: ModelKind = Field(
        default=ModelKind.CHAT,
        description="Chat completion or embedding model",
    )

    api_model_name: str = Field(
        ...,
        description="Model name used in provider API calls",
    )

    cost_per_1m_input_tokens: float = Field(
        ...,
        ge=0,
        description="Cost in USD per 1 million input tokens",
    )

    cost_per_1m_output_tokens: float = Field(
        ...,
        ge=0,
        description="Cost in USD per 1 million output tokens",
    )

    latency_target_ms: int = Field(
        ...,
        gt=0,
        description="Target response latency in milliseconds",
    )

    @property
    def short_name(self) -> str:
        """Model name without the provider prefix."""
        return self.model_id.split("/", 1)[-1]


def provider_for(model_id: str) -> str:
    """
    Derive the provider from a ``provider/name`` identifier.

    Identifiers without a prefix are attributed to OpenAI.
    """
    if "/" in model_id:
        return model_id.split("/", 1)[0]
    return ModelProvider.OPENAI.value


class ModelRegistry:
    """
    Central registry of all known models.

    Attributes:
        _models: Dictionary mapping model IDs to their metadata
        _aliases: Bare model names mapped to full model IDs
    """

    def __init__(self) -> None:
        self._models: dict[str, ModelMetadata] = {}
        self._aliases: dict[str, str] = {}
        self._initialize_models()

    def _initialize_models(self) -> None:
        """Register all available models with their pricing."""

        self._register(
            ModelMetadata(
                model_id="openai/gpt-4o",
                display_name="GPT-4o",
                provider=ModelProvider.OPENAI,
                api_model_name="gpt-4o",
                cost_per_1m_input_tokens=2.50,
                cost_per_1m_output_tokens=10.00,
                latency_target_ms=5000,
            )
        )

        self._register(
            ModelMetadata(
                model_id="openai/gpt-4o-mini",
                display_name="GPT-4o mini",
                provider=ModelProvider.OPENAI,
                api_model_name="gpt-4o-mini",
                cost_per_1m_input_tokens=0.15,
                cost_per_1m_output_tokens=0.60,
                latency_target_ms=3000,
            )
        )

        self._register(
            ModelMetadata(
                model_id="anthropic/claude-3-haiku",
                display_name="Claude 3 Haiku",
                provider=ModelProvider.ANTHROPIC,
                api_model_name="claude-3-haiku-20240307",
                cost_per_1m_input_tokens=0.25,
                cost_per_1m_output_tokens=1.25,
                latency_target_ms=2500,
            )
        )

        self._register(
            ModelMetadata(
                model_id="anthropic/claude-3-sonnet",
                display_name="Claude 3 Sonnet",
                provider=ModelProvider.ANTHROPIC,
                api_model_name="claude-3-sonnet-20240229",
                cost_per_1m_input_tokens=3.00,
                cost_per_1m_output_tokens=15.00,
                latency_target_ms=5000,
            )
        )

        self._register(
            ModelMetadata(
                model_id="openai/text-embedding-3-small",
                display_name="Text Embedding 3 Small",
                provider=ModelProvider.OPENAI,
                kind=ModelKind.EMBEDDING,
                api_model_name="text-embedding-3-small",
                cost_per_1m_input_tokens=0.02,
                cost_per_1m_output_tokens=0.0,
                latency_target_ms=1000,
            )
        )

        self._register(
            ModelMetadata(
                model_id="openai/text-embedding-ada-002",
                display_name="Ada 002 Embeddings",
                provider=ModelProvider.OPENAI,
                kind=ModelKind.EMBEDDING,
                api_model_name="text-embedding-ada-002",
                cost_per_1m_input_tokens=0.10,
                cost_per_1m_output_tokens=0.0,
                latency_target_ms=1000,
            )
        )

        self._register(
            ModelMetadata(
                model_id="groq/llama-3.1-8b",
                display_name="Llama 3.1 8B Instant",
                provider=ModelProvider.GROQ,
                api_model_name="llama-3.1-8b-instant",
                cost_per_1m_input_tokens=0.05,
                cost_per_1m_output_tokens=0.08,
                latency_target_ms=500,
            )
        )

    def _register(self, model: ModelMetadata) -> None:
        """Register a model and its bare-name alias."""
        self._models[model.model_id] = model
        self._aliases[model.short_name] = model.model_id

    def get_model(self, model_id: str) -> ModelMetadata | None:
        """
        Retrieve model metadata by ID or bare name.

        Args:
            model_id: ``provider/name`` identifier or bare model name

        Returns:
            ModelMetadata if found, None otherwise
        """
        model = self._models.get(model_id)
        if model is None:
            alias = self._aliases.get(model_id.split("/", 1)[-1])
            if alias:
                model = self._models.get(alias)
        return model

    def list_models(self) -> list[ModelMetadata]:
        """
        Return all registered models.

        Returns:
            List of all ModelMetadata instances
        """
        return list(self._models.values())

    def list_models_by_provider(self, provider: ModelProvider) -> list[ModelMetadata]:
        """
        Return models filtered by provider.

        Args:
            provider: The ModelProvider to filter by

        Returns:
            List of ModelMetadata instances served by that provider
        """
        return [m for m in self._models.values() if m.provider == provider]

    def get_model_ids(self) -> list[str]:
        """
        Return all registered model IDs.

        Returns:
            List of model ID strings
        """
        return list(self._models.keys())


_registry_instance: ModelRegistry | None = None


def get_model_registry() -> ModelRegistry:
    """
    Get the global model registry instance.

    The registry is static reference data, so sharing one instance across
    services is safe.

    Returns:
        The shared ModelRegistry instance
    """
    global _registry_instance
    if _registry_instance is None:
        _registry_instance = ModelRegistry()
    return _registry_instance
