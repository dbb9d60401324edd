"""
Registry module: model pricing and dispatch metadata.

This module contains:
- models.py: priced model pool with provider and endpoint metadata

Public API:
- ModelProvider: Enum for inference providers
- ModelKind: Enum for chat vs embedding endpoints
- ModelMetadata: Pydantic model for model configuration
- ModelRegistry: Central registry class
- get_model_registry: Shared accessor function
- provider_for: Provider derived from a model identifier
"""

from aiops.registry.models import (
    ModelKind,
    ModelMetadata,
    ModelProvider,
    ModelRegistry,
    get_model_registry,
    provider_for,
)

__all__ = [
    "ModelProvider",
    "ModelKind",
    "ModelMetadata",
    "ModelRegistry",
    "get_model_registry",
    "provider_for",
]
