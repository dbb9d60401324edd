"""
Dispatcher module: model invocation collaborator.

Provides a unified interface for running prompts against models across
providers (OpenAI, Groq) with a bounded timeout per call.

Key exports:
- InvocationResult: Standardized response from any provider
- ModelInvoker: Protocol implemented by invokers
- ProviderClients: Lazy-initialized async SDK clients
- ProviderInvoker: Registry-aware invoker
- build_messages(): Chat message construction from prompt and params
"""

from aiops.dispatcher.handlers import (
    # Data classes
    InvocationResult,
    # Interfaces
    ModelInvoker,
    # Provider clients
    ProviderClients,
    ProviderInvoker,
    # Helpers
    build_messages,
)

__all__ = [
    # Data classes
    "InvocationResult",
    # Interfaces
    "ModelInvoker",
    # Provider clients
    "ProviderClients",
    "ProviderInvoker",
    # Helpers
    "build_messages",
]
