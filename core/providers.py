"""Provider base class, provider type registry, and the per-run ProviderRegistry.

Providers perform a step's side effects. They:
- Accept a ProvisionContext and the step's params
- Perform their task (IO allowed: commands, file writes, network)
- Return an Outcome (or raise; the executor turns exceptions into failures)
- Do NOT decide what runs next (that is the planner's and executor's job)
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, Iterable, List, Optional, Type

from core.errors import UnknownStepError
from core.models import HostFacts, Outcome, ProvisionContext

logger = logging.getLogger(__name__)


class Provider(ABC):
    """Base class for all step providers."""

    name: str = "base"

    @classmethod
    def for_host(cls, facts: HostFacts) -> Provider:
        """Build the provider appropriate for ``facts``.

        Platform-dependent providers override this; the choice is made once,
        before planning, instead of branching inside ``apply``.
        """
        return cls()

    def settings(self) -> Dict[str, Any]:
        """Provider configuration that changes what ``apply`` does."""
        return {}

    @abstractmethod
    async def apply(self, ctx: ProvisionContext, params: Dict[str, Any]) -> Outcome:
        """Bring the host to the state described by ``params``."""
        ...

    async def verify(self, ctx: ProvisionContext, params: Dict[str, Any]) -> Optional[str]:
        """Describe the post-condition on the host, or None if not checkable."""
        return None


class FallbackProvider(Provider):
    """Try ``primary``; if it raises, try ``fallback`` and flag the outcome."""

    name = "fallback"

    def __init__(self, primary: Provider, fallback: Provider):
        self.primary = primary
        self.fallback = fallback

    def settings(self) -> Dict[str, Any]:
        return {
            "primary": self.primary.settings(),
            "fallback": self.fallback.settings(),
        }

    async def apply(self, ctx: ProvisionContext, params: Dict[str, Any]) -> Outcome:
        try:
            return await self.primary.apply(ctx, params)
        except Exception as exc:
            logger.warning("Primary provider failed, trying fallback: %s", exc)
        outcome = await self.fallback.apply(ctx, params)
        if outcome.is_success:
            outcome.fallback_used = True
        return outcome

    async def verify(self, ctx: ProvisionContext, params: Dict[str, Any]) -> Optional[str]:
        return await self.primary.verify(ctx, params)


# Provider type registry: type name -> class
_PROVIDER_TYPES: Dict[str, Type[Provider]] = {}


def register_provider(name: str):
    """Decorator to register a provider class by type name."""
    def decorator(cls: Type[Provider]):
        _PROVIDER_TYPES[name] = cls
        cls.name = name
        return cls
    return decorator


def get_provider_type(name: str) -> Type[Provider]:
    """Look up a registered provider class by type name."""
    cls = _PROVIDER_TYPES.get(name)
    if not cls:
        available = list(_PROVIDER_TYPES.keys())
        raise UnknownStepError(name, available)
    return cls


def list_provider_types() -> List[str]:
    """List all registered provider type names."""
    return list(_PROVIDER_TYPES.keys())


class ProviderRegistry:
    """Maps step names to the provider instances that perform them."""

    def __init__(self) -> None:
        self._bindings: Dict[str, Provider] = {}

    @classmethod
    def from_steps(cls, steps: Iterable, facts: HostFacts) -> ProviderRegistry:
        """Bind every step to a provider of its declared type, built for ``facts``."""
        registry = cls()
        for step in steps:
            provider_cls = get_provider_type(step.provider)
            registry.register(step.name, provider_cls.for_host(facts))
        return registry

    def register(self, name: str, provider: Provider) -> None:
        if name in self._bindings:
            raise ValueError(f"Step '{name}' already has a provider; use override()")
        self._bindings[name] = provider

    def override(self, name: str, provider: Provider) -> None:
        """Replace (or add) the provider bound to ``name``."""
        if name in self._bindings:
            logger.info("Overriding provider", extra={"step": name})
        self._bindings[name] = provider

    def resolve(self, name: str) -> Provider:
        provider = self._bindings.get(name)
        if provider is None:
            raise UnknownStepError(name, self.names())
        return provider

    def names(self) -> List[str]:
        return list(self._bindings.keys())

    def __contains__(self, name: str) -> bool:
        return name in self._bindings
