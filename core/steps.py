"""Step definition: binds a provider to its parameters, dependencies and retry policy."""

from __future__ import annotations

import hashlib
import json
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional


@dataclass
class RetryPolicy:
    """How many attempts a retryable step gets and how long to wait between them."""
    max_attempts: int = 3
    base_delay: float = 1.0
    factor: float = 2.0
    max_delay: float = 30.0

    def delay_for(self, attempt: int) -> float:
        """Backoff before the attempt following ``attempt`` (1-based)."""
        return min(self.base_delay * self.factor ** (attempt - 1), self.max_delay)

    @classmethod
    def from_dict(cls, raw: Optional[Dict[str, Any]],
                  base: Optional[RetryPolicy] = None) -> RetryPolicy:
        base = base or cls()
        raw = raw or {}
        return cls(
            max_attempts=int(raw.get("max_attempts", base.max_attempts)),
            base_delay=float(raw.get("base_delay", base.base_delay)),
            factor=float(raw.get("factor", base.factor)),
            max_delay=float(raw.get("max_delay", base.max_delay)),
        )


@dataclass
class Step:
    """A named, idempotent unit of provisioning work.

    ``provider`` is the provider type name the manifest refers to; the
    concrete provider instance is bound by name in a ProviderRegistry.
    """
    name: str
    provider: str
    params: Dict[str, Any] = field(default_factory=dict)
    depends_on: List[str] = field(default_factory=list)
    retryable: bool = True
    critical: bool = True
    retry: RetryPolicy = field(default_factory=RetryPolicy)

    @property
    def max_attempts(self) -> int:
        return max(1, self.retry.max_attempts) if self.retryable else 1

    def param_hash(self, provider_settings: Optional[Dict[str, Any]] = None) -> str:
        """Canonical hash of everything that determines what this step does.

        Same provider type + same params + same provider settings = same hash.
        """
        canonical = json.dumps({
            "provider": self.provider,
            "params": self.params,
            "settings": provider_settings or {},
        }, sort_keys=True, default=str)
        return hashlib.sha256(canonical.encode()).hexdigest()[:16]
