"""
Secret references.

Configuration names keys by reference ("env:PINATA_API_KEY"), never by
value. The only scheme understood is "env:<VAR>". Callers that keep keys
elsewhere (a wallet, a test fixture) inject their own SecretsProvider.
"""

from __future__ import annotations

import os
from typing import Protocol

ENV_PREFIX = "env:"


class SecretsProvider(Protocol):
    def supports(self, ref: str) -> bool:
        ...

    def get(self, ref: str) -> str | None:
        """Value for a reference, or None when it has none."""
        ...


class EnvSecretsProvider:
    """"env:PINATA_API_KEY" -> os.environ["PINATA_API_KEY"]"""

    def supports(self, ref: str) -> bool:
        return ref.startswith(ENV_PREFIX) and len(ref) > len(ENV_PREFIX)

    def get(self, ref: str) -> str | None:
        if not self.supports(ref):
            return None
        return os.environ.get(ref[len(ENV_PREFIX) :]) or None


def resolve_secret(ref: str, provider: SecretsProvider | None = None) -> str:
    """
    Resolve a reference to its value.

    Raises:
        ValueError: the reference scheme is unsupported or the value is unset
    """
    provider = provider or EnvSecretsProvider()
    if not provider.supports(ref):
        raise ValueError(f"unsupported secret reference: {ref!r}")
    value = provider.get(ref)
    if value is None:
        raise ValueError(f"secret not set: {ref}")
    return value
