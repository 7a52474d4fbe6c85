"""
Session context: the connected identity and an advisory pointer cache.

The cache remembers the last pointer this process observed per identity so
repeated reads can skip the ledger when the caller tolerates staleness. It
is never authoritative: writes always re-resolve through the ledger. The
cache lives only as long as the Session object.
"""

from __future__ import annotations

import logging
import os
from typing import Protocol

from .errors import NoIdentityAvailable
from .models import Credential, Identity
from .secrets import EnvSecretsProvider, SecretsProvider

logger = logging.getLogger(__name__)


class IdentityProvider(Protocol):
    """
    External collaborator that establishes who the user is.

    connect() raises NoIdentityAvailable when no principal exists and
    UserDeclined when the user refuses to connect.
    """

    def connect(self) -> Identity:
        ...

    def credential(self, identity: Identity) -> Credential:
        """Credential able to authorize commits, issued by this provider."""
        ...


class StaticIdentityProvider:
    """A fixed identity and secret, e.g. from CLI flags or tests."""

    def __init__(self, identity: Identity | str, secret: str):
        self.identity = identity if isinstance(identity, Identity) else Identity(identity)
        self._secret = secret

    def connect(self) -> Identity:
        return self.identity

    def credential(self, identity: Identity) -> Credential:
        # A provider can only sign for its own account
        return Credential(self.identity, self._secret)


class EnvIdentityProvider:
    """
    Identity from an environment variable, secret from a secret reference.

    Example: identity_var="BLOCKHEALTH_IDENTITY", secret_ref="env:BLOCKHEALTH_SECRET"
    """

    def __init__(
        self,
        identity_var: str = "BLOCKHEALTH_IDENTITY",
        secret_ref: str = "env:BLOCKHEALTH_SECRET",
        *,
        secrets: SecretsProvider | None = None,
    ):
        self.identity_var = identity_var
        self.secret_ref = secret_ref
        self._secrets = secrets or EnvSecretsProvider()

    def connect(self) -> Identity:
        value = os.environ.get(self.identity_var, "").strip()
        if not value:
            raise NoIdentityAvailable(f"no identity configured (set {self.identity_var})")
        return Identity(value)

    def credential(self, identity: Identity) -> Credential:
        secret = self._secrets.get(self.secret_ref)
        if secret is None:
            raise NoIdentityAvailable(f"no credential available for {identity} ({self.secret_ref} is not set)")
        return Credential(self.connect(), secret)


class Session:
    def __init__(self, provider: IdentityProvider):
        self._provider = provider
        self._identity: Identity | None = None
        self._cache: dict[Identity, str] = {}

    @property
    def identity(self) -> Identity | None:
        return self._identity

    def connect(self) -> Identity:
        """Return the connected identity, establishing it on first use."""
        if self._identity is not None:
            return self._identity

        identity = self._provider.connect()
        self._identity = identity
        logger.debug("session connected as %s", identity)
        return identity

    def switch(self, provider: IdentityProvider) -> None:
        """Replace the identity provider; the next connect() starts over."""
        self._provider = provider
        self._identity = None
        self._cache.clear()

    def credential(self, identity: Identity | None = None) -> Credential:
        target = identity or self.connect()
        return self._provider.credential(target)

    def cached_pointer(self, identity: Identity | None = None) -> str | None:
        target = identity or self._identity
        if target is None:
            return None
        return self._cache.get(target)

    def update_cache(self, address: str, identity: Identity | None = None) -> None:
        target = identity or self._identity
        if target is None:
            return
        self._cache[target] = address

    def refresh(self, identity: Identity | None = None) -> None:
        """Forget cached pointers (one identity, or all of them)."""
        if identity is None:
            self._cache.clear()
        else:
            self._cache.pop(identity, None)
