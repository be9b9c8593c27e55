"""Credential provider abstraction.

A provider answers credential requests for a single identity backend
(literal username/password, SSH keys, cloud workload identity, ...).
Providers are registered in a ProviderRegistry; the first provider whose
supports() accepts a request is asked for credentials.
"""

from typing import Protocol

from repo_credentials.registry import PredicateRegistry, Registration
from repo_credentials.types import Credentials, Request


class CredentialProvider(Protocol):
    """Protocol for credential providers.

    Implementations may hold internal caches but must be safe for concurrent
    use.
    """

    def supports(self, request: Request) -> bool:
        """Return True if this provider can possibly answer the request.

        Must be cheap: no network calls.
        """
        ...

    def get_credentials(self, request: Request) -> Credentials | None:
        """Return credentials for the request.

        Returns:
            Credentials, or None if the provider has nothing to contribute

        Raises:
            ProviderError: If an upstream exchange failed
        """
        ...


ProviderRegistration = Registration[Request, CredentialProvider, None]


class ProviderRegistry(PredicateRegistry[Request, CredentialProvider, None]):
    """Ordered registry of credential providers."""

    def register_provider(self, provider: CredentialProvider) -> None:
        """Register a provider using its supports() method as the predicate."""
        self.register(ProviderRegistration(predicate=provider.supports, value=provider))

    def providers(self) -> list[CredentialProvider]:
        return [r.value for r in self.registrations()]
