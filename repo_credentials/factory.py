"""Startup wiring: builds the provider registry and the credential database.

Providers are constructed explicitly from Settings. A provider factory returns
None when its backend is not available in this environment (e.g. no AWS
identity), in which case the provider is left out of the registry.
"""

from collections.abc import Callable
from datetime import timedelta

import structlog

from repo_credentials.cache import TokenCache
from repo_credentials.config import Settings
from repo_credentials.database import Database
from repo_credentials.provider import CredentialProvider, ProviderRegistry
from repo_credentials.providers import acr, ecr, gar, github
from repo_credentials.providers.basic import BasicCredentialProvider
from repo_credentials.providers.ssh import SSHCredentialProvider
from repo_credentials.registry import NameRegistry
from repo_credentials.secret_store import KubernetesSecretLister, load_core_v1_api

logger = structlog.get_logger(__name__)

ProviderFactory = Callable[[Settings], CredentialProvider | None]


def _token_cache(
    settings: Settings, name: str, default_ttl: timedelta, safety_margin: timedelta
) -> TokenCache:
    return TokenCache(
        name,
        default_ttl,
        safety_margin,
        cleanup_interval=settings.cache_cleanup_interval,
    )


def _ecr_access_key(settings: Settings) -> CredentialProvider | None:
    return ecr.AccessKeyProvider(
        timeout=settings.request_timeout,
        token_cache=_token_cache(
            settings,
            ecr.AccessKeyProvider.name,
            ecr.TOKEN_DEFAULT_TTL,
            ecr.TOKEN_SAFETY_MARGIN,
        ),
    )


def _ecr_managed_identity(settings: Settings) -> CredentialProvider | None:
    token_cache = _token_cache(
        settings,
        ecr.ManagedIdentityProvider.name,
        ecr.TOKEN_DEFAULT_TTL,
        ecr.TOKEN_SAFETY_MARGIN,
    )
    provider = ecr.ManagedIdentityProvider.from_environment(
        timeout=settings.request_timeout, token_cache=token_cache
    )
    if provider is None:
        token_cache.close()
    return provider


def _gar_service_account_key(settings: Settings) -> CredentialProvider | None:
    return gar.ServiceAccountKeyProvider(
        timeout=settings.request_timeout,
        token_cache=_token_cache(
            settings,
            gar.ServiceAccountKeyProvider.name,
            gar.TOKEN_DEFAULT_TTL,
            gar.TOKEN_SAFETY_MARGIN,
        ),
    )


def _gar_workload_identity_federation(settings: Settings) -> CredentialProvider | None:
    token_cache = _token_cache(
        settings,
        gar.WorkloadIdentityFederationProvider.name,
        gar.TOKEN_DEFAULT_TTL,
        gar.TOKEN_SAFETY_MARGIN,
    )
    provider = gar.WorkloadIdentityFederationProvider.from_environment(
        timeout=settings.request_timeout, token_cache=token_cache
    )
    if provider is None:
        token_cache.close()
    return provider


def _acr_workload_identity(settings: Settings) -> CredentialProvider | None:
    token_cache = _token_cache(
        settings,
        acr.WorkloadIdentityProvider.name,
        acr.TOKEN_DEFAULT_TTL,
        acr.TOKEN_SAFETY_MARGIN,
    )
    provider = acr.WorkloadIdentityProvider.from_environment(
        timeout=settings.request_timeout,
        authority_host=settings.azure_authority_host,
        token_cache=token_cache,
    )
    if provider is None:
        token_cache.close()
    return provider


def _github_app(settings: Settings) -> CredentialProvider | None:
    return github.AppCredentialProvider(
        timeout=settings.request_timeout,
        token_cache=_token_cache(
            settings,
            github.AppCredentialProvider.name,
            github.TOKEN_DEFAULT_TTL,
            github.TOKEN_SAFETY_MARGIN,
        ),
    )


def _ssh(_settings: Settings) -> CredentialProvider | None:
    return SSHCredentialProvider()


def _basic(_settings: Settings) -> CredentialProvider | None:
    return BasicCredentialProvider()


def _provider_factories() -> NameRegistry[ProviderFactory, None]:
    registry: NameRegistry[ProviderFactory, None] = NameRegistry()
    registry.register(ecr.AccessKeyProvider.name, _ecr_access_key)
    registry.register(ecr.ManagedIdentityProvider.name, _ecr_managed_identity)
    registry.register(gar.ServiceAccountKeyProvider.name, _gar_service_account_key)
    registry.register(
        gar.WorkloadIdentityFederationProvider.name, _gar_workload_identity_federation
    )
    registry.register(acr.WorkloadIdentityProvider.name, _acr_workload_identity)
    registry.register(github.AppCredentialProvider.name, _github_app)
    registry.register(SSHCredentialProvider.name, _ssh)
    registry.register(BasicCredentialProvider.name, _basic)
    return registry


# Provider factories by provider name, in default order of precedence
PROVIDER_FACTORIES = _provider_factories()


def build_provider_registry(
    settings: Settings,
    factories: NameRegistry[ProviderFactory, None] = PROVIDER_FACTORIES,
) -> ProviderRegistry:
    """Construct the enabled providers and register them in the configured order.

    Args:
        settings: Application settings; settings.providers selects and orders providers
        factories: Provider factories by name

    Returns:
        Registry holding every enabled provider whose backend is available

    Raises:
        RegistrationNotFoundError: If settings.providers names an unknown provider
    """
    registry = ProviderRegistry()
    for name in settings.providers:
        provider = factories.get(name).value(settings)
        if provider is None:
            logger.info("credential provider not available", provider=name)
            continue
        registry.register_provider(provider)
        logger.info("credential provider enabled", provider=name)
    return registry


def build_database(settings: Settings, provider_registry: ProviderRegistry) -> Database:
    """Build a Database reading Secrets from the control plane and, if configured, the local cluster."""
    control_plane = KubernetesSecretLister(
        load_core_v1_api(), timeout=settings.request_timeout
    )
    local_cluster = None
    if settings.local_cluster_kubeconfig:
        local_cluster = KubernetesSecretLister(
            load_core_v1_api(settings.local_cluster_kubeconfig),
            timeout=settings.request_timeout,
        )
    return Database(
        control_plane,
        local_cluster,
        provider_registry,
        settings=settings.database,
    )
