"""Credential database: finds the Secret for a repository and asks providers for credentials.

Lookup order for Database.get():

1. Refuse plaintext http:// URLs unless explicitly allowed.
2. For each client (control plane cluster first, then the optional local
   cluster): search the project namespace, then the shared namespace.
   The first matching Secret wins.
3. Within a namespace, Secrets are tested in ascending name order. A Secret
   whose URL is a pattern matches if the pattern matches either the URL as
   given or the normalized URL; any other Secret matches if its normalized URL
   equals the normalized URL. Patterns use RE2 syntax.
4. The request (with the Secret's data, if any) is dispatched to the first
   provider that supports it.
"""

from dataclasses import dataclass

import re2
import structlog
from pydantic import BaseModel, Field

from repo_credentials.exceptions import CredentialLookupError, RegistrationNotFoundError
from repo_credentials.metrics import credential_lookups
from repo_credentials.provider import ProviderRegistry
from repo_credentials.registry import NameRegistry
from repo_credentials.secret_store import SecretLister
from repo_credentials.types import (
    FIELD_REPO_URL,
    FIELD_REPO_URL_IS_REGEX,
    Credentials,
    CredentialType,
    Request,
    SecretRecord,
)
from repo_credentials.urls import Normalizer, default_normalizers

logger = structlog.get_logger(__name__)

CONTROL_PLANE_CLIENT = "control-plane"
LOCAL_CLUSTER_CLIENT = "local-cluster"


class DatabaseSettings(BaseModel):
    """Credential database configuration."""

    shared_resources_namespace: str = Field(
        default="",
        description="Namespace searched for credentials shared by all projects",
    )
    allow_credentials_over_http: bool = Field(
        default=False,
        description="Return credentials for plaintext http:// repository URLs",
    )


@dataclass(frozen=True)
class _Client:
    name: str
    lister: SecretLister


class Database:
    """Credential database backed by one or two secret stores.

    Args:
        control_plane_client: Lister for the control plane cluster
        local_cluster_client: Optional lister for the cluster the controller runs in
        provider_registry: Providers, in order of precedence
        settings: Database settings
        normalizers: URL normalizers by credential type
    """

    def __init__(
        self,
        control_plane_client: SecretLister,
        local_cluster_client: SecretLister | None,
        provider_registry: ProviderRegistry,
        settings: DatabaseSettings | None = None,
        normalizers: NameRegistry[Normalizer, None] | None = None,
    ) -> None:
        self.settings = settings or DatabaseSettings()
        self.provider_registry = provider_registry
        self.normalizers = normalizers or default_normalizers()
        self._clients = [_Client(CONTROL_PLANE_CLIENT, control_plane_client)]
        if local_cluster_client is not None:
            self._clients.append(_Client(LOCAL_CLUSTER_CLIENT, local_cluster_client))

    def get(
        self, namespace: str, cred_type: CredentialType, repo_url: str
    ) -> Credentials | None:
        """Return credentials for a repository.

        Args:
            namespace: Project namespace
            cred_type: Credential type
            repo_url: Repository URL as given by the caller

        Returns:
            Credentials, or None if none were found (proceed anonymously)

        Raises:
            CredentialLookupError: If searching the secret store or a provider failed
        """
        if (
            repo_url.strip().lower().startswith("http://")
            and not self.settings.allow_credentials_over_http
        ):
            logger.debug("refusing credentials for insecure URL", credential_type=cred_type)
            credential_lookups.labels(cred_type, "insecure").inc()
            return None

        normalize = self.normalizers.get(cred_type).value
        normalized_url = normalize(repo_url)

        try:
            secret, location = self._find_secret(namespace, cred_type, repo_url, normalized_url)
            request = Request(
                project=namespace,
                type=cred_type,
                repo_url=normalized_url,
                data=secret.data if secret else {},
                metadata=secret.annotations if secret else {},
            )
            creds = self._get_credentials(request, location)
        except CredentialLookupError:
            credential_lookups.labels(cred_type, "error").inc()
            raise

        credential_lookups.labels(cred_type, "found" if creds else "not_found").inc()
        return creds

    def _find_secret(
        self,
        namespace: str,
        cred_type: CredentialType,
        repo_url: str,
        normalized_url: str,
    ) -> tuple[SecretRecord | None, str]:
        shared_namespace = self.settings.shared_resources_namespace
        for client in self._clients:
            searches = []
            if namespace:
                searches.append((namespace, f'namespace "{namespace}"'))
            if shared_namespace:
                searches.append(
                    (shared_namespace, f'shared namespace "{shared_namespace}"')
                )
            for search_namespace, description in searches:
                location = f"{description} ({client.name} client)"
                try:
                    secret = self._find_secret_in_namespace(
                        client.lister,
                        search_namespace,
                        cred_type,
                        repo_url,
                        normalized_url,
                    )
                except Exception as e:
                    msg = f"failed to get {cred_type} creds for {repo_url} in {location}: {e}"
                    raise CredentialLookupError(msg) from e
                if secret is not None:
                    logger.debug(
                        "found credentials secret",
                        secret=secret.name,
                        namespace=secret.namespace,
                        client=client.name,
                    )
                    return secret, location
        return None, f'namespace "{namespace}"'

    def _find_secret_in_namespace(
        self,
        lister: SecretLister,
        namespace: str,
        cred_type: CredentialType,
        repo_url: str,
        normalized_url: str,
    ) -> SecretRecord | None:
        normalize = self.normalizers.get(cred_type).value
        # Sorting makes the result deterministic. Exact matches take precedence
        # over patterns only through naming, e.g. "foo" sorts before "foo-pattern".
        secrets = sorted(lister.list_secrets(namespace, cred_type), key=lambda s: s.name)
        for secret in secrets:
            # Secret data is user supplied; undecodable bytes must not break the search
            secret_url = secret.data.get(FIELD_REPO_URL, b"").decode("utf-8", errors="replace")
            if not secret_url:
                continue
            is_regex = secret.data.get(FIELD_REPO_URL_IS_REGEX, b"")
            if is_regex.decode("utf-8", errors="replace") == "true":
                # RE2 matches in linear time, whatever the pattern
                try:
                    pattern = re2.compile(secret_url)
                except re2.error as e:
                    msg = f"error compiling repo URL pattern of secret {secret.name}: {e}"
                    raise ValueError(msg) from e
                # Patterns can't be normalized, so try the URL both ways
                if pattern.search(repo_url) or pattern.search(normalized_url):
                    return secret
            elif normalize(secret_url) == normalized_url:
                return secret
        return None

    def _get_credentials(self, request: Request, location: str) -> Credentials | None:
        try:
            registration = self.provider_registry.get(request)
            return registration.value.get_credentials(request)
        except RegistrationNotFoundError:
            return None
        except Exception as e:
            msg = (
                f"failed to get {request.type} creds for {request.repo_url} "
                f"in {location}: {e}"
            )
            raise CredentialLookupError(msg) from e
