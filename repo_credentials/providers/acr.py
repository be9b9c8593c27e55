"""Azure Container Registry (ACR) credential provider using Azure Workload Identity.

The controller's federated service account token is exchanged for a
Microsoft Entra ID access token, which is in turn exchanged for an ACR
refresh token. ACR accepts the refresh token as a password for the
all-zero GUID username.
"""

import os
import re
from datetime import UTC, datetime, timedelta
from pathlib import Path

import jwt
import requests
import structlog

from repo_credentials.cache import TokenCache, cache_key
from repo_credentials.exceptions import ProviderError
from repo_credentials.metrics import token_exchanges
from repo_credentials.types import Credentials, CredentialType, Request

logger = structlog.get_logger(__name__)

ACR_URL_REGEX = re.compile(r"^(?:oci://)?([a-z0-9][a-z0-9-]*)\.azurecr\.io/")

ACR_USERNAME = "00000000-0000-0000-0000-000000000000"
DEFAULT_AUTHORITY_HOST = "https://login.microsoftonline.com/"
MANAGEMENT_SCOPE = "https://management.azure.com/.default"
CLIENT_ASSERTION_TYPE = "urn:ietf:params:oauth:client-assertion-type:jwt-bearer"

# Refresh tokens live for three hours
TOKEN_DEFAULT_TTL = timedelta(minutes=40)
TOKEN_SAFETY_MARGIN = timedelta(minutes=20)


def acr_registry(request: Request) -> str | None:
    """Return the registry name of an ACR repository URL, or None if it is not one.

    http(s):// URLs never match; chart repository URLs may carry oci://.
    """
    if request.type not in {CredentialType.IMAGE, CredentialType.HELM}:
        return None
    if match := ACR_URL_REGEX.match(request.repo_url):
        return match.group(1)
    return None


def _post_form(
    session: requests.Session, url: str, data: dict[str, str], field: str, timeout: float
) -> str:
    try:
        response = session.post(url, data=data, timeout=timeout)
    except requests.RequestException as e:
        msg = f"error requesting token from {url}: {e}"
        raise ProviderError(msg) from e
    if response.status_code != requests.codes.ok:
        msg = f"unexpected status code {response.status_code} requesting token from {url}"
        raise ProviderError(msg)
    try:
        payload = response.json()
    except ValueError as e:
        msg = f"error decoding token response from {url}"
        raise ProviderError(msg) from e
    if not isinstance(payload, dict) or field not in payload:
        msg = f"token response from {url} is missing {field}"
        raise ProviderError(msg)
    return payload[field] or ""


def get_entra_id_token(
    session: requests.Session,
    authority_host: str,
    tenant_id: str,
    client_id: str,
    assertion: str,
    timeout: float,
) -> str:
    """Exchange a federated token for an Entra ID access token (client assertion grant)."""
    url = f"{authority_host.rstrip('/')}/{tenant_id}/oauth2/v2.0/token"
    return _post_form(
        session,
        url,
        {
            "client_id": client_id,
            "scope": MANAGEMENT_SCOPE,
            "grant_type": "client_credentials",
            "client_assertion_type": CLIENT_ASSERTION_TYPE,
            "client_assertion": assertion,
        },
        "access_token",
        timeout,
    )


def exchange_acr_refresh_token(
    session: requests.Session,
    registry_url: str,
    service: str,
    tenant_id: str,
    access_token: str,
    timeout: float,
) -> str:
    """Exchange an Entra ID access token for an ACR refresh token.

    See https://github.com/Azure/acr/blob/main/docs/AAD-OAuth.md
    """
    return _post_form(
        session,
        f"{registry_url.rstrip('/')}/oauth2/exchange",
        {
            "grant_type": "access_token",
            "service": service,
            "tenant": tenant_id,
            "access_token": access_token,
        },
        "refresh_token",
        timeout,
    )


def token_expiry(token: str) -> datetime | None:
    """Return the expiry of a JWT from its exp claim, or None if it has none."""
    try:
        claims = jwt.decode(token, options={"verify_signature": False})
    except jwt.PyJWTError:
        return None
    if "exp" not in claims:
        return None
    return datetime.fromtimestamp(claims["exp"], tz=UTC)


class WorkloadIdentityProvider:
    """ACR provider using the controller's Azure Workload Identity.

    Args:
        tenant_id: Entra ID tenant
        client_id: Client ID of the managed identity / app registration
        token_file: Path to the projected federated service account token
        authority_host: Entra ID authority
        session: HTTP session for token requests
        timeout: Timeout in seconds for each token request
        token_cache: Cache for refresh tokens;
            defaults to one without a background sweep
    """

    name = "acr-workload-identity"

    def __init__(
        self,
        tenant_id: str,
        client_id: str,
        token_file: str,
        authority_host: str = DEFAULT_AUTHORITY_HOST,
        session: requests.Session | None = None,
        timeout: float = 30,
        token_cache: TokenCache | None = None,
    ) -> None:
        self.tenant_id = tenant_id
        self.client_id = client_id
        self.token_file = token_file
        self.authority_host = authority_host
        self._session = session or requests.Session()
        self._timeout = timeout
        self.token_cache = token_cache or TokenCache(
            self.name, TOKEN_DEFAULT_TTL, TOKEN_SAFETY_MARGIN, cleanup_interval=0
        )

    @classmethod
    def from_environment(
        cls,
        timeout: float = 30,
        authority_host: str = DEFAULT_AUTHORITY_HOST,
        token_cache: TokenCache | None = None,
    ) -> "WorkloadIdentityProvider | None":
        """Return a provider if Azure Workload Identity is configured, else None.

        AZURE_AUTHORITY_HOST, if set by the workload identity webhook, takes
        precedence over authority_host.
        """
        tenant_id = os.environ.get("AZURE_TENANT_ID", "")
        client_id = os.environ.get("AZURE_CLIENT_ID", "")
        token_file = os.environ.get("AZURE_FEDERATED_TOKEN_FILE", "")
        if not tenant_id or not client_id or not token_file:
            logger.info("Azure Workload Identity not configured; ACR workload identity disabled")
            return None
        logger.info("ACR workload identity enabled", tenant_id=tenant_id)
        return cls(
            tenant_id=tenant_id,
            client_id=client_id,
            token_file=token_file,
            authority_host=os.environ.get("AZURE_AUTHORITY_HOST") or authority_host,
            timeout=timeout,
            token_cache=token_cache,
        )

    def supports(self, request: Request) -> bool:
        # Literal credentials in the Secret take precedence over our own identity
        return acr_registry(request) is not None and not request.has_basic_credentials()

    def get_credentials(self, request: Request) -> Credentials | None:
        registry = acr_registry(request)
        if registry is None:
            return None

        key = cache_key(registry)
        if token := self.token_cache.get(key):
            return Credentials(username=ACR_USERNAME, password=token)

        token = self._get_refresh_token(f"{registry}.azurecr.io")
        if not token:
            return None
        self.token_cache.set(key, token, token_expiry(token))
        return Credentials(username=ACR_USERNAME, password=token)

    def _get_refresh_token(self, registry_host: str) -> str:
        token_exchanges.labels(self.name).inc()
        try:
            assertion = Path(self.token_file).read_text(encoding="utf-8").strip()
        except OSError as e:
            msg = f"error reading federated token file {self.token_file}: {e.strerror}"
            raise ProviderError(msg) from e
        access_token = get_entra_id_token(
            self._session,
            self.authority_host,
            self.tenant_id,
            self.client_id,
            assertion,
            self._timeout,
        )
        if not access_token:
            return ""
        return exchange_acr_refresh_token(
            self._session,
            f"https://{registry_host}",
            registry_host,
            self.tenant_id,
            access_token,
            self._timeout,
        )
