"""Google Artifact Registry (GAR) and Container Registry (GCR) credential providers.

- ServiceAccountKeyProvider exchanges a service account key stored in the
  Secret for an OAuth2 access token.
- WorkloadIdentityFederationProvider uses the controller's Application Default
  Credentials to impersonate a project specific service account, falling back
  to its own identity if impersonation is not permitted.

Access tokens live for one hour; they are cached for up to 40 minutes.
"""

import base64
import binascii
import functools
import json
import re
from collections.abc import Callable
from datetime import datetime, timedelta
from typing import Any

import google.auth
import google.auth.transport.requests
import structlog
from google.auth import impersonated_credentials
from google.auth.credentials import Credentials as GoogleCredentials
from google.auth.exceptions import DefaultCredentialsError, GoogleAuthError, RefreshError
from google.oauth2 import service_account

from repo_credentials.cache import TokenCache, cache_key
from repo_credentials.exceptions import ProviderError
from repo_credentials.metrics import token_exchanges
from repo_credentials.types import Credentials, CredentialType, Request

logger = structlog.get_logger(__name__)

FIELD_GCP_SERVICE_ACCOUNT_KEY = "gcpServiceAccountKey"

GAR_URL_REGEX = re.compile(
    r"^(?:oci://)?(?:[a-z0-9-]+-docker\.pkg\.dev|(?:[a-z]+\.)?gcr\.io)/"
)

GAR_USERNAME = "oauth2accesstoken"
CLOUD_PLATFORM_SCOPE = "https://www.googleapis.com/auth/cloud-platform"
PROJECT_SERVICE_ACCOUNT_PREFIX = "kargo-project-"

TOKEN_DEFAULT_TTL = timedelta(minutes=40)
TOKEN_SAFETY_MARGIN = timedelta(minutes=20)


def is_gar_request(request: Request) -> bool:
    if request.type not in {CredentialType.IMAGE, CredentialType.HELM}:
        return False
    return GAR_URL_REGEX.match(request.repo_url) is not None


def _transport(timeout: float) -> Callable[..., Any]:
    return functools.partial(google.auth.transport.requests.Request(), timeout=timeout)


def _refresh(credentials: GoogleCredentials, timeout: float) -> tuple[str, datetime | None]:
    credentials.refresh(_transport(timeout))
    return credentials.token or "", credentials.expiry


class ServiceAccountKeyProvider:
    """GAR provider using a base64 encoded service account key from the Secret."""

    name = "gar-service-account-key"

    def __init__(
        self,
        timeout: float = 30,
        token_cache: TokenCache | None = None,
    ) -> None:
        self._timeout = timeout
        self.token_cache = token_cache or TokenCache(
            self.name, TOKEN_DEFAULT_TTL, TOKEN_SAFETY_MARGIN, cleanup_interval=0
        )

    def supports(self, request: Request) -> bool:
        return is_gar_request(request) and bool(
            request.data.get(FIELD_GCP_SERVICE_ACCOUNT_KEY)
        )

    def get_credentials(self, request: Request) -> Credentials | None:
        encoded_key = request.field_value(FIELD_GCP_SERVICE_ACCOUNT_KEY)
        if not encoded_key:
            return None

        key = cache_key(encoded_key)
        if token := self.token_cache.get(key):
            return Credentials(username=GAR_USERNAME, password=token)

        token, expiry = self._get_access_token(encoded_key)
        if not token:
            return None
        self.token_cache.set(key, token, expiry)
        return Credentials(username=GAR_USERNAME, password=token)

    def _get_access_token(self, encoded_key: str) -> tuple[str, datetime | None]:
        try:
            info = json.loads(base64.b64decode(encoded_key, validate=True))
        except (binascii.Error, ValueError) as e:
            # the error messages never include the key itself
            msg = f"error decoding service account key: {type(e).__name__}"
            raise ProviderError(msg) from None

        token_exchanges.labels(self.name).inc()
        try:
            credentials = service_account.Credentials.from_service_account_info(
                info, scopes=[CLOUD_PLATFORM_SCOPE]
            )
            return _refresh(credentials, self._timeout)
        except (GoogleAuthError, ValueError) as e:
            msg = f"error getting access token for service account key: {e}"
            raise ProviderError(msg) from e


class WorkloadIdentityFederationProvider:
    """GAR provider using the controller's Application Default Credentials.

    Args:
        project_id: GCP project the controller runs in
        credentials: The controller's own credentials (ADC)
        timeout: Timeout in seconds for each token request
        token_cache: Cache for access tokens;
            defaults to one without a background sweep
    """

    name = "gar-workload-identity-federation"

    def __init__(
        self,
        project_id: str,
        credentials: GoogleCredentials | None = None,
        timeout: float = 30,
        token_cache: TokenCache | None = None,
    ) -> None:
        self.project_id = project_id
        self._credentials = credentials
        self._timeout = timeout
        self.token_cache = token_cache or TokenCache(
            self.name, TOKEN_DEFAULT_TTL, TOKEN_SAFETY_MARGIN, cleanup_interval=0
        )

    @classmethod
    def from_environment(
        cls, timeout: float = 30, token_cache: TokenCache | None = None
    ) -> "WorkloadIdentityFederationProvider | None":
        """Return a provider if Application Default Credentials are available, else None."""
        try:
            credentials, project_id = google.auth.default(scopes=[CLOUD_PLATFORM_SCOPE])
        except DefaultCredentialsError:
            logger.info("GCP credentials not found; GAR workload identity federation disabled")
            return None
        if not project_id:
            logger.info("GCP project ID unknown; GAR workload identity federation disabled")
            return None
        logger.info("GAR workload identity federation enabled", gcp_project_id=project_id)
        return cls(
            project_id=project_id,
            credentials=credentials,
            timeout=timeout,
            token_cache=token_cache,
        )

    def supports(self, request: Request) -> bool:
        # Literal credentials in the Secret take precedence over our own identity
        return (
            bool(self.project_id)
            and is_gar_request(request)
            and not request.has_basic_credentials()
        )

    def get_credentials(self, request: Request) -> Credentials | None:
        key = cache_key(request.project)
        if token := self.token_cache.get(key):
            return Credentials(username=GAR_USERNAME, password=token)

        token, expiry = self._get_project_access_token(request.project)
        if not token:
            token, expiry = self._get_own_access_token()
        if not token:
            return None
        self.token_cache.set(key, token, expiry)
        return Credentials(username=GAR_USERNAME, password=token)

    def service_account_email(self, project: str) -> str:
        return (
            f"{PROJECT_SERVICE_ACCOUNT_PREFIX}{project}"
            f"@{self.project_id}.iam.gserviceaccount.com"
        )

    def _get_project_access_token(self, project: str) -> tuple[str, datetime | None]:
        """Impersonate the project's service account.

        Returns an empty token if impersonation is not permitted.
        """
        token_exchanges.labels(self.name).inc()
        target = self.service_account_email(project)
        credentials = impersonated_credentials.Credentials(
            source_credentials=self._credentials,
            target_principal=target,
            target_scopes=[CLOUD_PLATFORM_SCOPE],
        )
        try:
            return _refresh(credentials, self._timeout)
        except RefreshError as e:
            if "PERMISSION_DENIED" not in str(e):
                msg = f"error impersonating service account {target}: {e}"
                raise ProviderError(msg) from e
            logger.info(
                "not permitted to impersonate project service account, using own identity",
                project=project,
                service_account=target,
            )
            return "", None
        except GoogleAuthError as e:
            msg = f"error impersonating service account {target}: {e}"
            raise ProviderError(msg) from e

    def _get_own_access_token(self) -> tuple[str, datetime | None]:
        if self._credentials is None:
            return "", None
        token_exchanges.labels(self.name).inc()
        try:
            return _refresh(self._credentials, self._timeout)
        except GoogleAuthError as e:
            msg = f"error getting access token for own identity: {e}"
            raise ProviderError(msg) from e
