"""GitHub App installation access token provider.

A Secret holding a GitHub App's client (or App) ID, installation ID and
private key yields a short-lived installation access token that is scoped to
the single repository being accessed. Works with github.com and GitHub
Enterprise Server.
"""

import base64
import binascii
import json
import re
from datetime import datetime, timedelta
from urllib.parse import urlsplit

import jwt
import requests
import structlog
from github import Auth, Consts

from repo_credentials.cache import TokenCache, cache_key
from repo_credentials.exceptions import ProviderError
from repo_credentials.metrics import token_exchanges
from repo_credentials.types import (
    ANNOTATION_KEY_GITHUB_TOKEN_SCOPE,
    Credentials,
    CredentialType,
    Request,
)

logger = structlog.get_logger(__name__)

FIELD_GITHUB_APP_CLIENT_ID = "githubAppClientID"
FIELD_GITHUB_APP_ID = "githubAppID"
FIELD_GITHUB_APP_INSTALLATION_ID = "githubAppInstallationID"
FIELD_GITHUB_APP_PRIVATE_KEY = "githubAppPrivateKey"

GITHUB_BASE_URL = "https://github.com"
ACCESS_TOKEN_USERNAME = "kargo"

# Installation access tokens live for one hour
TOKEN_DEFAULT_TTL = timedelta(minutes=40)
TOKEN_SAFETY_MARGIN = timedelta(minutes=20)

BASE64_REGEX = re.compile(r"^[a-zA-Z0-9+/]*={0,2}$")


def extract_repo_name(repo_url: str) -> str:
    """Return the repository name of a normalized GitHub repository URL.

    Returns an empty string if the URL has fewer than five "/" separated parts.

    Example:
        >>> extract_repo_name("https://github.com/akuity/kargo.git")
        'kargo'
        >>> extract_repo_name("https://github.com/akuity")
        ''
    """
    parts = repo_url.split("/")
    if len(parts) < 5:
        return ""
    return parts[-1].removesuffix(".git")


def extract_base_url(repo_url: str) -> str:
    """Return the scheme and host of a repository URL."""
    parts = urlsplit(repo_url)
    return f"{parts.scheme}://{parts.netloc}"


def api_url(base_url: str) -> str:
    """Return the REST API root for github.com or a GitHub Enterprise Server."""
    if base_url == GITHUB_BASE_URL:
        return Consts.DEFAULT_BASE_URL
    return f"{base_url}/api/v3"


def decode_key(key: str) -> str:
    """Return the PEM encoded private key, base64 decoding it if necessary.

    Keys used to be required to be base64 encoded; that is no longer the case.
    Input that is not base64 is returned as is. Input that looks like base64
    but fails to decode is reported as a probably corrupt encoding.

    Raises:
        ProviderError: If the key looks like corrupt base64
    """
    try:
        decoded = base64.b64decode(key, validate=True)
    except binascii.Error as e:
        if BASE64_REGEX.match(key):
            msg = (
                "probable corrupt base64 encoding of private key; base64 encoding "
                f"this key is no longer required and is discouraged: {e}"
            )
            raise ProviderError(msg) from None
        return key
    try:
        return decoded.decode("utf-8")
    except UnicodeDecodeError:
        msg = "decoded private key is not valid PEM"
        raise ProviderError(msg) from None


def parse_scope_map(value: str) -> dict[str, list[str]]:
    """Parse the token scope annotation: a JSON object of project -> repo names."""
    try:
        scope_map = json.loads(value)
    except ValueError as e:
        msg = f"error unmarshaling scope map: {e}"
        raise ProviderError(msg) from e
    if not isinstance(scope_map, dict):
        msg = "error unmarshaling scope map: not a JSON object"
        raise ProviderError(msg)
    return scope_map


class AppCredentialProvider:
    """Git provider issuing GitHub App installation access tokens.

    Args:
        timeout: Timeout in seconds for each GitHub API request
        session: HTTP session for GitHub API requests
        token_cache: Cache for installation access tokens;
            defaults to one without a background sweep
    """

    name = "github-app"

    def __init__(
        self,
        timeout: float = 30,
        session: requests.Session | None = None,
        token_cache: TokenCache | None = None,
    ) -> None:
        self._timeout = timeout
        self._session = session or requests.Session()
        self.token_cache = token_cache or TokenCache(
            self.name, TOKEN_DEFAULT_TTL, TOKEN_SAFETY_MARGIN, cleanup_interval=0
        )

    @staticmethod
    def supports(request: Request) -> bool:
        if request.type != CredentialType.GIT or not request.data:
            return False
        return (
            request.repo_url.startswith(("http://", "https://"))
            and bool(
                request.data.get(FIELD_GITHUB_APP_CLIENT_ID)
                or request.data.get(FIELD_GITHUB_APP_ID)
            )
            and bool(request.data.get(FIELD_GITHUB_APP_INSTALLATION_ID))
            and bool(request.data.get(FIELD_GITHUB_APP_PRIVATE_KEY))
        )

    def get_credentials(self, request: Request) -> Credentials | None:
        """Return an installation access token scoped to the requested repository.

        Returns None if the URL has no repository name, or if the Secret's token
        scope annotation does not allow the requesting project to use it.

        Raises:
            ProviderError: On a malformed scope map or installation ID, or if
                the token could not be obtained
        """
        repo_name = extract_repo_name(request.repo_url)
        if not repo_name:
            return None

        if scope := request.metadata.get(ANNOTATION_KEY_GITHUB_TOKEN_SCOPE):
            if repo_name not in parse_scope_map(scope).get(request.project, []):
                logger.debug(
                    "repository not in token scope of project",
                    project=request.project,
                    repo=repo_name,
                )
                return None

        # The client ID is GitHub's preferred identifier; the App ID is deprecated
        app_or_client_id = request.field_value(
            FIELD_GITHUB_APP_CLIENT_ID
        ) or request.field_value(FIELD_GITHUB_APP_ID)
        try:
            installation_id = int(request.field_value(FIELD_GITHUB_APP_INSTALLATION_ID))
        except ValueError as e:
            msg = f"error parsing installation ID: {e}"
            raise ProviderError(msg) from e
        encoded_key = request.field_value(FIELD_GITHUB_APP_PRIVATE_KEY)

        key = cache_key(app_or_client_id, installation_id, encoded_key, request.repo_url)
        if token := self.token_cache.get(key):
            return Credentials(username=ACCESS_TOKEN_USERNAME, password=token)

        token, expires_at = self._get_access_token(
            app_or_client_id, installation_id, encoded_key, request.repo_url
        )
        if not token:
            return None
        self.token_cache.set(key, token, expires_at)
        return Credentials(username=ACCESS_TOKEN_USERNAME, password=token)

    def _get_access_token(
        self,
        app_or_client_id: str,
        installation_id: int,
        encoded_key: str,
        repo_url: str,
    ) -> tuple[str, datetime | None]:
        private_key = decode_key(encoded_key)
        try:
            app_jwt = Auth.AppAuth(app_or_client_id, private_key).token
        except (ValueError, TypeError, jwt.PyJWTError) as e:
            msg = f"error creating application token: {e}"
            raise ProviderError(msg) from e

        url = (
            f"{api_url(extract_base_url(repo_url))}"
            f"/app/installations/{installation_id}/access_tokens"
        )
        token_exchanges.labels(self.name).inc()
        try:
            response = self._session.post(
                url,
                json={"repositories": [extract_repo_name(repo_url)]},
                headers={
                    "Accept": "application/vnd.github+json",
                    "Authorization": f"Bearer {app_jwt}",
                    "X-GitHub-Api-Version": "2022-11-28",
                },
                timeout=self._timeout,
            )
            response.raise_for_status()
            payload = response.json()
        except requests.RequestException as e:
            msg = f"error getting installation access token: {e}"
            raise ProviderError(msg) from e
        except ValueError as e:
            msg = "error decoding installation access token response"
            raise ProviderError(msg) from e
        if not isinstance(payload, dict):
            msg = "unexpected installation access token response"
            raise ProviderError(msg)

        expires_at = None
        if payload.get("expires_at"):
            expires_at = datetime.fromisoformat(payload["expires_at"])
        return payload.get("token") or "", expires_at
