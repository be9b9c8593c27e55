"""Amazon Elastic Container Registry (ECR) credential providers.

Two providers obtain ECR authorization tokens:

- AccessKeyProvider uses a static access key stored in the Secret.
- ManagedIdentityProvider uses the controller's own AWS identity (IRSA or
  EKS Pod Identity). It assumes a project specific role first and falls back
  to its own identity if that is not permitted.

Authorization tokens are valid for 12 hours and cached for up to 10.
"""

import os
import re
from datetime import timedelta

import boto3
import structlog
from botocore.exceptions import BotoCoreError, ClientError

from repo_credentials.aws_api import (
    AWSApiEcr,
    AWSApiSts,
    ECRAuthorization,
    client_config,
    is_access_denied,
)
from repo_credentials.cache import TokenCache, cache_key
from repo_credentials.exceptions import ProviderError
from repo_credentials.metrics import token_exchanges
from repo_credentials.types import Credentials, CredentialType, Request

logger = structlog.get_logger(__name__)

FIELD_AWS_ACCESS_KEY_ID = "awsAccessKeyID"
FIELD_AWS_SECRET_ACCESS_KEY = "awsSecretAccessKey"  # noqa: S105

ECR_URL_REGEX = re.compile(
    r"^(?:oci://)?([0-9]{12})\.dkr\.ecr\.([a-z0-9-]+)\.amazonaws\.com/"
)

ECR_USERNAME = "AWS"
PROJECT_ROLE_PREFIX = "kargo-project-"

TOKEN_DEFAULT_TTL = timedelta(hours=10)
TOKEN_SAFETY_MARGIN = timedelta(hours=2)


def ecr_region(request: Request) -> str | None:
    """Return the region of an ECR repository URL, or None if it is not one.

    Only image and chart repositories are served by ECR; chart repository
    URLs may carry the oci:// scheme but not http(s)://.
    """
    if request.type not in {CredentialType.IMAGE, CredentialType.HELM}:
        return None
    if match := ECR_URL_REGEX.match(request.repo_url):
        return match.group(2)
    return None


class AccessKeyProvider:
    """ECR provider using a static access key from the Secret."""

    name = "ecr-access-key"

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
        return (
            ecr_region(request) is not None
            and bool(request.data.get(FIELD_AWS_ACCESS_KEY_ID))
            and bool(request.data.get(FIELD_AWS_SECRET_ACCESS_KEY))
        )

    def get_credentials(self, request: Request) -> Credentials | None:
        region = ecr_region(request)
        if region is None:
            return None
        access_key_id = request.field_value(FIELD_AWS_ACCESS_KEY_ID)
        secret_access_key = request.field_value(FIELD_AWS_SECRET_ACCESS_KEY)

        key = cache_key(region, access_key_id, secret_access_key)
        if password := self.token_cache.get(key):
            return Credentials(username=ECR_USERNAME, password=password)

        authorization = self._get_authorization_token(
            region, access_key_id, secret_access_key
        )
        if authorization is None:
            return None
        self.token_cache.set(key, authorization.password, authorization.expires_at)
        return Credentials(username=ECR_USERNAME, password=authorization.password)

    def _get_authorization_token(
        self, region: str, access_key_id: str, secret_access_key: str
    ) -> ECRAuthorization | None:
        token_exchanges.labels(self.name).inc()
        ecr = AWSApiEcr(
            boto3.client(
                "ecr",
                region_name=region,
                aws_access_key_id=access_key_id,
                aws_secret_access_key=secret_access_key,
                config=client_config(self._timeout),
            )
        )
        try:
            return ecr.get_authorization_token()
        except ClientError as e:
            if is_access_denied(e):
                logger.info("access key is not permitted to get ECR tokens", region=region)
                return None
            msg = f"error getting ECR authorization token: {e}"
            raise ProviderError(msg) from e
        except BotoCoreError as e:
            msg = f"error getting ECR authorization token: {e}"
            raise ProviderError(msg) from e


class ManagedIdentityProvider:
    """ECR provider using the controller's own AWS identity.

    Args:
        account_id: AWS account ID of the controller's identity
        session: boto3 session carrying the controller's identity
        timeout: Timeout in seconds for each AWS API call
        token_cache: Cache for ECR passwords;
            defaults to one without a background sweep
    """

    name = "ecr-managed-identity"

    def __init__(
        self,
        account_id: str,
        session: boto3.Session | None = None,
        timeout: float = 30,
        token_cache: TokenCache | None = None,
    ) -> None:
        self.account_id = account_id
        self._session = session or boto3.Session()
        self._timeout = timeout
        self.token_cache = token_cache or TokenCache(
            self.name, TOKEN_DEFAULT_TTL, TOKEN_SAFETY_MARGIN, cleanup_interval=0
        )

    @classmethod
    def from_environment(
        cls, timeout: float = 30, token_cache: TokenCache | None = None
    ) -> "ManagedIdentityProvider | None":
        """Return a provider if an ambient AWS identity is configured, else None."""
        irsa = os.environ.get("AWS_ROLE_ARN") and os.environ.get(
            "AWS_WEB_IDENTITY_TOKEN_FILE"
        )
        pod_identity = os.environ.get("AWS_CONTAINER_CREDENTIALS_FULL_URI")
        if not irsa and not pod_identity:
            logger.info("AWS managed identity not configured; ECR managed identity disabled")
            return None

        session = boto3.Session()
        sts = AWSApiSts(session.client("sts", config=client_config(timeout)))
        try:
            account_id = sts.get_account_id()
        except (BotoCoreError, ClientError) as e:
            logger.error("error getting AWS account ID; ECR managed identity disabled", error=str(e))
            return None
        logger.info("ECR managed identity enabled", account_id=account_id)
        return cls(
            account_id=account_id, session=session, timeout=timeout, token_cache=token_cache
        )

    def supports(self, request: Request) -> bool:
        if not self.account_id or ecr_region(request) is None:
            return False
        # Secrets carrying a static key or literal credentials are served by
        # AccessKeyProvider or BasicCredentialProvider
        return not (
            request.data.get(FIELD_AWS_ACCESS_KEY_ID)
            or request.data.get(FIELD_AWS_SECRET_ACCESS_KEY)
            or request.has_basic_credentials()
        )

    def get_credentials(self, request: Request) -> Credentials | None:
        region = ecr_region(request)
        if region is None:
            return None

        key = cache_key(region, request.project)
        if password := self.token_cache.get(key):
            return Credentials(username=ECR_USERNAME, password=password)

        try:
            authorization = self._get_authorization_token(region, request.project)
        except (BotoCoreError, ClientError) as e:
            msg = f"error getting ECR authorization token: {e}"
            raise ProviderError(msg) from e
        if authorization is None:
            return None
        self.token_cache.set(key, authorization.password, authorization.expires_at)
        return Credentials(username=ECR_USERNAME, password=authorization.password)

    def _get_authorization_token(self, region: str, project: str) -> ECRAuthorization | None:
        token_exchanges.labels(self.name).inc()
        session = self._project_session(region, project)
        ecr = AWSApiEcr(session.client("ecr", region_name=region, config=client_config(self._timeout)))
        try:
            return ecr.get_authorization_token()
        except ClientError as e:
            if not is_access_denied(e):
                raise
            logger.info("not permitted to get ECR tokens", project=project, region=region)
            return None

    def _project_session(self, region: str, project: str) -> boto3.Session:
        """Return a session for the project role, or our own if we may not assume it."""
        role_arn = f"arn:aws:iam::{self.account_id}:role/{PROJECT_ROLE_PREFIX}{project}"
        sts = AWSApiSts(
            self._session.client("sts", region_name=region, config=client_config(self._timeout))
        )
        try:
            credentials = sts.assume_role(role_arn, session_name=f"kargo-{project}"[:64])
        except ClientError as e:
            if not is_access_denied(e):
                raise
            logger.info(
                "not permitted to assume project role, using own identity",
                project=project,
                role_arn=role_arn,
            )
            return self._session
        return credentials.build_session(region)
