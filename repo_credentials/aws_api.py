import base64
from datetime import datetime
from typing import TYPE_CHECKING

from boto3 import Session
from botocore.config import Config
from botocore.exceptions import ClientError
from pydantic import BaseModel, Field

if TYPE_CHECKING:
    from mypy_boto3_ecr import ECRClient
    from mypy_boto3_sts import STSClient
else:
    ECRClient = object
    STSClient = object

ACCESS_DENIED_ERROR_CODES = {"AccessDenied", "AccessDeniedException"}


def client_config(timeout: float) -> Config:
    """Client config with the given timeout and a single attempt per call."""
    return Config(
        connect_timeout=timeout,
        read_timeout=timeout,
        retries={"total_max_attempts": 1},
    )


def is_access_denied(error: ClientError) -> bool:
    return error.response.get("Error", {}).get("Code") in ACCESS_DENIED_ERROR_CODES


class AWSCredentials(BaseModel):
    access_key_id: str = Field(..., alias="AccessKeyId")
    secret_access_key: str = Field(..., alias="SecretAccessKey")
    session_token: str = Field(..., alias="SessionToken")
    expiration: datetime = Field(..., alias="Expiration")

    def build_session(self, region: str) -> Session:
        return Session(
            aws_access_key_id=self.access_key_id,
            aws_secret_access_key=self.secret_access_key,
            aws_session_token=self.session_token,
            region_name=region,
        )


class ECRAuthorization(BaseModel):
    username: str
    password: str
    expires_at: datetime | None = None


class AWSApiSts:
    def __init__(self, client: STSClient) -> None:
        self.client = client

    def assume_role(self, role_arn: str, session_name: str) -> AWSCredentials:
        """Assume a role and return temporary credentials."""
        assumed_role_object = self.client.assume_role(
            RoleArn=role_arn,
            RoleSessionName=session_name,
        )
        return AWSCredentials(**assumed_role_object["Credentials"])

    def get_account_id(self) -> str:
        """Return the account ID of the caller's identity."""
        return self.client.get_caller_identity()["Account"]


class AWSApiEcr:
    def __init__(self, client: ECRClient) -> None:
        self.client = client

    def get_authorization_token(self) -> ECRAuthorization | None:
        """Return registry credentials, or None if ECR returned no token.

        The authorization token is the base64 encoding of "<username>:<password>".
        """
        data = self.client.get_authorization_token()["authorizationData"]
        if not data or not data[0].get("authorizationToken"):
            return None
        token = base64.b64decode(data[0]["authorizationToken"]).decode("utf-8")
        username, _, password = token.partition(":")
        if not password:
            return None
        return ECRAuthorization(
            username=username,
            password=password,
            expires_at=data[0].get("expiresAt"),
        )
