"""Core data types shared by the database and all credential providers."""

from collections.abc import Mapping
from dataclasses import dataclass, field
from enum import StrEnum
from types import MappingProxyType

# Secret labels and annotations
LABEL_KEY_CREDENTIAL_TYPE = "kargo.akuity.io/cred-type"
ANNOTATION_KEY_GITHUB_TOKEN_SCOPE = "kargo.akuity.io/github-token-scope"

# Well-known Secret data fields
FIELD_REPO_URL = "repoURL"
FIELD_REPO_URL_IS_REGEX = "repoURLIsRegex"
FIELD_USERNAME = "username"
FIELD_PASSWORD = "password"  # noqa: S105
FIELD_SSH_PRIVATE_KEY = "sshPrivateKey"


class CredentialType(StrEnum):
    """Kind of repository a credential is for."""

    GIT = "git"
    HELM = "helm"
    IMAGE = "image"


@dataclass(frozen=True)
class Credentials:
    """Credentials for a single repository.

    Either a username/password pair, an SSH private key, or both. Secret
    values are kept out of repr() so Credentials can be logged safely.
    """

    username: str = ""
    password: str = field(default="", repr=False)
    ssh_private_key: str = field(default="", repr=False)


@dataclass(frozen=True)
class Request:
    """Input to a credential provider.

    Attributes:
        project: Project (tenant) the credentials are requested for
        type: Credential type
        repo_url: Repository URL, already normalized for its type
        data: Data of the matching Secret (empty if none matched)
        metadata: Annotations of the matching Secret
    """

    project: str
    type: CredentialType
    repo_url: str
    data: Mapping[str, bytes] = field(default_factory=dict, repr=False)
    metadata: Mapping[str, str] = field(default_factory=dict)

    def __post_init__(self) -> None:
        object.__setattr__(self, "data", MappingProxyType(dict(self.data)))
        object.__setattr__(self, "metadata", MappingProxyType(dict(self.metadata)))

    def field_value(self, key: str) -> str:
        """Return a data field decoded as UTF-8, or "" if it is absent."""
        return self.data.get(key, b"").decode("utf-8")

    def has_basic_credentials(self) -> bool:
        """Return True if the Secret data carries a literal username or password."""
        return bool(self.data.get(FIELD_USERNAME) or self.data.get(FIELD_PASSWORD))


@dataclass(frozen=True)
class SecretRecord:
    """Read-only view of a credentials Secret held by the secret store."""

    name: str
    namespace: str
    data: Mapping[str, bytes] = field(default_factory=dict, repr=False)
    annotations: Mapping[str, str] = field(default_factory=dict)
