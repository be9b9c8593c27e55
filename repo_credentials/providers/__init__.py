"""Concrete credential providers."""

from repo_credentials.providers.acr import WorkloadIdentityProvider as ACRWorkloadIdentityProvider
from repo_credentials.providers.basic import BasicCredentialProvider
from repo_credentials.providers.ecr import AccessKeyProvider as ECRAccessKeyProvider
from repo_credentials.providers.ecr import (
    ManagedIdentityProvider as ECRManagedIdentityProvider,
)
from repo_credentials.providers.gar import (
    ServiceAccountKeyProvider as GARServiceAccountKeyProvider,
)
from repo_credentials.providers.gar import (
    WorkloadIdentityFederationProvider as GARWorkloadIdentityFederationProvider,
)
from repo_credentials.providers.github import AppCredentialProvider as GitHubAppCredentialProvider
from repo_credentials.providers.ssh import SSHCredentialProvider

__all__ = [
    "ACRWorkloadIdentityProvider",
    "BasicCredentialProvider",
    "ECRAccessKeyProvider",
    "ECRManagedIdentityProvider",
    "GARServiceAccountKeyProvider",
    "GARWorkloadIdentityFederationProvider",
    "GitHubAppCredentialProvider",
    "SSHCredentialProvider",
]
