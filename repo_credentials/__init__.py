"""Credential resolution for Git, Helm chart and container image repositories.

Credentials are looked up in labeled Kubernetes Secrets and resolved by a
chain of providers: literal username/password, SSH keys, GitHub App
installation tokens and cloud registry workload identities (ECR, GAR, ACR).
"""

from repo_credentials.database import Database, DatabaseSettings
from repo_credentials.exceptions import (
    CredentialLookupError,
    CredentialsError,
    ProviderError,
    RegistrationNotFoundError,
)
from repo_credentials.provider import CredentialProvider, ProviderRegistry
from repo_credentials.types import Credentials, CredentialType, Request

__all__ = [
    "CredentialLookupError",
    "CredentialProvider",
    "CredentialType",
    "Credentials",
    "CredentialsError",
    "Database",
    "DatabaseSettings",
    "ProviderError",
    "ProviderRegistry",
    "RegistrationNotFoundError",
    "Request",
]
