"""Configuration management using Pydantic Settings."""

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from repo_credentials.database import DatabaseSettings

DEFAULT_PROVIDERS = [
    "ecr-access-key",
    "ecr-managed-identity",
    "gar-service-account-key",
    "gar-workload-identity-federation",
    "acr-workload-identity",
    "github-app",
    "ssh",
    "basic",
]


class Settings(BaseSettings):
    """Settings from environment variables, e.g. REPO_CREDENTIALS_DATABASE__SHARED_RESOURCES_NAMESPACE."""

    model_config = SettingsConfigDict(
        case_sensitive=False,
        env_file=".env",
        env_file_encoding="utf-8",
        env_prefix="REPO_CREDENTIALS_",
        env_nested_delimiter="__",
    )

    # Logging
    log_level: str = Field(default="INFO", description="Logging level")
    log_format_json: bool = Field(
        default=True,
        description="Log as JSON (production) instead of human-readable text",
    )

    # Outbound calls
    request_timeout: float = Field(
        default=30,
        gt=0,
        description="Timeout in seconds for each call to Kubernetes or a cloud/Git provider",
    )

    # Token caches
    cache_cleanup_interval: int = Field(
        default=60 * 60,
        ge=0,
        description="Seconds between sweeps of expired tokens (0 disables the sweep)",
    )

    # Providers
    providers: list[str] = Field(
        default_factory=lambda: list(DEFAULT_PROVIDERS),
        description="Enabled credential providers, in order of precedence",
    )

    # Credential database (nested)
    database: DatabaseSettings = Field(
        default_factory=DatabaseSettings,
        description="Credential database configuration",
    )
    local_cluster_kubeconfig: str | None = Field(
        default=None,
        description="Kubeconfig of the cluster the controller runs in, if it is not the control plane",
    )

    # Azure
    azure_authority_host: str = Field(
        default="https://login.microsoftonline.com/",
        description="Microsoft Entra ID authority used by the ACR provider",
    )
