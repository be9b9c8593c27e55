"""Default repository URL normalizers, one per credential type.

Normalizers are pure, total functions: they never raise. They are looked up
by credential type in a NameRegistry, so callers embedding the engine can
replace them with their own canonicalization rules.
"""

import re
from collections.abc import Callable

from repo_credentials.registry import NameRegistry
from repo_credentials.types import CredentialType

Normalizer = Callable[[str], str]

# user@host:path, but not scheme://... and not host:port/path
_SCP_URL_REGEX = re.compile(r"^(?P<user>[\w.-]+)@(?P<host>[\w.-]+):(?!\d+/)(?P<path>.*)$")


def normalize_git_url(url: str) -> str:
    """Normalize a Git repository URL.

    Examples:
        >>> normalize_git_url("https://GitHub.com/akuity/kargo.git/")
        'https://github.com/akuity/kargo'
        >>> normalize_git_url("git@github.com:akuity/kargo.git")
        'ssh://git@github.com/akuity/kargo'
    """
    url = url.strip().lower()
    if match := _SCP_URL_REGEX.match(url):
        url = f"ssh://{match['user']}@{match['host']}/{match['path']}"
    url = url.rstrip("/")
    return url.removesuffix(".git")


def normalize_image_url(url: str) -> str:
    """Normalize an image repository URL.

    Image references like ``host:port/image`` look like SCP-style Git URLs,
    so no Git rules are applied here.
    """
    return url.strip().lower().rstrip("/")


def normalize_chart_url(url: str) -> str:
    """Normalize a Helm chart repository URL (oci:// or http/s)."""
    return url.strip().lower().rstrip("/")


def default_normalizers() -> NameRegistry[Normalizer, None]:
    """Return a registry with the default normalizer for each credential type."""
    registry: NameRegistry[Normalizer, None] = NameRegistry()
    registry.register(CredentialType.GIT, normalize_git_url)
    registry.register(CredentialType.HELM, normalize_chart_url)
    registry.register(CredentialType.IMAGE, normalize_image_url)
    return registry
