"""Global test configuration for repo_credentials tests."""

from collections.abc import Callable, Generator, Mapping
from datetime import timedelta

import pytest

from repo_credentials.cache import TokenCache
from repo_credentials.types import (
    FIELD_REPO_URL,
    FIELD_REPO_URL_IS_REGEX,
    CredentialType,
    SecretRecord,
)


class FakeSecretLister:
    """In-memory SecretLister keyed by namespace and credential type."""

    def __init__(self) -> None:
        self.secrets: dict[tuple[str, CredentialType], list[SecretRecord]] = {}
        self.calls: list[tuple[str, CredentialType]] = []
        self.errors: dict[str, Exception] = {}

    def add(self, cred_type: CredentialType, secret: SecretRecord) -> None:
        self.secrets.setdefault((secret.namespace, cred_type), []).append(secret)

    def list_secrets(
        self, namespace: str, cred_type: CredentialType
    ) -> list[SecretRecord]:
        self.calls.append((namespace, cred_type))
        if namespace in self.errors:
            raise self.errors[namespace]
        return list(self.secrets.get((namespace, cred_type), []))


class FakeTimer:
    """Monotonic clock under test control."""

    def __init__(self) -> None:
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now


def make_secret(
    name: str,
    namespace: str,
    repo_url: str = "",
    is_regex: bool = False,
    annotations: Mapping[str, str] | None = None,
    **fields: str,
) -> SecretRecord:
    data = {k: v.encode("utf-8") for k, v in fields.items()}
    if repo_url:
        data[FIELD_REPO_URL] = repo_url.encode("utf-8")
    if is_regex:
        data[FIELD_REPO_URL_IS_REGEX] = b"true"
    return SecretRecord(
        name=name, namespace=namespace, data=data, annotations=annotations or {}
    )


@pytest.fixture
def lister() -> FakeSecretLister:
    """Secret lister for the control plane cluster."""
    return FakeSecretLister()


@pytest.fixture
def local_lister() -> FakeSecretLister:
    """Secret lister for the local cluster."""
    return FakeSecretLister()


@pytest.fixture
def secret() -> Callable[..., SecretRecord]:
    return make_secret


@pytest.fixture
def token_cache() -> Generator[Callable[..., TokenCache], None, None]:
    """Factory for token caches without a background sweep."""
    caches: list[TokenCache] = []

    def f(
        name: str = "test",
        default_ttl: timedelta = timedelta(minutes=40),
        safety_margin: timedelta = timedelta(minutes=20),
        **kwargs: object,
    ) -> TokenCache:
        kwargs.setdefault("cleanup_interval", 0)
        cache = TokenCache(name, default_ttl, safety_margin, **kwargs)  # type: ignore[arg-type]
        caches.append(cache)
        return cache

    yield f
    for cache in caches:
        cache.close()


@pytest.fixture
def timer() -> FakeTimer:
    return FakeTimer()
