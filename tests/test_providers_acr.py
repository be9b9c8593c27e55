"""Tests for the ACR workload identity provider."""

from collections.abc import Callable
from datetime import UTC, datetime, timedelta
from pathlib import Path
from typing import TYPE_CHECKING

import jwt
import pytest
import requests
from pytest_httpserver import HTTPServer
from pytest_mock import MockerFixture

from repo_credentials.cache import TokenCache
from repo_credentials.exceptions import ProviderError
from repo_credentials.providers import acr
from repo_credentials.providers.acr import (
    WorkloadIdentityProvider,
    acr_registry,
    exchange_acr_refresh_token,
    get_entra_id_token,
    token_expiry,
)
from repo_credentials.types import Credentials, CredentialType, Request

if TYPE_CHECKING:
    from conftest import FakeTimer

TENANT_ID = "tenant"
CLIENT_ID = "client"
ACR_URL = "myregistry.azurecr.io/my-image"
SIGNING_KEY = "test-signing-key-of-at-least-32-bytes"


def request(
    cred_type: CredentialType = CredentialType.IMAGE, repo_url: str = ACR_URL
) -> Request:
    return Request(project="project", type=cred_type, repo_url=repo_url)


def refresh_token(expires_in: timedelta = timedelta(hours=3)) -> str:
    return jwt.encode(
        {"exp": int((datetime.now(UTC) + expires_in).timestamp())},
        SIGNING_KEY,
        algorithm="HS256",
    )


@pytest.mark.parametrize(
    "cred_type, repo_url, registry",
    [
        (CredentialType.IMAGE, ACR_URL, "myregistry"),
        (CredentialType.HELM, f"oci://{ACR_URL}", "myregistry"),
        (CredentialType.HELM, ACR_URL, "myregistry"),
        (CredentialType.HELM, f"https://{ACR_URL}", None),
        (CredentialType.HELM, f"http://{ACR_URL}", None),
        (CredentialType.GIT, ACR_URL, None),
        (CredentialType.IMAGE, "ghcr.io/akuity/kargo", None),
    ],
)
def test_acr_registry(cred_type: CredentialType, repo_url: str, registry: str | None) -> None:
    assert acr_registry(request(cred_type, repo_url)) == registry


def test_get_entra_id_token(httpserver: HTTPServer) -> None:
    httpserver.expect_oneshot_request(
        f"/{TENANT_ID}/oauth2/v2.0/token", method="POST"
    ).respond_with_json({"access_token": "aad-token"})

    token = get_entra_id_token(
        requests.Session(),
        httpserver.url_for("/"),
        TENANT_ID,
        CLIENT_ID,
        "federated-token",
        timeout=5,
    )

    assert token == "aad-token"
    form = httpserver.log[0][0].form
    assert form["grant_type"] == "client_credentials"
    assert form["client_id"] == CLIENT_ID
    assert form["client_assertion"] == "federated-token"
    assert form["client_assertion_type"] == (
        "urn:ietf:params:oauth:client-assertion-type:jwt-bearer"
    )
    assert form["scope"] == "https://management.azure.com/.default"


def test_exchange_acr_refresh_token(httpserver: HTTPServer) -> None:
    httpserver.expect_oneshot_request("/oauth2/exchange", method="POST").respond_with_json(
        {"refresh_token": "acr-token"}
    )

    token = exchange_acr_refresh_token(
        requests.Session(),
        httpserver.url_for("/"),
        "myregistry.azurecr.io",
        TENANT_ID,
        "aad-token",
        timeout=5,
    )

    assert token == "acr-token"
    form = httpserver.log[0][0].form
    assert form["grant_type"] == "access_token"
    assert form["service"] == "myregistry.azurecr.io"
    assert form["tenant"] == TENANT_ID
    assert form["access_token"] == "aad-token"


def test_exchange_unexpected_status(httpserver: HTTPServer) -> None:
    httpserver.expect_oneshot_request("/oauth2/exchange").respond_with_data(
        "unauthorized", status=401
    )

    with pytest.raises(ProviderError, match="401"):
        exchange_acr_refresh_token(
            requests.Session(), httpserver.url_for("/"), "svc", TENANT_ID, "aad", timeout=5
        )


@pytest.mark.parametrize(
    "respond",
    [
        lambda r: r.respond_with_json({"unexpected": "field"}),
        lambda r: r.respond_with_data("not json"),
    ],
)
def test_exchange_malformed_response(httpserver: HTTPServer, respond: Callable) -> None:
    respond(httpserver.expect_oneshot_request("/oauth2/exchange"))

    with pytest.raises(ProviderError):
        exchange_acr_refresh_token(
            requests.Session(), httpserver.url_for("/"), "svc", TENANT_ID, "aad", timeout=5
        )


def test_token_expiry() -> None:
    exp = datetime.now(UTC).replace(microsecond=0) + timedelta(hours=3)
    token = jwt.encode({"exp": int(exp.timestamp())}, SIGNING_KEY, algorithm="HS256")

    assert token_expiry(token) == exp
    assert token_expiry(jwt.encode({"sub": "x"}, SIGNING_KEY, algorithm="HS256")) is None
    assert token_expiry("not-a-jwt") is None


@pytest.fixture
def token_file(tmp_path: Path) -> Path:
    path = tmp_path / "azure-identity-token"
    path.write_text("federated-token\n", encoding="utf-8")
    return path


@pytest.fixture
def provider(
    httpserver: HTTPServer,
    token_file: Path,
    token_cache: Callable[..., TokenCache],
    mocker: MockerFixture,
) -> WorkloadIdentityProvider:
    # Send the registry exchange to the test server instead of *.azurecr.io
    exchange = acr.exchange_acr_refresh_token
    mocker.patch(
        "repo_credentials.providers.acr.exchange_acr_refresh_token",
        side_effect=lambda session, _url, *args: exchange(
            session, httpserver.url_for("/"), *args
        ),
    )
    return WorkloadIdentityProvider(
        tenant_id=TENANT_ID,
        client_id=CLIENT_ID,
        token_file=str(token_file),
        authority_host=httpserver.url_for("/"),
        timeout=5,
        token_cache=token_cache(),
    )


def test_provider_get_credentials(
    provider: WorkloadIdentityProvider, httpserver: HTTPServer
) -> None:
    token = refresh_token()
    httpserver.expect_oneshot_request(f"/{TENANT_ID}/oauth2/v2.0/token").respond_with_json(
        {"access_token": "aad-token"}
    )
    httpserver.expect_oneshot_request("/oauth2/exchange").respond_with_json(
        {"refresh_token": token}
    )

    creds = provider.get_credentials(request())

    assert creds == Credentials(
        username="00000000-0000-0000-0000-000000000000", password=token
    )
    assert httpserver.log[0][0].form["client_assertion"] == "federated-token"
    assert httpserver.log[1][0].form["service"] == "myregistry.azurecr.io"

    # cached per registry; no further requests
    assert provider.get_credentials(request(CredentialType.HELM, f"oci://{ACR_URL}")) == creds
    assert len(httpserver.log) == 2


def test_provider_empty_access_token(
    provider: WorkloadIdentityProvider, httpserver: HTTPServer
) -> None:
    httpserver.expect_oneshot_request(f"/{TENANT_ID}/oauth2/v2.0/token").respond_with_json(
        {"access_token": ""}
    )

    assert provider.get_credentials(request()) is None
    assert len(httpserver.log) == 1


def test_provider_entra_id_error(
    provider: WorkloadIdentityProvider, httpserver: HTTPServer
) -> None:
    httpserver.expect_oneshot_request(f"/{TENANT_ID}/oauth2/v2.0/token").respond_with_json(
        {"error": "invalid_client"}, status=400
    )

    with pytest.raises(ProviderError, match="400"):
        provider.get_credentials(request())


def test_provider_missing_token_file(
    provider: WorkloadIdentityProvider, token_file: Path
) -> None:
    token_file.unlink()

    with pytest.raises(ProviderError, match="federated token file"):
        provider.get_credentials(request())


def test_provider_supports(provider: WorkloadIdentityProvider) -> None:
    assert provider.supports(request())
    assert not provider.supports(request(repo_url="ghcr.io/akuity/kargo"))


def test_from_environment(monkeypatch: pytest.MonkeyPatch, token_file: Path) -> None:
    monkeypatch.setenv("AZURE_TENANT_ID", TENANT_ID)
    monkeypatch.setenv("AZURE_CLIENT_ID", CLIENT_ID)
    monkeypatch.setenv("AZURE_FEDERATED_TOKEN_FILE", str(token_file))
    monkeypatch.delenv("AZURE_AUTHORITY_HOST", raising=False)

    provider = WorkloadIdentityProvider.from_environment(
        authority_host="https://login.example.com/"
    )

    assert provider is not None
    assert provider.tenant_id == TENANT_ID
    assert provider.client_id == CLIENT_ID
    assert provider.authority_host == "https://login.example.com/"

    monkeypatch.setenv("AZURE_AUTHORITY_HOST", "https://login.microsoftonline.us/")
    provider = WorkloadIdentityProvider.from_environment()
    assert provider is not None
    assert provider.authority_host == "https://login.microsoftonline.us/"


def test_from_environment_not_configured(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("AZURE_TENANT_ID", TENANT_ID)
    monkeypatch.delenv("AZURE_CLIENT_ID", raising=False)
    monkeypatch.delenv("AZURE_FEDERATED_TOKEN_FILE", raising=False)

    assert WorkloadIdentityProvider.from_environment() is None


def test_provider_token_exchanged_again_after_expiry(
    httpserver: HTTPServer,
    token_file: Path,
    token_cache: Callable[..., TokenCache],
    timer: "FakeTimer",
    mocker: MockerFixture,
) -> None:
    exchange = acr.exchange_acr_refresh_token
    mocker.patch(
        "repo_credentials.providers.acr.exchange_acr_refresh_token",
        side_effect=lambda session, _url, *args: exchange(
            session, httpserver.url_for("/"), *args
        ),
    )
    provider = WorkloadIdentityProvider(
        tenant_id=TENANT_ID,
        client_id=CLIENT_ID,
        token_file=str(token_file),
        authority_host=httpserver.url_for("/"),
        timeout=5,
        token_cache=token_cache(timer=timer),
    )
    httpserver.expect_request(f"/{TENANT_ID}/oauth2/v2.0/token").respond_with_json(
        {"access_token": "aad-token"}
    )
    httpserver.expect_request("/oauth2/exchange").respond_with_json(
        {"refresh_token": refresh_token(timedelta(hours=3))}
    )

    provider.get_credentials(request())
    assert len(httpserver.log) == 2
    provider.get_credentials(request())
    assert len(httpserver.log) == 2

    timer.now += 3 * 3600
    assert provider.get_credentials(request()) is not None
    assert len(httpserver.log) == 4
