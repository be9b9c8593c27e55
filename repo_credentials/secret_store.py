"""Read access to credential Secrets stored in Kubernetes."""

import base64
from typing import Protocol

import structlog
from kubernetes import config as kube_config
from kubernetes.client import CoreV1Api, V1Secret
from kubernetes.config.config_exception import ConfigException

from repo_credentials.types import LABEL_KEY_CREDENTIAL_TYPE, CredentialType, SecretRecord

logger = structlog.get_logger(__name__)


class SecretLister(Protocol):
    """Lists credential Secrets of a given type in a namespace."""

    def list_secrets(
        self, namespace: str, cred_type: CredentialType
    ) -> list[SecretRecord]: ...


def secret_record(secret: V1Secret) -> SecretRecord:
    """Convert a Kubernetes Secret into a SecretRecord, decoding its data."""
    metadata = secret.metadata
    return SecretRecord(
        name=metadata.name,
        namespace=metadata.namespace,
        data={k: base64.b64decode(v) for k, v in (secret.data or {}).items()},
        annotations=dict(metadata.annotations or {}),
    )


class KubernetesSecretLister:
    """SecretLister backed by the Kubernetes API.

    Args:
        api: CoreV1Api client for the cluster holding the Secrets
        timeout: Timeout in seconds for each API request
    """

    def __init__(self, api: CoreV1Api, timeout: float | None = None) -> None:
        self._api = api
        self._timeout = timeout

    def list_secrets(
        self, namespace: str, cred_type: CredentialType
    ) -> list[SecretRecord]:
        secrets = self._api.list_namespaced_secret(
            namespace=namespace,
            label_selector=f"{LABEL_KEY_CREDENTIAL_TYPE}={cred_type}",
            _request_timeout=self._timeout,
        )
        return [secret_record(s) for s in secrets.items]


def load_core_v1_api(kubeconfig: str | None = None) -> CoreV1Api:
    """Return a CoreV1Api client.

    Uses the given kubeconfig file if set. Otherwise the in-cluster service
    account configuration is used, falling back to the default kubeconfig.
    """
    if kubeconfig:
        return CoreV1Api(api_client=kube_config.new_client_from_config(kubeconfig))
    try:
        kube_config.load_incluster_config()
    except ConfigException:
        logger.debug("not running in a cluster, loading kubeconfig")
        kube_config.load_kube_config()
    return CoreV1Api()
