"""Provider for SSH private keys stored in a Secret."""

from repo_credentials.types import (
    FIELD_SSH_PRIVATE_KEY,
    Credentials,
    CredentialType,
    Request,
)


class SSHCredentialProvider:
    """Returns the SSH private key found in the Secret data.

    Only Git repositories are accessed over SSH, and never through an
    http(s) URL.
    """

    name = "ssh"

    @staticmethod
    def supports(request: Request) -> bool:
        if request.type != CredentialType.GIT:
            return False
        if request.repo_url.startswith(("http://", "https://")):
            return False
        return bool(request.data.get(FIELD_SSH_PRIVATE_KEY))

    @staticmethod
    def get_credentials(request: Request) -> Credentials | None:
        key = request.field_value(FIELD_SSH_PRIVATE_KEY)
        if not key:
            return None
        return Credentials(ssh_private_key=key)
