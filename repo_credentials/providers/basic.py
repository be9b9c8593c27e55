"""Provider for literal username/password credentials stored in a Secret."""

from repo_credentials.types import (
    FIELD_PASSWORD,
    FIELD_USERNAME,
    Credentials,
    Request,
)


class BasicCredentialProvider:
    """Returns the username and password found in the Secret data as is."""

    name = "basic"

    @staticmethod
    def supports(request: Request) -> bool:
        return request.has_basic_credentials()

    @staticmethod
    def get_credentials(request: Request) -> Credentials | None:
        username = request.field_value(FIELD_USERNAME)
        password = request.field_value(FIELD_PASSWORD)
        if not username and not password:
            return None
        return Credentials(username=username, password=password)
