"""Exceptions raised by the credential resolution engine."""


class CredentialsError(Exception):
    """Base class for all repo_credentials errors."""


class RegistrationNotFoundError(CredentialsError):
    """No registration matched the given input or name."""


class CredentialLookupError(CredentialsError):
    """Searching for credentials failed (secret store or provider failure)."""


class ProviderError(CredentialsError):
    """An upstream identity exchange failed (network, status, malformed response)."""
