"""Errors raised while relaying requests to the upstream registry."""

from typing import Optional


class RegistryProxyError(Exception):
    """Base class for relay failures that end the request with a JSON error."""

    status_code: int = 502
    error: str = "proxy_error"
    message: Optional[str] = "The upstream registry request failed."

    def __init__(self, message: Optional[str] = None):
        if message is not None:
            self.message = message
        super().__init__(self.message or self.error)

    def to_content(self) -> dict[str, str]:
        content = {"error": self.error}
        if self.message:
            content["message"] = self.message
        return content


class UpstreamUnreachable(RegistryProxyError):
    """Network, DNS or TLS failure while contacting the registry or auth host."""

    error = "upstream_unreachable"
    message = "Could not reach the upstream registry."


class TokenIssuanceFailed(RegistryProxyError):
    """The token endpoint answered with an error or without a usable token."""

    error = "token_issuance_failed"
    message = "Failed to obtain a token from the upstream auth service."


class AuthenticationRequestFailed(RegistryProxyError):
    """A token request passed through to the auth host could not be completed."""

    error = "Authentication request failed."
    message = None
