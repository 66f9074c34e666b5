from typing import Optional


class GatewayError(Exception):
    """Base class for errors raised by the gateway."""


class ConfigurationError(GatewayError):
    """Raised when the gateway configuration cannot be used to start the server."""


class ProxyUnavailableError(GatewayError):
    """
    Raised by the proxy when the upstream blog cannot be reached.

    Carries the target URL and the underlying transport error so the
    fallback handler can log them before rendering the 503 page.
    """

    def __init__(self, target_url: str, cause: Optional[BaseException] = None):
        self.target_url = target_url
        self.cause = cause
        reason = f": {cause}" if cause is not None else ""
        super().__init__(f"Upstream unavailable for {target_url}{reason}")


class ClientDisconnectedError(GatewayError):
    """Raised when the client goes away while the upstream call is in flight."""
