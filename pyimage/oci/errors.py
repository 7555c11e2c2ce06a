"""Registry errors

Every failure raised by this package derives from `RegistryError` so callers
can tell registry problems apart from network errors raised by httpx.
"""


class RegistryError(Exception):
    """Base exception for registry operations"""


class MalformedDigest(RegistryError, ValueError):
    """A digest string is not of the form `algorithm:hex`."""


class InvalidManifest(RegistryError):
    """A manifest could not be decoded."""


class InvalidConfig(RegistryError):
    """An image config could not be decoded."""


class AuthHandshakeFailed(RegistryError):
    """Pinging the registry did not yield a usable challenge."""


class UnsupportedChallenge(RegistryError):
    """The registry asked for an authentication scheme we do not speak."""


class TokenExchangeFailed(RegistryError):
    """The token service refused to hand out a bearer token."""


class LayerNotFound(RegistryError):
    """No layer of the image matches the requested diff ID."""


class BlobFetchFailed(RegistryError):
    """The registry answered a manifest or blob request with a non-2xx status.

    `errors` holds the error list from the response body, when the registry
    sent one.
    ref: https://github.com/opencontainers/distribution-spec/blob/main/spec.md#error-codes
    """

    def __init__(
        self, url: str, status_code: int, errors: list[dict] | None = None
    ) -> None:
        self.url = url
        self.status_code = status_code
        self.errors = errors or []
        message = f"{status_code} for {url}"
        if self.errors:
            message += ": " + "; ".join(
                f"{e.get('code', 'UNKNOWN')}: {e.get('message', '')}"
                for e in self.errors
            )
        super().__init__(message)


class AuthenticationFailed(BlobFetchFailed):
    """The registry still answered 401 after a token refresh."""


class UnsupportedOperation(RegistryError, NotImplementedError):
    """The operation is not implemented for this image."""
