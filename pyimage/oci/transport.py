"""Registry authentication

`new()` pings the registry, works out which kind of authentication it wants
and returns an httpx transport that takes care of it:

1. Ping `/v2/` without credentials.
2. 200: no authentication needed, the inner transport is used as is.
3. 401 with a Basic challenge: attach the credentials to every request.
4. 401 with a Bearer challenge: trade the credentials for a token at the
   challenge's realm, attach the token to every request and fetch a new
   token when the registry answers 401.

ref: https://distribution.github.io/distribution/spec/auth/token/
"""
import enum
import logging
import re
import threading
from dataclasses import dataclass, field

import httpx

from pyimage.authn import ANONYMOUS, Authenticator
from pyimage.name import Reference
from pyimage.oci.errors import (
    AuthHandshakeFailed,
    TokenExchangeFailed,
    UnsupportedChallenge,
)

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = httpx.Timeout(30.0)

_PARAM = re.compile(r'([\w-]+)\s*=\s*(?:"((?:[^"\\]|\\.)*)"|([^",\s]*))\s*(?:,|$)')


class Scope(str, enum.Enum):
    """Access to request for the repository"""

    PULL = "pull"
    PUSH = "push,pull"


class ChallengeType(str, enum.Enum):
    ANONYMOUS = "anonymous"
    BASIC = "basic"
    BEARER = "bearer"


@dataclass
class Challenge:
    type: ChallengeType
    parameters: dict[str, str] = field(default_factory=dict)


def parse_www_authenticate(header: str) -> tuple[str, dict[str, str]]:
    """Split a WWW-Authenticate header into its scheme and parameters

    >>> parse_www_authenticate('Bearer realm="https://auth.example/token",service="example"')
    ('bearer', {'realm': 'https://auth.example/token', 'service': 'example'})
    """
    scheme, _, params = header.strip().partition(" ")
    if not scheme:
        raise AuthHandshakeFailed(f"Empty WWW-Authenticate header: {header!r}")
    parameters = {}
    params = params.strip()
    position = 0
    while position < len(params):
        match = _PARAM.match(params, position)
        if match is None:
            raise AuthHandshakeFailed(f"Malformed WWW-Authenticate header: {header!r}")
        key, quoted, bare = match.groups()
        value = bare if quoted is None else re.sub(r"\\(.)", r"\1", quoted)
        parameters[key.lower()] = value
        position = match.end()
        while position < len(params) and params[position] in " ,":
            position += 1
    return scheme.lower(), parameters


def _send(transport: httpx.BaseTransport, request: httpx.Request) -> httpx.Response:
    """Send `request` and read the full response, releasing the connection."""
    response = transport.handle_request(request)
    try:
        response.read()
    finally:
        response.close()
    return response


def ping(
    url: str, transport: httpx.BaseTransport, timeout: httpx.Timeout = DEFAULT_TIMEOUT
) -> Challenge:
    """Ask the registry at `url` which authentication it requires."""
    request = httpx.Request(
        "GET", f"{url}/v2/", extensions={"timeout": timeout.as_dict()}
    )
    response = _send(transport, request)
    logger.debug("Ping %s: %s", request.url, response.status_code)

    if response.status_code == 200:
        return Challenge(ChallengeType.ANONYMOUS)
    if response.status_code != 401:
        raise AuthHandshakeFailed(
            f"Unexpected status {response.status_code} pinging {request.url}"
        )
    if "WWW-Authenticate" not in response.headers:
        raise AuthHandshakeFailed(
            f"{request.url} answered 401 without a WWW-Authenticate header"
        )
    scheme, parameters = parse_www_authenticate(response.headers["WWW-Authenticate"])
    logger.debug("Challenge from %s: %s %s", request.url, scheme, parameters)
    if scheme not in (ChallengeType.BASIC, ChallengeType.BEARER):
        raise UnsupportedChallenge(f"Unrecognized challenge from {request.url}: {scheme}")
    return Challenge(ChallengeType(scheme), parameters)


def _same_origin(url: httpx.URL, registry: httpx.URL) -> bool:
    # httpx lowercases hosts and drops default ports
    return (url.scheme, url.host, url.port) == (
        registry.scheme,
        registry.host,
        registry.port,
    )


class BasicTransport(httpx.BaseTransport):
    """Attaches the static credentials to requests for the registry."""

    def __init__(self, inner: httpx.BaseTransport, auth: Authenticator, registry: str):
        self.inner = inner
        self.auth = auth
        self.registry = httpx.URL(registry)

    def handle_request(self, request: httpx.Request) -> httpx.Response:
        authorization = self.auth.authorization()
        if authorization is not None and _same_origin(request.url, self.registry):
            request.headers["Authorization"] = authorization
        return self.inner.handle_request(request)

    def close(self) -> None:
        self.inner.close()


class BearerTransport(httpx.BaseTransport):
    """Attaches a bearer token to requests for the registry

    The token is fetched from `realm` using `basic` and replaced when the
    registry rejects it. Concurrent refreshes collapse into one request to
    the token service.
    """

    def __init__(
        self,
        inner: httpx.BaseTransport,
        basic: Authenticator,
        registry: str,
        realm: str,
        service: str,
        scope: str,
        timeout: httpx.Timeout = DEFAULT_TIMEOUT,
    ):
        self.inner = inner
        self.basic = basic
        self.registry = httpx.URL(registry)
        self.realm = realm
        self.service = service
        self.scope = scope
        self.timeout = timeout
        self._token: str | None = None
        self._lock = threading.Lock()

    @property
    def token(self) -> str | None:
        with self._lock:
            return self._token

    def refresh(self, stale: str | None = None) -> None:
        """Fetch a new token

        `stale` is the token that got rejected; when another caller already
        replaced it there is nothing left to do.
        """
        with self._lock:
            if stale is not None and self._token != stale:
                logger.debug("Token for %s already refreshed", self.scope)
                return
            self._token = self._exchange()

    def _exchange(self) -> str:
        request = httpx.Request(
            "GET",
            self.realm,
            params={"service": self.service, "scope": self.scope},
            extensions={"timeout": self.timeout.as_dict()},
        )
        authorization = self.basic.authorization()
        if authorization is not None:
            request.headers["Authorization"] = authorization
        logger.debug("Requesting token for %s from %s", self.scope, self.realm)
        response = _send(self.inner, request)
        if not response.is_success:
            raise TokenExchangeFailed(
                f"Token request to {self.realm} failed: {response.status_code}"
            )
        try:
            body = response.json()
        except ValueError as e:
            raise TokenExchangeFailed(
                f"Token service {self.realm} did not return JSON"
            ) from e
        token = body.get("token") or body.get("access_token")
        if not token:
            raise TokenExchangeFailed(f"No token in response from {self.realm}")
        return token

    def _authorize(self, request: httpx.Request, token: str | None) -> None:
        if token is not None and _same_origin(request.url, self.registry):
            request.headers["Authorization"] = f"Bearer {token}"

    def handle_request(self, request: httpx.Request) -> httpx.Response:
        token = self.token
        self._authorize(request, token)
        response = self.inner.handle_request(request)
        if response.status_code != 401:
            return response
        if not _same_origin(request.url, self.registry):
            # Tokens are only valid for the registry, not for where it redirects to
            return response

        # One refresh and one retry, a second 401 is the caller's problem
        response.close()
        logger.debug("%s %s answered 401, refreshing token", request.method, request.url)
        self.refresh(stale=token)
        self._authorize(request, self.token)
        return self.inner.handle_request(request)

    def close(self) -> None:
        self.inner.close()


def new(
    ref: Reference,
    auth: Authenticator = ANONYMOUS,
    inner: httpx.BaseTransport | None = None,
    scope: Scope = Scope.PULL,
    timeout: httpx.Timeout = DEFAULT_TIMEOUT,
) -> httpx.BaseTransport:
    """Return a transport authenticated against the registry hosting `ref`."""
    if inner is None:
        inner = httpx.HTTPTransport()
    registry = ref.registry
    challenge = ping(registry.url, inner, timeout=timeout)

    if challenge.type is ChallengeType.ANONYMOUS:
        return inner
    if challenge.type is ChallengeType.BASIC:
        return BasicTransport(inner, auth=auth, registry=registry.url)

    # The realm tells us where to trade the credentials for a token
    if "realm" not in challenge.parameters:
        raise AuthHandshakeFailed(
            f"Malformed WWW-Authenticate, missing realm: {challenge.parameters}"
        )
    transport = BearerTransport(
        inner,
        basic=auth,
        registry=registry.url,
        realm=challenge.parameters["realm"],
        service=challenge.parameters.get("service", registry.host),
        scope=ref.scope(scope.value),
        timeout=timeout,
    )
    transport.refresh()
    return transport
