"""Image reference parsing

Turns `registry/repository:tag` and `registry/repository@digest` strings into
structured references.
"""
import re
from dataclasses import dataclass
from urllib.parse import urlsplit

DEFAULT_REGISTRY = "index.docker.io"
DEFAULT_TAG = "latest"
# Hosts that name the same registry as DEFAULT_REGISTRY
DOCKER_HUB_ALIASES = {"docker.io", "registry-1.docker.io", DEFAULT_REGISTRY}

_REPOSITORY = re.compile(
    r"^[a-z0-9]+(?:(?:[._]|__|-+)[a-z0-9]+)*(?:/[a-z0-9]+(?:(?:[._]|__|-+)[a-z0-9]+)*)*$"
)
_DIGEST = re.compile(r"^sha(?:256:[0-9a-f]{64}|384:[0-9a-f]{96}|512:[0-9a-f]{128})$")
_TAG = re.compile(r"^\w[\w.-]{0,127}$")
_LOCAL_HOSTS = ("localhost", "127.0.0.1", "::1")


class BadReference(ValueError):
    """The string is not a valid image reference."""


@dataclass(frozen=True, slots=True)
class Registry:
    host: str = DEFAULT_REGISTRY
    insecure: bool = False

    def __post_init__(self):
        if self.host in DOCKER_HUB_ALIASES:
            object.__setattr__(self, "host", DEFAULT_REGISTRY)

    def __str__(self):
        return self.host

    @property
    def scheme(self) -> str:
        """Plain http is only used for local registries or when asked for."""
        if self.insecure or urlsplit(f"//{self.host}").hostname in _LOCAL_HOSTS:
            return "http"
        return "https"

    @property
    def url(self) -> str:
        return f"{self.scheme}://{self.host}"


@dataclass(frozen=True, slots=True)
class Reference:
    registry: Registry
    repository: str
    identifier: str

    @property
    def name(self) -> str:
        return f"{self.registry}/{self.repository}"

    def scope(self, action: str) -> str:
        """Scope to request from the token service

        ref: https://distribution.github.io/distribution/spec/auth/scope/
        """
        return f"repository:{self.repository}:{action}"


class Tag(Reference):
    def __str__(self):
        return f"{self.name}:{self.identifier}"


class Digest(Reference):
    def __str__(self):
        return f"{self.name}@{self.identifier}"


def _split_registry(name: str) -> tuple[str | None, str]:
    first, sep, rest = name.partition("/")
    if sep and ("." in first or ":" in first or first == "localhost"):
        return first, rest
    return None, name


def parse_reference(
    value: str, strict: bool = False, insecure: bool = False
) -> Tag | Digest:
    """Parse an image reference

    By default the registry falls back to Docker Hub and the tag to `latest`,
    with `strict=True` both have to be spelled out.
    """
    if not value:
        raise BadReference("Empty image reference")

    name, at, digest = value.partition("@")
    identifier = None
    if at:
        if not _DIGEST.match(digest):
            raise BadReference(f"Invalid digest {digest!r} in {value!r}")
        identifier = digest
    else:
        # Only a colon after the last slash starts a tag, others belong to a port
        head, colon, tag = name.rpartition(":")
        if colon and "/" not in tag:
            if not _TAG.match(tag):
                raise BadReference(f"Invalid tag {tag!r} in {value!r}")
            name, identifier = head, tag

    host, repository = _split_registry(name)
    if host is None:
        if strict:
            raise BadReference(f"Strict reference requires a registry: {value!r}")
        host = DEFAULT_REGISTRY
    registry = Registry(host, insecure=insecure)
    if registry.host == DEFAULT_REGISTRY and "/" not in repository:
        repository = f"library/{repository}"
    if not _REPOSITORY.match(repository):
        raise BadReference(f"Invalid repository {repository!r} in {value!r}")

    if at:
        return Digest(registry, repository, identifier)
    if identifier is None:
        if strict:
            raise BadReference(f"Strict reference requires a tag: {value!r}")
        identifier = DEFAULT_TAG
    return Tag(registry, repository, identifier)
