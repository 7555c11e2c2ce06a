"""Registry credentials

Authenticators turn a credential into an `Authorization` header value,
keychains find the credential to use for a registry.
"""
import base64
import binascii
import json
import logging
import os
from dataclasses import dataclass
from pathlib import Path

from pyimage.name import DEFAULT_REGISTRY, Registry

logger = logging.getLogger(__name__)

# Key docker login uses for Docker Hub
DOCKER_HUB_CONFIG_KEY = "https://index.docker.io/v1/"


class BadDockerConfig(ValueError):
    """The docker config file cannot be read."""


class Anonymous:
    def authorization(self) -> str | None:
        return None

    def __repr__(self):
        return "Anonymous()"


ANONYMOUS = Anonymous()


@dataclass(frozen=True)
class Basic:
    username: str
    password: str

    def authorization(self) -> str | None:
        credential = f"{self.username}:{self.password}".encode("utf-8")
        return f"Basic {base64.b64encode(credential).decode('ascii')}"

    def __repr__(self):
        return f"Basic(username={self.username!r}, password='***')"


@dataclass(frozen=True)
class Bearer:
    token: str

    def authorization(self) -> str | None:
        return f"Bearer {self.token}"

    def __repr__(self):
        return "Bearer(token='***')"


Authenticator = Anonymous | Basic | Bearer


def _config_dir() -> Path:
    if "DOCKER_CONFIG" in os.environ:
        return Path(os.environ["DOCKER_CONFIG"])
    return Path.home() / ".docker"


def _lookup_keys(registry: Registry) -> list[str]:
    if registry.host == DEFAULT_REGISTRY:
        return [DOCKER_HUB_CONFIG_KEY, DEFAULT_REGISTRY, "docker.io"]
    return [
        registry.host,
        f"https://{registry.host}",
        f"http://{registry.host}",
    ]


def _decode_auth(key: str, value: str) -> tuple[str, str]:
    try:
        username, sep, password = (
            base64.b64decode(value, validate=True).decode("utf-8").partition(":")
        )
    except (binascii.Error, UnicodeDecodeError, TypeError) as e:
        raise BadDockerConfig(f"Invalid auth for {key} in docker config: {e}") from e
    if not sep:
        raise BadDockerConfig(f"Invalid auth for {key} in docker config: no username")
    return username, password


class DockerConfigKeychain:
    """Resolve credentials from the `auths` section of the docker config

    ref: https://docs.docker.com/reference/cli/docker/login/#credential-stores
    Credential helpers are not consulted, registries without an `auths` entry
    resolve to anonymous access.
    """

    def __init__(self, path: Path | None = None):
        self.path = path

    def _auths(self) -> dict:
        path = self.path or _config_dir() / "config.json"
        if not path.is_file():
            logger.debug("No docker config at %s", path)
            return {}
        try:
            auths = json.loads(path.read_text()).get("auths", {})
        except (ValueError, AttributeError) as e:
            raise BadDockerConfig(f"Invalid docker config {path}: {e}") from e
        if not isinstance(auths, dict):
            raise BadDockerConfig(f"Invalid auths section in docker config {path}")
        return auths

    def resolve(self, registry: Registry) -> Authenticator:
        auths = self._auths()
        for key in _lookup_keys(registry):
            if key not in auths:
                continue
            entry = auths[key]
            if not isinstance(entry, dict):
                raise BadDockerConfig(f"Invalid docker config entry for {key}")
            if entry.get("auth"):
                username, password = _decode_auth(key, entry["auth"])
            elif entry.get("username"):
                username, password = entry["username"], entry.get("password", "")
            else:
                continue
            logger.debug("Using credentials from %s for %s", key, registry)
            return Basic(username=username, password=password)
        return ANONYMOUS


DEFAULT_KEYCHAIN = DockerConfigKeychain()
