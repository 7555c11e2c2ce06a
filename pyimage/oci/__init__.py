"""Container image client library for Python

This module provides a Python API for pulling images from OCI and
Docker V2 registries.
"""
import logging

import httpx

from pyimage.authn import DEFAULT_KEYCHAIN, Authenticator, DockerConfigKeychain
from pyimage.name import parse_reference

from .config import ConfigFile
from .descriptor import Descriptor
from .digest import Hash, sha256
from .errors import (
    AuthenticationFailed,
    AuthHandshakeFailed,
    BlobFetchFailed,
    InvalidConfig,
    InvalidManifest,
    LayerNotFound,
    MalformedDigest,
    RegistryError,
    TokenExchangeFailed,
    UnsupportedChallenge,
    UnsupportedOperation,
)
from .image import Image
from .manifest import Manifest
from .remote import RemoteImage, image
from .transport import DEFAULT_TIMEOUT, Scope

logger = logging.getLogger(__name__)


def open_image(
    reference: str,
    auth: Authenticator | None = None,
    keychain: DockerConfigKeychain = DEFAULT_KEYCHAIN,
    insecure: bool = False,
    timeout: httpx.Timeout = DEFAULT_TIMEOUT,
    inner: httpx.BaseTransport | None = None,
) -> RemoteImage:
    """Open a remote image by its reference string

    :param reference: `registry/repository:tag` or `registry/repository@digest`.
    :param auth: Credentials to use, looked up in `keychain` when omitted.
    :param keychain: Where to look up credentials for the registry.
    :param insecure: Talk plain http to the registry.
    :param timeout: httpx timeout applied to every request.
    :param inner: Transport to send requests with, a new
        `httpx.HTTPTransport` when omitted.
    """
    ref = parse_reference(reference, insecure=insecure)
    if auth is None:
        auth = keychain.resolve(ref.registry)
    logger.info("Opening %s", ref)
    return image(ref, auth=auth, inner=inner, timeout=timeout)


def pull_manifest(reference: str, **kwargs) -> Manifest:
    """Fetch the manifest of an image"""
    with open_image(reference, **kwargs) as img:
        return img.manifest()


def pull_config(reference: str, **kwargs) -> ConfigFile:
    """Fetch the config file of an image"""
    with open_image(reference, **kwargs) as img:
        return img.config_file()
