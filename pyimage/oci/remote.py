import logging

import httpx

from pyimage.authn import ANONYMOUS, Authenticator
from pyimage.name import Reference
from pyimage.oci import media_types, transport
from pyimage.oci.config import ConfigFile
from pyimage.oci.digest import Hash
from pyimage.oci.errors import (
    AuthenticationFailed,
    BlobFetchFailed,
    UnsupportedOperation,
)
from pyimage.oci.image import Image
from pyimage.oci.manifest import Manifest

logger = logging.getLogger(__name__)

ACCEPT_MANIFEST = ", ".join(media_types.MANIFEST_TYPES)


def _registry_errors(response: httpx.Response) -> list[dict]:
    """Error list from a distribution spec error body, if there is one"""
    if "application/json" not in response.headers.get("Content-Type", ""):
        return []
    try:
        errors = response.json().get("errors")
    except ValueError:
        return []
    return errors if isinstance(errors, list) else []


def raise_for_status(response: httpx.Response) -> None:
    """Turn non-2xx responses into `BlobFetchFailed`.

    The response body has to be read already.
    """
    if response.is_success:
        return
    error = AuthenticationFailed if response.status_code == 401 else BlobFetchFailed
    raise error(
        url=str(response.request.url),
        status_code=response.status_code,
        errors=_registry_errors(response),
    )


class RemoteImage(Image):
    """Image served by a registry

    Nothing is cached, every call talks to the registry so a moving tag may
    yield a different manifest between calls. Blob contents are not checked
    against their digest.
    """

    def __init__(self, ref: Reference, client: httpx.Client):
        self.ref = ref
        self.client = client

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()

    def close(self):
        self.client.close()

    def _url(self, resource: str, identifier: str) -> str:
        return (
            f"{self.ref.registry.url}/v2/{self.ref.repository}/{resource}/{identifier}"
        )

    def _get(self, url: str, **kwargs) -> httpx.Response:
        logger.debug("GET %s", url)
        response = self.client.get(url, **kwargs)
        raise_for_status(response)
        return response

    def _fetch_manifest(self) -> httpx.Response:
        return self._get(
            self._url("manifests", self.ref.identifier),
            headers={"Accept": ACCEPT_MANIFEST},
        )

    def raw_manifest(self) -> bytes:
        return self._fetch_manifest().content

    def manifest(self) -> Manifest:
        return Manifest.parse(self.raw_manifest())

    def digest(self) -> Hash:
        # Hash the bytes as served, re-serializing the parsed manifest could change them
        return Hash.of(self.raw_manifest())

    def media_type(self) -> str:
        response = self._fetch_manifest()
        manifest = Manifest.parse(response.content)
        if manifest.mediaType:
            return manifest.mediaType
        return response.headers.get("Content-Type", media_types.OCI_MANIFEST)

    def raw_config_file(self) -> bytes:
        with self.blob(self.config_name()) as response:
            return response.read()

    def config_file(self) -> ConfigFile:
        return ConfigFile.parse(self.raw_config_file())

    def blob(self, digest: Hash) -> httpx.Response:
        """Stream the blob with `digest`

        Use the result as a context manager so the connection is released:

            with image.blob(digest) as response:
                for chunk in response.iter_bytes():
                    ...
        """
        url = self._url("blobs", str(digest))
        logger.debug("GET %s", url)
        request = self.client.build_request("GET", url)
        response = self.client.send(request, stream=True)
        if not response.is_success:
            try:
                response.read()
            finally:
                response.close()
            raise_for_status(response)
        return response

    def blob_size(self, digest: Hash) -> int | None:
        url = self._url("blobs", str(digest))
        logger.debug("HEAD %s", url)
        response = self.client.head(url)
        raise_for_status(response)
        if "Content-Length" not in response.headers:
            return None
        return int(response.headers["Content-Length"])

    def uncompressed_blob(self, digest: Hash) -> httpx.Response:
        raise UnsupportedOperation(f"Uncompressed blobs are not supported: {digest}")

    def uncompressed_layer(self, diff_id: Hash) -> httpx.Response:
        raise UnsupportedOperation(f"Uncompressed layers are not supported: {diff_id}")


def image(
    ref: Reference,
    auth: Authenticator = ANONYMOUS,
    inner: httpx.BaseTransport | None = None,
    timeout: httpx.Timeout = transport.DEFAULT_TIMEOUT,
) -> RemoteImage:
    """Access the image `ref` on its registry

    Performs the authentication handshake, the returned image owns the
    transport and closes it on `close()`.
    """
    authenticated = transport.new(
        ref, auth=auth, inner=inner, scope=transport.Scope.PULL, timeout=timeout
    )
    client = httpx.Client(
        transport=authenticated,
        follow_redirects=True,
        # Every request has to go through the authenticated transport
        trust_env=False,
        timeout=timeout,
    )
    return RemoteImage(ref, client)
