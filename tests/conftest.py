import base64
import gzip
import hashlib
import json
import re
from pathlib import Path

import httpx
import pytest

REGISTRY = "registry.example.com"
REALM = "https://auth.example.com/token"
USERNAME = "user"
PASSWORD = "secret"

_BLOB_PATH = re.compile(r"^/v2/(?P<name>.+)/(?P<kind>manifests|blobs)/(?P<ref>[^/]+)$")


def _digest(data: bytes) -> str:
    return f"sha256:{hashlib.sha256(data).hexdigest()}"


class FakeRegistry:
    """In-memory registry served through an httpx.MockTransport

    `auth` is one of "anonymous", "basic" or "bearer" and decides which
    challenge the registry answers unauthenticated requests with.
    """

    def __init__(self, auth: str = "anonymous", challenge: str | None = None):
        self.auth = auth
        self.challenge = challenge
        self.manifests: dict[tuple[str, str], tuple[bytes, str]] = {}
        self.blobs: dict[str, bytes] = {}
        self.requests: list[httpx.Request] = []
        self.token_requests: list[httpx.Request] = []
        self.valid_tokens: set[str] = set()
        self.token_status = 200
        self.reject_all = False
        self.transport = httpx.MockTransport(self.handle)

    # Content

    def add_image(
        self,
        name: str,
        tag: str,
        layers: list[bytes],
        media_type: str = "application/vnd.docker.distribution.manifest.v2+json",
    ) -> dict:
        """Store an image, return the pieces tests want to assert on."""
        compressed = [gzip.compress(layer, mtime=0) for layer in layers]
        diff_ids = [_digest(layer) for layer in layers]
        config = json.dumps(
            {
                "architecture": "amd64",
                "os": "linux",
                "config": {"Cmd": ["/bin/sh"]},
                "rootfs": {"type": "layers", "diff_ids": diff_ids},
            }
        ).encode()
        self.blobs[_digest(config)] = config
        for blob in compressed:
            self.blobs[_digest(blob)] = blob
        manifest = json.dumps(
            {
                "schemaVersion": 2,
                "mediaType": media_type,
                "config": {
                    "mediaType": "application/vnd.docker.container.image.v1+json",
                    "size": len(config),
                    "digest": _digest(config),
                },
                "layers": [
                    {
                        "mediaType": "application/vnd.docker.image.rootfs.diff.tar.gzip",
                        "size": len(blob),
                        "digest": _digest(blob),
                    }
                    for blob in compressed
                ],
            },
            indent=3,
        ).encode()
        self.manifests[(name, tag)] = (manifest, media_type)
        self.manifests[(name, _digest(manifest))] = (manifest, media_type)
        return {
            "manifest": manifest,
            "config": config,
            "config_digest": _digest(config),
            "layer_digests": [_digest(blob) for blob in compressed],
            "layer_blobs": compressed,
            "diff_ids": diff_ids,
        }

    def revoke_tokens(self):
        self.valid_tokens.clear()

    # Requests

    @property
    def registry_requests(self) -> list[httpx.Request]:
        return [r for r in self.requests if r.url.host == REGISTRY]

    def handle(self, request: httpx.Request) -> httpx.Response:
        # Snapshot, a retried request is the same object with new headers
        request = httpx.Request(request.method, request.url, headers=request.headers)
        self.requests.append(request)
        if request.url.host == "auth.example.com":
            return self._token(request)
        if not self._authorized(request):
            return self._unauthorized()
        if request.url.path == "/v2/":
            return httpx.Response(200, json={})

        match = _BLOB_PATH.match(request.url.path)
        if match is None:
            return self._error(404, "NAME_UNKNOWN", "repository name not known")
        if match["kind"] == "manifests":
            if (match["name"], match["ref"]) not in self.manifests:
                return self._error(404, "MANIFEST_UNKNOWN", "manifest unknown")
            body, media_type = self.manifests[(match["name"], match["ref"])]
            return httpx.Response(
                200,
                content=body,
                headers={
                    "Content-Type": media_type,
                    "Docker-Content-Digest": _digest(body),
                },
            )
        if match["ref"] not in self.blobs:
            return self._error(404, "BLOB_UNKNOWN", "blob unknown to registry")
        body = self.blobs[match["ref"]]
        if request.method == "HEAD":
            return httpx.Response(200, headers={"Content-Length": str(len(body))})
        return httpx.Response(200, content=body)

    def _authorized(self, request: httpx.Request) -> bool:
        if self.reject_all:
            return False
        if self.auth == "anonymous":
            return True
        header = request.headers.get("Authorization", "")
        if self.auth == "basic":
            credential = base64.b64encode(f"{USERNAME}:{PASSWORD}".encode()).decode()
            return header == f"Basic {credential}"
        return header.removeprefix("Bearer ") in self.valid_tokens

    def _unauthorized(self) -> httpx.Response:
        challenge = self.challenge
        if challenge is None:
            challenge = (
                'Basic realm="Registry Realm"'
                if self.auth == "basic"
                else f'Bearer realm="{REALM}",service="{REGISTRY}"'
            )
        return httpx.Response(
            401,
            headers={"WWW-Authenticate": challenge},
            json={"errors": [{"code": "UNAUTHORIZED", "message": "authentication required"}]},
        )

    def _token(self, request: httpx.Request) -> httpx.Response:
        self.token_requests.append(request)
        if self.token_status != 200:
            return httpx.Response(self.token_status, json={"details": "nope"})
        token = f"token-{len(self.token_requests)}"
        self.valid_tokens.add(token)
        return httpx.Response(200, json={"token": token, "expires_in": 300})

    @staticmethod
    def _error(status: int, code: str, message: str) -> httpx.Response:
        return httpx.Response(
            status, json={"errors": [{"code": code, "message": message}]}
        )


@pytest.fixture
def registry() -> FakeRegistry:
    """Registry that does not require authentication"""
    return FakeRegistry()


@pytest.fixture
def bearer_registry() -> FakeRegistry:
    return FakeRegistry(auth="bearer")


@pytest.fixture
def basic_registry() -> FakeRegistry:
    return FakeRegistry(auth="basic")


@pytest.fixture
def docker_config(tmp_path, monkeypatch) -> Path:
    """Empty docker config directory, used as DOCKER_CONFIG"""
    monkeypatch.setenv("DOCKER_CONFIG", str(tmp_path))
    return tmp_path
