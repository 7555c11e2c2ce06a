import hashlib
import string
from dataclasses import dataclass
from typing import Annotated, BinaryIO, Iterable

from pydantic import PlainSerializer, PlainValidator

from pyimage.oci.errors import MalformedDigest

# Hex length of each supported algorithm's output
ALGORITHMS = {
    "sha256": 64,
    "sha384": 96,
    "sha512": 128,
}
CHUNK_SIZE = 64 * 1024


def _chunks(stream: BinaryIO | Iterable[bytes]) -> Iterable[bytes]:
    if hasattr(stream, "read"):
        while chunk := stream.read(CHUNK_SIZE):
            yield chunk
    else:
        yield from stream


@dataclass(frozen=True, slots=True, order=True)
class Hash:
    """Content digest, written as `algorithm:hex`

    ref: https://github.com/opencontainers/image-spec/blob/main/descriptor.md#digests
    """

    algorithm: str
    hex: str

    def __str__(self):
        return f"{self.algorithm}:{self.hex}"

    @classmethod
    def parse(cls, value: "str | Hash") -> "Hash":
        if isinstance(value, Hash):
            return value
        if not isinstance(value, str):
            raise MalformedDigest(f"Digest must be a string, got {type(value)}")
        algorithm, sep, hex_ = value.partition(":")
        if not sep or not algorithm or not hex_:
            raise MalformedDigest(f"Cannot parse digest: {value!r}")
        if algorithm not in ALGORITHMS:
            raise MalformedDigest(f"Unsupported digest algorithm: {algorithm!r}")
        hex_ = hex_.lower()
        if len(hex_) != ALGORITHMS[algorithm]:
            raise MalformedDigest(
                f"{algorithm} digest should have {ALGORITHMS[algorithm]} "
                f"hex characters, got {len(hex_)}: {value!r}"
            )
        if not set(hex_) <= set(string.hexdigits.lower()):
            raise MalformedDigest(f"Digest is not hex encoded: {value!r}")
        return cls(algorithm=algorithm, hex=hex_)

    @classmethod
    def compute(
        cls, stream: BinaryIO | Iterable[bytes], algorithm: str = "sha256"
    ) -> "Hash":
        """Hash everything `stream` yields.

        `stream` is either a binary file-like object or an iterable of byte
        chunks, e.g. `httpx.Response.iter_bytes()`. It is consumed in bounded
        chunks so arbitrarily large blobs can be hashed.
        """
        if algorithm not in ALGORITHMS:
            raise MalformedDigest(f"Unsupported digest algorithm: {algorithm!r}")
        hasher = hashlib.new(algorithm)
        for chunk in _chunks(stream):
            hasher.update(chunk)
        return cls(algorithm=algorithm, hex=hasher.hexdigest())

    @classmethod
    def of(cls, data: bytes, algorithm: str = "sha256") -> "Hash":
        return cls.compute([data], algorithm=algorithm)


def sha256(stream: BinaryIO | Iterable[bytes]) -> Hash:
    return Hash.compute(stream, algorithm="sha256")


# Hash as it appears in manifests and configs, a plain `algorithm:hex` string
Digest = Annotated[
    Hash,
    PlainValidator(Hash.parse),
    PlainSerializer(str, return_type=str),
]
