from pydantic import BaseModel, ValidationError

from pyimage.oci.descriptor import Descriptor
from pyimage.oci.errors import InvalidManifest


class Manifest(BaseModel):
    """
    ref: https://github.com/opencontainers/image-spec/blob/main/manifest.md
    ref: https://distribution.github.io/distribution/spec/manifest-v2-2/
    """

    schemaVersion: int
    mediaType: str | None = None
    config: Descriptor
    layers: list[Descriptor] = []
    annotations: dict[str, str] | None = None

    @classmethod
    def parse(cls, data: bytes | str) -> "Manifest":
        try:
            return cls.model_validate_json(data)
        except ValidationError as e:
            raise InvalidManifest(str(e)) from e
