from pydantic import BaseModel

from pyimage.oci.digest import Digest


class Descriptor(BaseModel):
    """
    ref: https://github.com/opencontainers/image-spec/blob/main/descriptor.md
    """

    mediaType: str
    size: int
    digest: Digest
    urls: list[str] | None = None
    annotations: dict[str, str] | None = None
