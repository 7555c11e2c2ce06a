from pydantic import BaseModel, ConfigDict, Field, ValidationError

from pyimage.oci.digest import Digest
from pyimage.oci.errors import InvalidConfig


class History(BaseModel):
    model_config = ConfigDict(extra="allow")

    author: str | None = None
    created: str | None = None
    created_by: str | None = None
    comment: str | None = None
    empty_layer: bool | None = None


class RootFS(BaseModel):
    type: str
    diff_ids: list[Digest] = []


class Config(BaseModel):
    """Runtime configuration of containers started from the image"""

    model_config = ConfigDict(extra="allow")

    User: str | None = None
    Env: list[str] | None = None
    Entrypoint: list[str] | None = None
    Cmd: list[str] | None = None
    WorkingDir: str | None = None
    Labels: dict[str, str] | None = None
    ExposedPorts: dict[str, dict] | None = None
    Volumes: dict[str, dict] | None = None
    StopSignal: str | None = None


class ConfigFile(BaseModel):
    """
    ref: https://github.com/opencontainers/image-spec/blob/main/config.md

    Fields not modelled here are kept, so the document can be dumped again.
    """

    model_config = ConfigDict(extra="allow")

    architecture: str | None = None
    os: str | None = None
    os_version: str | None = Field(default=None, alias="os.version")
    variant: str | None = None
    created: str | None = None
    author: str | None = None
    container: str | None = None
    docker_version: str | None = None
    history: list[History] | None = None
    config: Config | None = None
    container_config: Config | None = None
    rootfs: RootFS

    @classmethod
    def parse(cls, data: bytes | str) -> "ConfigFile":
        try:
            return cls.model_validate_json(data)
        except ValidationError as e:
            raise InvalidConfig(str(e)) from e
