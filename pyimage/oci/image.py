from abc import ABC, abstractmethod
from typing import ContextManager

from pyimage.oci.config import ConfigFile
from pyimage.oci.digest import Hash
from pyimage.oci.errors import LayerNotFound
from pyimage.oci.manifest import Manifest


class Image(ABC):
    """A container image, its manifest, config and layer blobs

    Layers are addressed either by their distribution digest (as listed in
    the manifest) or by their diff ID (as listed in the config), the i-th
    manifest layer belongs to the i-th diff ID.

    Blobs are returned as context managers that release the underlying
    resources on exit.
    """

    @abstractmethod
    def manifest(self) -> Manifest:
        ...

    @abstractmethod
    def raw_manifest(self) -> bytes:
        ...

    @abstractmethod
    def media_type(self) -> str:
        ...

    @abstractmethod
    def digest(self) -> Hash:
        ...

    @abstractmethod
    def config_file(self) -> ConfigFile:
        ...

    @abstractmethod
    def raw_config_file(self) -> bytes:
        ...

    @abstractmethod
    def blob(self, digest: Hash) -> ContextManager:
        ...

    @abstractmethod
    def blob_size(self, digest: Hash) -> int | None:
        ...

    @abstractmethod
    def uncompressed_blob(self, digest: Hash) -> ContextManager:
        ...

    def config_name(self) -> Hash:
        return self.manifest().config.digest

    def fs_layers(self) -> list[Hash]:
        """Distribution digests of the layers, in manifest order"""
        return [layer.digest for layer in self.manifest().layers]

    def diff_ids(self) -> list[Hash]:
        """Diff IDs of the layers, in config order"""
        return list(self.config_file().rootfs.diff_ids)

    def blob_set(self) -> set[Hash]:
        """Every blob needed to reconstruct the image"""
        manifest = self.manifest()
        return {layer.digest for layer in manifest.layers} | {manifest.config.digest}

    def layer_digest(self, diff_id: Hash) -> Hash:
        """Distribution digest of the layer with `diff_id`

        Layers with identical content share a diff ID, the first of them wins.
        """
        layers = self.fs_layers()
        diff_ids = self.diff_ids()
        try:
            position = diff_ids.index(diff_id)
        except ValueError:
            raise LayerNotFound(f"Could not find layer by diff ID {diff_id}") from None
        if position >= len(layers):
            raise LayerNotFound(
                f"Diff ID {diff_id} is at position {position}, "
                f"but the manifest only lists {len(layers)} layers"
            )
        return layers[position]

    def layer(self, diff_id: Hash) -> ContextManager:
        return self.blob(self.layer_digest(diff_id))

    def uncompressed_layer(self, diff_id: Hash) -> ContextManager:
        return self.uncompressed_blob(self.layer_digest(diff_id))
