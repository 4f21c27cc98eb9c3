"""
Multi-architecture artifact publisher.

Turns a set of per-platform binaries into an OCI image index: one manifest
per platform, each referencing a shared empty config and a single binary
layer. Only the index is tagged, so the tag moves once every platform has
been pushed and never points at a partial index.
"""

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, List, Optional, Sequence

from .errors import ConfigurationError, PublishError
from .media_types import media_type_for
from .oci import (
    ANNOTATION_TITLE,
    EMPTY_CONFIG_BYTES,
    MEDIA_TYPE_IMAGE_CONFIG,
    MEDIA_TYPE_IMAGE_INDEX,
    MEDIA_TYPE_IMAGE_MANIFEST,
    Descriptor,
    Index,
    Manifest,
    Platform,
)
from .oras_client import MemoryStore, OrasClientError, RegistryClient, is_already_exists

logger = logging.getLogger(__name__)


@dataclass
class PlatformBinary:
    """A binary file bound to the platform it was built for."""
    platform: Platform
    path: Path


@dataclass
class PublishResult:
    """Result of a publishing operation."""
    index: Descriptor
    manifests: List[Descriptor] = field(default_factory=list)
    tag: str = ""


def parse_bindings(bindings: Sequence[str]) -> List[PlatformBinary]:
    """
    Parse ``os/arch=path`` bindings.

    Args:
        bindings: Binding strings in command-line order

    Returns:
        Parsed bindings, order preserved

    Raises:
        ConfigurationError: On an empty list, bad syntax, a missing file,
            or the same platform bound twice
    """
    if not bindings:
        raise ConfigurationError("no bin specified, use --bin os/arch=path")

    binaries: List[PlatformBinary] = []
    seen = {}
    for binding in bindings:
        spec, sep, path = binding.partition("=")
        if not sep or not path:
            raise ConfigurationError(f"invalid platform format: {binding} (expected os/arch=path)")

        os_parts = spec.split("/")
        if len(os_parts) != 2 or not os_parts[0] or not os_parts[1]:
            raise ConfigurationError(f"invalid platform format: {spec} (expected os/arch)")

        platform = Platform(os_parts[0], os_parts[1])
        if platform in seen:
            raise ConfigurationError(
                f"platform {platform} bound twice ({seen[platform]} and {path})"
            )
        if not os.path.isfile(path):
            raise ConfigurationError(f"file not found: {path}")

        seen[platform] = path
        binaries.append(PlatformBinary(platform=platform, path=Path(path)))

    return binaries


def _stage(store: MemoryStore, descriptor: Descriptor, data: bytes) -> None:
    try:
        store.push(descriptor, data)
    except OrasClientError as e:
        if not is_already_exists(e):
            raise


class MultiArchPublisher:
    """
    Publishes platform binaries as one multi-architecture artifact.

    Content is staged in an in-memory store and copied to the registry one
    platform at a time; a failure aborts the push before the tag moves.
    """

    def __init__(self, client: RegistryClient,
                 progress: Optional[Callable[[int, int, Platform], None]] = None):
        """
        Initialize the publisher.

        Args:
            client: Registry client for the target repository
            progress: Called as ``progress(position, total, platform)``
                before each platform is pushed
        """
        self.client = client
        self.progress = progress
        self.store = MemoryStore()
        self.config_descriptor = Descriptor.for_bytes(MEDIA_TYPE_IMAGE_CONFIG, EMPTY_CONFIG_BYTES)

    def build_manifest(self, binary: PlatformBinary) -> Descriptor:
        """
        Read a binary and stage its layer, config and manifest.

        Returns:
            Manifest descriptor carrying the binary's platform
        """
        try:
            with open(binary.path, "rb") as f:
                data = f.read()
        except OSError as e:
            raise ConfigurationError(f"failed to read {binary.path}: {e}") from e

        platform = binary.platform
        layer = Descriptor.for_bytes(
            media_type_for(platform.os, platform.architecture),
            data,
            annotations={ANNOTATION_TITLE: platform.slug},
        )
        _stage(self.store, layer, data)
        _stage(self.store, self.config_descriptor, EMPTY_CONFIG_BYTES)

        manifest_bytes = Manifest(config=self.config_descriptor, layers=[layer]).to_bytes()
        manifest = Descriptor.for_bytes(MEDIA_TYPE_IMAGE_MANIFEST, manifest_bytes, platform=platform)
        _stage(self.store, manifest, manifest_bytes)

        logger.debug(f"Built manifest {manifest.digest} for {platform} ({layer.size} bytes)")
        return manifest

    def _copy(self, root: Descriptor) -> None:
        try:
            self.client.copy_graph(self.store, root)
        except OrasClientError as e:
            if not is_already_exists(e):
                raise

    def push_platform(self, binary: PlatformBinary) -> Descriptor:
        """Stage and push one platform; returns its manifest descriptor."""
        manifest = self.build_manifest(binary)
        try:
            self._copy(manifest)
        except OrasClientError as e:
            raise PublishError(f"failed to push binary {binary.platform}: {e}") from e
        return manifest

    def build_index(self, manifests: List[Descriptor]) -> Descriptor:
        index_bytes = Index(manifests=list(manifests)).to_bytes()
        index = Descriptor.for_bytes(MEDIA_TYPE_IMAGE_INDEX, index_bytes)
        _stage(self.store, index, index_bytes)
        return index

    def publish(self, binaries: Sequence[PlatformBinary], tag: Optional[str] = None) -> PublishResult:
        """
        Push every binary, then the index, then move the tag.

        Args:
            binaries: Platform bindings in the order the index lists them
            tag: Tag to apply; defaults to the client's reference

        Returns:
            Index and manifest descriptors that were published

        Raises:
            PublishError: If any platform, the index, or the tag fails
        """
        tag = tag or self.client.reference.reference
        total = len(binaries)
        manifests: List[Descriptor] = []

        for position, binary in enumerate(binaries, 1):
            if self.progress:
                self.progress(position, total, binary.platform)
            logger.info(f"[{position}/{total}] Pushing {binary.platform}")
            manifests.append(self.push_platform(binary))

        index = self.build_index(manifests)
        try:
            self._copy(index)
        except OrasClientError as e:
            raise PublishError(f"failed to create manifest index: {e}") from e

        try:
            self.client.tag(index, tag)
        except OrasClientError as e:
            raise PublishError(f"failed to tag manifest: {e}") from e

        logger.info(f"Pushed {total} binaries, index {index.digest} tagged {tag}")
        return PublishResult(index=index, manifests=manifests, tag=tag)
