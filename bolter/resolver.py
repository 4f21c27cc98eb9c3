"""
Platform selection for pull and run.

A tag may name an image index (one manifest per platform) or a single
manifest. Indexes are scanned for the requested platform; a bare manifest is
used as is, whatever platform was asked for.
"""

import logging
from dataclasses import dataclass, field
from typing import List, Optional

from .errors import (
    EmptyManifestError,
    PlatformNotFoundError,
    ResolutionError,
    UnsupportedMediaTypeError,
)
from .oci import (
    MEDIA_TYPE_IMAGE_INDEX,
    MEDIA_TYPE_IMAGE_MANIFEST,
    Descriptor,
    Index,
    Manifest,
    Platform,
)
from .oras_client import RegistryClient

logger = logging.getLogger(__name__)


@dataclass
class PlatformListing:
    """One platform entry of an index."""
    platform: Platform
    digest: str
    size: int


@dataclass
class ArtifactListing:
    """What a reference resolves to, as shown by ``bolter list``."""
    descriptor: Descriptor
    platforms: List[PlatformListing] = field(default_factory=list)
    layers: List[Descriptor] = field(default_factory=list)
    platform: Optional[Platform] = None

    @property
    def is_index(self) -> bool:
        return self.descriptor.media_type == MEDIA_TYPE_IMAGE_INDEX


def _parse(parser, data: bytes, what: str):
    try:
        return parser(data)
    except (ValueError, KeyError, TypeError, AttributeError) as e:
        raise ResolutionError(f"invalid {what}: {e}") from e


def resolve_manifest(client: RegistryClient, reference: str, platform: Platform) -> Descriptor:
    """
    Resolve a reference to the manifest for ``platform``.

    Args:
        client: Registry client for the repository
        reference: Tag or digest
        platform: Requested platform

    Returns:
        Manifest descriptor

    Raises:
        PlatformNotFoundError: If an index lacks the platform
        UnsupportedMediaTypeError: If the reference is neither index nor manifest
    """
    descriptor = client.resolve(reference)
    logger.debug(f"Resolved {reference} to {descriptor.media_type} {descriptor.digest}")

    if descriptor.media_type == MEDIA_TYPE_IMAGE_MANIFEST:
        return descriptor

    if descriptor.media_type != MEDIA_TYPE_IMAGE_INDEX:
        raise UnsupportedMediaTypeError(
            f"unsupported media type for {reference}: {descriptor.media_type}"
        )

    index = _parse(Index.from_bytes, client.fetch(descriptor), "image index")
    manifest = index.find(platform)
    if manifest is None:
        raise PlatformNotFoundError(f"no manifest found for {platform} in {reference}")
    return manifest


def fetch_binary(client: RegistryClient, manifest_descriptor: Descriptor) -> bytes:
    """
    Fetch the binary layer of a manifest.

    Only the first layer is used; any others are ignored.

    Raises:
        EmptyManifestError: If the manifest has no layers
    """
    manifest = _parse(Manifest.from_bytes, client.fetch(manifest_descriptor), "image manifest")
    if not manifest.layers:
        raise EmptyManifestError(f"manifest {manifest_descriptor.digest} has no layers")

    layer = manifest.layers[0]
    if len(manifest.layers) > 1:
        logger.debug(f"Ignoring {len(manifest.layers) - 1} extra layers in {manifest_descriptor.digest}")
    return client.fetch(layer)


def inspect(client: RegistryClient, reference: str) -> ArtifactListing:
    """List the platforms (index) or layers (manifest) a reference names."""
    descriptor = client.resolve(reference)
    listing = ArtifactListing(descriptor=descriptor)

    if descriptor.media_type == MEDIA_TYPE_IMAGE_INDEX:
        index = _parse(Index.from_bytes, client.fetch(descriptor), "image index")
        for manifest in index.manifests:
            if manifest.platform is None:
                continue
            listing.platforms.append(PlatformListing(manifest.platform, manifest.digest, manifest.size))
    elif descriptor.media_type == MEDIA_TYPE_IMAGE_MANIFEST:
        manifest = _parse(Manifest.from_bytes, client.fetch(descriptor), "image manifest")
        listing.layers = list(manifest.layers)
        listing.platform = descriptor.platform
    else:
        raise UnsupportedMediaTypeError(f"unknown media type: {descriptor.media_type}")

    return listing


__all__ = [
    "ArtifactListing",
    "PlatformListing",
    "fetch_binary",
    "inspect",
    "resolve_manifest",
]
