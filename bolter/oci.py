"""
OCI image-spec value types used by bolter.

Descriptors, manifests and indexes are plain dataclasses that serialize to
the compact JSON the registry stores. Every digest is computed over the exact
bytes produced by ``to_bytes()`` so the graph stays self-verifying.
"""

import hashlib
import json
import platform as _platform
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

from .errors import ConfigurationError

MEDIA_TYPE_IMAGE_INDEX = "application/vnd.oci.image.index.v1+json"
MEDIA_TYPE_IMAGE_MANIFEST = "application/vnd.oci.image.manifest.v1+json"
MEDIA_TYPE_IMAGE_CONFIG = "application/vnd.oci.image.config.v1+json"

MANIFEST_MEDIA_TYPES = (MEDIA_TYPE_IMAGE_INDEX, MEDIA_TYPE_IMAGE_MANIFEST)

ANNOTATION_TITLE = "org.opencontainers.image.title"

EMPTY_CONFIG_BYTES = b"{}"


def compute_digest(data: bytes) -> str:
    """Return the ``sha256:<hex>`` digest of ``data``."""
    return f"sha256:{hashlib.sha256(data).hexdigest()}"


def _encode(obj: Dict[str, Any]) -> bytes:
    return json.dumps(obj, separators=(",", ":")).encode("utf-8")


def _require_object(value: Any, what: str) -> Dict[str, Any]:
    if not isinstance(value, dict):
        raise ValueError(f"{what} must be a JSON object, got {type(value).__name__}")
    return value


class PlatformDetector:
    """Maps the running interpreter's host onto OCI os/architecture names."""

    _ARCH_ALIASES = {
        "x86_64": "amd64",
        "amd64": "amd64",
        "x64": "amd64",
        "aarch64": "arm64",
        "arm64": "arm64",
        "i386": "386",
        "i686": "386",
        "x86": "386",
        "armv6l": "arm",
        "armv7l": "arm",
        "ppc64le": "ppc64le",
        "s390x": "s390x",
        "riscv64": "riscv64",
    }

    @classmethod
    def detect(cls) -> Tuple[str, str]:
        """
        Detects the current platform and architecture.

        Returns:
            Tuple of (os, arch) using the names registries use in image
            indexes, e.g. ("linux", "amd64") or ("darwin", "arm64").
            Unknown values are passed through lowercased.
        """
        system = _platform.system().lower()
        if system.startswith(("cygwin", "msys", "mingw")):
            system = "windows"
        elif system == "sunos":
            system = "solaris"

        machine = _platform.machine().lower()
        arch = cls._ARCH_ALIASES.get(machine, machine)
        return system, arch


@dataclass(frozen=True)
class Platform:
    """An (os, architecture) build target. Both fields are free-form."""
    os: str
    architecture: str

    def __str__(self) -> str:
        return f"{self.os}/{self.architecture}"

    @property
    def slug(self) -> str:
        """File-name form, ``os-arch``."""
        return f"{self.os}-{self.architecture}"

    @classmethod
    def host(cls) -> "Platform":
        os_name, arch = PlatformDetector.detect()
        return cls(os_name, arch)

    @classmethod
    def parse(cls, value: Optional[str]) -> "Platform":
        """
        Parse an ``os/arch`` string.

        Args:
            value: Platform string; empty or None selects the host platform.

        Returns:
            Parsed platform

        Raises:
            ConfigurationError: If the string is not of the form os/arch
        """
        if not value:
            return cls.host()
        parts = value.split("/")
        if len(parts) != 2 or not parts[0] or not parts[1]:
            raise ConfigurationError(f"invalid platform format: {value} (expected os/arch)")
        return cls(parts[0], parts[1])

    def to_dict(self) -> Dict[str, str]:
        return {"os": self.os, "architecture": self.architecture}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Platform":
        _require_object(data, "platform")
        return cls(data.get("os", ""), data.get("architecture", ""))


@dataclass
class Descriptor:
    """Self-verifying reference to a byte sequence."""
    media_type: str
    digest: str
    size: int
    annotations: Optional[Dict[str, str]] = None
    platform: Optional[Platform] = None

    @classmethod
    def for_bytes(cls, media_type: str, data: bytes,
                  annotations: Optional[Dict[str, str]] = None,
                  platform: Optional[Platform] = None) -> "Descriptor":
        """Describe ``data``; digest and size are derived from the bytes."""
        return cls(
            media_type=media_type,
            digest=compute_digest(data),
            size=len(data),
            annotations=annotations,
            platform=platform,
        )

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "mediaType": self.media_type,
            "digest": self.digest,
            "size": self.size,
        }
        if self.annotations:
            data["annotations"] = dict(self.annotations)
        if self.platform is not None:
            data["platform"] = self.platform.to_dict()
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Descriptor":
        _require_object(data, "descriptor")
        platform = data.get("platform")
        return cls(
            media_type=data.get("mediaType", ""),
            digest=data["digest"],
            size=int(data.get("size", 0)),
            annotations=data.get("annotations") or None,
            platform=Platform.from_dict(platform) if platform else None,
        )

    def verify(self, data: bytes) -> bool:
        """Check that ``data`` is exactly the content this descriptor names."""
        return len(data) == self.size and compute_digest(data) == self.digest


@dataclass
class Manifest:
    """Image manifest: one config plus ordered layers."""
    config: Descriptor
    layers: List[Descriptor] = field(default_factory=list)
    media_type: str = MEDIA_TYPE_IMAGE_MANIFEST

    def to_dict(self) -> Dict[str, Any]:
        return {
            "schemaVersion": 2,
            "mediaType": self.media_type,
            "config": self.config.to_dict(),
            "layers": [layer.to_dict() for layer in self.layers],
        }

    def to_bytes(self) -> bytes:
        return _encode(self.to_dict())

    @classmethod
    def from_bytes(cls, data: bytes) -> "Manifest":
        raw = _require_object(json.loads(data), "manifest")
        return cls(
            config=Descriptor.from_dict(raw["config"]),
            layers=[Descriptor.from_dict(layer) for layer in raw.get("layers") or []],
            media_type=raw.get("mediaType", MEDIA_TYPE_IMAGE_MANIFEST),
        )


@dataclass
class Index:
    """Image index: one manifest descriptor per platform."""
    manifests: List[Descriptor] = field(default_factory=list)
    media_type: str = MEDIA_TYPE_IMAGE_INDEX

    def to_dict(self) -> Dict[str, Any]:
        return {
            "schemaVersion": 2,
            "mediaType": self.media_type,
            "manifests": [m.to_dict() for m in self.manifests],
        }

    def to_bytes(self) -> bytes:
        return _encode(self.to_dict())

    @classmethod
    def from_bytes(cls, data: bytes) -> "Index":
        raw = _require_object(json.loads(data), "index")
        return cls(
            manifests=[Descriptor.from_dict(m) for m in raw.get("manifests") or []],
            media_type=raw.get("mediaType", MEDIA_TYPE_IMAGE_INDEX),
        )

    def find(self, target: Platform) -> Optional[Descriptor]:
        """First manifest whose platform matches ``target`` exactly."""
        for descriptor in self.manifests:
            if descriptor.platform is not None and descriptor.platform == target:
                return descriptor
        return None


def successors(descriptor: Descriptor, data: bytes) -> List[Descriptor]:
    """Direct children of a manifest or index node; blobs have none."""
    if descriptor.media_type == MEDIA_TYPE_IMAGE_MANIFEST:
        manifest = Manifest.from_bytes(data)
        return [manifest.config] + manifest.layers
    if descriptor.media_type == MEDIA_TYPE_IMAGE_INDEX:
        return list(Index.from_bytes(data).manifests)
    return []
