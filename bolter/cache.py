"""
Local binary cache.

Each (registry, repository, tag) gets a slot directory holding the binary
for every platform pulled into it plus one ``metadata.json`` describing the
most recent download:

    <root>/<registry>/<repository>/<tag>/<os>-<arch>
    <root>/<registry>/<repository>/<tag>/metadata.json

Registry and repository are flattened (``:`` and ``/`` become ``_``) so they
occupy exactly one directory level. Nothing is ever evicted.
"""

import json
import logging
import os
import shutil
import tempfile
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, List, Optional, Union

from .errors import CacheError
from .oci import Platform

logger = logging.getLogger(__name__)

METADATA_FILENAME = "metadata.json"
BINARY_MODE = 0o755


def default_cache_dir() -> Path:
    return Path.home() / ".cache" / "bolter"


def normalize_registry(registry: str) -> str:
    return registry.replace(":", "_")


def normalize_repository(repository: str) -> str:
    return repository.replace("/", "_")


@dataclass(frozen=True)
class CacheKey:
    """Identity of one cached binary."""
    registry: str
    repository: str
    tag: str
    platform: Platform


@dataclass
class CacheEntry:
    """A cached binary as reported by ``CacheStore.list()``."""
    registry: str
    repository: str
    tag: str
    platform: Platform
    digest: str
    size: int
    cached_at: Optional[datetime]
    path: Path

    @property
    def reference(self) -> str:
        return f"{self.registry}/{self.repository}:{self.tag}"


def _parse_timestamp(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    try:
        # fromisoformat rejects a trailing Z before Python 3.11
        return datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None


class CacheStore:
    """File-system cache rooted at ``root``."""

    def __init__(self, root: Optional[Union[str, Path]] = None):
        self.root = Path(root) if root else default_cache_dir()

    def slot_dir(self, key: CacheKey) -> Path:
        return (self.root / normalize_registry(key.registry)
                / normalize_repository(key.repository) / key.tag)

    def binary_path(self, key: CacheKey) -> Path:
        return self.slot_dir(key) / key.platform.slug

    def metadata_path(self, key: CacheKey) -> Path:
        return self.slot_dir(key) / METADATA_FILENAME

    def probe(self, key: CacheKey) -> bool:
        """True when the binary is cached. Metadata is not required."""
        return self.binary_path(key).is_file()

    def store(self, key: CacheKey, data: bytes, digest: str) -> Path:
        """
        Write a binary into its slot and record metadata.

        The binary is written to a temporary file in the slot and renamed
        into place, so a concurrent reader sees either the old or the new
        file, never a partial one.

        Args:
            key: Cache identity
            data: Binary content
            digest: Manifest digest the binary was resolved from

        Returns:
            Path to the cached binary

        Raises:
            CacheError: If the binary cannot be written
        """
        destination = self.binary_path(key)
        try:
            destination.parent.mkdir(parents=True, exist_ok=True)
            fd, temp_name = tempfile.mkstemp(prefix=f".{key.platform.slug}.", dir=destination.parent)
            try:
                with os.fdopen(fd, "wb") as f:
                    f.write(data)
                os.chmod(temp_name, BINARY_MODE)
                os.replace(temp_name, destination)
            except BaseException:
                if os.path.exists(temp_name):
                    os.unlink(temp_name)
                raise
        except OSError as e:
            raise CacheError(f"failed to cache binary at {destination}: {e}") from e

        self._write_metadata(key, digest, len(data))
        logger.debug(f"Cached {len(data)} bytes at {destination}")
        return destination

    def store_file(self, key: CacheKey, source: Union[str, Path], digest: str) -> Path:
        """Cache a binary that has already been written elsewhere."""
        source = Path(source)
        try:
            with open(source, "rb") as f:
                data = f.read()
        except OSError as e:
            raise CacheError(f"failed to read {source}: {e}") from e
        return self.store(key, data, digest)

    def _write_metadata(self, key: CacheKey, digest: str, size: int) -> None:
        metadata = {
            "registry": normalize_registry(key.registry),
            "repository": normalize_repository(key.repository),
            "tag": key.tag,
            "os": key.platform.os,
            "architecture": key.platform.architecture,
            "digest": digest,
            "size": size,
            "cached_at": datetime.now(timezone.utc).isoformat(),
        }
        path = self.metadata_path(key)
        try:
            with open(path, "w") as f:
                json.dump(metadata, f, indent=2)
        except OSError as e:
            logger.warning(f"Failed to save cache metadata: {e}")

    def read_metadata(self, key: CacheKey) -> Optional[Dict]:
        try:
            with open(self.metadata_path(key)) as f:
                return json.load(f)
        except (OSError, ValueError):
            return None

    def copy_to(self, key: CacheKey, output: Union[str, Path]) -> Path:
        """Copy a cached binary to ``output`` and make it executable."""
        output = Path(output)
        try:
            output.parent.mkdir(parents=True, exist_ok=True)
            shutil.copyfile(self.binary_path(key), output)
            os.chmod(output, BINARY_MODE)
        except OSError as e:
            raise CacheError(f"failed to copy cached binary to {output}: {e}") from e
        return output

    def list(self) -> List[CacheEntry]:
        """
        Every cached binary that still has both metadata and a file.

        Unreadable metadata and metadata whose binary is gone are skipped.
        """
        entries: List[CacheEntry] = []
        if not self.root.is_dir():
            return entries

        for metadata_file in sorted(self.root.rglob(METADATA_FILENAME)):
            try:
                with open(metadata_file) as f:
                    meta = json.load(f)
                platform = Platform(meta["os"], meta["architecture"])
            except (OSError, ValueError, KeyError, TypeError) as e:
                logger.debug(f"Skipping unreadable metadata {metadata_file}: {e}")
                continue

            binary = metadata_file.parent / platform.slug
            try:
                size = os.stat(binary).st_size
            except OSError:
                logger.debug(f"Binary not found for metadata {metadata_file}")
                continue

            entries.append(CacheEntry(
                registry=meta.get("registry", ""),
                repository=meta.get("repository", ""),
                tag=meta.get("tag", ""),
                platform=platform,
                digest=meta.get("digest", ""),
                size=size,
                cached_at=_parse_timestamp(meta.get("cached_at")),
                path=binary,
            ))

        return entries
