"""
Library entry points: push, pull, run, list.

Each operation takes an explicit BolterConfig (registry defaults,
credentials, cache location) plus per-call options, so several calls in one
process never share state.
"""

import logging
import os
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, List, Optional, Sequence, Union

from .cache import BINARY_MODE, CacheEntry, CacheKey, CacheStore
from .config import BolterConfig, load_config
from .docker_config import resolve_credentials
from .errors import BolterError, ConfigurationError
from .executor import execute
from .oci import Platform
from .oras_client import Reference, RegistryClient
from .publisher import MultiArchPublisher, PlatformBinary, PublishResult, parse_bindings
from .resolver import ArtifactListing, fetch_binary, inspect, resolve_manifest

logger = logging.getLogger(__name__)


@dataclass
class PullOptions:
    """Options for ``pull``."""
    # Output path for the binary. If empty, the binary is only cached.
    output: Optional[Union[str, Path]] = None
    # "os/arch"; defaults to the current platform
    platform: Optional[str] = None
    use_cache: bool = True
    # Skip the cache lookup but still refresh the cache
    no_cache: bool = False
    cancel_event: Optional[threading.Event] = None


@dataclass
class RunOptions:
    """Options for ``run``."""
    platform: Optional[str] = None
    no_cache: bool = False
    # Replace the current process (CLI); otherwise spawn and return
    replace_process: bool = False
    cancel_event: Optional[threading.Event] = None


@dataclass
class BinaryInfo:
    """Information about a pulled binary."""
    path: Path
    digest: str
    size: int
    os: str
    architecture: str
    cached: bool = False


def open_client(reference: Reference, config: BolterConfig,
                cancel_event: Optional[threading.Event] = None) -> RegistryClient:
    """Registry client for ``reference`` with credentials resolved."""
    credential = resolve_credentials(
        reference.registry, config.username, config.password, config.docker_config
    )
    return RegistryClient(
        reference,
        credential=credential,
        insecure=config.insecure,
        cancel_event=cancel_event,
        auth_backend=config.auth_backend,
    )


def _write_binary(path: Path, data: bytes) -> Path:
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, "wb") as f:
            f.write(data)
        os.chmod(path, BINARY_MODE)
    except OSError as e:
        raise BolterError(f"failed to write binary to {path}: {e}") from e
    return path


def push(ref: str, bindings: Sequence[Union[str, PlatformBinary]],
         config: Optional[BolterConfig] = None,
         progress: Optional[Callable[[int, int, Platform], None]] = None) -> PublishResult:
    """
    Push per-platform binaries as one multi-architecture artifact.

    Args:
        ref: Target reference; must carry a tag
        bindings: ``os/arch=path`` strings or PlatformBinary objects
        config: Configuration; loaded from the environment when omitted
        progress: Optional per-platform progress callback

    Returns:
        Published index and manifest descriptors
    """
    config = config or load_config()
    if bindings and all(isinstance(b, PlatformBinary) for b in bindings):
        binaries = list(bindings)
        if len({b.platform for b in binaries}) != len(binaries):
            raise ConfigurationError("each platform may be bound only once")
    else:
        binaries = parse_bindings([str(b) for b in bindings])

    reference = Reference.parse(ref, config.registry)
    if reference.reference.startswith("sha256:"):
        raise ConfigurationError(f"push requires a tag, not a digest: {ref}")

    logger.info(f"Pushing {len(binaries)} binaries to {reference}")
    client = open_client(reference, config)
    return MultiArchPublisher(client, progress=progress).publish(binaries, reference.reference)


def pull(ref: str, options: Optional[PullOptions] = None,
         config: Optional[BolterConfig] = None) -> BinaryInfo:
    """
    Download the binary for one platform.

    With caching enabled the cache is consulted first and refreshed after a
    download; without it an output path is mandatory.

    Args:
        ref: Artifact reference
        options: Pull options
        config: Configuration; loaded from the environment when omitted

    Returns:
        Where the binary landed and what it is
    """
    options = options or PullOptions()
    config = config or load_config()

    platform = Platform.parse(options.platform)
    reference = Reference.parse(ref, config.registry)
    cache = CacheStore(config.cache_dir)
    key = CacheKey(reference.registry, reference.repository, reference.reference, platform)
    output = Path(options.output) if options.output else None

    logger.info(f"Pulling {reference} for {platform}")

    if options.use_cache:
        cached_binary = cache.binary_path(key)
        if output is None:
            output = cached_binary

        if not options.no_cache and cache.probe(key):
            logger.info(f"Using cached binary: {cached_binary}")
            if output != cached_binary:
                cache.copy_to(key, output)
            metadata = cache.read_metadata(key) or {}
            same_platform = (metadata.get("os"), metadata.get("architecture")) == (
                platform.os, platform.architecture)
            return BinaryInfo(
                path=output,
                digest=metadata.get("digest", "") if same_platform else "",
                size=os.stat(output).st_size,
                os=platform.os,
                architecture=platform.architecture,
                cached=True,
            )
    elif output is None:
        raise ConfigurationError("output path required when caching is disabled")

    client = open_client(reference, config, options.cancel_event)
    manifest = resolve_manifest(client, reference.reference, platform)
    data = fetch_binary(client, manifest)

    if options.use_cache:
        cached_path = cache.store(key, data, manifest.digest)
        if output != cached_path:
            _write_binary(output, data)
    else:
        _write_binary(output, data)

    logger.info(f"Successfully pulled to {output}")
    return BinaryInfo(
        path=output,
        digest=manifest.digest,
        size=len(data),
        os=platform.os,
        architecture=platform.architecture,
    )


def run(ref: str, args: Sequence[str] = (), options: Optional[RunOptions] = None,
        config: Optional[BolterConfig] = None) -> int:
    """
    Execute a binary from the registry, downloading it only on a cache miss.

    Args:
        ref: Artifact reference
        args: Arguments for the binary
        options: Run options
        config: Configuration; loaded from the environment when omitted

    Returns:
        0 on success (spawn mode); does not return in replace mode
    """
    options = options or RunOptions()
    config = config or load_config()

    platform = Platform.parse(options.platform)
    reference = Reference.parse(ref, config.registry)
    cache = CacheStore(config.cache_dir)
    key = CacheKey(reference.registry, reference.repository, reference.reference, platform)

    if not options.no_cache and cache.probe(key):
        cached_binary = cache.binary_path(key)
        logger.info(f"Using cached binary: {cached_binary}")
        return execute(cached_binary, args, replace_process=options.replace_process)

    logger.info(f"Pulling binary for {platform}...")
    client = open_client(reference, config, options.cancel_event)
    manifest = resolve_manifest(client, reference.reference, platform)
    path = cache.store(key, fetch_binary(client, manifest), manifest.digest)
    logger.info(f"Pulled to cache: {path}")

    return execute(path, args, replace_process=options.replace_process)


def list_platforms(ref: str, config: Optional[BolterConfig] = None) -> ArtifactListing:
    """Platforms (or layers) available under a reference."""
    config = config or load_config()
    reference = Reference.parse(ref, config.registry)
    client = open_client(reference, config)
    return inspect(client, reference.reference)


def list_cached(config: Optional[BolterConfig] = None) -> List[CacheEntry]:
    """Binaries in the local cache."""
    config = config or load_config()
    return CacheStore(config.cache_dir).list()
