"""
bolter - multi-architecture native binaries as OCI artifacts.

Push per-platform binaries under a single tag, then pull or run the one
matching the current (or a requested) platform, with a local cache keyed by
registry, repository, tag and platform.
"""

__version__ = "0.3.0"

from .config import BolterConfig, load_config
from .errors import BolterError
from .oci import Descriptor, Platform
from .operations import (
    BinaryInfo,
    PullOptions,
    RunOptions,
    list_cached,
    list_platforms,
    pull,
    push,
    run,
)

__all__ = [
    "BinaryInfo",
    "BolterConfig",
    "BolterError",
    "Descriptor",
    "Platform",
    "PullOptions",
    "RunOptions",
    "list_cached",
    "list_platforms",
    "load_config",
    "pull",
    "push",
    "run",
]
