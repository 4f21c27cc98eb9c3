"""
Exception hierarchy shared by all bolter components.
"""

from typing import Optional


class BolterError(Exception):
    """Base exception for bolter operations."""
    pass


class ConfigurationError(BolterError):
    """Invalid input detected before any registry call."""
    pass


class ResolutionError(BolterError):
    """A reference could not be resolved to a binary."""
    pass


class PlatformNotFoundError(ResolutionError):
    """The index carries no manifest for the requested platform."""
    pass


class UnsupportedMediaTypeError(ResolutionError):
    """The reference points at something that is neither an index nor a manifest."""
    pass


class EmptyManifestError(ResolutionError):
    """The selected manifest has no layers."""
    pass


class PublishError(BolterError):
    """Pushing the artifact graph failed."""
    pass


class CacheError(BolterError):
    """A binary could not be written to the local cache."""
    pass


class ExecutionError(BolterError):
    """The binary could not be launched."""
    pass


class BinaryNotFoundError(ExecutionError):
    """The binary to execute does not exist or is not executable."""
    pass


class ExitCodeError(ExecutionError):
    """The binary ran and exited with a nonzero status."""

    def __init__(self, exit_code: int, message: Optional[str] = None):
        self.exit_code = exit_code
        super().__init__(message or f"binary exited with code {exit_code}")
