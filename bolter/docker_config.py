"""
Registry credential resolution.

Explicit credentials always win. Otherwise the Docker CLI's login state
(``~/.docker/config.json``, or ``$DOCKER_CONFIG/config.json``) is searched
under every spelling a registry is commonly stored as.
"""

import base64
import binascii
import json
import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Optional, Union

logger = logging.getLogger(__name__)

DOCKER_HUB_LEGACY_KEY = "https://index.docker.io/v1/"


@dataclass
class Credential:
    """Username/password pair for one registry. Never persisted."""
    username: str
    password: str

    def __repr__(self) -> str:
        return f"Credential(username={self.username!r}, password='***')"


def default_config_path() -> Path:
    """Location of the Docker CLI config file."""
    config_dir = os.environ.get("DOCKER_CONFIG")
    if config_dir:
        return Path(config_dir) / "config.json"
    return Path.home() / ".docker" / "config.json"


def normalize_registry(registry: str) -> str:
    """Strip the URL scheme and map Docker Hub to its legacy auth key."""
    for prefix in ("https://", "http://"):
        if registry.startswith(prefix):
            registry = registry[len(prefix):]

    if registry in ("docker.io", "index.docker.io"):
        return DOCKER_HUB_LEGACY_KEY

    return registry


def candidate_keys(registry: str) -> List[str]:
    """
    Ordered auth-file keys to try for ``registry``.

    Args:
        registry: Registry host as it appears in the reference

    Returns:
        Keys in lookup order, highest precedence first
    """
    keys = [
        registry,
        normalize_registry(registry),
        "https://" + registry,
        registry[len("docker.io/"):] if registry.startswith("docker.io/") else registry,
    ]

    if "docker.io" in registry:
        keys.extend([DOCKER_HUB_LEGACY_KEY, "index.docker.io", "docker.io"])

    ordered = []
    for key in keys:
        if key not in ordered:
            ordered.append(key)
    return ordered


def _load_auths(config_path: Optional[Union[str, Path]]) -> Dict[str, Dict]:
    path = Path(config_path) if config_path else default_config_path()
    try:
        with open(path) as f:
            config = json.load(f)
    except (OSError, ValueError) as e:
        logger.debug(f"No usable Docker config at {path}: {e}")
        return {}

    auths = config.get("auths") if isinstance(config, dict) else None
    return auths if isinstance(auths, dict) else {}


def _decode_auth(value: str) -> Optional[Credential]:
    try:
        decoded = base64.b64decode(value, validate=True).decode("utf-8")
    except (binascii.Error, ValueError):
        return None

    username, sep, password = decoded.partition(":")
    if not sep:
        return None
    return Credential(username, password)


def get_docker_credentials(registry: str,
                           config_path: Optional[Union[str, Path]] = None) -> Optional[Credential]:
    """
    Look up stored login credentials for a registry.

    Args:
        registry: Registry host
        config_path: Docker config file; defaults to the Docker CLI location

    Returns:
        The first credential found under any candidate key, or None
    """
    auths = _load_auths(config_path)
    if not auths:
        return None

    for key in candidate_keys(registry):
        entry = auths.get(key)
        auth = entry.get("auth") if isinstance(entry, dict) else None
        if not auth or not isinstance(auth, str):
            continue
        credential = _decode_auth(auth)
        if credential is not None:
            logger.debug(f"Found Docker credentials for {registry} under '{key}'")
            return credential

    return None


def configured_registries(config_path: Optional[Union[str, Path]] = None) -> List[str]:
    """Registry keys present in the Docker config, empty when unavailable."""
    return list(_load_auths(config_path).keys())


def resolve_credentials(registry: str,
                        username: Optional[str] = None,
                        password: Optional[str] = None,
                        config_path: Optional[Union[str, Path]] = None) -> Optional[Credential]:
    """
    Resolve credentials for a registry.

    Both explicit values must be non-empty to be used; anything less falls
    through to the Docker config. Failures never raise: callers simply
    proceed unauthenticated.

    Args:
        registry: Registry host
        username: Explicit username
        password: Explicit password
        config_path: Docker config file override

    Returns:
        Credential to use, or None for anonymous access
    """
    if username and password:
        return Credential(username, password)

    credential = get_docker_credentials(registry, config_path)
    if credential is not None:
        logger.info(f"Using credentials from {config_path or default_config_path()}")
    return credential
