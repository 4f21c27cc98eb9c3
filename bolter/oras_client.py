"""
OCI distribution client for bolter.

This module provides the registry primitives bolter builds on (resolve,
fetch, push, tag and copy_graph) on top of the oras registry provider, plus an
in-memory store used to stage an artifact graph before it is copied to a
registry.
"""

import logging
import os
import tempfile
import threading
from dataclasses import dataclass
from typing import Dict, Optional, Set

import oras.provider
import requests

from .docker_config import Credential
from .errors import BolterError
from .oci import (
    MANIFEST_MEDIA_TYPES,
    Descriptor,
    compute_digest,
    successors,
)

logger = logging.getLogger(__name__)

DOCKER_HUB = "docker.io"
DOCKER_HUB_ENDPOINT = "registry-1.docker.io"
DEFAULT_TAG = "latest"

MANIFEST_ACCEPT = ", ".join(MANIFEST_MEDIA_TYPES)


class OrasClientError(BolterError):
    """Base exception for registry client operations."""
    pass


class RegistryAuthError(OrasClientError):
    """Registry authentication failed."""
    pass


class ArtifactNotFoundError(OrasClientError):
    """Requested artifact not found in registry."""
    pass


class ContentVerificationError(OrasClientError):
    """Artifact content verification failed."""
    pass


class AlreadyExistsError(OrasClientError):
    """Content with this digest is already present."""
    pass


class OperationCancelledError(OrasClientError):
    """The caller cancelled the operation."""
    pass


@dataclass
class Reference:
    """Parsed ``registry/repository[:tag][@digest]`` reference."""
    registry: str
    repository: str
    reference: str

    @classmethod
    def parse(cls, ref: str, default_registry: Optional[str] = None) -> "Reference":
        """
        Parse an artifact reference.

        A first path component without a dot or colon (and other than
        ``localhost``) is a repository path, not a registry host; such
        references go to ``default_registry`` or Docker Hub.

        Args:
            ref: Reference such as ``ghcr.io/org/app:v1``
            default_registry: Registry for references without a host

        Returns:
            Parsed reference; the tag defaults to ``latest``

        Raises:
            OrasClientError: If the reference is malformed
        """
        if not ref or ref.strip() != ref:
            raise OrasClientError(f"invalid reference: {ref!r}")

        for prefix in ("https://", "http://"):
            if ref.startswith(prefix):
                ref = ref[len(prefix):]

        first, sep, _ = ref.partition("/")
        if sep and ("." in first or ":" in first or first == "localhost"):
            registry, remainder = ref.split("/", 1)
        else:
            registry, remainder = (default_registry or DOCKER_HUB), ref
        registry = registry.split("://", 1)[-1].rstrip("/")

        if "@" in remainder:
            repository, reference = remainder.split("@", 1)
            # a tag alongside a digest is informational only
            if ":" in repository.rsplit("/", 1)[-1]:
                repository = repository.rsplit(":", 1)[0]
        else:
            last = remainder.rsplit("/", 1)[-1]
            if ":" in last:
                repository, reference = remainder.rsplit(":", 1)
            else:
                repository, reference = remainder, DEFAULT_TAG

        if not repository or not reference or not registry:
            raise OrasClientError(f"invalid reference: {ref!r}")

        return cls(registry=registry, repository=repository, reference=reference)

    def __str__(self) -> str:
        sep = "@" if self.reference.startswith("sha256:") else ":"
        return f"{self.registry}/{self.repository}{sep}{self.reference}"


class MemoryStore:
    """In-memory content store keyed by digest."""

    def __init__(self):
        self._content: Dict[str, bytes] = {}
        self._descriptors: Dict[str, Descriptor] = {}

    def exists(self, descriptor: Descriptor) -> bool:
        return descriptor.digest in self._content

    def push(self, descriptor: Descriptor, data: bytes) -> None:
        """
        Store ``data`` under its descriptor.

        Raises:
            AlreadyExistsError: If the digest is already stored
            ContentVerificationError: If data does not match the descriptor
        """
        if descriptor.digest in self._content:
            raise AlreadyExistsError(f"{descriptor.digest}: already exists")
        if not descriptor.verify(data):
            raise ContentVerificationError(
                f"content does not match descriptor {descriptor.digest}"
            )
        self._content[descriptor.digest] = bytes(data)
        self._descriptors[descriptor.digest] = descriptor

    def fetch(self, descriptor: Descriptor) -> bytes:
        try:
            return self._content[descriptor.digest]
        except KeyError:
            raise ArtifactNotFoundError(f"{descriptor.digest}: not found") from None


class RegistryClient:
    """
    Client for one repository on an OCI registry.

    Transport and authentication go through an ``oras.provider.Registry``:
    its auth backend answers registry challenges (bearer token exchange for
    ``token``, a basic header for ``basic``) and its blob upload runs the
    POST-then-PUT flow. Manifests are sent and read as raw bytes so the
    registry stores exactly the content whose digest was computed.

    All calls are synchronous. When ``cancel_event`` is given, every call
    checks it first and raises OperationCancelledError once it is set.
    """

    def __init__(self, reference: Reference, credential: Optional[Credential] = None,
                 insecure: bool = False, remote: Optional[oras.provider.Registry] = None,
                 cancel_event: Optional[threading.Event] = None,
                 auth_backend: str = "token"):
        """
        Initialize the registry client.

        Args:
            reference: Parsed reference; selects registry and repository
            credential: Credential for basic auth and token exchange
            insecure: Use plain HTTP instead of HTTPS
            remote: Preconfigured oras registry provider
            cancel_event: Cancellation signal checked before each call
            auth_backend: oras auth backend, ``token`` or ``basic``
        """
        self.reference = reference
        self.credential = credential
        self.insecure = insecure
        self.cancel_event = cancel_event

        host = DOCKER_HUB_ENDPOINT if reference.registry == DOCKER_HUB else reference.registry
        scheme = "http" if insecure else "https"
        self.container = f"{host}/{reference.repository}"
        self.base_url = f"{scheme}://{host}/v2/{reference.repository}"

        self.remote = remote or oras.provider.Registry(
            hostname=host, insecure=insecure, auth_backend=auth_backend,
        )
        if credential is not None:
            self.remote.set_basic_auth(credential.username, credential.password)

    # -- transport -----------------------------------------------------

    def _check_cancelled(self) -> None:
        if self.cancel_event is not None and self.cancel_event.is_set():
            raise OperationCancelledError("operation cancelled")

    def _check(self, response: requests.Response, what: str, allow: tuple = ()) -> requests.Response:
        """
        Map a registry response onto the client error family.

        Raises:
            RegistryAuthError: On 401/403
            ArtifactNotFoundError: On 404
            OrasClientError: On any other failure
        """
        status = response.status_code
        if status < 300 or status in allow:
            return response

        detail = (response.text or "").strip()[:200]
        if status in (401, 403):
            raise RegistryAuthError(f"Registry authentication failed: {status} {detail}".rstrip())
        if status == 404:
            raise ArtifactNotFoundError(f"Artifact not found: {what}")
        raise OrasClientError(f"{what} failed: HTTP {status} {detail}".rstrip())

    def _request(self, method: str, url: str, headers: Optional[Dict[str, str]] = None,
                 data: Optional[bytes] = None, allow: tuple = ()) -> requests.Response:
        """Send an authenticated request through the oras provider."""
        self._check_cancelled()
        try:
            response = self.remote.do_request(url, method=method, data=data, headers=headers or {})
        except (requests.RequestException, ValueError) as e:
            raise OrasClientError(f"{method} {url} failed: {e}") from e
        return self._check(response, f"{method} {url}", allow)

    def _manifest_url(self, ref: str) -> str:
        return f"{self.base_url}/manifests/{ref}"

    # -- registry primitives -------------------------------------------

    def resolve(self, ref: Optional[str] = None) -> Descriptor:
        """
        Resolve a tag or digest to the descriptor of the manifest it names.

        Args:
            ref: Tag or digest; defaults to the client's reference

        Returns:
            Descriptor of the top-level manifest or index
        """
        ref = ref or self.reference.reference
        url = self._manifest_url(ref)
        logger.debug(f"Resolving {self.reference.registry}/{self.reference.repository}:{ref}")

        response = self._request("HEAD", url, headers={"Accept": MANIFEST_ACCEPT})
        media_type = response.headers.get("Content-Type", "").split(";")[0].strip()
        digest = response.headers.get("Docker-Content-Digest")
        size = response.headers.get("Content-Length")

        if digest and size is not None and media_type:
            return Descriptor(media_type=media_type, digest=digest, size=int(size))

        # registries may omit headers on HEAD; fall back to the body
        response = self._request("GET", url, headers={"Accept": MANIFEST_ACCEPT})
        body = response.content
        media_type = response.headers.get("Content-Type", "").split(";")[0].strip()
        if not media_type:
            try:
                media_type = response.json().get("mediaType", "")
            except (ValueError, AttributeError) as e:
                raise OrasClientError(f"invalid manifest body for {ref}: {e}") from e
        return Descriptor(media_type=media_type, digest=compute_digest(body), size=len(body))

    def fetch(self, descriptor: Descriptor) -> bytes:
        """
        Fetch and verify the content a descriptor names.

        Raises:
            ContentVerificationError: If digest or size do not match
        """
        if descriptor.media_type in MANIFEST_MEDIA_TYPES:
            response = self._request("GET", self._manifest_url(descriptor.digest),
                                     headers={"Accept": descriptor.media_type})
        else:
            self._check_cancelled()
            try:
                response = self.remote.get_blob(self.container, descriptor.digest)
            except (requests.RequestException, ValueError) as e:
                raise OrasClientError(f"fetching blob {descriptor.digest} failed: {e}") from e
            self._check(response, f"blob {descriptor.digest}")

        data = response.content
        if not descriptor.verify(data):
            raise ContentVerificationError(
                f"Digest mismatch: expected {descriptor.digest} ({descriptor.size} bytes), "
                f"got {compute_digest(data)} ({len(data)} bytes)"
            )
        return data

    def exists(self, descriptor: Descriptor) -> bool:
        if descriptor.media_type in MANIFEST_MEDIA_TYPES:
            response = self._request("HEAD", self._manifest_url(descriptor.digest),
                                     headers={"Accept": descriptor.media_type}, allow=(404,))
        else:
            self._check_cancelled()
            try:
                response = self.remote.get_blob(self.container, descriptor.digest, head=True)
            except (requests.RequestException, ValueError) as e:
                raise OrasClientError(f"checking blob {descriptor.digest} failed: {e}") from e
            self._check(response, f"blob {descriptor.digest}", allow=(404,))
        return response.status_code != 404

    def push(self, descriptor: Descriptor, data: bytes, ref: Optional[str] = None) -> None:
        """
        Upload a blob or manifest.

        Manifests are stored under ``ref`` (a tag) when given, otherwise by
        digest. Blobs are written to a temporary file for the oras upload.
        """
        if descriptor.media_type in MANIFEST_MEDIA_TYPES:
            self._request(
                "PUT", self._manifest_url(ref or descriptor.digest),
                headers={"Content-Type": descriptor.media_type}, data=data,
            )
            return

        self._check_cancelled()
        layer = {
            "mediaType": descriptor.media_type,
            "digest": descriptor.digest,
            "size": descriptor.size,
        }
        with tempfile.TemporaryDirectory() as tmpdir:
            blob_path = os.path.join(tmpdir, "blob")
            with open(blob_path, "wb") as f:
                f.write(data)
            try:
                response = self.remote.upload_blob(blob_path, self.container, layer)
            except (requests.RequestException, ValueError) as e:
                raise OrasClientError(f"uploading blob {descriptor.digest} failed: {e}") from e
        self._check(response, f"upload of blob {descriptor.digest}")

    def tag(self, descriptor: Descriptor, tag: str) -> None:
        """Point ``tag`` at an existing manifest or index."""
        if descriptor.media_type not in MANIFEST_MEDIA_TYPES:
            raise OrasClientError(f"cannot tag non-manifest content {descriptor.digest}")
        data = self.fetch(descriptor)
        logger.debug(f"Tagging {descriptor.digest} as {tag}")
        self.push(descriptor, data, ref=tag)

    def copy_graph(self, source: MemoryStore, root: Descriptor) -> None:
        """
        Push every node reachable from ``root`` that the registry lacks.

        Children are pushed before their parents so a manifest never
        references missing content. A node already present is skipped with
        its whole subgraph.
        """
        self._copy_node(source, root, set())

    def _copy_node(self, source: MemoryStore, node: Descriptor, seen: Set[str]) -> None:
        if node.digest in seen:
            return
        seen.add(node.digest)

        if self.exists(node):
            logger.debug(f"Skipping {node.digest}: already exists")
            return

        data = source.fetch(node)
        for child in successors(node, data):
            self._copy_node(source, child, seen)

        logger.debug(f"Pushing {node.media_type} {node.digest} ({node.size} bytes)")
        self.push(node, data)


def is_already_exists(error: Exception) -> bool:
    """True for errors meaning the content is already stored."""
    return isinstance(error, AlreadyExistsError) or "already exists" in str(error).lower()


__all__ = [
    "AlreadyExistsError",
    "ArtifactNotFoundError",
    "ContentVerificationError",
    "MemoryStore",
    "OperationCancelledError",
    "OrasClientError",
    "Reference",
    "RegistryAuthError",
    "RegistryClient",
    "is_already_exists",
]
