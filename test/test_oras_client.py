"""
Tests for the OCI distribution client.

The oras registry provider is mocked; graph copying runs against the
in-memory fake registry.
"""

import threading
from unittest.mock import Mock, patch

import pytest
import requests

from bolter.docker_config import Credential
from bolter.media_types import MEDIA_TYPE_ELF
from bolter.oci import (
    EMPTY_CONFIG_BYTES,
    MEDIA_TYPE_IMAGE_CONFIG,
    MEDIA_TYPE_IMAGE_INDEX,
    MEDIA_TYPE_IMAGE_MANIFEST,
    Descriptor,
    Manifest,
)
from bolter.oras_client import (
    AlreadyExistsError,
    ArtifactNotFoundError,
    ContentVerificationError,
    MemoryStore,
    OperationCancelledError,
    OrasClientError,
    Reference,
    RegistryAuthError,
    RegistryClient,
    is_already_exists,
)

from fakes import FakeRegistry


def _response(status=200, headers=None, content=b"", json_body=None):
    response = Mock()
    response.status_code = status
    response.headers = headers or {}
    response.content = content
    response.text = content.decode("utf-8", "replace")
    response.json.return_value = json_body or {}
    return response


def _client(remote, credential=None, insecure=False, registry="registry.example.com", **kwargs):
    reference = Reference(registry, "team/app", "v1")
    return RegistryClient(reference, credential=credential, insecure=insecure,
                          remote=remote, **kwargs)


class TestReference:
    """Test reference parsing."""

    @pytest.mark.parametrize("ref, expected", [
        ("ghcr.io/org/app:v1", ("ghcr.io", "org/app", "v1")),
        ("ghcr.io/org/app", ("ghcr.io", "org/app", "latest")),
        ("localhost:5000/app:dev", ("localhost:5000", "app", "dev")),
        ("localhost/app", ("localhost", "app", "latest")),
        ("myrepo:v1", ("docker.io", "myrepo", "v1")),
        ("org/app:v2", ("docker.io", "org/app", "v2")),
        ("https://registry.example.com/app:v1", ("registry.example.com", "app", "v1")),
        ("ghcr.io/app@sha256:" + "a" * 64, ("ghcr.io", "app", "sha256:" + "a" * 64)),
        ("ghcr.io/app:v1@sha256:" + "a" * 64, ("ghcr.io", "app", "sha256:" + "a" * 64)),
    ])
    def test_parse(self, ref, expected):
        parsed = Reference.parse(ref)
        assert (parsed.registry, parsed.repository, parsed.reference) == expected

    def test_default_registry(self):
        parsed = Reference.parse("myrepo:v1", default_registry="localhost:5000")
        assert parsed.registry == "localhost:5000"
        assert str(parsed) == "localhost:5000/myrepo:v1"

    @pytest.mark.parametrize("ref", ["", " app:v1", "ghcr.io/:v1", "app:"])
    def test_parse_invalid(self, ref):
        with pytest.raises(OrasClientError, match="invalid reference"):
            Reference.parse(ref)

    def test_str_with_digest(self):
        assert str(Reference("ghcr.io", "app", "sha256:abc")) == "ghcr.io/app@sha256:abc"


class TestMemoryStore:
    """Test the staging store."""

    def test_push_fetch(self):
        store = MemoryStore()
        descriptor = Descriptor.for_bytes(MEDIA_TYPE_ELF, b"TEST")
        store.push(descriptor, b"TEST")
        assert store.exists(descriptor)
        assert store.fetch(descriptor) == b"TEST"

    def test_push_twice(self):
        store = MemoryStore()
        descriptor = Descriptor.for_bytes(MEDIA_TYPE_ELF, b"TEST")
        store.push(descriptor, b"TEST")
        with pytest.raises(AlreadyExistsError) as excinfo:
            store.push(descriptor, b"TEST")
        assert is_already_exists(excinfo.value)

    def test_push_mismatch(self):
        with pytest.raises(ContentVerificationError):
            MemoryStore().push(Descriptor.for_bytes(MEDIA_TYPE_ELF, b"TEST"), b"TEX2")

    def test_fetch_missing(self):
        with pytest.raises(ArtifactNotFoundError):
            MemoryStore().fetch(Descriptor.for_bytes(MEDIA_TYPE_ELF, b"TEST"))

    def test_is_already_exists_by_message(self):
        assert is_already_exists(OrasClientError("blob already exists"))
        assert not is_already_exists(OrasClientError("HTTP 500"))


class TestRegistryClient:
    """Test the registry primitives against a mocked oras provider."""

    def setup_method(self):
        self.remote = Mock()

    def test_base_url(self):
        assert _client(self.remote).base_url == "https://registry.example.com/v2/team/app"
        assert _client(self.remote, insecure=True).base_url.startswith("http://")
        hub = _client(self.remote, registry="docker.io")
        assert hub.base_url == "https://registry-1.docker.io/v2/team/app"
        assert hub.container == "registry-1.docker.io/team/app"

    def test_builds_oras_provider(self):
        reference = Reference("localhost:5000", "team/app", "v1")
        with patch("bolter.oras_client.oras.provider.Registry") as provider:
            client = RegistryClient(reference, insecure=True, auth_backend="basic")

        provider.assert_called_once_with(hostname="localhost:5000", insecure=True, auth_backend="basic")
        assert client.remote is provider.return_value
        provider.return_value.set_basic_auth.assert_not_called()

    def test_credential_sets_basic_auth(self):
        _client(self.remote, credential=Credential("alice", "pw"))
        self.remote.set_basic_auth.assert_called_once_with("alice", "pw")

    def test_resolve_from_head(self):
        self.remote.do_request.return_value = _response(headers={
            "Content-Type": MEDIA_TYPE_IMAGE_INDEX,
            "Docker-Content-Digest": "sha256:abc",
            "Content-Length": "123",
        })

        descriptor = _client(self.remote).resolve()

        assert descriptor == Descriptor(MEDIA_TYPE_IMAGE_INDEX, "sha256:abc", 123)
        args, kwargs = self.remote.do_request.call_args
        assert args == ("https://registry.example.com/v2/team/app/manifests/v1",)
        assert kwargs["method"] == "HEAD"
        assert MEDIA_TYPE_IMAGE_MANIFEST in kwargs["headers"]["Accept"]

    def test_resolve_falls_back_to_get(self):
        body = b'{"schemaVersion":2}'
        self.remote.do_request.side_effect = [
            _response(headers={}),
            _response(headers={"Content-Type": MEDIA_TYPE_IMAGE_MANIFEST}, content=body),
        ]

        descriptor = _client(self.remote).resolve("v2")

        assert descriptor == Descriptor.for_bytes(MEDIA_TYPE_IMAGE_MANIFEST, body)
        assert self.remote.do_request.call_args[1]["method"] == "GET"

    def test_resolve_media_type_from_body(self):
        body = b'{"mediaType":"application/vnd.oci.image.index.v1+json"}'
        self.remote.do_request.side_effect = [
            _response(headers={}),
            _response(content=body, json_body={"mediaType": MEDIA_TYPE_IMAGE_INDEX}),
        ]
        assert _client(self.remote).resolve().media_type == MEDIA_TYPE_IMAGE_INDEX

    def test_resolve_rejects_non_json_body(self):
        html = _response(content=b"<html>gateway timeout</html>")
        html.json.side_effect = ValueError("Expecting value")
        self.remote.do_request.side_effect = [_response(headers={}), html]

        with pytest.raises(OrasClientError, match="invalid manifest body"):
            _client(self.remote).resolve()

    def test_resolve_rejects_json_list_body(self):
        self.remote.do_request.side_effect = [
            _response(headers={}),
            _response(content=b"[]", json_body=[1]),
        ]
        with pytest.raises(OrasClientError, match="invalid manifest body"):
            _client(self.remote).resolve()

    def test_unauthorized(self):
        self.remote.do_request.return_value = _response(401, content=b"denied")
        with pytest.raises(RegistryAuthError, match="401 denied"):
            _client(self.remote).resolve()

    def test_not_found(self):
        self.remote.get_blob.return_value = _response(404)
        with pytest.raises(ArtifactNotFoundError):
            _client(self.remote).fetch(Descriptor.for_bytes(MEDIA_TYPE_ELF, b"TEST"))

    def test_server_error(self):
        self.remote.get_blob.return_value = _response(500, content=b"boom")
        with pytest.raises(OrasClientError, match="HTTP 500"):
            _client(self.remote).fetch(Descriptor.for_bytes(MEDIA_TYPE_ELF, b"TEST"))

    def test_connection_error(self):
        self.remote.do_request.side_effect = requests.ConnectionError("refused")
        with pytest.raises(OrasClientError, match="refused"):
            _client(self.remote).resolve()

    def test_token_response_not_json(self):
        # the provider decodes the token endpoint reply inside do_request
        self.remote.do_request.side_effect = ValueError("Expecting value: line 1 column 1")
        with pytest.raises(OrasClientError, match="Expecting value"):
            _client(self.remote).resolve()

    def test_fetch_blob(self):
        self.remote.get_blob.return_value = _response(content=b"TEST")
        descriptor = Descriptor.for_bytes(MEDIA_TYPE_ELF, b"TEST")

        assert _client(self.remote).fetch(descriptor) == b"TEST"
        self.remote.get_blob.assert_called_once_with("registry.example.com/team/app", descriptor.digest)

    def test_fetch_manifest_by_digest(self):
        body = b'{"schemaVersion":2}'
        descriptor = Descriptor.for_bytes(MEDIA_TYPE_IMAGE_MANIFEST, body)
        self.remote.do_request.return_value = _response(content=body)

        assert _client(self.remote).fetch(descriptor) == body
        args, kwargs = self.remote.do_request.call_args
        assert args == (f"https://registry.example.com/v2/team/app/manifests/{descriptor.digest}",)
        assert kwargs["headers"] == {"Accept": MEDIA_TYPE_IMAGE_MANIFEST}

    def test_fetch_verifies_content(self):
        self.remote.get_blob.return_value = _response(content=b"TEX2")
        with pytest.raises(ContentVerificationError, match="Digest mismatch"):
            _client(self.remote).fetch(Descriptor.for_bytes(MEDIA_TYPE_ELF, b"TEST"))

    def test_exists(self):
        descriptor = Descriptor.for_bytes(MEDIA_TYPE_ELF, b"TEST")
        self.remote.get_blob.side_effect = [_response(200), _response(404)]
        client = _client(self.remote)

        assert client.exists(descriptor)
        assert not client.exists(descriptor)
        assert self.remote.get_blob.call_args[1] == {"head": True}

    def test_push_blob(self):
        descriptor = Descriptor.for_bytes(MEDIA_TYPE_ELF, b"TEST")
        uploaded = {}

        def upload(blob_path, container, layer):
            with open(blob_path, "rb") as f:
                uploaded["data"] = f.read()
            uploaded["container"] = container
            uploaded["layer"] = layer
            return _response(201)

        self.remote.upload_blob.side_effect = upload

        _client(self.remote).push(descriptor, b"TEST")

        assert uploaded == {
            "data": b"TEST",
            "container": "registry.example.com/team/app",
            "layer": {"mediaType": MEDIA_TYPE_ELF, "digest": descriptor.digest, "size": 4},
        }

    def test_push_blob_failure(self):
        self.remote.upload_blob.return_value = _response(500, content=b"disk full")
        with pytest.raises(OrasClientError, match="disk full"):
            _client(self.remote).push(Descriptor.for_bytes(MEDIA_TYPE_ELF, b"TEST"), b"TEST")

    def test_push_manifest_by_tag(self):
        body = b'{"schemaVersion":2}'
        descriptor = Descriptor.for_bytes(MEDIA_TYPE_IMAGE_INDEX, body)
        self.remote.do_request.return_value = _response(201)

        _client(self.remote).push(descriptor, body, ref="v1")

        args, kwargs = self.remote.do_request.call_args
        assert args == ("https://registry.example.com/v2/team/app/manifests/v1",)
        assert kwargs["method"] == "PUT"
        assert kwargs["data"] == body
        assert kwargs["headers"]["Content-Type"] == MEDIA_TYPE_IMAGE_INDEX
        self.remote.upload_blob.assert_not_called()

    def test_tag_rejects_blobs(self):
        with pytest.raises(OrasClientError, match="cannot tag"):
            _client(self.remote).tag(Descriptor.for_bytes(MEDIA_TYPE_ELF, b"TEST"), "v1")

    def test_cancelled(self):
        event = threading.Event()
        event.set()
        client = _client(self.remote, cancel_event=event)

        with pytest.raises(OperationCancelledError):
            client.resolve()
        with pytest.raises(OperationCancelledError):
            client.push(Descriptor.for_bytes(MEDIA_TYPE_ELF, b"TEST"), b"TEST")
        self.remote.do_request.assert_not_called()
        self.remote.upload_blob.assert_not_called()


class TestCopyGraph:
    """Test depth-first graph copy."""

    def setup_method(self):
        self.source = MemoryStore()
        self.config = Descriptor.for_bytes(MEDIA_TYPE_IMAGE_CONFIG, EMPTY_CONFIG_BYTES)
        self.layer = Descriptor.for_bytes(MEDIA_TYPE_ELF, b"TEST")
        manifest_bytes = Manifest(config=self.config, layers=[self.layer]).to_bytes()
        self.manifest = Descriptor.for_bytes(MEDIA_TYPE_IMAGE_MANIFEST, manifest_bytes)
        self.source.push(self.config, EMPTY_CONFIG_BYTES)
        self.source.push(self.layer, b"TEST")
        self.source.push(self.manifest, manifest_bytes)

        self.registry = FakeRegistry()
        self.client = self.registry.client(Reference("registry.example.com", "app", "v1"))

    def test_children_before_parents(self):
        self.client.copy_graph(self.source, self.manifest)
        assert self.registry.calls_of("push") == [
            self.config.digest, self.layer.digest, self.manifest.digest,
        ]

    def test_skips_existing(self):
        self.registry.put_blob("app", EMPTY_CONFIG_BYTES)
        self.client.copy_graph(self.source, self.manifest)
        assert self.registry.calls_of("push") == [self.layer.digest, self.manifest.digest]

        self.registry.calls.clear()
        self.client.copy_graph(self.source, self.manifest)
        assert self.registry.calls_of("push") == []

    def test_tag(self):
        self.client.copy_graph(self.source, self.manifest)
        self.client.tag(self.manifest, "stable")
        assert self.client.resolve("stable").digest == self.manifest.digest
