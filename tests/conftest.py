"""Shared test fixtures and fakes for the registry, cluster and guest console."""

from __future__ import annotations

import copy
import hashlib
import time
from pathlib import Path
from typing import Dict, Iterable, List, Optional

import pytest

from containerdisks.artifacts.generic import GenericArtifact
from containerdisks.build import OCIImage
from containerdisks.exceptions import RegistryError, RegistryErrorKind, VerificationError
from containerdisks.models import ArtifactDetails, ImageInfo, Metadata, Options

REGISTRY = "registry.example.com/containerdisks"


class StaticArtifact(GenericArtifact):
    """Generic artifact whose guest tests can be injected."""

    def __init__(self, details: ArtifactDetails, metadata: Metadata, tests=None) -> None:
        super().__init__(details, metadata)
        self._tests = list(tests or [])

    def tests(self):
        return list(self._tests)


class FakeRepository:
    """In-memory registry keyed by image reference."""

    def __init__(self) -> None:
        self.images: Dict[str, ImageInfo] = {}
        self.errors: Dict[str, RegistryError] = {}
        self.pushed: List[tuple] = []
        self.pulled: List[str] = []
        self.stored: Dict[str, OCIImage] = {}

    def add(self, ref: str, checksum: str, verified: Optional[str] = "false") -> None:
        annotations = {} if verified is None else {"verified": verified}
        self.images[ref] = ImageInfo(tag=ref.rsplit(":", 1)[-1], labels={"shasum": checksum}, annotations=annotations)

    def image_metadata(self, ref: str, insecure: bool = False) -> ImageInfo:
        if ref in self.errors:
            raise self.errors[ref]
        if ref not in self.images:
            raise RegistryError(f"manifest unknown: {ref}", kind=RegistryErrorKind.MANIFEST_UNKNOWN)
        return self.images[ref]

    def pull_image(self, ref: str, insecure: bool, layout_dir: Path) -> OCIImage:
        self.pulled.append(ref)
        return self.stored[ref]

    def push_image(self, image: OCIImage, ref: str, insecure: bool = False) -> None:
        self.pushed.append((ref, image))

    def mutate_annotations(self, image: OCIImage, annotations: Dict[str, str], layout_dir: Path) -> OCIImage:
        manifest = copy.deepcopy(image.manifest)
        manifest.setdefault("annotations", {}).update(annotations)
        return OCIImage(layout_dir=layout_dir, manifest=manifest, config=image.config, digest="sha256:mutated")

    @property
    def pushed_refs(self) -> List[str]:
        return [ref for ref, _ in self.pushed]


class FakeCluster:
    """KubeVirt stand-in returning scripted VMI phases."""

    def __init__(self, phases: Iterable[str] = ("Running",), delete_error: Optional[Exception] = None) -> None:
        self.phases = list(phases)
        self.created: List[Dict] = []
        self.deleted: List[str] = []
        self.gets = 0
        self.delete_error = delete_error

    def create(self, vmi: Dict) -> Dict:
        self.created.append(vmi)
        return vmi

    def get(self, name: str) -> Dict:
        self.gets += 1
        phase = self.phases.pop(0) if len(self.phases) > 1 else self.phases[0]
        return {"metadata": {"name": name}, "status": {"phase": phase}}

    def delete(self, name: str) -> None:
        self.deleted.append(name)
        if self.delete_error is not None:
            raise self.delete_error

    def guest_os_info(self, name: str) -> Dict:
        return {"name": "Fedora Linux", "prettyName": "Fedora Linux 36 (Cloud Edition)"}

    def console(self, name: str):
        raise VerificationError("no console in tests")


class ScriptedSession:
    """Console session answering each sent line with scripted output.

    ``replies`` maps a sent text to the outputs returned for its 1st, 2nd, ... send;
    an empty output (or running out of outputs) produces nothing.
    """

    def __init__(self, replies: Dict[str, List[bytes]], greeting: bytes = b"") -> None:
        self.replies = {key: list(value) for key, value in replies.items()}
        self.pending: List[bytes] = [greeting] if greeting else []
        self.sent: List[str] = []
        self.closed = False

    def send(self, text: str) -> None:
        self.sent.append(text)
        outputs = self.replies.get(text)
        if outputs:
            output = outputs.pop(0)
            if output:
                self.pending.append(output)

    def read(self, timeout: float) -> bytes:
        if self.pending:
            return self.pending.pop(0)
        time.sleep(min(timeout, 0.01))
        return b""

    def close(self) -> None:
        self.closed = True


@pytest.fixture
def registry() -> str:
    return REGISTRY


@pytest.fixture
def options() -> Options:
    return Options(registry=REGISTRY)


@pytest.fixture
def fake_repository() -> FakeRepository:
    return FakeRepository()


@pytest.fixture
def make_artifact():
    def _make(
        name: str = "fedora",
        version: str = "36",
        checksum: str = "abc123",
        tags: Optional[List[str]] = None,
        url: str = "https://example.com/disk.img",
        compression: str = "",
        tests=None,
    ) -> StaticArtifact:
        details = ArtifactDetails(
            sha256sum=checksum,
            download_url=url,
            compression=compression,
            additional_unique_tags=list(tags or []),
        )
        return StaticArtifact(details, Metadata(name=name, version=version), tests=tests)

    return _make


def sha256(data: bytes) -> str:
    return hashlib.sha256(data).hexdigest()
