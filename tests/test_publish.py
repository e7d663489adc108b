"""Tests for containerdisks.publish module."""

from __future__ import annotations

import gzip
import lzma
import zlib
from unittest.mock import MagicMock, patch

import pytest
import requests

from conftest import REGISTRY, sha256
from containerdisks import publish as publish_mod
from containerdisks.build import build_container_disk
from containerdisks.download import ChecksumReader
from containerdisks.exceptions import (
    ChecksumMismatchError,
    InspectionError,
    PipelineError,
    RegistryError,
    RegistryErrorKind,
)
from containerdisks.models import ImageInfo
from containerdisks.publish import current_checksum, download_disk, publish
from containerdisks.utils import ArtifactLogger

DISK = b"\x00raw disk bytes\xff" * 64


def _getter(payload):
    getter = MagicMock()
    getter.get_with_checksum.side_effect = lambda url: ChecksumReader(
        iter([payload[i : i + 100] for i in range(0, len(payload), 100)])
    )
    return getter


class _CapturingBuild:
    def __init__(self):
        self.disk_paths = []
        self.disks = []

    def __call__(self, disk_path, checksum, layout_dir):
        self.disk_paths.append(disk_path)
        self.disks.append(disk_path.read_bytes())
        return build_container_disk(disk_path, checksum, layout_dir)


class TestIdempotency:
    def test_nothing_to_do(self, options, fake_repository, make_artifact, capsys):
        fake_repository.add(f"{REGISTRY}/fedora:36", "abc123")
        getter = MagicMock()
        publish(make_artifact(checksum="abc123", tags=["f1"]), options, fake_repository, getter)
        getter.get_with_checksum.assert_not_called()
        assert fake_repository.pushed == []
        assert "Nothing to do." in capsys.readouterr().out

    def test_force_rebuilds(self, options, fake_repository, make_artifact):
        checksum = sha256(DISK)
        fake_repository.add(f"{REGISTRY}/fedora:36", checksum)
        options.publish.force_build = True
        publish(make_artifact(checksum=checksum), options, fake_repository, _getter(DISK))
        assert fake_repository.pushed_refs == [f"{REGISTRY}/fedora:36"]

    def test_stale_checksum_rebuilds(self, options, fake_repository, make_artifact):
        checksum = sha256(DISK)
        fake_repository.add(f"{REGISTRY}/fedora:36", "old")
        publish(make_artifact(checksum=checksum), options, fake_repository, _getter(DISK))
        assert fake_repository.pushed_refs == [f"{REGISTRY}/fedora:36"]

    def test_unlabelled_image_rebuilds(self, options, fake_repository, make_artifact):
        fake_repository.images[f"{REGISTRY}/fedora:36"] = ImageInfo(tag="36")
        publish(make_artifact(checksum=sha256(DISK)), options, fake_repository, _getter(DISK))
        assert fake_repository.pushed_refs == [f"{REGISTRY}/fedora:36"]

    def test_empty_upstream_checksum_refused(self, options, fake_repository, make_artifact):
        getter = MagicMock()
        with pytest.raises(InspectionError, match="no upstream checksum"):
            publish(make_artifact(checksum=""), options, fake_repository, getter)
        getter.get_with_checksum.assert_not_called()
        assert fake_repository.pushed == []


class TestCurrentChecksum:
    def test_absent_image_is_none(self, fake_repository):
        logger = ArtifactLogger("fedora:36")
        assert current_checksum(fake_repository, f"{REGISTRY}/fedora:36", False, logger) is None

    def test_missing_label_is_empty(self, fake_repository):
        fake_repository.images[f"{REGISTRY}/fedora:36"] = ImageInfo(tag="36")
        logger = ArtifactLogger("fedora:36")
        assert current_checksum(fake_repository, f"{REGISTRY}/fedora:36", False, logger) == ""

    def test_published_label(self, fake_repository):
        fake_repository.add(f"{REGISTRY}/fedora:36", "abc123")
        logger = ArtifactLogger("fedora:36")
        assert current_checksum(fake_repository, f"{REGISTRY}/fedora:36", False, logger) == "abc123"


class TestPublish:
    def test_pushes_every_tag_in_order(self, options, fake_repository, make_artifact):
        checksum = sha256(DISK)
        publish(make_artifact(checksum=checksum, tags=["f1"]), options, fake_repository, _getter(DISK))
        assert fake_repository.pushed_refs == [f"{REGISTRY}/fedora:f1", f"{REGISTRY}/fedora:36"]
        images = {id(image) for _, image in fake_repository.pushed}
        assert len(images) == 1
        image = fake_repository.pushed[0][1]
        assert image.labels == {"shasum": checksum}
        assert image.annotations == {"verified": "false"}

    @pytest.mark.parametrize(
        "kind",
        [RegistryErrorKind.REPOSITORY_UNKNOWN, RegistryErrorKind.MANIFEST_UNKNOWN, RegistryErrorKind.TAG_EXPIRED],
    )
    def test_absent_image_is_built(self, options, fake_repository, make_artifact, kind):
        fake_repository.errors[f"{REGISTRY}/fedora:36"] = RegistryError("absent", kind=kind)
        publish(make_artifact(checksum=sha256(DISK)), options, fake_repository, _getter(DISK))
        assert fake_repository.pushed_refs == [f"{REGISTRY}/fedora:36"]

    def test_registry_fault_is_fatal(self, options, fake_repository, make_artifact):
        fake_repository.errors[f"{REGISTRY}/fedora:36"] = RegistryError("unauthorized")
        getter = MagicMock()
        with pytest.raises(RegistryError, match="unauthorized"):
            publish(make_artifact(), options, fake_repository, getter)
        getter.get_with_checksum.assert_not_called()

    def test_inspection_failure(self, options, fake_repository, make_artifact):
        artifact = make_artifact()
        with patch.object(artifact, "inspect", side_effect=PipelineError("mirror down")):
            with pytest.raises(InspectionError, match="mirror down"):
                publish(artifact, options, fake_repository, MagicMock())

    def test_checksum_mismatch_prevents_push(self, options, fake_repository, make_artifact):
        build = _CapturingBuild()
        with patch("containerdisks.publish.build_container_disk", side_effect=build):
            with pytest.raises(ChecksumMismatchError) as exc:
                publish(make_artifact(checksum="abc123"), options, fake_repository, _getter(DISK))
        assert exc.value.expected == "abc123"
        assert exc.value.actual == sha256(DISK)
        assert build.disk_paths == []
        assert fake_repository.pushed == []

    def test_dry_run_pushes_nothing(self, options, fake_repository, make_artifact, capsys):
        options.dry_run = True
        publish(make_artifact(checksum=sha256(DISK), tags=["f1"]), options, fake_repository, _getter(DISK))
        assert fake_repository.pushed == []
        out = capsys.readouterr().out
        assert f"Dry run enabled, not pushing {REGISTRY}/fedora:f1" in out
        assert f"Dry run enabled, not pushing {REGISTRY}/fedora:36" in out

    def test_temporary_files_removed(self, options, fake_repository, make_artifact):
        build = _CapturingBuild()
        with patch("containerdisks.publish.build_container_disk", side_effect=build):
            publish(make_artifact(checksum=sha256(DISK)), options, fake_repository, _getter(DISK))
        assert not build.disk_paths[0].parent.exists()

    def test_push_failure_propagates(self, options, fake_repository, make_artifact):
        fake_repository.push_image = MagicMock(side_effect=RegistryError("denied"))
        with pytest.raises(RegistryError, match="denied"):
            publish(make_artifact(checksum=sha256(DISK), tags=["f1"]), options, fake_repository, _getter(DISK))
        assert fake_repository.push_image.call_count == 1


class TestCompression:
    def test_gzip(self, options, fake_repository, make_artifact):
        payload = gzip.compress(DISK)
        build = _CapturingBuild()
        with patch("containerdisks.publish.build_container_disk", side_effect=build):
            publish(
                make_artifact(checksum=sha256(payload), compression="gzip"), options, fake_repository, _getter(payload)
            )
        assert build.disks == [DISK]
        assert fake_repository.pushed[0][1].labels["shasum"] == sha256(payload)

    def test_xz(self, options, fake_repository, make_artifact):
        payload = lzma.compress(DISK)
        build = _CapturingBuild()
        with patch("containerdisks.publish.build_container_disk", side_effect=build):
            publish(make_artifact(checksum=sha256(payload), compression="xz"), options, fake_repository, _getter(payload))
        assert build.disks == [DISK]

    def test_corrupt_gzip(self, tmp_path):
        reader = ChecksumReader(iter([b"definitely not gzip"]))
        with pytest.raises(PipelineError, match="error writing the image"):
            download_disk(reader, "gzip", tmp_path / "disk.img")

    def test_corrupt_gzip_body(self, tmp_path):
        payload = bytearray(gzip.compress(b"".join(f"sector {i}\n".encode() for i in range(4000))))
        for i in range(20, 60):
            payload[i] ^= 0xFF
        reader = ChecksumReader(iter([bytes(payload)]))
        with pytest.raises(PipelineError, match="error writing the image"):
            download_disk(reader, "gzip", tmp_path / "disk.img")

    def test_inflate_error_is_wrapped(self, tmp_path):
        reader = ChecksumReader(iter([gzip.compress(DISK)]))
        with patch(
            "containerdisks.publish.shutil.copyfileobj",
            side_effect=zlib.error("Error -3 while decompressing data: invalid bit length repeat"),
        ):
            with pytest.raises(PipelineError, match="invalid bit length repeat"):
                download_disk(reader, "gzip", tmp_path / "disk.img")

    def test_dropped_connection(self, tmp_path):
        def chunks():
            yield DISK[:100]
            raise requests.exceptions.ChunkedEncodingError("connection broken")

        with pytest.raises(PipelineError, match="error writing the image"):
            download_disk(ChecksumReader(chunks()), "", tmp_path / "disk.img")

    def test_unknown_compression(self, tmp_path):
        with pytest.raises(PipelineError, match="unsupported compression"):
            download_disk(ChecksumReader(iter([])), "zstd", tmp_path / "disk.img")

    def test_checksum_covers_trailing_bytes(self, tmp_path):
        payload = gzip.compress(DISK)
        reader = ChecksumReader(iter([payload]))
        assert download_disk(reader, "", tmp_path / "disk.img") == sha256(payload)
        assert (tmp_path / "disk.img").read_bytes() == payload


def test_absent_messages_cover_every_absent_kind():
    absent = {kind for kind in RegistryErrorKind if RegistryError("x", kind).is_absent()}
    assert set(publish_mod._ABSENT_MESSAGES) == absent
