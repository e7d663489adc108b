"""The publish pipeline: rebuild a containerdisk when its upstream release changed."""

from __future__ import annotations

import gzip
import lzma
import posixpath
import shutil
import tempfile
import zlib
from pathlib import Path
from typing import BinaryIO, Optional

import requests

from containerdisks.artifacts import Artifact
from containerdisks.build import build_container_disk
from containerdisks.constants import CHUNK_SIZE, COMPRESSION_GZIP, COMPRESSION_XZ, LABEL_SHASUM
from containerdisks.download import ChecksumReader, HTTPGetter
from containerdisks.exceptions import (
    ChecksumMismatchError,
    InspectionError,
    PipelineError,
    RegistryError,
    RegistryErrorKind,
)
from containerdisks.models import Options
from containerdisks.repository import Repository
from containerdisks.utils import ArtifactLogger
from containerdisks.workers import prepare_tags

_ABSENT_MESSAGES = {
    RegistryErrorKind.REPOSITORY_UNKNOWN: "Repository does not yet exist, it will be created",
    RegistryErrorKind.MANIFEST_UNKNOWN: "Tag does not yet exist, it will be created",
    RegistryErrorKind.TAG_EXPIRED: "Tag is gone but seems to have existed already, it will be created",
}


def _decompressor(reader: ChecksumReader, compression: str) -> BinaryIO:
    if compression == COMPRESSION_GZIP:
        return gzip.GzipFile(fileobj=reader, mode="rb")  # type: ignore[arg-type]
    if compression == COMPRESSION_XZ:
        return lzma.LZMAFile(reader)  # type: ignore[arg-type]
    if compression:
        raise PipelineError(f"unsupported compression '{compression}'")
    return reader  # type: ignore[return-value]


def download_disk(reader: ChecksumReader, compression: str, target: Path) -> str:
    """Write the (decompressed) body of ``reader`` to ``target``; return the body's sha256.

    The checksum covers the bytes as served, so it is taken only after the body has been
    drained past whatever trailer the decompressor did not need.
    """
    try:
        source = _decompressor(reader, compression)
        try:
            with open(target, "wb") as sink:
                shutil.copyfileobj(source, sink, CHUNK_SIZE)
        finally:
            if source is not reader:
                source.close()
        reader.drain()
    except (OSError, EOFError, lzma.LZMAError, zlib.error, requests.RequestException) as exc:
        raise PipelineError(f"error writing the image to the destination file: {exc}") from exc
    return reader.checksum()


def current_checksum(
    repository: Repository, image_name: str, insecure: bool, logger: ArtifactLogger
) -> Optional[str]:
    """Checksum label of the published canonical tag, or None when there is nothing published.

    A published image without the label yields "".
    """
    try:
        info = repository.image_metadata(image_name, insecure)
    except RegistryError as exc:
        if not exc.is_absent():
            raise RegistryError(f"error introspecting image '{image_name}': {exc}", kind=exc.kind) from exc
        logger.info(_ABSENT_MESSAGES[exc.kind])
        return None
    checksum = info.labels.get(LABEL_SHASUM, "")
    logger.info(f"Latest containerdisk checksum: '{checksum}'")
    return checksum


def publish(
    artifact: Artifact,
    options: Options,
    repository: Optional[Repository] = None,
    getter: Optional[HTTPGetter] = None,
) -> None:
    """Build and push ``artifact`` unless the registry already carries its checksum."""
    repository = repository or Repository()
    getter = getter or HTTPGetter()
    metadata = artifact.metadata()
    logger = ArtifactLogger(metadata.describe())
    image_name = posixpath.join(options.registry, metadata.describe())

    try:
        details = artifact.inspect()
    except PipelineError as exc:
        raise InspectionError(f"error introspecting artifact '{metadata.describe()}': {exc}") from exc
    if not details.sha256sum:
        raise InspectionError(f"artifact '{metadata.describe()}' has no upstream checksum")
    logger.info(f"Remote artifact checksum: '{details.sha256sum}'")

    published = current_checksum(repository, image_name, options.allow_insecure_registry, logger)
    if published is not None and details.sha256sum == published and not options.publish.force_build:
        logger.info("Nothing to do.")
        return

    logger.info(f"Rebuild needed, downloading '{details.download_url}' ...")
    with tempfile.TemporaryDirectory(prefix="containerdisks-") as workdir:
        disk_path = Path(workdir) / "disk.img"
        with getter.get_with_checksum(details.download_url) as reader:
            checksum = download_disk(reader, details.compression, disk_path)
        if checksum != details.sha256sum:
            raise ChecksumMismatchError(details.sha256sum, checksum)

        logger.info("Building containerdisk ...")
        image = build_container_disk(disk_path, checksum, Path(workdir) / "layout")
        # The disk is inside the layer now
        disk_path.unlink()

        for name in prepare_tags(options.registry, metadata, details):
            if options.dry_run:
                logger.info(f"Dry run enabled, not pushing {name}")
                continue
            logger.info(f"Pushing {name}")
            repository.push_image(image, name, options.allow_insecure_registry)
    if not options.dry_run:
        logger.success(f"Published {metadata.describe()}")
