"""Build single-layer OCI containerdisks from raw disk files.

Images are kept as OCI image layouts on disk (``oci-layout``, ``index.json`` and a
``blobs/sha256`` store) so that multi-gigabyte layers never have to be held in memory
and ``skopeo`` can push them with the ``oci:`` transport.
"""

from __future__ import annotations

import copy
import gzip
import hashlib
import json
import os
import shutil
import tarfile
import tempfile
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Optional, Tuple

from containerdisks.constants import (
    ANNOTATION_VERIFIED,
    CHUNK_SIZE,
    DISK_DIR,
    DISK_FILE_NAME,
    LABEL_SHASUM,
    MEDIA_TYPE_OCI_CONFIG,
    MEDIA_TYPE_OCI_LAYER,
    MEDIA_TYPE_OCI_MANIFEST,
    OCI_LAYOUT_VERSION,
    QEMU_GID,
    QEMU_UID,
)
from containerdisks.exceptions import BuildError
from containerdisks.utils import ensure_directory, log


class _DigestWriter:
    """Write-through wrapper counting and hashing everything written."""

    def __init__(self, target) -> None:
        self._target = target
        self._hash = hashlib.sha256()
        self.size = 0

    def write(self, data: bytes) -> int:
        self._hash.update(data)
        self.size += len(data)
        self._target.write(data)
        return len(data)

    def flush(self) -> None:
        self._target.flush()

    @property
    def digest(self) -> str:
        return f"sha256:{self._hash.hexdigest()}"


def _blob_path(layout_dir: Path, digest: str) -> Path:
    algorithm, _, hexdigest = digest.partition(":")
    return layout_dir / "blobs" / algorithm / hexdigest


def _write_json_blob(layout_dir: Path, payload: Dict) -> Tuple[str, int]:
    data = json.dumps(payload, separators=(",", ":"), sort_keys=True).encode("utf-8")
    digest = f"sha256:{hashlib.sha256(data).hexdigest()}"
    path = _blob_path(layout_dir, digest)
    ensure_directory(path.parent)
    path.write_bytes(data)
    return digest, len(data)


def _write_index(layout_dir: Path, manifest_digest: str, manifest_size: int) -> None:
    (layout_dir / "oci-layout").write_text(json.dumps({"imageLayoutVersion": OCI_LAYOUT_VERSION}))
    index = {
        "schemaVersion": 2,
        "manifests": [
            {
                "mediaType": MEDIA_TYPE_OCI_MANIFEST,
                "digest": manifest_digest,
                "size": manifest_size,
            }
        ],
    }
    (layout_dir / "index.json").write_text(json.dumps(index))


@dataclass(frozen=True)
class OCIImage:
    """A containerdisk image backed by an OCI image layout directory."""

    layout_dir: Path
    manifest: Dict
    config: Dict
    digest: str

    @property
    def annotations(self) -> Dict[str, str]:
        return dict(self.manifest.get("annotations") or {})

    @property
    def labels(self) -> Dict[str, str]:
        return dict((self.config.get("config") or {}).get("Labels") or {})

    @property
    def layer_digests(self) -> List[str]:
        return [layer["digest"] for layer in self.manifest.get("layers", [])]

    def with_annotations(self, annotations: Dict[str, str], layout_dir: Path) -> "OCIImage":
        """Return a copy whose manifest carries ``annotations`` merged in.

        The copy lives in ``layout_dir``; blobs are hard-linked where possible so the
        layer bytes, and therefore their digests, are shared rather than rewritten.
        """
        if layout_dir.resolve() == self.layout_dir.resolve():
            raise BuildError("annotated image needs its own layout directory")
        blobs = self.layout_dir / "blobs"
        for source in blobs.rglob("*"):
            if not source.is_file():
                continue
            target = layout_dir / source.relative_to(self.layout_dir)
            ensure_directory(target.parent)
            if target.exists():
                continue
            try:
                os.link(source, target)
            except OSError:
                shutil.copy2(source, target)

        manifest = copy.deepcopy(self.manifest)
        merged = dict(manifest.get("annotations") or {})
        merged.update(annotations)
        manifest["annotations"] = merged
        digest, size = _write_json_blob(layout_dir, manifest)
        _write_index(layout_dir, digest, size)
        return OCIImage(layout_dir=layout_dir, manifest=manifest, config=copy.deepcopy(self.config), digest=digest)


def read_layout(layout_dir: Path) -> OCIImage:
    """Load the single image stored in an OCI image layout."""
    try:
        index = json.loads((layout_dir / "index.json").read_text())
        manifests = index.get("manifests") or []
        if not manifests:
            raise BuildError(f"OCI layout {layout_dir} contains no manifests")
        manifest_digest = manifests[0]["digest"]
        manifest = json.loads(_blob_path(layout_dir, manifest_digest).read_text())
        config = json.loads(_blob_path(layout_dir, manifest["config"]["digest"]).read_text())
    except (OSError, KeyError, ValueError) as exc:
        raise BuildError(f"Cannot read OCI layout {layout_dir}: {exc}") from exc
    if manifest.get("mediaType", MEDIA_TYPE_OCI_MANIFEST) != MEDIA_TYPE_OCI_MANIFEST:
        raise BuildError(f"unsupported image type {manifest.get('mediaType')}, can only work with OCIv1 images")
    return OCIImage(layout_dir=layout_dir, manifest=manifest, config=config, digest=manifest_digest)


def _tar_info(name: str, is_dir: bool, size: int = 0) -> tarfile.TarInfo:
    info = tarfile.TarInfo(name=name)
    info.uid = QEMU_UID
    info.gid = QEMU_GID
    info.mtime = int(time.time())
    if is_dir:
        info.type = tarfile.DIRTYPE
        info.mode = 0o555
    else:
        info.type = tarfile.REGTYPE
        info.mode = 0o444
        info.size = size
    return info


def stream_layer(disk_path: Path, blobs_dir: Path) -> Tuple[str, str, int]:
    """Stream ``disk_path`` into a gzip-compressed tar blob.

    Returns ``(layer digest, diff id, compressed size)``. Memory use is bounded by the
    copy buffer, not by the disk size.
    """
    ensure_directory(blobs_dir)
    fd, tmp_name = tempfile.mkstemp(prefix="layer-", dir=blobs_dir)
    tmp_path = Path(tmp_name)
    try:
        with os.fdopen(fd, "wb") as raw:
            compressed = _DigestWriter(raw)
            with gzip.GzipFile(fileobj=compressed, mode="wb", mtime=0) as gz:
                uncompressed = _DigestWriter(gz)
                with tarfile.open(fileobj=uncompressed, mode="w|", bufsize=CHUNK_SIZE) as tar:
                    tar.addfile(_tar_info(f"{DISK_DIR}/", is_dir=True))
                    size = disk_path.stat().st_size
                    with open(disk_path, "rb") as disk:
                        tar.addfile(_tar_info(f"{DISK_DIR}/{DISK_FILE_NAME}", is_dir=False, size=size), disk)
        layer_path = blobs_dir / compressed.digest.partition(":")[2]
        tmp_path.replace(layer_path)
    except (OSError, tarfile.TarError) as exc:
        tmp_path.unlink(missing_ok=True)
        raise BuildError(f"error creating the tar file with the disk: {exc}") from exc
    return compressed.digest, uncompressed.digest, compressed.size


def build_container_disk(
    disk_path: Path,
    checksum: str,
    layout_dir: Path,
    arch: str = "amd64",
    created: Optional[str] = None,
) -> OCIImage:
    """Wrap ``disk_path`` into a containerdisk stored as an OCI layout in ``layout_dir``.

    The config carries the ``shasum`` label and the manifest a ``verified=false``
    annotation. On any failure the partially written layout is removed and BuildError
    is raised, so a half-built image can never be pushed.
    """
    log("DEBUG", f"Building containerdisk from {disk_path} into {layout_dir}")
    ensure_directory(layout_dir)
    try:
        layer_digest, diff_id, layer_size = stream_layer(disk_path, layout_dir / "blobs" / "sha256")
        config = {
            "architecture": arch,
            "os": "linux",
            "config": {"Labels": {LABEL_SHASUM: checksum}},
            "rootfs": {"type": "layers", "diff_ids": [diff_id]},
        }
        if created:
            config["created"] = created
        config_digest, config_size = _write_json_blob(layout_dir, config)
        manifest = {
            "schemaVersion": 2,
            "mediaType": MEDIA_TYPE_OCI_MANIFEST,
            "config": {
                "mediaType": MEDIA_TYPE_OCI_CONFIG,
                "digest": config_digest,
                "size": config_size,
            },
            "layers": [
                {
                    "mediaType": MEDIA_TYPE_OCI_LAYER,
                    "digest": layer_digest,
                    "size": layer_size,
                }
            ],
            "annotations": {ANNOTATION_VERIFIED: "false"},
        }
        manifest_digest, manifest_size = _write_json_blob(layout_dir, manifest)
        _write_index(layout_dir, manifest_digest, manifest_size)
    except BuildError:
        shutil.rmtree(layout_dir, ignore_errors=True)
        raise
    except OSError as exc:
        shutil.rmtree(layout_dir, ignore_errors=True)
        raise BuildError(f"error creating the containerdisk: {exc}") from exc
    return OCIImage(layout_dir=layout_dir, manifest=manifest, config=config, digest=manifest_digest)
