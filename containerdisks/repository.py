"""Registry access for containerdisks, driven through skopeo."""

from __future__ import annotations

import json
import re
import subprocess
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, List, Optional

from containerdisks.build import OCIImage, read_layout
from containerdisks.constants import MEDIA_TYPE_OCI_MANIFEST, SKOPEO
from containerdisks.exceptions import BuildError, RegistryError, RegistryErrorKind
from containerdisks.models import ImageInfo
from containerdisks.utils import ensure_directory, log, run

# Registry error codes as rendered by the distribution API ("CODE: message").
_ERROR_CLASSES = (
    (re.compile(r"manifest unknown|manifest_unknown", re.IGNORECASE), RegistryErrorKind.MANIFEST_UNKNOWN),
    (
        re.compile(r"name unknown|name_unknown|repository name not known", re.IGNORECASE),
        RegistryErrorKind.REPOSITORY_UNKNOWN,
    ),
    # Quay answers "unknown: Tag 5.2 was deleted or has expired. To pull, revive via time machine"
    (re.compile(r"was deleted or has expired", re.IGNORECASE), RegistryErrorKind.TAG_EXPIRED),
)

_FRACTION_RE = re.compile(r"\.(\d{6})\d+")


def classify_error(message: str) -> RegistryErrorKind:
    for pattern, kind in _ERROR_CLASSES:
        if pattern.search(message):
            return kind
    return RegistryErrorKind.REMOTE


def _parse_created(raw: Optional[str]) -> Optional[datetime]:
    if not raw:
        return None
    value = _FRACTION_RE.sub(r".\1", raw.strip()).replace("Z", "+00:00")
    try:
        created = datetime.fromisoformat(value)
    except ValueError:
        log("DEBUG", f"Unparsable image creation time '{raw}'")
        return None
    if created.tzinfo is None:
        created = created.replace(tzinfo=timezone.utc)
    return created


def _tls_flag(direction: str, insecure: bool) -> List[str]:
    return [f"--{direction}-tls-verify=false"] if insecure else []


class Repository:
    """Metadata lookup, pull, push and annotation mutation for registry images."""

    def __init__(self, skopeo: str = SKOPEO) -> None:
        self.skopeo = skopeo

    def _skopeo(self, args: List[str], ref: str) -> str:
        cmd = [self.skopeo] + args
        try:
            result = run(cmd, check=True, capture_output=True)
        except FileNotFoundError:
            raise RegistryError("skopeo is not installed (required for registry access)")
        except subprocess.CalledProcessError as exc:
            stderr = (exc.stderr or "").strip()
            raise RegistryError(f"skopeo {args[0]} failed for {ref}: {stderr}", kind=classify_error(stderr)) from exc
        return result.stdout

    def image_metadata(self, img_ref: str, insecure: bool = False) -> ImageInfo:
        """Read labels, annotations and config details of ``img_ref``.

        Raises RegistryError whose ``kind`` tells a missing repository, tag or expired tag
        apart from any other remote failure.
        """
        tls = _tls_flag("tls", insecure)
        raw_manifest = self._skopeo(["inspect", "--raw"] + tls + [f"docker://{img_ref}"], img_ref)
        try:
            manifest = json.loads(raw_manifest)
        except ValueError as exc:
            raise RegistryError(f"Error parsing manifest of image {img_ref}: {exc}") from exc
        media_type = manifest.get("mediaType", "")
        if media_type != MEDIA_TYPE_OCI_MANIFEST:
            raise RegistryError(f"unsupported image type {media_type or '<none>'}, can only work with OCIv1 images")

        raw_inspect = self._skopeo(["inspect"] + tls + [f"docker://{img_ref}"], img_ref)
        try:
            inspected = json.loads(raw_inspect)
        except ValueError as exc:
            raise RegistryError(f"Error inspecting image {img_ref}: {exc}") from exc

        return ImageInfo(
            tag=img_ref.rsplit(":", 1)[-1] if ":" in img_ref.rsplit("/", 1)[-1] else "",
            created=_parse_created(inspected.get("Created")),
            docker_version=inspected.get("DockerVersion") or "",
            labels=inspected.get("Labels") or {},
            annotations=manifest.get("annotations") or {},
            architecture=inspected.get("Architecture") or "",
            os=inspected.get("Os") or "",
            layers=inspected.get("Layers") or [],
            env=inspected.get("Env") or [],
            digest=inspected.get("Digest") or "",
        )

    def pull_image(self, img_ref: str, insecure: bool, layout_dir: Path) -> OCIImage:
        ensure_directory(layout_dir)
        args = ["copy"] + _tls_flag("src-tls", insecure) + [f"docker://{img_ref}", f"oci:{layout_dir}"]
        self._skopeo(args, img_ref)
        try:
            return read_layout(layout_dir)
        except BuildError as exc:
            raise RegistryError(f"error pulling image {img_ref}: {exc}") from exc

    def push_image(self, image: OCIImage, img_ref: str, insecure: bool = False) -> None:
        args = ["copy"] + _tls_flag("dest-tls", insecure) + [f"oci:{image.layout_dir}", f"docker://{img_ref}"]
        self._skopeo(args, img_ref)

    def mutate_annotations(self, image: OCIImage, annotations: Dict[str, str], layout_dir: Path) -> OCIImage:
        """Return a new image with ``annotations`` applied; ``image`` is left untouched."""
        try:
            return image.with_annotations(annotations, layout_dir)
        except (BuildError, OSError) as exc:
            raise RegistryError(f"error mutating annotations of the image: {exc}") from exc
