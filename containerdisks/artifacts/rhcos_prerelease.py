"""Red Hat CoreOS pre-release (release candidate) images."""

from __future__ import annotations

import posixpath
from typing import Any, Dict, List, Optional

from containerdisks import guest_tests, vmi
from containerdisks.artifacts import Artifact
from containerdisks.artifacts.docs import IGNITION
from containerdisks.artifacts.rhcos import fetch_checksums
from containerdisks.constants import COMPRESSION_GZIP, DEFAULT_TEST_GRACE_PERIOD
from containerdisks.download import HTTPGetter
from containerdisks.exceptions import InspectionError
from containerdisks.models import ArtifactDetails, Metadata

BASE_URL = "https://mirror.openshift.com/pub/openshift-v4/x86_64/dependencies/rhcos/pre-release/{version}/"
VARIANT = "rhcos-openstack.x86_64.qcow2.gz"
VARIANT_PREFIX = "rhcos-"
VARIANT_SUFFIX = "-x86_64-openstack.x86_64.qcow2.gz"

DESCRIPTION = """RHCOS pre-release [OpenStack](https://docs.openshift.com/) images for KubeVirt.
<br />
<br />
These are release candidates and change without notice."""


def _strip(value: str, prefix: str, suffix: str) -> str:
    if value.startswith(prefix):
        value = value[len(prefix):]
    if value.endswith(suffix):
        value = value[: -len(suffix)]
    return value


class RHCOSPrerelease(Artifact):
    """Tracks a ``latest-<major.minor>`` pre-release directory.

    The image is published as ``rhcos:<major.minor>-pre-release`` and additionally
    tagged with every release-candidate name that points at the same file.
    """

    def __init__(self, version: str, getter: Optional[HTTPGetter] = None) -> None:
        self.version = version
        self.getter = getter or HTTPGetter()

    @property
    def base_url(self) -> str:
        return BASE_URL.format(version=self.version)

    def metadata(self) -> Metadata:
        version = self.version
        if version.startswith("latest-"):
            version = version[len("latest-"):]
        return Metadata(
            name="rhcos",
            version=f"{version}-pre-release",
            description=DESCRIPTION,
            example_cloud_init_payload=IGNITION,
        )

    def inspect(self) -> ArtifactDetails:
        checksums = fetch_checksums(self.getter, self.base_url)
        checksum = checksums.get(VARIANT)
        if not checksum:
            raise InspectionError(f"file '{VARIANT}' does not exist in the rhcos pre-release checksum file")

        tags: List[str] = []
        for name in sorted(checksums):
            if name == VARIANT or checksums[name] != checksum:
                continue
            tag = _strip(name, VARIANT_PREFIX, VARIANT_SUFFIX)
            if "rc." in tag:
                tags.append(tag)
        tags.append(checksum)
        return ArtifactDetails(
            sha256sum=checksum,
            download_url=posixpath.join(self.base_url, VARIANT),
            compression=COMPRESSION_GZIP,
            additional_unique_tags=tags,
        )

    def vmi(self, image_ref: str) -> Dict[str, Any]:
        return vmi.new_vmi(
            vmi.rand_name(self.metadata().name),
            vmi.with_rng(),
            vmi.with_container_image(image_ref),
            vmi.with_resource_memory("1024M"),
            vmi.with_termination_grace_period(DEFAULT_TEST_GRACE_PERIOD),
        )

    def tests(self) -> List[guest_tests.ArtifactTest]:
        return []
