"""Red Hat CoreOS images from the OpenShift mirror."""

from __future__ import annotations

import json
import posixpath
from typing import Any, Dict, List, Optional

from containerdisks import guest_tests, hashsum, vmi
from containerdisks.artifacts import Artifact
from containerdisks.artifacts.docs import IGNITION
from containerdisks.constants import COMPRESSION_GZIP, DEFAULT_TEST_GRACE_PERIOD
from containerdisks.download import HTTPGetter
from containerdisks.exceptions import InspectionError, PipelineError
from containerdisks.models import ArtifactDetails, Metadata
from containerdisks.utils import hash_password

BASE_URL = "https://mirror.openshift.com/pub/openshift-v4/dependencies/rhcos/{version}/latest/"
VARIANT = "rhcos-openstack.x86_64.qcow2.gz"
CHECKSUM_FILE = "sha256sum.txt"

DESCRIPTION = """<img src="https://upload.wikimedia.org/wikipedia/commons/thumb/d/d8/Red_Hat_logo.svg/240px-Red_Hat_logo.svg.png" alt="drawing" width="15"/> RHCOS [OpenStack](https://docs.openshift.com/) images for KubeVirt.
<br />
<br />
Visit [docs.openshift.com](https://docs.openshift.com/) to learn more about Red Hat Enterprise Linux CoreOS."""


def ignition_config(user: str, password: str) -> str:
    """Minimal ignition document creating ``user`` with a bcrypt hashed password."""
    return json.dumps(
        {
            "ignition": {"version": "3.3.0"},
            "passwd": {"users": [{"name": user, "passwordHash": hash_password(password)}]},
        }
    )


def fetch_checksums(getter: HTTPGetter, base_url: str) -> Dict[str, str]:
    """Download and parse the mirror's ``sha256sum.txt``."""
    url = posixpath.join(base_url, CHECKSUM_FILE)
    try:
        raw = getter.get_all(url)
    except PipelineError as exc:
        raise InspectionError(f"error downloading the rhcos {CHECKSUM_FILE} file: {exc}") from exc
    try:
        return hashsum.parse(raw.decode("utf-8"), hashsum.FORMAT_GNU)
    except (UnicodeDecodeError, ValueError) as exc:
        raise InspectionError(f"error parsing the rhcos {CHECKSUM_FILE} file: {exc}") from exc


class RHCOS(Artifact):
    def __init__(self, version: str, getter: Optional[HTTPGetter] = None) -> None:
        self.version = version
        self.getter = getter or HTTPGetter()

    @property
    def base_url(self) -> str:
        return BASE_URL.format(version=self.version)

    def metadata(self) -> Metadata:
        return Metadata(
            name="rhcos",
            version=self.version,
            description=DESCRIPTION,
            example_cloud_init_payload=IGNITION,
        )

    def inspect(self) -> ArtifactDetails:
        checksums = fetch_checksums(self.getter, self.base_url)
        checksum = checksums.get(VARIANT)
        if not checksum:
            raise InspectionError(f"file '{VARIANT}' does not exist in the rhcos {CHECKSUM_FILE} file")
        return ArtifactDetails(
            sha256sum=checksum,
            download_url=posixpath.join(self.base_url, VARIANT),
            compression=COMPRESSION_GZIP,
            additional_unique_tags=[checksum],
        )

    def vmi(self, image_ref: str) -> Dict[str, Any]:
        return vmi.new_vmi(
            vmi.rand_name(self.metadata().name),
            vmi.with_rng(),
            vmi.with_container_image(image_ref),
            vmi.with_resource_memory("1024M"),
            vmi.with_termination_grace_period(DEFAULT_TEST_GRACE_PERIOD),
            vmi.with_cloud_init_config_drive_user_data(ignition_config("core", "core")),
        )

    def tests(self) -> List[guest_tests.ArtifactTest]:
        return [guest_tests.login_to_core]
