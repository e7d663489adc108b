"""Fedora Cloud base images."""

from __future__ import annotations

import json
from typing import Any, Dict, List, Optional

try:
    import yaml  # type: ignore
except ImportError as exc:  # pragma: no cover
    raise SystemExit("PyYAML is required but not installed") from exc

from containerdisks import guest_tests, vmi
from containerdisks.artifacts import Artifact
from containerdisks.artifacts.docs import CLOUD_INIT
from containerdisks.constants import DEFAULT_TEST_GRACE_PERIOD
from containerdisks.download import HTTPGetter
from containerdisks.exceptions import InspectionError, PipelineError
from containerdisks.models import ArtifactDetails, Metadata

RELEASES_URL = "https://getfedora.org/releases.json"

DESCRIPTION = """<img src="https://upload.wikimedia.org/wikipedia/commons/thumb/3/3f/Fedora_logo.svg/240px-Fedora_logo.svg.png" alt="drawing" width="15"/> Fedora [Cloud](https://alt.fedoraproject.org/cloud/) images for KubeVirt.
<br />
<br />
Visit [getfedora.org](https://getfedora.org/) to learn more about the Fedora project."""


def cloud_config(user: str, password: str) -> str:
    payload = {
        "system_info": {
            "default_user": {
                "name": user,
                "plain_text_passwd": password,
                "lock_passwd": False,
            }
        },
        "write_files": [
            {
                "path": "/etc/profile.d/disable-bracketed-paste.sh",
                "content": "bind 'set enable-bracketed-paste off'\n",
                "permissions": "0755",
            }
        ],
    }
    return "#cloud-config\n" + yaml.safe_dump(payload, sort_keys=False)


class Fedora(Artifact):
    def __init__(self, version: str, arch: str = "x86_64", variant: str = "Cloud", getter: Optional[HTTPGetter] = None) -> None:
        self.version = version
        self.arch = arch
        self.variant = variant
        self.getter = getter or HTTPGetter()

    def metadata(self) -> Metadata:
        return Metadata(
            name="fedora",
            version=self.version,
            description=DESCRIPTION,
            example_cloud_init_payload=CLOUD_INIT,
        )

    def inspect(self) -> ArtifactDetails:
        try:
            raw = self.getter.get_all(RELEASES_URL)
        except PipelineError as exc:
            raise InspectionError(f"error downloading the fedora releases.json file: {exc}") from exc
        try:
            releases = json.loads(raw)
        except ValueError as exc:
            raise InspectionError(f"error parsing the releases.json file: {exc}") from exc

        for release in releases:
            if self._release_matches(release):
                link = release["link"]
                file_name = link.rsplit("/", 1)[-1]
                additional_tag = file_name
                if additional_tag.startswith("Fedora-Cloud-Base-"):
                    additional_tag = additional_tag[len("Fedora-Cloud-Base-"):]
                suffix = f".{self.arch}.qcow2"
                if additional_tag.endswith(suffix):
                    additional_tag = additional_tag[: -len(suffix)]
                checksum = release.get("sha256")
                if not checksum:
                    raise InspectionError(f"no sha256 checksum in releases.json for fedora:'{self.version}'")
                return ArtifactDetails(
                    sha256sum=checksum,
                    download_url=link,
                    additional_unique_tags=[additional_tag],
                )
        raise InspectionError(f"no release information in releases.json for fedora:'{self.version}' found")

    def _release_matches(self, release: Dict[str, Any]) -> bool:
        return (
            release.get("version") == self.version
            and release.get("arch") == self.arch
            and release.get("variant") == self.variant
            and str(release.get("link", "")).endswith("qcow2")
        )

    def vmi(self, image_ref: str) -> Dict[str, Any]:
        return vmi.new_vmi(
            vmi.rand_name(self.metadata().name),
            vmi.with_smm(),
            vmi.with_rng(),
            vmi.with_uefi(secure_boot=True),
            vmi.with_container_image(image_ref),
            vmi.with_resource_memory("1024M"),
            vmi.with_termination_grace_period(DEFAULT_TEST_GRACE_PERIOD),
            vmi.with_cloud_init_nocloud_user_data(cloud_config("fedora", "fedora")),
        )

    def tests(self) -> List[guest_tests.ArtifactTest]:
        return [
            guest_tests.secure_boot_expecter,
            guest_tests.login_to_fedora,
            guest_tests.guest_os_info,
        ]
