"""Artifacts whose release details are fixed up front (catalog config file entries)."""

from __future__ import annotations

from typing import Any, Dict, List

from containerdisks import guest_tests, vmi
from containerdisks.artifacts import Artifact
from containerdisks.constants import DEFAULT_TEST_GRACE_PERIOD
from containerdisks.models import ArtifactDetails, Metadata


class GenericArtifact(Artifact):
    def __init__(self, details: ArtifactDetails, metadata: Metadata) -> None:
        self._details = details
        self._metadata = metadata

    def metadata(self) -> Metadata:
        return self._metadata

    def inspect(self) -> ArtifactDetails:
        return self._details

    def vmi(self, image_ref: str) -> Dict[str, Any]:
        return vmi.new_vmi(
            vmi.rand_name(self._metadata.name),
            vmi.with_rng(),
            vmi.with_container_image(image_ref),
            vmi.with_resource_memory("1024M"),
            vmi.with_termination_grace_period(DEFAULT_TEST_GRACE_PERIOD),
        )

    def tests(self) -> List[guest_tests.ArtifactTest]:
        return []
