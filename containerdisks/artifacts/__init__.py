"""Artifact definitions: one per supported operating-system image."""

from __future__ import annotations

import abc
from typing import TYPE_CHECKING, Any, Dict, List

from containerdisks.models import ArtifactDetails, Metadata

if TYPE_CHECKING:  # pragma: no cover
    from containerdisks.guest_tests import ArtifactTest


class Artifact(abc.ABC):
    """Capability set every distribution variant provides to the pipelines."""

    @abc.abstractmethod
    def metadata(self) -> Metadata:
        """Static description; ``metadata().describe()`` is the registry path and focus key."""

    @abc.abstractmethod
    def inspect(self) -> ArtifactDetails:
        """Look up the current upstream release. Raises InspectionError."""

    @abc.abstractmethod
    def vmi(self, image_ref: str) -> Dict[str, Any]:
        """Return a VirtualMachineInstance manifest booting ``image_ref``."""

    @abc.abstractmethod
    def tests(self) -> List["ArtifactTest"]:
        """Checks to run, in order, once the VMI is Running."""

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self.metadata().describe()}>"
