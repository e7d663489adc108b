"""The verify pipeline: boot unverified containerdisks and mark them verified."""

from __future__ import annotations

import posixpath
import tempfile
import time
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

from containerdisks.artifacts import Artifact
from containerdisks.cluster import KubeVirtClient
from containerdisks.constants import ANNOTATION_VERIFIED, LABEL_SHASUM, VMI_PHASE_RUNNING, VMI_POLL_INTERVAL
from containerdisks.exceptions import BootTimeoutError, InspectionError, PipelineError, RegistryError
from containerdisks.models import ArtifactDetails, Options
from containerdisks.repository import Repository
from containerdisks.utils import ArtifactLogger, parse_bool
from containerdisks.workers import prepare_tags, prepare_timestamp_tag


def is_verified(annotations: Dict[str, str]) -> bool:
    """Only an annotation that parses as true counts; missing or garbage means unverified."""
    raw = annotations.get(ANNOTATION_VERIFIED)
    if raw is None:
        return False
    try:
        return parse_bool(raw)
    except ValueError:
        return False


def find_image_refs(
    registry: str,
    artifact: Artifact,
    details: ArtifactDetails,
    repository: Repository,
    insecure: bool,
    logger: ArtifactLogger,
) -> List[str]:
    """Return the tags that carry the current upstream checksum but are not verified yet.

    Tags whose metadata cannot be read are logged and skipped.
    """
    refs: List[str] = []
    for ref in prepare_tags(registry, artifact.metadata(), details):
        try:
            info = repository.image_metadata(ref, insecure)
        except RegistryError as exc:
            logger.error(f"Failed to get metadata of {ref}: {exc}")
            continue
        if info.labels.get(LABEL_SHASUM) != details.sha256sum:
            logger.debug(f"{ref} carries a different checksum, skipping")
            continue
        if is_verified(info.annotations):
            logger.debug(f"{ref} is already verified")
            continue
        refs.append(ref)
    return refs


def cluster_image_ref(img_ref: str, registry: str, cluster_registry: str) -> str:
    """Rewrite ``img_ref`` to the registry address the cluster nodes pull from."""
    if not cluster_registry or registry == cluster_registry:
        return img_ref
    return img_ref.replace(registry, cluster_registry, 1)


class ProvisionedVMI:
    """Creates a VMI on enter and deletes it on every exit.

    A failing delete is logged; it only propagates when the body itself succeeded.
    """

    def __init__(self, cluster: KubeVirtClient, manifest: Dict[str, Any], logger: ArtifactLogger) -> None:
        self.cluster = cluster
        self.manifest = manifest
        self.logger = logger
        self.vmi: Optional[Dict[str, Any]] = None

    @property
    def name(self) -> str:
        source = self.vmi or self.manifest
        return source["metadata"]["name"]

    def __enter__(self) -> Dict[str, Any]:
        self.logger.info("Creating VMI")
        self.vmi = self.cluster.create(self.manifest) or self.manifest
        return self.vmi

    def __exit__(self, exc_type, exc, tb) -> bool:
        try:
            self.cluster.delete(self.name)
        except PipelineError as delete_exc:
            self.logger.error(f"Failed to delete VMI {self.name}: {delete_exc}")
            if exc_type is None:
                raise
        return False


def wait_vmi_running(
    cluster: KubeVirtClient,
    name: str,
    timeout: float,
    interval: float = VMI_POLL_INTERVAL,
    sleep: Callable[[float], None] = time.sleep,
    clock: Callable[[], float] = time.monotonic,
) -> Dict[str, Any]:
    """Poll ``name`` right away, then every ``interval`` seconds, until it is Running."""
    deadline = clock() + timeout
    while True:
        vmi = cluster.get(name)
        phase = (vmi.get("status") or {}).get("phase", "")
        if phase == VMI_PHASE_RUNNING:
            return vmi
        remaining = deadline - clock()
        if remaining <= 0:
            raise BootTimeoutError(f"VMI {name} not running after {timeout:g}s (phase: {phase or 'unknown'})")
        sleep(min(interval, remaining))


def push_verified(
    img_refs: List[str],
    options: Options,
    repository: Repository,
    logger: ArtifactLogger,
    workdir: Path,
) -> None:
    """Pull the first ref, flip its verified annotation and push it to every ref.

    The pulled layers are reused as-is, so only the manifest changes.
    """
    insecure = options.allow_insecure_registry
    image = repository.pull_image(img_refs[0], insecure, workdir / "pulled")
    image = repository.mutate_annotations(image, {ANNOTATION_VERIFIED: "true"}, workdir / "verified")
    for ref in img_refs:
        if options.dry_run:
            logger.info(f"Dry run enabled, not pushing {ref}")
            continue
        logger.info(f"Pushing {ref}")
        repository.push_image(image, ref, insecure)


def verify(
    artifact: Artifact,
    options: Options,
    cluster: KubeVirtClient,
    repository: Optional[Repository] = None,
    now: Optional[datetime] = None,
) -> None:
    """Boot the first unverified tag of ``artifact``, run its tests and mark it verified."""
    repository = repository or Repository()
    metadata = artifact.metadata()
    logger = ArtifactLogger(metadata.describe())

    try:
        details = artifact.inspect()
    except PipelineError as exc:
        raise InspectionError(f"error introspecting artifact '{metadata.describe()}': {exc}") from exc
    logger.info(f"Remote artifact checksum: '{details.sha256sum}'")

    img_refs = find_image_refs(
        options.registry, artifact, details, repository, options.allow_insecure_registry, logger
    )
    if not img_refs:
        logger.info("Found no containerdisks to verify")
        return

    boot_ref = cluster_image_ref(img_refs[0], options.registry, options.verify.cluster_registry)
    with ProvisionedVMI(cluster, artifact.vmi(boot_ref), logger) as vmi:
        name = vmi["metadata"]["name"]
        logger.info(f"Waiting for VMI {name} to be running")
        vmi = wait_vmi_running(cluster, name, options.verify.timeout)

        logger.info("Running tests on VMI")
        for test in artifact.tests():
            logger.debug(f"Running {getattr(test, '__name__', repr(test))}")
            test(vmi, cluster)

    img_refs.append(prepare_timestamp_tag(options.registry, metadata, now))
    with tempfile.TemporaryDirectory(prefix="containerdisks-verify-") as workdir:
        push_verified(img_refs, options, repository, logger, Path(workdir))
    logger.success(f"Verified {posixpath.join(options.registry, metadata.describe())}")
