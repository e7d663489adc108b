"""Fan-out of pipeline jobs over the artifact catalog, plus registry tag math."""

from __future__ import annotations

import concurrent.futures
import posixpath
from datetime import datetime
from typing import Callable, List, Optional, Sequence

from containerdisks.artifacts import Artifact
from containerdisks.artifacts.catalog import CatalogEntry
from containerdisks.exceptions import PipelineError
from containerdisks.models import ArtifactDetails, Metadata
from containerdisks.utils import ArtifactLogger, utc_timestamp


def prepare_tags(registry: str, metadata: Metadata, details: ArtifactDetails) -> List[str]:
    """Return every push target for an artifact; the least specific tag is last."""
    names = [
        f"{posixpath.join(registry, metadata.name)}:{tag}"
        for tag in details.additional_unique_tags
        if tag
    ]
    names.append(posixpath.join(registry, metadata.describe()))
    return names


def prepare_timestamp_tag(registry: str, metadata: Metadata, now: Optional[datetime] = None) -> str:
    return f"{posixpath.join(registry, metadata.describe())}-{utc_timestamp(now)}"


def select_artifacts(catalog: Sequence[CatalogEntry], focus: str = "") -> List[Artifact]:
    """Apply the focus filter; entries marked skip-when-not-focused only run when focused."""
    selected: List[Artifact] = []
    for entry in catalog:
        if not focus and entry.skip_when_not_focused:
            continue
        if focus and focus != entry.artifact.metadata().describe():
            continue
        selected.append(entry.artifact)
    return selected


class WorkerPool:
    """Fixed number of workers draining a job list that is complete before they start."""

    def __init__(self, workers: int) -> None:
        if workers < 1:
            raise PipelineError(f"workers must be >= 1 (got {workers})")
        self.workers = workers

    def run(
        self,
        catalog: Sequence[CatalogEntry],
        focus: str,
        worker_fn: Callable[[Artifact], None],
    ) -> List[Exception]:
        """Run ``worker_fn`` once per selected artifact and return the collected errors.

        A failing artifact is logged and recorded; it never stops its siblings.
        """
        jobs = select_artifacts(catalog, focus)
        errors: List[Exception] = []
        if not jobs:
            return errors

        def _job(artifact: Artifact) -> Optional[Exception]:
            try:
                worker_fn(artifact)
            except Exception as exc:
                ArtifactLogger(artifact.metadata().describe()).error(str(exc))
                return exc
            return None

        with concurrent.futures.ThreadPoolExecutor(
            max_workers=self.workers, thread_name_prefix="containerdisks"
        ) as executor:
            futures = [executor.submit(_job, artifact) for artifact in jobs]
            for future in concurrent.futures.as_completed(futures):
                err = future.result()
                if err is not None:
                    errors.append(err)
        return errors
