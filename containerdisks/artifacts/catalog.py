"""The artifact catalog: built-in distributions plus optional config-file extras."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Any, List, Optional, Tuple

try:
    import yaml  # type: ignore
except ImportError as exc:  # pragma: no cover
    raise SystemExit("PyYAML is required but not installed") from exc

from containerdisks.artifacts import Artifact
from containerdisks.artifacts.fedora import Fedora
from containerdisks.artifacts.generic import GenericArtifact
from containerdisks.artifacts.rhcos import RHCOS
from containerdisks.artifacts.rhcos_prerelease import RHCOSPrerelease
from containerdisks.constants import SUPPORTED_COMPRESSIONS
from containerdisks.exceptions import PipelineError
from containerdisks.models import ArtifactDetails, Metadata


@dataclass(frozen=True)
class CatalogEntry:
    artifact: Artifact
    skip_when_not_focused: bool = False


Catalog = Tuple[CatalogEntry, ...]

_REQUIRED_KEYS = ("name", "version", "url", "checksum")


def default_catalog() -> Catalog:
    return (
        CatalogEntry(Fedora("35")),
        CatalogEntry(Fedora("36")),
        CatalogEntry(RHCOS("4.9")),
        CatalogEntry(RHCOS("4.10")),
        CatalogEntry(RHCOS("4.11")),
        CatalogEntry(RHCOSPrerelease("latest-4.12"), skip_when_not_focused=True),
    )


def _entry_from_dict(idx: int, raw: Any) -> CatalogEntry:
    if not isinstance(raw, dict):
        raise PipelineError(f"catalog entry #{idx} must be a mapping")
    for key in _REQUIRED_KEYS:
        if not raw.get(key):
            raise PipelineError(f"catalog entry #{idx} is missing '{key}'")
    compression = str(raw.get("compression") or "")
    if compression and compression not in SUPPORTED_COMPRESSIONS:
        raise PipelineError(
            f"catalog entry #{idx}: unsupported compression '{compression}' "
            f"(supported: {', '.join(sorted(SUPPORTED_COMPRESSIONS))})"
        )
    tags = raw.get("tags") or []
    if not isinstance(tags, list):
        raise PipelineError(f"catalog entry #{idx}: 'tags' must be a list")
    metadata = Metadata(
        name=str(raw["name"]),
        version=str(raw["version"]),
        description=str(raw.get("description") or ""),
    )
    details = ArtifactDetails(
        sha256sum=str(raw["checksum"]).lower(),
        download_url=str(raw["url"]),
        compression=compression,
        additional_unique_tags=[str(tag) for tag in tags],
    )
    return CatalogEntry(
        GenericArtifact(details, metadata),
        skip_when_not_focused=bool(raw.get("skip_when_not_focused", False)),
    )


def load_catalog_config(config_path: Path) -> List[CatalogEntry]:
    """Read generic artifacts from a YAML file with a top-level ``artifacts`` list."""
    if not config_path.exists():
        raise PipelineError(f"Catalog config missing: {config_path}")
    try:
        data = yaml.safe_load(config_path.read_text())
    except yaml.YAMLError as exc:
        raise PipelineError(f"Catalog config {config_path} is not valid YAML: {exc}") from exc
    if data is None:
        return []
    if not isinstance(data, dict):
        raise PipelineError(f"Catalog config {config_path} must be a mapping")
    entries = data.get("artifacts") or []
    if not isinstance(entries, list):
        raise PipelineError(f"Catalog config {config_path}: 'artifacts' must be a list")
    return [_entry_from_dict(idx, raw) for idx, raw in enumerate(entries, start=1)]


def build_catalog(config_path: Optional[Path] = None) -> Catalog:
    """Built-in catalog, followed by the entries of ``config_path`` when given."""
    catalog = default_catalog()
    if config_path is None:
        return catalog
    extra = load_catalog_config(config_path)
    keys = {entry.artifact.metadata().describe() for entry in catalog}
    for entry in extra:
        key = entry.artifact.metadata().describe()
        if key in keys:
            raise PipelineError(f"Catalog config defines '{key}' which is already in the catalog")
        keys.add(key)
    return catalog + tuple(extra)
