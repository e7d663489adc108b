"""Tests for containerdisks.config module."""

from __future__ import annotations

import pytest

from containerdisks.cli import build_parser
from containerdisks.config import load_catalog, parse_options
from containerdisks.exceptions import PipelineError

ENV_VARS = (
    "REGISTRY",
    "DRY_RUN",
    "INSECURE_REGISTRY",
    "FOCUS",
    "CATALOG_CONFIG",
    "FORCE_BUILD",
    "WORKERS",
    "CLUSTER_REGISTRY",
    "NAMESPACE",
    "VERIFY_TIMEOUT",
    "KUBECONFIG",
)


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for name in ENV_VARS:
        monkeypatch.delenv(name, raising=False)


def _parse(*argv):
    return parse_options(build_parser().parse_args(list(argv)))


class TestDefaults:
    def test_push_defaults(self):
        options = _parse("push")
        assert options.registry == "quay.io/containerdisks"
        assert options.dry_run is False
        assert options.allow_insecure_registry is False
        assert options.focus == ""
        assert options.publish.force_build is False
        assert options.publish.workers == 1

    def test_verify_defaults(self):
        options = _parse("verify")
        assert options.verify.cluster_registry == "quay.io/containerdisks"
        assert options.verify.namespace == "kubevirt"
        assert options.verify.timeout == 600
        assert options.verify.kubeconfig is None


class TestFlags:
    def test_push_flags(self):
        options = _parse(
            "push", "--registry", "localhost:5000/cd/", "--dry-run", "--force", "--workers", "3", "--focus", "fedora:36"
        )
        assert options.registry == "localhost:5000/cd"
        assert options.dry_run is True
        assert options.publish.force_build is True
        assert options.publish.workers == 3
        assert options.focus == "fedora:36"

    def test_verify_flags(self):
        options = _parse(
            "verify",
            "--registry",
            "localhost:5000",
            "--cluster-registry",
            "registry.kube-system:5000",
            "--namespace",
            "ci",
            "--timeout",
            "30",
            "--insecure-skip-tls-verify",
        )
        assert options.verify.cluster_registry == "registry.kube-system:5000"
        assert options.verify.namespace == "ci"
        assert options.verify.timeout == 30
        assert options.allow_insecure_registry is True

    def test_zero_workers_rejected(self):
        with pytest.raises(PipelineError, match="--workers must be >= 1"):
            _parse("push", "--workers", "0")


class TestEnvironment:
    def test_env_fallbacks(self, monkeypatch):
        monkeypatch.setenv("REGISTRY", "ghcr.io/me")
        monkeypatch.setenv("DRY_RUN", "1")
        monkeypatch.setenv("WORKERS", "4")
        monkeypatch.setenv("FORCE_BUILD", "true")
        monkeypatch.setenv("FOCUS", "rhcos:4.11")
        options = _parse("push")
        assert options.registry == "ghcr.io/me"
        assert options.dry_run is True
        assert options.publish.workers == 4
        assert options.publish.force_build is True
        assert options.focus == "rhcos:4.11"

    def test_flag_beats_env(self, monkeypatch):
        monkeypatch.setenv("REGISTRY", "ghcr.io/me")
        assert _parse("push", "--registry", "quay.io/other").registry == "quay.io/other"

    def test_bad_env_value(self, monkeypatch):
        monkeypatch.setenv("VERIFY_TIMEOUT", "soon")
        with pytest.raises(PipelineError, match="VERIFY_TIMEOUT must be an integer"):
            _parse("verify")


class TestLoadCatalog:
    def test_without_config(self):
        assert len(load_catalog(_parse("list"))) > 0

    def test_with_config(self, tmp_path, monkeypatch):
        path = tmp_path / "extra.yaml"
        path.write_text("artifacts:\n  - {name: debian, version: '11', url: https://x, checksum: ab}\n")
        monkeypatch.setenv("CATALOG_CONFIG", str(path))
        catalog = load_catalog(_parse("list"))
        assert catalog[-1].artifact.metadata().describe() == "debian:11"
