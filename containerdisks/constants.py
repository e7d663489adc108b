"""Global constants for containerdisks."""

from __future__ import annotations

import os

DEFAULT_REGISTRY = "quay.io/containerdisks"
DEFAULT_NAMESPACE = "kubevirt"
DEFAULT_VERIFY_TIMEOUT = 600
DEFAULT_WORKERS = 1

TRUTHY = {"1", "true", "yes", "on"}
# strconv.ParseBool compatible spellings, used for the verified annotation
BOOL_TRUE = {"1", "t", "T", "true", "TRUE", "True"}
BOOL_FALSE = {"0", "f", "F", "false", "FALSE", "False"}

_LOG_VERBOSE = os.environ.get("LOG_VERBOSE", "").lower() in TRUTHY

LABEL_SHASUM = "shasum"
ANNOTATION_VERIFIED = "verified"

MEDIA_TYPE_OCI_MANIFEST = "application/vnd.oci.image.manifest.v1+json"
MEDIA_TYPE_OCI_CONFIG = "application/vnd.oci.image.config.v1+json"
MEDIA_TYPE_OCI_LAYER = "application/vnd.oci.image.layer.v1.tar+gzip"
OCI_LAYOUT_VERSION = "1.0.0"

# KubeVirt's containerDisk contract: the disk lives under /disk owned by qemu (107)
DISK_DIR = "disk"
DISK_FILE_NAME = "disk.img"
QEMU_UID = 107
QEMU_GID = 107

COMPRESSION_GZIP = "gzip"
COMPRESSION_XZ = "xz"
SUPPORTED_COMPRESSIONS = {COMPRESSION_GZIP, COMPRESSION_XZ}

CHUNK_SIZE = 1024 * 256  # 256 KiB

KUBEVIRT_GROUP = "kubevirt.io"
KUBEVIRT_VERSION = "v1"
KUBEVIRT_SUBRESOURCE_GROUP = "subresources.kubevirt.io"
VMI_PLURAL = "virtualmachineinstances"
VMI_PHASE_RUNNING = "Running"
VMI_POLL_INTERVAL = 1.0
DEFAULT_TEST_GRACE_PERIOD = 0

TIMESTAMP_TAG_FORMAT = "%y%m%d%H%M"

SKOPEO = os.environ.get("SKOPEO", "skopeo")
VIRTCTL = os.environ.get("VIRTCTL", "virtctl")

USER_AGENT = "containerdisks/0.1"
REQUEST_TIMEOUT = 60

# Guest console prompts (root or user shell)
PROMPT_EXPRESSION = r"(\$ |\# )"
SECURE_BOOT_EXPRESSION = r"secureboot: Secure boot enabled"
