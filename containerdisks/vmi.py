"""Builders for KubeVirt VirtualMachineInstance manifests."""

from __future__ import annotations

import base64
from typing import Any, Callable, Dict, List

from containerdisks.constants import KUBEVIRT_GROUP, KUBEVIRT_VERSION
from containerdisks.utils import random_suffix

VMI = Dict[str, Any]
Option = Callable[[VMI], None]


def rand_name(prefix: str) -> str:
    return f"{prefix}-{random_suffix()}"


def new_vmi(name: str, *options: Option) -> VMI:
    vmi: VMI = {
        "apiVersion": f"{KUBEVIRT_GROUP}/{KUBEVIRT_VERSION}",
        "kind": "VirtualMachineInstance",
        "metadata": {"name": name},
        "spec": {
            "domain": {
                "devices": {"disks": []},
                "resources": {},
            },
            "volumes": [],
        },
    }
    for option in options:
        option(vmi)
    return vmi


def _domain(vmi: VMI) -> Dict[str, Any]:
    return vmi["spec"]["domain"]


def _add_disk(vmi: VMI, name: str, bus: str = "virtio") -> None:
    disks: List[Dict[str, Any]] = _domain(vmi)["devices"].setdefault("disks", [])
    if not any(disk["name"] == name for disk in disks):
        disks.append({"name": name, "disk": {"bus": bus}})


def _add_volume(vmi: VMI, volume: Dict[str, Any]) -> None:
    volumes: List[Dict[str, Any]] = vmi["spec"].setdefault("volumes", [])
    if not any(existing["name"] == volume["name"] for existing in volumes):
        volumes.append(volume)


def _user_data(data: str, b64_encoding: bool) -> Dict[str, str]:
    if b64_encoding:
        return {"userDataBase64": base64.b64encode(data.encode("utf-8")).decode("ascii")}
    return {"userData": data}


def with_rng() -> Option:
    def _apply(vmi: VMI) -> None:
        _domain(vmi)["devices"]["rng"] = {}

    return _apply


def with_uefi(secure_boot: bool) -> Option:
    def _apply(vmi: VMI) -> None:
        firmware = _domain(vmi).setdefault("firmware", {})
        firmware["bootloader"] = {"efi": {"secureBoot": secure_boot}}

    return _apply


def with_smm() -> Option:
    """Secure boot on q35 requires SMM."""

    def _apply(vmi: VMI) -> None:
        _domain(vmi).setdefault("features", {})["smm"] = {"enabled": True}

    return _apply


def with_container_image(image_ref: str) -> Option:
    def _apply(vmi: VMI) -> None:
        _add_disk(vmi, "disk0")
        _add_volume(vmi, {"name": "disk0", "containerDisk": {"image": image_ref}})

    return _apply


def with_resource_memory(amount: str) -> Option:
    def _apply(vmi: VMI) -> None:
        _domain(vmi).setdefault("resources", {}).setdefault("requests", {})["memory"] = amount

    return _apply


def with_termination_grace_period(seconds: int) -> Option:
    def _apply(vmi: VMI) -> None:
        vmi["spec"]["terminationGracePeriodSeconds"] = seconds

    return _apply


def with_cloud_init_nocloud_user_data(data: str, b64_encoding: bool = False) -> Option:
    def _apply(vmi: VMI) -> None:
        _add_disk(vmi, "disk1")
        _add_volume(vmi, {"name": "disk1", "cloudInitNoCloud": _user_data(data, b64_encoding)})

    return _apply


def with_cloud_init_config_drive_user_data(data: str, b64_encoding: bool = False) -> Option:
    """Config-drive user data, which is where ignition based guests look for it."""

    def _apply(vmi: VMI) -> None:
        _add_disk(vmi, "disk1")
        _add_volume(vmi, {"name": "disk1", "cloudInitConfigDrive": _user_data(data, b64_encoding)})

    return _apply
