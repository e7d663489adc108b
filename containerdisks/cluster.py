"""KubeVirt access for boot verification."""

from __future__ import annotations

from typing import Any, Dict, Optional

from kubernetes import client, config  # type: ignore
from kubernetes.client.rest import ApiException  # type: ignore

from containerdisks.console import VirtctlConsole
from containerdisks.constants import (
    KUBEVIRT_GROUP,
    KUBEVIRT_SUBRESOURCE_GROUP,
    KUBEVIRT_VERSION,
    VMI_PLURAL,
)
from containerdisks.exceptions import VerificationError
from containerdisks.utils import log


def load_kube_config(kubeconfig: Optional[str] = None) -> client.ApiClient:
    """Prefer an explicit kubeconfig, then the in-cluster service account, then ~/.kube/config."""
    if kubeconfig:
        return config.new_client_from_config(config_file=kubeconfig)
    try:
        config.load_incluster_config()
    except config.ConfigException:
        config.load_kube_config()
    return client.ApiClient()


class KubeVirtClient:
    """VirtualMachineInstance create/get/delete plus guest queries in one namespace."""

    def __init__(self, namespace: str, kubeconfig: Optional[str] = None, api_client: Optional[Any] = None) -> None:
        self.namespace = namespace
        self.kubeconfig = kubeconfig
        self.api_client = api_client if api_client is not None else load_kube_config(kubeconfig)
        self.custom = client.CustomObjectsApi(self.api_client)

    def create(self, vmi: Dict[str, Any]) -> Dict[str, Any]:
        try:
            return self.custom.create_namespaced_custom_object(
                KUBEVIRT_GROUP, KUBEVIRT_VERSION, self.namespace, VMI_PLURAL, vmi
            )
        except ApiException as exc:
            raise VerificationError(f"Failed to create VMI {vmi['metadata']['name']}: {exc.reason}") from exc

    def get(self, name: str) -> Dict[str, Any]:
        try:
            return self.custom.get_namespaced_custom_object(
                KUBEVIRT_GROUP, KUBEVIRT_VERSION, self.namespace, VMI_PLURAL, name
            )
        except ApiException as exc:
            raise VerificationError(f"Failed to get VMI {name}: {exc.reason}") from exc

    def delete(self, name: str) -> None:
        try:
            self.custom.delete_namespaced_custom_object(
                KUBEVIRT_GROUP, KUBEVIRT_VERSION, self.namespace, VMI_PLURAL, name
            )
        except ApiException as exc:
            if exc.status == 404:
                log("DEBUG", f"VMI {name} already gone")
                return
            raise VerificationError(f"Failed to delete VMI {name}: {exc.reason}") from exc

    def guest_os_info(self, name: str) -> Dict[str, Any]:
        """Query the guest agent through the VMI ``guestosinfo`` subresource."""
        path = (
            f"/apis/{KUBEVIRT_SUBRESOURCE_GROUP}/{KUBEVIRT_VERSION}/namespaces/{{namespace}}/"
            f"{VMI_PLURAL}/{{name}}/guestosinfo"
        )
        try:
            return self.api_client.call_api(
                path,
                "GET",
                path_params={"namespace": self.namespace, "name": name},
                header_params={"Accept": "application/json"},
                response_type="object",
                auth_settings=["BearerToken"],
                _return_http_data_only=True,
            )
        except ApiException as exc:
            raise VerificationError(f"Failed to get guest OS info of {name}: {exc.reason}") from exc

    def console(self, name: str) -> VirtctlConsole:
        return VirtctlConsole(name, self.namespace, kubeconfig=self.kubeconfig)
