"""Azure virtual machine scale set provider.

The scale set's orchestration mode decides how its network interfaces are
found:

 - Uniform: the scale set owns the network profile, so its interfaces are
   listed in one paginated call.
 - Flexible: every VM is a standalone resource. The VM list does not carry the
   network profile, so each VM is fetched individually, then each interface it
   references.

Both paths end in the same extraction of the primary private IP per interface.
"""
from __future__ import annotations

import logging
from typing import Any

from azure.core.exceptions import AzureError, ResourceNotFoundError
from azure.identity import DefaultAzureCredential
from azure.mgmt.compute import ComputeManagementClient
from azure.mgmt.network import NetworkManagementClient

from ..config import AzureConfig
from ..errors import ProviderError
from ..models import Upstream
from ..settings import settings
from .common import LazyPages, collect_results

logger = logging.getLogger(__name__)

MODE_UNIFORM = "Uniform"
MODE_FLEXIBLE = "Flexible"


def resource_name_from_id(resource_id: str) -> str:
    """Return the last segment of an Azure resource ID.

    /subscriptions/{sub}/resourceGroups/{rg}/providers/{provider}/{type}/{name}
    """
    name = resource_id.split("/")[-1]
    if not name:
        raise ValueError(f"invalid resource ID format: empty resource name in {resource_id!r}")
    return name


def primary_ip(ip_config: Any) -> str | None:
    if ip_config is None or not getattr(ip_config, "primary", None):
        return None
    return getattr(ip_config, "private_ip_address", None) or None


def extract_private_ips(interfaces: Any) -> set[str]:
    """Primary private IP of every interface attached to a VM.

    Interfaces without a VM, without IP configurations or without a primary
    address contribute nothing.
    """
    ips: set[str] = set()
    for iface in interfaces:
        vm = getattr(iface, "virtual_machine", None)
        if vm is None or not getattr(vm, "id", None):
            continue
        for ip_config in getattr(iface, "ip_configurations", None) or []:
            ip = primary_ip(ip_config)
            if ip:
                ips.add(ip)
                break
    return ips


def _mode_name(mode: Any) -> str:
    # The SDK returns an str-based enum; older API versions may return a plain string or nothing.
    return str(getattr(mode, "value", mode) or "")


class AzureProvider:
    """Resolves the private IPs of the VMs of a virtual machine scale set."""

    def __init__(self, config: AzureConfig, compute_client: Any = None, network_client: Any = None):
        self.config = config
        self.resource_group = config.resource_group_name
        self._upstreams = [u.to_upstream() for u in config.upstreams]

        if compute_client is None or network_client is None:
            credential = DefaultAzureCredential()
            timeouts = {"connection_timeout": settings.api_timeout_s, "read_timeout": settings.api_timeout_s}
            compute_client = compute_client or ComputeManagementClient(credential, config.subscription_id, **timeouts)
            network_client = network_client or NetworkManagementClient(credential, config.subscription_id, **timeouts)
        self._compute = compute_client
        self._network = network_client

    def list_upstreams(self) -> list[Upstream]:
        return list(self._upstreams)

    def group_exists(self, name: str) -> bool:
        if not name:
            raise ProviderError("VMSS name cannot be empty")
        try:
            vmss = self._compute.virtual_machine_scale_sets.get(self.resource_group, name)
        except ResourceNotFoundError:
            return False
        except AzureError as e:
            raise ProviderError(f"couldn't check if a Virtual Machine Scale Set with name {name} exists: {e}") from e
        return getattr(vmss, "id", None) is not None

    def resolve_members(self, name: str) -> set[str]:
        if not name:
            raise ProviderError("VMSS name cannot be empty")

        try:
            vmss = self._compute.virtual_machine_scale_sets.get(self.resource_group, name)
        except ResourceNotFoundError as e:
            raise ProviderError(f"scale set {name} doesn't exist", kind=ProviderError.NOT_FOUND) from e
        except AzureError as e:
            raise ProviderError(f"failed to get scale set {name}: {e}") from e

        mode = _mode_name(getattr(vmss, "orchestration_mode", None))
        if mode == MODE_UNIFORM:
            return self._uniform_ips(name)
        if mode == MODE_FLEXIBLE:
            return self._flexible_ips(name)
        raise ProviderError(f"unsupported orchestration mode: {mode!r}")

    def _uniform_ips(self, name: str) -> set[str]:
        nics = self._network.network_interfaces
        pages = LazyPages(
            lambda: nics.list_virtual_machine_scale_set_network_interfaces(self.resource_group, name).by_page()
        )
        try:
            return extract_private_ips(pages)
        except AzureError as e:
            raise ProviderError(f"failed to list network interfaces for uniform VMSS {name}: {e}") from e

    def _flexible_ips(self, name: str) -> set[str]:
        vms = self._compute.virtual_machine_scale_set_vms
        pages = LazyPages(lambda: vms.list(self.resource_group, name).by_page())
        try:
            per_vm, failures = collect_results(pages, self._vm_interfaces, errors=(ProviderError,))
        except AzureError as e:
            raise ProviderError(f"failed to list VMs in flexible VMSS {name}: {e}") from e

        if failures:
            raise ProviderError(
                "errors while getting network interfaces from individual VMs:\n" + "\n".join(failures),
                kind=ProviderError.AGGREGATED,
                errors=failures,
            )
        if not per_vm:
            logger.info("Scale set %s has no VMs", name)
        return extract_private_ips(iface for ifaces in per_vm for iface in ifaces)

    def _vm_interfaces(self, vm: Any) -> list[Any]:
        """Fetch the network interfaces of one flexible-mode VM."""
        vm_name = getattr(vm, "name", None)
        if not vm_name:
            raise ProviderError("VM with nil name found")

        try:
            details = self._compute.virtual_machines.get(self.resource_group, vm_name)
        except AzureError as e:
            raise ProviderError(f"VM {vm_name}: failed to get VM details: {e}") from e

        profile = getattr(details, "network_profile", None)
        refs = getattr(profile, "network_interfaces", None) if profile is not None else None
        if not refs:
            logger.info("VM %s has no network interfaces", vm_name)
            return []

        interfaces = []
        for ref in refs:
            if not getattr(ref, "id", None):
                continue
            try:
                nic_name = resource_name_from_id(ref.id)
            except ValueError as e:
                raise ProviderError(f"VM {vm_name}: invalid NIC ID format: {e}") from e
            try:
                interfaces.append(self._network.network_interfaces.get(self.resource_group, nic_name))
            except AzureError as e:
                raise ProviderError(f"VM {vm_name}: failed to get network interface {nic_name}: {e}") from e
        return interfaces
