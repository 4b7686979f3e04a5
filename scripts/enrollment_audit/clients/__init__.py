"""Async REST clients for the provisioning service, device registry and device endpoint."""

from scripts.enrollment_audit.clients.device_provisioning import DeviceProvisioningClient
from scripts.enrollment_audit.clients.device_registry import DeviceRegistryClient
from scripts.enrollment_audit.clients.http import HTTPClient, HttpResponse
from scripts.enrollment_audit.clients.provisioning_service import ProvisioningServiceClient

__all__ = [
    "DeviceProvisioningClient",
    "DeviceRegistryClient",
    "HTTPClient",
    "HttpResponse",
    "ProvisioningServiceClient",
]
