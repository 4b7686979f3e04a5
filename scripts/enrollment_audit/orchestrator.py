"""Enrollment-group fixtures: create, provision devices, cascade delete.

Teardown of a group removes every registration state beneath it from the
provisioning service and the matching device from the device registry.
The group definition itself is deleted only when every one of those
removals succeeded; otherwise it is left in place and reported.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, replace
from typing import Any, Awaitable, Callable, Optional

from scripts.enrollment_audit.aggregator import Accumulator, BoundedConcurrentAggregator
from scripts.enrollment_audit.clients.device_provisioning import DeviceProvisioningClient
from scripts.enrollment_audit.clients.device_registry import DeviceRegistryClient
from scripts.enrollment_audit.clients.provisioning_service import ProvisioningServiceClient
from scripts.enrollment_audit.errors import TransportError
from scripts.enrollment_audit.keys import derive_device_key, derive_group_keys
from scripts.enrollment_audit.models import (
    DEFAULT_QUERY_ENROLLMENT_GROUPS,
    DeviceRegistrationState,
    EnrollmentGroup,
    QuerySpecification,
    RegistrationResult,
    SymmetricKeyAttestation,
)
from scripts.enrollment_audit.paging import iter_pages
from scripts.enrollment_audit.progress import ProgressReporter
from scripts.enrollment_audit.retry import TransientRetryPolicy

logger = logging.getLogger("enrollment_audit.orchestrator")

MAX_PARALLELISM = 10


def sample_group_ids(prefix: str, count: int) -> list[str]:
    return [f"{prefix}-{i:03d}" for i in range(count)]


def sample_device_id(group_id: str, index: int) -> str:
    return f"{group_id}-device-{index:04d}"


@dataclass(frozen=True)
class ProvisioningResult:
    group_id: str
    requested: int
    provisioned: int
    failed: int
    duration_s: float

    @property
    def rate(self) -> float:
        return self.provisioned / self.duration_s if self.duration_s > 0 else 0.0

    @property
    def succeeded(self) -> bool:
        return self.failed == 0

    def as_dict(self) -> dict[str, Any]:
        return {
            "group_id": self.group_id,
            "requested": self.requested,
            "provisioned": self.provisioned,
            "failed": self.failed,
            "duration_s": round(self.duration_s, 2),
            "rate": round(self.rate, 2),
        }


@dataclass(frozen=True)
class GroupSetupResult:
    group_id: str
    created: bool  # False when an existing group was updated
    provisioning: Optional[ProvisioningResult] = None

    @property
    def succeeded(self) -> bool:
        return self.provisioning is None or self.provisioning.succeeded

    def as_dict(self) -> dict[str, Any]:
        return {
            "group_id": self.group_id,
            "created": self.created,
            "provisioning": self.provisioning.as_dict() if self.provisioning else None,
        }


@dataclass(frozen=True)
class TeardownResult:
    group_id: str
    found: bool
    registrations_deleted: int = 0
    devices_removed: int = 0
    failed_items: int = 0
    group_deleted: bool = False

    @property
    def succeeded(self) -> bool:
        return not self.found or self.group_deleted

    def as_dict(self) -> dict[str, Any]:
        return {
            "group_id": self.group_id,
            "found": self.found,
            "registrations_deleted": self.registrations_deleted,
            "devices_removed": self.devices_removed,
            "failed_items": self.failed_items,
            "group_deleted": self.group_deleted,
        }


@dataclass(frozen=True)
class ItemTeardown:
    registration_deleted: bool
    device_removed: bool

    @property
    def ok(self) -> bool:
        return self.registration_deleted and self.device_removed


class EnrollmentLifecycleOrchestrator:
    def __init__(
        self,
        service: ProvisioningServiceClient,
        device_registry: Optional[DeviceRegistryClient] = None,
        device_provisioning: Optional[DeviceProvisioningClient] = None,
        *,
        id_scope: Optional[str] = None,
        device_endpoint: str = "global.azure-devices-provisioning.net",
        max_parallelism: int = MAX_PARALLELISM,
        registration_page_size: Optional[int] = None,
        progress_interval_s: float = 5.0,
        throttle_fallback_delay_s: float = 60.0,
        key_seed: str = "testing",
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        self.service = service
        self.device_registry = device_registry
        self.device_provisioning = device_provisioning
        self.id_scope = id_scope
        self.device_endpoint = device_endpoint
        self.max_parallelism = max_parallelism
        self.registration_page_size = registration_page_size
        self.progress_interval_s = progress_interval_s
        self.key_seed = key_seed
        # Provisioning-service throttling always carries Retry-After. Device
        # registry and device endpoint failures may not, so any transient one
        # waits the fallback.
        self._retry_after_policy = TransientRetryPolicy(sleep=sleep)
        self._throttle_policy = TransientRetryPolicy(
            fallback_delay=throttle_fallback_delay_s, sleep=sleep
        )

    # ------------------------------------------------------------------
    # Creation
    # ------------------------------------------------------------------

    async def create_sample_enrollment_groups_with_devices(
        self, prefix: str, groups_count: int, devices_count: Optional[int] = None
    ) -> list[GroupSetupResult]:
        results = []
        for group_id in sample_group_ids(prefix, groups_count):
            results.append(await self.create_enrollment_group(group_id, devices_count))
        return results

    async def create_enrollment_group(
        self, group_id: str, provision_devices_count: Optional[int] = None
    ) -> GroupSetupResult:
        if provision_devices_count is not None:
            self._require_device_provisioning()
        logger.info("Preparing enrollment group %s...", group_id, extra={"group_id": group_id})
        primary_key, secondary_key = derive_group_keys(group_id, self.key_seed)
        attestation = SymmetricKeyAttestation(primary_key, secondary_key)

        group, created = await self._prepare_enrollment_group(group_id, attestation)
        await self.service.create_or_update_enrollment_group(group)

        provisioning = None
        if provision_devices_count is not None:
            provisioning = await self.provision_devices(
                group_id, provision_devices_count, primary_key
            )
        return GroupSetupResult(group_id=group_id, created=created, provisioning=provisioning)

    async def _prepare_enrollment_group(
        self, group_id: str, attestation: SymmetricKeyAttestation
    ) -> tuple[EnrollmentGroup, bool]:
        existing = await self.service.find_enrollment_group(group_id)
        if existing is not None:
            logger.info(
                "Enrollment group %s already exists. Updating...", group_id,
                extra={"group_id": group_id},
            )
            return replace(existing, attestation=attestation), False
        logger.info("Adding new enrollment group %s...", group_id, extra={"group_id": group_id})
        return EnrollmentGroup(enrollment_group_id=group_id, attestation=attestation), True

    # ------------------------------------------------------------------
    # Device provisioning
    # ------------------------------------------------------------------

    async def provision_devices(
        self, group_id: str, count: int, primary_key: str
    ) -> ProvisioningResult:
        """Register count devices under group_id, at most max_parallelism at a time.

        A device that fails is logged and counted; the batch carries on.
        """
        self._require_device_provisioning()
        logger.info("Provisioning %d devices for %s...", count, group_id, extra={"group_id": group_id})
        progress = Accumulator()

        async def provision(index: int) -> RegistrationResult:
            device_id = sample_device_id(group_id, index)
            result = await self.provision_device(device_id, primary_key)
            if not result.assigned:
                raise TransportError(
                    f"registration finished with status {result.status}"
                    + (f": {result.error_message}" if result.error_message else "")
                )
            progress.add("provisioned")
            return result

        def render(elapsed: float) -> str:
            provisioned = progress.count("provisioned")
            return (
                f"Devices provisioned: {provisioned}. "
                f"Provision ratio: {provisioned / elapsed:.2f} reg/sec."
            )

        started = time.monotonic()
        aggregator = BoundedConcurrentAggregator(self.max_parallelism)
        async with ProgressReporter(render, self.progress_interval_s):
            outcomes = await aggregator.run(range(count), provision)

        failed = 0
        for outcome in outcomes:
            if not outcome.ok:
                failed += 1
                device_id = sample_device_id(group_id, outcome.item)
                logger.error(
                    "Error provisioning device %s. %s", device_id, outcome.error,
                    extra={"group_id": group_id, "device_id": device_id},
                )

        result = ProvisioningResult(
            group_id=group_id,
            requested=count,
            provisioned=progress.count("provisioned"),
            failed=failed,
            duration_s=time.monotonic() - started,
        )
        logger.info(
            "Total devices provisioned: %d. Provision ratio: %.2f reg/sec.",
            result.provisioned, result.rate,
            extra={"group_id": group_id, "records": result.provisioned,
                   "duration_s": round(result.duration_s, 2)},
        )
        return result

    def _require_device_provisioning(self) -> None:
        if self.device_provisioning is None or not self.id_scope:
            raise ValueError("Provisioning devices requires a device endpoint client and an ID scope")

    async def provision_device(self, device_id: str, primary_key: str) -> RegistrationResult:
        device_key = derive_device_key(primary_key, device_id)
        return await self._throttle_policy.call(
            self.device_provisioning.register_device,
            self.device_endpoint,
            self.id_scope,
            device_id,
            device_key,
            description=f"registration of {device_id}",
        )

    # ------------------------------------------------------------------
    # Teardown
    # ------------------------------------------------------------------

    async def remove_sample_enrollment_groups(
        self, prefix: str, groups_count: int
    ) -> list[TeardownResult]:
        results = []
        for group_id in sample_group_ids(prefix, groups_count):
            results.append(await self.remove_enrollment_group(group_id))
        return results

    async def remove_enrollment_group(self, group_id: str) -> TeardownResult:
        """Remove a group's registrations and devices, then the group if all succeeded."""
        if self.device_registry is None:
            raise ValueError("Removing enrollment groups requires a device registry client")

        group = await self.service.find_enrollment_group(group_id)
        if group is None:
            logger.info("Enrollment group %s not found.", group_id, extra={"group_id": group_id})
            return TeardownResult(group_id=group_id, found=False)

        logger.info(
            "Removing device registrations and devices for enrollment group %s...", group_id,
            extra={"group_id": group_id},
        )
        run = Accumulator()
        cursor = self.service.query_device_registration_states(
            QuerySpecification(DEFAULT_QUERY_ENROLLMENT_GROUPS),
            group_id,
            self.registration_page_size,
        )
        async for page in iter_pages(
            cursor, self._retry_after_policy, f"registrations page of {group_id}"
        ):
            await self._delete_registrations(group_id, page.items, run)

        group_deleted = False
        if run.success:
            await self.service.delete_enrollment_group(group_id)
            group_deleted = True
            logger.info(
                "Successfully removed the enrollment group %s and its registrations and devices.",
                group_id, extra={"group_id": group_id},
            )
        else:
            logger.warning(
                "%d registrations could not be fully removed. "
                "The enrollment group %s has not been deleted.",
                run.count("failed"), group_id,
                extra={"group_id": group_id, "records": run.count("failed")},
            )

        return TeardownResult(
            group_id=group_id,
            found=True,
            registrations_deleted=run.count("registrations"),
            devices_removed=run.count("devices"),
            failed_items=run.count("failed"),
            group_deleted=group_deleted,
        )

    async def _delete_registrations(
        self, group_id: str, states: list[DeviceRegistrationState], run: Accumulator
    ) -> None:
        async def teardown(state: DeviceRegistrationState) -> ItemTeardown:
            item = ItemTeardown(
                registration_deleted=await self._safe_delete_registration(state),
                device_removed=await self._safe_remove_device(state.device_id),
            )
            if item.registration_deleted:
                run.add("registrations")
            if item.device_removed:
                run.add("devices")
            return item

        aggregator = BoundedConcurrentAggregator(self.max_parallelism)
        registrations = devices = 0
        for outcome in await aggregator.run(states, teardown):
            if outcome.ok and outcome.result.ok:
                registrations += 1
                devices += 1
                continue
            if outcome.ok:
                registrations += outcome.result.registration_deleted
                devices += outcome.result.device_removed
            else:
                logger.error(
                    "Unexpected error removing registration %s: %s",
                    outcome.item.registration_id, outcome.error,
                    extra={"group_id": group_id, "registration_id": outcome.item.registration_id},
                )
            run.add("failed")
            run.mark_failed()

        logger.info(
            "Registrations deleted: %d. Devices removed: %d.", registrations, devices,
            extra={"group_id": group_id},
        )

    async def _safe_delete_registration(self, state: DeviceRegistrationState) -> bool:
        try:
            await self._retry_after_policy.call(
                self.service.delete_device_registration_state,
                state,
                description=f"removal of registration {state.registration_id}",
            )
            return True
        except Exception as exc:
            logger.error(
                "Unable to remove device registration %s. Error %s",
                state.registration_id, exc,
                extra={"registration_id": state.registration_id},
            )
            return False

    async def _safe_remove_device(self, device_id: str) -> bool:
        try:
            await self._throttle_policy.call(
                self.device_registry.remove_device,
                device_id,
                description=f"removal of device {device_id}",
            )
            return True
        except Exception as exc:
            logger.error(
                "Unable to remove the device %s from the device registry. Error %s",
                device_id, exc,
                extra={"device_id": device_id},
            )
            return False
